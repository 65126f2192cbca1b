import json

import pytest

from spokenwire.transport.payload import (
    INT32_MAX,
    INT32_MIN,
    PING,
    Utterance,
    decode_utterance,
    encode_utterance,
    is_keepalive,
)


def test_encode_is_compact_json() -> None:
    assert encode_utterance(7, "hello") == b'{"utteranceID":7,"text":"hello"}'


@pytest.mark.parametrize(
    "utterance_id,text",
    [
        (7, "hello"),
        (-3, "negative ids are allowed"),
        (INT32_MIN, ""),
        (INT32_MAX, 'quotes " and \\ backslashes'),
        (12, "héllo wörld ✓"),
    ],
)
def test_decode_inverts_encode(utterance_id: int, text: str) -> None:
    assert decode_utterance(encode_utterance(utterance_id, text)) == Utterance(
        utterance_id, text
    )


def test_non_ascii_text_is_utf8_not_escaped() -> None:
    data = encode_utterance(1, "ça")
    assert "ça".encode("utf-8") in data
    assert b"\\u" not in data


@pytest.mark.parametrize("utterance_id", [INT32_MIN - 1, INT32_MAX + 1])
def test_encode_rejects_out_of_range_ids(utterance_id: int) -> None:
    with pytest.raises(ValueError):
        encode_utterance(utterance_id, "x")


def test_encode_rejects_wrong_types() -> None:
    with pytest.raises(TypeError):
        encode_utterance(True, "x")
    with pytest.raises(TypeError):
        encode_utterance("7", "x")  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        encode_utterance(7, b"x")  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\xff\xfe",
        b"[1, 2]",
        b'{"text": "missing id"}',
        b'{"utteranceID": "7", "text": "x"}',
        b'{"utteranceID": true, "text": "x"}',
        b'{"utteranceID": 7}',
        json.dumps({"utteranceID": INT32_MAX + 1, "text": "x"}).encode(),
    ],
)
def test_decode_rejects_malformed_datagrams(data: bytes) -> None:
    with pytest.raises(ValueError):
        decode_utterance(data)


def test_ping_is_keepalive() -> None:
    assert PING == b"ping"
    assert is_keepalive(PING)
    assert not is_keepalive(b"pong")
    assert not is_keepalive(encode_utterance(1, "ping"))
