"""Wire format for datagrams sent to the speech receiver.

Application datagrams are a compact UTF-8 JSON object
``{"utteranceID": <int32>, "text": <str>}``. Keep-alives are the four ASCII
bytes ``ping``. There is no framing beyond the datagram itself.
"""

import dataclasses
import json

PING = b"ping"

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


@dataclasses.dataclass(frozen=True)
class Utterance:
    """One transcript update for one utterance."""

    utterance_id: int
    text: str


def encode_utterance(utterance_id: int, text: str) -> bytes:
    """Encodes one transcript update as a JSON datagram.

    Raises:
        TypeError: If the arguments have the wrong types.
        ValueError: If `utterance_id` does not fit in a signed 32-bit int.
    """
    if isinstance(utterance_id, bool) or not isinstance(utterance_id, int):
        raise TypeError(
            f"utterance_id must be int, got {type(utterance_id).__name__}."
        )
    if not isinstance(text, str):
        raise TypeError(f"text must be str, got {type(text).__name__}.")
    if not INT32_MIN <= utterance_id <= INT32_MAX:
        raise ValueError(
            f"utterance_id must be a signed 32-bit value, got {utterance_id}."
        )
    document = {"utteranceID": utterance_id, "text": text}
    return json.dumps(
        document, ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")


def decode_utterance(data: bytes) -> Utterance:
    """Decodes a datagram produced by `encode_utterance`.

    Raises:
        ValueError: If |data| is not a well-formed utterance datagram.
    """
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Malformed utterance datagram: {e}") from e

    if not isinstance(document, dict):
        raise ValueError("Utterance datagram must be a JSON object.")
    utterance_id = document.get("utteranceID")
    text = document.get("text")
    if isinstance(utterance_id, bool) or not isinstance(utterance_id, int):
        raise ValueError("utteranceID must be an integer.")
    if not INT32_MIN <= utterance_id <= INT32_MAX:
        raise ValueError(f"utteranceID {utterance_id} is out of range.")
    if not isinstance(text, str):
        raise ValueError("text must be a string.")
    return Utterance(utterance_id, text)


def is_keepalive(data: bytes) -> bool:
    return data == PING
