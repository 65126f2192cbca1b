"""Initializes the spokenwire.transport package.

Best-effort UDP delivery of transcripts and keep-alives to the destination
chosen by a discovery session.
"""

from spokenwire.transport.payload import (
    PING,
    Utterance,
    decode_utterance,
    encode_utterance,
    is_keepalive,
)
from spokenwire.transport.transcript_link import TranscriptLink
from spokenwire.transport.udp_transport import Transport

__all__ = [
    "PING",
    "TranscriptLink",
    "Transport",
    "Utterance",
    "decode_utterance",
    "encode_utterance",
    "is_keepalive",
]
