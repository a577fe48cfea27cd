"""Wire protocol helpers for EventSub WebSocket sessions."""

from .classifier import DECODE_ERROR, MALFORMED, UNRECOGNIZED_PREFIX, classify, classify_envelope, decode_envelope

__all__ = [
    "DECODE_ERROR",
    "MALFORMED",
    "UNRECOGNIZED_PREFIX",
    "classify",
    "classify_envelope",
    "decode_envelope",
]
