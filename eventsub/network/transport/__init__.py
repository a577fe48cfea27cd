from .base import BaseTransport, Frame, TransportNotReady
from .dummy import DummyTransport
from .websocket import WebSocketTransport

__all__ = ["BaseTransport", "DummyTransport", "Frame", "TransportNotReady", "WebSocketTransport"]
