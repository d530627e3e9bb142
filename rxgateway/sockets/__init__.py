"""Raw byte-message sockets consumed by :class:`~rxgateway.transport.TransportSocket`."""

from .base import RawSocket, SocketEvent, SocketState, SocketTarget
from .mock import MockSocket
from .websocket import WebSocketRawSocket

__all__ = [
    "RawSocket",
    "SocketEvent",
    "SocketState",
    "SocketTarget",
    "MockSocket",
    "WebSocketRawSocket",
]
