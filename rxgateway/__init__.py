"""Convenience exports for the :mod:`rxgateway` package."""

from .backoff import BackoffPolicy  # noqa: F401
from .connection import (  # noqa: F401
    DEFAULT_HEARTBEAT_INTERVAL_MS,
    GatewayConfig,
    GatewayConnection,
    GatewayDelegate,
    GatewayState,
)
from .heartbeat import MINIMUM_HEARTBEAT_INTERVAL, HeartbeatMonitor  # noqa: F401
from .mechanism import GatewayException, HeartbeatIntervalError, PayloadError  # noqa: F401
from .payload import GatewayPayload, Opcode, decode_payload, encode_payload  # noqa: F401
from .sockets import (  # noqa: F401
    MockSocket,
    RawSocket,
    SocketEvent,
    SocketState,
    SocketTarget,
    WebSocketRawSocket,
)
from .transport import TransportDelegate, TransportSocket  # noqa: F401
from .utils import GenerationToken  # noqa: F401

__all__ = [
    "GatewayException",
    "HeartbeatIntervalError",
    "PayloadError",
    "GenerationToken",

    # Backoff
    "BackoffPolicy",

    # Wire envelope
    "Opcode",
    "GatewayPayload",
    "encode_payload",
    "decode_payload",

    # Sockets
    "RawSocket",
    "SocketEvent",
    "SocketState",
    "SocketTarget",
    "MockSocket",
    "WebSocketRawSocket",

    # Transport
    "TransportDelegate",
    "TransportSocket",

    # Heartbeat
    "HeartbeatMonitor",
    "MINIMUM_HEARTBEAT_INTERVAL",

    # Connection
    "GatewayConfig",
    "GatewayState",
    "GatewayDelegate",
    "GatewayConnection",
    "DEFAULT_HEARTBEAT_INTERVAL_MS",
]
