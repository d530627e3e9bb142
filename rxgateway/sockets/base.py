"""The raw byte-message socket consumed by the transport layer.

Defines :class:`SocketState`, the :class:`SocketTarget` connection
configuration, :class:`SocketEvent` and the :class:`RawSocket` protocol that
concrete sockets (WebSocket, mock) implement.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Protocol, runtime_checkable
from urllib.parse import urlsplit

from reactivex import Observable


class SocketState(Enum):
    """Lifecycle states of a raw socket."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


@dataclass(frozen=True)
class SocketTarget:
    """Typed connection target for a raw socket."""

    host: str
    path: str = "/"
    port: int = 443
    secure: bool = True

    @classmethod
    def from_url(cls, endpoint: str) -> "SocketTarget":
        """Extract the target from a ``ws://`` or ``wss://`` URL.

        The query string, if any, is kept as part of ``path``. The port
        defaults to 443 for secure schemes and 80 otherwise.
        """
        parts = urlsplit(endpoint)
        if parts.scheme not in ("ws", "wss") or not parts.hostname:
            raise ValueError(f"Invalid gateway endpoint: {endpoint!r}")

        secure = parts.scheme == "wss"
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"

        return cls(
            host=parts.hostname,
            path=path,
            port=parts.port or (443 if secure else 80),
            secure=secure,
        )

    @property
    def url(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.port}{self.path}"


@dataclass(frozen=True)
class SocketEvent:
    """An event raised by a raw socket.

    ``data`` holds the received bytes for ``message``, the close reason for
    ``close`` and the error detail for ``error``.
    """

    kind: Literal["message", "close", "error"]
    data: Any = None


@runtime_checkable
class RawSocket(Protocol):
    """Bidirectional byte-message socket.

    Implementers must provide:
        - state: Current :class:`SocketState`
        - events: Observable of :class:`SocketEvent`
        - open: Open the socket, returning whether it succeeded
        - write: Send one complete message
        - close: Close the socket, safe to call in any state
    """

    @property
    def state(self) -> SocketState: ...

    @property
    def events(self) -> Observable[SocketEvent]: ...

    async def open(self, target: SocketTarget) -> bool: ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...
