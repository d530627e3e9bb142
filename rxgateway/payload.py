"""Gateway payload envelope and its JSON wire encoding.

Every transport message carries exactly one envelope::

    {"op": <int>, "d": <any>, "s": <int | null>, "t": <str | null>}

encoded as UTF-8 JSON text. ``op`` selects the meaning of the message, ``d``
carries opcode specific data, and ``s``/``t`` are only meaningful for
dispatched events.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from .mechanism import PayloadError


class Opcode(IntEnum):
    """Opcodes understood by the connection layer."""

    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


@dataclass(frozen=True)
class GatewayPayload:
    """A decoded gateway envelope.

    ``op`` is kept as a plain ``int`` so opcodes unknown to :class:`Opcode`
    survive decoding and can be logged by the connection.
    """

    op: int
    d: Any = None
    s: int | None = None
    t: str | None = None

    @property
    def opcode(self) -> Opcode | None:
        """The matching :class:`Opcode`, or None for unrecognised values."""
        try:
            return Opcode(self.op)
        except ValueError:
            return None

    def as_dict(self) -> dict[str, Any]:
        return {"op": self.op, "d": self.d, "s": self.s, "t": self.t}


def encode_payload(message: GatewayPayload | Mapping[str, Any]) -> bytes:
    """Serialize an envelope to UTF-8 JSON bytes."""
    if isinstance(message, GatewayPayload):
        message = message.as_dict()
    if not isinstance(message.get("op"), int):
        raise TypeError(f"Envelope requires an integer 'op', got {message!r}")
    envelope = {
        "op": int(message["op"]),
        "d": message.get("d"),
        "s": message.get("s"),
        "t": message.get("t"),
    }
    return json.dumps(envelope, separators=(",", ":")).encode("utf-8")


def decode_payload(data: str | bytes) -> GatewayPayload:
    """Parse one envelope received from the transport.

    Raises:
        PayloadError: when the data is not UTF-8 JSON, not an object, or has
            no integer ``op`` field.
    """
    try:
        text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
        obj = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise PayloadError(f"Undecodable envelope: {e}") from e

    if not isinstance(obj, dict):
        raise PayloadError(f"Envelope must be a JSON object, got {type(obj).__name__}")

    op = obj.get("op")
    # bool is an int subclass but never a valid opcode
    if not isinstance(op, int) or isinstance(op, bool):
        raise PayloadError(f"Envelope has no integer 'op': {obj!r}")

    seq = obj.get("s")
    event = obj.get("t")
    return GatewayPayload(
        op=op,
        d=obj.get("d"),
        s=seq if isinstance(seq, int) and not isinstance(seq, bool) else None,
        t=event if isinstance(event, str) else None,
    )
