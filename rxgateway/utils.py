"""Utility helpers used across ``rxgateway`` modules."""

import traceback


class GenerationToken:
    """Opaque marker identifying one generation of a cancellable operation.

    Tokens compare by identity only. A loop captures the token it was started
    with and, after every suspension, checks that it is still the one stored by
    its owner; on mismatch it has been superseded and exits without side
    effects.
    """

    __slots__ = ("label",)

    def __init__(self, label: str = ""):
        self.label = label

    def __eq__(self, other: object) -> bool:
        return self is other

    def __hash__(self) -> int:
        return id(self)

    def __repr__(self) -> str:
        return f"<GenerationToken {self.label} at {id(self):#x}>"


def get_short_error_info(e: BaseException) -> str:
    """One-line ``Type: message`` summary of an exception, for WARN logs."""
    return f"{type(e).__name__}: {str(e)}"


def get_full_error_info(e: BaseException) -> str:
    """The formatted traceback of an exception, as printed by the interpreter."""
    return "".join(traceback.format_exception(type(e), e, e.__traceback__))
