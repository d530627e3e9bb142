"""Exponential backoff for gateway reconnection.

Provides :class:`BackoffPolicy`, a pure state machine that turns a history of
connection successes and failures into the delay to wait before the next
attempt. It performs no I/O and never sleeps itself.
"""

import random
from dataclasses import dataclass, field


@dataclass
class BackoffPolicy:
    """Delay computation for consecutive connection attempts.

    The policy starts idle, where the next attempt may be made immediately.
    Every failure doubles (``factor``) the delay starting from ``base_delay``,
    adds a proportional random jitter and caps the result at ``max_delay``.
    A success, or an explicit :meth:`reset_to_idle`, returns to the idle
    baseline.

    Attributes:
        base_delay: Delay in seconds after the first failure.
        max_delay: Ceiling for any computed delay, in seconds.
        factor: Multiplier applied per consecutive failure.
        jitter: Upper bound of the proportional random increase (0.0-1.0).
            Must not exceed ``factor - 1`` so delays never decrease between
            consecutive failures.
        rng: Random source for jitter. Seed it to make delays reproducible.
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    factor: float = 2.0
    jitter: float = 0.1
    rng: random.Random = field(default_factory=random.Random, repr=False)

    _attempts: int = field(default=0, init=False, repr=False)
    _delay: float = field(default=0.0, init=False, repr=False)

    def __post_init__(self):
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError(
                f"Invalid delay bounds: base_delay={self.base_delay},"
                f" max_delay={self.max_delay}"
            )
        if self.factor < 1.0:
            raise ValueError(f"factor must be >= 1.0, got {self.factor}")
        if not 0.0 <= self.jitter <= self.factor - 1.0:
            raise ValueError(
                f"jitter must lie in [0, factor - 1], got {self.jitter}"
            )

    @property
    def attempts(self) -> int:
        """Number of consecutive failures since the policy was last idle."""
        return self._attempts

    @property
    def is_idle(self) -> bool:
        return self._attempts == 0

    def time_to_next_attempt(self) -> float:
        """Delay in seconds to wait before the next connection attempt."""
        return self._delay

    def mark_success(self) -> None:
        """Record a successful attempt; the next one may happen immediately."""
        self.reset_to_idle()

    def mark_failure(self) -> None:
        """Record a failed attempt and compute the delay before the next one."""
        self._attempts += 1
        delay = self.base_delay * (self.factor ** (self._attempts - 1))
        delay *= 1.0 + self.jitter * self.rng.random()
        self._delay = min(delay, self.max_delay)

    def reset_to_idle(self) -> None:
        """Return to the idle baseline without implying that a request succeeded.

        Used when an attempt is abandoned, e.g. superseded by a newer intent.
        """
        self._attempts = 0
        self._delay = 0.0
