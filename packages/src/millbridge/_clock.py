"""Clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock.  Two time bases are
exposed because the bridge needs both:

* ``now()`` — monotonic seconds, used for uptime and elapsed-time
  measurement.  Immune to NTP adjustments; only differences between
  calls are meaningful (PEP 418).
* ``epoch_ms()`` — wall-clock milliseconds since the Unix epoch, used
  to compare against the vendor's token expiry timestamps, which are
  issued in epoch milliseconds.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Clock used by the session manager, poll loop and health reporter.

    The default implementation wraps ``time.monotonic()`` and
    ``time.time()``.  Tests inject a deterministic fake clock.
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def epoch_ms(self) -> int:
        """Return wall-clock time in milliseconds since the Unix epoch."""
        ...


class SystemClock:
    """Production clock.

    Satisfies :class:`ClockPort` via structural subtyping (PEP 544).
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()

    def epoch_ms(self) -> int:
        """Return wall-clock time in epoch milliseconds."""
        return time.time_ns() // 1_000_000
