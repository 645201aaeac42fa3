"""Progress reporting to a terminal on standard error."""

from __future__ import annotations

import math
import sys
import time
from typing import Callable, IO, Optional

_FORMAT = "%s: % 3.0f%% - %dkB / %dkB  %d kB/sec; %.1f s remaining     %s"


def _ratio(numerator: float, denominator: float) -> float:
    """Divide like IEEE doubles do: a zero divisor gives inf or nan."""
    if denominator == 0:
        if numerator == 0:
            return math.nan
        return math.copysign(math.inf, numerator)
    return numerator / denominator


class StderrProgress:
    """Progress callback that redraws one status line while the stream is a tty.

    Instances are called as ``progress(numerator, denominator)``.
    """

    def __init__(
        self,
        action_title: str,
        stream: Optional[IO[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.action_title = action_title
        self._stream = stream
        self._clock = clock
        self.start_time = clock()

    @property
    def stream(self) -> IO[str]:
        return self._stream if self._stream is not None else sys.stderr

    def __call__(self, numerator: int, denominator: int) -> None:
        stream = self.stream
        isatty = getattr(stream, "isatty", None)
        if isatty is None or not isatty():
            return
        duration_ms = int((self._clock() - self.start_time) * 1000)
        stream.write(self.format(numerator, denominator, duration_ms))
        stream.flush()

    def format(self, numerator: int, denominator: int, duration_ms: int) -> str:
        """Return the status line for the given progress and elapsed time."""
        duration_ms = max(int(duration_ms), 1)
        percent = _ratio(float(numerator), float(denominator)) * 100.0
        remaining_s = _ratio(
            float(denominator - numerator) * float(duration_ms) * 0.001,
            float(numerator),
        )
        return _FORMAT % (
            self.action_title,
            percent,
            numerator // 1000,
            denominator // 1000,
            numerator // duration_ms,
            remaining_s,
            "\n" if numerator == denominator else "\r",
        )