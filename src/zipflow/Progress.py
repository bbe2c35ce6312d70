"""Progress reporting shared by the extractor and the packer.

A `ProgressReporter` turns running totals into normalized fractions and
hands them to whatever sink the caller supplied. Each operation creates its
own reporter, so concurrent operations never share progress state.
"""

import logging
import math
from typing import Callable, NamedTuple

logger = logging.getLogger(__name__)


class ProgressSample(NamedTuple):
    """One progress notification.

    Attributes:
        label (str): The archive path (or asset/URL) being read or written.
        fraction (float): Completion between 0.0 and 1.0.
    """
    label: str
    fraction: float


def compute_fraction(done: int, total: int) -> float:
    """Return ``done / total`` clamped to ``[0, 1]``.

    A ``total`` of zero or less has no meaningful ratio; in that case the
    operation counts as complete once ``done`` reaches ``total`` and as not
    started otherwise, so a non-finite value is never produced.
    """
    if total <= 0:
        return 1.0 if done >= total else 0.0
    fraction = done / total
    if not math.isfinite(fraction):
        return 0.0
    return min(max(fraction, 0.0), 1.0)


class NullSink:
    """Sink that drops every sample."""

    def __call__(self, sample: ProgressSample) -> None:
        pass


class LoggingSink:
    """Sink that writes every sample to a logger at DEBUG level."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logger

    def __call__(self, sample: ProgressSample) -> None:
        self.log.debug("progress %s: %.0f%%", sample.label, sample.fraction * 100)


class ProgressReporter:
    """Emit progress samples for a single operation.

    The first sample of an operation is forced to 0.0 by `start`, the last
    one to 1.0 by `finish`. Samples reported in between never go backwards:
    a fraction lower than the last emitted one is raised to it.

    Attributes:
        label (str): Label attached to every sample.
        sink (callable): Receives `ProgressSample` values.
        last (float | None): The last fraction emitted, ``None`` before `start`.
    """

    def __init__(self, label: str, sink: Callable[[ProgressSample], None] | None = None) -> None:
        self.label = label
        self.sink = sink if sink is not None else NullSink()
        self.last: float | None = None

    def _emit(self, fraction: float) -> None:
        self.last = fraction
        sample = ProgressSample(self.label, fraction)
        try:
            self.sink(sample)
        except Exception:
            # Observers must not be able to abort the operation they observe.
            logger.exception("Progress sink failed for %s", self.label)

    def start(self) -> None:
        """Force a 0% sample."""
        self._emit(0.0)

    def report(self, done: int, total: int) -> None:
        """Emit ``done / total`` unless it would move progress backwards.

        Args:
            done (int): Bytes or items processed so far.
            total (int): Bytes or items expected in total.
        """
        fraction = compute_fraction(done, total)
        if self.last is not None and fraction < self.last:
            fraction = self.last
        self._emit(fraction)

    def finish(self) -> None:
        """Force a 100% sample."""
        self._emit(1.0)

    def abandon(self) -> None:
        """Force a 0% sample, signalling that the operation was given up."""
        self._emit(0.0)
