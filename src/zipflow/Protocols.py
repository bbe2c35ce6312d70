"""Progress sink protocol definitions.

This module declares `ProgressSink`, the interface any progress observer
handed to the extraction and packing operations must satisfy. Keeping it a
protocol lets callers pass a plain function, a bound method or a small
object without inheriting from anything.
"""

from typing import Protocol

from .Progress import ProgressSample


class ProgressSink(Protocol):
    """Callable receiving one progress sample at a time.

    Sinks are notified synchronously from the thread running the operation,
    so they should return quickly. Exceptions raised by a sink are logged and
    otherwise ignored.
    """

    def __call__(self, sample: ProgressSample) -> None:
        """Receive a progress sample.

        Args:
            sample (ProgressSample): The label of the archive being processed
                and a fraction between 0.0 and 1.0.
        """
        ...
