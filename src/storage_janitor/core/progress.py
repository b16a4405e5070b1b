"""
Progress streaming and cooperative cancellation.

Scans are written as generators of :class:`ProgressEvent`. A caller can
iterate one directly, or hand it to :class:`ProgressStream` to run it on a
background thread and consume events through a bounded queue.
"""

import queue
import threading
import time
from typing import Callable, Iterator, Optional

from storage_janitor.core.models import ProgressEvent
from storage_janitor.utils.logger import setup_logger

logger = setup_logger(__name__)

_SENTINEL = object()


class CancellationToken:
    """Thread-safe cancellation flag checked at every suspension point."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class ProgressThrottle:
    """Lets an event through at most once per ``interval`` seconds."""

    def __init__(self, interval: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self.clock = clock
        self._last: Optional[float] = None

    def ready(self) -> bool:
        now = self.clock()
        if self._last is None or now - self._last >= self.interval:
            self._last = now
            return True
        return False


def scaled_percent(band_start: float, band_end: float, done: int, total: int) -> float:
    """
    Map ``done/total`` onto the ``[band_start, band_end]`` slice of 0-100.

    Args:
        band_start: Percentage at the start of the phase
        band_end: Percentage at the end of the phase
        done: Items processed so far
        total: Items in the phase

    Returns:
        Overall percentage, never outside the band
    """
    if total <= 0:
        return band_end
    fraction = min(max(done / total, 0.0), 1.0)
    return band_start + (band_end - band_start) * fraction


class ProgressStream:
    """
    Runs an event producer on a worker thread behind a bounded queue.

    The producer is a callable taking a :class:`CancellationToken` and
    returning an iterator of events, e.g.
    ``lambda token: pipeline.detect(records, token)``. Iterating the stream
    yields events in order. :meth:`close` cancels the producer; the stream
    still ends with the producer's terminal event. If the producer dies
    without one, a synthetic terminal error event is yielded instead.

    Example:
        >>> with ProgressStream(lambda t: pipeline.detect(files, t)) as stream:
        ...     for event in stream:
        ...         print(event.percent_complete, event.message)
    """

    def __init__(
        self,
        producer: Callable[[CancellationToken], Iterator[ProgressEvent]],
        maxsize: int = 64,
        token: Optional[CancellationToken] = None,
    ):
        self.token = token or CancellationToken()
        self._producer = producer
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._thread = threading.Thread(
            target=self._run, name="ProgressStream-Producer", daemon=True
        )
        self._started = False

    def _put(self, item) -> None:
        # Block while the consumer is slow, but keep noticing cancellation.
        while True:
            try:
                self._queue.put(item, timeout=0.1)
                return
            except queue.Full:
                if self.token.is_cancelled and item is not _SENTINEL and not getattr(item, "is_terminal", False):
                    return

    def _run(self) -> None:
        last: Optional[ProgressEvent] = None
        saw_terminal = False
        try:
            for event in self._producer(self.token):
                last = event
                self._put(event)
                if event.is_terminal:
                    saw_terminal = True
                    break
        except Exception as e:
            logger.error(f"Progress producer failed: {e}")
            self._put(
                ProgressEvent(
                    percent_complete=last.percent_complete if last else 0.0,
                    message=f"Failed: {e}",
                    is_terminal=True,
                    error=str(e),
                )
            )
            saw_terminal = True
        finally:
            if not saw_terminal:
                self._put(
                    ProgressEvent(
                        percent_complete=last.percent_complete if last else 0.0,
                        message="Producer ended without a result",
                        is_terminal=True,
                        error="producer ended without a terminal event",
                    )
                )
            self._put(_SENTINEL)

    def start(self) -> "ProgressStream":
        if not self._started:
            self._started = True
            self._thread.start()
        return self

    def __iter__(self) -> Iterator[ProgressEvent]:
        self.start()
        while True:
            item = self._queue.get()
            if item is _SENTINEL:
                break
            yield item

    def close(self) -> None:
        """Cancel the producer and wait for it to wind down."""
        self.token.cancel()
        if self._started:
            # Drain so a producer blocked on a full queue can finish.
            while self._thread.is_alive():
                try:
                    self._queue.get(timeout=0.1)
                except queue.Empty:
                    pass
            self._thread.join()

    def __enter__(self) -> "ProgressStream":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
