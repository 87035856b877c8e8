"""Periodic scheduler running a callable on its own thread."""
import logging
import math
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Ticker:
    """Calls ``fn`` immediately and then every ``interval_s`` seconds.

    Scheduled times stay on the ``start + k * interval`` grid. When a call
    overruns one or more scheduled times, those ticks are skipped rather
    than queued, and ``on_skip`` is told how many were dropped.
    """

    def __init__(
        self,
        interval_s: float,
        fn: Callable[[], None],
        name: str = "ticker",
        on_skip: Optional[Callable[[int], None]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        if interval_s <= 0:
            raise ValueError(f"Tick interval must be positive, got {interval_s}")

        self.interval_s = interval_s
        self.fn = fn
        self.name = name
        self.on_skip = on_skip
        self.clock = clock

        self.tick_count = 0
        self.skipped_count = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self._thread is not None:
            raise RuntimeError(f"Ticker {self.name} already started")

        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _fire(self):
        try:
            self.fn()
        except Exception as e:
            logger.error(f"Error in {self.name} tick: {e}", exc_info=True)
        self.tick_count += 1

    def next_deadline(self, scheduled: float, now: float) -> float:
        """Next grid time strictly after ``now``, counting the ticks skipped."""
        next_at = scheduled + self.interval_s
        if now <= next_at:
            return next_at

        missed = int(math.floor((now - next_at) / self.interval_s)) + 1
        self.skipped_count += missed
        logger.warning(
            f"{self.name} tick took longer than interval {self.interval_s}s, "
            f"skipping {missed} tick(s)"
        )
        if self.on_skip:
            self.on_skip(missed)
        return next_at + missed * self.interval_s

    def _run(self):
        scheduled = self.clock()

        while not self._stop_event.is_set():
            self._fire()

            scheduled = self.next_deadline(scheduled, self.clock())
            sleep_time = scheduled - self.clock()
            if sleep_time > 0 and self._stop_event.wait(sleep_time):
                break
