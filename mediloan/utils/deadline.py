"""
Request budget and status polling helpers.
"""

import logging
import threading
import time
from typing import Callable, Iterable, Optional

from mediloan.errors import RequestTimeout

logger = logging.getLogger(__name__)


class Deadline:
    """
    Elapsed-time budget for one request.

    Call `check()` before each blocking step; it raises RequestTimeout once
    the budget is spent.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._start = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._start

    @property
    def remaining(self) -> float:
        return max(0.0, self.seconds - self.elapsed)

    def check(self) -> None:
        if self.elapsed > self.seconds:
            raise RequestTimeout("Request processing timeout")


def poll_until_terminal(
    fetch_status: Callable[[], Optional[str]],
    terminal: Iterable[str] = ("completed", "ended", "failed"),
    interval: float = 10.0,
    max_duration: float = 20 * 60,
    cancel: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Optional[str]:
    """
    Poll `fetch_status` until it reports a terminal status.

    Stops early when `cancel` is set and gives up after `max_duration`.
    Errors from a single poll are logged and polling continues.

    Returns:
        The last status seen (terminal or not), or None if every poll failed.
    """
    terminal = set(terminal)
    cancel = cancel or threading.Event()
    started = clock()
    last_status = None

    while True:
        try:
            last_status = fetch_status()
            logger.debug("Polled status: %s", last_status)
        except Exception as e:
            logger.warning("Status poll failed: %s", e)

        if last_status in terminal:
            return last_status

        if clock() - started + interval > max_duration:
            logger.info("Polling ceiling of %.0fs reached", max_duration)
            return last_status

        # Event.wait doubles as an interruptible sleep
        if cancel.wait(interval):
            logger.info("Polling cancelled")
            return last_status
