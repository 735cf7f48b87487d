# packstate/core/logging/filters.py
from __future__ import annotations
import logging
import time
import threading
from collections import deque, defaultdict
from collections.abc import Callable

from packstate.core.redaction import redactText

__all__ = ["RecurringSuppressFilter"]

# Upper bound for normalized message keys
MAX_KEY_LEN = 512



class RecurringSuppressFilter(logging.Filter):
    """
    Suppresses recurring identical log messages after `maxPerWindow` occurrences
    within a sliding `windowSeconds`. Emits a summary once logging resumes for
    that key. Retry loops against a locked file are the usual source.

    Key = (logger name, levelno, normalized message)

    Parameters:
      - windowSeconds: length of the sliding window (default: 60)
      - maxPerWindow: allow up to N messages per window before suppressing (default: 5)
      - summaryLevel: level for suppression summaries (default: INFO)
      - normalize: callable turning a record into key text
      - clock: monotonic seconds source (tests pass a fake)
    """
    def __init__(
            self,
            *,
            windowSeconds: int = 60,
            maxPerWindow: int = 5,
            summaryLevel: int = logging.INFO,
            normalize: Callable[[logging.LogRecord], str] | None = None,
            clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.windowSeconds = max(1, int(windowSeconds))
        self.maxPerWindow = max(1, int(maxPerWindow))
        self.summaryLevel = int(summaryLevel)
        self.normalize = normalize or self._defaultNormalize
        self._clock = clock

        self._buckets: dict[tuple[str, int, str], deque[float]] = defaultdict(deque)
        self._suppressedCounts: dict[tuple[str, int, str], int] = defaultdict(int)
        self._lock = threading.Lock()

    def _defaultNormalize(self, record: logging.LogRecord) -> str:
        try:
            msg = redactText(record.getMessage())
        except Exception:
            msg = str(record.msg)
        norm = " ".join(str(msg).split())
        if len(norm) > MAX_KEY_LEN:
            norm = norm[:MAX_KEY_LEN] + "..."
        return norm

    def _keyOf(self, record: logging.LogRecord) -> tuple[str, int, str]:
        return (record.name, record.levelno, self.normalize(record))

    def _pruneOld(self, dq: deque[float], now: float) -> None:
        limit = now - self.windowSeconds
        while dq and dq[0] < limit:
            dq.popleft()

    def _emitSummary(self, key: tuple[str, int, str]) -> None:
        suppressedCount = self._suppressedCounts.get(key, 0)
        if suppressedCount <= 0:
            return
        loggerName, _levelno, normMessage = key
        lg = logging.getLogger(loggerName)
        try:
            # Marked so this filter lets it through
            lg.log(
                self.summaryLevel,
                "Suppressed %d repeated logs: %s",
                suppressedCount,
                normMessage,
                extra={"_noRecurringSuppress": True}
            )
        except Exception:
            pass
        finally:
            self._suppressedCounts[key] = 0

    def suppressedCount(self, loggerName: str, levelno: int, message: str) -> int:
        with self._lock:
            return self._suppressedCounts.get((loggerName, levelno, message), 0)

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "_noRecurringSuppress", False):
            return True

        now = self._clock()
        key = self._keyOf(record)
        emitSummary = False

        with self._lock:
            dq = self._buckets[key]
            self._pruneOld(dq, now)

            if len(dq) < self.maxPerWindow:
                dq.append(now)
                emitSummary = self._suppressedCounts.get(key, 0) > 0
                allowed = True
            else:
                self._suppressedCounts[key] += 1
                dq.append(now)
                allowed = False

        # Outside the lock: the summary re-enters filter() on the same handler
        if emitSummary:
            self._emitSummary(key)
        return allowed
