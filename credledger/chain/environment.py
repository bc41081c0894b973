# credledger/chain/environment.py
"""
In-process stand-in for the execution environment a ledger normally runs on.

Provides the three things the registry and ledger consume from it:
  - serialized execution of every mutating operation (one re-entrant lock),
  - a sequence marker (timestamp + ordinal) for each accepted write,
  - an explicit output channel for notifications (EventBus).
"""
import logging
import threading
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Deque, Iterator, List, Optional

from credledger.core.types import LedgerEvent, Sequence

logger = logging.getLogger(__name__)

Subscriber = Callable[[LedgerEvent], None]


def utc_iso_now_ms() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SequenceClock:
    """
    Hands out sequence markers. Ordinals strictly increase; timestamps never
    go backwards even if the wall clock does.

    propose() does not advance the clock; commit() does. A write that fails
    between the two leaves no gap.
    """

    def __init__(self, now: Optional[Callable[[], str]] = None, last: Optional[Sequence] = None):
        self._now = now or utc_iso_now_ms
        self._last = last or Sequence()

    @property
    def last(self) -> Sequence:
        return self._last

    def propose(self) -> Sequence:
        ts = self._now()
        if self._last.timestamp and ts < self._last.timestamp:
            ts = self._last.timestamp
        return Sequence(timestamp=ts, ordinal=self._last.ordinal + 1)

    def commit(self, seq: Sequence) -> None:
        if seq.ordinal != self._last.ordinal + 1:
            raise RuntimeError(
                f"Sequence {seq.ordinal} does not follow {self._last.ordinal}"
            )
        self._last = seq


DEFAULT_HISTORY_LIMIT = 1000


class EventBus:
    """
    Callback list plus a bounded in-memory history, so tests can assert on
    emissions. The persisted event log, not this history, is the audit trail.

    publish() only queues; flush() calls subscribers in publish order. The
    environment publishes under its write lock and flushes after releasing
    it, so a slow subscriber never blocks other writers.
    """

    def __init__(self, keep_history: bool = True, history_limit: Optional[int] = DEFAULT_HISTORY_LIMIT):
        self._subscribers: List[Subscriber] = []
        self._history: Deque[LedgerEvent] = deque(maxlen=history_limit if keep_history else 0)
        self._pending: Deque[LedgerEvent] = deque()
        self._delivery = threading.RLock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def history(self) -> List[LedgerEvent]:
        return list(self._history)

    def of_type(self, name: str) -> List[LedgerEvent]:
        return [e for e in self._history if e.name == name]

    def publish(self, event: LedgerEvent) -> None:
        self._history.append(event)
        self._pending.append(event)

    def flush(self) -> None:
        # Whoever holds the delivery lock drains the queue for everyone else
        while self._pending:
            if not self._delivery.acquire(blocking=False):
                return
            try:
                while self._pending:
                    self._deliver(self._pending.popleft())
            finally:
                self._delivery.release()

    def _deliver(self, event: LedgerEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                # The operation has already committed; a broken observer must not undo it
                logger.exception("Subscriber %r failed on %s", callback, event.name)

    def emit(self, event: LedgerEvent) -> None:
        self.publish(event)
        self.flush()


class ExecutionEnvironment:
    """Shared by one AccessRegistry and the CredentialLedger built on it."""

    def __init__(
        self,
        clock: Optional[SequenceClock] = None,
        events: Optional[EventBus] = None,
    ):
        self.clock = clock or SequenceClock()
        self.events = events or EventBus()
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def serialized(self) -> Iterator[None]:
        """
        Run the enclosed block with every other mutating operation excluded.
        Events published inside are delivered after the outermost block exits.
        """
        with self._lock:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                outermost = self._depth == 0
        if outermost:
            self.events.flush()
