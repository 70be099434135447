"""Change feed: publish/subscribe over committed ledger mutations.

Events are published after commit, one per changed row, on a per-table
topic. Delivery to each subscriber is at-least-once and per-row ordered:
every event carries the row version and the feed drops any event older
than the last one it published for the same row. Missed events are never
replayed; a subscriber that reconnects or overflows its buffer is flagged
``needs_resync`` and must re-fetch current state.
"""
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

TABLES = ('quiz_session', 'participant', 'topic', 'question', 'answer')
OPERATIONS = ('insert', 'update', 'delete')

_CLOSED = object()


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    operation: str
    entity_id: str
    version: int
    row_before: Optional[Dict[str, Any]] = None
    row_after: Optional[Dict[str, Any]] = None

    @property
    def key(self):
        return (self.table, self.entity_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table': self.table,
            'operation': self.operation,
            'id': self.entity_id,
            'version': self.version,
            'row_before': self.row_before,
            'row_after': self.row_after,
        }


@dataclass(eq=False)
class Subscription:
    """A lazy, infinite, restartable sequence of change events."""
    feed: 'ChangeFeed'
    tables: frozenset
    maxsize: int
    needs_resync: bool = True
    closed: bool = False
    _queue: queue.Queue = field(init=False, repr=False)

    def __post_init__(self):
        self._queue = queue.Queue(maxsize=self.maxsize)

    def _offer(self, event: ChangeEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            # Buffer is gone stale; the consumer has to start over from a snapshot
            logger.warning(f"[feed] subscriber overflow on {event.table}, resync required")
            self._clear()
            self.needs_resync = True

    def _clear(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return

    def events(self, timeout: Optional[float] = None) -> Iterator[ChangeEvent]:
        """Yield events as they arrive.

        Blocks forever when ``timeout`` is None; otherwise stops after
        ``timeout`` seconds without a new event. Calling it again resumes
        from where the previous iteration stopped.
        """
        while not self.closed:
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                return
            if item is _CLOSED:
                return
            yield item

    def __iter__(self):
        return self.events()

    def drain(self) -> List[ChangeEvent]:
        items = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return items
            if item is not _CLOSED:
                items.append(item)

    def mark_synced(self) -> None:
        self.needs_resync = False

    def restart(self) -> 'Subscription':
        """Reattach after a disconnect. Buffered events are discarded."""
        self._clear()
        self.needs_resync = True
        if self.closed:
            self.closed = False
            self.feed._attach(self)
        return self

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed._detach(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except queue.Full:
            self._clear()
            self._queue.put_nowait(_CLOSED)


class ChangeFeed:
    """In-process hub that fans committed changes out to subscribers and listeners."""

    def __init__(self, queue_size: int = 1000):
        self._lock = threading.RLock()
        self._queue_size = queue_size
        self._subscriptions = set()
        self._listeners: List[Callable[[ChangeEvent], None]] = []
        self._versions: Dict[tuple, int] = {}

    def configure(self, queue_size: Optional[int] = None) -> None:
        """Drop all per-row ordering state and subscribers (new database)."""
        with self._lock:
            if queue_size:
                self._queue_size = int(queue_size)
            for sub in list(self._subscriptions):
                sub.closed = True
            self._subscriptions.clear()
            self._versions.clear()

    def subscribe(self, tables=None, queue_size: Optional[int] = None) -> Subscription:
        names = frozenset(tables or TABLES)
        unknown = sorted(names - set(TABLES))
        if unknown:
            from quizroom.errors import ValidationError
            raise ValidationError(f"Unknown tables: {', '.join(unknown)}", tables=list(TABLES))
        sub = Subscription(feed=self, tables=names, maxsize=queue_size or self._queue_size)
        self._attach(sub)
        return sub

    def _attach(self, sub: Subscription) -> None:
        with self._lock:
            self._subscriptions.add(sub)

    def _detach(self, sub: Subscription) -> None:
        with self._lock:
            self._subscriptions.discard(sub)

    def add_listener(self, listener: Callable[[ChangeEvent], None]) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[ChangeEvent], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, event: ChangeEvent) -> bool:
        """Deliver one event. Returns False when it was older than what was already sent."""
        with self._lock:
            last = self._versions.get(event.key)
            if last is not None and event.version <= last:
                logger.debug(
                    f"[feed] drop stale {event.table}:{event.entity_id} v{event.version} (last v{last})"
                )
                return False
            self._versions[event.key] = event.version
            # Offer under the lock so two publishers of one row cannot interleave
            for sub in self._subscriptions:
                if event.table in sub.tables:
                    sub._offer(event)
            for listener in self._listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"[feed] listener {listener!r} failed for {event.table}")
        return True


change_feed = ChangeFeed()
