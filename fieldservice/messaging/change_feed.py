"""
In-process change feed.

Publishes row-level INSERT/UPDATE/DELETE events for mapped tables after the
owning transaction commits. Rows are snapshotted in `after_flush`, while the
session can still be read, and only published from `after_commit`; rolled
back work is never published.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import event, inspect

logger = logging.getLogger(__name__)

EVENTS = ('INSERT', 'UPDATE', 'DELETE')
_PENDING_KEY = '_change_feed_pending'


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    record: Dict[str, Any]


@dataclass
class Subscription:
    feed: 'ChangeFeed'
    table: str
    events: frozenset
    callback: Callable[[ChangeEvent], None]
    active: bool = True

    def matches(self, change: ChangeEvent) -> bool:
        return self.active and self.table == change.table and change.event in self.events

    def unsubscribe(self) -> None:
        self.feed.unsubscribe(self)


def snapshot_row(obj) -> Dict[str, Any]:
    """Column values currently loaded on a mapped instance (never triggers SQL)."""
    state = inspect(obj)
    return {attr.key: state.dict.get(attr.key) for attr in state.mapper.column_attrs}


class ChangeFeed:
    """
    Subscribers register per table and event type. While the feed is
    disconnected events are dropped, the same way a realtime channel loses
    messages while its socket is down; consumers fall back to polling.
    """

    def __init__(self, connected: bool = True):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()
        self._connected = connected
        self._bound = []

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        self._connected = True
        logger.info("[FEED] Connected")

    def disconnect(self) -> None:
        self._connected = False
        logger.warning("[FEED] Disconnected; subscribers fall back to polling")

    def subscribe(self, table: str, events: Iterable[str], callback: Callable[[ChangeEvent], None]) -> Subscription:
        events = frozenset(e.upper() for e in events)
        unknown = events - set(EVENTS)
        if unknown:
            raise ValueError(f"Unknown change events: {sorted(unknown)}")
        subscription = Subscription(self, table, events, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, change: ChangeEvent) -> int:
        """Deliver to matching subscribers. Returns how many received it."""
        if not self._connected:
            return 0
        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(change)]
        for subscription in targets:
            try:
                subscription.callback(change)
            except Exception:
                # keep delivering to the remaining subscribers
                logger.exception(f"[FEED] Subscriber failed on {change.table} {change.event}")
        return len(targets)

    # SQLAlchemy session integration

    def bind(self, session_factory) -> None:
        """Start feeding from every session created by `session_factory` (a sessionmaker)."""
        event.listen(session_factory, 'after_flush', self._after_flush)
        event.listen(session_factory, 'after_commit', self._after_commit)
        event.listen(session_factory, 'after_soft_rollback', self._after_rollback)
        self._bound.append(session_factory)

    def unbind(self) -> None:
        for session_factory in self._bound:
            event.remove(session_factory, 'after_flush', self._after_flush)
            event.remove(session_factory, 'after_commit', self._after_commit)
            event.remove(session_factory, 'after_soft_rollback', self._after_rollback)
        self._bound = []

    def _after_flush(self, session, flush_context) -> None:
        pending = session.info.setdefault(_PENDING_KEY, [])
        for kind, objects in (('INSERT', session.new), ('UPDATE', session.dirty), ('DELETE', session.deleted)):
            for obj in objects:
                table = getattr(obj, '__tablename__', None)
                if table is None:
                    continue
                if kind == 'UPDATE' and not session.is_modified(obj, include_collections=False):
                    continue
                pending.append(ChangeEvent(table, kind, snapshot_row(obj)))

    def _after_commit(self, session) -> None:
        pending = session.info.pop(_PENDING_KEY, None)
        for change in pending or ():
            self.publish(change)

    def _after_rollback(self, session, previous_transaction) -> None:
        session.info.pop(_PENDING_KEY, None)
