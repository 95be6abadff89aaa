"""Live list of client conversations, kept current from the change feed."""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload, joinedload

from fieldservice.database import get_session
from fieldservice.models import Conversation

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1)


def _as_naive_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class MessageView:
    id: str
    direction: str
    body: str
    status: str
    created_at: Optional[datetime]

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'MessageView':
        return cls(
            id=record['id'],
            direction=record.get('direction') or 'outbound',
            body=record.get('body') or '',
            status=record.get('status') or 'delivered',
            created_at=record.get('created_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'direction': self.direction,
            'body': self.body,
            'status': self.status,
            'created_at': _iso(self.created_at),
        }


@dataclass
class ConversationView:
    id: str
    client_id: str
    client_name: str
    channel: str
    subject: Optional[str]
    unread_count: int
    last_message_at: Optional[datetime]
    messages: List[MessageView] = field(default_factory=list)

    @property
    def last_message(self) -> Optional[MessageView]:
        return self.messages[-1] if self.messages else None

    def add_message(self, message: MessageView) -> bool:
        if any(m.id == message.id for m in self.messages):
            return False
        self.messages.append(message)
        self.messages.sort(key=lambda m: _as_naive_utc(m.created_at))
        if _as_naive_utc(message.created_at) > _as_naive_utc(self.last_message_at):
            self.last_message_at = message.created_at
        return True

    def to_dict(self) -> Dict[str, Any]:
        last = self.last_message
        return {
            'id': self.id,
            'client_id': self.client_id,
            'client_name': self.client_name,
            'channel': self.channel,
            'subject': self.subject,
            'unread_count': self.unread_count,
            'last_message_at': _iso(self.last_message_at),
            'last_message': last.to_dict() if last else None,
            'messages': [m.to_dict() for m in self.messages],
        }


class ConversationList:
    """
    Conversations ordered by most recent message first.

    Realtime events from the change feed are applied incrementally. Events
    that cannot be applied in place (a conversation this list has never
    seen) mark the list stale and the next read refreshes it. Polling via
    `poll_if_due` only happens while the feed is disconnected.
    """

    def __init__(self, session_factory=get_session, feed=None, notifier=None,
                 poll_interval: float = 10, client_id: Optional[str] = None, clock=time.monotonic):
        self._session_factory = session_factory
        self._feed = feed
        self._notifier = notifier
        self._poll_interval = poll_interval
        self._client_id = client_id
        self._clock = clock
        self._lock = threading.RLock()
        self._conversations: Dict[str, ConversationView] = {}
        self._stale = True
        self._last_refresh: Optional[float] = None
        self._subscriptions = []
        self.disposed = False

        if feed is not None:
            self._subscriptions = [
                feed.subscribe('messages', ['INSERT', 'DELETE'], self._on_message),
                feed.subscribe('conversations', ['INSERT', 'UPDATE', 'DELETE'], self._on_conversation),
            ]

    @property
    def stale(self) -> bool:
        return self._stale

    def refresh(self) -> List[ConversationView]:
        """Re-read every conversation and its messages from the database."""
        session = self._session_factory()
        query = session.query(Conversation).options(
            joinedload(Conversation.client),
            selectinload(Conversation.messages),
        )
        if self._client_id:
            query = query.filter(Conversation.client_id == self._client_id)

        try:
            rows = query.all()
        except SQLAlchemyError as e:
            logger.error(f"[FEED] Could not load conversations: {e}")
            if self._notifier:
                self._notifier.error('Could not load conversations.')
            raise

        views = {}
        for row in rows:
            view = ConversationView(
                id=row.id,
                client_id=row.client_id,
                client_name=row.client.name if row.client else '',
                channel=row.channel,
                subject=row.subject,
                unread_count=row.unread_count or 0,
                last_message_at=row.last_message_at,
            )
            for message in row.messages:
                view.add_message(MessageView(
                    id=message.id,
                    direction=message.direction,
                    body=message.body,
                    status=message.status,
                    created_at=message.created_at,
                ))
            views[row.id] = view

        with self._lock:
            self._conversations = views
            self._stale = False
            self._last_refresh = self._clock()
        return self.conversations

    @property
    def conversations(self) -> List[ConversationView]:
        with self._lock:
            return sorted(
                self._conversations.values(),
                key=lambda c: _as_naive_utc(c.last_message_at),
                reverse=True
            )

    def items(self) -> List[ConversationView]:
        """Current list, refreshing first if an event could not be applied in place."""
        if self._stale:
            self.refresh()
        return self.conversations

    def get(self, conversation_id: str) -> Optional[ConversationView]:
        if self._stale:
            self.refresh()
        with self._lock:
            return self._conversations.get(conversation_id)

    def poll_if_due(self, now: Optional[float] = None) -> bool:
        """Fallback refresh while realtime is down. Returns True when a refresh ran."""
        if self.disposed:
            return False
        if self._feed is not None and self._feed.connected:
            return False
        now = self._clock() if now is None else now
        if self._last_refresh is not None and now - self._last_refresh < self._poll_interval:
            return False
        self.refresh()
        return True

    def invalidate(self) -> None:
        """Drop everything; the next read reloads from the database."""
        with self._lock:
            self._conversations = {}
            self._stale = True
            self._last_refresh = None

    def _on_message(self, change) -> None:
        record = change.record
        with self._lock:
            if self.disposed:
                return
            view = self._conversations.get(record.get('conversation_id'))
            if view is not None and change.event == 'DELETE':
                view.messages = [m for m in view.messages if m.id != record.get('id')]
                return
            if view is None:
                if change.event == 'DELETE':
                    return
                if self._client_id is None:
                    self._stale = True
                return
            view.add_message(MessageView.from_record(record))

    def _on_conversation(self, change) -> None:
        record = change.record
        with self._lock:
            if self.disposed:
                return
            if self._client_id and record.get('client_id') != self._client_id:
                return
            if change.event == 'DELETE':
                self._conversations.pop(record.get('id'), None)
                return
            view = self._conversations.get(record.get('id'))
            if view is None:
                self._stale = True
                return
            if record.get('unread_count') is not None:
                view.unread_count = record['unread_count']
            if record.get('subject') is not None:
                view.subject = record['subject']
            if record.get('last_message_at') is not None and \
                    _as_naive_utc(record['last_message_at']) > _as_naive_utc(view.last_message_at):
                view.last_message_at = record['last_message_at']

    def to_dict(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self.items()]

    def dispose(self) -> None:
        with self._lock:
            self.disposed = True
            for subscription in self._subscriptions:
                subscription.unsubscribe()
            self._subscriptions = []
