"""
Unit tests for the change feed and the live conversation list.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fieldservice.messaging import ChangeFeed, ChangeEvent, ConversationList
from fieldservice.models import Client, Conversation, Message


class TestChangeFeed:
    """Tests for ChangeFeed."""

    def test_publish_to_matching_subscribers(self):
        """Test that only subscribers of the table and event receive a change."""
        feed = ChangeFeed()
        received = []
        feed.subscribe('messages', ['INSERT'], received.append)

        feed.publish(ChangeEvent('messages', 'INSERT', {'id': 'm1'}))
        feed.publish(ChangeEvent('messages', 'UPDATE', {'id': 'm1'}))
        feed.publish(ChangeEvent('clients', 'INSERT', {'id': 'c1'}))

        assert [c.record['id'] for c in received] == ['m1']

    def test_disconnected_feed_drops_events(self):
        """Test that a disconnected feed delivers nothing."""
        feed = ChangeFeed()
        received = []
        feed.subscribe('messages', ['INSERT'], received.append)

        feed.disconnect()
        assert feed.publish(ChangeEvent('messages', 'INSERT', {'id': 'm1'})) == 0
        feed.connect()
        assert feed.publish(ChangeEvent('messages', 'INSERT', {'id': 'm2'})) == 1
        assert len(received) == 1

    def test_broken_subscriber_does_not_block_others(self):
        """Test that a failing subscriber does not stop delivery to the rest."""
        feed = ChangeFeed()
        received = []

        def broken(change):
            raise RuntimeError('boom')

        feed.subscribe('messages', ['INSERT'], broken)
        feed.subscribe('messages', ['INSERT'], received.append)

        assert feed.publish(ChangeEvent('messages', 'INSERT', {'id': 'm1'})) == 2
        assert len(received) == 1

    def test_unsubscribe(self):
        """Test removing a subscription."""
        feed = ChangeFeed()
        subscription = feed.subscribe('messages', ['INSERT'], lambda change: None)
        assert feed.subscriber_count == 1
        subscription.unsubscribe()
        assert feed.subscriber_count == 0

    def test_committed_rows_are_published(self, app, session):
        """Test that committed rows are published and rolled back rows are not."""
        feed = app.extensions['change_feed']
        received = []
        subscription = feed.subscribe('clients', ['INSERT'], received.append)
        try:
            session.add(Client(name='Committed'))
            session.commit()
            session.add(Client(name='Rolled back'))
            session.flush()
            session.rollback()
        finally:
            subscription.unsubscribe()

        assert [c.record['name'] for c in received] == ['Committed']


@pytest.fixture
def conversation(session, customer):
    conversation = Conversation(
        client_id=customer.id, channel='sms', unread_count=0,
        last_message_at=datetime.now(timezone.utc) - timedelta(hours=1)
    )
    session.add(conversation)
    session.commit()
    return conversation


@pytest.fixture
def live_list(app):
    clock = {'now': 100.0}
    conversations = ConversationList(
        feed=app.extensions['change_feed'], poll_interval=10, clock=lambda: clock['now']
    )
    conversations.clock = clock
    yield conversations
    conversations.dispose()


class TestConversationList:
    """Tests for the live conversation list."""

    def test_new_message_is_applied_in_place(self, session, conversation, live_list):
        """Test that a new message updates its conversation without a reload."""
        live_list.refresh()
        conversation_id = conversation.id

        session.add(Message(
            conversation_id=conversation_id, direction='inbound', body='Is Tuesday ok?',
            status='delivered', created_at=datetime.now(timezone.utc)
        ))
        session.commit()

        assert live_list.stale is False
        view = live_list.get(conversation_id)
        assert view.last_message.body == 'Is Tuesday ok?'

    def test_unknown_conversation_marks_stale(self, session, customer, live_list):
        """Test that a conversation the list has not seen triggers a reload."""
        live_list.refresh()
        session.add(Conversation(client_id=customer.id, channel='email', unread_count=0))
        session.commit()

        assert live_list.stale is True
        assert len(live_list.items()) == 1
        assert live_list.stale is False

    def test_most_recent_first(self, session, customer, conversation, live_list):
        """Test that conversations are ordered by latest message."""
        newer = Conversation(
            client_id=customer.id, channel='email', unread_count=0,
            last_message_at=datetime.now(timezone.utc)
        )
        session.add(newer)
        session.commit()

        ids = [c.id for c in live_list.items()]
        assert ids == [newer.id, conversation.id]

    def test_polling_only_while_disconnected(self, app, conversation, live_list):
        """Test that polling runs only while the feed is down."""
        feed = app.extensions['change_feed']
        live_list.refresh()
        live_list.clock['now'] += 60

        assert live_list.poll_if_due() is False

        feed.disconnect()
        assert live_list.poll_if_due() is True
        live_list.clock['now'] += 5
        assert live_list.poll_if_due() is False
        live_list.clock['now'] += 10
        assert live_list.poll_if_due() is True

    def test_duplicate_events_are_ignored(self, conversation, live_list):
        """Test that a repeated message event is applied once."""
        live_list.refresh()
        record = {
            'id': 'm-1', 'conversation_id': conversation.id, 'direction': 'outbound',
            'body': 'On my way', 'status': 'sent', 'created_at': datetime.now(timezone.utc),
        }
        live_list._on_message(ChangeEvent('messages', 'INSERT', record))
        live_list._on_message(ChangeEvent('messages', 'INSERT', record))

        assert len(live_list.get(conversation.id).messages) == 1

    def test_deleted_conversation_is_removed(self, conversation, live_list):
        """Test that a deleted conversation leaves the list."""
        live_list.refresh()
        live_list._on_conversation(ChangeEvent('conversations', 'DELETE', {'id': conversation.id}))
        assert live_list.get(conversation.id) is None

    def test_disposed_list_ignores_events(self, app, session, conversation, live_list):
        """Test that a disposed list stops listening and polling."""
        live_list.refresh()
        live_list.dispose()
        session.add(Message(
            conversation_id=conversation.id, direction='inbound', body='Hello',
            status='delivered', created_at=datetime.now(timezone.utc)
        ))
        session.commit()

        assert live_list.conversations[0].messages == []
        assert live_list.poll_if_due() is False
