"""Realtime change feed and the conversation list built on it."""
from fieldservice.messaging.change_feed import ChangeFeed, ChangeEvent, Subscription
from fieldservice.messaging.conversation_list import ConversationList, ConversationView, MessageView

__all__ = [
    'ChangeFeed', 'ChangeEvent', 'Subscription',
    'ConversationList', 'ConversationView', 'MessageView',
]
