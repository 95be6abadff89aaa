"""Messaging service: client conversations over SMS and email."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldservice.exceptions import DeliveryError, NotFoundError, ValidationError
from fieldservice.models import Client, Conversation, Message
from fieldservice.services import email_service
from fieldservice.services.sms_client import SmsClient
from fieldservice.utils.contact import is_valid_email, is_valid_phone, normalize_phone_e164

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def list_conversations(session: Session, client_id: Optional[str] = None) -> List[Conversation]:
    query = session.query(Conversation)
    if client_id:
        query = query.filter(Conversation.client_id == client_id)
    return query.order_by(Conversation.last_message_at.desc()).all()


def get_conversation(session: Session, conversation_id: str) -> Conversation:
    conversation = session.get(Conversation, conversation_id)
    if not conversation:
        raise NotFoundError(f"Conversation {conversation_id} not found.")
    return conversation


def get_or_create_conversation(session: Session, client: Client, channel: str = 'sms') -> Conversation:
    """Return the client's active conversation on a channel, creating it if needed."""
    if channel not in ('sms', 'email'):
        raise ValidationError(f"Unsupported channel '{channel}'.")

    conversation = session.query(Conversation).filter_by(
        client_id=client.id, channel=channel, status='active'
    ).first()
    if conversation:
        return conversation

    try:
        conversation = Conversation(client_id=client.id, channel=channel, unread_count=0)
        session.add(conversation)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    logger.info(f"[SMS] Conversation {conversation.id} opened with client {client.id} ({channel})")
    return conversation


def send_message(
    session: Session,
    conversation_id: str,
    body: str,
    sms_client=None,
    email_sender=None,
) -> Message:
    """
    Send an outbound message on a conversation.

    The message is stored whether or not the provider accepts it; a rejected
    send is stored with status 'failed' and its error text.
    """
    body = (body or '').strip()
    if not body:
        raise ValidationError('Message cannot be empty.')

    conversation = get_conversation(session, conversation_id)
    client = conversation.client

    if conversation.channel == 'sms':
        recipient = client.phone or ''
        if not is_valid_phone(recipient):
            raise ValidationError(f"{client.name} has no valid phone number.")
        recipient = normalize_phone_e164(recipient)
    else:
        recipient = (client.email or '').strip()
        if not is_valid_email(recipient):
            raise ValidationError(f"{client.name} has no valid email address.")

    status, error_message = 'sent', None
    try:
        if conversation.channel == 'sms':
            sms_client = sms_client or SmsClient.from_config(current_app.config)
            sms_client.send(recipient, body)
        else:
            sender = email_sender or email_service.send_message_email
            business = current_app.config.get('BUSINESS_NAME', '') if has_app_context() else ''
            subject = conversation.subject or (f"Message from {business}" if business else 'New message')
            sender(recipient, subject, body)
    except DeliveryError as e:
        status, error_message = 'failed', e.message

    now = _now()
    try:
        message = Message(
            conversation_id=conversation.id,
            direction='outbound',
            body=body,
            recipient=recipient,
            status=status,
            error_message=error_message,
            created_at=now,
        )
        session.add(message)
        conversation.last_message_at = now
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    if status == 'failed':
        logger.warning(f"[SMS] Outbound message on {conversation.id} failed: {error_message}")
    return message


def find_client_by_address(session: Session, address: str, channel: str = 'sms') -> Optional[Client]:
    if channel == 'email':
        return session.query(Client).filter(Client.email.ilike((address or '').strip())).first()

    wanted = normalize_phone_e164(address)
    if not wanted:
        return None
    for client in session.query(Client).filter(Client.phone.isnot(None)).all():
        if normalize_phone_e164(client.phone) == wanted:
            return client
    return None


def record_inbound_message(session: Session, sender: str, body: str, channel: str = 'sms') -> Message:
    """Store a message received from a client (provider webhook)."""
    body = (body or '').strip()
    if not body:
        raise ValidationError('Message cannot be empty.')

    client = find_client_by_address(session, sender, channel)
    if client is None:
        raise NotFoundError(f"No client matches {sender}.")

    conversation = get_or_create_conversation(session, client, channel)
    now = _now()
    try:
        message = Message(
            conversation_id=conversation.id,
            direction='inbound',
            body=body,
            sender=sender,
            status='delivered',
            created_at=now,
        )
        session.add(message)
        conversation.unread_count = (conversation.unread_count or 0) + 1
        conversation.last_message_at = now
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise

    logger.info(f"[SMS] Inbound message from client {client.id} on {conversation.id}")
    return message


def mark_read(session: Session, conversation_id: str) -> Conversation:
    conversation = get_conversation(session, conversation_id)
    try:
        conversation.unread_count = 0
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    return conversation
