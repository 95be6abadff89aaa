"""Conversations blueprint: client messaging threads."""
from flask import Blueprint, jsonify, request, current_app

from fieldservice.database import get_session
from fieldservice.exceptions import NotFoundError
from fieldservice.messaging import ConversationList
from fieldservice.models import Client
from fieldservice.services.messaging_service import (
    get_conversation,
    get_or_create_conversation,
    send_message,
    mark_read,
)

conversations_bp = Blueprint('conversations', __name__, url_prefix='/conversations')


def _conversation_list() -> ConversationList:
    return current_app.extensions['conversation_list']


def _message_dict(message) -> dict:
    return {
        'id': message.id,
        'conversation_id': message.conversation_id,
        'direction': message.direction,
        'body': message.body,
        'status': message.status,
        'error_message': message.error_message,
        'created_at': message.created_at.isoformat() if message.created_at else None,
    }


@conversations_bp.route('/')
def list_conversations():
    """Conversations, most recent first. Optional ?client_id= narrows to one client."""
    client_id = request.args.get('client_id')
    if client_id:
        conversations = ConversationList(session_factory=get_session, client_id=client_id)
        conversations.refresh()
        items = conversations.to_dict()
    else:
        conversations = _conversation_list()
        conversations.poll_if_due()
        items = conversations.to_dict()
    return jsonify({'status': 'success', 'conversations': items})


@conversations_bp.route('/', methods=['POST'])
def start_conversation():
    """Body: {"client_id": ..., "channel": "sms"|"email"}"""
    data = request.get_json(silent=True) or {}
    session = get_session()
    client = session.get(Client, data.get('client_id'))
    if not client:
        raise NotFoundError(f"Client {data.get('client_id')} not found.")
    conversation = get_or_create_conversation(session, client, data.get('channel') or 'sms')
    return jsonify({'status': 'success', 'conversation_id': conversation.id}), 201


@conversations_bp.route('/<conversation_id>/messages')
def messages(conversation_id):
    session = get_session()
    conversation = get_conversation(session, conversation_id)
    return jsonify({
        'status': 'success',
        'conversation_id': conversation.id,
        'unread_count': conversation.unread_count,
        'messages': [_message_dict(m) for m in conversation.messages],
    })


@conversations_bp.route('/<conversation_id>/messages', methods=['POST'])
def post_message(conversation_id):
    """Body: {"body": "..."}. Responds 502 when the provider rejected the message (it is still stored)."""
    data = request.get_json(silent=True) or {}
    delivery = current_app.extensions['delivery_service']
    message = send_message(
        get_session(),
        conversation_id,
        data.get('body'),
        sms_client=delivery.sms_client,
    )
    status_code = 502 if message.status == 'failed' else 201
    return jsonify({
        'status': 'success' if status_code == 201 else 'error',
        'message': _message_dict(message),
    }), status_code


@conversations_bp.route('/<conversation_id>/read', methods=['POST'])
def read(conversation_id):
    conversation = mark_read(get_session(), conversation_id)
    return jsonify({'status': 'success', 'conversation_id': conversation.id, 'unread_count': 0})
