"""
Webhooks blueprint for the SMS provider.
Receives inbound text messages and files them into client conversations.
"""

import logging
import hmac
import hashlib
from flask import Blueprint, request, jsonify, current_app
from fieldservice.database import get_session
from fieldservice.services.messaging_service import record_inbound_message

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


def verify_sms_signature(request_data: bytes, signature: str) -> bool:
    """HMAC-SHA256 of the raw body. Skipped when no secret is configured."""
    secret = current_app.config.get('SMS_WEBHOOK_SECRET')
    if not secret:
        return True
    if not signature:
        logger.warning("[SMS] Missing X-Signature header on inbound webhook")
        return False

    expected_signature = hmac.new(secret.encode('utf-8'), request_data, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, expected_signature)


def _parse_inbound(data: dict):
    """
    Accepts the provider's event envelope
    ({"data": {"event_type": "message.received", "payload": {"from": {"phone_number": ...}, "text": ...}}})
    or a flat {"from": ..., "body": ...}.
    """
    envelope = data.get('data')
    if isinstance(envelope, dict):
        if envelope.get('event_type') not in (None, 'message.received'):
            return None, None
        payload = envelope.get('payload') or {}
        sender = payload.get('from') or {}
        if isinstance(sender, dict):
            sender = sender.get('phone_number')
        return sender, payload.get('text')
    return data.get('from'), data.get('body') or data.get('text')


@webhooks_bp.route('/sms', methods=['POST'])
def inbound_sms():
    if not verify_sms_signature(request.get_data(), request.headers.get('X-Signature', '')):
        return jsonify({'error': 'Invalid signature'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Empty payload'}), 400

    sender, body = _parse_inbound(data)
    if sender is None and body is None:
        # Delivery receipts and other events are acknowledged and ignored
        return jsonify({'status': 'ignored'}), 200

    message = record_inbound_message(get_session(), sender, body, channel='sms')
    logger.info(f"[SMS] Inbound webhook stored as message {message.id}")
    return jsonify({'status': 'success', 'message_id': message.id}), 201
