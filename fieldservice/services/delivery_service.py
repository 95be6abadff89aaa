"""
Delivery service: sends an estimate or invoice to a client by email or SMS.

Every attempt is logged as a DocumentCommunication row (pending -> sent |
failed). Attempts are keyed by an idempotency key so a retried request for a
send that already went out returns the earlier result instead of delivering
twice.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fieldservice.blueprints.metrics import record_document_sent
from fieldservice.database import get_session
from fieldservice.exceptions import DeliveryError, FieldServiceError
from fieldservice.models import DocumentCommunication, Job
from fieldservice.services import email_service
from fieldservice.services.document_service import (
    get_document, invalidate_client_dashboard, load_document, mark_document_sent,
)
from fieldservice.services.pdf_service import render_document_pdf, pdf_filename
from fieldservice.services.sms_client import SmsClient
from fieldservice.utils.contact import is_valid_email, is_valid_phone, normalize_phone_e164

logger = logging.getLogger(__name__)

CHANNELS = ('email', 'sms')


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'success': self.success, 'data': self.data, 'error': self.error}


def business_info_from_config(config) -> Dict[str, Any]:
    return {
        'name': config.get('BUSINESS_NAME', ''),
        'address': config.get('BUSINESS_ADDRESS', ''),
        'phone': config.get('BUSINESS_PHONE', ''),
        'email': config.get('BUSINESS_EMAIL', ''),
    }


class DeliveryService:
    """
    Sends documents through the configured transports.

    Transports are injectable: `email_sender(to, subject, body, attachment,
    filename)` and an object with `send(to, text)` for SMS. Both return a
    provider message id (or None) and raise DeliveryError on failure.
    """

    def __init__(
        self,
        session_factory=get_session,
        email_sender: Optional[Callable[..., Optional[str]]] = None,
        sms_client=None,
        business_info: Optional[Dict[str, Any]] = None,
    ):
        self._session_factory = session_factory
        self._email_sender = email_sender or email_service.send_document_email
        self._sms_client = sms_client
        self._business_info = business_info

    @property
    def business_info(self) -> Dict[str, Any]:
        if self._business_info is None and has_app_context():
            return business_info_from_config(current_app.config)
        return self._business_info or {}

    @property
    def sms_client(self):
        if self._sms_client is None:
            self._sms_client = SmsClient.from_config(current_app.config)
        return self._sms_client

    def deliver(
        self,
        document_type: str,
        document_id: str,
        channel: str,
        recipient: str,
        message: str,
        idempotency_key: str,
        subject: Optional[str] = None,
    ) -> DeliveryResult:
        """Send a document. Never raises for delivery problems; the result carries the error."""
        recipient = (recipient or '').strip()
        if channel not in CHANNELS:
            return DeliveryResult(False, error=f"Unsupported channel '{channel}'.")
        if channel == 'email' and not is_valid_email(recipient):
            return DeliveryResult(False, error='Please enter a valid email address.')
        if channel == 'sms' and not is_valid_phone(recipient):
            return DeliveryResult(False, error='Please enter a valid phone number.')
        if not idempotency_key:
            return DeliveryResult(False, error='Missing idempotency key.')

        session = self._session_factory()

        try:
            existing = session.query(DocumentCommunication).filter_by(idempotency_key=idempotency_key).first()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[SEND] Could not look up send {idempotency_key}: {e}")
            return DeliveryResult(False, error='Could not record the send. Please try again.')
        if existing is not None:
            if existing.status == 'sent':
                logger.info(f"[SEND] Duplicate request for key {idempotency_key}; already sent")
                record_document_sent(document_type, channel, 'deduplicated')
                return DeliveryResult(True, data=self._result_data(existing, deduplicated=True))
            if existing.status == 'pending':
                return DeliveryResult(False, error='This send is already in progress.')
            # failed: retry on the same row
            communication = existing
        else:
            communication = None

        try:
            document = load_document(session, document_type, document_id)
        except FieldServiceError as e:
            return DeliveryResult(False, error=e.message)

        if communication is None:
            communication = DocumentCommunication(
                document_type=document_type,
                document_id=document_id,
                channel=channel,
                recipient=recipient,
                idempotency_key=idempotency_key,
            )
            session.add(communication)
        communication.status = 'pending'
        communication.error_message = None
        communication.content = message
        communication.subject = subject or self._default_subject(document)

        try:
            session.commit()
        except IntegrityError:
            # Another request inserted the same key first
            session.rollback()
            return DeliveryResult(False, error='This send is already in progress.')
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[SEND] Could not record send of {document.number}: {e}")
            return DeliveryResult(False, error='Could not record the send. Please try again.')

        try:
            provider_id = self._send(document, channel, recipient, message, communication.subject)
        except DeliveryError as e:
            logger.warning(f"[SEND] {document.number} via {channel} to {recipient} failed: {e.message}")
            return self._failed(session, communication, document_type, channel, e.message)
        except Exception as e:
            if isinstance(e, SQLAlchemyError):
                session.rollback()
            logger.exception(f"[SEND] Unexpected error sending {document.number} via {channel}: {e}")
            return self._failed(session, communication, document_type, channel,
                                f"Could not send the {document_type}. Please try again.")

        try:
            communication.status = 'sent'
            communication.provider_message_id = provider_id
            communication.sent_at = datetime.now(timezone.utc)
            mark_document_sent(session, get_document(session, document_type, document_id))
            session.commit()
            invalidate_client_dashboard(session, document.job_id)
        except SQLAlchemyError as e:
            # The message went out; only the bookkeeping failed
            session.rollback()
            logger.error(f"[SEND] {document.number} delivered but status update failed: {e}")

        record_document_sent(document_type, channel, 'sent')
        logger.info(f"[SEND] {document.number} sent via {channel} to {recipient}")
        return DeliveryResult(True, data=self._result_data(communication))

    def _failed(self, session, communication, document_type, channel, error) -> DeliveryResult:
        """Mark the attempt failed so a retry with the same key sends again."""
        try:
            communication.status = 'failed'
            communication.error_message = error
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[SEND] Could not mark send {communication.idempotency_key} as failed: {e}")
        record_document_sent(document_type, channel, 'failed')
        return DeliveryResult(False, data=self._result_data(communication), error=error)

    def _send(self, document, channel, recipient, message, subject) -> Optional[str]:
        if channel == 'email':
            pdf = render_document_pdf(document, self.business_info, self._client_info(document))
            return self._email_sender(recipient, subject, message, pdf.getvalue(), pdf_filename(document))
        return self.sms_client.send(normalize_phone_e164(recipient), message)

    def _client_info(self, document) -> Dict[str, Any]:
        job = self._session_factory().get(Job, document.job_id)
        if not job or not job.client:
            return {}
        return {'name': job.client.name, 'address': job.client.address or job.address}

    def _default_subject(self, document) -> str:
        kind = document.document_type.capitalize()
        name = self.business_info.get('name')
        return f"{kind} {document.number} from {name}" if name else f"{kind} {document.number}"

    @staticmethod
    def _result_data(communication, deduplicated: bool = False) -> Dict[str, Any]:
        return {
            'communication_id': communication.id,
            'document_id': communication.document_id,
            'channel': communication.channel,
            'recipient': communication.recipient,
            'status': communication.status,
            'deduplicated': deduplicated,
        }
