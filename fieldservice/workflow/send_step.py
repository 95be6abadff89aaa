"""Final step of the document dialog: choose a channel and recipient, then deliver."""
import hashlib
import logging
import uuid
from typing import Any, Dict, Optional

from fieldservice.exceptions import ValidationError
from fieldservice.utils.contact import is_valid_email, is_valid_phone, EMAIL_MAX_LENGTH
from fieldservice.utils.formatters import format_amount

logger = logging.getLogger(__name__)

CHANNELS = ('email', 'sms')

DEFAULT_MESSAGE = "Hi {name}! Your {kind} {number} is ready. Total: ${total}."


class SendDocumentStep:
    """
    Holds what the user typed (channel, recipient, message) and performs the
    send: re-save through the builder, then deliver.

    Each dialog gets its own step, and each distinct (channel, recipient,
    message) within it maps to one idempotency key, so pressing send again
    after a timeout cannot deliver the same thing twice.
    """

    def __init__(self, workflow, delivery):
        self.workflow = workflow
        self.delivery = delivery
        self._nonce = uuid.uuid4().hex
        client = workflow.client_info or {}
        self.channel = 'email' if client.get('email') or not client.get('phone') else 'sms'
        self.recipient = self._default_recipient(self.channel)
        self.message: Optional[str] = None
        self.error: Optional[str] = None
        self.is_sending = False
        self.result = None

    @property
    def builder(self):
        return self.workflow.builder

    def _default_recipient(self, channel: str) -> str:
        client = self.workflow.client_info or {}
        return (client.get('email') if channel == 'email' else client.get('phone')) or ''

    def configure(self, channel: Optional[str] = None, recipient: Optional[str] = None,
                  message: Optional[str] = None) -> None:
        """Update the form. Switching channel without a recipient picks the client's address for it."""
        if channel is not None:
            if channel not in CHANNELS:
                raise ValidationError(f"Unsupported channel '{channel}'.")
            if channel != self.channel and recipient is None:
                self.recipient = self._default_recipient(channel)
            self.channel = channel
        if recipient is not None:
            self.recipient = recipient
        if message is not None:
            self.message = message
        self.error = None

    def default_message(self) -> str:
        client_name = (self.workflow.client_info or {}).get('name') or 'there'
        return DEFAULT_MESSAGE.format(
            name=client_name,
            kind=self.builder.document_type,
            number=self.builder.number or '',
            total=format_amount(self.builder.totals().total),
        )

    def effective_message(self) -> str:
        return self.message if self.message and self.message.strip() else self.default_message()

    def validate(self) -> bool:
        """Check the recipient for the chosen channel. On failure `error` is set; input is kept."""
        recipient = (self.recipient or '').strip()
        if self.channel == 'email':
            if not recipient:
                self.error = 'Please enter an email address.'
            elif len(recipient) > EMAIL_MAX_LENGTH or not is_valid_email(recipient):
                self.error = 'Please enter a valid email address.'
            else:
                self.error = None
        else:
            if not recipient:
                self.error = 'Please enter a phone number.'
            elif not is_valid_phone(recipient):
                self.error = 'Please enter a valid phone number (at least 10 digits).'
            else:
                self.error = None
        return self.error is None

    def validate_items(self) -> bool:
        """Every line needs a description before the document can go out."""
        for position, item in enumerate(self.builder.items, start=1):
            if not (item.description or '').strip():
                self.error = f"Line {position} needs a description before sending."
                return False
        return True

    def idempotency_key(self, message: Optional[str] = None) -> str:
        """Stable for the same intent within this dialog; changes when channel, recipient or message change."""
        message = self.effective_message() if message is None else message
        intent = "|".join([
            self._nonce,
            self.builder.document_type,
            self.builder.document_id or '',
            self.channel,
            (self.recipient or '').strip().lower(),
            message,
        ])
        return hashlib.sha256(intent.encode('utf-8')).hexdigest()

    def send(self) -> bool:
        """
        Save the document, then deliver it. Returns True when delivered; the
        workflow is then complete. On failure the step stays open with `error` set.
        """
        if self.is_sending:
            return False
        if self.workflow.closed:
            self.error = 'This dialog has been closed.'
            return False
        if not self.validate() or not self.validate_items():
            self.builder.notifier.error(self.error)
            return False

        self.is_sending = True
        try:
            saved = self.builder.save()
            if saved is None:
                last_error = self.builder.last_error
                self.error = last_error.message if last_error else 'Could not save the document before sending.'
                return False

            message = self.effective_message()
            result = self.delivery.deliver(
                document_type=saved.document_type,
                document_id=saved.id,
                channel=self.channel,
                recipient=self.recipient.strip(),
                message=message,
                idempotency_key=self.idempotency_key(message),
            )
            self.result = result
            if not result.success:
                self.error = result.error or 'Delivery failed.'
                self.builder.notifier.error(f"Could not send {saved.document_type} {saved.number}: {self.error}")
                return False

            self.error = None
            destination = 'email' if self.channel == 'email' else 'text message'
            self.builder.notifier.success(
                f"{self.builder.label} {saved.number} sent by {destination} to {self.recipient.strip()}"
            )
            self.workflow.complete()
            return True
        except Exception as e:
            logger.exception(f"[SEND] Unexpected error sending {self.builder.document_type} {self.builder.number}: {e}")
            self.error = 'Something went wrong while sending. Please try again.'
            self.builder.notifier.error(self.error)
            return False
        finally:
            self.is_sending = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channel': self.channel,
            'recipient': self.recipient,
            'message': self.message,
            'default_message': self.default_message(),
            'error': self.error,
            'is_sending': self.is_sending,
            'result': self.result.to_dict() if self.result else None,
        }
