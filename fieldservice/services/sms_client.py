"""SMS provider API client (Telnyx-compatible messages endpoint)."""
import logging
import requests
from typing import Dict, Any, Optional

from fieldservice.exceptions import DeliveryError
from fieldservice.utils.contact import normalize_phone_e164

logger = logging.getLogger(__name__)


class SmsClient:
    """Client for the outbound SMS HTTP API."""

    DEFAULT_API_URL = "https://api.telnyx.com/v2/messages"

    def __init__(
        self,
        api_key: Optional[str],
        from_number: Optional[str],
        api_url: str = DEFAULT_API_URL,
        timeout: int = 10,
        http=None,
    ):
        """
        Args:
            api_key: Provider API key. When missing the client runs disabled
                and sends are skipped.
            from_number: Sending number, any format (normalised to E.164)
            api_url: Messages endpoint
            timeout: Request timeout in seconds
            http: requests-compatible session (tests pass a fake)
        """
        self.api_key = api_key
        self.from_number = normalize_phone_e164(from_number) if from_number else None
        self.api_url = api_url
        self.timeout = timeout
        self.http = http or requests.Session()

    @classmethod
    def from_config(cls, config) -> 'SmsClient':
        return cls(
            api_key=config.get('SMS_API_KEY'),
            from_number=config.get('SMS_FROM_NUMBER'),
            api_url=config.get('SMS_API_URL', cls.DEFAULT_API_URL),
            timeout=config.get('SMS_TIMEOUT', 10),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.from_number)

    def send(self, to: str, text: str) -> Optional[str]:
        """
        Send a text message.

        Returns:
            Provider message id, or None when SMS is not configured.

        Raises:
            DeliveryError: if the provider rejects the message or cannot be reached
        """
        to_number = normalize_phone_e164(to)
        if not self.enabled:
            logger.warning(f"[SMS DISABLED] Message to {to_number} skipped")
            return None

        payload = {
            "from": self.from_number,
            "to": to_number,
            "text": text,
        }
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json'
        }

        logger.info(f"[SMS] Sending message to {to_number}")

        try:
            response = self.http.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data: Dict[str, Any] = response.json()
        except requests.HTTPError as e:
            detail = self._error_detail(e.response)
            logger.error(f"[SMS] Provider rejected message to {to_number}: {detail}")
            raise DeliveryError(f"SMS could not be delivered: {detail}")
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[SMS] Error sending to {to_number}: {e}")
            raise DeliveryError(f"SMS could not be delivered: {e}")

        message_id = (data.get('data') or {}).get('id')
        logger.info(f"[SMS] Message accepted: {message_id}")
        return message_id

    @staticmethod
    def _error_detail(response) -> str:
        if response is None:
            return 'no response'
        try:
            errors = response.json().get('errors') or []
            if errors:
                return errors[0].get('detail') or errors[0].get('title') or response.text
        except ValueError:
            pass
        return f"HTTP {response.status_code}"
