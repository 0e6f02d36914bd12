import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Dict, Optional

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from admissions.core.config import settings

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class DeliveryError(Exception):
    """A provider refused or failed to deliver a message"""


class ChannelAdapter(ABC):
    """Uniform sender contract: send(to, subject, body) -> {"mode": ..., "provider_id"?: ...}"""

    name = "base"
    _mock_warned = False

    @property
    def is_mock(self) -> bool:
        return False

    @abstractmethod
    def send(self, to: str, subject: Optional[str], body: str) -> Dict[str, Any]:
        ...

    def _mock_result(self, to: str) -> Dict[str, Any]:
        cls = type(self)
        if not cls._mock_warned:
            logger.warning(f"{self.name} channel is not configured; messages are logged instead of delivered")
            cls._mock_warned = True
        logger.info(f"[mock {self.name}] message to {to}")
        return {"mode": "mock"}


class SesEmailChannel(ChannelAdapter):
    """E-mail over AWS SES"""

    name = "email"

    def __init__(
        self,
        region: Optional[str] = None,
        from_address: Optional[str] = None,
        from_name: Optional[str] = None,
        provider: Optional[str] = None,
        timeout: Optional[float] = None,
        client=None,
    ):
        self.region = region or settings.aws_region
        self.from_address = from_address if from_address is not None else settings.mail_from_address
        self.from_name = from_name or settings.mail_from_name
        self.provider = (provider or settings.email_provider).lower()
        self.timeout = timeout or settings.channel_timeout_seconds
        self._client = client

    @property
    def is_mock(self) -> bool:
        return self.provider == "mock" or not self.from_address

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "ses",
                region_name=self.region,
                config=Config(
                    connect_timeout=self.timeout,
                    read_timeout=self.timeout,
                    retries={"max_attempts": 2},
                ),
            )
        return self._client

    def send(self, to: str, subject: Optional[str], body: str) -> Dict[str, Any]:
        if self.is_mock:
            return self._mock_result(to)

        try:
            response = self.client.send_email(
                Source=f"{self.from_name} <{self.from_address}>",
                Destination={"ToAddresses": [to]},
                Message={
                    "Subject": {"Data": subject or "", "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise DeliveryError(f"SES send_email failed: {e}") from e

        return {"mode": "ses", "provider_id": response.get("MessageId")}


class TwilioWhatsAppChannel(ChannelAdapter):
    """WhatsApp over the Twilio Messages REST API"""

    name = "whatsapp"

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        provider: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self.auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self.from_number = from_number if from_number is not None else settings.twilio_whatsapp_from
        self.provider = (provider or settings.whatsapp_provider).lower()
        self.timeout = timeout or settings.channel_timeout_seconds
        self.session = session or requests.Session()

    @property
    def is_mock(self) -> bool:
        return self.provider == "mock" or not (self.account_sid and self.auth_token and self.from_number)

    @staticmethod
    def _whatsapp_address(number: str) -> str:
        return number if number.startswith("whatsapp:") else f"whatsapp:{number}"

    def send(self, to: str, subject: Optional[str], body: str) -> Dict[str, Any]:
        if self.is_mock:
            return self._mock_result(to)

        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"
        try:
            resp = self.session.post(
                url,
                data={
                    "From": self._whatsapp_address(self.from_number),
                    "To": self._whatsapp_address(to),
                    "Body": body,
                },
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise DeliveryError(f"Twilio WhatsApp send failed: {e}") from e

        # accepted by Twilio; an unreadable body only loses the message sid
        try:
            provider_id = resp.json().get("sid")
        except ValueError:
            logger.warning(f"Twilio accepted a message to {to} but returned a non-JSON body")
            provider_id = None
        return {"mode": "twilio", "provider_id": provider_id}


class ChannelRegistry:
    """Maps a stored message channel to the adapter that delivers it"""

    def __init__(self, email: Optional[ChannelAdapter] = None, whatsapp: Optional[ChannelAdapter] = None):
        self.email = email or SesEmailChannel()
        self.whatsapp = whatsapp or TwilioWhatsAppChannel()

    def for_channel(self, channel: str) -> ChannelAdapter:
        if channel == "email":
            return self.email
        # `sms` rows are delivered over WhatsApp
        return self.whatsapp


@lru_cache()
def get_channel_registry() -> ChannelRegistry:
    return ChannelRegistry()
