# medscan/services/messaging.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from medscan.config import Settings
from medscan.errors import ConfigurationError, DeliveryError
from medscan.intake.schema import ServiceType
from medscan.logging_config import mask_phone
from medscan.services.policy import call_with_policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryReceipt:
    recipient: str
    message_id: str
    document_url: str


def normalize_recipient(phone_number: str, country_code: str = "91") -> str:
    """
    Digits only, with the country code prefixed onto local numbers.

    "98765 43210" -> "+919876543210"
    """
    digits = re.sub(r"\D", "", phone_number or "")
    if not digits:
        raise DeliveryError("Recipient phone number is empty")
    if len(digits) == 10:
        digits = f"{country_code}{digits}"
    return f"+{digits}"


def build_caption(patient_name: str, score: int, service_type: ServiceType) -> str:
    return (
        "📋 *MedAnalysis Report*\n\n"
        f"👤 *Patient:* {patient_name}\n"
        f"📊 *Score:* {score}/100\n"
        f"🔍 *Service:* {service_type.label}\n\n"
        "Thank you for using our service!"
    )


class WhatsAppClient:
    """
    Sends documents through the WhatsApp Cloud API.
    """

    def __init__(
        self,
        api_url: str,
        phone_number_id: Optional[str],
        access_token: Optional[str],
        *,
        country_code: str = "91",
        timeout: float = 20.0,
        retries: int = 1,
        backoff: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.country_code = country_code
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "WhatsAppClient":
        return cls(
            settings.whatsapp_api_url,
            settings.whatsapp_phone_number_id,
            settings.whatsapp_access_token,
            country_code=settings.default_country_code,
            timeout=settings.delivery_timeout_seconds,
            retries=settings.retry_attempts,
            backoff=settings.retry_backoff_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    async def send_document(
        self,
        recipient_phone: str,
        document_url: str,
        caption: str,
        file_name: str,
    ) -> DeliveryReceipt:
        if not self.is_configured:
            raise ConfigurationError("WhatsApp delivery is not configured")

        recipient = normalize_recipient(recipient_phone, self.country_code)
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "document",
            "document": {
                "link": document_url,
                "caption": caption,
                "filename": file_name,
            },
        }

        data = await call_with_policy(
            lambda: self._post(payload),
            label="WhatsApp send",
            error_cls=DeliveryError,
            timeout=self.timeout,
            retries=self.retries,
            backoff=self.backoff,
        )

        try:
            message_id = data["messages"][0]["id"]
        except (KeyError, IndexError, TypeError):
            raise DeliveryError(f"Unexpected WhatsApp response: {data!r}") from None

        logger.info("Sent %s to %s (message %s)", file_name, mask_phone(recipient), message_id)
        return DeliveryReceipt(recipient=recipient, message_id=message_id, document_url=document_url)

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.api_url}/{self.phone_number_id}/messages"
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            response = await client.post(
                url,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
            if response.status_code >= 400:
                logger.warning("WhatsApp error: %s - %s", response.status_code, response.text)
            response.raise_for_status()
            return response.json()
