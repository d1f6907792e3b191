from __future__ import annotations

from typing import Optional

import httpx
from loguru import logger

from .. import schemas


def sanitize_text(text: str) -> str:
    # drop control characters except newlines and tabs
    cleaned = "".join(ch for ch in text if ch in "\n\t" or ord(ch) >= 32)
    return cleaned.strip() or "Comando processado com sucesso"


class EvolutionClient:
    """Outbound calls to an Evolution API instance."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        instance_name: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = "".join(ch for ch in (api_key or "").strip() if 32 <= ord(ch) <= 126)
        self.instance_name = instance_name
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_integration(
        cls, integration: schemas.WhatsappIntegration, timeout: float = 10.0
    ) -> "EvolutionClient":
        return cls(
            api_url=integration.api_url,
            api_key=integration.api_key,
            instance_name=integration.instance_name,
            timeout=timeout,
        )

    def send_text(self, number: str, text: str) -> bool:
        url = f"{self.api_url}/message/sendText/{self.instance_name}"
        payload = {"number": number, "text": sanitize_text(text)}
        headers = {"Content-Type": "application/json; charset=utf-8", "apikey": self.api_key}

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("WhatsApp send failed", number=number, error=str(exc))
            return False

        if response.is_success:
            logger.info("WhatsApp message sent", number=number, status=response.status_code)
            return True
        logger.error("WhatsApp send rejected", number=number, status=response.status_code, body=response.text[:200])
        return False
