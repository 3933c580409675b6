"""Hand-off to the invoice and confirmation email collaborator."""

from typing import Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


class ConfirmationNotifier(Protocol):
    async def notify(self, payment_intent_id: str) -> None: ...


class HttpConfirmationNotifier:
    """POSTs {"paymentIntentId": ...} to the confirmation endpoint."""

    def __init__(self, http_client: httpx.AsyncClient, url: str, timeout: float = 10.0):
        self.http_client = http_client
        self.url = url
        self.timeout = timeout

    async def notify(self, payment_intent_id: str) -> None:
        response = await self.http_client.post(
            self.url,
            json={"paymentIntentId": payment_intent_id},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info(
            "confirmation_dispatched",
            payment_id=payment_intent_id,
            status_code=response.status_code,
        )


class LoggingConfirmationNotifier:
    """Used when no confirmation endpoint is configured."""

    async def notify(self, payment_intent_id: str) -> None:
        logger.info("confirmation_skipped", payment_id=payment_intent_id)
