"""Post-checkout notification sinks for the customer's originating channel."""

from __future__ import annotations

from typing import Any, Protocol

import httpx
from loguru import logger

from loyalty_api.core.settings import settings


class CheckoutNotifier(Protocol):
    """Best-effort delivery of a committed checkout to the customer channel."""

    async def notify(self, subject_identity: str, summary: dict[str, Any]) -> None:
        ...


class WebhookCheckoutNotifier:
    """POSTs the checkout summary to the bot's internal notify endpoint."""

    def __init__(
        self,
        *,
        url: str | None = None,
        timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url if url is not None else settings.checkout_notify_url
        self._timeout = timeout_seconds or settings.checkout_notify_timeout_seconds
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self._url)

    async def notify(self, subject_identity: str, summary: dict[str, Any]) -> None:
        if not self._url:
            logger.debug("Checkout notify URL not configured; skipping", subject_identity=subject_identity)
            return

        payload = {"subjectIdentity": subject_identity, **summary}

        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout)
            close_client = True

        try:
            response = await client.post(self._url, json=payload)
            response.raise_for_status()
        finally:
            if close_client:
                await client.aclose()


__all__ = ["CheckoutNotifier", "WebhookCheckoutNotifier"]
