"""Chat webhook delivery."""

from __future__ import annotations

from typing import Any

import httpx


class WebhookSender:
    """POST JSON bodies to an incoming-webhook URL.

    Mirrors the contract of the common Slack webhook helpers: ``send``
    never raises for delivery problems, including a malformed configured
    URL, and returns the errors it hit instead, an empty list meaning
    success.
    """

    def __init__(
        self, timeout: float = 5.0, client: httpx.AsyncClient | None = None
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, url: str, payload: dict[str, Any]) -> list[Exception]:
        errors: list[Exception] = []
        try:
            response = await self._client.post(url, json=payload)
            response.raise_for_status()
        except Exception as exc:
            errors.append(exc)
        return errors
