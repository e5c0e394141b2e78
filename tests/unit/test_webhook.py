"""Unit tests for pr_relay.webhook."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from pr_relay.webhook import WebhookSender

HOOK = "https://hooks.example.com/services/T/B/X"
BODY = {"text": "There was some activity on a Pull Request", "username": "robot"}


class TestWebhookSender:
    @pytest.mark.asyncio()
    async def test_posts_json(self) -> None:
        with respx.mock() as router:
            route = router.post(HOOK).mock(return_value=httpx.Response(200, text="ok"))
            sender = WebhookSender()
            errors = await sender.send(HOOK, BODY)
            await sender.aclose()

        assert errors == []
        assert route.call_count == 1
        assert json.loads(route.calls[0].request.content) == BODY

    @pytest.mark.asyncio()
    async def test_error_status_is_returned(self) -> None:
        with respx.mock() as router:
            route = router.post(HOOK).mock(
                return_value=httpx.Response(404, text="no_service")
            )
            sender = WebhookSender()
            errors = await sender.send(HOOK, BODY)
            await sender.aclose()

        assert len(errors) == 1
        assert isinstance(errors[0], httpx.HTTPStatusError)
        # Delivery is attempted exactly once
        assert route.call_count == 1

    @pytest.mark.asyncio()
    async def test_transport_error_is_returned(self) -> None:
        with respx.mock() as router:
            router.post(HOOK).mock(side_effect=httpx.ConnectError("refused"))
            sender = WebhookSender()
            errors = await sender.send(HOOK, BODY)
            await sender.aclose()

        assert len(errors) == 1
        assert isinstance(errors[0], httpx.ConnectError)

    @pytest.mark.asyncio()
    async def test_malformed_url_is_returned(self) -> None:
        sender = WebhookSender()
        errors = await sender.send("https://hooks.example.com:notaport/x", BODY)
        await sender.aclose()

        assert len(errors) == 1
        assert isinstance(errors[0], httpx.InvalidURL)
