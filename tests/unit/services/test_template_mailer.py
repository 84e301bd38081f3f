"""Tests for template rendering and the relay mailer."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from boxoffice.core.errors import PermanentError, TransientError
from boxoffice.repositories.email_templates import EmailTemplate
from boxoffice.services.email import TemplateMailer, render


class TestRender:
    def test_substitutes_placeholders(self):
        assert render("Hi {{first_name}} ({{ order_name }})", {"first_name": "Ada", "order_name": "#1001"}) == (
            "Hi Ada (#1001)"
        )

    def test_unknown_placeholders_left_in_place(self):
        assert render("Hi {{nickname}}", {"first_name": "Ada"}) == "Hi {{nickname}}"

    def test_none_renders_empty(self):
        assert render("Hi {{first_name}}!", {"first_name": None}) == "Hi !"

    def test_empty_template(self):
        assert render(None, {}) == ""


def make_mailer(handler, template=None, relay_url="https://relay.test/send"):
    templates = AsyncMock()
    templates.get.return_value = template
    return TemplateMailer(
        templates,
        relay_url=relay_url,
        relay_token="relay-secret",
        sender="shop@example.com",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


TEMPLATE = EmailTemplate(
    tenant="shop",
    template_key="northern_subscription",
    subject="Welcome {{first_name}}",
    html="<p>Order {{order_name}}</p>",
)


class TestTemplateMailer:
    @pytest.mark.asyncio
    async def test_send(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "msg-1"})

        mailer = make_mailer(handler, TEMPLATE)
        message_id = await mailer.send(
            "shop", "northern_subscription", "ada@example.com",
            {"first_name": "Ada", "order_name": "#1001"},
        )

        assert message_id == "msg-1"
        assert seen["auth"] == "Bearer relay-secret"
        assert seen["body"] == {
            "from": "shop@example.com",
            "to": "ada@example.com",
            "subject": "Welcome Ada",
            "html": "<p>Order #1001</p>",
        }

    @pytest.mark.asyncio
    async def test_missing_template_is_permanent(self):
        mailer = make_mailer(lambda r: httpx.Response(200), template=None)
        with pytest.raises(PermanentError):
            await mailer.send("shop", "northern_subscription", "ada@example.com", {})

    @pytest.mark.asyncio
    async def test_missing_relay_is_permanent(self):
        mailer = make_mailer(lambda r: httpx.Response(200), TEMPLATE, relay_url=None)
        with pytest.raises(PermanentError):
            await mailer.send("shop", "northern_subscription", "ada@example.com", {})

    @pytest.mark.asyncio
    async def test_relay_outage_is_transient(self):
        mailer = make_mailer(lambda r: httpx.Response(503), TEMPLATE)
        with pytest.raises(TransientError):
            await mailer.send("shop", "northern_subscription", "ada@example.com", {})
