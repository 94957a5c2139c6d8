import asyncio
import json

import httpx
import pytest

from checkin_app.config import settings
from checkin_app.services.notify_service import WebhookNotifier

WEBHOOK = "https://hooks.example.test/flow"


@pytest.fixture
def webhook(monkeypatch):
    monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", WEBHOOK)


def test_notify_posts_payload(webhook):
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))
    asyncio.run(notifier.notify({"type": "check-in", "email": "a@litmers.com"}))
    assert received == [{"type": "check-in", "email": "a@litmers.com"}]


def test_notify_failure_is_swallowed(webhook):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))
    asyncio.run(notifier.notify({"type": "checkout"}))


def test_notify_without_webhook_is_skipped():
    def handler(request):
        raise AssertionError("no request expected")

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))
    asyncio.run(notifier.notify({"type": "checkout"}))
    assert asyncio.run(notifier.validate_user("a@litmers.com")) is None


def test_validate_user_verdicts(webhook):
    def handler(request):
        body = json.loads(request.content)
        assert body["type"] == "validate-user"
        if body["email"] == "a@litmers.com":
            return httpx.Response(200, json={"valid": True, "name": "Alice"})
        if body["email"] == "ghost@litmers.com":
            return httpx.Response(200, json={"valid": False})
        if body["email"] == "odd@litmers.com":
            return httpx.Response(200, text="ok")
        return httpx.Response(502)

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))
    assert asyncio.run(notifier.validate_user("a@litmers.com")) == {"valid": True, "name": "Alice"}
    assert asyncio.run(notifier.validate_user("ghost@litmers.com")) == {"valid": False, "name": None}
    assert asyncio.run(notifier.validate_user("odd@litmers.com")) is None
    assert asyncio.run(notifier.validate_user("down@litmers.com")) is None
