"""Tests for notification dispatch."""

import asyncio
import json
import pytest
import httpx

from arrears_reconciler.exceptions import NotificationDispatchError
from arrears_reconciler.reconciliation import (
    HttpNotifier,
    LoggingNotifier,
    Notification,
    NotificationOutbox,
    get_notifier,
)

DISPATCH_URL = "https://notify.example.com/dispatch"


@pytest.fixture
def notification():
    return Notification(
        user_id="tenant-1",
        type="arrears_resolved",
        title="Arrears Resolved",
        body="Your arrears for 12 Smith St have been cleared. Thank you for your payment.",
        data={"tenant_name": "", "property_address": "12 Smith St", "amount": "$350.00"},
        related_type="arrears_record",
        related_id="rec-1",
    )


def make_notifier(handler, max_retries=3):
    return HttpNotifier(
        url=DISPATCH_URL,
        token="dispatch-token",
        max_retries=max_retries,
        retry_delay=0,
        transport=httpx.MockTransport(handler),
    )


class TestHttpNotifier:
    """Tests for HttpNotifier."""

    async def test_posts_payload(self, notification):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        await make_notifier(handler).send(notification)

        assert len(requests) == 1
        request = requests[0]
        assert str(request.url) == DISPATCH_URL
        assert request.headers["Authorization"] == "Bearer dispatch-token"
        payload = json.loads(request.content)
        assert payload["user_id"] == "tenant-1"
        assert payload["type"] == "arrears_resolved"
        assert payload["channels"] == ["push", "email"]
        assert payload["related_type"] == "arrears_record"
        assert payload["related_id"] == "rec-1"

    async def test_retries_server_errors(self, notification):
        statuses = iter([503, 500, 200])

        def handler(request):
            return httpx.Response(next(statuses))

        await make_notifier(handler).send(notification)

    async def test_retries_transport_errors(self, notification):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            if calls["count"] == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        await make_notifier(handler).send(notification)
        assert calls["count"] == 2

    async def test_client_error_not_retried(self, notification):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            return httpx.Response(400, json={"error": "bad payload"})

        with pytest.raises(NotificationDispatchError) as exc_info:
            await make_notifier(handler).send(notification)

        assert calls["count"] == 1
        assert "400" in exc_info.value.message

    async def test_rate_limited_is_retried(self, notification):
        statuses = iter([429, 200])

        def handler(request):
            return httpx.Response(next(statuses))

        await make_notifier(handler).send(notification)

    async def test_gives_up_after_max_retries(self, notification):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            return httpx.Response(502)

        with pytest.raises(NotificationDispatchError) as exc_info:
            await make_notifier(handler, max_retries=2).send(notification)

        assert calls["count"] == 2
        assert isinstance(exc_info.value.original_error, httpx.HTTPStatusError)

    def test_rejects_zero_retries(self):
        with pytest.raises(ValueError):
            HttpNotifier(url=DISPATCH_URL, max_retries=0)


class TestGetNotifier:
    """Tests for environment based notifier selection."""

    def test_logging_notifier_without_url(self, monkeypatch):
        monkeypatch.delenv("NOTIFICATION_DISPATCH_URL", raising=False)
        assert isinstance(get_notifier(), LoggingNotifier)

    def test_http_notifier_with_url(self, monkeypatch):
        monkeypatch.setenv("NOTIFICATION_DISPATCH_URL", DISPATCH_URL)
        monkeypatch.setenv("NOTIFICATION_DISPATCH_TOKEN", "secret")
        monkeypatch.setenv("NOTIFICATION_MAX_RETRIES", "5")

        notifier = get_notifier()

        assert isinstance(notifier, HttpNotifier)
        assert notifier.url == DISPATCH_URL
        assert notifier.token == "secret"
        assert notifier.max_retries == 5


class TestNotificationOutbox:
    """Tests for NotificationOutbox."""

    async def test_delivers_queued_notifications(self, notification, notifier):
        outbox = NotificationOutbox(notifier)

        outbox.enqueue(notification)
        outbox.enqueue(notification)
        await outbox.drain()

        assert len(notifier.sent) == 2
        assert outbox.sent == 2
        assert outbox.failed == 0
        assert outbox.pending == 0

    async def test_failures_are_counted_not_raised(self, notification, failing_notifier):
        outbox = NotificationOutbox(failing_notifier)

        outbox.enqueue(notification)
        await outbox.drain()

        assert outbox.sent == 0
        assert outbox.failed == 1

    async def test_drain_cancels_slow_deliveries(self, notification):
        class SlowNotifier(LoggingNotifier):
            async def send(self, notification):
                await asyncio.sleep(5)

        outbox = NotificationOutbox(SlowNotifier(), drain_timeout=0.05)

        task = outbox.enqueue(notification)
        await outbox.drain()
        await asyncio.gather(task, return_exceptions=True)

        assert outbox.failed == 1
        assert task.cancelled()

    async def test_drain_without_deliveries(self, notifier):
        outbox = NotificationOutbox(notifier)
        await outbox.drain()
        assert outbox.sent == 0

    async def test_cancel_pending_stops_in_flight_deliveries(self, notification):
        class SlowNotifier(LoggingNotifier):
            async def send(self, notification):
                await asyncio.sleep(5)

        outbox = NotificationOutbox(SlowNotifier())

        first = outbox.enqueue(notification)
        second = outbox.enqueue(notification)
        await asyncio.sleep(0)
        cancelled = await outbox.cancel_pending()

        assert cancelled == 2
        assert first.cancelled() and second.cancelled()
        assert outbox.failed == 2
        assert outbox.sent == 0

    async def test_cancel_pending_after_drain_is_noop(self, notification, notifier):
        outbox = NotificationOutbox(notifier)

        outbox.enqueue(notification)
        await outbox.drain()

        assert await outbox.cancel_pending() == 0
        assert outbox.sent == 1
        assert outbox.failed == 0
