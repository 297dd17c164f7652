"""Tests for alert escalation and webhook delivery."""

import json
import socket

import httpx
import pytest

from stallguard.alerts import AlertState, AlertThrottle, WebhookNotifier

WEBHOOK_URL = "https://discord.test/api/webhooks/1/abc"


@pytest.fixture
def alert_state() -> AlertState:
    return AlertState(warning_text="worker restarted", critical_text="worker keeps failing")


@pytest.fixture
def throttle(alert_state, fake_notifier) -> AlertThrottle:
    return AlertThrottle(alert_state, fake_notifier, hostname="node-7")


class TestAlertThrottle:
    @pytest.mark.asyncio
    async def test_first_alert_is_warning(self, throttle, fake_notifier, alert_state):
        await throttle.notify()
        assert fake_notifier.messages == ["hostname: node-7 - worker restarted [1]"]
        assert alert_state.consecutive_failure_count == 1

    @pytest.mark.asyncio
    async def test_three_warnings_then_critical(self, throttle, fake_notifier, alert_state):
        for _ in range(4):
            await throttle.notify()

        assert fake_notifier.messages == [
            "hostname: node-7 - worker restarted [1]",
            "hostname: node-7 - worker restarted [2]",
            "hostname: node-7 - worker restarted [3]",
            "hostname: node-7 - worker keeps failing",
        ]
        assert alert_state.consecutive_failure_count == 0

    @pytest.mark.asyncio
    async def test_cycle_restarts_after_critical(self, throttle, fake_notifier):
        for _ in range(5):
            await throttle.notify()
        assert fake_notifier.messages[4] == "hostname: node-7 - worker restarted [1]"

    @pytest.mark.asyncio
    async def test_two_full_cycles(self, throttle, fake_notifier):
        for _ in range(8):
            await throttle.notify()
        critical = [m for m in fake_notifier.messages if "keeps failing" in m]
        assert len(critical) == 2
        assert fake_notifier.messages.index(critical[0]) == 3
        assert fake_notifier.messages[7] == critical[1]

    @pytest.mark.asyncio
    async def test_failed_delivery_still_advances(self, throttle, fake_notifier, alert_state):
        fake_notifier.result = False
        assert await throttle.notify() is False
        assert alert_state.consecutive_failure_count == 1

        alert_state.consecutive_failure_count = 3
        assert await throttle.notify() is False
        assert alert_state.consecutive_failure_count == 0

    @pytest.mark.asyncio
    async def test_raising_notifier_still_advances(self, alert_state):
        class BrokenNotifier:
            async def deliver(self, content: str) -> bool:
                raise RuntimeError("webhook client exploded")

        t = AlertThrottle(alert_state, BrokenNotifier(), hostname="node-7")
        assert await t.notify() is False
        assert alert_state.consecutive_failure_count == 1

        alert_state.consecutive_failure_count = 3
        assert await t.notify() is False
        assert alert_state.consecutive_failure_count == 0

    def test_compose_does_not_mutate(self, throttle, alert_state):
        message, critical = throttle.compose()
        assert critical is False
        assert message.endswith("[1]")
        assert alert_state.consecutive_failure_count == 0

    def test_hostname_defaults_to_machine(self, alert_state, fake_notifier):
        t = AlertThrottle(alert_state, fake_notifier)
        assert t.hostname == socket.gethostname()


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_content_json(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        notifier = WebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))
        assert await notifier.deliver("hello") is True

        assert len(seen) == 1
        assert seen[0].method == "POST"
        assert str(seen[0].url) == WEBHOOK_URL
        assert seen[0].headers["content-type"] == "application/json"
        assert json.loads(seen[0].content) == {"content": "hello"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [200, 400, 404, 429, 500])
    async def test_non_204_is_failure(self, status):
        notifier = WebhookNotifier(
            WEBHOOK_URL, transport=httpx.MockTransport(lambda r: httpx.Response(status))
        )
        assert await notifier.deliver("hello") is False

    @pytest.mark.asyncio
    async def test_connection_error_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        notifier = WebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))
        assert await notifier.deliver("hello") is False

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        notifier = WebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))
        assert await notifier.deliver("hello") is False

    @pytest.mark.asyncio
    async def test_unparseable_url_is_failure(self):
        notifier = WebhookNotifier(
            "https://host:notaport/x",
            transport=httpx.MockTransport(lambda r: httpx.Response(204)),
        )
        assert await notifier.deliver("hello") is False

    @pytest.mark.asyncio
    async def test_throttle_over_webhook(self, alert_state):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content)["content"])
            return httpx.Response(204)

        notifier = WebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))
        throttle = AlertThrottle(alert_state, notifier, hostname="node-7")
        for _ in range(4):
            assert await throttle.notify() is True

        assert bodies[-1] == "hostname: node-7 - worker keeps failing"
