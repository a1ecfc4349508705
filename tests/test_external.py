"""Tests for the config manager, email relay client and notification routing."""

import json

import httpx
import pytest

from config import NotificationChannel
from core import CollaboratorTimeoutException, ConfigurationException, NotificationException
from sla.infrastructure import (
    CircuitBreaker,
    CircuitState,
    EmailWebhookClient,
    InAppNotificationSink,
    NotificationRouter,
    SLAConfigManager,
)
from tests.fakes import RecordingNotificationSink

VALID_CONFIG = """
sla_targets:
  Urgent:
    response: 60
    resolution: 120
at_risk_percent: 75
"""


class TestSLAConfigManager:

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "sla_config.yaml"
        path.write_text(VALID_CONFIG)
        manager = SLAConfigManager()

        config = manager.load(path)

        assert config.at_risk_percent == 75
        assert manager.get_config() is config

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = SLAConfigManager()

        config = manager.load(tmp_path / "absent.yaml")

        assert config.at_risk_percent == 80

    def test_invalid_file_raises(self, tmp_path):
        path = tmp_path / "sla_config.yaml"
        path.write_text("at_risk_percent: [not, a, number]\n")

        with pytest.raises(ConfigurationException):
            SLAConfigManager().load(path)

    def test_broken_reload_keeps_previous_config(self, tmp_path):
        path = tmp_path / "sla_config.yaml"
        path.write_text(VALID_CONFIG)
        manager = SLAConfigManager()
        manager.load(path)

        path.write_text("sla_targets: {unclosed\n")

        assert manager.reload() is False
        assert manager.get_config().at_risk_percent == 75

    def test_reload_picks_up_changes(self, tmp_path):
        path = tmp_path / "sla_config.yaml"
        path.write_text(VALID_CONFIG)
        manager = SLAConfigManager()
        manager.load(path)

        path.write_text("at_risk_percent: 90\n")

        assert manager.reload() is True
        assert manager.get_config().at_risk_percent == 90

    def test_config_before_load(self):
        with pytest.raises(RuntimeError):
            SLAConfigManager().get_config()


class TestEmailWebhookClient:

    @pytest.mark.asyncio
    async def test_posts_payload(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        client = EmailWebhookClient(
            webhook_url="https://relay.example.com/send",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        await client.enqueue(NotificationChannel.EMAIL, "sup@example.com", "INC-7 breached", reference_id="t-7")
        await client.close()

        [request] = requests
        assert json.loads(request.content) == {
            "to": "sup@example.com",
            "subject": "SLA escalation: ticket t-7",
            "body": "INC-7 breached",
            "reference_id": "t-7",
        }

    @pytest.mark.asyncio
    async def test_http_error_raises_and_opens_circuit(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        client = EmailWebhookClient(
            webhook_url="https://relay.example.com/send",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        for _ in range(5):
            with pytest.raises(NotificationException):
                await client.enqueue(NotificationChannel.EMAIL, "sup@example.com", "x")

        with pytest.raises(NotificationException, match="Circuit breaker open"):
            await client.enqueue(NotificationChannel.EMAIL, "sup@example.com", "x")
        assert len(calls) == 5

    @pytest.mark.asyncio
    async def test_unconfigured_relay_is_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = EmailWebhookClient(
            webhook_url="",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        await client.enqueue(NotificationChannel.EMAIL, "sup@example.com", "x")


class TestCircuitBreaker:

    def test_opens_after_threshold_and_recovers(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=0)

        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_rejects_while_open(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

    def test_half_open_lets_one_request_through(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()
        breaker._last_failure_time -= 61

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()
        assert not breaker.allow_request()

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

        breaker._last_failure_time -= 61
        assert breaker.allow_request()
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request()
        assert breaker.allow_request()


class TestNotificationRouter:

    @pytest.mark.asyncio
    async def test_routes_by_channel(self):
        in_app, email = RecordingNotificationSink(), RecordingNotificationSink()
        router = NotificationRouter({"in_app": in_app, NotificationChannel.EMAIL: email})

        await router.enqueue(NotificationChannel.IN_APP, "a-1", "hello", "t-1")
        await router.enqueue("email", "a-2", "hello", "t-1")

        assert in_app.sent == [(NotificationChannel.IN_APP, "a-1", "hello", "t-1")]
        assert email.sent == [(NotificationChannel.EMAIL, "a-2", "hello", "t-1")]

    @pytest.mark.asyncio
    async def test_unknown_channel_fails(self):
        router = NotificationRouter({NotificationChannel.IN_APP: RecordingNotificationSink()})

        with pytest.raises(NotificationException):
            await router.enqueue(NotificationChannel.EMAIL, "a-1", "hello")

    @pytest.mark.asyncio
    async def test_slow_external_sink_times_out(self):
        router = NotificationRouter(
            {NotificationChannel.EMAIL: RecordingNotificationSink(delay=0.5)},
            timeout_seconds=0.01,
        )

        with pytest.raises(CollaboratorTimeoutException, match="timed out"):
            await router.enqueue(NotificationChannel.EMAIL, "a-1", "hello")

    @pytest.mark.asyncio
    async def test_session_sink_is_not_cut_off(self):
        in_app = RecordingNotificationSink(delay=0.05, shares_session=True)
        router = NotificationRouter({NotificationChannel.IN_APP: in_app}, timeout_seconds=0.01)

        await router.enqueue(NotificationChannel.IN_APP, "a-1", "hello", "t-1")

        assert in_app.sent == [(NotificationChannel.IN_APP, "a-1", "hello", "t-1")]

    def test_in_app_sink_shares_session(self):
        assert InAppNotificationSink.shares_session is True
        assert EmailWebhookClient.shares_session is False
