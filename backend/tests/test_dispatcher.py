"""Tests for transition classification and notification dispatch."""
import json
from datetime import timedelta

import httpx
import pytest

from pulseguard.models import NotificationChannel, NotificationHistory, NotificationRule
from pulseguard.models.enums import NotificationEvent, ServiceStatus
from pulseguard.services.channels import ChannelSender
from pulseguard.services.checker import CheckResult
from pulseguard.services.dispatcher import NotificationDispatcher, Transition, classify_transition

from conftest import T0

DOWN_RESULT = CheckResult(status=ServiceStatus.OFFLINE, response_time_ms=120, message="HTTP 503 - Server Error", status_code=503)


class TestClassifyTransition:
    @pytest.mark.parametrize(
        "previous, new, expected",
        [
            (None, "offline", None),
            ("unknown", "offline", None),
            ("online", "online", None),
            ("degraded", "degraded", None),
            ("online", "offline", Transition(NotificationEvent.DOWN)),
            ("degraded", "timeout", Transition(NotificationEvent.DOWN)),
            ("offline", "timeout", Transition(NotificationEvent.DOWN, repeat=True)),
            ("offline", "offline", Transition(NotificationEvent.DOWN, repeat=True)),
            ("offline", "online", Transition(NotificationEvent.UP)),
            ("timeout", "online", Transition(NotificationEvent.UP)),
            ("degraded", "online", None),
            ("online", "degraded", Transition(NotificationEvent.DEGRADED)),
            ("offline", "degraded", Transition(NotificationEvent.DEGRADED)),
        ],
    )
    def test_classification(self, previous, new, expected):
        assert classify_transition(previous, new) == expected


class TestDispatch:
    async def test_threshold_three_fires_on_third_failure_only(self, dispatcher, repository, make_service, make_webhook_rule, webhook_transport):
        service = await make_service()
        await make_webhook_rule(service.id, events=["down"], threshold=3, cooldown=0)

        sent = []
        for tick in range(1, 5):
            await repository.increment_consecutive_failures(service.id)
            sent.append(await dispatcher.dispatch(
                service, NotificationEvent.DOWN, DOWN_RESULT, now=T0 + timedelta(minutes=tick), repeat=tick > 1
            ))

        assert sent == [0, 0, 1, 0]
        assert len(webhook_transport.requests) == 1

    async def test_non_repeat_down_fires_past_threshold(self, dispatcher, make_service, make_webhook_rule):
        service = await make_service()
        await make_webhook_rule(service.id, events=["down"], threshold=2, consecutive_failures=4)

        assert await dispatcher.dispatch(service, NotificationEvent.DOWN, DOWN_RESULT, now=T0) == 1

    async def test_cooldown_allows_one_delivery(self, dispatcher, make_service, make_webhook_rule, webhook_transport, fetch_all):
        service = await make_service()
        await make_webhook_rule(service.id, events=["degraded"], cooldown=300)

        await dispatcher.dispatch(service, NotificationEvent.DEGRADED, now=T0)
        await dispatcher.dispatch(service, NotificationEvent.DEGRADED, now=T0 + timedelta(seconds=60))
        assert len(webhook_transport.requests) == 1
        assert len(await fetch_all(NotificationHistory)) == 1

        await dispatcher.dispatch(service, NotificationEvent.DEGRADED, now=T0 + timedelta(seconds=301))
        assert len(webhook_transport.requests) == 2

    async def test_cooldown_between_down_events(self, dispatcher, repository, make_service, make_webhook_rule, webhook_transport, fetch_all):
        service = await make_service()
        await make_webhook_rule(service.id, events=["down"], cooldown=300)

        await repository.increment_consecutive_failures(service.id)
        assert await dispatcher.dispatch(service, NotificationEvent.DOWN, DOWN_RESULT, now=T0) == 1

        # Brief recovery, then a new outage inside the cooldown
        await repository.reset_consecutive_failures(service.id)
        await repository.increment_consecutive_failures(service.id)
        assert await dispatcher.dispatch(service, NotificationEvent.DOWN, DOWN_RESULT, now=T0 + timedelta(seconds=60)) == 0
        assert len(await fetch_all(NotificationHistory)) == 1

        await repository.increment_consecutive_failures(service.id)
        assert await dispatcher.dispatch(
            service, NotificationEvent.DOWN, DOWN_RESULT, now=T0 + timedelta(seconds=301), repeat=True
        ) == 1
        assert [json.loads(r.content)["event"] for r in webhook_transport.requests] == ["down", "down"]

    async def test_repeat_down_fires_once_past_threshold(self, dispatcher, make_service, make_webhook_rule, fetch_all):
        service = await make_service()
        await make_webhook_rule(service.id, events=["down"], threshold=2, cooldown=0, consecutive_failures=5)

        assert await dispatcher.dispatch(service, NotificationEvent.DOWN, DOWN_RESULT, now=T0, repeat=True) == 1
        assert await dispatcher.dispatch(service, NotificationEvent.DOWN, DOWN_RESULT, now=T0 + timedelta(minutes=1), repeat=True) == 0

        [rule] = await fetch_all(NotificationRule)
        assert rule.down_notified is True

    async def test_online_reset_rearms_down(self, dispatcher, repository, make_service, make_webhook_rule, fetch_all):
        service = await make_service()
        await make_webhook_rule(service.id, events=["down"], cooldown=0, consecutive_failures=1, down_notified=True)

        await repository.reset_consecutive_failures(service.id)

        [rule] = await fetch_all(NotificationRule)
        assert rule.consecutive_failures == 0
        assert rule.down_notified is False

    async def test_up_resets_failures_and_sets_last_notified(self, dispatcher, make_service, make_webhook_rule, fetch_all):
        service = await make_service()
        await make_webhook_rule(service.id, events=["up"], consecutive_failures=5, down_notified=True)

        await dispatcher.dispatch(service, NotificationEvent.UP, now=T0)

        [rule] = await fetch_all(NotificationRule)
        assert rule.consecutive_failures == 0
        assert rule.down_notified is False
        assert rule.last_notified_at == T0

    async def test_event_not_in_rule_is_ignored(self, dispatcher, make_service, make_webhook_rule, webhook_transport, fetch_all):
        service = await make_service()
        await make_webhook_rule(service.id, events=["up"])

        assert await dispatcher.dispatch(service, NotificationEvent.DEGRADED, now=T0) == 0
        assert webhook_transport.requests == []
        assert await fetch_all(NotificationHistory) == []

    async def test_disabled_channel_is_ignored(self, dispatcher, add, make_service, make_webhook_rule, webhook_transport):
        service = await make_service()
        await make_webhook_rule(service.id, events=["up"])
        channel = await add(NotificationChannel(name="Muted", type="webhook", config='{"url": "https://muted.example.com"}', is_enabled=False))
        await add(NotificationRule(service_id=service.id, channel_id=channel.id, events='["up"]'))

        assert await dispatcher.dispatch(service, NotificationEvent.UP, now=T0) == 1
        assert [r.url.host for r in webhook_transport.requests] == ["hooks.example.com"]

    async def test_webhook_payload(self, dispatcher, make_service, make_webhook_rule, webhook_transport):
        service = await make_service(status="offline", uptime_percent=97.5, last_checked_at=T0)
        await make_webhook_rule(service.id, events=["down"], consecutive_failures=1)

        await dispatcher.dispatch(service, NotificationEvent.DOWN, DOWN_RESULT, now=T0)

        [request] = webhook_transport.requests
        assert request.method == "POST"
        assert request.headers["User-Agent"] == "PulseGuard-Webhook/1.0"
        body = json.loads(request.content)
        assert body["event"] == "down"
        assert body["timestamp"] == "2024-06-01T12:00:00Z"
        assert body["message"] == "Example API is down: HTTP 503 - Server Error"
        assert body["service"]["id"] == service.id
        assert body["service"]["uptime_percent"] == 97.5
        assert body["metadata"]["status_code"] == 503

    async def test_failing_channel_does_not_block_others(self, repository, make_service, make_webhook_rule, fetch_all):
        def handler(request):
            if request.url.host == "broken.example.com":
                return httpx.Response(500)
            return httpx.Response(200)

        dispatcher = NotificationDispatcher(repository, ChannelSender(transport=httpx.MockTransport(handler)))
        service = await make_service()
        await make_webhook_rule(service.id, events=["down"], url="https://broken.example.com/hook", consecutive_failures=1)
        await make_webhook_rule(service.id, events=["down"], url="https://ok.example.com/hook", consecutive_failures=1)

        assert await dispatcher.dispatch(service, NotificationEvent.DOWN, DOWN_RESULT, now=T0) == 1

        history = await fetch_all(NotificationHistory)
        assert [h.status for h in history] == ["failed", "sent"]
        assert history[0].error_message == "HTTP 500: Internal Server Error"
        assert history[1].error_message is None
        assert json.loads(history[1].details)["status"] == "offline"

        # Failed deliveries still start the cooldown
        rules = await fetch_all(NotificationRule)
        assert all(rule.last_notified_at == T0 for rule in rules)

    async def test_misconfigured_channel_recorded_as_failed(self, dispatcher, add, make_service, fetch_all):
        service = await make_service()
        channel = await add(NotificationChannel(name="Broken", type="webhook", config='{"method": "POST"}'))
        await add(NotificationRule(service_id=service.id, channel_id=channel.id, events='["down"]', consecutive_failures=1))

        assert await dispatcher.dispatch(service, NotificationEvent.DOWN, DOWN_RESULT, now=T0) == 0

        [entry] = await fetch_all(NotificationHistory)
        assert entry.status == "failed"
        assert "Invalid webhook channel config" in entry.error_message

    async def test_malformed_rule_events_never_match(self, dispatcher, add, make_service, webhook_transport):
        service = await make_service()
        channel = await add(NotificationChannel(name="Ops", type="webhook", config='{"url": "https://hooks.example.com"}'))
        await add(NotificationRule(service_id=service.id, channel_id=channel.id, events="down,up", consecutive_failures=1))

        assert await dispatcher.dispatch(service, NotificationEvent.DOWN, DOWN_RESULT, now=T0) == 0
        assert webhook_transport.requests == []


class TestSendTest:
    async def test_records_history_without_service(self, dispatcher, add, webhook_transport, fetch_all):
        channel = await add(NotificationChannel(name="Ops", type="webhook", config='{"url": "https://hooks.example.com"}'))

        success, error = await dispatcher.send_test(channel)

        assert success is True
        assert error is None
        body = json.loads(webhook_transport.requests[0].content)
        assert body["event"] == "test"
        assert body["service"] is None

        [entry] = await fetch_all(NotificationHistory)
        assert entry.event == "test"
        assert entry.service_id is None
        assert entry.channel_id == channel.id

    async def test_reports_delivery_error(self, repository, add):
        dispatcher = NotificationDispatcher(
            repository, ChannelSender(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        )
        channel = await add(NotificationChannel(name="Ops", type="webhook", config='{"url": "https://hooks.example.com"}'))

        success, error = await dispatcher.send_test(channel)
        assert success is False
        assert error == "HTTP 404: Not Found"
