"""
Tests for the Escalation Trigger Engine

Tests cover:
- Remaining minutes and used percent, including paused and breached tracks
- Percent- and level-keyed escalation rules
- Implicit warnings
- Escalation delivery through log, notify and webhook actions
"""
import json

import httpx
import pytest

from sla_engine.core.sse import ConnectionManager
from sla_engine.models.sla import SlaEventType, Track
from sla_engine.services import state_machine
from sla_engine.services.broadcast import BroadcastPublisher
from sla_engine.services.escalation import (
    EscalationDispatcher,
    EscalationNotice,
    evaluate,
    remaining_minutes,
    track_used_percent,
)
from tests.conftest import T0, make_policy, make_target, minutes


def escalated_levels(transitions):
    return [t.payload["level"] for t in transitions if t.event_type == SlaEventType.ESCALATED]


def warnings(transitions):
    return [t.payload["track"] for t in transitions if t.event_type == SlaEventType.WARNING]


def new_instance(policy):
    instance, _ = state_machine.create_instance(policy, make_target(), T0)
    return instance


class TestRemainingMinutes:
    """Tests for remaining time on a track."""

    def test_remaining_while_running(self):
        policy = make_policy()
        instance = new_instance(policy)
        assert remaining_minutes(instance, policy, Track.RESPONSE, T0 + minutes(15)) == 45

    def test_remaining_never_increases_while_running(self):
        policy = make_policy(business_hours_only=True)
        instance = new_instance(policy)

        samples = [
            remaining_minutes(instance, policy, Track.RESOLUTION, T0 + minutes(step))
            for step in range(0, 3000, 37)
        ]
        assert all(later <= earlier for earlier, later in zip(samples, samples[1:]))

    def test_remaining_frozen_while_paused(self):
        policy = make_policy()
        instance = new_instance(policy)
        state_machine.pause(instance, T0 + minutes(20))

        at_pause = remaining_minutes(instance, policy, Track.RESPONSE, T0 + minutes(20))
        much_later = remaining_minutes(instance, policy, Track.RESPONSE, T0 + minutes(400))
        assert at_pause == much_later == 40

    def test_remaining_is_none_once_finished(self):
        policy = make_policy()
        instance = new_instance(policy)
        state_machine.record_first_response(instance, T0 + minutes(5))
        assert remaining_minutes(instance, policy, Track.RESPONSE, T0 + minutes(10)) is None

    def test_remaining_floors_at_zero(self):
        policy = make_policy()
        instance = new_instance(policy)
        assert remaining_minutes(instance, policy, Track.RESPONSE, T0 + minutes(90)) == 0


class TestUsedPercent:
    """Tests for budget consumption."""

    def test_used_percent(self):
        policy = make_policy()
        instance = new_instance(policy)
        assert track_used_percent(instance, policy, Track.RESPONSE, T0 + minutes(45)) == 75

    def test_breached_track_is_full(self):
        policy = make_policy()
        instance = new_instance(policy)
        state_machine.tick(instance, T0 + minutes(61))
        assert track_used_percent(instance, policy, Track.RESPONSE, T0 + minutes(61)) == 100

    def test_zero_budget_is_full(self):
        policy = make_policy(response_time_minutes=0)
        instance = new_instance(policy)
        assert track_used_percent(instance, policy, Track.RESPONSE, T0) == 100

    def test_untracked_is_none(self):
        policy = make_policy(resolution_time_minutes=None)
        instance = new_instance(policy)
        assert track_used_percent(instance, policy, Track.RESOLUTION, T0) is None


class TestEvaluate:
    """Tests for firing escalation rungs."""

    def test_percent_rule_fires_at_threshold(self):
        policy = make_policy(escalation_rules=[{"level": 1, "threshold_percent": 50, "track": "response"}])
        instance = new_instance(policy)

        assert escalated_levels(evaluate(instance, policy, T0 + minutes(29))) == []
        transitions = evaluate(instance, policy, T0 + minutes(30))

        assert escalated_levels(transitions) == [1]
        assert instance.current_escalation_level == 1
        assert instance.last_escalation_at == T0 + minutes(30)
        assert transitions[0].payload["track"] == "response"

    def test_rule_fires_once(self):
        policy = make_policy(escalation_rules=[{"level": 1, "threshold_percent": 50}])
        instance = new_instance(policy)

        assert escalated_levels(evaluate(instance, policy, T0 + minutes(40))) == [1]
        assert escalated_levels(evaluate(instance, policy, T0 + minutes(40))) == []
        assert escalated_levels(evaluate(instance, policy, T0 + minutes(55))) == []

    def test_crossed_rungs_fire_in_level_order(self):
        policy = make_policy(escalation_rules=[
            {"level": 1, "threshold_percent": 25, "track": "response"},
            {"level": 2, "threshold_percent": 50, "track": "response"},
            {"level": 3, "threshold_percent": 90, "track": "response"},
        ])
        instance = new_instance(policy)

        transitions = evaluate(instance, policy, T0 + minutes(35))

        assert escalated_levels(transitions) == [1, 2]
        assert [t.payload["previous_level"] for t in transitions] == [0, 1]
        assert instance.current_escalation_level == 2

    def test_level_keyed_rule_fires_on_breach(self):
        policy = make_policy(escalation_rules=[{"level": 1, "track": "response"}])
        instance = new_instance(policy)

        assert escalated_levels(evaluate(instance, policy, T0 + minutes(59))) == []
        state_machine.tick(instance, T0 + minutes(61))
        assert escalated_levels(evaluate(instance, policy, T0 + minutes(61))) == [1]

    def test_track_filter(self):
        policy = make_policy(escalation_rules=[{"level": 1, "threshold_percent": 50, "track": "resolution"}])
        instance = new_instance(policy)

        # Response is 75% used, resolution under 10%
        assert escalated_levels(evaluate(instance, policy, T0 + minutes(45))) == []

    def test_implicit_warning_once_per_track(self):
        policy = make_policy(warning_threshold=80)
        instance = new_instance(policy)

        assert warnings(evaluate(instance, policy, T0 + minutes(47))) == []
        assert warnings(evaluate(instance, policy, T0 + minutes(48))) == ["response"]
        assert instance.response_warning_at == T0 + minutes(48)
        assert warnings(evaluate(instance, policy, T0 + minutes(55))) == []

    def test_no_implicit_warning_with_earlier_rule(self):
        policy = make_policy(escalation_rules=[{"level": 1, "threshold_percent": 50}])
        instance = new_instance(policy)
        assert warnings(evaluate(instance, policy, T0 + minutes(55))) == []

    def test_cancelled_instance_never_escalates(self):
        policy = make_policy(escalation_rules=[{"level": 1, "threshold_percent": 10}])
        instance = new_instance(policy)
        state_machine.cancel(instance, T0 + minutes(1))
        assert evaluate(instance, policy, T0 + minutes(50)) == []

    def test_paused_usage_does_not_grow(self):
        policy = make_policy(escalation_rules=[{"level": 1, "threshold_percent": 50, "track": "response"}])
        instance = new_instance(policy)
        state_machine.pause(instance, T0 + minutes(10))
        assert escalated_levels(evaluate(instance, policy, T0 + minutes(120))) == []


class TestEscalationNotice:
    """Tests for the delivered notice."""

    def test_from_transition_and_wire_shape(self):
        policy = make_policy(escalation_rules=[
            {"level": 1, "threshold_percent": 50, "action": {"type": "notify", "message": "Check TKT-1"}}
        ])
        instance = new_instance(policy)
        (transition,) = evaluate(instance, policy, T0 + minutes(30))

        notice = EscalationNotice.from_transition(instance, transition)
        data = notice.to_dict()

        assert data["workspaceId"] == "ws-1"
        assert data["targetId"] == "TKT-1"
        assert data["level"] == 1
        assert data["usedPercent"] == 50
        assert data["message"] == "Check TKT-1"
        assert data["occurredAt"] == (T0 + minutes(30)).isoformat()


def make_notice(action):
    return EscalationNotice(
        workspace_id="ws-1",
        instance_id="inst-1",
        target_type="ticket",
        target_id="TKT-1",
        level=2,
        track="resolution",
        action=action,
        used_percent=91.5,
        occurred_at=T0,
    )


class TestEscalationDispatcher:
    """Tests for delivering escalation actions."""

    @pytest.mark.asyncio
    async def test_log_action(self):
        dispatcher = EscalationDispatcher(publisher=BroadcastPublisher(ConnectionManager()))
        assert await dispatcher.dispatch(make_notice({"type": "log"})) is True

    @pytest.mark.asyncio
    async def test_notify_action_broadcasts(self):
        manager = ConnectionManager()
        connection = await manager.connect("ws-1")
        dispatcher = EscalationDispatcher(publisher=BroadcastPublisher(manager))

        assert await dispatcher.dispatch(make_notice({"type": "notify"})) is True

        message = connection.queue.get_nowait()
        assert message.startswith("event: sla:escalated\n")
        payload = json.loads(message.split("data: ", 1)[1])
        assert payload["instanceId"] == "inst-1"
        assert payload["level"] == 2

    @pytest.mark.asyncio
    async def test_webhook_action_posts_notice(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(200, json={"ok": True})

        dispatcher = EscalationDispatcher(transport=httpx.MockTransport(handler))
        delivered = await dispatcher.dispatch(make_notice({
            "type": "webhook",
            "url": "https://hooks.test/sla",
            "headers": {"X-Token": "abc"},
        }))

        assert delivered is True
        assert len(received) == 1
        assert str(received[0].url) == "https://hooks.test/sla"
        assert received[0].headers["X-Token"] == "abc"
        assert json.loads(received[0].content)["targetId"] == "TKT-1"

    @pytest.mark.asyncio
    async def test_webhook_failure_is_reported_not_raised(self):
        dispatcher = EscalationDispatcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )
        delivered = await dispatcher.dispatch(make_notice({"type": "webhook", "url": "https://hooks.test/sla"}))
        assert delivered is False

    @pytest.mark.asyncio
    async def test_dispatch_all_counts_deliveries(self):
        dispatcher = EscalationDispatcher(
            publisher=BroadcastPublisher(ConnectionManager()),
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        notices = [
            make_notice({"type": "log"}),
            make_notice({"type": "webhook", "url": "https://hooks.test/sla"}),
            make_notice({"type": "notify"}),
        ]
        assert await dispatcher.dispatch_all(notices) == 2
