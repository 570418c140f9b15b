"""
Escalation Trigger Engine

Decides which escalation rungs an instance has reached and delivers their
actions. Evaluation is pure and idempotent: a rung fires only while the
instance's current level is below it, so repeated evaluation of the same
state emits nothing new.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

import httpx

from sla_engine.core.clock import ensure_utc, isoformat
from sla_engine.core.config import settings
from sla_engine.core.exceptions import DownstreamDeliveryError
from sla_engine.models.sla import SlaEventType, SlaInstance, Track, TrackStatus
from sla_engine.services.broadcast import BroadcastPublisher, broadcast_publisher
from sla_engine.services.calendar import business_minutes_between
from sla_engine.services.metrics_service import metrics_collector
from sla_engine.services.policy_matcher import CompiledPolicy
from sla_engine.services.state_machine import Transition

logger = logging.getLogger(__name__)


def remaining_minutes(
    instance: SlaInstance,
    policy: CompiledPolicy,
    track: Track,
    now: datetime,
) -> Optional[float]:
    """
    Business minutes left on a pending track, frozen at the pause instant
    while paused. None for untracked or finished tracks.
    """
    due_at = ensure_utc(instance.track_due_at(track))
    if due_at is None or instance.track_status(track) != TrackStatus.PENDING:
        return None
    if instance.cancelled_at is not None:
        return None

    reference = ensure_utc(instance.paused_at) if instance.is_paused else ensure_utc(now)
    remaining = business_minutes_between(reference, due_at, policy.calendar, policy.business_hours_only)
    return round(max(0.0, remaining), 2)


def track_used_percent(
    instance: SlaInstance,
    policy: CompiledPolicy,
    track: Track,
    now: datetime,
) -> Optional[float]:
    """Share of the track budget consumed, 0-100. Breached tracks are 100."""
    status = instance.track_status(track)
    if status == TrackStatus.BREACHED:
        return 100.0

    budget = policy.budget_for(track)
    remaining = remaining_minutes(instance, policy, track, now)
    if budget is None or remaining is None:
        return None
    if budget == 0:
        return 100.0

    used = (budget - remaining) / budget * 100
    return round(min(100.0, max(0.0, used)), 2)


def evaluate(instance: SlaInstance, policy: CompiledPolicy, now: datetime) -> List[Transition]:
    """
    Fire every escalation rung the instance has newly reached.

    Args:
        instance: Instance after this run's tick
        policy: Compiled policy the instance was created under
        now: Evaluation instant

    Returns:
        `escalated` and `warning` transitions, in level order
    """
    if instance.cancelled_at is not None:
        return []

    now = ensure_utc(now)
    used = {track: track_used_percent(instance, policy, track, now) for track in Track}
    transitions: List[Transition] = []

    for rule in sorted(policy.escalation_rules, key=lambda r: r.level):
        if instance.current_escalation_level >= rule.level:
            continue

        fired_track = None
        for track in Track:
            if not rule.watches(track):
                continue
            if rule.is_level_keyed:
                if instance.track_status(track) == TrackStatus.BREACHED:
                    fired_track = track
                    break
            elif used[track] is not None and used[track] >= rule.threshold_percent:
                fired_track = track
                break

        if fired_track is None:
            continue

        previous_level = instance.current_escalation_level
        instance.current_escalation_level = rule.level
        instance.last_escalation_at = now
        transitions.append(Transition(
            SlaEventType.ESCALATED,
            now,
            {
                "level": rule.level,
                "previous_level": previous_level,
                "track": fired_track.value,
                "used_percent": used[fired_track],
                "threshold_percent": rule.threshold_percent,
                "action": dict(rule.action),
            },
        ))

    if policy.has_implicit_warning:
        transitions.extend(_implicit_warnings(instance, policy, used, now))

    return transitions


def _implicit_warnings(
    instance: SlaInstance,
    policy: CompiledPolicy,
    used: Dict[Track, Optional[float]],
    now: datetime,
) -> List[Transition]:
    transitions = []
    for track in Track:
        percent = used[track]
        if instance.track_status(track) != TrackStatus.PENDING or percent is None:
            continue
        if percent < policy.warning_threshold:
            continue

        if track == Track.RESPONSE:
            if instance.response_warning_at is not None:
                continue
            instance.response_warning_at = now
        else:
            if instance.resolution_warning_at is not None:
                continue
            instance.resolution_warning_at = now

        transitions.append(Transition(
            SlaEventType.WARNING,
            now,
            {
                "track": track.value,
                "used_percent": percent,
                "threshold_percent": policy.warning_threshold,
                "due_at": isoformat(instance.track_due_at(track)),
            },
        ))
    return transitions


@dataclass
class EscalationNotice:
    """Everything needed to deliver one escalation after the transaction commits."""
    workspace_id: str
    instance_id: str
    target_type: str
    target_id: str
    level: int
    track: str
    action: Dict[str, Any]
    used_percent: Optional[float] = None
    occurred_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_transition(cls, instance: SlaInstance, transition: Transition) -> "EscalationNotice":
        payload = transition.payload
        return cls(
            workspace_id=instance.workspace_id,
            instance_id=instance.id,
            target_type=instance.target_type,
            target_id=instance.target_id,
            level=payload["level"],
            track=payload["track"],
            action=dict(payload.get("action") or {"type": "log"}),
            used_percent=payload.get("used_percent"),
            occurred_at=transition.occurred_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workspaceId": self.workspace_id,
            "instanceId": self.instance_id,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "level": self.level,
            "track": self.track,
            "usedPercent": self.used_percent,
            "occurredAt": isoformat(self.occurred_at),
            "message": self.action.get("message"),
        }


class EscalationDispatcher:
    """
    Delivers escalation actions.

    Delivery is fire-and-forget from the engine's point of view: a failed
    action is logged and counted, and persisted state is never rolled back.
    """

    def __init__(
        self,
        publisher: Optional[BroadcastPublisher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.publisher = publisher or broadcast_publisher
        self._transport = transport

    async def dispatch(self, notice: EscalationNotice) -> bool:
        """
        Deliver one escalation.

        Returns:
            True if the action was delivered
        """
        metrics_collector.record_escalation(notice.level)
        action_type = notice.action.get("type", "log")

        try:
            if action_type == "webhook":
                await self._deliver_webhook(notice)
            elif action_type == "notify":
                await self._deliver_notify(notice)
            else:
                self._deliver_log(notice)
            return True
        except DownstreamDeliveryError as e:
            metrics_collector.record_delivery_failure(e.channel)
            logger.error(
                f"Escalation delivery failed for instance {notice.instance_id}: {e.message}",
                extra={"instance_id": notice.instance_id, "level": notice.level, **e.details}
            )
            return False

    async def dispatch_all(self, notices: List[EscalationNotice]) -> int:
        delivered = 0
        for notice in notices:
            if await self.dispatch(notice):
                delivered += 1
        return delivered

    def _deliver_log(self, notice: EscalationNotice):
        logger.warning(
            f"SLA escalation level {notice.level} for {notice.target_type}/{notice.target_id} "
            f"({notice.track}, {notice.used_percent}% used)",
            extra={
                "workspace_id": notice.workspace_id,
                "instance_id": notice.instance_id,
                "level": notice.level,
            }
        )

    async def _deliver_notify(self, notice: EscalationNotice):
        try:
            await self.publisher.publish_escalation(notice.workspace_id, notice.to_dict())
        except Exception as e:
            raise DownstreamDeliveryError("notify", str(e))

    async def _deliver_webhook(self, notice: EscalationNotice):
        url = notice.action.get("url")
        headers = notice.action.get("headers") or {}
        client_kwargs = {"timeout": settings.SLA_ESCALATION_WEBHOOK_TIMEOUT}
        if self._transport is not None:
            client_kwargs["transport"] = self._transport

        async with httpx.AsyncClient(**client_kwargs) as client:
            try:
                response = await client.post(url, json=notice.to_dict(), headers=headers)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise DownstreamDeliveryError("webhook", str(e), {"url": url})

        logger.info(f"Delivered escalation webhook for instance {notice.instance_id} to {url}")


# Create a singleton instance
escalation_dispatcher = EscalationDispatcher()
