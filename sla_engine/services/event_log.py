"""
Event Log

Append-only audit trail of instance transitions. Every event payload
carries the resulting values, so replaying an instance's events from an
empty state reproduces its persisted state exactly.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.core.clock import isoformat, utcnow
from sla_engine.models.sla import SlaEvent, SlaEventType, SlaInstance, TrackStatus
from sla_engine.services.metrics_service import metrics_collector
from sla_engine.services.state_machine import Transition


STATE_FIELDS = (
    "response_due_at",
    "first_response_at",
    "response_status",
    "response_warning_at",
    "resolution_due_at",
    "resolved_at",
    "resolution_status",
    "resolution_warning_at",
    "is_paused",
    "paused_at",
    "accumulated_paused_minutes",
    "current_escalation_level",
    "last_escalation_at",
    "cancelled_at",
)


def append(db: AsyncSession, instance: SlaInstance, transitions: Iterable[Transition]) -> List[SlaEvent]:
    """
    Stage one event per transition, numbered from the instance's event count.

    The events are flushed with the instance in the caller's transaction.
    """
    events = []
    for transition in transitions:
        instance.event_count = (instance.event_count or 0) + 1
        event = SlaEvent(
            id=str(uuid.uuid4()),
            instance_id=instance.id,
            sequence=instance.event_count,
            event_type=transition.event_type,
            payload=transition.payload,
            occurred_at=transition.occurred_at,
            created_at=utcnow(),
        )
        db.add(event)
        events.append(event)
        metrics_collector.record_transition(transition.event_type.value)
    return events


async def list_events(db: AsyncSession, instance_id: str) -> List[SlaEvent]:
    """Events of an instance in sequence order."""
    result = await db.execute(
        select(SlaEvent)
        .where(SlaEvent.instance_id == instance_id)
        .order_by(SlaEvent.sequence)
    )
    return list(result.scalars().all())


def instance_state(instance: SlaInstance) -> Dict[str, Any]:
    """Comparable, JSON-friendly view of an instance's mutable state."""
    state = {}
    for name in STATE_FIELDS:
        value = getattr(instance, name)
        if isinstance(value, datetime):
            value = isoformat(value)
        elif isinstance(value, TrackStatus):
            value = value.value
        state[name] = value
    state["accumulated_paused_minutes"] = float(state["accumulated_paused_minutes"] or 0.0)
    state["current_escalation_level"] = state["current_escalation_level"] or 0
    state["is_paused"] = bool(state["is_paused"])
    return state


def _empty_state() -> Dict[str, Any]:
    state = {name: None for name in STATE_FIELDS}
    state.update(is_paused=False, accumulated_paused_minutes=0.0, current_escalation_level=0)
    return state


def _fold_pause(state: Dict[str, Any], payload: Dict[str, Any]):
    if "paused_minutes" in payload:
        state["accumulated_paused_minutes"] += payload["paused_minutes"]
        state["is_paused"] = False
        state["paused_at"] = None


def apply_event(
    state: Dict[str, Any],
    event_type: SlaEventType,
    payload: Dict[str, Any],
    occurred_at: datetime,
) -> Dict[str, Any]:
    """Apply one event to a state dict in place and return it."""
    event_type = SlaEventType(event_type)
    at = isoformat(occurred_at)

    if event_type == SlaEventType.CREATED:
        state.update(_empty_state())
        for track in ("response", "resolution"):
            due_at = payload.get(f"{track}_due_at")
            state[f"{track}_due_at"] = due_at
            state[f"{track}_status"] = TrackStatus.PENDING.value if due_at else TrackStatus.MET.value

    elif event_type == SlaEventType.PAUSED:
        state["is_paused"] = True
        state["paused_at"] = payload["at"]

    elif event_type == SlaEventType.RESUMED:
        state["accumulated_paused_minutes"] += payload["paused_minutes"]
        state["response_due_at"] = payload["response_due_at"]
        state["resolution_due_at"] = payload["resolution_due_at"]
        state["is_paused"] = False
        state["paused_at"] = None

    elif event_type == SlaEventType.RESPONSE_MET:
        state["first_response_at"] = payload["at"]
        state["response_status"] = TrackStatus.MET.value
        _fold_pause(state, payload)

    elif event_type == SlaEventType.RESOLUTION_MET:
        state["resolved_at"] = payload["at"]
        state["resolution_status"] = TrackStatus.MET.value
        _fold_pause(state, payload)

    elif event_type == SlaEventType.RESPONSE_BREACHED:
        state["response_status"] = TrackStatus.BREACHED.value

    elif event_type == SlaEventType.RESOLUTION_BREACHED:
        state["resolution_status"] = TrackStatus.BREACHED.value

    elif event_type == SlaEventType.WARNING:
        state[f"{payload['track']}_warning_at"] = at

    elif event_type == SlaEventType.ESCALATED:
        state["current_escalation_level"] = payload["level"]
        state["last_escalation_at"] = at

    elif event_type == SlaEventType.REOPENED:
        state["resolution_status"] = TrackStatus.PENDING.value
        state["resolution_due_at"] = payload["resolution_due_at"]
        state["resolved_at"] = None
        state["resolution_warning_at"] = None

    elif event_type == SlaEventType.DUE_RESCHEDULED:
        for key in ("response_due_at", "resolution_due_at", "response_status", "resolution_status"):
            if key in payload:
                state[key] = payload[key]
        _fold_pause(state, payload)

    elif event_type == SlaEventType.CANCELLED:
        for track in payload.get("tracks", []):
            state[f"{track}_status"] = TrackStatus.CANCELLED.value
        state["cancelled_at"] = payload["at"]
        _fold_pause(state, payload)

    return state


def replay_events(events: Iterable[SlaEvent]) -> Dict[str, Any]:
    """Rebuild instance state from its events, oldest first."""
    state = _empty_state()
    for event in sorted(events, key=lambda e: e.sequence):
        apply_event(state, event.event_type, event.payload or {}, event.occurred_at)
    return state
