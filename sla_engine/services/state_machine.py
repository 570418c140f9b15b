"""
SLA Instance State Machine

Two independent track machines (response, resolution) share one instance:

    pending -> met        (first response / resolution recorded)
    pending -> breached   (tick observed now > due while running)
    pending -> cancelled  (target cancelled upstream)

Every function takes the instant explicitly, mutates the instance in place
and returns the transitions it applied; each transition becomes exactly one
SlaEvent. Calls that change nothing return an empty list, which makes every
lifecycle fact idempotent and lets the first writer win.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sla_engine.core.clock import ensure_utc, isoformat
from sla_engine.models.sla import SlaEventType, SlaInstance, Track, TrackStatus
from sla_engine.services.deadline import compute_due, initial_due, reschedule_due
from sla_engine.services.policy_matcher import CompiledPolicy, TargetRef


@dataclass
class Transition:
    """One externally observable state change, persisted as an SlaEvent."""
    event_type: SlaEventType
    occurred_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)


BREACHED_EVENT = {
    Track.RESPONSE: SlaEventType.RESPONSE_BREACHED,
    Track.RESOLUTION: SlaEventType.RESOLUTION_BREACHED,
}


def _set_status(instance: SlaInstance, track: Track, status: TrackStatus) -> None:
    if track == Track.RESPONSE:
        instance.response_status = status
    else:
        instance.resolution_status = status


def _set_due(instance: SlaInstance, track: Track, due_at: Optional[datetime]) -> None:
    if track == Track.RESPONSE:
        instance.response_due_at = due_at
    else:
        instance.resolution_due_at = due_at


def _paused_minutes(instance: SlaInstance, at: datetime) -> float:
    elapsed = (ensure_utc(at) - ensure_utc(instance.paused_at)).total_seconds() / 60
    return max(0.0, elapsed)


def _fold_pause(instance: SlaInstance, at: datetime) -> Optional[float]:
    """Close an open pause on an instance that just became terminal; None if nothing was open."""
    if not instance.is_paused or not instance.is_terminal:
        return None
    minutes = _paused_minutes(instance, at)
    instance.accumulated_paused_minutes = (instance.accumulated_paused_minutes or 0.0) + minutes
    instance.is_paused = False
    instance.paused_at = None
    return minutes


def create_instance(
    policy: CompiledPolicy,
    target: TargetRef,
    started_at: datetime,
) -> Tuple[SlaInstance, Transition]:
    """Build a new instance for a matched target with both due instants projected."""
    started_at = ensure_utc(started_at)
    response_due = initial_due(policy, Track.RESPONSE, started_at)
    resolution_due = initial_due(policy, Track.RESOLUTION, started_at)

    instance = SlaInstance(
        id=str(uuid.uuid4()),
        policy_id=policy.id,
        workspace_id=target.workspace_id,
        target_type=target.target_type,
        target_id=target.target_id,
        started_at=started_at,
        response_due_at=response_due,
        response_status=TrackStatus.PENDING if response_due else TrackStatus.MET,
        resolution_due_at=resolution_due,
        resolution_status=TrackStatus.PENDING if resolution_due else TrackStatus.MET,
        is_paused=False,
        accumulated_paused_minutes=0.0,
        current_escalation_level=0,
        event_count=0,
    )

    transition = Transition(
        SlaEventType.CREATED,
        started_at,
        {
            "policy_id": policy.id,
            "policy_name": policy.name,
            "workspace_id": target.workspace_id,
            "target_type": target.target_type,
            "target_id": target.target_id,
            "started_at": isoformat(started_at),
            "response_due_at": isoformat(response_due),
            "resolution_due_at": isoformat(resolution_due),
        },
    )
    return instance, transition


def record_first_response(instance: SlaInstance, at: datetime, implicit: bool = False) -> List[Transition]:
    """
    Mark the response track met.

    A response after the due instant still counts as met but is flagged late;
    if a tick already breached the track this is a no-op.
    """
    if instance.cancelled_at is not None or instance.response_status != TrackStatus.PENDING:
        return []

    at = ensure_utc(at)
    due_at = ensure_utc(instance.response_due_at)
    instance.first_response_at = at
    instance.response_status = TrackStatus.MET

    payload = {
        "at": isoformat(at),
        "due_at": isoformat(due_at),
        "late": bool(due_at and at > due_at),
        "implicit": implicit,
    }
    folded = _fold_pause(instance, at)
    if folded is not None:
        payload["paused_minutes"] = folded
    return [Transition(SlaEventType.RESPONSE_MET, at, payload)]


def record_resolution(instance: SlaInstance, at: datetime) -> List[Transition]:
    """Mark the resolution track met, forcing a still-pending response track to met first."""
    if instance.cancelled_at is not None:
        return []

    at = ensure_utc(at)
    transitions = record_first_response(instance, at, implicit=True)

    if instance.resolution_status != TrackStatus.PENDING:
        return transitions

    due_at = ensure_utc(instance.resolution_due_at)
    instance.resolved_at = at
    instance.resolution_status = TrackStatus.MET

    payload = {
        "at": isoformat(at),
        "due_at": isoformat(due_at),
        "late": bool(due_at and at > due_at),
    }
    folded = _fold_pause(instance, at)
    if folded is not None:
        payload["paused_minutes"] = folded
    transitions.append(Transition(SlaEventType.RESOLUTION_MET, at, payload))
    return transitions


def pause(instance: SlaInstance, at: datetime, reason: Optional[str] = None) -> List[Transition]:
    """Stop both clocks; no-op when already paused or nothing is running."""
    if instance.is_paused or instance.is_terminal:
        return []

    at = ensure_utc(at)
    instance.is_paused = True
    instance.paused_at = at
    return [Transition(SlaEventType.PAUSED, at, {"at": isoformat(at), "reason": reason})]


def resume(instance: SlaInstance, policy: CompiledPolicy, at: datetime) -> List[Transition]:
    """
    Restart the clocks and push pending due instants out by the paused time.

    Pausing never shrinks the granted business time and never breaches a
    deadline that was safe when the pause began.
    """
    if not instance.is_paused:
        return []

    at = ensure_utc(at)
    paused_minutes = _paused_minutes(instance, at)

    payload: Dict[str, Any] = {"at": isoformat(at), "paused_minutes": paused_minutes}
    for track in Track:
        if instance.track_status(track) == TrackStatus.PENDING and instance.track_due_at(track):
            new_due = compute_due(track, instance, policy, resume_at=at)
            _set_due(instance, track, new_due)
        payload[f"{track.value}_due_at"] = isoformat(instance.track_due_at(track))

    instance.accumulated_paused_minutes = (instance.accumulated_paused_minutes or 0.0) + paused_minutes
    instance.is_paused = False
    instance.paused_at = None
    return [Transition(SlaEventType.RESUMED, at, payload)]


def tick(instance: SlaInstance, now: datetime) -> List[Transition]:
    """Breach every running pending track whose due instant has passed."""
    if instance.is_paused or instance.cancelled_at is not None:
        return []

    now = ensure_utc(now)
    transitions = []
    for track in Track:
        due_at = ensure_utc(instance.track_due_at(track))
        if instance.track_status(track) != TrackStatus.PENDING or due_at is None:
            continue
        if now > due_at:
            _set_status(instance, track, TrackStatus.BREACHED)
            overdue = (now - due_at).total_seconds() / 60
            transitions.append(Transition(
                BREACHED_EVENT[track],
                now,
                {"at": isoformat(now), "due_at": isoformat(due_at), "overdue_minutes": round(overdue, 2)},
            ))
    return transitions


def cancel(instance: SlaInstance, at: datetime, reason: Optional[str] = None) -> List[Transition]:
    """Force-terminalise the instance because its target went away upstream."""
    if instance.cancelled_at is not None:
        return []

    at = ensure_utc(at)
    cancelled_tracks = []
    for track in Track:
        if instance.track_status(track) == TrackStatus.PENDING:
            _set_status(instance, track, TrackStatus.CANCELLED)
            cancelled_tracks.append(track.value)
    instance.cancelled_at = at

    payload: Dict[str, Any] = {"at": isoformat(at), "tracks": cancelled_tracks, "reason": reason}
    folded = _fold_pause(instance, at)
    if folded is not None:
        payload["paused_minutes"] = folded
    return [Transition(SlaEventType.CANCELLED, at, payload)]


def reopen(instance: SlaInstance, policy: CompiledPolicy, at: datetime) -> List[Transition]:
    """Return a finished resolution track to pending with a fresh due instant."""
    if instance.cancelled_at is not None or policy.resolution_minutes is None:
        return []
    if instance.resolution_status not in (TrackStatus.MET, TrackStatus.BREACHED):
        return []

    at = ensure_utc(at)
    previous_status = instance.resolution_status
    due_at = initial_due(policy, Track.RESOLUTION, at)
    instance.resolution_status = TrackStatus.PENDING
    instance.resolution_due_at = due_at
    instance.resolved_at = None
    instance.resolution_warning_at = None

    return [Transition(
        SlaEventType.REOPENED,
        at,
        {
            "at": isoformat(at),
            "previous_status": previous_status.value,
            "resolution_due_at": isoformat(due_at),
        },
    )]


def reschedule(
    instance: SlaInstance,
    policy: CompiledPolicy,
    old_budgets: Dict[Track, Optional[int]],
    at: datetime,
) -> List[Transition]:
    """
    Re-project pending tracks after the policy's budgets or calendar changed.

    A pending track whose budget was removed becomes untracked: it is marked
    met with no due instant, as on creation.
    """
    if instance.is_terminal:
        return []

    at = ensure_utc(at)
    changes: Dict[str, Any] = {}
    for track in Track:
        if instance.track_status(track) != TrackStatus.PENDING:
            continue
        if policy.budget_for(track) is None:
            _set_status(instance, track, TrackStatus.MET)
            _set_due(instance, track, None)
            changes[f"{track.value}_due_at"] = None
            changes[f"{track.value}_status"] = TrackStatus.MET.value
            continue
        new_due = reschedule_due(track, instance, policy, old_budgets.get(track), at)
        if new_due != ensure_utc(instance.track_due_at(track)):
            _set_due(instance, track, new_due)
            changes[f"{track.value}_due_at"] = isoformat(new_due)

    if not changes:
        return []
    changes["at"] = isoformat(at)
    folded = _fold_pause(instance, at)
    if folded is not None:
        changes["paused_minutes"] = folded
    return [Transition(SlaEventType.DUE_RESCHEDULED, at, changes)]
