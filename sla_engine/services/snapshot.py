"""
Snapshot builder: the broadcast and query view of one instance.
"""

from datetime import datetime

from sla_engine.core.clock import ensure_utc
from sla_engine.models.sla import SlaInstance, Track
from sla_engine.schemas.sla import SlaSnapshot
from sla_engine.services.calendar import is_within_business_hours
from sla_engine.services.escalation import remaining_minutes, track_used_percent
from sla_engine.services.policy_matcher import CompiledPolicy


def build_snapshot(instance: SlaInstance, policy: CompiledPolicy, now: datetime) -> SlaSnapshot:
    """Compute remaining time and usage for both tracks as of `now`."""
    now = ensure_utc(now)
    return SlaSnapshot(
        target_id=instance.target_id,
        target_type=instance.target_type,
        instance_id=instance.id,
        workspace_id=instance.workspace_id,
        response_remaining_minutes=remaining_minutes(instance, policy, Track.RESPONSE, now),
        resolution_remaining_minutes=remaining_minutes(instance, policy, Track.RESOLUTION, now),
        response_used_percent=track_used_percent(instance, policy, Track.RESPONSE, now),
        resolution_used_percent=track_used_percent(instance, policy, Track.RESOLUTION, now),
        response_status=instance.response_status,
        resolution_status=instance.resolution_status,
        response_due_at=ensure_utc(instance.response_due_at),
        resolution_due_at=ensure_utc(instance.resolution_due_at),
        is_paused=bool(instance.is_paused),
        current_escalation_level=instance.current_escalation_level or 0,
        within_business_hours=is_within_business_hours(now, policy.calendar, policy.business_hours_only),
        computed_at=now,
    )
