"""
Deadline Calculator

Produces and updates due instants for a timer track using the business
calendar and the instance's pause history.
"""

from datetime import datetime
from typing import Optional

from sla_engine.core.clock import ensure_utc
from sla_engine.models.sla import SlaInstance, Track
from sla_engine.services.calendar import business_minutes_between, project_forward
from sla_engine.services.policy_matcher import CompiledPolicy


def initial_due(policy: CompiledPolicy, track: Track, started_at: datetime) -> Optional[datetime]:
    """Due instant for a fresh track, None when the policy leaves the track untracked."""
    budget = policy.budget_for(track)
    if budget is None:
        return None
    return project_forward(started_at, budget, policy.calendar, policy.business_hours_only)


def remaining_budget_at(
    policy: CompiledPolicy,
    due_at: datetime,
    at: datetime,
) -> float:
    """
    Business minutes still granted at `at` for a track due at `due_at`.

    For a first pause this equals the original budget minus the business
    minutes consumed since creation.
    """
    return business_minutes_between(at, due_at, policy.calendar, policy.business_hours_only)


def compute_due(
    track: Track,
    instance: SlaInstance,
    policy: CompiledPolicy,
    resume_at: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Due instant for a track.

    Without `resume_at` this is the creation-time projection. With it, the
    budget left at the pause instant is projected forward from the resume
    instant; the result is never earlier than the current due.
    """
    current_due = ensure_utc(instance.track_due_at(track))
    if resume_at is None or current_due is None:
        return initial_due(policy, track, instance.started_at)

    paused_at = ensure_utc(instance.paused_at) or ensure_utc(resume_at)
    remaining = remaining_budget_at(policy, current_due, paused_at)
    new_due = project_forward(resume_at, remaining, policy.calendar, policy.business_hours_only)
    return max(new_due, current_due)


def reschedule_due(
    track: Track,
    instance: SlaInstance,
    policy: CompiledPolicy,
    old_budget: Optional[int],
    at: datetime,
) -> Optional[datetime]:
    """
    Re-project a pending track after its policy budget changed.

    The budget delta is applied to what remains at `at` (or at the pause
    instant while paused).
    """
    new_budget = policy.budget_for(track)
    current_due = ensure_utc(instance.track_due_at(track))
    if new_budget is None:
        return None
    if current_due is None or old_budget is None:
        return initial_due(policy, track, instance.started_at)

    reference = ensure_utc(instance.paused_at) if instance.is_paused else ensure_utc(at)
    remaining = remaining_budget_at(policy, current_due, reference) + (new_budget - old_budget)
    return project_forward(reference, max(0.0, remaining), policy.calendar, policy.business_hours_only)
