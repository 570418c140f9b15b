"""
SLA API Endpoints

Thin HTTP adapter over SlaService: policy management, lifecycle facts,
snapshot and event queries, and scheduler control.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from sla_engine.core.clock import utcnow
from sla_engine.core.database import get_db
from sla_engine.jobs.sla_batch import trigger_sla_recalculation, get_sla_scheduler
from sla_engine.services.broadcast import broadcast_publisher
from sla_engine.services.sla_service import InstanceUpdate, SlaService
from sla_engine.schemas.sla import (
    DashboardResponse,
    LifecycleFactRequest,
    LifecycleResult,
    PauseRequest,
    SlaBatchResultResponse,
    SlaEventListResponse,
    SlaPolicyCreate,
    SlaPolicyListResponse,
    SlaPolicyResponse,
    SlaPolicyUpdate,
    SlaSchedulerStatusResponse,
    SlaSnapshot,
    TargetCreatedRequest,
    WorkspaceSnapshotResponse,
)


logger = logging.getLogger(__name__)
router = APIRouter()


async def _publish_updates(updates: List[InstanceUpdate]) -> LifecycleResult:
    """Broadcast applied updates and summarise them for the caller."""
    applied = [update for update in updates if update.applied]
    for update in applied:
        await broadcast_publisher.publish_instance_update(update.snapshot, update.event_types)

    return LifecycleResult(
        applied=bool(applied),
        instance_ids=[update.instance_id for update in updates],
        events=[event_type for update in applied for event_type in update.event_types],
    )


# ============================================================================
# SLA Policy Endpoints
# ============================================================================

@router.get("/policies", response_model=SlaPolicyListResponse)
async def list_sla_policies(
    workspace_id: str = Query(..., description="Workspace to list policies for"),
    active_only: bool = Query(False, description="Only return active policies"),
    db: AsyncSession = Depends(get_db)
):
    """List the SLA policies of a workspace, highest priority first."""
    policies = await SlaService(db).list_policies(workspace_id, active_only=active_only)
    return SlaPolicyListResponse(policies=policies, total=len(policies))


@router.post("/policies", response_model=SlaPolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_sla_policy(
    policy_data: SlaPolicyCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Create a new SLA policy.

    The calendar, budgets and escalation ladder are validated before the
    policy is stored; malformed configuration is rejected with 422.
    """
    data = policy_data.model_dump(exclude={"workspace_id"})
    return await SlaService(db).create_policy(policy_data.workspace_id, data)


@router.get("/policies/{policy_id}", response_model=SlaPolicyResponse)
async def get_sla_policy(
    policy_id: str,
    db: AsyncSession = Depends(get_db)
):
    return await SlaService(db).get_policy(policy_id)


@router.patch("/policies/{policy_id}", response_model=SlaPolicyResponse)
async def update_sla_policy(
    policy_id: str,
    policy_update: SlaPolicyUpdate,
    db: AsyncSession = Depends(get_db)
):
    """
    Update an SLA policy.

    Edits apply to future matches. Running instances are re-projected only
    when policy-edit propagation is enabled.
    """
    return await SlaService(db).update_policy(
        policy_id,
        policy_update.model_dump(exclude_unset=True)
    )


@router.delete("/policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_sla_policy(
    policy_id: str,
    db: AsyncSession = Depends(get_db)
):
    """
    Deactivate an SLA policy.

    The policy stops matching new targets; existing instances keep running.
    """
    await SlaService(db).deactivate_policy(policy_id)
    return None


# ============================================================================
# Lifecycle Fact Endpoints
# ============================================================================

@router.post("/targets", response_model=LifecycleResult, status_code=status.HTTP_200_OK)
async def target_created(
    request: TargetCreatedRequest,
    db: AsyncSession = Depends(get_db)
):
    """Start tracking a target if one of its workspace's policies matches."""
    update = await SlaService(db).on_target_created(
        workspace_id=request.workspace_id,
        target_type=request.target_type,
        target_id=request.target_id,
        created_at=request.created_at,
        attributes=request.attributes,
    )
    return await _publish_updates([update] if update else [])


@router.post("/targets/first-response", response_model=LifecycleResult, status_code=status.HTTP_200_OK)
async def target_first_response(
    request: LifecycleFactRequest,
    db: AsyncSession = Depends(get_db)
):
    updates = await SlaService(db).on_first_response(request.target_id, request.at, request.target_type)
    return await _publish_updates(updates)


@router.post("/targets/resolved", response_model=LifecycleResult, status_code=status.HTTP_200_OK)
async def target_resolved(
    request: LifecycleFactRequest,
    db: AsyncSession = Depends(get_db)
):
    updates = await SlaService(db).on_resolved(request.target_id, request.at, request.target_type)
    return await _publish_updates(updates)


@router.post("/targets/reopened", response_model=LifecycleResult, status_code=status.HTTP_200_OK)
async def target_reopened(
    request: LifecycleFactRequest,
    db: AsyncSession = Depends(get_db)
):
    updates = await SlaService(db).on_reopened(request.target_id, request.at, request.target_type)
    return await _publish_updates(updates)


@router.post("/targets/cancelled", response_model=LifecycleResult, status_code=status.HTTP_200_OK)
async def target_cancelled(
    request: PauseRequest,
    db: AsyncSession = Depends(get_db)
):
    updates = await SlaService(db).on_cancelled(
        request.target_id, request.at, request.target_type, reason=request.reason
    )
    return await _publish_updates(updates)


@router.post("/targets/pause", response_model=LifecycleResult, status_code=status.HTTP_200_OK)
async def target_paused(
    request: PauseRequest,
    db: AsyncSession = Depends(get_db)
):
    updates = await SlaService(db).pause_target(
        request.target_id, request.at, reason=request.reason, target_type=request.target_type
    )
    return await _publish_updates(updates)


@router.post("/targets/resume", response_model=LifecycleResult, status_code=status.HTTP_200_OK)
async def target_resumed(
    request: LifecycleFactRequest,
    db: AsyncSession = Depends(get_db)
):
    updates = await SlaService(db).resume_target(request.target_id, request.at, request.target_type)
    return await _publish_updates(updates)


# ============================================================================
# Query Endpoints
# ============================================================================

@router.get("/targets/{target_id}", response_model=SlaSnapshot)
async def get_target_snapshot(
    target_id: str,
    target_type: str = Query(None, description="Restrict to this target type"),
    db: AsyncSession = Depends(get_db)
):
    """Current snapshot of the most recent instance tracking a target."""
    snapshot = await SlaService(db).get_instance(target_id, target_type)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No SLA instance for target '{target_id}'"
        )
    return snapshot


@router.get("/instances/{instance_id}/events", response_model=SlaEventListResponse)
async def get_instance_events(
    instance_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Ordered audit trail of an instance."""
    events = await SlaService(db).get_events(instance_id)
    return SlaEventListResponse(instance_id=instance_id, events=events, total=len(events))


@router.get("/workspaces/{workspace_id}/snapshot", response_model=WorkspaceSnapshotResponse)
async def get_workspace_snapshot(
    workspace_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Fresh full snapshot of a workspace, for clients that missed broadcasts."""
    now = utcnow()
    snapshots = await SlaService(db).get_workspace_snapshot(workspace_id, now)
    return WorkspaceSnapshotResponse(workspace_id=workspace_id, computed_at=now, snapshots=snapshots)


@router.get("/workspaces/{workspace_id}/dashboard", response_model=DashboardResponse)
async def get_workspace_dashboard(
    workspace_id: str,
    db: AsyncSession = Depends(get_db)
):
    return DashboardResponse(**await SlaService(db).get_dashboard(workspace_id))


# ============================================================================
# Scheduler Endpoints
# ============================================================================

@router.post("/recalculate", response_model=SlaBatchResultResponse)
async def trigger_sla_batch_recalculation():
    """Run a recomputation pass now instead of waiting for the next interval."""
    result = await trigger_sla_recalculation()
    return SlaBatchResultResponse(**result)


@router.get("/scheduler/status", response_model=SlaSchedulerStatusResponse)
async def get_scheduler_status():
    """
    Get the current status of the recomputation scheduler.

    Returns information about the scheduler including run count and next scheduled run.
    """
    scheduler = get_sla_scheduler()
    return SlaSchedulerStatusResponse(**scheduler.get_status())
