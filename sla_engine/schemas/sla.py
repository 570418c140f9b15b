"""
SLA Schemas Module

Pydantic schemas for SLA engine API requests, responses and broadcast
snapshots.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Dict, List, Optional

from sla_engine.models.sla import SlaEventType, TrackStatus


# ============================================================================
# SLA Policy Schemas
# ============================================================================

class BusinessHoursConfig(BaseModel):
    """Working window of a policy calendar."""
    start: str = Field("09:00", description="Window opening, HH:MM local time")
    end: str = Field("18:00", description="Window closing, HH:MM local time")
    timezone: str = Field("UTC", description="IANA timezone name")
    workdays: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5], description="ISO weekdays, 1=Mon .. 7=Sun")


class EscalationRuleConfig(BaseModel):
    """One rung of an escalation ladder."""
    level: Optional[int] = Field(None, description="Escalation level, defaults to position + 1")
    threshold_percent: Optional[float] = Field(None, description="Fire once this much budget is used; omit to fire on breach")
    track: Optional[str] = Field(None, description="response, resolution, or omitted for both")
    action: Dict[str, Any] = Field(default_factory=lambda: {"type": "log"}, description="log, notify or webhook action")


class SlaPolicyCreate(BaseModel):
    """Schema for creating a new SLA policy."""
    workspace_id: str
    name: str
    description: Optional[str] = None
    applies_to: str = Field(..., description="Target type the policy covers (e.g., ticket)")
    conditions: Dict[str, Any] = Field(default_factory=dict, description="Attribute filters; a list value means any of")
    response_time_minutes: Optional[int] = Field(None, description="Response budget in minutes, null for untracked")
    resolution_time_minutes: Optional[int] = Field(None, description="Resolution budget in minutes, null for untracked")
    warning_threshold: Optional[int] = Field(None, description="Percent of budget used that raises a warning")
    business_hours_only: bool = True
    business_hours: Optional[BusinessHoursConfig] = None
    escalation_rules: List[EscalationRuleConfig] = Field(default_factory=list)
    priority: int = Field(0, description="Higher priority wins when several policies match")
    is_active: bool = True


class SlaPolicyUpdate(BaseModel):
    """Schema for updating an SLA policy. Omitted fields are left unchanged."""
    name: Optional[str] = None
    description: Optional[str] = None
    conditions: Optional[Dict[str, Any]] = None
    response_time_minutes: Optional[int] = None
    resolution_time_minutes: Optional[int] = None
    warning_threshold: Optional[int] = None
    business_hours_only: Optional[bool] = None
    business_hours: Optional[BusinessHoursConfig] = None
    escalation_rules: Optional[List[EscalationRuleConfig]] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class SlaPolicyResponse(BaseModel):
    """Schema for SLA policy response."""
    id: str
    workspace_id: str
    name: str
    description: Optional[str]
    applies_to: str
    conditions: Dict[str, Any]
    response_time_minutes: Optional[int]
    resolution_time_minutes: Optional[int]
    warning_threshold: int
    business_hours_only: bool
    business_hours: Dict[str, Any]
    escalation_rules: List[Dict[str, Any]]
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class SlaPolicyListResponse(BaseModel):
    """List of SLA policies."""
    policies: List[SlaPolicyResponse]
    total: int


# ============================================================================
# Lifecycle Fact Schemas
# ============================================================================

class TargetCreatedRequest(BaseModel):
    """A target appeared upstream and may need an SLA instance."""
    workspace_id: str
    target_type: str
    target_id: str
    created_at: Optional[datetime] = Field(None, description="Target creation instant, defaults to now")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Attributes policies match on")


class LifecycleFactRequest(BaseModel):
    """A lifecycle fact about an existing target."""
    target_id: str
    target_type: Optional[str] = Field(None, description="Restrict to instances of this target type")
    at: Optional[datetime] = Field(None, description="When the fact happened, defaults to now")


class PauseRequest(LifecycleFactRequest):
    """Pause the clocks of a target."""
    reason: Optional[str] = None


class LifecycleResult(BaseModel):
    """Outcome of a lifecycle fact."""
    applied: bool
    instance_ids: List[str] = Field(default_factory=list)
    events: List[str] = Field(default_factory=list)


# ============================================================================
# Snapshot Schemas
# ============================================================================

class SlaSnapshot(BaseModel):
    """Point-in-time view of one instance, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    target_id: str
    target_type: str
    instance_id: str
    workspace_id: str
    response_remaining_minutes: Optional[float]
    resolution_remaining_minutes: Optional[float]
    response_used_percent: Optional[float]
    resolution_used_percent: Optional[float]
    response_status: TrackStatus
    resolution_status: TrackStatus
    response_due_at: Optional[datetime]
    resolution_due_at: Optional[datetime]
    is_paused: bool
    current_escalation_level: int
    within_business_hours: bool
    computed_at: datetime

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WorkspaceSnapshotResponse(BaseModel):
    """Fresh full snapshot of a workspace's non-terminal instances."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    workspace_id: str
    computed_at: datetime
    snapshots: List[SlaSnapshot]


class DashboardResponse(BaseModel):
    """Instance counts for a workspace."""
    workspace_id: str
    total: int
    pending: int
    met: int
    breached: int
    cancelled: int
    paused: int
    at_risk: int = Field(..., description="Pending instances past their warning threshold")


# ============================================================================
# Event Log Schemas
# ============================================================================

class SlaEventResponse(BaseModel):
    """One audit event of an instance."""
    id: str
    instance_id: str
    sequence: int
    event_type: SlaEventType
    payload: Dict[str, Any]
    occurred_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class SlaEventListResponse(BaseModel):
    """Ordered event history of an instance."""
    instance_id: str
    events: List[SlaEventResponse]
    total: int


# ============================================================================
# Batch Job Schemas
# ============================================================================

class SlaBatchResultResponse(BaseModel):
    """Result of a recomputation run."""
    total_processed: int
    breached: int
    warnings: int
    escalated: int
    published: int
    errors: List[str]
    processed_at: str
    started_at: Optional[str] = None
    duration_seconds: Optional[float] = None


class SlaSchedulerStatusResponse(BaseModel):
    """Status of the recomputation scheduler."""
    running: bool
    interval_seconds: int
    workspaces: List[str]
    last_run: Optional[str]
    run_count: int
    error_count: int
    next_run_in_seconds: Optional[int]
