from sqlalchemy import (
    Column, String, ForeignKey, Integer, Float, Boolean, Text, JSON, Index,
    Enum as SQLEnum, text,
)
from sqlalchemy.orm import relationship
import uuid
import enum
from sla_engine.core.clock import utcnow
from sla_engine.core.database import Base, UTCDateTime


class Track(str, enum.Enum):
    RESPONSE = "response"
    RESOLUTION = "resolution"


class TrackStatus(str, enum.Enum):
    PENDING = "pending"
    MET = "met"
    BREACHED = "breached"
    CANCELLED = "cancelled"  # Reported as met-without-breach


class SlaEventType(str, enum.Enum):
    CREATED = "created"
    PAUSED = "paused"
    RESUMED = "resumed"
    RESPONSE_MET = "response_met"
    RESPONSE_BREACHED = "response_breached"
    RESOLUTION_MET = "resolution_met"
    RESOLUTION_BREACHED = "resolution_breached"
    WARNING = "warning"
    ESCALATED = "escalated"
    REOPENED = "reopened"
    DUE_RESCHEDULED = "due_rescheduled"
    CANCELLED = "cancelled"


def _enum_column(enum_cls):
    # Store enum values (not member names) so raw SQL and indexes can use them
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


DEFAULT_BUSINESS_HOURS = {
    "start": "09:00",
    "end": "18:00",
    "timezone": "UTC",
    "workdays": [1, 2, 3, 4, 5],
}

PENDING_CONDITION = (
    "cancelled_at IS NULL AND "
    "(response_status = 'pending' OR resolution_status = 'pending')"
)


class SlaPolicy(Base):
    """Workspace-scoped SLA rule: budgets, calendar and escalation ladder."""
    __tablename__ = "sla_policies"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    workspace_id = Column(String, nullable=False, index=True)

    name = Column(String, nullable=False)
    description = Column(Text)

    # Applicability predicate
    applies_to = Column(String, nullable=False)  # Target type, e.g. "ticket"
    conditions = Column(JSON, nullable=False, default=dict)

    # Budgets (in minutes, null = untracked)
    response_time_minutes = Column(Integer)
    resolution_time_minutes = Column(Integer)
    warning_threshold = Column(Integer, nullable=False, default=80)

    # Calendar
    business_hours_only = Column(Boolean, nullable=False, default=True)
    business_hours = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_BUSINESS_HOURS))

    escalation_rules = Column(JSON, nullable=False, default=list)

    # Selection
    is_active = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    instances = relationship("SlaInstance", back_populates="policy", passive_deletes=True)

    __table_args__ = (
        Index("ix_sla_policies_workspace_active", "workspace_id", "is_active"),
    )


class SlaInstance(Base):
    """One tracked (policy, target) pair with its response and resolution timers."""
    __tablename__ = "sla_instances"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    policy_id = Column(String, ForeignKey("sla_policies.id", ondelete="CASCADE"), nullable=False, index=True)
    workspace_id = Column(String, nullable=False, index=True)

    # Opaque reference to the external target
    target_type = Column(String, nullable=False)
    target_id = Column(String, nullable=False)
    started_at = Column(UTCDateTime, nullable=False)  # Target creation instant

    # Response track
    response_due_at = Column(UTCDateTime)
    first_response_at = Column(UTCDateTime)
    response_status = Column(_enum_column(TrackStatus), nullable=False, default=TrackStatus.PENDING)
    response_warning_at = Column(UTCDateTime)

    # Resolution track
    resolution_due_at = Column(UTCDateTime)
    resolved_at = Column(UTCDateTime)
    resolution_status = Column(_enum_column(TrackStatus), nullable=False, default=TrackStatus.PENDING)
    resolution_warning_at = Column(UTCDateTime)

    # Pause state
    is_paused = Column(Boolean, nullable=False, default=False)
    paused_at = Column(UTCDateTime)
    accumulated_paused_minutes = Column(Float, nullable=False, default=0.0)

    # Escalation
    current_escalation_level = Column(Integer, nullable=False, default=0)
    last_escalation_at = Column(UTCDateTime)

    cancelled_at = Column(UTCDateTime)

    # Bookkeeping
    event_count = Column(Integer, nullable=False, default=0)
    version_id = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    policy = relationship("SlaPolicy", back_populates="instances")
    events = relationship(
        "SlaEvent",
        back_populates="instance",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SlaEvent.sequence",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("ix_sla_instances_target", "target_type", "target_id"),
        Index(
            "ix_sla_instances_pending",
            "workspace_id",
            postgresql_where=text(PENDING_CONDITION),
            sqlite_where=text(PENDING_CONDITION),
        ),
        Index(
            "uq_sla_instances_active_target",
            "policy_id", "target_type", "target_id",
            unique=True,
            postgresql_where=text(PENDING_CONDITION),
            sqlite_where=text(PENDING_CONDITION),
        ),
    )

    def track_status(self, track: Track) -> TrackStatus:
        if track == Track.RESPONSE:
            return self.response_status
        return self.resolution_status

    def track_due_at(self, track: Track):
        if track == Track.RESPONSE:
            return self.response_due_at
        return self.resolution_due_at

    @property
    def is_terminal(self) -> bool:
        """Cancelled, or neither track is still pending."""
        if self.cancelled_at is not None:
            return True
        return (
            self.response_status != TrackStatus.PENDING
            and self.resolution_status != TrackStatus.PENDING
        )


class SlaEvent(Base):
    """Append-only audit record of one instance state transition."""
    __tablename__ = "sla_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    instance_id = Column(String, ForeignKey("sla_instances.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)  # 1-based per instance

    event_type = Column(_enum_column(SlaEventType), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    occurred_at = Column(UTCDateTime, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Relationships
    instance = relationship("SlaInstance", back_populates="events")

    __table_args__ = (
        Index("ix_sla_events_instance_sequence", "instance_id", "sequence", unique=True),
        Index("ix_sla_events_instance_type", "instance_id", "event_type"),
    )
