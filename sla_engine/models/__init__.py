from sla_engine.core.database import Base
from sla_engine.models.sla import (
    SlaPolicy,
    SlaInstance,
    SlaEvent,
    Track,
    TrackStatus,
    SlaEventType,
)

__all__ = [
    "Base",
    "SlaPolicy",
    "SlaInstance",
    "SlaEvent",
    "Track",
    "TrackStatus",
    "SlaEventType",
]
