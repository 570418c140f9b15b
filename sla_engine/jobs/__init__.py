"""
SLA Engine Jobs Module

Contains the background recomputation scheduler.
"""

from sla_engine.jobs.sla_batch import (
    SlaJobScheduler,
    get_sla_scheduler,
    start_sla_scheduler,
    stop_sla_scheduler,
    trigger_sla_recalculation,
)

__all__ = [
    "SlaJobScheduler",
    "get_sla_scheduler",
    "start_sla_scheduler",
    "stop_sla_scheduler",
    "trigger_sla_recalculation",
]
