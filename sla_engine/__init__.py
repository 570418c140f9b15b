"""SLA tracking and escalation engine."""

__version__ = "1.0.0"
