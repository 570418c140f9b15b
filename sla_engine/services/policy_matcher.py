"""
SLA Policy Matcher

Selects the applicable policy for a target and compiles stored policy rows
into the typed configuration used on the hot path.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sla_engine.core.clock import ensure_utc
from sla_engine.core.config import settings
from sla_engine.core.exceptions import ConfigurationError
from sla_engine.models.sla import SlaPolicy, Track
from sla_engine.services.calendar import BusinessCalendar


ACTION_TYPES = ("log", "notify", "webhook")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class TargetRef:
    """Opaque reference to an external target plus the attributes policies match on."""
    target_type: str
    target_id: str
    workspace_id: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EscalationRule:
    """
    One rung of the escalation ladder.

    Percent-keyed rules (threshold_percent set) trigger once used time reaches
    the threshold; level-keyed rules trigger when their track breaches.
    A track of None watches both tracks.
    """
    level: int
    action: Dict[str, Any]
    threshold_percent: Optional[float] = None
    track: Optional[Track] = None

    @property
    def is_level_keyed(self) -> bool:
        return self.threshold_percent is None

    def watches(self, track: Track) -> bool:
        return self.track is None or self.track == track


@dataclass(frozen=True)
class CompiledPolicy:
    """Validated, typed view of an SlaPolicy row."""
    id: str
    workspace_id: str
    name: str
    applies_to: str
    conditions: Dict[str, Any]
    priority: int
    is_active: bool
    created_at: Optional[datetime]
    response_minutes: Optional[int]
    resolution_minutes: Optional[int]
    warning_threshold: float
    business_hours_only: bool
    calendar: BusinessCalendar
    escalation_rules: Tuple[EscalationRule, ...] = ()

    def budget_for(self, track: Track) -> Optional[int]:
        if track == Track.RESPONSE:
            return self.response_minutes
        return self.resolution_minutes

    @property
    def has_implicit_warning(self) -> bool:
        """True unless an explicit percent rule already fires at or below the warning threshold."""
        return not any(
            rule.threshold_percent is not None and rule.threshold_percent <= self.warning_threshold
            for rule in self.escalation_rules
        )


def compile_rules(raw_rules: Optional[Iterable[Dict[str, Any]]]) -> Tuple[EscalationRule, ...]:
    """
    Validate and type an escalation ladder.

    Levels default to position + 1, must be strictly increasing, and percent
    thresholds may not decrease as levels rise.
    """
    rules: List[EscalationRule] = []
    previous_level = 0
    previous_threshold = 0.0

    for index, raw in enumerate(raw_rules or []):
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Escalation rule #{index + 1} must be an object")

        level = raw.get("level")
        level = index + 1 if level is None else int(level)
        if level < 1:
            raise ConfigurationError(
                f"Escalation levels start at 1 (rule #{index + 1} has level {level})",
                {"rule": index}
            )
        if level <= previous_level:
            raise ConfigurationError(
                f"Escalation levels must be strictly increasing (rule #{index + 1} has level {level})",
                {"rule": index}
            )

        threshold = raw.get("threshold_percent")
        if threshold is not None:
            threshold = float(threshold)
            if threshold <= 0 or threshold > 100:
                raise ConfigurationError(
                    f"Escalation threshold must be in (0, 100], got {threshold}",
                    {"rule": index}
                )
            if threshold < previous_threshold:
                raise ConfigurationError(
                    "Escalation thresholds may not decrease as levels rise",
                    {"rule": index}
                )
            previous_threshold = threshold

        track = raw.get("track")
        if track in (None, "", "any"):
            track = None
        else:
            try:
                track = Track(track)
            except ValueError:
                raise ConfigurationError(f"Unknown escalation track '{track}'", {"rule": index})

        action = dict(raw.get("action") or {"type": "log"})
        action_type = action.get("type", "log")
        if action_type not in ACTION_TYPES:
            raise ConfigurationError(f"Unknown escalation action '{action_type}'", {"rule": index})
        if action_type == "webhook" and not action.get("url"):
            raise ConfigurationError("Webhook escalation action requires a url", {"rule": index})
        action["type"] = action_type

        rules.append(EscalationRule(level=level, action=action, threshold_percent=threshold, track=track))
        previous_level = level

    return tuple(rules)


def compile_policy(policy: SlaPolicy) -> CompiledPolicy:
    """Turn a stored policy into its typed form, raising ConfigurationError if malformed."""
    for name in ("response_time_minutes", "resolution_time_minutes"):
        value = getattr(policy, name)
        if value is not None and value < 0:
            raise ConfigurationError(f"{name} may not be negative", {"field": name})

    warning_threshold = policy.warning_threshold
    if warning_threshold is None:
        warning_threshold = settings.SLA_DEFAULT_WARNING_THRESHOLD
    if warning_threshold <= 0 or warning_threshold > 100:
        raise ConfigurationError(
            f"Warning threshold must be in (0, 100], got {warning_threshold}",
            {"field": "warning_threshold"}
        )

    return CompiledPolicy(
        id=policy.id,
        workspace_id=policy.workspace_id,
        name=policy.name,
        applies_to=policy.applies_to,
        conditions=dict(policy.conditions or {}),
        priority=policy.priority or 0,
        is_active=bool(policy.is_active),
        created_at=ensure_utc(policy.created_at),
        response_minutes=policy.response_time_minutes,
        resolution_minutes=policy.resolution_time_minutes,
        warning_threshold=float(warning_threshold),
        business_hours_only=True if policy.business_hours_only is None else policy.business_hours_only,
        calendar=BusinessCalendar.from_config(
            policy.business_hours or {},
            default_timezone=settings.SLA_DEFAULT_TIMEZONE
        ),
        escalation_rules=compile_rules(policy.escalation_rules),
    )


def matches_conditions(conditions: Dict[str, Any], attributes: Dict[str, Any]) -> bool:
    """
    Check target attributes against a policy's condition map.

    Empty condition values are ignored, a list means "any of", and a missing
    attribute fails the condition.
    """
    for key, expected in (conditions or {}).items():
        if expected is None or expected == "" or expected == []:
            continue

        if key not in attributes:
            return False

        actual = attributes[key]
        if isinstance(expected, (list, tuple, set)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False

    return True


def match(target: TargetRef, policies: Iterable[CompiledPolicy]) -> Optional[CompiledPolicy]:
    """
    Pick the policy for a target: active, same workspace and type, conditions
    accepted; highest priority wins and ties go to the newest policy.
    """
    candidates = [
        policy for policy in policies
        if policy.is_active
        and policy.workspace_id == target.workspace_id
        and policy.applies_to == target.target_type
        and matches_conditions(policy.conditions, target.attributes)
    ]
    if not candidates:
        return None

    return max(candidates, key=lambda p: (p.priority, p.created_at or EPOCH))
