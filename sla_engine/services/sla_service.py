"""
SLA Service Module

Engine facade: persists policies and instances, serialises instance
mutations, turns lifecycle facts into state machine transitions and serves
snapshot and dashboard queries.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from sla_engine.core.clock import ensure_utc, isoformat, utcnow
from sla_engine.core.exceptions import (
    ConcurrentTransitionConflict,
    ConfigurationError,
    NotFoundError,
)
from sla_engine.core.config import settings
from sla_engine.models.sla import (
    DEFAULT_BUSINESS_HOURS,
    SlaEvent,
    SlaEventType,
    SlaInstance,
    SlaPolicy,
    Track,
    TrackStatus,
)
from sla_engine.schemas.sla import SlaSnapshot
from sla_engine.services import event_log, state_machine
from sla_engine.services.escalation import EscalationNotice, evaluate, track_used_percent
from sla_engine.services.policy_matcher import (
    CompiledPolicy,
    TargetRef,
    compile_policy,
    match,
)
from sla_engine.services.snapshot import build_snapshot
from sla_engine.services.state_machine import Transition


logger = logging.getLogger(__name__)


Mutation = Callable[[SlaInstance, CompiledPolicy], List[Transition]]

POLICY_FIELDS = (
    "name",
    "description",
    "conditions",
    "response_time_minutes",
    "resolution_time_minutes",
    "warning_threshold",
    "business_hours_only",
    "business_hours",
    "escalation_rules",
    "priority",
    "is_active",
)

# Columns that accept no null; an explicit null in an update is rejected
REQUIRED_POLICY_FIELDS = (
    "name",
    "conditions",
    "warning_threshold",
    "business_hours_only",
    "business_hours",
    "escalation_rules",
    "priority",
    "is_active",
)

# Edits to these fields move the due instants of running instances
SCHEDULE_FIELDS = (
    "response_time_minutes",
    "resolution_time_minutes",
    "business_hours_only",
    "business_hours",
)

# Compiled policies keyed by (id, updated_at); rows only change through this service
_policy_cache: Dict[Tuple[str, Optional[str]], CompiledPolicy] = {}


@dataclass
class InstanceUpdate:
    """
    An instance right after a mutation was committed.

    The snapshot and escalation notices are captured at commit time; later
    rollbacks in the same session expire the instance, so callers outside
    the service should read these rather than the instance itself.
    """
    instance_id: str
    workspace_id: str
    snapshot: SlaSnapshot
    transitions: List[Transition] = field(default_factory=list)
    notices: List[EscalationNotice] = field(default_factory=list)
    instance: Optional[SlaInstance] = None

    @classmethod
    def capture(
        cls,
        instance: SlaInstance,
        policy: CompiledPolicy,
        transitions: List[Transition],
        now: datetime
    ) -> "InstanceUpdate":
        return cls(
            instance_id=instance.id,
            workspace_id=instance.workspace_id,
            snapshot=build_snapshot(instance, policy, now),
            transitions=list(transitions),
            notices=[
                EscalationNotice.from_transition(instance, t)
                for t in transitions
                if t.event_type == SlaEventType.ESCALATED
            ],
            instance=instance,
        )

    @property
    def applied(self) -> bool:
        return bool(self.transitions)

    @property
    def event_types(self) -> List[str]:
        return [t.event_type.value for t in self.transitions]

    def transitions_of(self, *event_types: SlaEventType) -> List[Transition]:
        return [t for t in self.transitions if t.event_type in event_types]


@dataclass
class RecomputeResult:
    """Outcome of one pass over the pending instances."""
    updates: List[InstanceUpdate] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_pending: int = 0


class SlaService:
    """
    Service for tracking SLA instances.

    Provides methods for:
    - Managing SLA policies (create, list, update, deactivate)
    - Applying lifecycle facts (created, first response, resolved, reopened,
      cancelled, paused, resumed)
    - Recomputing pending instances for the scheduler
    - Snapshot, event and dashboard queries
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the SLA service.

        Args:
            db: Async database session
        """
        self.db = db

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    async def get_compiled_policy(self, policy_id: str) -> CompiledPolicy:
        """Typed policy for an id, compiled once per revision."""
        policy = await self.db.get(SlaPolicy, policy_id)
        if policy is None:
            raise NotFoundError("SlaPolicy", policy_id)

        key = (policy.id, isoformat(policy.updated_at))
        compiled = _policy_cache.get(key)
        if compiled is None:
            compiled = compile_policy(policy)
            # Only the latest revision of a policy is kept
            for stale in [k for k in _policy_cache if k[0] == policy.id]:
                del _policy_cache[stale]
            _policy_cache[key] = compiled
        return compiled

    async def get_workspace_policies(self, workspace_id: str) -> List[CompiledPolicy]:
        """Active, valid policies of a workspace; rows that fail to compile are skipped."""
        result = await self.db.execute(
            select(SlaPolicy.id).where(
                and_(
                    SlaPolicy.workspace_id == workspace_id,
                    SlaPolicy.is_active == True
                )
            )
        )
        compiled = []
        for policy_id in result.scalars().all():
            try:
                compiled.append(await self.get_compiled_policy(policy_id))
            except ConfigurationError as e:
                logger.error(f"Skipping invalid SLA policy {policy_id}: {e.message}")
        return compiled

    async def list_policies(self, workspace_id: str, active_only: bool = False) -> List[SlaPolicy]:
        """
        Get SLA policies for a workspace.

        Args:
            workspace_id: The workspace ID
            active_only: If True, only return active policies

        Returns:
            Policies ordered by descending priority
        """
        query = select(SlaPolicy).where(SlaPolicy.workspace_id == workspace_id)

        if active_only:
            query = query.where(SlaPolicy.is_active == True)

        query = query.order_by(SlaPolicy.priority.desc(), SlaPolicy.created_at.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_policy(self, policy_id: str) -> SlaPolicy:
        policy = await self.db.get(SlaPolicy, policy_id)
        if policy is None:
            raise NotFoundError("SlaPolicy", policy_id)
        return policy

    async def create_policy(self, workspace_id: str, data: Dict[str, Any]) -> SlaPolicy:
        """
        Validate and store a new SLA policy.

        Args:
            workspace_id: Owning workspace
            data: Policy fields (see SlaPolicyCreate)

        Returns:
            Created SlaPolicy

        Raises:
            ConfigurationError: If budgets, calendar or escalation rules are malformed
        """
        now = utcnow()
        policy = SlaPolicy(
            workspace_id=workspace_id,
            name=data["name"],
            description=data.get("description"),
            applies_to=data["applies_to"],
            conditions=data.get("conditions") or {},
            response_time_minutes=data.get("response_time_minutes"),
            resolution_time_minutes=data.get("resolution_time_minutes"),
            warning_threshold=(
                data["warning_threshold"] if data.get("warning_threshold") is not None
                else settings.SLA_DEFAULT_WARNING_THRESHOLD
            ),
            business_hours_only=data.get("business_hours_only", True),
            business_hours=data.get("business_hours") or dict(DEFAULT_BUSINESS_HOURS),
            escalation_rules=data.get("escalation_rules") or [],
            priority=data.get("priority") or 0,
            is_active=data.get("is_active", True),
            created_at=now,
            updated_at=now,
        )
        compile_policy(policy)

        self.db.add(policy)
        await self._commit_policy(policy)

        logger.info(
            f"Created SLA policy: workspace={workspace_id}, name={policy.name}, "
            f"applies_to={policy.applies_to}, response={policy.response_time_minutes}min, "
            f"resolution={policy.resolution_time_minutes}min"
        )

        return policy

    async def update_policy(self, policy_id: str, updates: Dict[str, Any]) -> SlaPolicy:
        """
        Update an existing SLA policy.

        The merged policy is validated before anything is written. Running
        instances keep their due instants unless SLA_PROPAGATE_POLICY_EDITS
        is enabled, in which case pending tracks are re-projected.

        Args:
            policy_id: The policy ID
            updates: Fields to update; unknown fields are ignored

        Returns:
            Updated SlaPolicy

        Raises:
            ConfigurationError: If a required field is set to null or the
                merged policy does not compile
        """
        for name in REQUIRED_POLICY_FIELDS:
            if name in updates and updates[name] is None:
                raise ConfigurationError(f"{name} may not be null", {"field": name})

        policy = await self.get_policy(policy_id)
        old_budgets = {
            Track.RESPONSE: policy.response_time_minutes,
            Track.RESOLUTION: policy.resolution_time_minutes,
        }

        changes = {
            name: value for name, value in updates.items()
            if name in POLICY_FIELDS and value != getattr(policy, name)
        }
        if not changes:
            return policy

        candidate = SlaPolicy(
            **{name: getattr(policy, name) for name in POLICY_FIELDS},
            id=policy.id,
            workspace_id=policy.workspace_id,
            applies_to=policy.applies_to,
            created_at=policy.created_at,
        )
        for name, value in changes.items():
            setattr(candidate, name, value)
        compile_policy(candidate)

        for name, value in changes.items():
            setattr(policy, name, value)
        policy.updated_at = utcnow()

        await self._commit_policy(policy)

        logger.info(f"Updated SLA policy {policy_id}: fields={sorted(changes)}")

        if settings.SLA_PROPAGATE_POLICY_EDITS and any(name in SCHEDULE_FIELDS for name in changes):
            await self.propagate_policy_edit(policy_id, old_budgets)

        return policy

    async def _commit_policy(self, policy: SlaPolicy) -> None:
        policy_id = policy.id
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Rejected SLA policy write {policy_id}: {e.orig}")
            raise ConfigurationError("Policy violates a storage constraint", {"error": str(e.orig)})
        await self.db.refresh(policy)

    async def deactivate_policy(self, policy_id: str) -> SlaPolicy:
        """Stop matching new targets; existing instances keep running under the policy."""
        return await self.update_policy(policy_id, {"is_active": False})

    async def propagate_policy_edit(
        self,
        policy_id: str,
        old_budgets: Dict[Track, Optional[int]],
        at: Optional[datetime] = None
    ) -> List[InstanceUpdate]:
        """Re-project pending tracks of every running instance of a policy."""
        at = ensure_utc(at) or utcnow()
        result = await self.db.execute(
            select(SlaInstance.id).where(
                and_(SlaInstance.policy_id == policy_id, self._pending_filter())
            )
        )

        updates = []
        for instance_id in result.scalars().all():
            update = await self.apply_transition(
                instance_id,
                lambda instance, policy: state_machine.reschedule(instance, policy, old_budgets, at)
            )
            if update and update.applied:
                updates.append(update)

        logger.info(f"Propagated edit of policy {policy_id} to {len(updates)} instances")
        return updates

    # ------------------------------------------------------------------
    # Instance mutation
    # ------------------------------------------------------------------

    async def _lock_instance(self, instance_id: str) -> Optional[SlaInstance]:
        # FOR UPDATE renders as nothing on SQLite; the version counter still guards it
        result = await self.db.execute(
            select(SlaInstance)
            .where(SlaInstance.id == instance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def apply_transition(
        self,
        instance_id: str,
        mutate: Mutation,
        now: Optional[datetime] = None
    ) -> Optional[InstanceUpdate]:
        """
        Run a mutation against one instance under its lock and persist the result.

        A lost race (the instance's version moved underneath us) is retried
        once against the freshly committed row; a second loss raises
        ConcurrentTransitionConflict.

        Args:
            instance_id: The instance to mutate
            mutate: Function applying transitions in place and returning them
            now: Instant the captured snapshot is computed at, defaults to now

        Returns:
            InstanceUpdate, or None if the instance does not exist
        """
        for attempt in (1, 2):
            try:
                instance = await self._lock_instance(instance_id)
                if instance is None:
                    return None

                policy = await self.get_compiled_policy(instance.policy_id)
                transitions = mutate(instance, policy)
                if transitions:
                    event_log.append(self.db, instance, transitions)
                await self.db.commit()
                return InstanceUpdate.capture(instance, policy, transitions, ensure_utc(now) or utcnow())

            except StaleDataError as e:
                await self.db.rollback()
                if attempt == 2:
                    logger.error(
                        f"Giving up on SLA instance {instance_id} after repeated concurrent updates",
                        extra={"instance_id": instance_id}
                    )
                    raise ConcurrentTransitionConflict(instance_id) from e
                logger.info(f"Concurrent update on SLA instance {instance_id}, retrying")

        return None

    # ------------------------------------------------------------------
    # Lifecycle facts
    # ------------------------------------------------------------------

    async def _find_open_instance(self, policy_id: str, target_type: str, target_id: str) -> Optional[SlaInstance]:
        result = await self.db.execute(
            select(SlaInstance)
            .where(
                and_(
                    SlaInstance.policy_id == policy_id,
                    SlaInstance.target_type == target_type,
                    SlaInstance.target_id == target_id,
                    SlaInstance.cancelled_at.is_(None),
                )
            )
            .order_by(SlaInstance.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def on_target_created(
        self,
        workspace_id: str,
        target_type: str,
        target_id: str,
        created_at: Optional[datetime] = None,
        attributes: Optional[Dict[str, Any]] = None
    ) -> Optional[InstanceUpdate]:
        """
        Start tracking a new target if a policy matches it.

        Idempotent: a target that already has an instance under the matched
        policy gets that instance back with no new transitions.

        Args:
            workspace_id: Workspace the target lives in
            target_type: Opaque target type (e.g., ticket)
            target_id: Opaque target id
            created_at: Target creation instant, defaults to now
            attributes: Target attributes the policy conditions match on

        Returns:
            InstanceUpdate, or None if no policy applies
        """
        started_at = ensure_utc(created_at) or utcnow()
        target = TargetRef(
            target_type=target_type,
            target_id=target_id,
            workspace_id=workspace_id,
            attributes=attributes or {},
        )

        policy = match(target, await self.get_workspace_policies(workspace_id))
        if policy is None:
            logger.info(f"No SLA policy matches {target_type}/{target_id} in workspace {workspace_id}")
            return None

        existing = await self._find_open_instance(policy.id, target_type, target_id)
        if existing is not None:
            return InstanceUpdate.capture(existing, policy, [], utcnow())

        instance, created = state_machine.create_instance(policy, target, started_at)
        self.db.add(instance)
        event_log.append(self.db, instance, [created])

        try:
            await self.db.commit()
        except IntegrityError:
            # Another writer created it first
            await self.db.rollback()
            existing = await self._find_open_instance(policy.id, target_type, target_id)
            if existing is None:
                raise
            return InstanceUpdate.capture(existing, policy, [], utcnow())

        logger.info(
            f"Started SLA instance {instance.id} for {target_type}/{target_id}: "
            f"policy={policy.name}, response_due={isoformat(instance.response_due_at)}, "
            f"resolution_due={isoformat(instance.resolution_due_at)}",
            extra={"workspace_id": workspace_id, "instance_id": instance.id}
        )
        return InstanceUpdate.capture(instance, policy, [created], utcnow())

    async def _target_instance_ids(self, target_id: str, target_type: Optional[str] = None) -> List[str]:
        """Latest non-cancelled instance per policy for a target."""
        query = select(SlaInstance.id, SlaInstance.policy_id).where(
            and_(
                SlaInstance.target_id == target_id,
                SlaInstance.cancelled_at.is_(None),
            )
        )
        if target_type:
            query = query.where(SlaInstance.target_type == target_type)
        query = query.order_by(SlaInstance.created_at.desc())

        result = await self.db.execute(query)
        latest: Dict[str, str] = {}
        for instance_id, policy_id in result.all():
            latest.setdefault(policy_id, instance_id)

        if not latest:
            raise NotFoundError("SlaInstance", details={"target_id": target_id, "target_type": target_type})
        return list(latest.values())

    async def _apply_fact(
        self,
        fact: str,
        target_id: str,
        target_type: Optional[str],
        mutate: Mutation
    ) -> List[InstanceUpdate]:
        try:
            instance_ids = await self._target_instance_ids(target_id, target_type)
        except NotFoundError as e:
            logger.info(f"Ignoring {fact} for target {target_id}: {e.message}", extra=e.details)
            return []

        updates = []
        for instance_id in instance_ids:
            update = await self.apply_transition(instance_id, mutate)
            if update is not None:
                updates.append(update)

        applied = [u for u in updates if u.applied]
        if applied:
            logger.info(
                f"Applied {fact} to target {target_id}: "
                f"{', '.join(t for u in applied for t in u.event_types)}"
            )
        return updates

    async def on_first_response(
        self,
        target_id: str,
        at: Optional[datetime] = None,
        target_type: Optional[str] = None
    ) -> List[InstanceUpdate]:
        at = ensure_utc(at) or utcnow()
        return await self._apply_fact(
            "first_response", target_id, target_type,
            lambda instance, policy: state_machine.record_first_response(instance, at)
        )

    async def on_resolved(
        self,
        target_id: str,
        at: Optional[datetime] = None,
        target_type: Optional[str] = None
    ) -> List[InstanceUpdate]:
        at = ensure_utc(at) or utcnow()
        return await self._apply_fact(
            "resolved", target_id, target_type,
            lambda instance, policy: state_machine.record_resolution(instance, at)
        )

    async def on_reopened(
        self,
        target_id: str,
        at: Optional[datetime] = None,
        target_type: Optional[str] = None
    ) -> List[InstanceUpdate]:
        at = ensure_utc(at) or utcnow()
        return await self._apply_fact(
            "reopened", target_id, target_type,
            lambda instance, policy: state_machine.reopen(instance, policy, at)
        )

    async def on_cancelled(
        self,
        target_id: str,
        at: Optional[datetime] = None,
        target_type: Optional[str] = None,
        reason: Optional[str] = None
    ) -> List[InstanceUpdate]:
        at = ensure_utc(at) or utcnow()
        return await self._apply_fact(
            "cancelled", target_id, target_type,
            lambda instance, policy: state_machine.cancel(instance, at, reason)
        )

    async def pause_target(
        self,
        target_id: str,
        at: Optional[datetime] = None,
        reason: Optional[str] = None,
        target_type: Optional[str] = None
    ) -> List[InstanceUpdate]:
        at = ensure_utc(at) or utcnow()
        return await self._apply_fact(
            "pause", target_id, target_type,
            lambda instance, policy: state_machine.pause(instance, at, reason)
        )

    async def resume_target(
        self,
        target_id: str,
        at: Optional[datetime] = None,
        target_type: Optional[str] = None
    ) -> List[InstanceUpdate]:
        at = ensure_utc(at) or utcnow()
        return await self._apply_fact(
            "resume", target_id, target_type,
            lambda instance, policy: state_machine.resume(instance, policy, at)
        )

    # ------------------------------------------------------------------
    # Recomputation
    # ------------------------------------------------------------------

    def _pending_filter(self, workspaces: Optional[List[str]] = None):
        condition = and_(
            SlaInstance.cancelled_at.is_(None),
            or_(
                SlaInstance.response_status == TrackStatus.PENDING,
                SlaInstance.resolution_status == TrackStatus.PENDING,
            )
        )
        if workspaces:
            condition = and_(condition, SlaInstance.workspace_id.in_(workspaces))
        return condition

    async def get_pending_instance_ids(self, workspaces: Optional[List[str]] = None) -> List[str]:
        result = await self.db.execute(
            select(SlaInstance.id)
            .where(self._pending_filter(workspaces))
            .order_by(SlaInstance.workspace_id, SlaInstance.started_at)
        )
        return list(result.scalars().all())

    async def recompute_instance(self, instance_id: str, now: datetime) -> Optional[InstanceUpdate]:
        """Tick then evaluate escalations for one instance."""
        def mutate(instance: SlaInstance, policy: CompiledPolicy) -> List[Transition]:
            transitions = state_machine.tick(instance, now)
            transitions.extend(evaluate(instance, policy, now))
            return transitions

        return await self.apply_transition(instance_id, mutate, now)

    async def recompute_pending(
        self,
        now: Optional[datetime] = None,
        workspaces: Optional[List[str]] = None
    ) -> RecomputeResult:
        """
        Recompute every non-terminal instance.

        This is the main method used by the scheduler. Each instance is
        processed in isolation; a failure is logged and recorded and the
        pass continues.

        Args:
            now: Evaluation instant, defaults to now
            workspaces: Restrict to these workspaces (scheduler shard)

        Returns:
            RecomputeResult with one update per processed instance
        """
        now = ensure_utc(now) or utcnow()
        instance_ids = await self.get_pending_instance_ids(workspaces)
        result = RecomputeResult(total_pending=len(instance_ids))

        for instance_id in instance_ids:
            try:
                update = await self.recompute_instance(instance_id, now)
                if update is not None:
                    result.updates.append(update)
            except Exception as e:
                await self.db.rollback()
                error_msg = f"Error processing SLA instance {instance_id}: {str(e)}"
                logger.error(error_msg, extra={"instance_id": instance_id})
                result.errors.append(error_msg)

        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_instance_by_id(self, instance_id: str) -> SlaInstance:
        instance = await self.db.get(SlaInstance, instance_id)
        if instance is None:
            raise NotFoundError("SlaInstance", instance_id)
        return instance

    async def get_instance(
        self,
        target_id: str,
        target_type: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[SlaSnapshot]:
        """Snapshot of the most recent instance tracking a target, None if untracked."""
        query = select(SlaInstance).where(SlaInstance.target_id == target_id)
        if target_type:
            query = query.where(SlaInstance.target_type == target_type)
        query = query.order_by(SlaInstance.created_at.desc()).limit(1)

        instance = (await self.db.execute(query)).scalar_one_or_none()
        if instance is None:
            return None

        policy = await self.get_compiled_policy(instance.policy_id)
        return build_snapshot(instance, policy, ensure_utc(now) or utcnow())

    async def get_events(self, instance_id: str) -> List[SlaEvent]:
        """Ordered audit trail of an instance."""
        await self.get_instance_by_id(instance_id)
        return await event_log.list_events(self.db, instance_id)

    async def _load_instances(self, query) -> List[Tuple[SlaInstance, CompiledPolicy]]:
        result = await self.db.execute(query)
        rows = []
        for instance in result.scalars().all():
            rows.append((instance, await self.get_compiled_policy(instance.policy_id)))
        return rows

    async def get_workspace_snapshot(
        self,
        workspace_id: str,
        now: Optional[datetime] = None
    ) -> List[SlaSnapshot]:
        """Fresh snapshots of all non-terminal instances of a workspace."""
        now = ensure_utc(now) or utcnow()
        query = (
            select(SlaInstance)
            .where(self._pending_filter([workspace_id]))
            .order_by(SlaInstance.started_at)
        )
        return [build_snapshot(instance, policy, now) for instance, policy in await self._load_instances(query)]

    async def get_dashboard(self, workspace_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Instance counts for a workspace.

        An instance counts as breached if either track breached, as met once
        finished without breach, and at risk while pending past its warning
        threshold.
        """
        now = ensure_utc(now) or utcnow()
        rows = await self._load_instances(
            select(SlaInstance).where(SlaInstance.workspace_id == workspace_id)
        )

        counts = {
            "workspace_id": workspace_id,
            "total": len(rows),
            "pending": 0,
            "met": 0,
            "breached": 0,
            "cancelled": 0,
            "paused": 0,
            "at_risk": 0,
        }

        for instance, policy in rows:
            statuses = (instance.response_status, instance.resolution_status)
            if TrackStatus.BREACHED in statuses:
                counts["breached"] += 1
            elif instance.cancelled_at is not None:
                counts["cancelled"] += 1
            elif instance.is_terminal:
                counts["met"] += 1

            if instance.is_terminal:
                continue

            counts["pending"] += 1
            if instance.is_paused:
                counts["paused"] += 1
            if TrackStatus.BREACHED not in statuses and any(
                (track_used_percent(instance, policy, track, now) or 0) >= policy.warning_threshold
                for track in Track
                if instance.track_status(track) == TrackStatus.PENDING
            ):
                counts["at_risk"] += 1

        return counts
