"""
SLA Batch Job Module

Periodic recomputation of every non-terminal SLA instance: breach detection,
escalation, and per-workspace snapshot broadcasts.
"""

import asyncio
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional
import logging

from sla_engine.core.clock import isoformat, utcnow
from sla_engine.core.config import settings
from sla_engine.core.database import AsyncSessionLocal
from sla_engine.middleware.monitoring import tick_id_ctx
from sla_engine.models.sla import SlaEventType
from sla_engine.services.broadcast import BroadcastPublisher, broadcast_publisher
from sla_engine.services.calendar import format_duration
from sla_engine.services.escalation import EscalationDispatcher, escalation_dispatcher
from sla_engine.services.metrics_service import metrics_collector
from sla_engine.services.sla_service import InstanceUpdate, SlaService


logger = logging.getLogger(__name__)


class SlaJobScheduler:
    """
    Scheduler for SLA recomputation runs.

    Uses asyncio for lightweight background task scheduling. One scheduler
    runs per process; SLA_SCHEDULER_WORKSPACES shards workspaces across
    processes.
    """

    def __init__(
        self,
        interval_seconds: Optional[int] = None,
        workspaces: Optional[List[str]] = None,
        publisher: Optional[BroadcastPublisher] = None,
        dispatcher: Optional[EscalationDispatcher] = None,
        session_factory=None,
        on_complete: Optional[Callable[[dict], Awaitable[None]]] = None
    ):
        """
        Initialize the SLA job scheduler.

        Args:
            interval_seconds: Time between runs, defaults to SLA_RECOMPUTE_INTERVAL_SECONDS
            workspaces: Workspaces this process owns; empty means all
            publisher: Broadcast publisher for snapshots and notices
            dispatcher: Escalation action dispatcher
            session_factory: Session factory, defaults to the application's
            on_complete: Optional async callback to execute after each run
        """
        self.interval_seconds = interval_seconds or settings.SLA_RECOMPUTE_INTERVAL_SECONDS
        self.workspaces = list(workspaces if workspaces is not None else settings.SLA_SCHEDULER_WORKSPACES)
        self.publisher = publisher or broadcast_publisher
        self.dispatcher = dispatcher or escalation_dispatcher
        self.session_factory = session_factory or AsyncSessionLocal
        self.on_complete = on_complete
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_run: Optional[datetime] = None
        self._run_count = 0
        self._error_count = 0

    @asynccontextmanager
    async def get_db_session(self):
        """
        Create a database session for one run.

        Yields:
            AsyncSession: Database session
        """
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    async def run_sla_check(self, now: Optional[datetime] = None) -> dict:
        """
        Execute a single recomputation run.

        Ticks and evaluates every pending instance, then publishes one
        snapshot batch per workspace, breach and warning notices, and
        delivers escalation actions.

        Args:
            now: Evaluation instant, defaults to now

        Returns:
            Summary of the run
        """
        tick_id = str(uuid.uuid4())
        token = tick_id_ctx.set(tick_id)
        start_time = utcnow()
        now = now or start_time

        logger.info("Starting SLA recomputation run...")

        try:
            async with self.get_db_session() as db:
                result = await SlaService(db).recompute_pending(now=now, workspaces=self.workspaces or None)

            counts = await self._publish(result.updates)

            notices = [notice for update in result.updates for notice in update.notices]
            await self.dispatcher.dispatch_all(notices)

            finished = utcnow()
            duration = (finished - start_time).total_seconds()
            summary = {
                "total_processed": len(result.updates),
                "breached": counts["breached"],
                "warnings": counts["warnings"],
                "escalated": len(notices),
                "published": counts["published"],
                "errors": result.errors,
                "processed_at": isoformat(finished),
                "started_at": isoformat(start_time),
                "duration_seconds": duration,
            }

            self._last_run = finished
            self._run_count += 1
            metrics_collector.record_scheduler_run(duration, result.total_pending, len(result.errors))

            logger.info(
                f"SLA recomputation completed in {duration:.2f}s: "
                f"processed={summary['total_processed']}, breached={summary['breached']}, "
                f"escalated={summary['escalated']}, errors={len(result.errors)}",
                extra={"tick_id": tick_id}
            )

            if self.on_complete:
                try:
                    await self.on_complete(summary)
                except Exception as e:
                    logger.error(f"Error in on_complete callback: {e}")

            return summary

        except Exception as e:
            self._error_count += 1
            logger.error(f"SLA recomputation run failed: {e}")
            raise

        finally:
            tick_id_ctx.reset(token)

    async def _publish(self, updates: List[InstanceUpdate]) -> Dict[str, int]:
        by_workspace: Dict[str, List[InstanceUpdate]] = defaultdict(list)
        for update in updates:
            by_workspace[update.workspace_id].append(update)

        counts = {"breached": 0, "warnings": 0, "published": 0}
        for workspace_id, workspace_updates in by_workspace.items():
            await self.publisher.publish(workspace_id, [u.snapshot for u in workspace_updates])
            counts["published"] += 1

            for update in workspace_updates:
                for transition in update.transitions_of(
                    SlaEventType.RESPONSE_BREACHED, SlaEventType.RESOLUTION_BREACHED
                ):
                    counts["breached"] += 1
                    track = transition.event_type.value.split("_")[0]
                    overdue = format_duration(transition.payload.get("overdue_minutes") or 0)
                    logger.warning(
                        f"SLA breach detected for {update.snapshot.target_type}/{update.snapshot.target_id}: "
                        f"track={track}, overdue={overdue}",
                        extra={"workspace_id": workspace_id, "instance_id": update.instance_id}
                    )
                    await self.publisher.publish_breach(update.snapshot, track)

                for transition in update.transitions_of(SlaEventType.WARNING):
                    counts["warnings"] += 1
                    await self.publisher.publish_warning(
                        update.snapshot,
                        transition.payload["track"],
                        transition.payload["used_percent"],
                    )

        return counts

    async def _scheduler_loop(self):
        """
        Internal scheduler loop that runs continuously.

        Executes recomputation runs at the configured interval.
        """
        logger.info(
            f"SLA scheduler started with interval {self.interval_seconds} seconds"
        )

        while self._running:
            try:
                await self.run_sla_check()
            except Exception as e:
                logger.error(f"SLA scheduler error: {e}")

            await asyncio.sleep(self.interval_seconds)

        logger.info("SLA scheduler stopped")

    def start(self):
        """
        Start the scheduler.

        Creates an asyncio task that runs the scheduler loop.
        """
        if self._running:
            logger.warning("SLA scheduler is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        logger.info("SLA scheduler task created")

    async def stop(self):
        """
        Stop the scheduler.

        Cancels the running task and waits for cleanup.
        """
        if not self._running:
            logger.warning("SLA scheduler is not running")
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("SLA scheduler stopped")

    def get_status(self) -> dict:
        """
        Get the current status of the scheduler.

        Returns:
            Dictionary with scheduler status information
        """
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "workspaces": self.workspaces,
            "last_run": isoformat(self._last_run),
            "run_count": self._run_count,
            "error_count": self._error_count,
            "next_run_in_seconds": self._calculate_next_run_seconds()
        }

    def _calculate_next_run_seconds(self) -> Optional[int]:
        """Seconds until the next scheduled run, None if not running."""
        if not self._running or not self._last_run:
            return None

        elapsed = (utcnow() - self._last_run).total_seconds()
        remaining = max(0, self.interval_seconds - elapsed)
        return int(remaining)


# Global scheduler instance
_sla_scheduler: Optional[SlaJobScheduler] = None


def get_sla_scheduler() -> SlaJobScheduler:
    """
    Get the global SLA scheduler instance.

    Creates a new instance if one doesn't exist.
    """
    global _sla_scheduler
    if _sla_scheduler is None:
        _sla_scheduler = SlaJobScheduler()
    return _sla_scheduler


async def start_sla_scheduler():
    """
    Start the global SLA scheduler.

    Called during application startup.
    """
    scheduler = get_sla_scheduler()
    scheduler.start()
    logger.info("Global SLA scheduler started")


async def stop_sla_scheduler():
    """
    Stop the global SLA scheduler.

    Called during application shutdown.
    """
    global _sla_scheduler
    if _sla_scheduler:
        await _sla_scheduler.stop()
        _sla_scheduler = None
    logger.info("Global SLA scheduler stopped")


async def trigger_sla_recalculation() -> dict:
    """
    Manually trigger a recomputation run.

    Returns:
        Summary of the run
    """
    scheduler = get_sla_scheduler()
    return await scheduler.run_sla_check()
