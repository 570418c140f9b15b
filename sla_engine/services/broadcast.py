"""
Broadcast Publisher.

Pushes SLA snapshots and notices to the SSE subscribers of a workspace.
Delivery is best effort: failures are logged and never reach the caller.
"""

import logging
from typing import Any, Dict, Iterable, List

from sla_engine.core.clock import isoformat, utcnow
from sla_engine.core.sse import ConnectionManager, SSEConnection, connection_manager
from sla_engine.schemas.sla import SlaSnapshot
from sla_engine.services.metrics_service import metrics_collector

logger = logging.getLogger(__name__)


BATCH_UPDATE = "sla:batch_update"
SNAPSHOT = "sla:snapshot"
UPDATE = "sla:update"
BREACHED = "sla:breached"
WARNING = "sla:warning"
ESCALATED = "sla:escalated"


class BroadcastPublisher:
    """
    Publishes SLA events to SSE connections.

    Event types:
    - sla:batch_update  full workspace batch after a scheduler run
    - sla:snapshot      fresh full snapshot sent to a (re)connecting client
    - sla:update        one instance after a lifecycle fact
    - sla:breached / sla:warning / sla:escalated  notices
    """

    def __init__(self, manager: ConnectionManager = connection_manager):
        self.manager = manager

    async def _broadcast(self, workspace_id: str, event_type: str, data: Dict[str, Any]) -> int:
        try:
            return await self.manager.broadcast_to_workspace(workspace_id, event_type, data)
        except Exception as e:
            metrics_collector.record_delivery_failure("sse")
            logger.error(f"Failed to publish {event_type} for workspace {workspace_id}: {e}")
            return 0

    async def publish(self, workspace_id: str, snapshots: Iterable[SlaSnapshot]) -> int:
        """
        Publish one batch of snapshots to every subscriber of a workspace.

        Args:
            workspace_id: Workspace the snapshots belong to
            snapshots: Snapshots computed in the same run

        Returns:
            Number of subscribers the batch was queued for
        """
        items: List[Dict[str, Any]] = [snapshot.to_wire() for snapshot in snapshots]
        data = {
            "workspaceId": workspace_id,
            "snapshots": items,
            "timestamp": isoformat(utcnow()),
        }
        recipients = await self._broadcast(workspace_id, BATCH_UPDATE, data)
        if recipients:
            logger.debug(
                f"Published {len(items)} snapshots to workspace {workspace_id}",
                extra={"workspace_id": workspace_id, "recipients": recipients}
            )
        return recipients

    async def send_initial_snapshot(self, connection: SSEConnection, snapshots: Iterable[SlaSnapshot]):
        """Give a new subscriber the full current state before any batch."""
        data = {
            "workspaceId": connection.workspace_id,
            "snapshots": [snapshot.to_wire() for snapshot in snapshots],
            "timestamp": isoformat(utcnow()),
        }
        await self.manager.send_to_connection(connection, SNAPSHOT, data)

    async def publish_instance_update(self, snapshot: SlaSnapshot, event_types: List[str]) -> int:
        """Publish the new state of one instance after a lifecycle fact."""
        data = {
            "snapshot": snapshot.to_wire(),
            "events": event_types,
            "timestamp": isoformat(utcnow()),
        }
        return await self._broadcast(snapshot.workspace_id, UPDATE, data)

    async def publish_breach(self, snapshot: SlaSnapshot, track: str) -> int:
        data = {
            "snapshot": snapshot.to_wire(),
            "track": track,
            "timestamp": isoformat(utcnow()),
        }
        recipients = await self._broadcast(snapshot.workspace_id, BREACHED, data)
        logger.info(
            f"Published sla:breached for {snapshot.target_type}/{snapshot.target_id} ({track})"
        )
        return recipients

    async def publish_warning(self, snapshot: SlaSnapshot, track: str, used_percent: float) -> int:
        data = {
            "snapshot": snapshot.to_wire(),
            "track": track,
            "usedPercent": used_percent,
            "timestamp": isoformat(utcnow()),
        }
        return await self._broadcast(snapshot.workspace_id, WARNING, data)

    async def publish_escalation(self, workspace_id: str, notice: Dict[str, Any]) -> int:
        """Publish an escalation notice (the `notify` escalation action)."""
        data = dict(notice)
        data["timestamp"] = isoformat(utcnow())
        return await self._broadcast(workspace_id, ESCALATED, data)


# Create a singleton instance
broadcast_publisher = BroadcastPublisher()
