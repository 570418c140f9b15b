"""
Server-Sent Events (SSE) Connection Manager.

Manages SSE subscriptions for live SLA snapshots. Connections are pooled per
workspace; each one owns a bounded queue that drops its oldest message when
a slow reader falls behind.
"""

import asyncio
import json
import logging
from asyncio import Queue
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from sla_engine.core.clock import utcnow
from sla_engine.core.config import settings
from sla_engine.services.metrics_service import metrics_collector

logger = logging.getLogger(__name__)


def _bounded_queue() -> Queue:
    return Queue(maxsize=settings.SSE_QUEUE_MAXSIZE)


@dataclass
class SSEConnection:
    """Represents a single SSE subscription."""
    workspace_id: str
    client_id: Optional[str] = None
    queue: Queue = field(default_factory=_bounded_queue)
    connected_at: datetime = field(default_factory=utcnow)
    dropped: int = 0

    def __hash__(self):
        return hash(id(self))

    def __eq__(self, other):
        return id(self) == id(other)


class ConnectionManager:
    """
    Manages SSE connections for the application.

    Supports:
    - Per-workspace connection pools
    - Broadcast to all connections of a workspace
    - Direct delivery to one connection (initial snapshot on connect)
    """

    def __init__(self):
        # workspace_id -> set of connections
        self._workspace_connections: Dict[str, Set[SSEConnection]] = {}
        self._lock = asyncio.Lock()

    @property
    def total_connections(self) -> int:
        return sum(len(conns) for conns in self._workspace_connections.values())

    async def connect(self, workspace_id: str, client_id: Optional[str] = None) -> SSEConnection:
        """
        Register a new SSE connection.

        Args:
            workspace_id: Workspace whose SLA updates the client follows
            client_id: Optional caller-supplied identifier, used only in logs

        Returns:
            SSEConnection object for this connection
        """
        connection = SSEConnection(workspace_id=workspace_id, client_id=client_id)

        async with self._lock:
            self._workspace_connections.setdefault(workspace_id, set()).add(connection)
            total = self.total_connections

        metrics_collector.set_sse_subscribers(total)
        logger.info(
            f"SSE connection established: workspace={workspace_id}, client={client_id}, "
            f"total_connections={total}"
        )
        return connection

    async def disconnect(self, connection: SSEConnection):
        """Remove a connection from its workspace pool."""
        async with self._lock:
            pool = self._workspace_connections.get(connection.workspace_id)
            if pool is not None:
                pool.discard(connection)
                if not pool:
                    del self._workspace_connections[connection.workspace_id]
            total = self.total_connections

        metrics_collector.set_sse_subscribers(total)
        logger.info(
            f"SSE connection closed: workspace={connection.workspace_id}, "
            f"client={connection.client_id}, dropped={connection.dropped}, "
            f"total_connections={total}"
        )

    async def broadcast_to_workspace(self, workspace_id: str, event_type: str, data: Any) -> int:
        """
        Broadcast an event to every connection of a workspace.

        Args:
            workspace_id: The workspace to broadcast to
            event_type: SSE event name (e.g., 'sla:batch_update')
            data: The event data (will be JSON serialized)

        Returns:
            Number of connections the message was queued for
        """
        connections = list(self._workspace_connections.get(workspace_id, set()))

        if not connections:
            logger.debug(f"No connections for workspace {workspace_id}")
            return 0

        message = self._format_sse_message(event_type, data)
        for conn in connections:
            self._send_to_connection(conn, message)

        logger.debug(
            f"Broadcast to workspace {workspace_id}: event={event_type}, "
            f"recipients={len(connections)}"
        )
        return len(connections)

    async def send_to_connection(self, connection: SSEConnection, event_type: str, data: Any):
        """Queue an event for a single connection."""
        self._send_to_connection(connection, self._format_sse_message(event_type, data))

    def _send_to_connection(self, connection: SSEConnection, message: str):
        """Enqueue without blocking, evicting the oldest message when full."""
        while True:
            try:
                connection.queue.put_nowait(message)
                return
            except asyncio.QueueFull:
                try:
                    connection.queue.get_nowait()
                    connection.dropped += 1
                except asyncio.QueueEmpty:
                    pass

    def _format_sse_message(self, event_type: str, data: Any) -> str:
        """
        Format a message as a text/event-stream frame.

        SSE format:
        event: event_type
        data: json_data

        """
        json_data = json.dumps(data, default=str)
        return f"event: {event_type}\ndata: {json_data}\n\n"

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        return {
            "total_connections": self.total_connections,
            "workspaces": len(self._workspace_connections),
            "connections_by_workspace": {
                wid: len(conns)
                for wid, conns in self._workspace_connections.items()
            }
        }


# Global connection manager instance
connection_manager = ConnectionManager()


async def get_connection_manager() -> ConnectionManager:
    """Dependency to get the connection manager."""
    return connection_manager
