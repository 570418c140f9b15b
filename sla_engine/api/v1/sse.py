"""
Server-Sent Events (SSE) API Endpoints.

Provides the live SLA stream of a workspace. A subscriber first receives a
fresh full snapshot, then scheduler batches, per-instance updates and
breach, warning and escalation notices.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from sla_engine.core.config import settings
from sla_engine.core.database import get_db
from sla_engine.core.sse import connection_manager, SSEConnection
from sla_engine.services.broadcast import broadcast_publisher
from sla_engine.services.sla_service import SlaService

logger = logging.getLogger(__name__)

router = APIRouter()


async def event_generator(connection: SSEConnection, heartbeat_seconds: Optional[float] = None):
    """
    Generate SSE events for a connection.

    Yields events from the connection's queue and a comment ping whenever
    nothing was sent for `heartbeat_seconds`.
    """
    heartbeat = heartbeat_seconds or settings.SSE_HEARTBEAT_SECONDS
    try:
        while True:
            try:
                message = await asyncio.wait_for(connection.queue.get(), timeout=heartbeat)
                yield message
            except asyncio.TimeoutError:
                yield ": ping\n\n"
    except asyncio.CancelledError:
        logger.debug(f"SSE generator cancelled for workspace {connection.workspace_id}")
        raise
    except Exception as e:
        logger.error(f"SSE generator error: {e}")
        raise


@router.get("/workspaces/{workspace_id}/sla")
async def stream_workspace_sla(
    workspace_id: str,
    client_id: Optional[str] = Query(None, description="Optional client identifier for logs"),
    db: AsyncSession = Depends(get_db)
):
    """
    Stream SLA snapshots for a workspace.

    Events:
    - sla:snapshot: Full current state, sent once on connect
    - sla:batch_update: Snapshots of every instance touched by a scheduler run
    - sla:update: One instance after a lifecycle fact
    - sla:breached / sla:warning / sla:escalated: Notices

    Example usage:
    ```javascript
    const source = new EventSource('/api/v1/sse/workspaces/ws-1/sla');

    source.addEventListener('sla:batch_update', (event) => {
        const data = JSON.parse(event.data);
        console.log(data.snapshots.length, 'instances updated');
    });
    ```
    """
    snapshots = await SlaService(db).get_workspace_snapshot(workspace_id)

    connection = await connection_manager.connect(workspace_id=workspace_id, client_id=client_id)
    await broadcast_publisher.send_initial_snapshot(connection, snapshots)

    async def generate():
        try:
            async for message in event_generator(connection):
                yield message
        finally:
            await connection_manager.disconnect(connection)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


@router.get("/stats")
async def get_sse_stats():
    """Get SSE connection statistics."""
    return connection_manager.get_stats()
