"""
Metrics API endpoints for the SLA engine.

Provides Prometheus-format metrics export and a JSON statistics summary.
"""

from fastapi import APIRouter, Response, status
from fastapi.responses import PlainTextResponse, JSONResponse
import logging

from sla_engine.services.metrics_service import metrics_collector

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus Metrics",
    description="Export metrics in Prometheus text format for scraping",
    response_class=PlainTextResponse,
    tags=["monitoring"]
)
async def get_prometheus_metrics():
    """
    Export metrics in Prometheus format.

    Returns metrics including:

    - HTTP request counts and duration histograms
    - SLA transitions by event type and escalations by level
    - Scheduler run durations, pending instances and per-instance errors
    - Failed escalation and broadcast deliveries
    - SSE subscribers and application uptime
    """
    try:
        return Response(
            content=metrics_collector.get_prometheus_metrics(),
            media_type=metrics_collector.get_prometheus_content_type(),
            headers={
                "Cache-Control": "no-cache, no-store, must-revalidate",
                "Pragma": "no-cache",
                "Expires": "0"
            }
        )
    except Exception as e:
        logger.error(f"Failed to generate Prometheus metrics: {e}")
        return PlainTextResponse(
            content=f"# Error generating metrics: {str(e)}\n",
            status_code=500
        )


@router.get(
    "/metrics/summary",
    summary="JSON Statistics Summary",
    description="Get a JSON summary of request and engine metrics",
    response_class=JSONResponse,
    tags=["monitoring"]
)
async def get_stats_summary():
    try:
        return metrics_collector.get_stats_summary()
    except Exception as e:
        logger.error(f"Failed to generate stats summary: {e}")
        return JSONResponse(
            content={
                "error": str(e),
                "message": "Failed to generate stats summary"
            },
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
