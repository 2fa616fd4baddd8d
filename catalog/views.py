"""
Catalog service views.

Health check endpoint for monitoring and load balancer checks.
"""

import logging
from datetime import timedelta

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.utils import timezone

from catalog.models import ProcessingRun, RunStatus, ScrapeRun

logger = logging.getLogger(__name__)


def get_redis_connection():
    """
    Get Redis connection for health check.

    Returns:
        Redis client if the cache backend is django-redis, None otherwise.
    """
    if not hasattr(cache, "client"):
        return None
    return cache.client.get_client()


def get_celery_worker_count() -> int:
    """
    Get the count of active Celery workers.

    Returns:
        int: Number of workers answering the ping, 0 if none answered.
    """
    from config.celery import app as celery_app

    active = celery_app.control.inspect(timeout=1.0).active()
    return len(active) if active else 0


def _run_stats(since) -> dict:
    scrape_runs = ScrapeRun.objects.filter(created_at__gte=since)
    processing_runs = ProcessingRun.objects.filter(created_at__gte=since)
    last_scrape = ScrapeRun.objects.order_by("-created_at").values_list("created_at", flat=True).first()
    return {
        "running_scrape_runs": ScrapeRun.objects.filter(status=RunStatus.RUNNING).count(),
        "running_processing_runs": ProcessingRun.objects.filter(status=RunStatus.RUNNING).count(),
        "failed_runs_24h": (
            scrape_runs.filter(status=RunStatus.FAILED).count()
            + processing_runs.filter(status=RunStatus.FAILED).count()
        ),
        "last_scrape": last_scrape.isoformat() if last_scrape else None,
    }


def health_check(request):
    """
    Health check endpoint for the catalog service.

    Endpoint: GET /api/health/
    No authentication required (for load balancer checks).

    Response fields:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "error"
        - redis: "connected", "not_configured", or "error"
        - celery_workers: integer count of active workers
        - running_scrape_runs / running_processing_runs
        - failed_runs_24h: failed runs created in the last 24 hours
        - last_scrape: ISO timestamp of the latest scrape run

    Returns:
        JsonResponse: HTTP 200 for healthy, HTTP 503 for unhealthy
    """
    status = "healthy"
    http_status = 200

    database_status = "connected"
    try:
        connection.ensure_connection()
    except DatabaseError as e:
        logger.error("Health check: database unavailable: %s", e)
        database_status = "error"
        status = "unhealthy"
        http_status = 503

    # Redis and Celery degrade gracefully; only the database decides health
    redis_status = "not_configured"
    try:
        redis_client = get_redis_connection()
        if redis_client is not None:
            redis_status = "connected" if redis_client.ping() else "error"
    except Exception as e:
        logger.warning("Health check: redis ping failed: %s", e)
        redis_status = "error"

    try:
        celery_workers = get_celery_worker_count()
    except Exception as e:
        logger.warning("Health check: celery inspect failed: %s", e)
        celery_workers = 0

    response_data = {
        "status": status,
        "database": database_status,
        "redis": redis_status,
        "celery_workers": celery_workers,
    }
    if database_status == "connected":
        response_data.update(_run_stats(timezone.now() - timedelta(hours=24)))

    return JsonResponse(response_data, status=http_status)
