"""
Celery configuration for the Catalog Pipeline service.

This module configures Celery for asynchronous task processing with
separate queues for scraping and per-post processing.
"""

import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("catalog_pipeline")

# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

app.conf.task_queues = {
    "scrape": {
        "exchange": "scrape",
        "routing_key": "scrape",
    },
    "processing": {
        "exchange": "processing",
        "routing_key": "processing",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

# Default task routing
app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

app.conf.task_routes = {
    "catalog.tasks.scrape_profile": {"queue": "scrape"},
    "catalog.tasks.run_full_pipeline": {"queue": "scrape"},
    "catalog.tasks.label_profile_posts": {"queue": "processing"},
    "catalog.tasks.process_post": {"queue": "processing"},
    "catalog.tasks.run_due_scrapes": {"queue": "default"},
    "catalog.tasks.cleanup_stale_runs": {"queue": "default"},
    "catalog.tasks.sync_search_documents": {"queue": "default"},
}

app.conf.beat_schedule = {
    "run-due-scrapes-every-15-minutes": {
        "task": "catalog.tasks.run_due_scrapes",
        "schedule": crontab(minute="*/15"),
    },
    "cleanup-stale-runs-every-10-minutes": {
        "task": "catalog.tasks.cleanup_stale_runs",
        "schedule": crontab(minute="*/10"),
    },
}
