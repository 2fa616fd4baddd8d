"""
Celery tasks for the catalog pipeline.

- scrape_profile: fetch and ingest one page of posts for a profile
- label_profile_posts: classify a profile's unlabeled posts
- process_post: extract and reconcile one post of a processing run
- run_full_pipeline: scrape -> label -> process for one profile
- run_due_scrapes: periodic task starting full pipelines for due profiles
- cleanup_stale_runs: periodic task repairing runs left running
- sync_search_documents: push deferred search index writes
"""

import logging
from typing import Any, Dict, List, Optional

from celery import shared_task
from django.apps import apps

from catalog.models import Post, Profile
from catalog.services.extractor import ExtractionValidationError
from catalog.services.pipeline import PostResult, get_orchestrator
from catalog.services.search_index import COLLECTIONS, get_search_client

logger = logging.getLogger(__name__)


@shared_task(
    name="catalog.tasks.scrape_profile",
    bind=True,
    max_retries=1,
    default_retry_delay=60,
    time_limit=600,
)
def scrape_profile(self, profile_id: int, run_id: int) -> Dict[str, Any]:
    """Run one scrape for ``profile_id`` under ScrapeRun ``run_id``."""
    logger.info("Scrape task started: profile=%s run=%s", profile_id, run_id)
    final_attempt = self.request.retries >= self.max_retries

    try:
        summary = get_orchestrator().execute_scrape(run_id, fail_run=final_attempt)
    except Exception as e:
        if not final_attempt:
            logger.warning("Scrape run %s failed, retrying: %s", run_id, e)
            raise self.retry(exc=e)
        raise

    if summary is None:
        return {"run_id": run_id, "status": "not_running"}
    return {
        "run_id": run_id,
        "posts_fetched": summary.posts_fetched,
        "posts_new": summary.posts_new,
        "posts_skipped": summary.posts_skipped,
        "has_more": summary.has_more,
    }


@shared_task(name="catalog.tasks.label_profile_posts", bind=True, time_limit=300)
def label_profile_posts(self, profile_id: int) -> Dict[str, Any]:
    profile = Profile.objects.get(pk=profile_id)
    summary = get_orchestrator().label_posts(profile)
    return {
        "profile_id": profile_id,
        "posts_to_label": summary.posts_to_label,
        "labeled": summary.labeled,
        "errors": summary.errors,
        "by_group": summary.by_group,
    }


@shared_task(
    name="catalog.tasks.process_post",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    time_limit=300,
)
def process_post(self, post_id: int, run_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Process one post as part of a processing run.

    Failures are retried; the post is counted as failed only once retries
    are exhausted, so the run completes exactly when every post is settled.
    A missing post or unusable input fails immediately.
    """
    orchestrator = get_orchestrator()
    try:
        outcome = orchestrator.execute_post(post_id, run_id)
    except (Post.DoesNotExist, ExtractionValidationError) as e:
        logger.error("Post %s cannot be processed: %s", post_id, e)
        if run_id is not None:
            orchestrator.record_post_result(run_id, PostResult.FAILED)
        raise
    except Exception as e:
        if self.request.retries < self.max_retries:
            logger.warning(
                "Post %s failed (attempt %d/%d), retrying: %s",
                post_id, self.request.retries + 1, self.max_retries + 1, e,
            )
            raise self.retry(exc=e)

        logger.error("Post %s failed after %d attempts: %s", post_id, self.max_retries + 1, e)
        if run_id is not None:
            orchestrator.record_post_result(run_id, PostResult.FAILED)
        raise

    if outcome is None:
        return {"post_id": post_id, "run_id": run_id, "status": "abandoned"}
    return outcome.to_dict()


@shared_task(
    name="catalog.tasks.run_full_pipeline",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    time_limit=1800,
)
def run_full_pipeline(self, profile_id: int, run_id: int) -> Dict[str, Any]:
    logger.info("Full pipeline task started: profile=%s run=%s", profile_id, run_id)
    final_attempt = self.request.retries >= self.max_retries

    try:
        return get_orchestrator().execute_full_pipeline(run_id, fail_run=final_attempt)
    except Exception as e:
        if not final_attempt:
            logger.warning("Pipeline run %s failed, retrying: %s", run_id, e)
            raise self.retry(exc=e)
        raise


@shared_task(name="catalog.tasks.run_due_scrapes")
def run_due_scrapes() -> Dict[str, Any]:
    """
    Periodic task: start a full pipeline for every active profile that is due.

    Runs every 15 minutes via Celery Beat.
    """
    orchestrator = get_orchestrator()
    started: List[int] = []
    for profile in orchestrator.due_profiles():
        result = orchestrator.trigger_full_pipeline(profile)
        if result.success:
            started.append(result.run_id)
        else:
            logger.info("Skipping @%s: %s", profile.username, result.message)

    logger.info("Due scrape check started %d pipeline run(s)", len(started))
    return {"runs_started": len(started), "run_ids": started}


@shared_task(name="catalog.tasks.cleanup_stale_runs")
def cleanup_stale_runs() -> Dict[str, int]:
    """Periodic task: complete finished runs and fail timed-out ones."""
    return get_orchestrator().cleanup_stale_runs()


@shared_task(name="catalog.tasks.sync_search_documents")
def sync_search_documents(model_label: str, ids: List[int]) -> Dict[str, Any]:
    """
    Push the current state of ``ids`` to the model's search collection.

    Rows that still exist are upserted; ids whose row is gone are deleted
    from the index.
    """
    collection = COLLECTIONS.get(model_label)
    if collection is None:
        logger.warning("No search collection for model %s", model_label)
        return {"model": model_label, "upserted": 0, "deleted": 0}

    model = apps.get_model(model_label)
    rows = list(model.objects.filter(pk__in=ids))
    found = {row.pk for row in rows}

    client = get_search_client()
    upserted = client.upsert_documents(collection, (row.to_search_document() for row in rows))
    missing = [pk for pk in ids if pk not in found]
    for pk in missing:
        client.delete_document(collection, str(pk))

    logger.debug(
        "Search sync %s: upserted=%d deleted=%d", model_label, upserted, len(missing)
    )
    return {"model": model_label, "upserted": upserted, "deleted": len(missing)}
