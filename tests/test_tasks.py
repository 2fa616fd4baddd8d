"""
Tests for Celery tasks.

Attempts are simulated by pushing a request with the attempt's retry count
and calling the task body directly.
"""

from unittest.mock import patch

import pytest
from celery.exceptions import Retry
from django.utils import timezone

from catalog.models import Category, Post, ProcessingRun, Profile, RunStatus, ScrapeRun, ScrapeRunType
from catalog.services.extractor import ExtractionValidationError
from catalog.services.llm_client import LLMClientError
from catalog.tasks import (
    cleanup_stale_runs,
    label_profile_posts,
    process_post,
    run_due_scrapes,
    run_full_pipeline,
    scrape_profile,
    sync_search_documents,
)


def run_attempt(task, *args, retries=0):
    task.push_request(retries=retries)
    try:
        return task.run(*args)
    finally:
        task.pop_request()


@pytest.fixture
def use_orchestrator(orchestrator):
    with patch("catalog.tasks.get_orchestrator", return_value=orchestrator):
        yield orchestrator


@pytest.mark.django_db
class TestProcessPostTask:
    @pytest.fixture
    def run(self, use_orchestrator, post):
        run, _ = use_orchestrator.start_processing_run(post.profile)
        return run

    def test_failure_is_retried_without_counting(self, doubles, post, post_images, run):
        doubles.extractor.extract.side_effect = LLMClientError("HTTP 502")

        with patch.object(process_post, "retry", side_effect=Retry()) as retry:
            with pytest.raises(Retry):
                run_attempt(process_post, post.pk, run.pk, retries=0)

        assert isinstance(retry.call_args.kwargs["exc"], LLMClientError)
        run.refresh_from_db()
        assert run.posts_failed == 0
        assert run.status == RunStatus.RUNNING

    def test_final_failure_counted_once_and_completes_run(self, doubles, post, post_images, run):
        doubles.extractor.extract.side_effect = LLMClientError("HTTP 502")

        with patch.object(process_post, "retry") as retry:
            with pytest.raises(LLMClientError):
                run_attempt(process_post, post.pk, run.pk, retries=process_post.max_retries)

        retry.assert_not_called()
        run.refresh_from_db()
        assert run.posts_failed == 1
        assert run.status == RunStatus.COMPLETED

    def test_missing_post_fails_without_retry(self, post, run):
        Post.objects.filter(pk=post.pk).delete()

        with patch.object(process_post, "retry") as retry:
            with pytest.raises(Post.DoesNotExist):
                run_attempt(process_post, post.pk, run.pk, retries=0)

        retry.assert_not_called()
        run.refresh_from_db()
        assert run.posts_failed == 1
        assert run.status == RunStatus.COMPLETED

    def test_validation_error_fails_without_retry(self, doubles, post, post_images, run):
        doubles.extractor.extract.side_effect = ExtractionValidationError("At least one image is required")

        with patch.object(process_post, "retry") as retry:
            with pytest.raises(ExtractionValidationError):
                run_attempt(process_post, post.pk, run.pk, retries=0)

        retry.assert_not_called()
        run.refresh_from_db()
        assert run.posts_failed == 1

    def test_success_returns_outcome(self, doubles, post, post_images, run, product_factory):
        from catalog.services.extractor import ExtractionResult

        doubles.extractor.extract.return_value = ExtractionResult(
            has_products=True, post_type="phone", products=[product_factory()],
            image_map={"image_1": "m1"}, group="tech",
        )

        result = run_attempt(process_post, post.pk, run.pk)

        assert result["success"] is True
        assert result["products_created"] == 1
        assert result["shortcode"] == "ABC123"

    def test_abandoned_when_run_cancelled(self, use_orchestrator, doubles, post, run):
        use_orchestrator.cancel_run("processing", run.pk)

        result = run_attempt(process_post, post.pk, run.pk)

        assert result == {"post_id": post.pk, "run_id": run.pk, "status": "abandoned"}
        doubles.extractor.extract.assert_not_called()


@pytest.mark.django_db
class TestScrapeTasks:
    def test_scrape_retry_leaves_run_running(self, use_orchestrator, doubles, profile):
        from catalog.services.instagram_client import ScraperError

        doubles.scraper.get_posts.side_effect = ScraperError("timeout")
        run = ScrapeRun.objects.create(profile=profile, status=RunStatus.RUNNING, started_at=timezone.now())

        with patch.object(scrape_profile, "retry", side_effect=Retry()):
            with pytest.raises(Retry):
                run_attempt(scrape_profile, profile.pk, run.pk, retries=0)

        run.refresh_from_db()
        assert run.status == RunStatus.RUNNING

        with pytest.raises(ScraperError):
            run_attempt(scrape_profile, profile.pk, run.pk, retries=scrape_profile.max_retries)

        run.refresh_from_db()
        assert run.status == RunStatus.FAILED

    def test_scrape_not_running(self, use_orchestrator, profile):
        run = ScrapeRun.objects.create(profile=profile, status=RunStatus.FAILED)

        assert run_attempt(scrape_profile, profile.pk, run.pk) == {
            "run_id": run.pk, "status": "not_running",
        }

    def test_full_pipeline_fails_run_only_on_final_attempt(self, use_orchestrator, doubles, profile):
        from catalog.services.instagram_client import ScraperError

        doubles.scraper.get_posts.side_effect = ScraperError("Instagram API request failed: 500")
        run = ScrapeRun.objects.create(
            profile=profile, type=ScrapeRunType.FULL_PIPELINE,
            status=RunStatus.RUNNING, started_at=timezone.now(),
        )

        with patch.object(run_full_pipeline, "retry", side_effect=Retry()):
            with pytest.raises(Retry):
                run_attempt(run_full_pipeline, profile.pk, run.pk, retries=1)
        run.refresh_from_db()
        assert run.status == RunStatus.RUNNING

        with pytest.raises(ScraperError):
            run_attempt(run_full_pipeline, profile.pk, run.pk, retries=run_full_pipeline.max_retries)
        run.refresh_from_db()
        assert run.status == RunStatus.FAILED
        assert run.error_message.startswith("Pipeline failed:")

    def test_label_task(self, use_orchestrator, post, post_images):
        result = run_attempt(label_profile_posts, post.profile.pk)

        assert result["labeled"] == 1
        assert result["by_group"] == {"tech": 1}


@pytest.mark.django_db
class TestPeriodicTasks:
    def test_run_due_scrapes_starts_pipelines(self, use_orchestrator, profile):
        busy = Profile.objects.create(username="busy")
        ScrapeRun.objects.create(profile=busy, status=RunStatus.RUNNING, started_at=timezone.now())

        with patch("catalog.tasks.run_full_pipeline.apply_async") as dispatch:
            result = run_due_scrapes()

        run = ScrapeRun.objects.get(profile=profile)
        assert result == {"runs_started": 1, "run_ids": [run.pk]}
        dispatch.assert_called_once_with(args=[profile.pk, run.pk])

    def test_cleanup_task(self, use_orchestrator, profile):
        ProcessingRun.objects.create(
            profile=profile, status=RunStatus.RUNNING, posts_to_process=1, posts_processed=1,
            started_at=timezone.now(),
        )

        assert cleanup_stale_runs() == {
            "processing_completed": 1, "scrape_failed": 0, "processing_failed": 0,
        }


@pytest.mark.django_db
class TestSyncSearchDocuments:
    def test_upserts_existing_and_deletes_missing(self, search_client):
        category = Category.objects.create(name="Phones")
        search_client.upsert_documents.return_value = 1

        with patch("catalog.tasks.get_search_client", return_value=search_client):
            result = sync_search_documents("catalog.category", [category.pk, 9999])

        assert result == {"model": "catalog.category", "upserted": 1, "deleted": 1}
        collection, documents = search_client.upsert_documents.call_args.args
        assert [doc["id"] for doc in documents] == [str(category.pk)]
        search_client.delete_document.assert_called_once_with(collection, "9999")

    def test_unknown_model_is_ignored(self, search_client):
        with patch("catalog.tasks.get_search_client", return_value=search_client):
            result = sync_search_documents("catalog.post", [1])

        assert result == {"model": "catalog.post", "upserted": 0, "deleted": 0}
        search_client.upsert_documents.assert_not_called()
