"""
Pipeline orchestration: Scrape -> Label -> Process.

Owns run bookkeeping for ScrapeRun and ProcessingRun rows:

- trigger operations create runs (already ``running``) and dispatch Celery
  tasks; when there is no eligible work they return a TriggerResult with
  ``success=False`` instead of raising
- per-post results are counted with atomic ``F()`` updates, and a processing
  run is completed by a conditional UPDATE right after each post, so exactly
  one worker ever completes it
- cancellation marks a run failed; workers check the run before each post
  and abandon the remaining ones
- cleanup completes runs whose counters are done and fails runs that have
  been running past their time limit
"""

import logging
import traceback
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q
from django.utils import timezone

from catalog.models import (
    DomainGroup,
    Post,
    ProcessingRun,
    Profile,
    ProfileStatus,
    RunStatus,
    ScrapeRun,
    ScrapeRunType,
)
from catalog.services.classifier import PostClassifier
from catalog.services.extractor import ProductExtractor
from catalog.services.instagram_client import InstagramScraperClient, ScrapeResult
from catalog.services.media_processor import MediaProcessor, load_post_images
from catalog.services.reconciler import ProcessingOutcome, Reconciler

logger = logging.getLogger(__name__)

STEP_SCRAPING = "Step 1/3: Scraping..."
STEP_LABELING = "Step 2/3: Labeling..."
STEP_PROCESSING = "Step 3/3: Processing..."

CANCELLED_MESSAGE = "Manually cancelled by user"
REASON_NO_IMAGES = "No valid images found"


class PostResult(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


POST_RESULT_FIELDS = {
    PostResult.PROCESSED: "posts_processed",
    PostResult.SKIPPED: "posts_skipped",
    PostResult.FAILED: "posts_failed",
}


class RunKind(str, Enum):
    SCRAPE = "scrape"
    PROCESSING = "processing"


RUN_MODELS = {
    RunKind.SCRAPE: ScrapeRun,
    RunKind.PROCESSING: ProcessingRun,
}


@dataclass
class TriggerResult:
    """
    Response of a trigger operation.

    ``success=False`` means there was nothing to do (or the operation does
    not apply); errors are raised, never reported here.
    """

    success: bool
    message: str
    run_id: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success, "message": self.message}
        if self.run_id is not None:
            result["run_id"] = self.run_id
        result.update(self.data)
        return result


@dataclass
class IngestSummary:
    posts_fetched: int = 0
    posts_new: int = 0
    posts_skipped: int = 0
    posts_failed: int = 0
    end_cursor: Optional[str] = None
    has_more: bool = False


@dataclass
class LabelingSummary:
    posts_to_label: int = 0
    labeled: int = 0
    errors: int = 0
    by_group: Dict[str, int] = field(default_factory=dict)


@dataclass
class ProcessingSummary:
    run_id: Optional[int] = None
    posts_to_process: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False


def get_run(kind: str, run_id: int):
    """Load a run by kind; raises ValueError for an unknown kind and DoesNotExist if missing."""
    try:
        model = RUN_MODELS[RunKind(kind)]
    except ValueError:
        raise ValueError(f"Unknown run type: {kind}")
    return model.objects.get(pk=run_id)


class PipelineOrchestrator:
    """Runs pipeline stages for a profile and keeps run state consistent."""

    def __init__(
        self,
        scraper: Optional[InstagramScraperClient] = None,
        media_processor: Optional[MediaProcessor] = None,
        classifier: Optional[PostClassifier] = None,
        extractor: Optional[ProductExtractor] = None,
        reconciler: Optional[Reconciler] = None,
        default_group: str = DomainGroup.TECH,
    ):
        self._scraper = scraper
        self.media_processor = media_processor or MediaProcessor()
        self.classifier = classifier or PostClassifier()
        self.extractor = extractor or ProductExtractor()
        self.reconciler = reconciler or Reconciler()
        self.default_group = default_group

    @property
    def scraper(self) -> InstagramScraperClient:
        if self._scraper is None:
            self._scraper = InstagramScraperClient()
        return self._scraper

    # ============================================================
    # Trigger operations
    # ============================================================

    def trigger_scrape(self, profile: Profile) -> TriggerResult:
        from catalog.tasks import scrape_profile

        if profile.scrape_runs.filter(status=RunStatus.RUNNING).exists():
            return TriggerResult(False, f"A scrape is already running for @{profile.username}")

        run = ScrapeRun.objects.create(
            profile=profile,
            type=ScrapeRunType.POSTS,
            status=RunStatus.RUNNING,
            started_at=timezone.now(),
        )
        scrape_profile.apply_async(args=[profile.pk, run.pk])
        logger.info("Dispatched scrape run %s for @%s", run.pk, profile.username)
        return TriggerResult(True, "Scrape started", run_id=run.pk)

    def trigger_labeling(self, profile: Profile) -> TriggerResult:
        from catalog.tasks import label_profile_posts

        count = profile.posts.filter(group__isnull=True).count()
        if not count:
            return TriggerResult(False, "No unlabeled posts found", data={"posts_to_label": 0})

        label_profile_posts.apply_async(args=[profile.pk])
        logger.info("Dispatched labeling of %d posts for @%s", count, profile.username)
        return TriggerResult(True, "Labeling started", data={"posts_to_label": count})

    def trigger_processing(self, profile: Profile) -> TriggerResult:
        from catalog.tasks import process_post

        run, post_ids = self.start_processing_run(profile)
        if run is None:
            return TriggerResult(False, "No unprocessed posts found", data={"posts_queued": 0})

        for post_id in post_ids:
            process_post.apply_async(args=[post_id, run.pk])
        logger.info(
            "Dispatched processing run %s (%d posts) for @%s",
            run.pk, len(post_ids), profile.username,
        )
        return TriggerResult(
            True, "Processing started", run_id=run.pk, data={"posts_queued": len(post_ids)}
        )

    def trigger_full_pipeline(self, profile: Profile) -> TriggerResult:
        from catalog.tasks import run_full_pipeline

        if profile.scrape_runs.filter(status=RunStatus.RUNNING).exists():
            return TriggerResult(False, f"A pipeline is already running for @{profile.username}")

        run = ScrapeRun.objects.create(
            profile=profile,
            type=ScrapeRunType.FULL_PIPELINE,
            status=RunStatus.RUNNING,
            started_at=timezone.now(),
            status_message=STEP_SCRAPING,
        )
        run_full_pipeline.apply_async(args=[profile.pk, run.pk])
        logger.info("Dispatched full pipeline run %s for @%s", run.pk, profile.username)
        return TriggerResult(True, "Full pipeline started", run_id=run.pk)

    def trigger_reprocess_skipped(self, profile: Profile) -> TriggerResult:
        skipped = self.skipped_posts(profile)
        count = skipped.count()
        if not count:
            return TriggerResult(False, "No skipped posts to reprocess", data={"posts_queued": 0})

        profile.posts.filter(pk__in=skipped.values("pk")).update(processed_structure=False)
        logger.info("Reset %d skipped posts for @%s", count, profile.username)
        return self.trigger_processing(profile)

    # ============================================================
    # Status
    # ============================================================

    def labeling_status(self, profile: Profile) -> Dict[str, Any]:
        posts = profile.posts.all()
        total = posts.count()
        unlabeled = posts.filter(group__isnull=True).count()
        by_group = {
            row["group"]: row["count"]
            for row in posts.filter(group__isnull=False).values("group").annotate(count=Count("id"))
        }
        return {
            "total_posts": total,
            "labeled": total - unlabeled,
            "unlabeled": unlabeled,
            "by_group": by_group,
        }

    @staticmethod
    def skipped_posts(profile: Profile):
        """Processed posts that yielded no products."""
        return profile.posts.filter(processed_structure=True).annotate(
            product_total=Count("products")
        ).filter(product_total=0)

    def skipped_posts_status(self, profile: Profile) -> Dict[str, Any]:
        processed = profile.posts.filter(processed_structure=True).count()
        skipped = self.skipped_posts(profile).count()
        return {
            "processed_posts": processed,
            "skipped_posts": skipped,
            "posts_with_products": processed - skipped,
        }

    def get_run_status(self, kind: str, run_id: int) -> Dict[str, Any]:
        return get_run(kind, run_id).to_dict()

    # ============================================================
    # Scrape stage
    # ============================================================

    def ingest_posts(self, profile: Profile, result: ScrapeResult) -> IngestSummary:
        """
        Store scraped posts. Idempotent on shortcode: known posts count as skipped.
        """
        summary = IngestSummary(
            posts_fetched=len(result.posts),
            end_cursor=result.end_cursor,
            has_more=result.has_more,
        )

        for post_data in result.posts:
            shortcode = post_data.get("shortcode")
            if not shortcode:
                continue
            if Post.objects.filter(shortcode=shortcode).exists():
                summary.posts_skipped += 1
                continue

            try:
                with transaction.atomic():
                    post = Post.objects.create(
                        profile=profile,
                        post_id=post_data.get("post_id") or shortcode,
                        shortcode=shortcode,
                        caption=post_data.get("caption"),
                        caption_original=post_data.get("caption_original"),
                        media_type=post_data.get("media_type") or 1,
                        is_video=bool(post_data.get("is_video")),
                        video_url=post_data.get("video_url"),
                        display_url=post_data.get("display_url"),
                        thumbnail_url=post_data.get("thumbnail_url"),
                        likes_count=post_data.get("likes_count") or 0,
                        comments_count=post_data.get("comments_count") or 0,
                        image=post_data.get("image"),
                        images_carousel=post_data.get("images_carousel"),
                        published_at=post_data.get("published_at"),
                    )
                    self.media_processor.process_post_media(post, post_data)
            except IntegrityError:
                # Ingested concurrently by another worker
                summary.posts_skipped += 1
                continue
            except Exception as e:
                # Rolled back, so the next scrape fetches it again
                summary.posts_failed += 1
                logger.error(
                    "Failed to ingest post %s of @%s: %s", shortcode, profile.username, e
                )
                continue

            summary.posts_new += 1

        return summary

    def run_scrape(self, run: ScrapeRun) -> IngestSummary:
        """Fetch one page for the run's profile and ingest it into ``run``'s counters."""
        profile = run.profile
        end_cursor = run.end_cursor if run.type == ScrapeRunType.CONTINUATION else None
        result = self.scraper.get_posts(
            profile.username, limit=profile.posts_per_request, end_cursor=end_cursor
        )
        summary = self.ingest_posts(profile, result)

        run.posts_fetched = summary.posts_fetched
        run.posts_new = summary.posts_new
        run.posts_skipped = summary.posts_skipped
        run.end_cursor = summary.end_cursor
        run.has_more_pages = summary.has_more
        run.save(update_fields=[
            "posts_fetched", "posts_new", "posts_skipped", "end_cursor", "has_more_pages",
        ])

        profile.update_local_post_count()
        profile.mark_scraped()
        logger.info(
            "Scrape for @%s: fetched=%d new=%d skipped=%d failed=%d",
            profile.username, summary.posts_fetched, summary.posts_new, summary.posts_skipped,
            summary.posts_failed,
        )
        return summary

    def execute_scrape(self, run_id: int, fail_run: bool = True) -> Optional[IngestSummary]:
        """Task body for a standalone scrape run."""
        run = ScrapeRun.objects.select_related("profile").get(pk=run_id)
        if run.status != RunStatus.RUNNING:
            logger.info("Scrape run %s is %s, not starting", run_id, run.status)
            return None

        try:
            summary = self.run_scrape(run)
        except Exception as e:
            logger.error(
                "Scrape run %s failed for @%s: %s\n%s",
                run_id, run.profile.username, e, traceback.format_exc(),
            )
            if fail_run:
                self._fail_run(ScrapeRun, run_id, str(e))
            raise

        ScrapeRun.objects.filter(pk=run_id, status=RunStatus.RUNNING).update(
            status=RunStatus.COMPLETED, completed_at=timezone.now()
        )
        return summary

    # ============================================================
    # Label stage
    # ============================================================

    def label_posts(self, profile: Profile) -> LabelingSummary:
        """Classify every unlabeled post of ``profile``. Per-post errors are counted, not raised."""
        posts = list(profile.posts.filter(group__isnull=True).order_by("id"))
        summary = LabelingSummary(posts_to_label=len(posts))

        for post in posts:
            try:
                group = self.classify_post(post)
            except Exception as e:
                summary.errors += 1
                logger.error("Failed to label post %s of @%s: %s", post.pk, profile.username, e)
                continue
            summary.labeled += 1
            summary.by_group[group] = summary.by_group.get(group, 0) + 1

        logger.info(
            "Labeled %d/%d posts for @%s (errors: %d)",
            summary.labeled, summary.posts_to_label, profile.username, summary.errors,
        )
        return summary

    def classify_post(self, post: Post) -> str:
        images = load_post_images(post)
        image_data_url = images[0].data_url if images else None
        group = self.classifier.classify(post.caption, image_data_url, self.default_group)
        post.group = group
        post.save(update_fields=["group", "updated_at"])
        return group

    # ============================================================
    # Process stage
    # ============================================================

    def start_processing_run(
        self, profile: Profile, scrape_run: Optional[ScrapeRun] = None
    ) -> Tuple[Optional[ProcessingRun], List[int]]:
        """Create a running ProcessingRun over the profile's unprocessed posts."""
        post_ids = list(
            profile.posts.filter(processed_structure=False)
            .order_by("id")
            .values_list("id", flat=True)
        )
        if not post_ids:
            return None, []

        run = ProcessingRun.objects.create(
            profile=profile,
            scrape_run=scrape_run,
            status=RunStatus.RUNNING,
            started_at=timezone.now(),
            posts_to_process=len(post_ids),
        )
        return run, post_ids

    def process_post(self, post: Post) -> ProcessingOutcome:
        """Classify (if needed), extract and reconcile one post."""
        images = load_post_images(post)
        if not images:
            post.processed_structure = True
            post.save(update_fields=["processed_structure", "updated_at"])
            return ProcessingOutcome(
                success=False,
                post_id=post.pk,
                shortcode=post.shortcode,
                group=post.group or "",
                reason=REASON_NO_IMAGES,
            )

        group = post.group
        if not group:
            group = self.classifier.classify(post.caption, images[0].data_url, self.default_group)
            post.group = group
            post.save(update_fields=["group", "updated_at"])

        extraction = self.extractor.extract(images, post.caption, group)
        return self.reconciler.reconcile(post, extraction)

    def execute_post(self, post_id: int, run_id: Optional[int] = None) -> Optional[ProcessingOutcome]:
        """
        Process one post as part of ``run_id``.

        Returns None without counting when the run is no longer running
        (cancelled or failed). Exceptions propagate so the task can retry.
        """
        if run_id is not None and not self._is_running(ProcessingRun, run_id):
            logger.info("Processing run %s is not running, skipping post %s", run_id, post_id)
            return None

        post = Post.objects.select_related("profile").get(pk=post_id)
        outcome = self.process_post(post)

        if run_id is not None:
            result = PostResult.PROCESSED if outcome.success else PostResult.SKIPPED
            self.record_post_result(run_id, result)
        return outcome

    def record_post_result(self, run_id: int, result: PostResult) -> bool:
        """
        Count one finished post and complete the run if it was the last one.

        Returns True when this call completed the run.
        """
        counter = POST_RESULT_FIELDS[PostResult(result)]
        ProcessingRun.objects.filter(pk=run_id).update(**{counter: F(counter) + 1})
        return self.complete_if_done(run_id)

    @staticmethod
    def complete_if_done(run_id: int) -> bool:
        """Complete a running run whose counters reached ``posts_to_process``; at most once."""
        completed = ProcessingRun.objects.filter(
            pk=run_id,
            status=RunStatus.RUNNING,
            posts_to_process__lte=F("posts_processed") + F("posts_skipped") + F("posts_failed"),
        ).update(status=RunStatus.COMPLETED, completed_at=timezone.now())
        if completed:
            logger.info("Processing run %s completed", run_id)
        return bool(completed)

    def run_processing(self, profile: Profile, scrape_run: Optional[ScrapeRun] = None) -> ProcessingSummary:
        """
        Process all unprocessed posts inline, isolating per-post failures.

        Stops before the next post when the processing run (or the parent
        scrape run) is no longer running.
        """
        run, post_ids = self.start_processing_run(profile, scrape_run)
        if run is None:
            logger.info("No posts to process for @%s", profile.username)
            return ProcessingSummary()

        summary = ProcessingSummary(run_id=run.pk, posts_to_process=len(post_ids))
        for post_id in post_ids:
            if not self._is_running(ProcessingRun, run.pk) or (
                scrape_run is not None and not self._is_running(ScrapeRun, scrape_run.pk)
            ):
                summary.cancelled = True
                logger.info("Processing run %s cancelled, abandoning remaining posts", run.pk)
                break

            try:
                post = Post.objects.select_related("profile").get(pk=post_id)
                outcome = self.process_post(post)
            except Exception as e:
                summary.failed += 1
                logger.error(
                    "Failed to process post %s (run %s): %s", post_id, run.pk, e
                )
                self.record_post_result(run.pk, PostResult.FAILED)
                continue

            if outcome.success:
                summary.processed += 1
                self.record_post_result(run.pk, PostResult.PROCESSED)
            else:
                summary.skipped += 1
                self.record_post_result(run.pk, PostResult.SKIPPED)

        logger.info(
            "Processed %d/%d posts for @%s (skipped: %d, failed: %d)",
            summary.processed, summary.posts_to_process, profile.username,
            summary.skipped, summary.failed,
        )
        return summary

    # ============================================================
    # Full pipeline
    # ============================================================

    def execute_full_pipeline(self, run_id: int, fail_run: bool = True) -> Dict[str, Any]:
        """
        Run scrape, label and process for the run's profile.

        The run's ``status_message`` shows the current step. Unhandled errors
        are re-raised; with ``fail_run`` they also fail the run first.
        """
        run = ScrapeRun.objects.select_related("profile").get(pk=run_id)
        profile = run.profile
        if run.status != RunStatus.RUNNING:
            logger.info("Pipeline run %s is %s, not starting", run_id, run.status)
            return {"status": run.status}

        result: Dict[str, Any] = {"run_id": run_id, "profile": profile.username}
        try:
            logger.info("Pipeline run %s: [1/3] scrape starting for @%s", run_id, profile.username)
            run.set_step(STEP_SCRAPING)
            result["scrape"] = asdict(self.run_scrape(run))

            if not self._is_running(ScrapeRun, run_id):
                return self._cancelled(result)
            logger.info("Pipeline run %s: [2/3] label starting for @%s", run_id, profile.username)
            run.set_step(STEP_LABELING)
            result["label"] = asdict(self.label_posts(profile))

            if not self._is_running(ScrapeRun, run_id):
                return self._cancelled(result)
            logger.info("Pipeline run %s: [3/3] process starting for @%s", run_id, profile.username)
            run.set_step(STEP_PROCESSING)
            processing = self.run_processing(profile, scrape_run=run)
            result["process"] = asdict(processing)
            if processing.cancelled:
                return self._cancelled(result)

        except Exception as e:
            logger.error(
                "Pipeline run %s failed for @%s: %s\n%s",
                run_id, profile.username, e, traceback.format_exc(),
            )
            if fail_run:
                self._fail_run(ScrapeRun, run_id, f"Pipeline failed: {e}")
            raise

        completed = ScrapeRun.objects.filter(pk=run_id, status=RunStatus.RUNNING).update(
            status=RunStatus.COMPLETED, status_message="", completed_at=timezone.now()
        )
        result["status"] = RunStatus.COMPLETED if completed else self._status_of(ScrapeRun, run_id)
        logger.info("Pipeline run %s finished for @%s: %s", run_id, profile.username, result["status"])
        return result

    def _cancelled(self, result: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Pipeline run %s stopped: run is no longer running", result["run_id"])
        result["status"] = self._status_of(ScrapeRun, result["run_id"])
        result["cancelled"] = True
        return result

    # ============================================================
    # Supervision
    # ============================================================

    def cancel_run(self, kind: str, run_id: int) -> TriggerResult:
        """Mark a running run failed; workers stop before their next unit of work."""
        run = get_run(kind, run_id)
        model = type(run)
        cancelled = self._fail_run(model, run_id, CANCELLED_MESSAGE)
        if not cancelled:
            return TriggerResult(False, f"Run is not running (status: {run.status})", run_id=run_id)

        if model is ScrapeRun:
            # Child processing runs of a full pipeline stop with it
            ProcessingRun.objects.filter(scrape_run_id=run_id, status=RunStatus.RUNNING).update(
                status=RunStatus.FAILED,
                error_message=CANCELLED_MESSAGE,
                completed_at=timezone.now(),
            )
        logger.info("Cancelled %s run %s", kind, run_id)
        return TriggerResult(True, "Run cancelled", run_id=run_id)

    def cleanup_stale_runs(self) -> Dict[str, int]:
        """
        Repair runs left ``running``.

        - processing runs whose counters are done are completed
        - scrape runs running past SCRAPE_RUN_TIMEOUT_MINUTES are failed
        - processing runs running past PROCESSING_RUN_TIMEOUT_MINUTES are failed
        """
        now = timezone.now()
        scrape_minutes = getattr(settings, "SCRAPE_RUN_TIMEOUT_MINUTES", 30)
        processing_minutes = getattr(settings, "PROCESSING_RUN_TIMEOUT_MINUTES", 60)

        completed = ProcessingRun.objects.filter(
            status=RunStatus.RUNNING,
            posts_to_process__gt=0,
            posts_to_process__lte=F("posts_processed") + F("posts_skipped") + F("posts_failed"),
        ).update(status=RunStatus.COMPLETED, completed_at=now)

        stale_scrapes = ScrapeRun.objects.filter(status=RunStatus.RUNNING).filter(
            Q(started_at__lt=now - timedelta(minutes=scrape_minutes))
            | Q(started_at__isnull=True, created_at__lt=now - timedelta(minutes=scrape_minutes))
        ).update(
            status=RunStatus.FAILED,
            error_message=f"Auto-marked as failed: exceeded {scrape_minutes} minute timeout",
            completed_at=now,
        )

        stale_processing = ProcessingRun.objects.filter(status=RunStatus.RUNNING).filter(
            Q(started_at__lt=now - timedelta(minutes=processing_minutes))
            | Q(started_at__isnull=True, created_at__lt=now - timedelta(minutes=processing_minutes))
        ).update(
            status=RunStatus.FAILED,
            error_message=f"Auto-marked as failed: exceeded {processing_minutes} minute timeout",
            completed_at=now,
        )

        result = {
            "processing_completed": completed,
            "scrape_failed": stale_scrapes,
            "processing_failed": stale_processing,
        }
        if any(result.values()):
            logger.info("Stale run cleanup: %s", result)
        return result

    def due_profiles(self, now=None) -> List[Profile]:
        """Active profiles due for a scrape that have no run in progress."""
        now = now or timezone.now()
        busy = ScrapeRun.objects.filter(status=RunStatus.RUNNING).values("profile_id")
        candidates = Profile.objects.filter(status=ProfileStatus.ACTIVE).exclude(pk__in=busy).filter(
            Q(next_scrape_at__isnull=True) | Q(next_scrape_at__lte=now)
        )
        return [profile for profile in candidates if profile.is_due(now)]

    # ============================================================
    # Helpers
    # ============================================================

    @staticmethod
    def _is_running(model, run_id: int) -> bool:
        return model.objects.filter(pk=run_id, status=RunStatus.RUNNING).exists()

    @staticmethod
    def _status_of(model, run_id: int) -> Optional[str]:
        return model.objects.filter(pk=run_id).values_list("status", flat=True).first()

    @staticmethod
    def _fail_run(model, run_id: int, message: str) -> bool:
        updates = {
            "status": RunStatus.FAILED,
            "error_message": message,
            "completed_at": timezone.now(),
        }
        return bool(model.objects.filter(pk=run_id, status=RunStatus.RUNNING).update(**updates))


def get_orchestrator() -> PipelineOrchestrator:
    return PipelineOrchestrator()
