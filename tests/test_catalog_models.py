"""
Tests for catalog models.
"""

from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.db import connection

from catalog.models import (
    AttributeValue,
    Category,
    ProcessingRun,
    Product,
    Profile,
    ProfileStatus,
    ProductAttribute,
    RunStatus,
    ScrapeRun,
)


def utc(hour, minute=0, day=10):
    return datetime(2026, 3, day, hour, minute, tzinfo=dt_timezone.utc)


class TestProductDiscount:
    @pytest.mark.parametrize("price, discount_price, expected", [
        (999, 899, True),
        (999, 999, False),
        (999, 0, False),
        (999, None, False),
        (0, 50, False),
        (100, 120, False),
        ("49.99", "39.99", True),
    ])
    def test_compute_has_discount(self, price, discount_price, expected):
        assert Product.compute_has_discount(price, discount_price) is expected

    @pytest.mark.django_db
    def test_save_keeps_has_discount_in_sync(self):
        product = Product.objects.create(name="iPhone", price=Decimal("999"), discount_price=Decimal("899"))
        assert product.has_discount is True

        product.discount_price = Decimal("0")
        product.save(update_fields=["discount_price"])

        product.refresh_from_db()
        assert product.has_discount is False


class TestProfileSchedule:
    def test_next_slot_later_today(self):
        profile = Profile(username="techstore", scheduled_times=["20:00", "09:30"])

        assert profile.next_scheduled_at(utc(10, 0)) == utc(20, 0)
        assert profile.next_scheduled_at(utc(8, 0)) == utc(9, 30)

    def test_wraps_to_first_slot_tomorrow(self):
        profile = Profile(username="techstore", scheduled_times=["13:00", "17:00"])

        assert profile.next_scheduled_at(utc(17, 0)) == utc(13, 0, day=11)

    def test_default_times(self):
        profile = Profile(username="techstore")

        assert profile.get_scheduled_times() == ["13:00", "17:00", "20:00"]
        assert profile.next_scheduled_at(utc(14, 0)) == utc(17, 0)

    def test_is_due(self):
        now = utc(12)

        assert Profile(username="a").is_due(now) is True
        assert Profile(username="b", next_scrape_at=now - timedelta(minutes=1)).is_due(now) is True
        assert Profile(username="c", next_scrape_at=now + timedelta(minutes=1)).is_due(now) is False
        assert Profile(username="d", status=ProfileStatus.SUSPENDED).is_due(now) is False

    @pytest.mark.django_db
    def test_mark_scraped_records_first_scrape_once(self):
        profile = Profile.objects.create(username="techstore", scheduled_times=["13:00"])

        profile.mark_scraped(utc(9))
        profile.mark_scraped(utc(14))

        profile.refresh_from_db()
        assert profile.initial_scrape_at == utc(9)
        assert profile.last_scraped_at == utc(14)
        assert profile.next_scrape_at == utc(13, day=11)

    def test_coverage_percentage(self):
        assert Profile(username="a", local_post_count=30, media_count=120).coverage_percentage == 25.0
        assert Profile(username="b", local_post_count=5, media_count=0).coverage_percentage == 0.0
        assert Profile(username="c", local_post_count=10, media_count=8).coverage_percentage == 100.0


@pytest.mark.django_db
class TestTaxonomyModels:
    def test_category_slug_from_name(self):
        category = Category.objects.create(name="Gaming Consoles & Accessories")

        assert category.slug == "gaming-consoles-accessories"
        assert category.is_temp is True
        assert category.to_search_document()["parent_id"] == 0

    def test_attribute_value_normalized_on_save(self):
        attribute = ProductAttribute.objects.create(name="brand")

        value = AttributeValue.objects.create(attribute=attribute, value="  Apple ")

        assert value.ai_value == "apple"
        assert value.score == 1


@pytest.mark.django_db
class TestMigrations:
    def test_models_match_migrations(self):
        out = StringIO()

        call_command("makemigrations", "catalog", "--check", "--dry-run", stdout=out)

        assert "No changes detected" in out.getvalue()

    def test_catalog_tables_created_by_migrate(self):
        tables = connection.introspection.table_names()

        for table in ("profiles", "posts", "product_attribute_values", "products", "processing_runs"):
            assert table in tables


@pytest.mark.django_db
class TestRuns:
    def test_processing_progress(self, profile):
        run = ProcessingRun.objects.create(
            profile=profile, posts_to_process=8, posts_processed=3, posts_skipped=2, posts_failed=1,
        )

        assert run.posts_done == 6
        assert run.is_done is False
        assert run.progress_percentage == 75.0

    def test_empty_run_progress(self, profile):
        assert ProcessingRun(profile=profile).progress_percentage == 0.0

    def test_scrape_run_to_dict(self, profile):
        run = ScrapeRun.objects.create(
            profile=profile, status=RunStatus.COMPLETED,
            started_at=utc(9), completed_at=utc(9, 2),
        )

        data = run.to_dict()

        assert data["status"] == "completed"
        assert data["duration_seconds"] == 120.0
        assert data["started_at"] == "2026-03-10T09:00:00+00:00"

    def test_set_step(self, profile):
        run = ScrapeRun.objects.create(profile=profile, status=RunStatus.RUNNING)

        run.set_step("Step 2/3: Labeling...")

        run.refresh_from_db()
        assert run.status_message == "Step 2/3: Labeling..."
