"""
Tests for Django Admin actions and displays.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.contrib.admin.sites import AdminSite
from django.contrib.auth import get_user_model
from django.contrib.messages import get_messages
from django.contrib.messages.storage.fallback import FallbackStorage
from django.contrib.sessions.middleware import SessionMiddleware
from django.test import RequestFactory
from django.utils import timezone

from catalog.admin import CategoryAdmin, PostAdmin, ProfileAdmin, ScrapeRunAdmin
from catalog.models import Category, Post, Profile, RunStatus, ScrapeRun


@pytest.fixture
def admin_user(db):
    """Create an admin user for testing."""
    return get_user_model().objects.create_superuser(
        username="admin",
        email="admin@test.com",
        password="testpass123",
    )


@pytest.fixture
def admin_request(admin_user):
    """Create an admin request with user and messages support attached."""
    request = RequestFactory().get("/admin/")
    request.user = admin_user

    middleware = SessionMiddleware(lambda x: None)
    middleware.process_request(request)
    request.session.save()

    setattr(request, "_messages", FallbackStorage(request))
    return request


def messages_of(request):
    return [str(message) for message in get_messages(request)]


@pytest.mark.django_db
class TestProfileAdmin:
    def test_start_full_pipeline_action(self, admin_request, orchestrator, profile):
        busy = Profile.objects.create(username="busy")
        ScrapeRun.objects.create(profile=busy, status=RunStatus.RUNNING)
        model_admin = ProfileAdmin(Profile, AdminSite())

        with patch("catalog.admin.get_orchestrator", return_value=orchestrator), \
                patch("catalog.tasks.run_full_pipeline.apply_async") as dispatch:
            model_admin.start_full_pipeline(admin_request, Profile.objects.all())

        dispatch.assert_called_once()
        assert ScrapeRun.objects.filter(profile=profile, status=RunStatus.RUNNING).count() == 1
        messages = messages_of(admin_request)
        assert "@busy: A pipeline is already running for @busy" in messages
        assert "Started 1 pipeline run(s)." in messages

    def test_start_processing_action(self, admin_request, orchestrator, post):
        model_admin = ProfileAdmin(Profile, AdminSite())

        with patch("catalog.admin.get_orchestrator", return_value=orchestrator), \
                patch("catalog.tasks.process_post.apply_async"):
            model_admin.start_processing(admin_request, Profile.objects.all())

        assert messages_of(admin_request) == ["@techstore: Processing started"]


@pytest.mark.django_db
class TestTaxonomyAdmin:
    def test_promote_entries(self, admin_request, categories):
        model_admin = CategoryAdmin(Category, AdminSite())

        model_admin.promote_entries(admin_request, Category.objects.all())

        assert not Category.objects.filter(is_temp=True).exists()
        assert messages_of(admin_request) == ["Promoted 1 entry."]

    def test_temp_badge(self, categories):
        model_admin = CategoryAdmin(Category, AdminSite())

        assert "Temp" in model_admin.temp_badge(categories["smartphones"])
        assert "Permanent" in model_admin.temp_badge(categories["phones"])


@pytest.mark.django_db
class TestPostAdmin:
    def test_mark_unprocessed(self, admin_request, post):
        Post.objects.filter(pk=post.pk).update(processed_structure=True)
        model_admin = PostAdmin(Post, AdminSite())

        model_admin.mark_unprocessed(admin_request, Post.objects.all())

        post.refresh_from_db()
        assert post.processed_structure is False
        assert messages_of(admin_request) == ["Marked 1 post(s) for reprocessing."]


@pytest.mark.django_db
class TestRunAdmin:
    def test_runs_are_read_only(self, admin_request):
        model_admin = ScrapeRunAdmin(ScrapeRun, AdminSite())

        assert model_admin.has_add_permission(admin_request) is False
        assert model_admin.has_change_permission(admin_request) is False

    def test_status_and_duration_display(self, profile):
        now = timezone.now()
        run = ScrapeRun.objects.create(
            profile=profile, status=RunStatus.FAILED,
            started_at=now - timedelta(seconds=90), completed_at=now,
        )
        model_admin = ScrapeRunAdmin(ScrapeRun, AdminSite())

        assert "Failed" in model_admin.status_badge(run)
        assert model_admin.duration_display(run) == "1.5m"
