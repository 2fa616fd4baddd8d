"""
Django admin configuration for the catalog models.

Provides interfaces for managing profiles, the taxonomy and the
structure outputs that drive extraction, and read-only views of posts,
products and pipeline runs.
"""

from django.contrib import admin
from django.utils.html import format_html

from catalog.models import (
    AttributeValue,
    AttributeValueAssociation,
    Category,
    Media,
    Post,
    ProcessingRun,
    Product,
    ProductAttribute,
    Profile,
    ScrapeRun,
    StructureOutput,
    StructureOutputGroup,
)
from catalog.services.pipeline import get_orchestrator
from catalog.services.search_index import schedule_search_sync, suppress_search_sync

STATUS_COLORS = {
    "pending": "#ffc107",
    "running": "#007bff",
    "completed": "#28a745",
    "failed": "#dc3545",
}


def _badge(color, text):
    return format_html(
        '<span style="background-color: {}; color: white; '
        'padding: 2px 8px; border-radius: 4px;">{}</span>',
        color, text
    )


def _duration(seconds):
    if seconds is None:
        return "-"
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


class TempEntryAdminMixin:
    """Shared display and promote action for temp taxonomy entries."""

    def temp_badge(self, obj):
        if obj.is_temp:
            return _badge("#ffc107", "Temp")
        return _badge("#28a745", "Permanent")
    temp_badge.short_description = "State"
    temp_badge.admin_order_field = "is_temp"

    @admin.action(description="Promote selected entries to permanent")
    def promote_entries(self, request, queryset):
        model = queryset.model
        ids = list(queryset.filter(is_temp=True).values_list("pk", flat=True))
        with suppress_search_sync():
            count = model.objects.filter(pk__in=ids).update(is_temp=False)
            for pk in ids:
                schedule_search_sync(model._meta.label_lower, pk)
        self.message_user(request, f"Promoted {count} entr{'y' if count == 1 else 'ies'}.")


# ============================================================
# Profiles, posts and media
# ============================================================

@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = [
        "username",
        "full_name",
        "status",
        "local_post_count",
        "media_count",
        "last_scraped_at",
        "next_scrape_at",
        "initial_scrape_done",
    ]
    list_filter = ["status", "initial_scrape_done"]
    search_fields = ["username", "full_name"]
    readonly_fields = [
        "local_post_count",
        "last_scraped_at",
        "next_scrape_at",
        "initial_scrape_at",
        "created_at",
        "updated_at",
    ]
    actions = ["start_full_pipeline", "start_processing"]

    @admin.action(description="Start full pipeline")
    def start_full_pipeline(self, request, queryset):
        """Start a full pipeline run for each selected profile."""
        orchestrator = get_orchestrator()
        started = 0
        for profile in queryset:
            result = orchestrator.trigger_full_pipeline(profile)
            if result.success:
                started += 1
            else:
                self.message_user(request, f"@{profile.username}: {result.message}")
        self.message_user(request, f"Started {started} pipeline run(s).")

    @admin.action(description="Process unprocessed posts")
    def start_processing(self, request, queryset):
        orchestrator = get_orchestrator()
        for profile in queryset:
            result = orchestrator.trigger_processing(profile)
            self.message_user(request, f"@{profile.username}: {result.message}")


class MediaInline(admin.TabularInline):
    model = Media
    extra = 0
    fields = ["media_id", "role", "media_path", "carousel_index", "status"]
    readonly_fields = fields
    can_delete = False


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = [
        "shortcode",
        "profile",
        "group",
        "used_for",
        "processed_structure",
        "published_at",
    ]
    list_filter = ["group", "processed_structure", "is_video", "profile"]
    search_fields = ["shortcode", "post_id", "caption"]
    readonly_fields = ["llm_categories", "image", "images_carousel", "created_at", "updated_at"]
    inlines = [MediaInline]
    actions = ["mark_unprocessed"]

    @admin.action(description="Mark selected posts as unprocessed")
    def mark_unprocessed(self, request, queryset):
        count = queryset.update(processed_structure=False)
        self.message_user(request, f"Marked {count} post(s) for reprocessing.")


# ============================================================
# Taxonomy and structure outputs
# ============================================================

@admin.register(Category)
class CategoryAdmin(TempEntryAdminMixin, admin.ModelAdmin):
    list_display = ["name", "slug", "parent", "score", "temp_badge"]
    list_filter = ["is_temp"]
    search_fields = ["name", "slug"]
    ordering = ["-score", "name"]
    prepopulated_fields = {"slug": ("name",)}
    actions = ["promote_entries"]


class AttributeValueInline(admin.TabularInline):
    model = AttributeValue
    extra = 0
    fields = ["value", "ai_value", "score", "is_temp"]
    ordering = ["-score"]


@admin.register(ProductAttribute)
class ProductAttributeAdmin(admin.ModelAdmin):
    list_display = ["name", "description"]
    search_fields = ["name"]
    inlines = [AttributeValueInline]


@admin.register(AttributeValue)
class AttributeValueAdmin(TempEntryAdminMixin, admin.ModelAdmin):
    list_display = ["value", "attribute", "ai_value", "score", "temp_badge"]
    list_filter = ["is_temp", "attribute"]
    search_fields = ["value", "ai_value"]
    ordering = ["-score"]
    actions = ["promote_entries"]


@admin.register(AttributeValueAssociation)
class AttributeValueAssociationAdmin(admin.ModelAdmin):
    list_display = ["value", "product", "post", "is_temp", "created_at"]
    list_filter = ["is_temp"]
    raw_id_fields = ["value", "product", "post"]


@admin.register(StructureOutputGroup)
class StructureOutputGroupAdmin(admin.ModelAdmin):
    list_display = ["used_for", "description"]


@admin.register(StructureOutput)
class StructureOutputAdmin(admin.ModelAdmin):
    list_display = ["key", "parent_key", "used_for", "type", "required", "attribute"]
    list_filter = ["parent_key", "used_for", "required"]
    search_fields = ["key", "description"]


# ============================================================
# Products
# ============================================================

@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "type",
        "group",
        "price",
        "discount_price",
        "currency",
        "has_discount",
        "seller_username",
        "primary_category",
        "published_at",
    ]
    list_filter = ["group", "type", "currency", "has_discount"]
    search_fields = ["name", "seller_username", "instagram_media_ids"]
    readonly_fields = ["has_discount", "created_at", "updated_at"]
    raw_id_fields = ["post", "profile", "primary_category"]


# ============================================================
# Runs
# ============================================================

class RunAdminMixin:
    """Read-only run display."""

    def status_badge(self, obj):
        return _badge(STATUS_COLORS.get(obj.status, "#6c757d"), obj.status.title())
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "status"

    def duration_display(self, obj):
        return _duration(obj.duration_seconds)
    duration_display.short_description = "Duration"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(ScrapeRun)
class ScrapeRunAdmin(RunAdminMixin, admin.ModelAdmin):
    list_display = [
        "id",
        "profile",
        "type",
        "status_badge",
        "status_message",
        "posts_fetched",
        "posts_new",
        "posts_skipped",
        "started_at",
        "duration_display",
    ]
    list_filter = ["status", "type", ("created_at", admin.DateFieldListFilter)]
    search_fields = ["profile__username"]
    ordering = ["-created_at"]


@admin.register(ProcessingRun)
class ProcessingRunAdmin(RunAdminMixin, admin.ModelAdmin):
    list_display = [
        "id",
        "profile",
        "status_badge",
        "posts_to_process",
        "posts_processed",
        "posts_skipped",
        "posts_failed",
        "progress_percentage",
        "started_at",
        "duration_display",
    ]
    list_filter = ["status", ("created_at", admin.DateFieldListFilter)]
    search_fields = ["profile__username"]
    ordering = ["-created_at"]
