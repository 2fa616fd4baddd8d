"""
Django models for the content-to-catalog pipeline.

Models: Profile, Post, Media, Category, ProductAttribute, AttributeValue,
        StructureOutputGroup, StructureOutput, Product, ProductCategory,
        AttributeValueAssociation, ScrapeRun, ProcessingRun

Profiles are scraped into Posts (with their Media), Posts are labeled with a
domain group and turned into Products whose attributes and categories are
reconciled against a score-weighted taxonomy.
"""

from datetime import datetime, time, timedelta
from decimal import Decimal

from django.db import models
from django.utils import timezone
from django.utils.text import slugify


class DomainGroup(models.TextChoices):
    """Top-level taxonomy partition a post or product belongs to."""

    TECH = "tech", "Tech"
    CAR = "car", "Car"


class RunStatus(models.TextChoices):
    """Status of a scrape or processing run."""

    PENDING = "pending", "Pending"
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class ProfileStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"
    SUSPENDED = "suspended", "Suspended"


class ScrapeRunType(models.TextChoices):
    POSTS = "posts", "Posts"
    CONTINUATION = "continuation", "Continuation"
    FULL_PIPELINE = "full_pipeline", "Full Pipeline"


class MediaRole(models.TextChoices):
    """Role of a stored media asset within its post."""

    IMAGE_HIGH = "image_high", "Image (high-res)"
    IMAGE_MID = "image_mid", "Image (mid-res)"
    CAROUSEL_HIGH = "carousel_high", "Carousel (high-res)"
    CAROUSEL_MID = "carousel_mid", "Carousel (mid-res)"
    VIDEO = "video", "Video"
    FRAME = "frame", "Video frame"


class MediaStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    DOWNLOADED = "downloaded", "Downloaded"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


# Roles that can be sent to the LLM as images, in preference order
IMAGE_ROLES = [
    MediaRole.CAROUSEL_MID,
    MediaRole.IMAGE_MID,
    MediaRole.CAROUSEL_HIGH,
    MediaRole.IMAGE_HIGH,
]


# ============================================================
# Profiles, posts and media
# ============================================================


class Profile(models.Model):
    """
    A social media account whose posts are scraped.

    Scrapes happen either on an interval or at fixed times of day
    (``scheduled_times``, "HH:MM" strings in the project timezone).
    """

    DEFAULT_SCHEDULED_TIMES = ["13:00", "17:00", "20:00"]

    username = models.CharField(max_length=150, unique=True)
    full_name = models.CharField(max_length=255, blank=True)
    status = models.CharField(
        max_length=20, choices=ProfileStatus.choices, default=ProfileStatus.ACTIVE
    )

    # Scheduling
    scrape_interval_hours = models.PositiveIntegerField(default=24)
    scheduled_times = models.JSONField(
        default=list,
        blank=True,
        help_text="Times of day (HH:MM) to scrape at. Empty uses the defaults.",
    )
    last_scraped_at = models.DateTimeField(null=True, blank=True)
    next_scrape_at = models.DateTimeField(null=True, blank=True)

    # Scrape tracking
    initial_scrape_done = models.BooleanField(default=False)
    initial_scrape_at = models.DateTimeField(null=True, blank=True)
    posts_per_request = models.PositiveIntegerField(default=12)
    local_post_count = models.PositiveIntegerField(default=0)
    media_count = models.PositiveIntegerField(
        default=0, help_text="Number of posts the account reports publicly"
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "profiles"
        ordering = ["username"]

    def __str__(self):
        return f"@{self.username}"

    @property
    def coverage_percentage(self) -> float:
        """Share of the account's posts we hold locally."""
        if not self.media_count:
            return 0.0
        return round(min(100.0, self.local_post_count / self.media_count * 100), 1)

    def get_scheduled_times(self) -> list:
        return self.scheduled_times or list(self.DEFAULT_SCHEDULED_TIMES)

    def next_scheduled_at(self, now: datetime = None) -> datetime:
        """Return the next scheduled scrape time strictly after ``now``."""
        now = timezone.localtime(now or timezone.now())
        slots = []
        for value in self.get_scheduled_times():
            hour, minute = (int(part) for part in value.split(":"))
            slots.append(time(hour, minute))
        slots.sort()

        for slot in slots:
            candidate = now.replace(
                hour=slot.hour, minute=slot.minute, second=0, microsecond=0
            )
            if candidate > now:
                return candidate

        first = slots[0]
        tomorrow = now + timedelta(days=1)
        return tomorrow.replace(hour=first.hour, minute=first.minute, second=0, microsecond=0)

    def is_due(self, now: datetime = None) -> bool:
        if self.status != ProfileStatus.ACTIVE:
            return False
        now = now or timezone.now()
        return self.next_scrape_at is None or self.next_scrape_at <= now

    def mark_scraped(self, now: datetime = None):
        """Record a finished scrape and schedule the next one."""
        now = now or timezone.now()
        self.last_scraped_at = now
        self.next_scrape_at = self.next_scheduled_at(now)
        if not self.initial_scrape_done:
            self.initial_scrape_done = True
            self.initial_scrape_at = now
        self.save(update_fields=[
            "last_scraped_at", "next_scrape_at",
            "initial_scrape_done", "initial_scrape_at", "updated_at",
        ])

    def update_local_post_count(self):
        self.local_post_count = self.posts.count()
        self.save(update_fields=["local_post_count", "updated_at"])


class Post(models.Model):
    """
    A unit of scraped content.

    Created by scrape ingestion only; the shortcode is the idempotency key.
    """

    profile = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name="posts")
    post_id = models.CharField(max_length=64, unique=True, help_text="External post id")
    shortcode = models.CharField(max_length=64, unique=True)

    caption = models.TextField(null=True, blank=True)
    caption_original = models.TextField(null=True, blank=True)
    media_type = models.PositiveSmallIntegerField(default=1, help_text="1=Photo, 2=Video, 8=Album")
    is_video = models.BooleanField(default=False)
    video_url = models.TextField(null=True, blank=True)
    display_url = models.TextField(null=True, blank=True)
    thumbnail_url = models.TextField(null=True, blank=True)
    likes_count = models.IntegerField(default=0)
    comments_count = models.IntegerField(default=0)
    image = models.JSONField(null=True, blank=True)
    images_carousel = models.JSONField(null=True, blank=True)

    # Set by the classifier
    group = models.CharField(max_length=20, choices=DomainGroup.choices, null=True, blank=True)

    # Set by reconciliation
    used_for = models.CharField(max_length=50, null=True, blank=True, help_text="Post type")
    processed_structure = models.BooleanField(default=False)
    llm_categories = models.JSONField(default=list, blank=True)

    published_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "posts"
        ordering = ["-published_at"]
        indexes = [
            models.Index(fields=["profile", "processed_structure"]),
            models.Index(fields=["profile", "group"]),
        ]

    def __str__(self):
        return self.shortcode

    def image_media(self):
        """Stored images usable for extraction, by media id, mid-res before high-res."""
        role_rank = models.Case(
            *[models.When(role=role, then=models.Value(rank)) for rank, role in enumerate(IMAGE_ROLES)],
            output_field=models.IntegerField(),
        )
        return (
            self.media.filter(role__in=IMAGE_ROLES)
            .annotate(role_rank=role_rank)
            .order_by("media_id", "role_rank", "id")
        )


class Media(models.Model):
    """An image or video asset belonging to a post."""

    post = models.ForeignKey(Post, on_delete=models.CASCADE, related_name="media")
    shortcode = models.CharField(max_length=64, db_index=True)
    media_id = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    role = models.CharField(max_length=20, choices=MediaRole.choices)
    media_path = models.CharField(max_length=500)
    used_for = models.CharField(max_length=20, blank=True)
    carousel_index = models.PositiveIntegerField(null=True, blank=True)
    status = models.CharField(
        max_length=20, choices=MediaStatus.choices, default=MediaStatus.PENDING
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "post_media"
        constraints = [
            models.UniqueConstraint(fields=["post", "media_path"], name="unique_post_media_path"),
        ]
        indexes = [
            models.Index(fields=["post", "role"]),
        ]

    def __str__(self):
        return f"{self.shortcode}:{self.role}"


# ============================================================
# Taxonomy
# ============================================================


class Category(models.Model):
    """
    Hierarchical category node.

    New categories start temporary; they become permanent once their
    score crosses the promotion threshold.
    """

    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=255, unique=True)
    description = models.TextField(blank=True)
    parent = models.ForeignKey(
        "self", on_delete=models.SET_NULL, null=True, blank=True, related_name="children"
    )
    score = models.IntegerField(default=0)
    is_temp = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "categories"
        verbose_name_plural = "categories"
        indexes = [
            models.Index(fields=["is_temp", "score"]),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = slugify(self.name)
        super().save(*args, **kwargs)

    def to_search_document(self) -> dict:
        return {
            "id": str(self.pk),
            "name": self.name,
            "slug": self.slug,
            "parent_id": self.parent_id or 0,
            "score": self.score,
            "is_temp": self.is_temp,
        }


class ProductAttribute(models.Model):
    """An attribute such as "Color" that groups many values."""

    name = models.CharField(max_length=255, unique=True)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "product_attributes"
        ordering = ["name"]

    def __str__(self):
        return self.name


class AttributeValue(models.Model):
    """
    A value of a ProductAttribute.

    ``ai_value`` holds the normalized form used for case-insensitive
    lookups; (attribute, ai_value) is unique.
    """

    MAX_LENGTH = 255

    attribute = models.ForeignKey(
        ProductAttribute, on_delete=models.CASCADE, related_name="values"
    )
    value = models.TextField()
    ai_value = models.CharField(max_length=MAX_LENGTH)
    score = models.IntegerField(default=1)
    is_temp = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "product_attribute_values"
        constraints = [
            models.UniqueConstraint(
                fields=["attribute", "ai_value"], name="unique_attribute_ai_value"
            ),
        ]
        indexes = [
            models.Index(fields=["attribute", "is_temp"]),
        ]

    def __str__(self):
        return f"{self.attribute.name}: {self.value}"

    @staticmethod
    def normalize(text: str) -> str:
        return (text or "").strip().lower()

    def save(self, *args, **kwargs):
        if not self.ai_value:
            self.ai_value = self.normalize(self.value)
        super().save(*args, **kwargs)

    def to_search_document(self) -> dict:
        return {
            "id": str(self.pk),
            "attribute_id": self.attribute_id,
            "value": self.value,
            "score": self.score,
            "is_temp": self.is_temp,
        }


class StructureOutputGroup(models.Model):
    """A domain group the classifier can choose, with its description."""

    used_for = models.CharField(max_length=50, unique=True)
    description = models.TextField()
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "structure_output_groups"
        ordering = ["id"]

    def __str__(self):
        return self.used_for


class StructureOutput(models.Model):
    """
    A field descriptor for the extraction schema.

    Every row sharing a ``parent_key`` (domain group) contributes one key to
    the ``attributes`` object the LLM fills in for that group.
    """

    key = models.CharField(max_length=100)
    type = models.CharField(max_length=20, default="string")
    description = models.CharField(max_length=500)
    parent_key = models.CharField(
        max_length=20, null=True, blank=True, db_index=True, help_text="Domain group"
    )
    used_for = models.CharField(max_length=50, help_text="Product type")
    required = models.BooleanField(default=False)
    enum_values = models.TextField(
        null=True, blank=True, help_text="Allowed values, underscore delimited"
    )
    attribute = models.ForeignKey(
        ProductAttribute,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="structure_outputs",
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "structure_outputs"
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(fields=["key", "used_for"], name="unique_key_used_for"),
        ]

    def __str__(self):
        return f"{self.parent_key}.{self.key}"


# ============================================================
# Products
# ============================================================


class Product(models.Model):
    """A sellable item extracted from a post."""

    name = models.CharField(max_length=255)
    type = models.CharField(max_length=50, default="general_product", db_index=True)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    discount_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    monthly_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, default="ALL")
    group = models.CharField(
        max_length=20, choices=DomainGroup.choices, null=True, blank=True, db_index=True
    )

    # Source references; media ids joined with "_"
    instagram_media_ids = models.CharField(max_length=500, blank=True)
    post = models.ForeignKey(
        Post, on_delete=models.SET_NULL, null=True, blank=True, related_name="products"
    )

    # Denormalized for fast querying
    profile = models.ForeignKey(
        Profile, on_delete=models.SET_NULL, null=True, blank=True, related_name="products"
    )
    seller_username = models.CharField(max_length=150, blank=True, db_index=True)
    primary_category = models.ForeignKey(
        Category, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    primary_image_url = models.TextField(blank=True)
    thumbnail_url = models.TextField(blank=True)
    media_count = models.PositiveSmallIntegerField(default=1)
    has_discount = models.BooleanField(default=False, db_index=True)
    published_at = models.DateTimeField(null=True, blank=True, db_index=True)

    categories = models.ManyToManyField(
        Category, through="ProductCategory", related_name="products", blank=True
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"
        ordering = ["-created_at"]

    def __str__(self):
        return self.name

    @staticmethod
    def compute_has_discount(price, discount_price) -> bool:
        """A discount exists only when 0 < discount_price < price."""
        price = Decimal(str(price or 0))
        discount_price = Decimal(str(discount_price or 0))
        return Decimal("0") < discount_price < price

    def save(self, *args, **kwargs):
        self.has_discount = self.compute_has_discount(self.price, self.discount_price)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and (
            "price" in update_fields or "discount_price" in update_fields
        ):
            kwargs["update_fields"] = set(update_fields) | {"has_discount"}
        super().save(*args, **kwargs)

    def to_search_document(self) -> dict:
        return {
            "id": str(self.pk),
            "name": self.name,
            "type": self.type,
            "group": self.group or "",
            "price": float(self.price),
            "discount_price": float(self.discount_price),
            "currency": self.currency,
            "has_discount": self.has_discount,
            "seller_username": self.seller_username,
            "primary_category_id": self.primary_category_id or 0,
            "published_at": int(self.published_at.timestamp()) if self.published_at else 0,
        }


class ProductCategory(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="category_links")
    category = models.ForeignKey(Category, on_delete=models.CASCADE, related_name="product_links")
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "product_categories"
        constraints = [
            models.UniqueConstraint(fields=["product", "category"], name="unique_product_category"),
        ]


class AttributeValueAssociation(models.Model):
    """
    Links an AttributeValue to a product and the post it came from.

    ``is_temp`` is a snapshot of the value's state at association time.
    """

    value = models.ForeignKey(
        AttributeValue, on_delete=models.CASCADE, related_name="associations"
    )
    post = models.ForeignKey(
        Post, on_delete=models.SET_NULL, null=True, blank=True, related_name="attribute_associations"
    )
    product = models.ForeignKey(
        Product, on_delete=models.SET_NULL, null=True, blank=True, related_name="attribute_associations"
    )
    is_temp = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "product_attribute_value_associations"
        constraints = [
            models.UniqueConstraint(
                fields=["value", "post", "product"], name="unique_value_post_product"
            ),
        ]


# ============================================================
# Runs
# ============================================================


class RunBase(models.Model):
    """Shared status tracking for scrape and processing runs."""

    status = models.CharField(
        max_length=20, choices=RunStatus.choices, default=RunStatus.PENDING, db_index=True
    )
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    @property
    def duration_seconds(self):
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def is_running(self) -> bool:
        return self.status == RunStatus.RUNNING


class ScrapeRun(RunBase):
    """
    A scrape (or full pipeline) run for one profile.

    ``status_message`` reports the current sub-step of a full pipeline run.
    """

    profile = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name="scrape_runs")
    type = models.CharField(
        max_length=20, choices=ScrapeRunType.choices, default=ScrapeRunType.POSTS
    )
    posts_fetched = models.PositiveIntegerField(default=0)
    posts_new = models.PositiveIntegerField(default=0)
    posts_skipped = models.PositiveIntegerField(default=0)
    end_cursor = models.CharField(max_length=255, null=True, blank=True)
    has_more_pages = models.BooleanField(default=False)
    status_message = models.CharField(max_length=255, blank=True)

    class Meta(RunBase.Meta):
        db_table = "scrape_runs"
        indexes = [
            models.Index(fields=["profile", "created_at"]),
        ]

    def __str__(self):
        return f"ScrapeRun {self.pk} - {self.profile.username} ({self.status})"

    def set_step(self, message: str):
        self.status_message = message
        self.save(update_fields=["status_message"])

    def to_dict(self) -> dict:
        return {
            "id": self.pk,
            "profile_id": self.profile_id,
            "type": self.type,
            "status": self.status,
            "status_message": self.status_message,
            "posts_fetched": self.posts_fetched,
            "posts_new": self.posts_new,
            "posts_skipped": self.posts_skipped,
            "end_cursor": self.end_cursor,
            "has_more_pages": self.has_more_pages,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
        }


class ProcessingRun(RunBase):
    """Tracks per-post processing of a batch of posts."""

    profile = models.ForeignKey(Profile, on_delete=models.CASCADE, related_name="processing_runs")
    scrape_run = models.ForeignKey(
        ScrapeRun,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processing_runs",
        help_text="Full pipeline run this batch belongs to",
    )
    posts_to_process = models.PositiveIntegerField(default=0)
    posts_processed = models.PositiveIntegerField(default=0)
    posts_failed = models.PositiveIntegerField(default=0)
    posts_skipped = models.PositiveIntegerField(default=0)

    class Meta(RunBase.Meta):
        db_table = "processing_runs"
        indexes = [
            models.Index(fields=["profile", "created_at"]),
        ]

    def __str__(self):
        return f"ProcessingRun {self.pk} - {self.profile.username} ({self.status})"

    @property
    def posts_done(self) -> int:
        return self.posts_processed + self.posts_skipped + self.posts_failed

    @property
    def is_done(self) -> bool:
        return self.posts_done >= self.posts_to_process

    @property
    def progress_percentage(self) -> float:
        if not self.posts_to_process:
            return 0.0
        return round(self.posts_done / self.posts_to_process * 100, 1)

    def to_dict(self) -> dict:
        return {
            "id": self.pk,
            "profile_id": self.profile_id,
            "scrape_run_id": self.scrape_run_id,
            "status": self.status,
            "posts_to_process": self.posts_to_process,
            "posts_processed": self.posts_processed,
            "posts_failed": self.posts_failed,
            "posts_skipped": self.posts_skipped,
            "progress_percentage": self.progress_percentage,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
        }
