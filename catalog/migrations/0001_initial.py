"""
Initial schema for the catalog pipeline.

Profiles, posts and media; the taxonomy (categories, attributes, values,
structure outputs); products with their category and attribute links; and
scrape/processing run records.
"""

import decimal

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


DOMAIN_GROUP_CHOICES = [("tech", "Tech"), ("car", "Car")]

RUN_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("running", "Running"),
    ("completed", "Completed"),
    ("failed", "Failed"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Category",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("slug", models.SlugField(max_length=255, unique=True)),
                ("description", models.TextField(blank=True)),
                ("score", models.IntegerField(default=0)),
                ("is_temp", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "parent",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="children",
                        to="catalog.category",
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "categories",
                "db_table": "categories",
            },
        ),
        migrations.CreateModel(
            name="Profile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("username", models.CharField(max_length=150, unique=True)),
                ("full_name", models.CharField(blank=True, max_length=255)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("inactive", "Inactive"),
                            ("suspended", "Suspended"),
                        ],
                        default="active",
                        max_length=20,
                    ),
                ),
                ("scrape_interval_hours", models.PositiveIntegerField(default=24)),
                (
                    "scheduled_times",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Times of day (HH:MM) to scrape at. Empty uses the defaults.",
                    ),
                ),
                ("last_scraped_at", models.DateTimeField(blank=True, null=True)),
                ("next_scrape_at", models.DateTimeField(blank=True, null=True)),
                ("initial_scrape_done", models.BooleanField(default=False)),
                ("initial_scrape_at", models.DateTimeField(blank=True, null=True)),
                ("posts_per_request", models.PositiveIntegerField(default=12)),
                ("local_post_count", models.PositiveIntegerField(default=0)),
                (
                    "media_count",
                    models.PositiveIntegerField(
                        default=0, help_text="Number of posts the account reports publicly"
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "profiles",
                "ordering": ["username"],
            },
        ),
        migrations.CreateModel(
            name="ProductAttribute",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255, unique=True)),
                ("description", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "product_attributes",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="StructureOutputGroup",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("used_for", models.CharField(max_length=50, unique=True)),
                ("description", models.TextField()),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "structure_output_groups",
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="AttributeValue",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("value", models.TextField()),
                ("ai_value", models.CharField(max_length=255)),
                ("score", models.IntegerField(default=1)),
                ("is_temp", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "attribute",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="values",
                        to="catalog.productattribute",
                    ),
                ),
            ],
            options={
                "db_table": "product_attribute_values",
            },
        ),
        migrations.CreateModel(
            name="Post",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("post_id", models.CharField(help_text="External post id", max_length=64, unique=True)),
                ("shortcode", models.CharField(max_length=64, unique=True)),
                ("caption", models.TextField(blank=True, null=True)),
                ("caption_original", models.TextField(blank=True, null=True)),
                (
                    "media_type",
                    models.PositiveSmallIntegerField(default=1, help_text="1=Photo, 2=Video, 8=Album"),
                ),
                ("is_video", models.BooleanField(default=False)),
                ("video_url", models.TextField(blank=True, null=True)),
                ("display_url", models.TextField(blank=True, null=True)),
                ("thumbnail_url", models.TextField(blank=True, null=True)),
                ("likes_count", models.IntegerField(default=0)),
                ("comments_count", models.IntegerField(default=0)),
                ("image", models.JSONField(blank=True, null=True)),
                ("images_carousel", models.JSONField(blank=True, null=True)),
                (
                    "group",
                    models.CharField(blank=True, choices=DOMAIN_GROUP_CHOICES, max_length=20, null=True),
                ),
                (
                    "used_for",
                    models.CharField(blank=True, help_text="Post type", max_length=50, null=True),
                ),
                ("processed_structure", models.BooleanField(default=False)),
                ("llm_categories", models.JSONField(blank=True, default=list)),
                ("published_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "profile",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="posts",
                        to="catalog.profile",
                    ),
                ),
            ],
            options={
                "db_table": "posts",
                "ordering": ["-published_at"],
            },
        ),
        migrations.CreateModel(
            name="Media",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("shortcode", models.CharField(db_index=True, max_length=64)),
                ("media_id", models.CharField(blank=True, db_index=True, max_length=64, null=True)),
                (
                    "role",
                    models.CharField(
                        choices=[
                            ("image_high", "Image (high-res)"),
                            ("image_mid", "Image (mid-res)"),
                            ("carousel_high", "Carousel (high-res)"),
                            ("carousel_mid", "Carousel (mid-res)"),
                            ("video", "Video"),
                            ("frame", "Video frame"),
                        ],
                        max_length=20,
                    ),
                ),
                ("media_path", models.CharField(max_length=500)),
                ("used_for", models.CharField(blank=True, max_length=20)),
                ("carousel_index", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("downloaded", "Downloaded"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "post",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="media",
                        to="catalog.post",
                    ),
                ),
            ],
            options={
                "db_table": "post_media",
            },
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("type", models.CharField(db_index=True, default="general_product", max_length=50)),
                ("description", models.TextField(blank=True)),
                ("price", models.DecimalField(decimal_places=2, default=decimal.Decimal("0"), max_digits=12)),
                (
                    "discount_price",
                    models.DecimalField(decimal_places=2, default=decimal.Decimal("0"), max_digits=12),
                ),
                (
                    "monthly_price",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True),
                ),
                ("currency", models.CharField(default="ALL", max_length=3)),
                (
                    "group",
                    models.CharField(
                        blank=True, choices=DOMAIN_GROUP_CHOICES, db_index=True, max_length=20, null=True
                    ),
                ),
                ("instagram_media_ids", models.CharField(blank=True, max_length=500)),
                ("seller_username", models.CharField(blank=True, db_index=True, max_length=150)),
                ("primary_image_url", models.TextField(blank=True)),
                ("thumbnail_url", models.TextField(blank=True)),
                ("media_count", models.PositiveSmallIntegerField(default=1)),
                ("has_discount", models.BooleanField(db_index=True, default=False)),
                ("published_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "post",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="products",
                        to="catalog.post",
                    ),
                ),
                (
                    "primary_category",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="catalog.category",
                    ),
                ),
                (
                    "profile",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="products",
                        to="catalog.profile",
                    ),
                ),
            ],
            options={
                "db_table": "products",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="ProductCategory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "category",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="product_links",
                        to="catalog.category",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="category_links",
                        to="catalog.product",
                    ),
                ),
            ],
            options={
                "db_table": "product_categories",
            },
        ),
        migrations.AddField(
            model_name="product",
            name="categories",
            field=models.ManyToManyField(
                blank=True,
                related_name="products",
                through="catalog.ProductCategory",
                to="catalog.category",
            ),
        ),
        migrations.CreateModel(
            name="AttributeValueAssociation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("is_temp", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "post",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="attribute_associations",
                        to="catalog.post",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="attribute_associations",
                        to="catalog.product",
                    ),
                ),
                (
                    "value",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="associations",
                        to="catalog.attributevalue",
                    ),
                ),
            ],
            options={
                "db_table": "product_attribute_value_associations",
            },
        ),
        migrations.CreateModel(
            name="StructureOutput",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("key", models.CharField(max_length=100)),
                ("type", models.CharField(default="string", max_length=20)),
                ("description", models.CharField(max_length=500)),
                (
                    "parent_key",
                    models.CharField(blank=True, db_index=True, help_text="Domain group", max_length=20, null=True),
                ),
                ("used_for", models.CharField(help_text="Product type", max_length=50)),
                ("required", models.BooleanField(default=False)),
                (
                    "enum_values",
                    models.TextField(blank=True, help_text="Allowed values, underscore delimited", null=True),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "attribute",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="structure_outputs",
                        to="catalog.productattribute",
                    ),
                ),
            ],
            options={
                "db_table": "structure_outputs",
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="ScrapeRun",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "status",
                    models.CharField(choices=RUN_STATUS_CHOICES, db_index=True, default="pending", max_length=20),
                ),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("posts", "Posts"),
                            ("continuation", "Continuation"),
                            ("full_pipeline", "Full Pipeline"),
                        ],
                        default="posts",
                        max_length=20,
                    ),
                ),
                ("posts_fetched", models.PositiveIntegerField(default=0)),
                ("posts_new", models.PositiveIntegerField(default=0)),
                ("posts_skipped", models.PositiveIntegerField(default=0)),
                ("end_cursor", models.CharField(blank=True, max_length=255, null=True)),
                ("has_more_pages", models.BooleanField(default=False)),
                ("status_message", models.CharField(blank=True, max_length=255)),
                (
                    "profile",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="scrape_runs",
                        to="catalog.profile",
                    ),
                ),
            ],
            options={
                "db_table": "scrape_runs",
                "ordering": ["-created_at"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="ProcessingRun",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "status",
                    models.CharField(choices=RUN_STATUS_CHOICES, db_index=True, default="pending", max_length=20),
                ),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("posts_to_process", models.PositiveIntegerField(default=0)),
                ("posts_processed", models.PositiveIntegerField(default=0)),
                ("posts_failed", models.PositiveIntegerField(default=0)),
                ("posts_skipped", models.PositiveIntegerField(default=0)),
                (
                    "profile",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="processing_runs",
                        to="catalog.profile",
                    ),
                ),
                (
                    "scrape_run",
                    models.ForeignKey(
                        blank=True,
                        help_text="Full pipeline run this batch belongs to",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="processing_runs",
                        to="catalog.scraperun",
                    ),
                ),
            ],
            options={
                "db_table": "processing_runs",
                "ordering": ["-created_at"],
                "abstract": False,
            },
        ),
        # Indexes
        migrations.AddIndex(
            model_name="category",
            index=models.Index(fields=["is_temp", "score"], name="categories_is_temp_86dcf3_idx"),
        ),
        migrations.AddIndex(
            model_name="attributevalue",
            index=models.Index(fields=["attribute", "is_temp"], name="product_att_attribu_bd8991_idx"),
        ),
        migrations.AddIndex(
            model_name="post",
            index=models.Index(fields=["profile", "processed_structure"], name="posts_profile_531ea6_idx"),
        ),
        migrations.AddIndex(
            model_name="post",
            index=models.Index(fields=["profile", "group"], name="posts_profile_8a91d3_idx"),
        ),
        migrations.AddIndex(
            model_name="media",
            index=models.Index(fields=["post", "role"], name="post_media_post_id_6c7030_idx"),
        ),
        migrations.AddIndex(
            model_name="scraperun",
            index=models.Index(fields=["profile", "created_at"], name="scrape_runs_profile_afc8e3_idx"),
        ),
        migrations.AddIndex(
            model_name="processingrun",
            index=models.Index(fields=["profile", "created_at"], name="processing__profile_4cd139_idx"),
        ),
        # Uniqueness
        migrations.AddConstraint(
            model_name="attributevalue",
            constraint=models.UniqueConstraint(fields=("attribute", "ai_value"), name="unique_attribute_ai_value"),
        ),
        migrations.AddConstraint(
            model_name="media",
            constraint=models.UniqueConstraint(fields=("post", "media_path"), name="unique_post_media_path"),
        ),
        migrations.AddConstraint(
            model_name="structureoutput",
            constraint=models.UniqueConstraint(fields=("key", "used_for"), name="unique_key_used_for"),
        ),
        migrations.AddConstraint(
            model_name="productcategory",
            constraint=models.UniqueConstraint(fields=("product", "category"), name="unique_product_category"),
        ),
        migrations.AddConstraint(
            model_name="attributevalueassociation",
            constraint=models.UniqueConstraint(
                fields=("value", "post", "product"), name="unique_value_post_product"
            ),
        ),
    ]
