"""
Pytest configuration and fixtures for the catalog pipeline test suite.
"""

from unittest.mock import Mock

import pytest


@pytest.fixture(scope="session")
def django_db_setup(django_db_blocker):
    """Configure the test database by applying every migration."""
    from django.core.management import call_command

    with django_db_blocker.unblock():
        call_command("migrate", verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Cached schema definitions and throttle counters must not leak between tests."""
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def reset_singletons():
    from catalog.services.llm_client import reset_llm_client
    from catalog.services.search_index import reset_search_client

    yield
    reset_llm_client()
    reset_search_client()


@pytest.fixture
def media_root(settings, tmp_path):
    """Point default storage at a temporary directory."""
    settings.MEDIA_ROOT = str(tmp_path)
    return tmp_path


@pytest.fixture
def api_client():
    """Create a test API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def authenticated_client(db, api_client):
    from django.contrib.auth import get_user_model

    user = get_user_model().objects.create_user(username="operator", password="secret")
    api_client.force_authenticate(user=user)
    return api_client


# ============================================================
# Collaborator doubles
# ============================================================

@pytest.fixture
def llm_client():
    """LLM client double; set ``complete.return_value`` or ``side_effect`` per test."""
    from catalog.services.llm_client import LLMClient

    return Mock(spec=LLMClient)


@pytest.fixture
def search_client():
    """Search index double that finds nothing."""
    from catalog.services.search_index import TypesenseClient

    client = Mock(spec=TypesenseClient)
    client.search_categories.return_value = []
    client.upsert_documents.return_value = 0
    return client


@pytest.fixture
def taxonomy(search_client):
    from catalog.services.taxonomy import TaxonomyStore

    return TaxonomyStore(search_client=search_client)


@pytest.fixture
def doubles():
    """Scraper, media, classifier and extractor doubles for the orchestrator."""
    from types import SimpleNamespace

    from catalog.services.classifier import PostClassifier
    from catalog.services.extractor import ProductExtractor
    from catalog.services.instagram_client import InstagramScraperClient
    from catalog.services.media_processor import MediaProcessor

    classifier = Mock(spec=PostClassifier)
    classifier.classify.return_value = "tech"
    media_processor = Mock(spec=MediaProcessor)
    media_processor.process_post_media.return_value = []
    return SimpleNamespace(
        scraper=Mock(spec=InstagramScraperClient),
        media_processor=media_processor,
        classifier=classifier,
        extractor=Mock(spec=ProductExtractor),
    )


@pytest.fixture
def orchestrator(doubles, taxonomy):
    """Orchestrator with doubled collaborators and a real reconciler."""
    from catalog.services.pipeline import PipelineOrchestrator
    from catalog.services.reconciler import Reconciler

    return PipelineOrchestrator(
        scraper=doubles.scraper,
        media_processor=doubles.media_processor,
        classifier=doubles.classifier,
        extractor=doubles.extractor,
        reconciler=Reconciler(taxonomy=taxonomy),
    )


@pytest.fixture
def post_images(monkeypatch):
    """Make every post load one in-memory image instead of reading storage."""
    from catalog.services.extractor import ImageInput

    images = [ImageInput(media_id="m1", content=b"jpeg-bytes")]
    monkeypatch.setattr("catalog.services.pipeline.load_post_images", lambda post: list(images))
    return images


# ============================================================
# Model fixtures
# ============================================================

@pytest.fixture
def profile(db):
    """Create a test Profile instance."""
    from catalog.models import Profile

    return Profile.objects.create(username="techstore", full_name="Tech Store")


@pytest.fixture
def post(db, profile):
    """Create an unprocessed, unlabeled Post."""
    from catalog.models import Post

    return Post.objects.create(
        profile=profile,
        post_id="3100000000000000001",
        shortcode="ABC123",
        caption="iPhone 14 Pro 256GB like new 999 EUR",
        caption_original="iPhone 14 Pro 256GB like new! 999 EUR 📱",
        display_url="https://cdn.example.com/abc123.jpg",
        thumbnail_url="https://cdn.example.com/abc123_t.jpg",
    )


def make_post(profile, shortcode, **fields):
    from catalog.models import Post

    fields.setdefault("caption", f"Post {shortcode}")
    return Post.objects.create(profile=profile, post_id=f"id-{shortcode}", shortcode=shortcode, **fields)


@pytest.fixture
def post_factory(profile):
    """Create extra posts for ``profile``: ``post_factory("XYZ", group="tech")``."""
    return lambda shortcode, **fields: make_post(profile, shortcode, **fields)


@pytest.fixture
def stored_image(media_root, post):
    """Store one mid-res image for ``post`` and return its Media row."""
    from django.core.files.base import ContentFile
    from django.core.files.storage import default_storage

    from catalog.models import Media, MediaRole, MediaStatus

    path = default_storage.save(f"posts/{post.shortcode}/mid.jpg", ContentFile(b"\xff\xd8\xff\xe0fake-jpeg"))
    return Media.objects.create(
        post=post,
        shortcode=post.shortcode,
        media_id="m1",
        role=MediaRole.IMAGE_MID,
        media_path=path,
        used_for="image",
        status=MediaStatus.DOWNLOADED,
    )


@pytest.fixture
def structure_groups(db):
    from catalog.models import StructureOutputGroup

    return [
        StructureOutputGroup.objects.create(
            used_for="tech", description="Phones, laptops, consoles and other electronics"
        ),
        StructureOutputGroup.objects.create(
            used_for="car", description="Cars, motorcycles and other vehicles"
        ),
    ]


@pytest.fixture
def tech_attributes(db):
    """
    Attribute taxonomy for the tech group.

    brand/model/condition/currency receive the top-level product fields;
    storage is a free ``attributes`` key.
    """
    from catalog.models import ProductAttribute, StructureOutput

    attributes = {}
    rows = [
        ("brand", "Manufacturer", True),
        ("model", "Model name", True),
        ("condition", "Condition", False),
        ("currency", "Currency", False),
        ("storage", "Storage capacity, e.g. 256GB", False),
    ]
    for key, description, required in rows:
        attribute = ProductAttribute.objects.create(name=key)
        StructureOutput.objects.create(
            key=key,
            description=description,
            parent_key="tech",
            used_for="tech_product",
            required=required,
            attribute=attribute,
        )
        attributes[key] = attribute
    return attributes


@pytest.fixture
def categories(db):
    """A small tech category tree: Electronics > Phones > Smartphones, Electronics > Laptops."""
    from catalog.models import Category

    electronics = Category.objects.create(name="Electronics", is_temp=False, score=10)
    phones = Category.objects.create(name="Phones", parent=electronics, is_temp=False, score=5)
    smartphones = Category.objects.create(name="Smartphones", parent=phones, is_temp=True, score=0)
    laptops = Category.objects.create(name="Laptops", parent=electronics, is_temp=False, score=7)
    return {
        "electronics": electronics,
        "phones": phones,
        "smartphones": smartphones,
        "laptops": laptops,
    }


def make_product(**overrides):
    """An extracted product dict as the LLM returns it."""
    product = {
        "brand": "Apple",
        "name": "iPhone 14 Pro",
        "type": "phone",
        "categories": ["Phones"],
        "price": 999,
        "discount_price": 899,
        "currency": "EUR",
        "condition": "used",
        "attributes": {"storage": "256GB"},
        "product_details": "Like new, battery 95%",
        "source": ["image_1"],
        "confidence": "high",
    }
    product.update(overrides)
    return product


@pytest.fixture
def product_factory():
    return make_product
