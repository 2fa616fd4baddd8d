"""
Tests for the Instagram scraper client and post normalization.
"""

import httpx
import pytest

from catalog.services.instagram_client import (
    InstagramScraperClient,
    ScraperError,
    clean_caption,
    format_post_data,
    pick_image_urls,
)


def version(width, height, name):
    return {"width": width, "height": height, "url": f"https://cdn.example.com/{name}.jpg"}


RAW_POST = {
    "id": "3100000000000000001",
    "code": "ABC123",
    "media_type": 8,
    "taken_at": 1700000000,
    "like_count": 12,
    "comment_count": 3,
    "user": {"username": "techstore"},
    "caption": {"text": "iPhone 14 Pro! 999 EUR 📱"},
    "image_versions": {"items": [version(1080, 1080, "full"), version(640, 640, "mid"), version(150, 150, "thumb")]},
    "carousel_media": [
        {"id": "c0", "media_type": 1, "image_versions": {"items": [version(1080, 1080, "c0")]}},
        {
            "id": "c1",
            "media_type": 2,
            "image_versions": {"items": [version(1080, 1920, "c1")]},
            "video_versions": [{"url": "https://cdn.example.com/c1.mp4"}],
        },
    ],
}


def client_for(handler, **kwargs):
    kwargs.setdefault("api_key", "rapid-key")
    return InstagramScraperClient(
        base_url="https://scraper.example.com/v1/",
        api_host="scraper.example.com",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestNormalization:
    def test_clean_caption_keeps_letters_digits_and_whitespace(self):
        assert clean_caption("iPhone 14 Pro! 999 EUR 📱") == "iPhone 14 Pro 999 EUR "
        assert clean_caption("Çmimi: 5000€, shitet_sot") == "Çmimi 5000 shitetsot"
        assert clean_caption(None) is None

    def test_pick_image_urls(self):
        urls = pick_image_urls([version(640, 640, "mid"), version(1440, 1440, "high"), version(900, 900, "large")])

        assert urls == {
            "image_high": "https://cdn.example.com/high.jpg",
            "image_mid": "https://cdn.example.com/mid.jpg",
        }

    def test_mid_falls_back_to_wider_band_then_high(self):
        assert pick_image_urls([version(1440, 1440, "high"), version(900, 900, "large")])["image_mid"] == (
            "https://cdn.example.com/large.jpg"
        )
        assert pick_image_urls([version(1440, 1440, "high"), version(320, 320, "small")])["image_mid"] == (
            "https://cdn.example.com/high.jpg"
        )
        assert pick_image_urls([]) == {"image_high": None, "image_mid": None}

    def test_format_post_data(self):
        post = format_post_data(RAW_POST)

        assert post["shortcode"] == "ABC123"
        assert post["post_id"] == "3100000000000000001"
        assert post["username"] == "techstore"
        assert post["caption_original"] == "iPhone 14 Pro! 999 EUR 📱"
        assert post["caption"] == "iPhone 14 Pro 999 EUR "
        assert post["display_url"] == "https://cdn.example.com/full.jpg"
        assert post["thumbnail_url"] == "https://cdn.example.com/thumb.jpg"
        assert post["published_at"].timestamp() == 1700000000
        assert post["is_video"] is False
        assert post["image"]["image_mid"] == "https://cdn.example.com/mid.jpg"

        carousel = post["images_carousel"]
        assert [item["media_id"] for item in carousel] == ["c0", "c1"]
        assert carousel[1]["video_url"] == "https://cdn.example.com/c1.mp4"
        assert "video_url" not in carousel[0]


class TestGetPosts:
    def test_fetches_page_with_auth_headers(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={
                "data": {"items": [RAW_POST]},
                "pagination_token": "next-page",
            })

        result = client_for(handler).get_posts("techstore", limit=6, end_cursor="page-2")

        request = requests[0]
        assert request.url.path == "/v1/posts"
        assert request.url.params["username_or_id_or_url"] == "techstore"
        assert request.url.params["amount"] == "6"
        assert request.url.params["pagination_token"] == "page-2"
        assert request.headers["x-rapidapi-key"] == "rapid-key"
        assert request.headers["x-rapidapi-host"] == "scraper.example.com"

        assert [post["shortcode"] for post in result.posts] == ["ABC123"]
        assert result.end_cursor == "next-page"
        assert result.has_more is True

    def test_malformed_items_are_skipped(self):
        body = {"data": {"items": [{"id": "1"}, RAW_POST]}}

        result = client_for(lambda request: httpx.Response(200, json=body)).get_posts("techstore")

        assert len(result.posts) == 1
        assert result.has_more is False

    def test_missing_items_is_an_empty_page(self):
        result = client_for(lambda request: httpx.Response(200, json={"data": {}})).get_posts("techstore")

        assert result.posts == []
        assert result.end_cursor is None

    def test_http_error(self):
        client = client_for(lambda request: httpx.Response(429, text="Too many requests"))

        with pytest.raises(ScraperError, match="429"):
            client.get_posts("techstore")

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(ScraperError, match="request error"):
            client_for(handler).get_posts("techstore")

    def test_missing_api_key(self):
        with pytest.raises(ScraperError, match="INSTAGRAM_SCRAPER_API_KEY"):
            client_for(lambda request: httpx.Response(200), api_key="").get_posts("techstore")
