"""
Instagram scraper API client (RapidAPI).

Fetches a page of posts for an account and normalizes each raw item into
the flat post dict the ingestion step stores.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, List, Optional

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)

MEDIA_TYPE_VIDEO = 2

_NON_WORD = re.compile(r"[^\w\s]|_", re.UNICODE)


class ScraperError(Exception):
    """Scrape source request failed."""

    pass


@dataclass
class ScrapeResult:
    posts: List[Dict[str, Any]] = field(default_factory=list)
    end_cursor: Optional[str] = None
    has_more: bool = False


def clean_caption(caption: Optional[str]) -> Optional[str]:
    """Drop emoji and punctuation, keeping letters, digits and whitespace."""
    if caption is None:
        return None
    return _NON_WORD.sub("", caption)


def pick_image_urls(versions: List[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """
    Choose a high and a mid resolution URL from image candidates.

    High is the largest by area; mid is the first candidate 500-710 px wide,
    else 711-1000 px wide, else the high URL.
    """
    if not versions:
        return {"image_high": None, "image_mid": None}

    ordered = sorted(
        versions,
        key=lambda v: (v.get("width") or 0) * (v.get("height") or 0),
        reverse=True,
    )
    high = ordered[0].get("url")

    mid = None
    for low_bound, high_bound in ((500, 710), (711, 1000)):
        for version in ordered:
            if low_bound <= (version.get("width") or 0) <= high_bound:
                mid = version.get("url")
                break
        if mid:
            break

    return {"image_high": high, "image_mid": mid or high}


def format_post_data(item: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize one raw scraper item into a post dict."""
    versions = (item.get("image_versions") or {}).get("items") or []
    is_video = item.get("media_type") == MEDIA_TYPE_VIDEO
    caption_text = (item.get("caption") or {}).get("text")
    taken_at = item.get("taken_at")

    carousel = None
    if item.get("carousel_media"):
        carousel = [_format_carousel_item(media) for media in item["carousel_media"]]

    return {
        "post_id": str(item["id"]),
        "media_id": str(item["id"]),
        "username": (item.get("user") or {}).get("username"),
        "shortcode": item["code"],
        "is_video": is_video,
        "video_url": _first_video_url(item) if is_video else None,
        "display_url": versions[0].get("url") if versions else None,
        "thumbnail_url": versions[-1].get("url") if versions else None,
        "caption_original": caption_text,
        "caption": clean_caption(caption_text),
        "likes_count": item.get("like_count") or 0,
        "comments_count": item.get("comment_count") or 0,
        "published_at": (
            datetime.fromtimestamp(taken_at, tz=dt_timezone.utc) if taken_at else None
        ),
        "media_type": item.get("media_type") or 1,
        "image": pick_image_urls(versions),
        "images_carousel": carousel,
    }


def _first_video_url(item: Dict[str, Any]) -> Optional[str]:
    videos = item.get("video_versions") or []
    return videos[0].get("url") if videos else None


def _format_carousel_item(media: Dict[str, Any]) -> Dict[str, Any]:
    versions = (media.get("image_versions") or {}).get("items") or []
    formatted = {
        "media_id": str(media["id"]),
        "media_type": media.get("media_type"),
        "display_url": versions[0].get("url") if versions else None,
        "thumbnail_url": versions[-1].get("url") if versions else None,
        "image": pick_image_urls(versions),
    }
    if media.get("media_type") == MEDIA_TYPE_VIDEO:
        formatted["video_url"] = _first_video_url(media)
    return formatted


class InstagramScraperClient:
    """HTTP client for the RapidAPI Instagram scraper."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_host: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.INSTAGRAM_SCRAPER_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.INSTAGRAM_SCRAPER_API_KEY
        self.api_host = api_host or settings.INSTAGRAM_SCRAPER_HOST
        self.timeout = timeout or getattr(settings, "INSTAGRAM_SCRAPER_TIMEOUT", 60.0)
        self._transport = transport

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise ScraperError("INSTAGRAM_SCRAPER_API_KEY is not configured")

        headers = {
            "x-rapidapi-host": self.api_host,
            "x-rapidapi-key": self.api_key,
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(f"{self.base_url}/{endpoint}", params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ScraperError(f"Instagram API request error for {endpoint}: {e}") from e

        if response.is_error:
            logger.error(
                "Instagram API error: endpoint=%s status=%s body=%s",
                endpoint, response.status_code, response.text[:200],
            )
            raise ScraperError(f"Instagram API request failed: {response.status_code}")
        return response.json()

    def get_posts(self, username: str, limit: int = 12, end_cursor: Optional[str] = None) -> ScrapeResult:
        """Fetch one page of posts for ``username``."""
        params = {"username_or_id_or_url": username, "amount": limit}
        if end_cursor:
            params["pagination_token"] = end_cursor

        data = self._get("posts", params)
        items = (data.get("data") or {}).get("items")
        if items is None:
            return ScrapeResult()

        posts = []
        for item in items:
            try:
                posts.append(format_post_data(item))
            except KeyError as e:
                logger.warning("Skipping malformed post item for %s: missing %s", username, e)

        next_cursor = data.get("pagination_token") or (data.get("data") or {}).get("next_max_id")
        return ScrapeResult(posts=posts, end_cursor=next_cursor, has_more=bool(next_cursor))
