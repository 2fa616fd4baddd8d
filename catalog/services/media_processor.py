"""
Post media download and loading.

Downloads the images (and videos) referenced by a scraped post into
Django's default storage and records them as Media rows. Also loads stored
images back as ImageInput objects for classification and extraction.
"""

import logging
import mimetypes
from typing import Any, Dict, List, Optional

import httpx
from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage

from catalog.models import Media, MediaRole, MediaStatus, Post
from catalog.services.extractor import ImageInput

logger = logging.getLogger(__name__)

VALID_IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
VIDEO_DOWNLOAD_TIMEOUT = 60.0


class MediaProcessor:
    """Stores a post's media files and creates the matching Media rows."""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        self.timeout = timeout or getattr(settings, "MEDIA_DOWNLOAD_TIMEOUT", 30.0)
        self._transport = transport

    def process_post_media(self, post: Post, post_data: Dict[str, Any]) -> List[Media]:
        """
        Download a post's media.

        The main image is stored as image_high/image_mid. Carousel entries are
        stored as carousel_high/carousel_mid under their index; entry 0 repeats
        the main image and is skipped. Failed downloads are logged and skipped.
        """
        created = []
        main_media_id = post_data.get("media_id")
        image = post_data.get("image") or {}

        for quality in ("high", "mid"):
            url = image.get(f"image_{quality}")
            if url:
                media = self._save_image(post, url, quality, None, main_media_id)
                if media:
                    created.append(media)

        if post_data.get("video_url"):
            media = self._save_video(post, post_data["video_url"], None, main_media_id)
            if media:
                created.append(media)

        for index, item in enumerate(post_data.get("images_carousel") or []):
            if index == 0:
                continue
            item_image = item.get("image") or {}
            for quality in ("high", "mid"):
                url = item_image.get(f"image_{quality}")
                if url:
                    media = self._save_image(post, url, quality, index, item.get("media_id"))
                    if media:
                        created.append(media)
            if item.get("video_url"):
                media = self._save_video(post, item["video_url"], index, item.get("media_id"))
                if media:
                    created.append(media)

        logger.debug("Stored %d media files for post %s", len(created), post.shortcode)
        return created

    def _download(self, url: str, timeout: float) -> Optional[bytes]:
        try:
            with httpx.Client(timeout=timeout, transport=self._transport, follow_redirects=True) as client:
                response = client.get(url)
        except httpx.HTTPError as e:
            logger.warning("Media download failed for %s: %s", url[:100], e)
            return None
        if response.is_error:
            logger.warning("Media download returned HTTP %s for %s", response.status_code, url[:100])
            return None
        return response.content

    def _store(self, path: str, content: bytes) -> str:
        if default_storage.exists(path):
            default_storage.delete(path)
        return default_storage.save(path, ContentFile(content))

    def _save_image(
        self,
        post: Post,
        url: str,
        quality: str,
        carousel_index: Optional[int],
        media_id: Optional[str],
    ) -> Optional[Media]:
        content = self._download(url, self.timeout)
        if content is None:
            return None

        if carousel_index is not None:
            path = f"posts/{post.shortcode}/carousel/{carousel_index}/{quality}.jpg"
            role = MediaRole.CAROUSEL_HIGH if quality == "high" else MediaRole.CAROUSEL_MID
        else:
            path = f"posts/{post.shortcode}/{quality}.jpg"
            role = MediaRole.IMAGE_HIGH if quality == "high" else MediaRole.IMAGE_MID

        stored_path = self._store(path, content)
        media, _ = Media.objects.update_or_create(
            post=post,
            media_path=stored_path,
            defaults={
                "shortcode": post.shortcode,
                "media_id": media_id,
                "role": role,
                "used_for": "image",
                "carousel_index": carousel_index,
                "status": MediaStatus.DOWNLOADED,
            },
        )
        return media

    def _save_video(
        self,
        post: Post,
        url: str,
        carousel_index: Optional[int],
        media_id: Optional[str],
    ) -> Optional[Media]:
        content = self._download(url, VIDEO_DOWNLOAD_TIMEOUT)
        if content is None:
            return None

        if carousel_index is not None:
            path = f"posts/{post.shortcode}/carousel/{carousel_index}/video.mp4"
        else:
            path = f"posts/{post.shortcode}/video/video.mp4"

        stored_path = self._store(path, content)
        media, _ = Media.objects.update_or_create(
            post=post,
            media_path=stored_path,
            defaults={
                "shortcode": post.shortcode,
                "media_id": media_id,
                "role": MediaRole.VIDEO,
                "used_for": "video",
                "carousel_index": carousel_index,
                "status": MediaStatus.DOWNLOADED,
            },
        )
        return media


def load_post_images(post: Post) -> List[ImageInput]:
    """
    Load a post's stored images for the LLM.

    One image per media id (the first stored role wins), skipping files
    that are missing or not a supported image type.
    """
    images = []
    seen_media_ids = set()
    for media in post.image_media():
        key = media.media_id or f"path:{media.media_path}"
        if key in seen_media_ids:
            continue

        mime_type, _ = mimetypes.guess_type(media.media_path)
        if mime_type not in VALID_IMAGE_MIME_TYPES:
            continue
        if not default_storage.exists(media.media_path):
            logger.warning("Media file missing for post %s: %s", post.shortcode, media.media_path)
            continue

        with default_storage.open(media.media_path, "rb") as handle:
            content = handle.read()
        seen_media_ids.add(key)
        images.append(ImageInput(media_id=media.media_id, content=content, mime_type=mime_type))
    return images
