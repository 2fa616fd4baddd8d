"""
Tests for media download and loading.
"""

import httpx
import pytest
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage

from catalog.models import Media, MediaRole, MediaStatus
from catalog.services.media_processor import MediaProcessor, load_post_images

POST_DATA = {
    "media_id": "m0",
    "image": {
        "image_high": "https://cdn.example.com/high.jpg",
        "image_mid": "https://cdn.example.com/mid.jpg",
    },
    "images_carousel": [
        {"media_id": "m0", "image": {"image_high": "https://cdn.example.com/high.jpg"}},
        {
            "media_id": "m1",
            "image": {
                "image_high": "https://cdn.example.com/c1-high.jpg",
                "image_mid": "https://cdn.example.com/c1-mid.jpg",
            },
            "video_url": "https://cdn.example.com/c1.mp4",
        },
    ],
}


def serve(missing=()):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        if str(request.url) in missing:
            return httpx.Response(404)
        return httpx.Response(200, content=f"bytes:{request.url.path}".encode())

    return handler, requested


@pytest.mark.django_db
class TestProcessPostMedia:
    def test_stores_main_image_and_carousel(self, post, media_root):
        handler, requested = serve()

        created = MediaProcessor(transport=httpx.MockTransport(handler)).process_post_media(post, POST_DATA)

        roles = {(media.media_id, media.role, media.carousel_index) for media in created}
        assert roles == {
            ("m0", MediaRole.IMAGE_HIGH, None),
            ("m0", MediaRole.IMAGE_MID, None),
            ("m1", MediaRole.CAROUSEL_HIGH, 1),
            ("m1", MediaRole.CAROUSEL_MID, 1),
            ("m1", MediaRole.VIDEO, 1),
        }
        assert "https://cdn.example.com/high.jpg" in requested
        # Carousel entry 0 repeats the main image
        assert requested.count("https://cdn.example.com/high.jpg") == 1

        mid = Media.objects.get(post=post, role=MediaRole.IMAGE_MID)
        assert mid.media_path == "posts/ABC123/mid.jpg"
        assert mid.status == MediaStatus.DOWNLOADED
        with default_storage.open(mid.media_path, "rb") as handle:
            assert handle.read() == b"bytes:/mid.jpg"
        assert Media.objects.get(role=MediaRole.VIDEO).media_path == "posts/ABC123/carousel/1/video.mp4"

    def test_failed_downloads_are_skipped(self, post, media_root):
        handler, _ = serve(missing={"https://cdn.example.com/mid.jpg"})

        created = MediaProcessor(transport=httpx.MockTransport(handler)).process_post_media(
            post, {"media_id": "m0", "image": POST_DATA["image"]}
        )

        assert [media.role for media in created] == [MediaRole.IMAGE_HIGH]

    def test_transport_errors_are_skipped(self, post, media_root):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        created = MediaProcessor(transport=httpx.MockTransport(handler)).process_post_media(post, POST_DATA)

        assert created == []
        assert Media.objects.count() == 0

    def test_reprocessing_replaces_files(self, post, media_root):
        handler, _ = serve()
        processor = MediaProcessor(transport=httpx.MockTransport(handler))

        processor.process_post_media(post, {"media_id": "m0", "image": POST_DATA["image"]})
        processor.process_post_media(post, {"media_id": "m0", "image": POST_DATA["image"]})

        assert Media.objects.filter(post=post).count() == 2
        assert sorted(Media.objects.values_list("media_path", flat=True)) == [
            "posts/ABC123/high.jpg", "posts/ABC123/mid.jpg",
        ]


@pytest.mark.django_db
class TestLoadPostImages:
    def store(self, post, path, role, media_id, content=b"img"):
        saved = default_storage.save(path, ContentFile(content))
        return Media.objects.create(
            post=post, shortcode=post.shortcode, media_id=media_id, role=role, media_path=saved,
        )

    def test_one_image_per_media_id_mid_first(self, post, media_root):
        self.store(post, "posts/ABC123/high.jpg", MediaRole.IMAGE_HIGH, "m0", b"high")
        self.store(post, "posts/ABC123/mid.jpg", MediaRole.IMAGE_MID, "m0", b"mid")
        self.store(post, "posts/ABC123/carousel/1/high.jpg", MediaRole.CAROUSEL_HIGH, "m1", b"c1")

        images = load_post_images(post)

        assert [(image.media_id, image.content) for image in images] == [("m0", b"mid"), ("m1", b"c1")]
        assert images[0].mime_type == "image/jpeg"

    def test_videos_and_missing_files_are_skipped(self, post, media_root):
        self.store(post, "posts/ABC123/video/video.mp4", MediaRole.VIDEO, "m0")
        Media.objects.create(
            post=post, shortcode=post.shortcode, media_id="m1",
            role=MediaRole.IMAGE_MID, media_path="posts/ABC123/gone.jpg",
        )
        self.store(post, "posts/ABC123/notes.txt", MediaRole.IMAGE_HIGH, "m2")

        assert load_post_images(post) == []
