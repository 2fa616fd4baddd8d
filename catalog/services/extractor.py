"""
Product extractor.

Sends a post's images and caption to the LLM together with the extraction
schema for its domain group, and parses the strict JSON answer.

Images are labeled "image_1".."image_N" in the order given; the answer
refers to them through each product's ``source`` list, and the returned
``image_map`` translates labels back to media ids.

The extractor does not touch the database beyond reading schema
definitions; persistence is the reconciler's job.
"""

import base64
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from django.conf import settings

from catalog.services.llm_client import (
    LLMClient,
    LLMClientError,
    get_llm_client,
    image_part,
    text_part,
)
from catalog.services.schema_builder import ExtractionSchema, build_schema

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a product extraction expert. Analyze Instagram posts to identify products being sold. "
    "Mark has_products=true if the post contains products with identifiable BRAND and MODEL "
    "(price is optional). Extract comprehensive product details including all specs, features, "
    "prices, and conditions visible in images or caption. If no price is mentioned, use price=0 "
    '(means "contact for price"). If a discount is mentioned, use the discount price field and the '
    "price as the old price usually shown crossed out. Be thorough and accurate. IMPORTANT: Never "
    'use placeholder values like "Unknown", "N/A", "NA", "None", "Not Available", "Not Specified", '
    "or similar. Only include attributes where you can extract actual values from the images or "
    "caption. Leave attributes empty or omit them entirely if the information is not available."
)


class ExtractionError(Exception):
    """Extraction failed after all retries."""

    pass


class ExtractionValidationError(ExtractionError):
    """Bad input, e.g. no images. Not retried."""

    pass


class ExtractionParseError(ExtractionError):
    """The LLM answer is not valid JSON for the extraction schema."""

    pass


@dataclass
class ImageInput:
    """One image to send, with the caller's media id for reverse lookup."""

    media_id: Optional[str]
    content: bytes
    mime_type: str = "image/jpeg"

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass
class ExtractionResult:
    """Parsed extraction answer plus the label -> media id map."""

    has_products: bool
    post_type: Optional[str] = None
    products: List[Dict[str, Any]] = field(default_factory=list)
    image_map: Dict[str, Optional[str]] = field(default_factory=dict)
    group: str = ""
    attempts: int = 1

    def media_ids_for(self, source_labels: Sequence[str]) -> List[str]:
        """Media ids for a product's ``source`` labels, in label order, without duplicates."""
        media_ids = []
        for label in source_labels or []:
            media_id = self.image_map.get(label)
            if media_id and media_id not in media_ids:
                media_ids.append(media_id)
        return media_ids


def parse_extraction(raw: str) -> Dict[str, Any]:
    """
    Parse and structurally check an extraction answer.

    Raises:
        ExtractionParseError: For invalid JSON or a wrong top-level shape
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ExtractionParseError(f"Failed to parse response JSON: {e}") from e

    if not isinstance(data, dict):
        raise ExtractionParseError("Extraction response is not a JSON object")
    if not isinstance(data.get("has_products"), bool):
        raise ExtractionParseError("Extraction response is missing boolean 'has_products'")

    products = data.get("products", [])
    if not isinstance(products, list) or not all(isinstance(p, dict) for p in products):
        raise ExtractionParseError("Extraction response 'products' must be a list of objects")
    data["products"] = products
    return data


class ProductExtractor:
    """
    Runs product extraction for one post.

    Retries transport and parse failures up to ``max_retries`` attempts with
    a fixed delay between attempts.
    """

    MAX_RETRIES = 3
    RETRY_DELAY = 1.0  # seconds

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self._llm_client = llm_client
        self.max_retries = max_retries or getattr(settings, "EXTRACTION_MAX_RETRIES", self.MAX_RETRIES)
        self.retry_delay = (
            retry_delay
            if retry_delay is not None
            else getattr(settings, "EXTRACTION_RETRY_DELAY", self.RETRY_DELAY)
        )
        self.timeout = timeout or getattr(settings, "LLM_EXTRACTION_TIMEOUT", 120.0)

    @property
    def llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = get_llm_client()
        return self._llm_client

    def extract(
        self,
        images: Sequence[ImageInput],
        caption: Optional[str] = None,
        group: str = "tech",
    ) -> ExtractionResult:
        """
        Extract products from images and caption.

        Raises:
            ExtractionValidationError: If no images are given
            ExtractionParseError / LLMClientError: Last failure once retries are exhausted
        """
        if not images:
            raise ExtractionValidationError("No valid images provided")

        labels = [f"image_{index}" for index in range(1, len(images) + 1)]
        image_map = {label: image.media_id for label, image in zip(labels, images)}
        schema = build_schema(group, labels)
        messages = self._build_messages(images, caption, labels)

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                raw = self.llm_client.complete(
                    messages, schema.response_format(), timeout=self.timeout
                )
                data = parse_extraction(raw)
            except (LLMClientError, ExtractionParseError) as e:
                last_error = e
                logger.warning(
                    "Extraction attempt %d/%d failed: %s", attempt, self.max_retries, e
                )
                if attempt < self.max_retries and self.retry_delay:
                    time.sleep(self.retry_delay)
                continue

            return self._to_result(data, image_map, schema, attempt)

        if last_error is not None:
            raise last_error
        raise ExtractionError("Failed to extract products")

    @staticmethod
    def _build_messages(
        images: Sequence[ImageInput], caption: Optional[str], labels: List[str]
    ) -> List[Dict[str, Any]]:
        prompt = "Analyze the following Instagram post images"
        if caption:
            prompt += " and caption"
        prompt += ". Extract all products shown.\n\n"
        if caption:
            prompt += f"Caption: {caption}\n\n"
        prompt += "Images are labeled in order: " + ", ".join(labels) + "."

        content = [text_part(prompt)]
        content.extend(image_part(image.data_url) for image in images)
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

    @staticmethod
    def _to_result(
        data: Dict[str, Any],
        image_map: Dict[str, Optional[str]],
        schema: ExtractionSchema,
        attempts: int,
    ) -> ExtractionResult:
        return ExtractionResult(
            has_products=data["has_products"],
            post_type=data.get("post_type"),
            products=data["products"],
            image_map=image_map,
            group=schema.group,
            attempts=attempts,
        )
