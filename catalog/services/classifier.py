"""
Post classifier.

Picks the domain group of a post from its caption and/or first image. The
candidate groups and their descriptions come from StructureOutputGroup rows.
Classification never fails the pipeline: any problem yields the default group.
"""

import json
import logging
from typing import Optional

from django.conf import settings

from catalog.models import StructureOutputGroup
from catalog.services.llm_client import LLMClient, get_llm_client, image_part, text_part

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_CHARS = 150
SYSTEM_PROMPT = (
    "Find the best category for this post. Only return the category name, "
    "no other text or explanation."
)


class PostClassifier:
    """Assigns one domain group to a post with a single schema-constrained LLM call."""

    def __init__(self, llm_client: Optional[LLMClient] = None, timeout: Optional[float] = None):
        self._llm_client = llm_client
        self.timeout = timeout or getattr(settings, "LLM_CLASSIFICATION_TIMEOUT", 30.0)

    @property
    def llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = get_llm_client()
        return self._llm_client

    def classify(
        self,
        caption: Optional[str] = None,
        image_data_url: Optional[str] = None,
        default_group: str = "tech",
    ) -> str:
        """
        Return the group label for a post.

        Args:
            caption: Post caption text
            image_data_url: One image as a ``data:`` URL
            default_group: Returned when there is nothing to classify, no
                candidate groups exist, or classification fails

        Returns:
            One of the configured group labels, or ``default_group``
        """
        has_caption = bool((caption or "").strip())
        has_image = bool(image_data_url)
        if not has_caption and not has_image:
            return default_group

        groups = list(StructureOutputGroup.objects.order_by("id"))
        if not groups:
            return default_group
        labels = [group.used_for for group in groups]

        prompt = "Classify this Instagram post into ONE category based on what products are being sold.\n\nCategories:\n"
        for group in groups:
            prompt += f"- {group.used_for}: {group.description[:DESCRIPTION_MAX_CHARS]}\n"
        if has_caption:
            prompt += f"\nCaption: {caption}"

        content = [text_part(prompt)]
        if has_image:
            content.append(image_part(image_data_url))

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

        try:
            raw = self.llm_client.complete(
                messages, self._response_format(labels), timeout=self.timeout
            )
            label = json.loads(raw).get("category")
        except Exception as e:
            logger.warning("Post classification failed, using '%s': %s", default_group, e)
            return default_group

        if label not in labels:
            logger.warning(
                "Classifier returned unknown group %r, using '%s'", label, default_group
            )
            return default_group
        return label

    @staticmethod
    def _response_format(labels):
        return {
            "type": "json_schema",
            "json_schema": {
                "name": "post_classification",
                "strict": True,
                "schema": {
                    "type": "object",
                    "properties": {
                        "category": {
                            "type": "string",
                            "enum": labels,
                            "description": "The category that best matches the products in this post",
                        }
                    },
                    "required": ["category"],
                    "additionalProperties": False,
                },
            },
        }
