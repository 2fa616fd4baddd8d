"""
Tests for the post classifier.

Classification never raises: every failure degrades to the default group.
"""

import json

import pytest

from catalog.services.classifier import DESCRIPTION_MAX_CHARS, PostClassifier
from catalog.services.llm_client import LLMClientError

IMAGE = "data:image/jpeg;base64,AAAA"


@pytest.mark.django_db
class TestPostClassifier:
    def test_returns_label_from_llm(self, structure_groups, llm_client):
        llm_client.complete.return_value = json.dumps({"category": "car"})

        group = PostClassifier(llm_client=llm_client).classify("BMW X5 2019 for sale", IMAGE)

        assert group == "car"

    def test_no_caption_and_no_image_returns_default_without_calling_llm(self, structure_groups, llm_client):
        group = PostClassifier(llm_client=llm_client).classify("   ", None, default_group="car")

        assert group == "car"
        llm_client.complete.assert_not_called()

    def test_no_groups_configured_returns_default(self, db, llm_client):
        group = PostClassifier(llm_client=llm_client).classify("caption", IMAGE)

        assert group == "tech"
        llm_client.complete.assert_not_called()

    def test_llm_failure_returns_default(self, structure_groups, llm_client):
        llm_client.complete.side_effect = LLMClientError("timeout")

        assert PostClassifier(llm_client=llm_client).classify("caption", IMAGE) == "tech"

    def test_unparseable_answer_returns_default(self, structure_groups, llm_client):
        llm_client.complete.return_value = "not json"

        assert PostClassifier(llm_client=llm_client).classify("caption") == "tech"

    def test_label_outside_candidate_set_returns_default(self, structure_groups, llm_client):
        llm_client.complete.return_value = json.dumps({"category": "furniture"})

        assert PostClassifier(llm_client=llm_client).classify("sofa", IMAGE) == "tech"

    def test_request_constrains_answer_to_candidate_labels(self, structure_groups, llm_client):
        llm_client.complete.return_value = json.dumps({"category": "tech"})

        PostClassifier(llm_client=llm_client, timeout=7).classify("caption", IMAGE)

        messages, response_format = llm_client.complete.call_args.args
        schema = response_format["json_schema"]["schema"]
        assert schema["properties"]["category"]["enum"] == ["tech", "car"]
        assert llm_client.complete.call_args.kwargs["timeout"] == 7

        user_content = messages[1]["content"]
        assert user_content[0]["type"] == "text"
        assert user_content[1] == {"type": "image_url", "image_url": {"url": IMAGE}}

    def test_group_descriptions_are_truncated(self, db, llm_client):
        from catalog.models import StructureOutputGroup

        StructureOutputGroup.objects.create(used_for="tech", description="x" * 400)
        llm_client.complete.return_value = json.dumps({"category": "tech"})

        PostClassifier(llm_client=llm_client).classify("caption")

        prompt = llm_client.complete.call_args.args[0][1]["content"][0]["text"]
        assert "x" * DESCRIPTION_MAX_CHARS in prompt
        assert "x" * (DESCRIPTION_MAX_CHARS + 1) not in prompt

    def test_image_only_post_is_classified(self, structure_groups, llm_client):
        llm_client.complete.return_value = json.dumps({"category": "car"})

        assert PostClassifier(llm_client=llm_client).classify(None, IMAGE) == "car"
