"""
Tests for the LLM chat-completion clients.
"""

import json

import httpx
import pytest
from django.core.exceptions import ImproperlyConfigured

from catalog.services.llm_client import (
    LiteLLMClient,
    LLMClientError,
    LLMResponseError,
    OpenRouterClient,
    build_llm_client,
    get_llm_client,
    image_part,
    text_part,
)

MESSAGES = [
    {"role": "system", "content": "You extract products."},
    {"role": "user", "content": [text_part("Caption: test"), image_part("data:image/jpeg;base64,AAAA")]},
]
RESPONSE_FORMAT = {"type": "json_schema", "json_schema": {"name": "x", "strict": True, "schema": {}}}


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def client_for(handler, cls=OpenRouterClient, **kwargs):
    kwargs.setdefault("base_url", "https://llm.example.com/v1/chat/completions")
    kwargs.setdefault("model", "test-model")
    return cls(transport=httpx.MockTransport(handler), **kwargs)


class TestComplete:
    def test_returns_message_content(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=completion('{"category": "tech"}'))

        client = client_for(handler, api_key="sk-test", site_url="https://catalog.example.com", app_name="Catalog")
        content = client.complete(MESSAGES, RESPONSE_FORMAT)

        assert content == '{"category": "tech"}'
        request = requests[0]
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.headers["HTTP-Referer"] == "https://catalog.example.com"
        assert request.headers["X-Title"] == "Catalog"
        payload = json.loads(request.content)
        assert payload["model"] == "test-model"
        assert payload["messages"] == MESSAGES
        assert payload["response_format"] == RESPONSE_FORMAT

    def test_litellm_without_key_and_deterministic(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=completion("{}"))

        client_for(handler, cls=LiteLLMClient).complete(MESSAGES)

        assert "Authorization" not in requests[0].headers
        payload = json.loads(requests[0].content)
        assert payload["temperature"] == 0
        assert "response_format" not in payload

    def test_http_error(self):
        client = client_for(lambda request: httpx.Response(502, text="Bad gateway"))

        with pytest.raises(LLMClientError, match="HTTP 502"):
            client.complete(MESSAGES)

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(LLMClientError, match="timeout"):
            client_for(handler, timeout=3).complete(MESSAGES)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(LLMClientError, match="connection error"):
            client_for(handler).complete(MESSAGES)

    @pytest.mark.parametrize("body", [
        {"choices": []},
        {"choices": [{"message": {"content": ""}}]},
        {"error": {"message": "model overloaded"}},
    ])
    def test_unusable_response(self, body):
        client = client_for(lambda request: httpx.Response(200, json=body))

        with pytest.raises(LLMResponseError):
            client.complete(MESSAGES)

    def test_non_json_body(self):
        client = client_for(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(LLMResponseError, match="non-JSON"):
            client.complete(MESSAGES)


class TestBuildClient:
    def test_openrouter_from_settings(self, settings):
        settings.OPENROUTER_MODEL = "google/gemini-flash"
        settings.LLM_EXTRACTION_TIMEOUT = 45.0

        client = build_llm_client("openrouter")

        assert isinstance(client, OpenRouterClient)
        assert client.model == "google/gemini-flash"
        assert client.timeout == 45.0

    def test_litellm_from_settings(self, settings):
        settings.LITELLM_BASE_URL = "http://litellm:4000/v1/chat/completions"

        client = build_llm_client("litellm", model="qwen2.5-vl")

        assert isinstance(client, LiteLLMClient)
        assert client.base_url == "http://litellm:4000/v1/chat/completions"
        assert client.model == "qwen2.5-vl"

    def test_unknown_provider(self):
        with pytest.raises(ImproperlyConfigured):
            build_llm_client("bedrock")

    def test_singleton_follows_llm_provider_setting(self, settings):
        settings.LLM_PROVIDER = "litellm"

        client = get_llm_client()

        assert isinstance(client, LiteLLMClient)
        assert get_llm_client() is client
