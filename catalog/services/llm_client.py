"""
LLM chat-completion clients.

Both supported backends speak the OpenAI-compatible chat completions API
with multimodal content (text + image data URLs) and strict JSON-schema
``response_format``. The backend is picked once per process from
``settings.LLM_PROVIDER``:

- ``openrouter``: OpenRouter hosted models
- ``litellm``: a LiteLLM proxy (typically in front of local models)

Callers only depend on ``LLMClient.complete()``.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)


class LLMClientError(Exception):
    """Transport or HTTP failure talking to the LLM backend."""

    pass


class LLMResponseError(LLMClientError):
    """The backend answered, but without usable message content."""

    pass


def text_part(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


def image_part(data_url: str) -> Dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": data_url}}


class LLMClient:
    """
    Base client for an OpenAI-compatible chat completions endpoint.

    Subclasses set ``provider`` and may add headers or payload fields.
    """

    provider = ""
    DEFAULT_TIMEOUT = 120.0

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def __repr__(self):
        return f"<{self.__class__.__name__} model={self.model}>"

    def complete(
        self,
        messages: List[Dict[str, Any]],
        response_format: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Send a chat completion request and return the message content.

        Args:
            messages: Chat messages; user content may be a list of text/image parts
            response_format: Strict ``json_schema`` response format
            timeout: Per-call timeout override in seconds

        Returns:
            The raw content string of the first choice (JSON text when a
            schema was given)

        Raises:
            LLMClientError: On timeouts, connection errors and HTTP errors
            LLMResponseError: When the response carries no content
        """
        payload = self._build_payload(messages, response_format)
        timeout = timeout or self.timeout

        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                response = client.post(self.base_url, json=payload, headers=self._get_headers())
        except httpx.TimeoutException as e:
            raise LLMClientError(f"{self.provider} request timeout after {timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise LLMClientError(f"{self.provider} connection error: {e}") from e

        if response.is_error:
            raise LLMClientError(
                f"{self.provider} API request failed: HTTP {response.status_code}: "
                f"{response.text[:200]}"
            )

        return self._parse_response(response)

    def _build_payload(
        self,
        messages: List[Dict[str, Any]],
        response_format: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": messages,
        }
        if response_format:
            payload["response_format"] = response_format
        return payload

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _parse_response(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise LLMResponseError(f"{self.provider} returned non-JSON body") from e

        if isinstance(data, dict) and data.get("error"):
            raise LLMResponseError(f"{self.provider} error: {data['error']}")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None

        if not content:
            raise LLMResponseError(f"Invalid response format from {self.provider} API")
        return content


class OpenRouterClient(LLMClient):
    """OpenRouter backend. Adds the attribution headers OpenRouter expects."""

    provider = "openrouter"

    def __init__(self, site_url: str = "", app_name: str = "", **kwargs):
        super().__init__(**kwargs)
        self.site_url = site_url
        self.app_name = app_name

    def _get_headers(self) -> Dict[str, str]:
        headers = super()._get_headers()
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.app_name:
            headers["X-Title"] = self.app_name
        return headers


class LiteLLMClient(LLMClient):
    """LiteLLM proxy backend. The API key is optional for local proxies."""

    provider = "litellm"

    def _build_payload(self, messages, response_format):
        payload = super()._build_payload(messages, response_format)
        payload["temperature"] = 0
        return payload


def build_llm_client(provider: Optional[str] = None, **overrides) -> LLMClient:
    """
    Create the LLM client configured for this process.

    Raises:
        ImproperlyConfigured: For an unknown provider name
    """
    provider = provider or getattr(settings, "LLM_PROVIDER", "openrouter")
    timeout = getattr(settings, "LLM_EXTRACTION_TIMEOUT", LLMClient.DEFAULT_TIMEOUT)

    if provider == "openrouter":
        options = {
            "base_url": settings.OPENROUTER_BASE_URL,
            "model": settings.OPENROUTER_MODEL,
            "api_key": settings.OPENROUTER_API_KEY,
            "timeout": timeout,
            "site_url": getattr(settings, "OPENROUTER_SITE_URL", ""),
            "app_name": getattr(settings, "OPENROUTER_APP_NAME", ""),
        }
        options.update(overrides)
        return OpenRouterClient(**options)

    if provider == "litellm":
        options = {
            "base_url": settings.LITELLM_BASE_URL,
            "model": settings.LITELLM_MODEL,
            "api_key": settings.LITELLM_API_KEY,
            "timeout": timeout,
        }
        options.update(overrides)
        return LiteLLMClient(**options)

    raise ImproperlyConfigured(f"Unknown LLM provider: {provider}")


# Singleton instance management
_client_instance: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create the process-wide LLM client."""
    global _client_instance
    if _client_instance is None:
        _client_instance = build_llm_client()
        logger.info("LLM backend initialized: %r", _client_instance)
    return _client_instance


def reset_llm_client() -> None:
    """Reset the singleton instance. Useful for testing or reconfiguration."""
    global _client_instance
    _client_instance = None
