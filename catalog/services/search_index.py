"""
Typesense search index client and sync scoping.

Two concerns live here:

1. ``TypesenseClient``: a small httpx client for the Typesense REST API
   (vector search, document upserts and deletes).
2. ``suppress_search_sync()``: a guard that defers per-save index updates
   during bulk writes and flushes them as background tasks once the block
   exits and the surrounding transaction commits.
"""

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

import httpx
from django.conf import settings
from django.db import transaction

logger = logging.getLogger(__name__)

# Model label -> Typesense collection
COLLECTIONS = {
    "catalog.category": "category",
    "catalog.attributevalue": "attribute_value",
    "catalog.product": "product",
}

CATEGORY_EMBEDDING_FIELD = "embedding_e5_small"


class SearchIndexError(Exception):
    """Error talking to the search index."""

    pass


@dataclass
class SearchHit:
    """A search result document with its vector distance (lower is closer)."""

    document: Dict[str, Any]
    distance: Optional[float] = None


class TypesenseClient:
    """
    Minimal Typesense REST client.

    Transport failures are retried ``num_retries`` times; HTTP errors are not.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        protocol: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        num_retries: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        host = host or getattr(settings, "TYPESENSE_HOST", "localhost")
        port = port or getattr(settings, "TYPESENSE_PORT", 8108)
        protocol = protocol or getattr(settings, "TYPESENSE_PROTOCOL", "http")
        self.base_url = f"{protocol}://{host}:{port}"
        self.api_key = api_key if api_key is not None else getattr(settings, "TYPESENSE_API_KEY", "")
        self.timeout = timeout or getattr(settings, "TYPESENSE_TIMEOUT", 5.0)
        self.num_retries = (
            num_retries if num_retries is not None else getattr(settings, "TYPESENSE_NUM_RETRIES", 3)
        )
        self._transport = transport

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"X-TYPESENSE-API-KEY": self.api_key}
        headers.update(kwargs.pop("headers", {}))
        last_error = None

        for attempt in range(self.num_retries + 1):
            try:
                with httpx.Client(
                    base_url=self.base_url, timeout=self.timeout, transport=self._transport
                ) as client:
                    response = client.request(method, path, headers=headers, **kwargs)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e
                logger.warning(
                    "Typesense %s %s failed on attempt %d/%d: %s",
                    method, path, attempt + 1, self.num_retries + 1, e,
                )
                continue

            if response.is_error:
                raise SearchIndexError(
                    f"Typesense {method} {path} returned HTTP {response.status_code}: "
                    f"{response.text[:200]}"
                )
            return response

        raise SearchIndexError(f"Typesense unreachable after {self.num_retries + 1} attempts: {last_error}")

    def vector_search(
        self,
        collection: str,
        query: Optional[str] = None,
        vector: Optional[Sequence[float]] = None,
        k: int = 5,
        embedding_field: str = CATEGORY_EMBEDDING_FIELD,
    ) -> List[SearchHit]:
        """
        Nearest-neighbour search, ranked by vector distance.

        Pass ``query`` to let Typesense embed the text server-side, or
        ``vector`` to search with a precomputed embedding.
        """
        if not query and vector is None:
            raise ValueError("vector_search needs a query or a vector")

        params = {
            "per_page": k,
            "exclude_fields": embedding_field,
        }
        if vector is not None:
            values = ",".join(str(v) for v in vector)
            params["q"] = "*"
            params["vector_query"] = f"{embedding_field}:([{values}], k:{k})"
        else:
            params["q"] = query
            params["query_by"] = embedding_field

        response = self._request(
            "GET", f"/collections/{collection}/documents/search", params=params
        )
        return [
            SearchHit(document=hit.get("document", {}), distance=hit.get("vector_distance"))
            for hit in response.json().get("hits", [])
        ]

    def search_categories(self, name: str, k: int = 5) -> List[SearchHit]:
        return self.vector_search(COLLECTIONS["catalog.category"], query=name, k=k)

    def upsert_documents(self, collection: str, documents: Iterable[Dict[str, Any]]) -> int:
        """Bulk upsert; returns the number of documents Typesense accepted."""
        body = "\n".join(json.dumps(doc) for doc in documents)
        if not body:
            return 0
        response = self._request(
            "POST",
            f"/collections/{collection}/documents/import",
            params={"action": "upsert"},
            content=body,
            headers={"Content-Type": "text/plain"},
        )
        accepted = 0
        for line in response.text.splitlines():
            result = json.loads(line)
            if result.get("success"):
                accepted += 1
            else:
                logger.warning("Typesense rejected document in %s: %s", collection, result.get("error"))
        return accepted

    def delete_document(self, collection: str, document_id: str) -> None:
        try:
            self._request("DELETE", f"/collections/{collection}/documents/{document_id}")
        except SearchIndexError as e:
            if "HTTP 404" not in str(e):
                raise


# Singleton instance management
_client_instance: Optional[TypesenseClient] = None


def get_search_client() -> TypesenseClient:
    global _client_instance
    if _client_instance is None:
        _client_instance = TypesenseClient()
    return _client_instance


def reset_search_client() -> None:
    global _client_instance
    _client_instance = None


# ============================================================
# Deferred index sync
# ============================================================

# model label -> ids touched while sync is suppressed; None when not suppressed
_pending_sync: ContextVar[Optional[Dict[str, Set[int]]]] = ContextVar(
    "pending_search_sync", default=None
)


def is_search_sync_suppressed() -> bool:
    return _pending_sync.get() is not None


@contextmanager
def suppress_search_sync():
    """
    Defer search index updates for the duration of the block.

    Saves inside the block only record the touched ids. When the block
    exits normally, one sync task per model is scheduled to run after the
    current transaction commits. Nested guards join the outermost one.
    """
    if _pending_sync.get() is not None:
        yield _pending_sync.get()
        return

    pending: Dict[str, Set[int]] = {}
    token = _pending_sync.set(pending)
    try:
        yield pending
    finally:
        _pending_sync.reset(token)
    flush_search_sync(pending)


def schedule_search_sync(label: str, pk: int) -> None:
    """Sync one document now (after commit), or record it if suppressed."""
    pending = _pending_sync.get()
    if pending is not None:
        pending.setdefault(label, set()).add(pk)
        return
    flush_search_sync({label: {pk}})


def flush_search_sync(pending: Dict[str, Set[int]]) -> None:
    if not getattr(settings, "SEARCH_SYNC_ENABLED", True):
        return

    from catalog.tasks import sync_search_documents

    for label, ids in pending.items():
        if not ids:
            continue
        id_list = sorted(ids)
        transaction.on_commit(
            lambda label=label, id_list=id_list: sync_search_documents.delay(label, id_list)
        )
