"""Thin HTTP client for an Elasticsearch-compatible search index."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from catsync.errors import SearchIndexError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from catsync.config import SearchConfig

logger = logging.getLogger(__name__)


class SearchClient:
    """Search, bulk and cluster-health calls over a shared ``httpx.Client``."""

    def __init__(
        self,
        base_url: str,
        *,
        user: str = "",
        password: str = "",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        auth = httpx.BasicAuth(user, password) if user else None
        self._http = httpx.Client(
            base_url=base_url,
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> SearchClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"Search index request {method} {url} failed: {exc}"
            raise SearchIndexError(msg) from exc

        if response.status_code >= 300:
            msg = f"Search index error {response.status_code} on {method} {url}: {response.text}"
            raise SearchIndexError(msg)

        try:
            data = response.json()
        except ValueError as exc:
            msg = f"Search index returned non-JSON response for {method} {url}"
            raise SearchIndexError(msg) from exc
        if not isinstance(data, dict):
            msg = f"Search index returned unexpected payload for {method} {url}"
            raise SearchIndexError(msg)
        return data

    def wait_for_status(self, status: str = "yellow", wait: str = "10s") -> None:
        """Block until the cluster reports *status* or better.

        Raises
        ------
        SearchIndexError
            If the cluster did not reach the status within *wait*.
        """
        data = self._request(
            "GET",
            "/_cluster/health",
            params={"wait_for_status": status, "timeout": wait},
        )
        if data.get("timed_out"):
            msg = f"Cluster did not report {status} or better status within {wait}"
            raise SearchIndexError(msg)
        logger.debug("Cluster status is %s", data.get("status"))

    def search(self, indices: Sequence[str], body: dict[str, Any]) -> dict[str, Any]:
        """Run a search across *indices* and return the decoded response."""
        return self._request(
            "POST",
            f"/{','.join(indices)}/_search",
            json=body,
            params={"ignore_unavailable": "true"},
        )

    def bulk(self, payload: str) -> dict[str, Any]:
        """Send an NDJSON bulk payload.

        Raises
        ------
        SearchIndexError
            On transport failure or when any item in the batch failed.
        """
        data = self._request(
            "POST",
            "/_bulk",
            content=payload.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
        )
        failure = _first_failure(data.get("items") or []) if data.get("errors") else None
        if failure is not None:
            msg = f"Bulk request had failed items: {failure}"
            raise SearchIndexError(msg)
        return data


def _first_failure(items: list[dict[str, Any]]) -> str | None:
    for item in items:
        for action, result in item.items():
            if result.get("error") is None:
                continue
            if action == "delete" and result.get("result") == "not_found":
                continue
            return f"{action} {result.get('_id')}: {result['error']}"
    return None


def connect_search(config: SearchConfig, *, wait: str = "10s") -> SearchClient:
    """Create a client from configuration and wait for a usable cluster."""
    client = SearchClient(
        config.url,
        user=config.user,
        password=config.password(),
        timeout=config.timeout,
    )
    try:
        client.wait_for_status("yellow", wait)
    except SearchIndexError:
        client.close()
        raise
    return client
