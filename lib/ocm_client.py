"""
OpenShift Cluster Manager (OCM) REST client.

Every call returns an ``OCMResponse``: the provider either answers with a body
or with an embedded structured error. Failures below HTTP (connection, TLS,
undecodable JSON) raise ``TransportError``. Retrying is left to the caller.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from lib.constants import OCM_API_PREFIX, OCM_DEFAULT_URL, OCM_REQUEST_TIMEOUT
from lib.exceptions import ErrorKind, ProviderError, TransportError

logger = logging.getLogger("osd_lifecycle")

LIST_PAGE_SIZE = 100


@dataclass(frozen=True)
class OCMError:
    """Structured error object returned by the provider."""

    status: int
    id: str = ""
    code: str = ""
    reason: str = ""

    def __str__(self) -> str:
        return f"status {self.status}, code '{self.code}': {self.reason}"

    def to_exception(self, context: str) -> ProviderError:
        return ProviderError(
            f"{context}: {self}",
            kind=ErrorKind.from_status(self.status),
            status=self.status,
            reason=self.reason,
        )


@dataclass(frozen=True)
class OCMResponse:
    """Result of a provider call."""

    status: int
    body: Dict[str, Any]
    error: Optional[OCMError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self, context: str) -> Dict[str, Any]:
        """Return the body, or raise the embedded error as ``ProviderError``."""
        if self.error is not None:
            raise self.error.to_exception(context)
        return self.body


class OCMClient:
    """Thin wrapper around the clusters_mgmt/v1 API."""

    def __init__(
        self,
        token: str,
        url: str = OCM_DEFAULT_URL,
        request_timeout: int = OCM_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = url.rstrip("/") + OCM_API_PREFIX
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            }
        )
        logger.info("Initialized OCM client for %s (timeout: %ss)", url, request_timeout)

    def _send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> OCMResponse:
        url = f"{self.base_url}{path}"
        logger.debug("OCM %s %s params=%s", method, path, params)
        try:
            resp = self.session.request(
                method,
                url,
                json=body,
                params=params,
                timeout=self.request_timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        payload: Dict[str, Any] = {}
        if resp.content:
            try:
                payload = resp.json()
            except ValueError as e:
                if resp.status_code < 400:
                    raise TransportError(f"{method} {path} returned invalid JSON: {e}") from e
                payload = {"reason": resp.text[:500]}

        if resp.status_code >= 400:
            error = OCMError(
                status=resp.status_code,
                id=str(payload.get("id", "")),
                code=str(payload.get("code", "")),
                reason=str(payload.get("reason", resp.reason or "")),
            )
            return OCMResponse(status=resp.status_code, body={}, error=error)

        return OCMResponse(status=resp.status_code, body=payload)

    def _list(self, path: str, params: Optional[Dict[str, Any]] = None) -> OCMResponse:
        """Collect every page of a list endpoint into a single ``items`` body."""
        items: List[Dict[str, Any]] = []
        page = 1

        while True:
            query = dict(params or {})
            query.update({"page": page, "size": LIST_PAGE_SIZE})
            resp = self._send("GET", path, params=query)
            if not resp.ok:
                return resp

            batch = resp.body.get("items") or []
            items.extend(batch)

            total = resp.body.get("total")
            if len(batch) < LIST_PAGE_SIZE or (total is not None and len(items) >= total):
                break
            page += 1

        return OCMResponse(status=200, body={"items": items, "total": len(items)})

    # =============================
    # Clusters
    # =============================
    def create_cluster(self, body: Dict[str, Any]) -> OCMResponse:
        return self._send("POST", "/clusters", body=body)

    def get_cluster(self, cluster_id: str) -> OCMResponse:
        return self._send("GET", f"/clusters/{cluster_id}")

    def list_clusters(self, search: Optional[str] = None) -> OCMResponse:
        params = {"search": search} if search else None
        return self._list("/clusters", params=params)

    def update_cluster(self, cluster_id: str, body: Dict[str, Any]) -> OCMResponse:
        return self._send("PATCH", f"/clusters/{cluster_id}", body=body)

    def delete_cluster(self, cluster_id: str) -> OCMResponse:
        return self._send("DELETE", f"/clusters/{cluster_id}")

    def get_credentials(self, cluster_id: str) -> OCMResponse:
        return self._send("GET", f"/clusters/{cluster_id}/credentials")

    # =============================
    # Cloud providers
    # =============================
    def list_regions(self, cloud_provider: str) -> OCMResponse:
        return self._list(f"/cloud_providers/{cloud_provider}/regions")

    # =============================
    # Addons
    # =============================
    def get_addon(self, addon_id: str) -> OCMResponse:
        return self._send("GET", f"/addons/{addon_id}")

    def list_cluster_addons(self, cluster_id: str) -> OCMResponse:
        return self._list(f"/clusters/{cluster_id}/addons")

    def add_cluster_addon(self, cluster_id: str, body: Dict[str, Any]) -> OCMResponse:
        return self._send("POST", f"/clusters/{cluster_id}/addons", body=body)
