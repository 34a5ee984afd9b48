# =============================================================================
# edge_core/offline/remote_store.py
# Remote Store Collaborator (HTTP)
# =============================================================================
"""
RemoteStore - the only way the engine talks to the backend.

The engine does not know the backend schema: it hands over an HttpRequest
and gets an HttpResponse back. Transport failures raise NetworkError; HTTP
error statuses are returned as responses so callers can inspect ``ok``.
"""

from __future__ import annotations
from typing import Dict, Optional
from urllib.parse import urljoin
import logging

import requests

from edge_core.errors import NetworkError
from edge_core.offline.models import HttpRequest, HttpResponse

logger = logging.getLogger(__name__)


class RemoteStore:
    """
    HTTP-shaped remote store backed by a requests Session.

    Usage:
        remote = RemoteStore("https://api.example.com", tenant_id="t1")
        response = remote.fetch(HttpRequest("/api/menu"))
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        tenant_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

        if headers:
            self.session.headers.update(headers)
        if tenant_id:
            self.session.headers["X-Tenant-ID"] = tenant_id

    def resolve(self, url: str) -> str:
        """Absolute URL for a request; relative paths hang off ``base_url``."""
        if url.startswith(("http://", "https://")) or not self.base_url:
            return url
        return urljoin(self.base_url + "/", url.lstrip("/"))

    def fetch(self, request: HttpRequest) -> HttpResponse:
        """
        Send a request to the remote store.

        Raises:
            NetworkError: the request never produced an HTTP response
        """
        url = self.resolve(request.url)
        try:
            response = self.session.request(
                method=request.method,
                url=url,
                headers=request.headers or None,
                data=request.body,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(
                f"Request to remote store failed: {e}",
                url=url,
                method=request.method,
            ) from e

        logger.debug(f"{request.method} {url} -> {response.status_code}")
        return HttpResponse(
            status=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    def close(self) -> None:
        self.session.close()
