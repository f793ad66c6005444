"""
HTTP client for the annotation API.

Implements AnnotationBackend over requests so the AnnotationStore can talk
to a running service. Non-2xx responses raise ApiError carrying the status
code and the server's ``detail`` message.
"""

import logging
from typing import Optional

import requests

from .backend import AnnotationBackend
from .config import AnnotationSettings
from .processing_status import ProcessingStatus, poll_processing_status

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when the annotation API answers with an error or is unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AnnotationApiClient(AnnotationBackend):
    """
    Blocking client for /api/v1.

    Usage:
        client = AnnotationApiClient(settings=AnnotationSettings.from_env(), token=jwt)
        rows = client.list_annotations(document_id, page_number=1)
    """

    def __init__(
        self,
        settings: Optional[AnnotationSettings] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings or AnnotationSettings.from_env()
        self.base_url = self.settings.api_url
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        token = token or self.settings.api_token
        if token:
            self.set_token(token)

    def set_token(self, token: str) -> None:
        self.session.headers["Authorization"] = f"Bearer {token}"

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        kwargs.setdefault("timeout", self.settings.request_timeout)
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ApiError(f"Could not reach annotation service: {e}") from e

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            logger.warning(f"{method} {path} -> {resp.status_code}: {detail}")
            raise ApiError(str(detail) or f"HTTP {resp.status_code}", status_code=resp.status_code)

        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # -- annotations --------------------------------------------------

    def list_annotations(self, document_id: str, page_number: Optional[int] = None) -> list[dict]:
        params = {"page_number": page_number} if page_number is not None else None
        return self._request("GET", f"/documents/{document_id}/annotations", params=params) or []

    def create_annotation(self, payload: dict) -> dict:
        return self._request("POST", "/annotations", json=payload)

    def update_annotation(self, annotation_id: str, updates: dict) -> dict:
        return self._request("PATCH", f"/annotations/{annotation_id}", json=updates)

    def delete_annotation(self, annotation_id: str) -> None:
        self._request("DELETE", f"/annotations/{annotation_id}")

    def export_annotations(
        self,
        document_id: str,
        format: str = "json",
        include_comments: bool = False,
        annotation_types: Optional[list[str]] = None,
    ) -> str:
        """Raw export body (JSON or CSV text)."""
        url = f"{self.base_url}/documents/{document_id}/annotations/export"
        params = {"format": format, "include_comments": str(include_comments).lower()}
        if annotation_types:
            params["annotation_types"] = list(annotation_types)
        try:
            resp = self.session.get(url, params=params, timeout=self.settings.request_timeout)
        except requests.RequestException as e:
            raise ApiError(f"Could not reach annotation service: {e}") from e
        if resp.status_code >= 400:
            raise ApiError(resp.text or f"HTTP {resp.status_code}", status_code=resp.status_code)
        return resp.text

    # -- comments -----------------------------------------------------

    def list_comments(self, annotation_id: str) -> list[dict]:
        return self._request("GET", f"/annotations/{annotation_id}/comments") or []

    def create_comment(
        self,
        annotation_id: str,
        content: str,
        parent_comment_id: Optional[str] = None,
    ) -> dict:
        body = {"content": content}
        if parent_comment_id:
            body["parent_comment_id"] = parent_comment_id
        return self._request("POST", f"/annotations/{annotation_id}/comments", json=body)

    def delete_comment(self, comment_id: str) -> None:
        self._request("DELETE", f"/comments/{comment_id}")

    # -- shares -------------------------------------------------------

    def list_shares(self, annotation_id: str) -> list[dict]:
        return self._request("GET", f"/annotations/{annotation_id}/shares") or []

    def create_share(self, annotation_id: str, email: str, permission_level: str) -> dict:
        return self._request(
            "POST", f"/annotations/{annotation_id}/shares",
            json={"email": email, "permission_level": permission_level},
        )

    def delete_share(self, share_id: str) -> None:
        self._request("DELETE", f"/shares/{share_id}")

    # -- usage and status ---------------------------------------------

    def get_document_status(self, document_id: str) -> dict:
        """Status record for poll_processing_status."""
        return self._request("GET", f"/documents/{document_id}/status")

    def update_document_status(
        self,
        document_id: str,
        status: str,
        progress: float = 0.0,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> dict:
        body = {"status": status, "progress": progress, "message": message, "error": error}
        return self._request("PUT", f"/documents/{document_id}/status", json=body)

    async def wait_for_processing(self, document_id: str, **kwargs) -> ProcessingStatus:
        """Poll the status endpoint at the configured interval until processing ends."""
        return await poll_processing_status(
            self.get_document_status, document_id, settings=self.settings, **kwargs
        )

    def check_usage(self, resource_type: str) -> dict:
        return self._request("GET", f"/usage/{resource_type}")

    def record_usage(self, resource_type: str, resource_id: Optional[str] = None, metadata: Optional[dict] = None) -> dict:
        """Record one unit; raises ApiError with status 429 when the limit is reached."""
        body = {"resource_id": resource_id, "metadata": metadata or {}}
        return self._request("POST", f"/usage/{resource_type}/record", json=body)

    def get_usage(self) -> dict:
        return self._request("GET", "/usage")

    def list_billing_alerts(self, unread_only: bool = False) -> list[dict]:
        params = {"unread_only": "true"} if unread_only else None
        return self._request("GET", "/usage/alerts", params=params) or []
