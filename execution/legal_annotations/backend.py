"""
Backend interface consumed by the annotation store.

Methods are synchronous and blocking; the store runs them off the event
loop. Implementations raise on failure (any exception counts as a network
failure to the store). AnnotationApiClient in client.py is the HTTP
implementation.
"""

from abc import ABC, abstractmethod
from typing import Optional


class AnnotationBackend(ABC):
    """Query/mutation surface for annotations, comments and shares."""

    # -- annotations --------------------------------------------------

    @abstractmethod
    def list_annotations(self, document_id: str, page_number: Optional[int] = None) -> list[dict]:
        """Annotations visible to the caller, oldest first."""

    @abstractmethod
    def create_annotation(self, payload: dict) -> dict:
        """Persist a new annotation and return the stored record."""

    @abstractmethod
    def update_annotation(self, annotation_id: str, updates: dict) -> dict:
        """Apply a partial update and return the stored record."""

    @abstractmethod
    def delete_annotation(self, annotation_id: str) -> None:
        pass

    # -- comments -----------------------------------------------------

    @abstractmethod
    def list_comments(self, annotation_id: str) -> list[dict]:
        pass

    @abstractmethod
    def create_comment(
        self,
        annotation_id: str,
        content: str,
        parent_comment_id: Optional[str] = None,
    ) -> dict:
        pass

    @abstractmethod
    def delete_comment(self, comment_id: str) -> None:
        pass

    # -- shares -------------------------------------------------------

    @abstractmethod
    def list_shares(self, annotation_id: str) -> list[dict]:
        pass

    @abstractmethod
    def create_share(self, annotation_id: str, email: str, permission_level: str) -> dict:
        pass

    @abstractmethod
    def delete_share(self, share_id: str) -> None:
        pass
