"""
Annotation Store

Client-side mirror of the annotations of one document (optionally one page).
Mutations are applied to the local list first and then sent to the backend;
when the backend call fails, the local change is rolled back and an error
notification goes out through the injected Telemetry.

Backend calls are blocking and run in a worker thread via
``asyncio.to_thread``. Every request gets a cancellation token derived from
the store's own token, so ``close()`` cancels everything in flight: results
that arrive afterwards are discarded and their optimistic changes undone.
"""

import asyncio
import itertools
import logging
from typing import Callable, Optional

from .backend import AnnotationBackend
from .cancellation import CancellationToken, RequestCancelled
from .collaboration import build_comment_threads
from .geometry import point_in_annotation
from .models import (
    Annotation,
    AnnotationComment,
    AnnotationDraft,
    AnnotationShare,
    PENDING_ID_PREFIX,
    POSITION_FIELDS,
    validate_permission_level,
)
from .telemetry import LoggingTelemetry, Telemetry

logger = logging.getLogger(__name__)


def _field_value(annotation: Annotation, name: str):
    if name in POSITION_FIELDS:
        return getattr(annotation.position, name)
    return getattr(annotation, name)


class AnnotationStore:
    """
    Optimistic annotation list for a document.

    Usage:
        store = AnnotationStore(client, document_id, user_id)
        await store.load()
        created = await store.create(draft, page_number=1)
        await store.close()
    """

    def __init__(
        self,
        backend: AnnotationBackend,
        document_id: str,
        user_id: Optional[str] = None,
        telemetry: Optional[Telemetry] = None,
        page_number: Optional[int] = None,
    ):
        if not document_id:
            raise ValueError("document_id is required")
        if page_number is not None and page_number < 1:
            raise ValueError(f"Page numbers start at 1, got {page_number}")

        self.backend = backend
        self.document_id = document_id
        self.user_id = user_id
        self.page_number = page_number
        self.telemetry = telemetry or LoggingTelemetry()

        self._annotations: list[Annotation] = []
        self._token = CancellationToken()
        self._in_flight: set[CancellationToken] = set()
        # (annotation id, field) -> sequence number of the last update that wrote it
        self._field_writers: dict[tuple[str, str], int] = {}
        self._update_seq = itertools.count(1)
        self.loading = False
        self.last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def annotations(self) -> list[Annotation]:
        return list(self._annotations)

    @property
    def closed(self) -> bool:
        return self._token.cancelled

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def __len__(self) -> int:
        return len(self._annotations)

    def get(self, annotation_id: str) -> Optional[Annotation]:
        for annotation in self._annotations:
            if annotation.id == annotation_id:
                return annotation
        return None

    def for_page(self, page_number: int) -> list[Annotation]:
        return [a for a in self._annotations if a.page_number == page_number]

    def annotation_at(self, page_number: int, x: float, y: float) -> Optional[Annotation]:
        """Topmost (most recently added) annotation at a page point."""
        for annotation in reversed(self._annotations):
            if annotation.page_number == page_number and point_in_annotation(annotation, x, y):
                return annotation
        return None

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    async def _call(self, token: Optional[CancellationToken], fn: Callable, *args):
        """
        Run a blocking backend call in a worker thread.

        ``token`` can only stop a request that has not started. Once the
        backend call has run, its result is returned unless the store itself
        was closed in the meantime.

        Raises:
            RequestCancelled: If ``token`` was cancelled before the call, or
                the store was closed before the result came back
        """
        request = self._token.child()
        self._in_flight.add(request)
        try:
            request.raise_if_cancelled()
            if token is not None:
                token.raise_if_cancelled()
            result = await asyncio.to_thread(fn, *args)
            request.raise_if_cancelled()
            return result
        finally:
            self._in_flight.discard(request)

    def _fail(self, message: str, error: BaseException, context: dict) -> None:
        self.last_error = f"{message}: {error}"
        logger.warning(f"{message} ({context}): {error}")
        self.telemetry.notify_error(message, error)
        self.telemetry.capture_exception(error, context)

    def _refuse_if_closed(self, operation: str) -> bool:
        if self.closed:
            logger.warning(f"Ignoring {operation} on closed store for document {self.document_id}")
            return True
        return False

    def _index_of(self, annotation_id: str) -> int:
        for i, annotation in enumerate(self._annotations):
            if annotation.id == annotation_id:
                return i
        return -1

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self, token: Optional[CancellationToken] = None) -> list[Annotation]:
        """Fetch the annotation list. On failure the previous list is kept."""
        if self._refuse_if_closed("load"):
            return self.annotations

        self.loading = True
        try:
            rows = await self._call(
                token, self.backend.list_annotations, self.document_id, self.page_number
            )
            self._annotations = [Annotation.from_dict(row) for row in rows]
            self.last_error = None
            logger.info(f"Loaded {len(self._annotations)} annotations for document {self.document_id}")
        except RequestCancelled:
            logger.info(f"Annotation load for document {self.document_id} cancelled")
        except Exception as e:
            self._fail("Failed to load annotations", e, {"document_id": self.document_id})
        finally:
            self.loading = False
        return self.annotations

    async def close(self) -> None:
        """Cancel in-flight requests. Later operations become no-ops."""
        if self.closed:
            return
        pending = len(self._in_flight)
        self._token.cancel("Annotation store closed")
        logger.info(f"Closed annotation store for document {self.document_id} ({pending} requests cancelled)")

    async def __aenter__(self) -> "AnnotationStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        draft: AnnotationDraft,
        page_number: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> Optional[Annotation]:
        """
        Add an annotation optimistically and persist it.

        Args:
            draft: Shape produced by the authoring layer
            page_number: Target page; defaults to the store's page

        Returns:
            The stored annotation, or None if the create was refused, failed
            or was cancelled
        """
        if self._refuse_if_closed("create"):
            return None
        if not self.user_id:
            self.telemetry.notify_error("You must be logged in to create annotations")
            return None

        page = page_number if page_number is not None else self.page_number
        if page is None:
            raise ValueError("page_number is required when the store is not bound to a page")

        placeholder = Annotation.pending_from_draft(draft, self.document_id, self.user_id, page)
        self._annotations.append(placeholder)

        try:
            row = await self._call(
                token, self.backend.create_annotation,
                draft.to_create_payload(self.document_id, page),
            )
        except RequestCancelled:
            self._remove(placeholder.id)
            logger.info(f"Create cancelled, dropped {placeholder.id}")
            return None
        except Exception as e:
            self._remove(placeholder.id)
            self._fail("Failed to create annotation", e, {"document_id": self.document_id, "page_number": page})
            return None

        created = Annotation.from_dict(row)
        index = self._index_of(placeholder.id)
        if index >= 0:
            self._annotations[index] = created
        else:
            self._annotations.append(created)
        self.telemetry.notify_success("Annotation created successfully")
        return created

    async def update(
        self,
        annotation_id: str,
        updates: dict,
        token: Optional[CancellationToken] = None,
    ) -> Optional[Annotation]:
        """
        Apply a partial update optimistically and persist it.

        Raises:
            ValueError: On fields that cannot be updated or invalid values

        Returns:
            The stored annotation, or None on failure
        """
        if self._refuse_if_closed("update"):
            return None

        index = self._index_of(annotation_id)
        if index < 0:
            self.telemetry.notify_error(f"Annotation {annotation_id} not found")
            return None
        previous = self._annotations[index]
        if previous.pending:
            self.telemetry.notify_error("Annotation is still being saved")
            return None

        self._annotations[index] = previous.apply_updates(updates)
        seq = next(self._update_seq)
        for name in updates:
            self._field_writers[(annotation_id, name)] = seq

        try:
            row = await self._call(token, self.backend.update_annotation, annotation_id, dict(updates))
        except RequestCancelled:
            self._rollback_update(previous, updates, seq)
            logger.info(f"Update of {annotation_id} cancelled, restored previous state")
            return None
        except Exception as e:
            self._rollback_update(previous, updates, seq)
            self._fail("Failed to update annotation", e, {"annotation_id": annotation_id})
            return None
        finally:
            self._release_fields(annotation_id, updates, seq)

        updated = Annotation.from_dict(row)
        self._restore(updated)
        self.telemetry.notify_success("Annotation updated successfully")
        return updated

    def _rollback_update(self, previous: Annotation, updates: dict, seq: int) -> None:
        """
        Undo the fields written by update ``seq``.

        Fields that a later update wrote since then are left alone, so a
        failed request never clobbers a newer successful one.
        """
        current = self.get(previous.id)
        if current is None:
            return
        reverted = {
            name: _field_value(previous, name)
            for name in updates
            if self._field_writers.get((previous.id, name)) == seq
        }
        if reverted:
            self._restore(current.apply_updates(reverted))

    def _release_fields(self, annotation_id: str, updates: dict, seq: int) -> None:
        for name in updates:
            key = (annotation_id, name)
            if self._field_writers.get(key) == seq:
                del self._field_writers[key]

    async def delete(self, annotation_id: str, token: Optional[CancellationToken] = None) -> bool:
        """Remove an annotation optimistically and persist the removal."""
        if self._refuse_if_closed("delete"):
            return False

        index = self._index_of(annotation_id)
        if index < 0:
            self.telemetry.notify_error(f"Annotation {annotation_id} not found")
            return False
        if annotation_id.startswith(PENDING_ID_PREFIX):
            self.telemetry.notify_error("Annotation is still being saved")
            return False

        removed = self._annotations.pop(index)

        try:
            await self._call(token, self.backend.delete_annotation, annotation_id)
        except RequestCancelled:
            self._reinsert(index, removed)
            logger.info(f"Delete of {annotation_id} cancelled, restored annotation")
            return False
        except Exception as e:
            self._reinsert(index, removed)
            self._fail("Failed to delete annotation", e, {"annotation_id": annotation_id})
            return False

        self.telemetry.notify_success("Annotation deleted successfully")
        return True

    def _remove(self, annotation_id: str) -> None:
        index = self._index_of(annotation_id)
        if index >= 0:
            self._annotations.pop(index)

    def _restore(self, annotation: Annotation) -> None:
        # Only if it is still in the list; a concurrent delete wins
        index = self._index_of(annotation.id)
        if index >= 0:
            self._annotations[index] = annotation

    def _reinsert(self, index: int, annotation: Annotation) -> None:
        if self._index_of(annotation.id) < 0:
            self._annotations.insert(min(index, len(self._annotations)), annotation)

    # ------------------------------------------------------------------
    # Comments and shares
    # ------------------------------------------------------------------

    async def list_comments(
        self,
        annotation_id: str,
        token: Optional[CancellationToken] = None,
    ) -> list[AnnotationComment]:
        """Threaded comments of an annotation ([] on failure)."""
        if self._refuse_if_closed("list_comments"):
            return []
        try:
            rows = await self._call(token, self.backend.list_comments, annotation_id)
        except RequestCancelled:
            return []
        except Exception as e:
            self._fail("Failed to load comments", e, {"annotation_id": annotation_id})
            return []
        return build_comment_threads(AnnotationComment.from_dict(r) for r in rows)

    async def add_comment(
        self,
        annotation_id: str,
        content: str,
        parent_comment_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> Optional[AnnotationComment]:
        if self._refuse_if_closed("add_comment"):
            return None
        if not self.user_id:
            self.telemetry.notify_error("You must be logged in to reply")
            return None
        if not content or not content.strip():
            raise ValueError("Comment content cannot be empty")

        try:
            row = await self._call(
                token, self.backend.create_comment, annotation_id, content.strip(), parent_comment_id
            )
        except RequestCancelled:
            return None
        except Exception as e:
            self._fail("Failed to add reply", e, {"annotation_id": annotation_id})
            return None

        self.telemetry.notify_success("Reply added successfully")
        return AnnotationComment.from_dict(row)

    async def delete_comment(self, comment_id: str, token: Optional[CancellationToken] = None) -> bool:
        if self._refuse_if_closed("delete_comment"):
            return False
        try:
            await self._call(token, self.backend.delete_comment, comment_id)
        except RequestCancelled:
            return False
        except Exception as e:
            self._fail("Failed to delete comment", e, {"comment_id": comment_id})
            return False
        return True

    async def list_shares(
        self,
        annotation_id: str,
        token: Optional[CancellationToken] = None,
    ) -> list[AnnotationShare]:
        if self._refuse_if_closed("list_shares"):
            return []
        try:
            rows = await self._call(token, self.backend.list_shares, annotation_id)
        except RequestCancelled:
            return []
        except Exception as e:
            self._fail("Failed to load collaborators", e, {"annotation_id": annotation_id})
            return []
        return [AnnotationShare.from_dict(r) for r in rows]

    async def share(
        self,
        annotation_id: str,
        email: str,
        permission_level: str = "view",
        token: Optional[CancellationToken] = None,
    ) -> Optional[AnnotationShare]:
        """Invite a collaborator by e-mail address."""
        validate_permission_level(permission_level)
        if self._refuse_if_closed("share"):
            return None
        try:
            row = await self._call(token, self.backend.create_share, annotation_id, email, permission_level)
        except RequestCancelled:
            return None
        except Exception as e:
            self._fail("Failed to invite collaborator", e, {"annotation_id": annotation_id})
            return None

        self.telemetry.notify_success("Collaborator invited successfully")
        return AnnotationShare.from_dict(row)

    async def unshare(self, share_id: str, token: Optional[CancellationToken] = None) -> bool:
        if self._refuse_if_closed("unshare"):
            return False
        try:
            await self._call(token, self.backend.delete_share, share_id)
        except RequestCancelled:
            return False
        except Exception as e:
            self._fail("Failed to remove collaborator", e, {"share_id": share_id})
            return False

        self.telemetry.notify_success("Collaborator removed successfully")
        return True
