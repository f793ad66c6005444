"""
FastAPI Backend for Legal Annotations

REST endpoints for PDF annotations, their comments and shares, monthly usage
limits and document processing status. Clients authenticate with a session
JWT sent as a bearer token.

Run with: uvicorn execution.legal_annotations.api:app --host 0.0.0.0 --port 8000
"""

import os
import time
import logging
from typing import Optional
from collections import defaultdict

from fastapi import FastAPI, HTTPException, Depends, Header, Query
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .api_models import (
    HealthResponse,
    AnnotationCreate, AnnotationUpdate, AnnotationResponse,
    CommentCreate, CommentResponse,
    ShareCreate, ShareResponse,
    UsageLimitResponse, UsageRecordRequest, BillingAlertResponse,
    ProcessingStatusResponse, ProcessingStatusUpdate,
)
from .auth import verify_session_jwt
from .collaboration import build_comment_threads, can_comment, can_delete, can_edit, can_share, can_view
from .export import ExportOptions, export_annotations
from .models import Annotation, AnnotationComment
from .quotas import RESOURCE_TYPES, QuotaExceededError, QuotaManager

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

app = FastAPI(
    title="Legal Annotations API",
    description="REST API for collaborative PDF annotations",
    version=__version__,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Rate Limiting
# =============================================================================

class RateLimiter:
    """Simple in-memory rate limiter using sliding window."""

    def __init__(self, max_requests: int = 60, window_seconds: int = 60):
        self._max_requests = max_requests
        self._window = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)

    def is_allowed(self, key: str) -> bool:
        """Check if request is allowed for the given key."""
        now = time.time()
        window_start = now - self._window

        # Clean old entries
        self._requests[key] = [t for t in self._requests[key] if t > window_start]

        if len(self._requests[key]) >= self._max_requests:
            return False

        self._requests[key].append(now)
        return True

    def reset(self) -> None:
        self._requests.clear()


_rate_limiter = RateLimiter(
    max_requests=int(os.getenv("RATE_LIMIT_RPM", "60")),
    window_seconds=60,
)


# =============================================================================
# Service Container
# =============================================================================

class ServiceContainer:
    """Lazily creates the repository and the quota manager."""

    def __init__(self):
        self._store = None
        self._quotas = None

    def get_store(self):
        if self._store is None:
            from .repository import AnnotationRepository
            self._store = AnnotationRepository()
            self._store.connect()
            try:
                self._store.initialize_schema()
            except Exception as e:
                logger.warning(f"Schema init failed: {e}")
        return self._store

    def get_quota_manager(self) -> QuotaManager:
        if self._quotas is None:
            self._quotas = QuotaManager(self.get_store())
        return self._quotas


_container = ServiceContainer()


# =============================================================================
# Authentication dependencies
# =============================================================================

async def get_current_user(authorization: Optional[str] = Header(None)) -> dict:
    """Validate the bearer session token and return the user."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Expected a bearer token")

    user = verify_session_jwt(token.strip())
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user


async def check_rate_limit(user: dict = Depends(get_current_user)):
    """FastAPI dependency that enforces rate limiting per user."""
    if not _rate_limiter.is_allowed(user["user_id"]):
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Try again later.")


def _require_permission(annotation_id: str, user_id: str, check, action: str) -> str:
    """Look up the caller's permission, raising 404/403 as appropriate."""
    store = _container.get_store()
    permission = store.get_permission(annotation_id, user_id)
    if permission is None:
        # Hide annotations the caller cannot see
        raise HTTPException(status_code=404, detail="Annotation not found")
    if not check(permission):
        raise HTTPException(status_code=403, detail=f"Not allowed to {action} this annotation")
    return permission


def _annotation_response(row: dict) -> AnnotationResponse:
    return AnnotationResponse(**Annotation.from_dict(row).to_dict())


def _validate_resource_type(resource_type: str) -> None:
    if resource_type not in RESOURCE_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown resource type: {resource_type}")


# =============================================================================
# Endpoints
# =============================================================================

@app.get(f"{API_PREFIX}/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    db_status = "unknown"
    try:
        _container.get_store()
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check: database disconnected: {e}")
        db_status = "disconnected"

    return HealthResponse(
        status="ok",
        version=__version__,
        database=db_status,
    )


# -- annotations --------------------------------------------------------------

@app.get(f"{API_PREFIX}/documents/{{document_id}}/annotations", response_model=list[AnnotationResponse])
async def list_annotations(
    document_id: str,
    page_number: Optional[int] = Query(None, ge=1),
    user: dict = Depends(get_current_user),
):
    """Annotations on a document visible to the caller, oldest first."""
    store = _container.get_store()
    try:
        rows = store.list_annotations(document_id, user["user_id"], page_number)
        return [_annotation_response(r) for r in rows]
    except Exception as e:
        logger.error(f"Failed to list annotations for {document_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get(f"{API_PREFIX}/documents/{{document_id}}/annotations/export")
async def export_document_annotations(
    document_id: str,
    format: str = Query("json"),
    include_comments: bool = Query(False),
    page_from: Optional[int] = Query(None, ge=1),
    page_to: Optional[int] = Query(None, ge=1),
    annotation_types: Optional[list[str]] = Query(None),
    user: dict = Depends(get_current_user),
):
    """Download the caller's visible annotations as JSON or CSV."""
    page_range = None
    if page_from is not None or page_to is not None:
        page_range = (page_from or 1, page_to or page_from or 1)
    try:
        options = ExportOptions(
            format=format,
            include_comments=include_comments,
            page_range=page_range,
            annotation_types=annotation_types,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    store = _container.get_store()
    try:
        annotations = [
            Annotation.from_dict(r) for r in store.list_annotations(document_id, user["user_id"])
        ]
        comments = {}
        if options.include_comments or options.format == "csv":
            for annotation in annotations:
                comments[annotation.id] = [
                    AnnotationComment.from_dict(c) for c in store.list_comments(annotation.id)
                ]
        body = export_annotations(annotations, options, comments, document_id=document_id)
    except Exception as e:
        logger.error(f"Export failed for {document_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    media_type = "text/csv" if options.format == "csv" else "application/json"
    filename = f"annotations-{document_id}.{options.format}"
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post(
    f"{API_PREFIX}/annotations",
    response_model=AnnotationResponse,
    status_code=201,
    dependencies=[Depends(check_rate_limit)],
)
async def create_annotation(
    request: AnnotationCreate,
    user: dict = Depends(get_current_user),
):
    """Create an annotation on a document the caller owns."""
    store = _container.get_store()
    try:
        owner = store.get_document_owner(request.document_id)
        if owner is None:
            raise HTTPException(status_code=404, detail="Document not found")
        if owner != user["user_id"]:
            raise HTTPException(status_code=403, detail="Not allowed to annotate this document")

        row = store.create_annotation(user["user_id"], request.model_dump())
        logger.info(f"Annotation {row['id']} created on {request.document_id} page {request.page_number}")
        return _annotation_response(row)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to create annotation: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.patch(
    f"{API_PREFIX}/annotations/{{annotation_id}}",
    response_model=AnnotationResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def update_annotation(
    annotation_id: str,
    request: AnnotationUpdate,
    user: dict = Depends(get_current_user),
):
    """Partially update an annotation (owner or edit collaborator)."""
    _require_permission(annotation_id, user["user_id"], can_edit, "edit")

    store = _container.get_store()
    try:
        row = store.update_annotation(annotation_id, request.model_dump(exclude_unset=True))
        if row is None:
            raise HTTPException(status_code=404, detail="Annotation not found")
        return _annotation_response(row)
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update annotation {annotation_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.delete(f"{API_PREFIX}/annotations/{{annotation_id}}", dependencies=[Depends(check_rate_limit)])
async def delete_annotation(
    annotation_id: str,
    user: dict = Depends(get_current_user),
):
    """Delete an annotation with its comments and shares."""
    _require_permission(annotation_id, user["user_id"], can_delete, "delete")

    store = _container.get_store()
    try:
        if not store.delete_annotation(annotation_id):
            raise HTTPException(status_code=404, detail="Annotation not found")
        return {"status": "deleted", "annotation_id": annotation_id}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to delete annotation {annotation_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# -- comments -----------------------------------------------------------------

@app.get(f"{API_PREFIX}/annotations/{{annotation_id}}/comments", response_model=list[CommentResponse])
async def list_comments(
    annotation_id: str,
    threaded: bool = Query(False),
    user: dict = Depends(get_current_user),
):
    """Comments on an annotation, flat (default) or as one-level threads."""
    _require_permission(annotation_id, user["user_id"], can_view, "view")

    rows = _container.get_store().list_comments(annotation_id)
    comments = [AnnotationComment.from_dict(r) for r in rows]
    if threaded:
        return [CommentResponse(**c.to_dict()) for c in build_comment_threads(comments)]
    return [CommentResponse(**c.to_dict(include_replies=False)) for c in comments]


@app.post(
    f"{API_PREFIX}/annotations/{{annotation_id}}/comments",
    response_model=CommentResponse,
    status_code=201,
    dependencies=[Depends(check_rate_limit)],
)
async def create_comment(
    annotation_id: str,
    request: CommentCreate,
    user: dict = Depends(get_current_user),
):
    """Add a comment or reply."""
    _require_permission(annotation_id, user["user_id"], can_comment, "comment on")

    store = _container.get_store()
    if request.parent_comment_id:
        parent = store.get_comment(request.parent_comment_id)
        if parent is None or parent["annotation_id"] != annotation_id:
            raise HTTPException(status_code=400, detail="Parent comment does not belong to this annotation")

    try:
        row = store.create_comment(
            annotation_id, user["user_id"], request.content.strip(), request.parent_comment_id
        )
        return CommentResponse(**AnnotationComment.from_dict(row).to_dict(include_replies=False))
    except Exception as e:
        logger.error(f"Failed to add comment on {annotation_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.delete(f"{API_PREFIX}/comments/{{comment_id}}", dependencies=[Depends(check_rate_limit)])
async def delete_comment(
    comment_id: str,
    user: dict = Depends(get_current_user),
):
    """Delete a comment (its author or the annotation owner)."""
    store = _container.get_store()
    comment = store.get_comment(comment_id)
    if comment is None:
        raise HTTPException(status_code=404, detail="Comment not found")

    if comment["user_id"] != user["user_id"]:
        permission = store.get_permission(comment["annotation_id"], user["user_id"])
        if permission != "owner":
            raise HTTPException(status_code=403, detail="Not allowed to delete this comment")

    store.delete_comment(comment_id)
    return {"status": "deleted", "comment_id": comment_id}


# -- shares -------------------------------------------------------------------

@app.get(f"{API_PREFIX}/annotations/{{annotation_id}}/shares", response_model=list[ShareResponse])
async def list_shares(
    annotation_id: str,
    user: dict = Depends(get_current_user),
):
    """Collaborators on an annotation."""
    _require_permission(annotation_id, user["user_id"], can_view, "view")
    return [ShareResponse(**r) for r in _container.get_store().list_shares(annotation_id)]


@app.post(
    f"{API_PREFIX}/annotations/{{annotation_id}}/shares",
    response_model=ShareResponse,
    status_code=201,
    dependencies=[Depends(check_rate_limit)],
)
async def create_share(
    annotation_id: str,
    request: ShareCreate,
    user: dict = Depends(get_current_user),
):
    """Invite a collaborator by e-mail (owner only)."""
    _require_permission(annotation_id, user["user_id"], can_share, "share")

    store = _container.get_store()
    target = store.find_user_by_email(request.email)
    if target is None:
        raise HTTPException(status_code=404, detail="No user with that e-mail address")
    if target["id"] == user["user_id"]:
        raise HTTPException(status_code=400, detail="Cannot share an annotation with yourself")

    try:
        row = store.create_share(annotation_id, target["id"], request.permission_level, user["user_id"])
        return ShareResponse(**row)
    except Exception as e:
        logger.error(f"Failed to share annotation {annotation_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.delete(f"{API_PREFIX}/shares/{{share_id}}", dependencies=[Depends(check_rate_limit)])
async def delete_share(
    share_id: str,
    user: dict = Depends(get_current_user),
):
    """Remove a collaborator (annotation owner, or the collaborator leaving)."""
    store = _container.get_store()
    share = store.get_share(share_id)
    if share is None:
        raise HTTPException(status_code=404, detail="Share not found")

    if share["shared_with_user_id"] != user["user_id"]:
        permission = store.get_permission(share["annotation_id"], user["user_id"])
        if not can_share(permission):
            raise HTTPException(status_code=403, detail="Not allowed to remove this collaborator")

    store.delete_share(share_id)
    return {"status": "deleted", "share_id": share_id}


# -- processing status --------------------------------------------------------

@app.get(f"{API_PREFIX}/documents/{{document_id}}/status", response_model=ProcessingStatusResponse)
async def get_document_status(
    document_id: str,
    user: dict = Depends(get_current_user),
):
    """Processing status of one of the caller's documents."""
    row = _container.get_store().get_document_status(document_id, user["user_id"])
    if row is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return ProcessingStatusResponse(
        document_id=str(row["document_id"]),
        status=row["status"],
        progress=100.0 if row["status"] == "completed" else float(row.get("progress") or 0),
        message=row.get("message"),
        error=row.get("error"),
    )


@app.put(
    f"{API_PREFIX}/documents/{{document_id}}/status",
    response_model=ProcessingStatusResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def update_document_status(
    document_id: str,
    request: ProcessingStatusUpdate,
    user: dict = Depends(get_current_user),
):
    """Report processing progress on one of the caller's documents."""
    store = _container.get_store()
    if store.get_document_owner(document_id) != user["user_id"]:
        raise HTTPException(status_code=404, detail="Document not found")
    try:
        store.update_document_status(
            document_id, request.status, request.progress, request.message, request.error
        )
    except Exception as e:
        logger.error(f"Failed to update status of {document_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return await get_document_status(document_id, user)


# -- usage --------------------------------------------------------------------

@app.get(f"{API_PREFIX}/usage")
async def get_usage(user: dict = Depends(get_current_user)):
    """Usage vs limits for every resource type this month."""
    return _container.get_quota_manager().get_usage_status(user["user_id"])


# Registered before /usage/{resource_type} so "alerts" is not taken as a resource
@app.get(f"{API_PREFIX}/usage/alerts", response_model=list[BillingAlertResponse])
async def list_billing_alerts(
    unread_only: bool = Query(False),
    user: dict = Depends(get_current_user),
):
    """Usage threshold alerts for the caller, newest first."""
    try:
        rows = _container.get_store().list_billing_alerts(user["user_id"], unread_only=unread_only)
    except Exception as e:
        logger.error(f"Failed to list billing alerts for {user['user_id']}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return [BillingAlertResponse(**r) for r in rows]


@app.get(f"{API_PREFIX}/usage/{{resource_type}}", response_model=UsageLimitResponse)
async def check_usage(
    resource_type: str,
    user: dict = Depends(get_current_user),
):
    """Whether one more unit of a resource may be used this month."""
    _validate_resource_type(resource_type)
    status = _container.get_quota_manager().check_usage_limit(user["user_id"], resource_type)
    return UsageLimitResponse(**status.to_dict())


@app.post(
    f"{API_PREFIX}/usage/{{resource_type}}/record",
    response_model=UsageLimitResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def record_usage(
    resource_type: str,
    request: UsageRecordRequest,
    user: dict = Depends(get_current_user),
):
    """Check the limit and record one unit of usage."""
    _validate_resource_type(resource_type)
    try:
        status = _container.get_quota_manager().check_and_record(
            user["user_id"], resource_type, request.resource_id, request.metadata
        )
    except QuotaExceededError as e:
        raise HTTPException(status_code=429, detail=str(e))
    return UsageLimitResponse(**status.to_dict())
