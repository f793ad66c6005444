"""
Pydantic models for the annotation FastAPI backend.
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator


ANNOTATION_TYPE_PATTERN = r"^(highlight|note|drawing|text|stamp)$"
COLOR_PATTERN = r"^(yellow|red|blue|green|purple|orange|pink|gray)$"
PERMISSION_PATTERN = r"^(view|comment|edit)$"


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    database: str


# =========================================================================
# Annotation models
# =========================================================================

class AnnotationCreate(BaseModel):
    """Request body for creating an annotation."""
    document_id: str
    page_number: int = Field(..., ge=1)
    annotation_type: str = Field(..., pattern=ANNOTATION_TYPE_PATTERN)
    color: str = Field(default="yellow", pattern=COLOR_PATTERN)
    x: float = Field(..., ge=0)
    y: float = Field(..., ge=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    content: Optional[str] = Field(None, max_length=10000)
    selected_text: Optional[str] = Field(None, max_length=10000)
    properties: dict = {}


class AnnotationUpdate(BaseModel):
    """Request body for a partial annotation update. Unset fields are left alone."""
    color: Optional[str] = Field(None, pattern=COLOR_PATTERN)
    content: Optional[str] = Field(None, max_length=10000)
    selected_text: Optional[str] = Field(None, max_length=10000)
    properties: Optional[dict] = None
    x: Optional[float] = Field(None, ge=0)
    y: Optional[float] = Field(None, ge=0)
    width: Optional[float] = Field(None, gt=0)
    height: Optional[float] = Field(None, gt=0)

    @field_validator("color", "x", "y", "width", "height")
    @classmethod
    def reject_null(cls, value, info):
        # These columns are NOT NULL; omit the field to leave it unchanged
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class AnnotationResponse(BaseModel):
    """A stored annotation."""
    id: str
    document_id: str
    user_id: str
    page_number: int
    annotation_type: str
    color: str
    x: float
    y: float
    width: float
    height: float
    content: Optional[str] = None
    selected_text: Optional[str] = None
    properties: dict = {}
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# =========================================================================
# Comment and share models
# =========================================================================

class CommentCreate(BaseModel):
    """Request body for adding a comment or reply."""
    content: str = Field(..., min_length=1, max_length=5000)
    parent_comment_id: Optional[str] = None


class CommentResponse(BaseModel):
    """A comment with its replies (one level)."""
    id: str
    annotation_id: str
    user_id: str
    content: str
    parent_comment_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    replies: list["CommentResponse"] = []


class ShareCreate(BaseModel):
    """Request body for sharing an annotation with another user."""
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    permission_level: str = Field(default="view", pattern=PERMISSION_PATTERN)


class ShareResponse(BaseModel):
    """An annotation share."""
    id: str
    annotation_id: str
    shared_with_user_id: str
    permission_level: str
    shared_by_user_id: str
    created_at: Optional[str] = None


# =========================================================================
# Usage and status models
# =========================================================================

class UsageLimitResponse(BaseModel):
    """Result of a usage-limit check."""
    allowed: bool
    limit: int
    current: int
    remaining: int
    tier: str
    percentage: float


class UsageRecordRequest(BaseModel):
    """Request body for recording one unit of usage."""
    resource_id: Optional[str] = None
    metadata: dict = {}


class ProcessingStatusResponse(BaseModel):
    """Processing status of an uploaded document."""
    document_id: str
    status: str
    progress: float = 0.0
    message: Optional[str] = None
    error: Optional[str] = None


class ProcessingStatusUpdate(BaseModel):
    """Request body for reporting processing progress on a document."""
    status: str = Field(..., pattern=r"^(pending|processing|completed|failed)$")
    progress: float = Field(default=0.0, ge=0, le=100)
    message: Optional[str] = Field(None, max_length=1000)
    error: Optional[str] = Field(None, max_length=5000)


class BillingAlertResponse(BaseModel):
    """A usage threshold alert."""
    id: str
    alert_type: str
    resource_type: str
    threshold_percentage: int
    is_read: bool = False
    created_at: Optional[str] = None
