"""
Legal Annotations

PDF annotation authoring and coordination for a legal document workspace:
page coordinate transforms, the tool/drawing state machine, an optimistic
annotation store, sharing and comment threads, export, monthly usage limits
and document processing status polling. The FastAPI service in api.py and
its PostgreSQL repository are the backend the store talks to.
"""

__version__ = "0.1.0"

from .models import (
    Annotation,
    AnnotationComment,
    AnnotationDraft,
    AnnotationPosition,
    AnnotationShare,
    ANNOTATION_COLORS,
    ANNOTATION_TYPES,
)
from .geometry import PageTransform, Point, point_in_annotation
from .tool_state import AnnotationStateController, AnnotationTool, Drawing, Idle, ToolArmed
from .telemetry import LoggingTelemetry, Telemetry
from .cancellation import CancellationToken, RequestCancelled
from .store import AnnotationStore
from .quotas import QuotaExceededError, QuotaManager

__all__ = [
    "__version__",
    "Annotation",
    "AnnotationComment",
    "AnnotationDraft",
    "AnnotationPosition",
    "AnnotationShare",
    "ANNOTATION_COLORS",
    "ANNOTATION_TYPES",
    "PageTransform",
    "Point",
    "point_in_annotation",
    "AnnotationStateController",
    "AnnotationTool",
    "Drawing",
    "Idle",
    "ToolArmed",
    "LoggingTelemetry",
    "Telemetry",
    "CancellationToken",
    "RequestCancelled",
    "AnnotationStore",
    "QuotaExceededError",
    "QuotaManager",
]
