"""
Annotation Data Model

Dataclasses for PDF annotations, their threaded comments and shares.
Positions are always stored in the unscaled, unrotated page frame; zoom and
rotation are applied by the view transform (see geometry.py).
"""

import uuid
from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, field, replace
from typing import Optional


ANNOTATION_TYPES = ("highlight", "note", "drawing", "text", "stamp")
VALID_ANNOTATION_TYPES = frozenset(ANNOTATION_TYPES)

# Types authored by dragging a rectangle (drawing uses a freehand path)
RECTANGLE_TYPES = frozenset({"highlight", "note", "text", "stamp"})

# Fill is drawn at 30% alpha, border is the solid variant
ANNOTATION_COLORS = {
    "yellow": {"fill": "rgba(255, 255, 0, 0.3)", "border": "#FFD700"},
    "red": {"fill": "rgba(255, 0, 0, 0.3)", "border": "#FF0000"},
    "blue": {"fill": "rgba(0, 0, 255, 0.3)", "border": "#0000FF"},
    "green": {"fill": "rgba(0, 255, 0, 0.3)", "border": "#00FF00"},
    "purple": {"fill": "rgba(128, 0, 128, 0.3)", "border": "#800080"},
    "orange": {"fill": "rgba(255, 165, 0, 0.3)", "border": "#FFA500"},
    "pink": {"fill": "rgba(255, 192, 203, 0.3)", "border": "#FFC0CB"},
    "gray": {"fill": "rgba(128, 128, 128, 0.3)", "border": "#808080"},
}
VALID_COLORS = frozenset(ANNOTATION_COLORS)
DEFAULT_COLOR = "yellow"

STAMP_TYPES = frozenset({"approved", "rejected", "reviewed", "confidential", "draft"})

PERMISSION_LEVELS = ("view", "comment", "edit")

# Fields a client may change after creation
UPDATABLE_FIELDS = frozenset({
    "color", "content", "selected_text", "properties",
    "x", "y", "width", "height",
})
POSITION_FIELDS = ("x", "y", "width", "height")

PENDING_ID_PREFIX = "pending-"


def _to_float(value) -> float:
    # NUMERIC columns come back from psycopg2 as Decimal
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Expected a number, got {value!r}")
    return float(value)


def _to_str(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def validate_annotation_type(annotation_type: str) -> str:
    if annotation_type not in VALID_ANNOTATION_TYPES:
        raise ValueError(f"Unknown annotation type: {annotation_type!r}")
    return annotation_type


def validate_color(color: str) -> str:
    if color not in VALID_COLORS:
        raise ValueError(f"Unknown annotation color: {color!r}")
    return color


def validate_permission_level(level: str) -> str:
    if level not in PERMISSION_LEVELS:
        raise ValueError(f"Unknown permission level: {level!r}")
    return level


@dataclass
class AnnotationPosition:
    """Rectangle in page-relative units."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        for name in POSITION_FIELDS:
            value = _to_float(getattr(self, name))
            if value < 0:
                raise ValueError(f"Annotation {name} must be non-negative, got {value}")
            setattr(self, name, value)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def contains(self, x: float, y: float, tolerance: float = 0.0) -> bool:
        return (
            self.x - tolerance <= x <= self.right + tolerance
            and self.y - tolerance <= y <= self.bottom + tolerance
        )

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class AnnotationDraft:
    """A shape produced by the authoring layer, not yet persisted."""
    annotation_type: str
    color: str
    position: AnnotationPosition
    content: Optional[str] = None
    selected_text: Optional[str] = None
    properties: dict = field(default_factory=dict)

    def __post_init__(self):
        validate_annotation_type(self.annotation_type)
        validate_color(self.color)

    def to_create_payload(self, document_id: str, page_number: int) -> dict:
        """Build the request body for the create endpoint."""
        payload = {
            "document_id": document_id,
            "page_number": page_number,
            "annotation_type": self.annotation_type,
            "color": self.color,
            **self.position.to_dict(),
            "properties": dict(self.properties),
        }
        if self.content is not None:
            payload["content"] = self.content
        if self.selected_text is not None:
            payload["selected_text"] = self.selected_text
        return payload


@dataclass
class Annotation:
    """A persisted shape, note or mark on one page of one document."""
    id: str
    document_id: str
    user_id: str
    page_number: int
    annotation_type: str
    color: str
    position: AnnotationPosition
    content: Optional[str] = None
    selected_text: Optional[str] = None
    properties: dict = field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    # Set while an optimistic create is awaiting the server
    pending: bool = False

    def __post_init__(self):
        validate_annotation_type(self.annotation_type)
        validate_color(self.color)
        if self.page_number < 1:
            raise ValueError(f"Page numbers start at 1, got {self.page_number}")

    @property
    def is_drawing(self) -> bool:
        return self.annotation_type == "drawing"

    @classmethod
    def pending_from_draft(
        cls,
        draft: AnnotationDraft,
        document_id: str,
        user_id: str,
        page_number: int,
    ) -> "Annotation":
        """Local placeholder shown until the server confirms the create."""
        return cls(
            id=f"{PENDING_ID_PREFIX}{uuid.uuid4()}",
            document_id=document_id,
            user_id=user_id,
            page_number=page_number,
            annotation_type=draft.annotation_type,
            color=draft.color,
            position=AnnotationPosition(**draft.position.to_dict()),
            content=draft.content,
            selected_text=draft.selected_text,
            properties=dict(draft.properties),
            pending=True,
        )

    def apply_updates(self, updates: dict) -> "Annotation":
        """Return a copy with the given field updates applied."""
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        changes = {k: v for k, v in updates.items() if k not in POSITION_FIELDS}
        if "color" in changes:
            validate_color(changes["color"])
        if "properties" in changes:
            changes["properties"] = dict(changes["properties"] or {})

        if any(k in updates for k in POSITION_FIELDS):
            position = self.position.to_dict()
            position.update({k: updates[k] for k in POSITION_FIELDS if k in updates})
            changes["position"] = AnnotationPosition(**position)

        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "user_id": self.user_id,
            "page_number": self.page_number,
            "annotation_type": self.annotation_type,
            "color": self.color,
            **self.position.to_dict(),
            "content": self.content,
            "selected_text": self.selected_text,
            "properties": dict(self.properties),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Annotation":
        """Build from an API payload or a database row."""
        return cls(
            id=str(data["id"]),
            document_id=str(data["document_id"]),
            user_id=str(data["user_id"]),
            page_number=int(data["page_number"]),
            annotation_type=data["annotation_type"],
            color=data.get("color") or DEFAULT_COLOR,
            position=AnnotationPosition(
                x=data["x"], y=data["y"],
                width=data["width"], height=data["height"],
            ),
            content=data.get("content"),
            selected_text=data.get("selected_text"),
            properties=dict(data.get("properties") or {}),
            created_at=_to_str(data.get("created_at")),
            updated_at=_to_str(data.get("updated_at")),
        )


@dataclass
class AnnotationComment:
    """Threaded reply attached to an annotation."""
    id: str
    annotation_id: str
    user_id: str
    content: str
    parent_comment_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    replies: list = field(default_factory=list)  # list[AnnotationComment]

    def to_dict(self, include_replies: bool = True) -> dict:
        data = {
            "id": self.id,
            "annotation_id": self.annotation_id,
            "user_id": self.user_id,
            "content": self.content,
            "parent_comment_id": self.parent_comment_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_replies:
            data["replies"] = [r.to_dict(include_replies=False) for r in self.replies]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AnnotationComment":
        return cls(
            id=str(data["id"]),
            annotation_id=str(data["annotation_id"]),
            user_id=str(data["user_id"]),
            content=data["content"],
            parent_comment_id=_to_str(data.get("parent_comment_id")),
            created_at=_to_str(data.get("created_at")),
            updated_at=_to_str(data.get("updated_at")),
        )


@dataclass
class AnnotationShare:
    """Grants a permission level on an annotation to another user."""
    id: str
    annotation_id: str
    shared_with_user_id: str
    permission_level: str
    shared_by_user_id: str
    created_at: Optional[str] = None

    def __post_init__(self):
        validate_permission_level(self.permission_level)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "annotation_id": self.annotation_id,
            "shared_with_user_id": self.shared_with_user_id,
            "permission_level": self.permission_level,
            "shared_by_user_id": self.shared_by_user_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnnotationShare":
        return cls(
            id=str(data["id"]),
            annotation_id=str(data["annotation_id"]),
            shared_with_user_id=str(data["shared_with_user_id"]),
            permission_level=data["permission_level"],
            shared_by_user_id=str(data["shared_by_user_id"]),
            created_at=_to_str(data.get("created_at")),
        )
