"""
Annotation Authoring State Machine

Tracks the active tool, the gesture in progress and the current selection
for one annotation layer. Tool state is a tagged union:

- Idle: no tool selected, pointer input is ignored
- ToolArmed: a tool is selected and waits for pointer-down
- Drawing: the pointer is down and a rectangle or path is accumulating

Pointer-up returns to ToolArmed and yields an AnnotationDraft when the
gesture produced a real shape. Nothing here touches the network; drafts are
handed to the AnnotationStore by the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from .config import AnnotationSettings
from .drawing import DEFAULT_STROKE_WIDTH, PathBuilder, path_bounds
from .geometry import PageTransform, Point, rect_from_points
from .models import (
    Annotation,
    AnnotationDraft,
    AnnotationPosition,
    DEFAULT_COLOR,
    RECTANGLE_TYPES,
    STAMP_TYPES,
    validate_annotation_type,
    validate_color,
)

logger = logging.getLogger(__name__)

# Rectangles must exceed this size (page units) on both axes to be kept
MIN_SHAPE_SIZE = 5.0
DEFAULT_NOTE_CONTENT = "New note"
DEFAULT_STAMP_TYPE = "draft"


@dataclass(frozen=True)
class AnnotationTool:
    """An authoring mode plus its color."""
    annotation_type: str
    color: str = DEFAULT_COLOR
    stroke_width: float = DEFAULT_STROKE_WIDTH
    stamp_type: str = DEFAULT_STAMP_TYPE

    def __post_init__(self):
        validate_annotation_type(self.annotation_type)
        validate_color(self.color)
        if self.stroke_width <= 0:
            raise ValueError(f"Stroke width must be positive, got {self.stroke_width}")
        if self.stamp_type not in STAMP_TYPES:
            raise ValueError(f"Unknown stamp type: {self.stamp_type!r}")

    @classmethod
    def from_settings(cls, annotation_type: str, settings: AnnotationSettings, **kwargs) -> "AnnotationTool":
        """Tool using the configured default stroke width."""
        kwargs.setdefault("stroke_width", settings.default_stroke_width)
        return cls(annotation_type, **kwargs)

    @property
    def is_freehand(self) -> bool:
        return self.annotation_type not in RECTANGLE_TYPES


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class ToolArmed:
    tool: AnnotationTool


@dataclass
class Drawing:
    tool: AnnotationTool
    start: Point
    current: Point
    path: Optional[PathBuilder] = None

    @property
    def rectangle(self) -> AnnotationPosition:
        """Rectangle spanned so far (page units)."""
        if self.path is not None and self.path.points:
            return path_bounds(self.path.points, self.tool.stroke_width)
        return rect_from_points(self.start, self.current)


ToolState = Union[Idle, ToolArmed, Drawing]


@dataclass
class Selection:
    annotation: Optional[Annotation] = None
    is_editing: bool = False


@dataclass
class PointerResult:
    """Outcome of a pointer-up."""
    draft: Optional[AnnotationDraft] = None
    discarded: bool = False
    reasons: list = field(default_factory=list)


class AnnotationStateController:
    """
    Consolidated tool, drawing and selection state for one page layer.

    Usage:
        controller = AnnotationStateController(PageTransform(scale=1.5))
        controller.select_tool(AnnotationTool("highlight", "yellow"))
        controller.pointer_down(150, 150)
        controller.pointer_move(300, 240)
        draft = controller.pointer_up()
    """

    def __init__(
        self,
        transform: Optional[PageTransform] = None,
        read_only: bool = False,
        min_shape_size: float = MIN_SHAPE_SIZE,
    ):
        self.transform = transform or PageTransform()
        self.read_only = read_only
        self.min_shape_size = min_shape_size
        self._state: ToolState = Idle()
        self.selection = Selection()

    @classmethod
    def from_settings(
        cls,
        settings: AnnotationSettings,
        transform: Optional[PageTransform] = None,
        read_only: bool = False,
    ) -> "AnnotationStateController":
        return cls(transform=transform, read_only=read_only, min_shape_size=settings.min_shape_size)

    @property
    def state(self) -> ToolState:
        return self._state

    @property
    def active_tool(self) -> Optional[AnnotationTool]:
        if isinstance(self._state, (ToolArmed, Drawing)):
            return self._state.tool
        return None

    @property
    def is_drawing(self) -> bool:
        return isinstance(self._state, Drawing)

    @property
    def current_path(self) -> str:
        """Path data of the stroke in progress ("" when not drawing freehand)."""
        if isinstance(self._state, Drawing) and self._state.path is not None:
            return self._state.path.path_data
        return ""

    # ------------------------------------------------------------------
    # Tool selection
    # ------------------------------------------------------------------

    def select_tool(self, tool: AnnotationTool) -> None:
        """Arm a tool. Any gesture in progress is discarded."""
        if isinstance(self._state, Drawing):
            logger.debug("Tool switched mid-gesture, discarding partial shape")
        self._state = ToolArmed(tool)

    def deselect_tool(self) -> None:
        """Return to Idle. Any gesture in progress is discarded."""
        self._state = Idle()

    def set_transform(self, transform: PageTransform) -> None:
        """Update zoom/rotation. Accumulated points are already in page units."""
        self.transform = transform

    # ------------------------------------------------------------------
    # Pointer input (viewport coordinates)
    # ------------------------------------------------------------------

    def _page_point(self, vx: float, vy: float) -> Point:
        return self.transform.clamp(self.transform.to_page(vx, vy))

    def pointer_down(self, vx: float, vy: float) -> bool:
        """
        Start a gesture.

        Returns:
            True if the event started a gesture
        """
        if self.read_only or not isinstance(self._state, ToolArmed):
            return False

        tool = self._state.tool
        point = self._page_point(vx, vy)
        path = None
        if tool.is_freehand:
            path = PathBuilder()
            path.move_to(point)
        self._state = Drawing(tool=tool, start=point, current=point, path=path)
        return True

    def pointer_move(self, vx: float, vy: float) -> Optional[AnnotationPosition]:
        """
        Extend the gesture in progress.

        Returns:
            The preview rectangle, or None when no gesture is active
        """
        if self.read_only or not isinstance(self._state, Drawing):
            return None

        point = self._page_point(vx, vy)
        self._state.current = point
        if self._state.path is not None:
            self._state.path.line_to(point)
        return self._state.rectangle

    def pointer_up(self, vx: Optional[float] = None, vy: Optional[float] = None) -> Optional[AnnotationDraft]:
        """
        Finish the gesture in progress.

        Args:
            vx, vy: Optional release position; when given it is applied as a
                final move before committing.

        Returns:
            A draft to persist, or None if the gesture was too small or no
            gesture was active
        """
        return self.finish_gesture(vx, vy).draft

    def finish_gesture(self, vx: Optional[float] = None, vy: Optional[float] = None) -> PointerResult:
        """Like pointer_up, but reports why a gesture was discarded."""
        if self.read_only or not isinstance(self._state, Drawing):
            return PointerResult()

        if vx is not None and vy is not None:
            self.pointer_move(vx, vy)

        gesture = self._state
        self._state = ToolArmed(gesture.tool)

        if gesture.path is not None:
            return self._finish_path(gesture)
        return self._finish_rectangle(gesture)

    def cancel_gesture(self) -> None:
        """Abandon the gesture in progress, keeping the tool armed."""
        if isinstance(self._state, Drawing):
            self._state = ToolArmed(self._state.tool)

    def _finish_path(self, gesture: Drawing) -> PointerResult:
        path = gesture.path
        if path.is_trivial():
            return PointerResult(discarded=True, reasons=["path has fewer than two distinct points"])

        tool = gesture.tool
        draft = AnnotationDraft(
            annotation_type=tool.annotation_type,
            color=tool.color,
            position=path_bounds(path.points, tool.stroke_width),
            properties={
                "path_data": path.path_data,
                "stroke_width": tool.stroke_width,
            },
        )
        return PointerResult(draft=draft)

    def _finish_rectangle(self, gesture: Drawing) -> PointerResult:
        rect = rect_from_points(gesture.start, gesture.current)

        reasons = []
        if rect.width <= self.min_shape_size:
            reasons.append(f"width {rect.width:g} below minimum {self.min_shape_size:g}")
        if rect.height <= self.min_shape_size:
            reasons.append(f"height {rect.height:g} below minimum {self.min_shape_size:g}")
        if reasons:
            return PointerResult(discarded=True, reasons=reasons)

        tool = gesture.tool
        content = DEFAULT_NOTE_CONTENT if tool.annotation_type == "note" else None
        properties = {"stamp_type": tool.stamp_type} if tool.annotation_type == "stamp" else {}
        draft = AnnotationDraft(
            annotation_type=tool.annotation_type,
            color=tool.color,
            position=rect,
            content=content,
            properties=properties,
        )
        return PointerResult(draft=draft)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_annotation(self, annotation: Optional[Annotation], editing: bool = False) -> None:
        """Select an annotation (None clears). Editing is refused when read-only."""
        if annotation is None:
            self.selection = Selection()
            return
        self.selection = Selection(annotation=annotation, is_editing=editing and not self.read_only)

    def clear_selection(self) -> None:
        self.selection = Selection()

    def is_selected(self, annotation: Annotation) -> bool:
        selected = self.selection.annotation
        return selected is not None and selected.id == annotation.id

    def sync_selection(self, annotations: list[Annotation]) -> None:
        """Refresh or drop the selection after the annotation list changed."""
        selected = self.selection.annotation
        if selected is None:
            return
        for annotation in annotations:
            if annotation.id == selected.id:
                self.selection = Selection(annotation=annotation, is_editing=self.selection.is_editing)
                return
        self.selection = Selection()
