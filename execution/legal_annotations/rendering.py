"""
Render descriptors for the annotation layer.

Turns stored annotations (page units) into what a renderer needs: the
viewport rectangle, fill and border colors, border style and stacking
order. The in-progress gesture gets a descriptor of its own so the preview
is drawn with the same rules as committed shapes.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .drawing import DEFAULT_STROKE_WIDTH, PathBuilder, parse_path
from .geometry import PageTransform
from .models import ANNOTATION_COLORS, DEFAULT_COLOR, Annotation
from .tool_state import AnnotationStateController, Drawing

logger = logging.getLogger(__name__)

# Stacking order; selected shapes and the live preview draw above the rest
Z_INDEX_DEFAULT = 10
Z_INDEX_SELECTED = 20
Z_INDEX_PREVIEW = 30

DEFAULT_OPACITY = 1.0


@dataclass
class RenderSpec:
    """How one annotation is painted in viewport pixels."""
    annotation_id: Optional[str]
    annotation_type: str
    left: float
    top: float
    width: float
    height: float
    fill: str
    border: str
    border_style: str = "solid"
    border_width: float = 1.0
    z_index: int = Z_INDEX_DEFAULT
    opacity: float = DEFAULT_OPACITY
    label: Optional[str] = None
    path_data: Optional[str] = None
    stroke_width: Optional[float] = None
    extra: dict = field(default_factory=dict)


def palette(color: str) -> dict:
    """Fill/border pair for a color name, falling back to the default."""
    return ANNOTATION_COLORS.get(color, ANNOTATION_COLORS[DEFAULT_COLOR])


def _stroke_scale(transform: PageTransform, stroke_width: float) -> float:
    return stroke_width * transform.scale


def path_to_viewport(points: list[tuple[float, float]], transform: PageTransform) -> str:
    """Re-emit a stroke given in page units as viewport path data."""
    builder = PathBuilder()
    for px, py in points:
        builder.line_to(transform.to_viewport(px, py))
    return builder.path_data


def describe_annotation(
    annotation: Annotation,
    transform: PageTransform,
    selected: bool = False,
) -> RenderSpec:
    """Render descriptor for a stored annotation."""
    colors = palette(annotation.color)
    left, top, width, height = transform.position_to_viewport(annotation.position)
    props = annotation.properties

    spec = RenderSpec(
        annotation_id=annotation.id,
        annotation_type=annotation.annotation_type,
        left=left,
        top=top,
        width=width,
        height=height,
        fill=colors["fill"],
        border=colors["border"],
        border_style="solid" if selected else "dashed",
        border_width=2.0,
        z_index=Z_INDEX_SELECTED if selected else Z_INDEX_DEFAULT,
        opacity=float(props.get("opacity", DEFAULT_OPACITY)),
    )

    if annotation.annotation_type == "stamp":
        spec.label = str(props.get("stamp_type", "draft")).upper()
    elif annotation.annotation_type in ("note", "text"):
        spec.label = annotation.content
        if "font_size" in props:
            spec.extra["font_size"] = props["font_size"] * transform.scale
        if "font_family" in props:
            spec.extra["font_family"] = props["font_family"]
    elif annotation.is_drawing:
        spec.fill = "none"
        path_data = props.get("path_data")
        if path_data:
            try:
                spec.path_data = path_to_viewport(parse_path(path_data), transform)
            except ValueError as e:
                logger.warning(f"Skipping path of annotation {annotation.id}: {e}")
        spec.stroke_width = _stroke_scale(
            transform, float(props.get("stroke_width", DEFAULT_STROKE_WIDTH))
        )
        if "stroke_style" in props:
            spec.extra["stroke_style"] = props["stroke_style"]

    if annotation.pending:
        spec.extra["pending"] = True
    return spec


def describe_preview(controller: AnnotationStateController) -> Optional[RenderSpec]:
    """Render descriptor for the gesture in progress, if any."""
    state = controller.state
    if not isinstance(state, Drawing):
        return None

    transform = controller.transform
    colors = palette(state.tool.color)
    left, top, width, height = transform.position_to_viewport(state.rectangle)

    spec = RenderSpec(
        annotation_id=None,
        annotation_type=state.tool.annotation_type,
        left=left,
        top=top,
        width=width,
        height=height,
        fill=colors["fill"],
        border=colors["border"],
        border_style="dashed",
        z_index=Z_INDEX_PREVIEW,
    )
    if state.path is not None:
        spec.fill = "none"
        spec.path_data = path_to_viewport(state.path.points, transform)
        spec.stroke_width = _stroke_scale(transform, state.tool.stroke_width)
    return spec


def describe_layer(
    annotations: list[Annotation],
    controller: AnnotationStateController,
) -> list[RenderSpec]:
    """Descriptors for a whole page, in paint order (bottom first)."""
    specs = [
        describe_annotation(a, controller.transform, selected=controller.is_selected(a))
        for a in annotations
    ]
    preview = describe_preview(controller)
    if preview is not None:
        specs.append(preview)
    # Stable sort keeps creation order within one z level
    specs.sort(key=lambda s: s.z_index)
    return specs
