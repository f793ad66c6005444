"""
Page Coordinate Transform

Maps pointer positions on the rendered page (viewport pixels) to
page-relative coordinates and back. The stored frame is the unscaled,
unrotated page: the transform divides out the zoom scale and inverts the
display rotation, so an annotation authored on a rotated page lands where it
was drawn once the page is shown upright again.
"""

import math
from dataclasses import dataclass
from typing import Optional

from .models import Annotation, AnnotationPosition


VALID_ROTATIONS = (0, 90, 180, 270)

# Minimum hit distance around freehand strokes, in page units
MIN_HIT_TOLERANCE = 5.0


def normalize_rotation(rotation: float) -> int:
    """Fold a rotation in degrees into 0/90/180/270 (clockwise)."""
    value = float(rotation) % 360
    if not value.is_integer() or int(value) not in VALID_ROTATIONS:
        raise ValueError(f"Rotation must be a multiple of 90 degrees, got {rotation}")
    return int(value)


@dataclass(frozen=True)
class Point:
    """A 2D point."""
    x: float
    y: float

    def isclose(self, other: "Point", abs_tol: float = 1e-9) -> bool:
        return (
            math.isclose(self.x, other.x, abs_tol=abs_tol)
            and math.isclose(self.y, other.y, abs_tol=abs_tol)
        )


@dataclass(frozen=True)
class PageTransform:
    """
    View parameters of one rendered page.

    Args:
        scale: Zoom factor (viewport pixels per page unit)
        rotation: Clockwise display rotation in degrees
        origin_x, origin_y: Viewport position of the layer's top-left corner
        page_width, page_height: Unscaled page size. Required when rotated,
            optional otherwise (used for clamping when present).
    """
    scale: float = 1.0
    rotation: int = 0
    origin_x: float = 0.0
    origin_y: float = 0.0
    page_width: Optional[float] = None
    page_height: Optional[float] = None

    def __post_init__(self):
        if self.scale <= 0:
            raise ValueError(f"Scale must be positive, got {self.scale}")
        object.__setattr__(self, "rotation", normalize_rotation(self.rotation))
        if self.rotation and (self.page_width is None or self.page_height is None):
            raise ValueError("Page width and height are required for a rotated page")

    @property
    def has_page_size(self) -> bool:
        return self.page_width is not None and self.page_height is not None

    @property
    def display_size(self) -> Optional[tuple[float, float]]:
        """Size of the rendered page in viewport pixels."""
        if not self.has_page_size:
            return None
        width, height = self.page_width, self.page_height
        if self.rotation in (90, 270):
            width, height = height, width
        return width * self.scale, height * self.scale

    def to_page(self, vx: float, vy: float) -> Point:
        """Viewport coordinates to page-relative coordinates."""
        u = (vx - self.origin_x) / self.scale
        v = (vy - self.origin_y) / self.scale

        if self.rotation == 90:
            return Point(v, self.page_height - u)
        if self.rotation == 180:
            return Point(self.page_width - u, self.page_height - v)
        if self.rotation == 270:
            return Point(self.page_width - v, u)
        return Point(u, v)

    def to_viewport(self, px: float, py: float) -> Point:
        """Page-relative coordinates to viewport coordinates."""
        if self.rotation == 90:
            u, v = self.page_height - py, px
        elif self.rotation == 180:
            u, v = self.page_width - px, self.page_height - py
        elif self.rotation == 270:
            u, v = py, self.page_width - px
        else:
            u, v = px, py

        return Point(u * self.scale + self.origin_x, v * self.scale + self.origin_y)

    def clamp(self, point: Point) -> Point:
        """Keep a page point on the page (never below zero)."""
        x = max(point.x, 0.0)
        y = max(point.y, 0.0)
        if self.page_width is not None:
            x = min(x, self.page_width)
        if self.page_height is not None:
            y = min(y, self.page_height)
        return Point(x, y)

    def position_to_viewport(self, position: AnnotationPosition) -> tuple[float, float, float, float]:
        """
        Rectangle in the viewport for a stored position.

        Returns:
            (left, top, width, height) in viewport pixels
        """
        a = self.to_viewport(position.x, position.y)
        b = self.to_viewport(position.right, position.bottom)
        left, top = min(a.x, b.x), min(a.y, b.y)
        return left, top, abs(b.x - a.x), abs(b.y - a.y)


def rect_from_points(a: Point, b: Point) -> AnnotationPosition:
    """Axis-aligned rectangle spanned by two corner points."""
    return AnnotationPosition(
        x=min(a.x, b.x),
        y=min(a.y, b.y),
        width=abs(b.x - a.x),
        height=abs(b.y - a.y),
    )


def point_near_segment(
    px: float, py: float,
    x1: float, y1: float,
    x2: float, y2: float,
    tolerance: float,
) -> bool:
    """Check if a point lies within ``tolerance`` of a line segment."""
    length_sq = (x2 - x1) ** 2 + (y2 - y1) ** 2

    if length_sq == 0:
        return math.hypot(px - x1, py - y1) <= tolerance

    # Projection of the point onto the segment, clamped to its ends
    t = max(0.0, min(1.0, ((px - x1) * (x2 - x1) + (py - y1) * (y2 - y1)) / length_sq))
    nearest_x = x1 + t * (x2 - x1)
    nearest_y = y1 + t * (y2 - y1)
    return math.hypot(px - nearest_x, py - nearest_y) <= tolerance


def point_in_annotation(annotation: Annotation, x: float, y: float) -> bool:
    """
    Hit-test a page point against an annotation.

    Freehand drawings are hit only near their strokes; every other type is
    hit anywhere inside its rectangle.
    """
    if annotation.is_drawing:
        from .drawing import parse_path

        path_data = annotation.properties.get("path_data")
        if path_data:
            try:
                points = parse_path(path_data)
            except ValueError:
                points = []
            stroke = float(annotation.properties.get("stroke_width", 2.0))
            tolerance = max(stroke / 2 + 2.0, MIN_HIT_TOLERANCE)
            if len(points) == 1:
                return math.hypot(x - points[0][0], y - points[0][1]) <= tolerance
            for (x1, y1), (x2, y2) in zip(points, points[1:]):
                if point_near_segment(x, y, x1, y1, x2, y2, tolerance):
                    return True
            return False

    return annotation.position.contains(x, y)
