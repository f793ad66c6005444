"""
Freehand path accumulation.

Paths use the SVG subset ``M x y`` / ``L x y`` in page coordinates.
"""

import re

from .geometry import Point
from .models import AnnotationPosition

DEFAULT_STROKE_WIDTH = 2.0

_TOKEN_RE = re.compile(r"[MLml]|-?\d*\.?\d+(?:[eE][-+]?\d+)?")


def format_coordinate(value: float) -> str:
    """Render a coordinate with at most two decimals and no trailing zeros."""
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


class PathBuilder:
    """Accumulates one stroke as move/line commands."""

    def __init__(self):
        self._commands: list[str] = []
        self._points: list[tuple[float, float]] = []

    def move_to(self, point: Point) -> None:
        self._commands.append(f"M {format_coordinate(point.x)} {format_coordinate(point.y)}")
        self._points.append((point.x, point.y))

    def line_to(self, point: Point) -> None:
        if not self._commands:
            self.move_to(point)
            return
        self._commands.append(f"L {format_coordinate(point.x)} {format_coordinate(point.y)}")
        self._points.append((point.x, point.y))

    @property
    def path_data(self) -> str:
        return " ".join(self._commands)

    @property
    def points(self) -> list[tuple[float, float]]:
        return list(self._points)

    def is_trivial(self) -> bool:
        """A path with fewer than two distinct points draws nothing."""
        return len(set(self._points)) < 2

    def clear(self) -> None:
        self._commands.clear()
        self._points.clear()


def parse_path(path_data: str) -> list[tuple[float, float]]:
    """
    Parse ``M``/``L`` path data into a list of points.

    Raises:
        ValueError: If the path uses other commands or has dangling numbers
    """
    tokens = _TOKEN_RE.findall(path_data)
    leftovers = _TOKEN_RE.sub("", path_data).replace(",", "").strip()
    if leftovers:
        raise ValueError(f"Unsupported path data: {path_data!r}")

    points = []
    i = 0
    while i < len(tokens):
        command = tokens[i]
        if command.upper() not in ("M", "L"):
            raise ValueError(f"Expected a path command, got {command!r}")
        if i + 2 >= len(tokens):
            raise ValueError(f"Incomplete path command at token {i}")
        try:
            x, y = float(tokens[i + 1]), float(tokens[i + 2])
        except ValueError:
            raise ValueError(f"Path command {command!r} needs two coordinates") from None
        if command.islower() and points:
            # relative command
            x, y = points[-1][0] + x, points[-1][1] + y
        points.append((x, y))
        i += 3
    return points


def path_bounds(
    points: list[tuple[float, float]],
    stroke_width: float = DEFAULT_STROKE_WIDTH,
) -> AnnotationPosition:
    """
    Bounding box of a stroke, padded by half the stroke width.

    The box never extends below zero, so a stroke drawn along the page edge
    still produces a valid stored position.
    """
    if not points:
        raise ValueError("Cannot compute bounds of an empty path")

    pad = max(stroke_width, 0.0) / 2
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    left = max(min(xs) - pad, 0.0)
    top = max(min(ys) - pad, 0.0)
    return AnnotationPosition(
        x=left,
        y=top,
        width=max(xs) + pad - left,
        height=max(ys) + pad - top,
    )
