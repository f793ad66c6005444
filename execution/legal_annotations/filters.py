"""Sidebar filtering and grouping of annotations."""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Union

from .models import Annotation, validate_annotation_type, validate_color

DateLike = Union[date, datetime, str]


def _parse_date(value: Optional[DateLike]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _naive(value: datetime) -> datetime:
    # Compare in a single frame; stored timestamps may or may not carry tz info
    return value.replace(tzinfo=None) if value.tzinfo else value


@dataclass
class AnnotationFilter:
    """
    Criteria for the annotation sidebar. Unset fields match everything.

    ``date_to`` given as a plain date includes the whole day.
    """
    user_id: Optional[str] = None
    annotation_type: Optional[str] = None
    color: Optional[str] = None
    page_number: Optional[int] = None
    date_from: Optional[DateLike] = None
    date_to: Optional[DateLike] = None
    search: Optional[str] = None

    def __post_init__(self):
        if self.annotation_type is not None:
            validate_annotation_type(self.annotation_type)
        if self.color is not None:
            validate_color(self.color)
        self._from = _parse_date(self.date_from)
        self._to = _parse_date(self.date_to)
        if self._to is not None and isinstance(self.date_to, date) and not isinstance(self.date_to, datetime):
            self._to = self._to.replace(hour=23, minute=59, second=59, microsecond=999999)
        elif isinstance(self.date_to, str) and len(self.date_to) == 10:
            self._to = self._to.replace(hour=23, minute=59, second=59, microsecond=999999)

    def matches(self, annotation: Annotation) -> bool:
        if self.user_id is not None and annotation.user_id != self.user_id:
            return False
        if self.annotation_type is not None and annotation.annotation_type != self.annotation_type:
            return False
        if self.color is not None and annotation.color != self.color:
            return False
        if self.page_number is not None and annotation.page_number != self.page_number:
            return False

        if self._from is not None or self._to is not None:
            if not annotation.created_at:
                return False
            created = _naive(_parse_date(annotation.created_at))
            if self._from is not None and created < _naive(self._from):
                return False
            if self._to is not None and created > _naive(self._to):
                return False

        if self.search:
            needle = self.search.strip().lower()
            if needle:
                haystack = " ".join(
                    part for part in (annotation.content, annotation.selected_text) if part
                ).lower()
                if needle not in haystack:
                    return False
        return True


def filter_annotations(
    annotations: Iterable[Annotation],
    criteria: Optional[AnnotationFilter] = None,
) -> list[Annotation]:
    """Annotations matching ``criteria``, in their original order."""
    if criteria is None:
        return list(annotations)
    return [a for a in annotations if criteria.matches(a)]


def group_by_page(annotations: Iterable[Annotation]) -> dict[int, list[Annotation]]:
    """Group annotations by page number; pages come out in ascending order."""
    groups: dict[int, list[Annotation]] = {}
    for annotation in annotations:
        groups.setdefault(annotation.page_number, []).append(annotation)
    return {page: groups[page] for page in sorted(groups)}
