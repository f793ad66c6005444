"""
Annotation export.

JSON output mirrors the API records (optionally with threaded comments);
CSV output is one row per annotation with the comment count.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .collaboration import build_comment_threads
from .models import Annotation, AnnotationComment, validate_annotation_type

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv")

CSV_COLUMNS = [
    "id", "page_number", "annotation_type", "color",
    "x", "y", "width", "height",
    "content", "selected_text", "user_id", "created_at", "updated_at",
    "comment_count",
]


@dataclass
class ExportOptions:
    format: str = "json"
    include_comments: bool = False
    page_range: Optional[tuple[int, int]] = None
    annotation_types: Optional[list[str]] = None

    def __post_init__(self):
        if self.format == "pdf":
            raise ValueError("PDF export is not supported; use json or csv")
        if self.format not in EXPORT_FORMATS:
            raise ValueError(f"Unknown export format: {self.format!r}")
        if self.page_range is not None:
            start, end = self.page_range
            if start < 1 or end < start:
                raise ValueError(f"Invalid page range: {self.page_range}")
        if self.annotation_types is not None:
            for annotation_type in self.annotation_types:
                validate_annotation_type(annotation_type)


def select_for_export(annotations: list[Annotation], options: ExportOptions) -> list[Annotation]:
    """Apply page range and type filters, ordered by page then creation."""
    selected = []
    for annotation in annotations:
        if options.page_range is not None:
            start, end = options.page_range
            if not start <= annotation.page_number <= end:
                continue
        if options.annotation_types is not None and annotation.annotation_type not in options.annotation_types:
            continue
        selected.append(annotation)
    selected.sort(key=lambda a: (a.page_number, a.created_at or ""))
    return selected


def export_annotations(
    annotations: list[Annotation],
    options: Optional[ExportOptions] = None,
    comments: Optional[dict[str, list[AnnotationComment]]] = None,
    document_id: Optional[str] = None,
) -> str:
    """
    Serialize annotations for download.

    Args:
        annotations: Annotations to export
        options: Format and filters (defaults to JSON, everything)
        comments: Flat comments per annotation id, used when
            ``options.include_comments`` is set
        document_id: Recorded in the JSON envelope

    Returns:
        The export as text
    """
    options = options or ExportOptions()
    comments = comments or {}
    selected = select_for_export(annotations, options)
    logger.info(f"Exporting {len(selected)} of {len(annotations)} annotations as {options.format}")

    if options.format == "csv":
        return _to_csv(selected, comments)
    return _to_json(selected, options, comments, document_id)


def _to_json(annotations, options, comments, document_id) -> str:
    records = []
    for annotation in annotations:
        record = annotation.to_dict()
        if options.include_comments:
            threads = build_comment_threads(comments.get(annotation.id, []))
            record["comments"] = [t.to_dict() for t in threads]
        records.append(record)

    envelope = {
        "document_id": document_id,
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "count": len(records),
        "annotations": records,
    }
    return json.dumps(envelope, indent=2, default=str)


def _to_csv(annotations, comments) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for annotation in annotations:
        row = annotation.to_dict()
        row["comment_count"] = len(comments.get(annotation.id, []))
        writer.writerow({k: "" if row.get(k) is None else row.get(k) for k in CSV_COLUMNS})
    return buffer.getvalue()
