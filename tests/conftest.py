"""
Shared fixtures and test utilities for the legal annotations tests.

Provides an in-memory backend, a recording telemetry sink and sample
annotations so that all tests run without a database or network access.
"""

import os
import sys
import uuid
import threading
from pathlib import Path
from datetime import datetime, timezone

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")
os.environ.setdefault("JWT_SECRET", "test-secret-for-annotation-tests")

DOCUMENT_ID = "11111111-1111-1111-1111-111111111111"
OWNER_ID = "22222222-2222-2222-2222-222222222222"
OTHER_USER_ID = "33333333-3333-3333-3333-333333333333"


def make_annotation_row(**overrides) -> dict:
    """An annotation record as the API returns it."""
    row = {
        "id": str(uuid.uuid4()),
        "document_id": DOCUMENT_ID,
        "user_id": OWNER_ID,
        "page_number": 1,
        "annotation_type": "highlight",
        "color": "yellow",
        "x": 10.0,
        "y": 20.0,
        "width": 100.0,
        "height": 30.0,
        "content": None,
        "selected_text": None,
        "properties": {},
        "created_at": "2024-03-01T10:00:00+00:00",
        "updated_at": "2024-03-01T10:00:00+00:00",
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# In-memory backend (no HTTP, no database)
# ---------------------------------------------------------------------------

class FakeBackend:
    """
    In-memory AnnotationBackend.

    ``fail_on`` names methods that raise ConnectionError. ``block()`` makes the
    next calls wait until ``unblock()``; ``entered`` is set once a blocked call
    has started.
    """

    def __init__(self, rows=None):
        self.rows = {r["id"]: dict(r) for r in (rows or [])}
        self.comments = {}
        self.shares = {}
        self.calls = []
        self.fail_on = set()
        self.entered = threading.Event()
        self._gate = threading.Event()
        self._gate.set()

    def block(self):
        self.entered.clear()
        self._gate.clear()

    def unblock(self):
        self._gate.set()

    def _enter(self, name, *args):
        self.calls.append((name, args))
        self.entered.set()
        self._gate.wait(timeout=5)
        if name in self.fail_on:
            raise ConnectionError(f"{name} failed")

    def _now(self):
        return datetime.now(timezone.utc).isoformat()

    def list_annotations(self, document_id, page_number=None):
        self._enter("list_annotations", document_id, page_number)
        return [
            dict(r) for r in self.rows.values()
            if r["document_id"] == document_id
            and (page_number is None or r["page_number"] == page_number)
        ]

    def create_annotation(self, payload):
        self._enter("create_annotation", payload)
        row = make_annotation_row(**payload)
        row["id"] = str(uuid.uuid4())
        row["user_id"] = OWNER_ID
        row["created_at"] = row["updated_at"] = self._now()
        self.rows[row["id"]] = row
        return dict(row)

    def update_annotation(self, annotation_id, updates):
        self._enter("update_annotation", annotation_id, updates)
        row = self.rows[annotation_id]
        row.update(updates)
        row["updated_at"] = self._now()
        return dict(row)

    def delete_annotation(self, annotation_id):
        self._enter("delete_annotation", annotation_id)
        self.rows.pop(annotation_id, None)

    def list_comments(self, annotation_id):
        self._enter("list_comments", annotation_id)
        return [dict(c) for c in self.comments.values() if c["annotation_id"] == annotation_id]

    def create_comment(self, annotation_id, content, parent_comment_id=None):
        self._enter("create_comment", annotation_id, content, parent_comment_id)
        comment = {
            "id": str(uuid.uuid4()),
            "annotation_id": annotation_id,
            "user_id": OWNER_ID,
            "content": content,
            "parent_comment_id": parent_comment_id,
            "created_at": self._now(),
            "updated_at": self._now(),
        }
        self.comments[comment["id"]] = comment
        return dict(comment)

    def delete_comment(self, comment_id):
        self._enter("delete_comment", comment_id)
        self.comments.pop(comment_id, None)

    def list_shares(self, annotation_id):
        self._enter("list_shares", annotation_id)
        return [dict(s) for s in self.shares.values() if s["annotation_id"] == annotation_id]

    def create_share(self, annotation_id, email, permission_level):
        self._enter("create_share", annotation_id, email, permission_level)
        share = {
            "id": str(uuid.uuid4()),
            "annotation_id": annotation_id,
            "shared_with_user_id": OTHER_USER_ID,
            "permission_level": permission_level,
            "shared_by_user_id": OWNER_ID,
            "created_at": self._now(),
        }
        self.shares[share["id"]] = share
        return dict(share)

    def delete_share(self, share_id):
        self._enter("delete_share", share_id)
        self.shares.pop(share_id, None)


class RecordingTelemetry:
    """Telemetry sink that keeps every notification for assertions."""

    def __init__(self):
        self.successes = []
        self.errors = []
        self.exceptions = []

    def notify_success(self, message):
        self.successes.append(message)

    def notify_error(self, message, error=None):
        self.errors.append((message, error))

    def capture_exception(self, error, context=None):
        self.exceptions.append((error, context))


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def store(backend, telemetry):
    from execution.legal_annotations.store import AnnotationStore
    return AnnotationStore(backend, DOCUMENT_ID, user_id=OWNER_ID, telemetry=telemetry)


@pytest.fixture
def sample_annotation():
    from execution.legal_annotations.models import Annotation
    return Annotation.from_dict(make_annotation_row(id="ann-1"))


@pytest.fixture
def highlight_draft():
    from execution.legal_annotations.models import AnnotationDraft, AnnotationPosition
    return AnnotationDraft(
        annotation_type="highlight",
        color="yellow",
        position=AnnotationPosition(x=100, y=100, width=100, height=60),
    )


# ---------------------------------------------------------------------------
# Singleton resets between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_quota_manager_singleton():
    """Reset the global QuotaManager between tests."""
    import execution.legal_annotations.quotas as quotas_mod
    quotas_mod._manager = None
    yield
    quotas_mod._manager = None
