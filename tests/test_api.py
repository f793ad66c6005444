"""Tests for the FastAPI backend endpoints."""

import json
import pytest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from tests.conftest import make_annotation_row, DOCUMENT_ID, OWNER_ID, OTHER_USER_ID


# ---------------------------------------------------------------------------
# Mock the ServiceContainer so no real DB is needed
# ---------------------------------------------------------------------------

def _comment_row(**overrides):
    row = {
        "id": "c1",
        "annotation_id": "ann-1",
        "user_id": OWNER_ID,
        "content": "Is this enforceable?",
        "parent_comment_id": None,
        "created_at": "2024-03-01T10:00:00+00:00",
        "updated_at": "2024-03-01T10:00:00+00:00",
    }
    row.update(overrides)
    return row


def _share_row(**overrides):
    row = {
        "id": "s1",
        "annotation_id": "ann-1",
        "shared_with_user_id": OTHER_USER_ID,
        "permission_level": "view",
        "shared_by_user_id": OWNER_ID,
        "created_at": "2024-03-01T10:00:00+00:00",
    }
    row.update(overrides)
    return row


@pytest.fixture
def mock_store():
    """Create a mock AnnotationRepository."""
    store = MagicMock()
    store.get_permission.return_value = "owner"
    store.get_document_owner.return_value = OWNER_ID
    store.list_annotations.return_value = [make_annotation_row(id="ann-1")]
    store.create_annotation.side_effect = lambda user_id, data: make_annotation_row(
        id="ann-new", user_id=user_id, **data
    )
    store.update_annotation.side_effect = lambda annotation_id, updates: make_annotation_row(
        id=annotation_id, **updates
    )
    store.delete_annotation.return_value = True
    store.list_comments.return_value = []
    store.get_comment.return_value = _comment_row()
    store.create_comment.return_value = _comment_row(id="c-new")
    store.list_shares.return_value = [_share_row()]
    store.get_share.return_value = _share_row()
    store.find_user_by_email.return_value = {"id": OTHER_USER_ID, "email": "colleague@example.com"}
    store.create_share.return_value = _share_row(id="s-new", permission_level="comment")
    store.get_user_tier.return_value = "free"
    store.get_monthly_usage.return_value = 0
    return store


@pytest.fixture
def client(mock_store):
    """Create a TestClient with mocked services."""
    from execution.legal_annotations import api
    from execution.legal_annotations.quotas import QuotaManager

    api._container._store = mock_store
    api._container._quotas = QuotaManager(mock_store)
    api._rate_limiter.reset()

    return TestClient(api.app)


def _auth(user_id=OWNER_ID, email="owner@example.com"):
    from execution.legal_annotations.auth import create_session_jwt
    return {"Authorization": f"Bearer {create_session_jwt(user_id, email)}"}


def _create_body(**overrides):
    body = {
        "document_id": DOCUMENT_ID,
        "page_number": 1,
        "annotation_type": "highlight",
        "color": "yellow",
        "x": 100, "y": 100, "width": 100, "height": 60,
    }
    body.update(overrides)
    return body


class TestHealthEndpoint:
    def test_health_check(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"
        assert data["database"] == "connected"


class TestAuth:
    def test_missing_token(self, client):
        response = client.get(f"/api/v1/documents/{DOCUMENT_ID}/annotations")
        assert response.status_code == 401

    def test_wrong_scheme(self, client):
        response = client.get(
            f"/api/v1/documents/{DOCUMENT_ID}/annotations",
            headers={"Authorization": "Basic abc"},
        )
        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get(
            f"/api/v1/documents/{DOCUMENT_ID}/annotations",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    def test_rate_limit(self, client, monkeypatch):
        from execution.legal_annotations import api
        monkeypatch.setattr(api._rate_limiter, "_max_requests", 2)
        codes = [client.post("/api/v1/annotations", json=_create_body(), headers=_auth()).status_code
                 for _ in range(3)]
        assert codes == [201, 201, 429]


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------

class TestAnnotationEndpoints:
    def test_list(self, client, mock_store):
        response = client.get(f"/api/v1/documents/{DOCUMENT_ID}/annotations?page_number=1", headers=_auth())
        assert response.status_code == 200
        assert [a["id"] for a in response.json()] == ["ann-1"]
        mock_store.list_annotations.assert_called_once_with(DOCUMENT_ID, OWNER_ID, 1)

    def test_list_rejects_page_zero(self, client):
        response = client.get(f"/api/v1/documents/{DOCUMENT_ID}/annotations?page_number=0", headers=_auth())
        assert response.status_code == 422

    def test_create(self, client, mock_store):
        response = client.post("/api/v1/annotations", json=_create_body(), headers=_auth())
        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "ann-new"
        assert data["user_id"] == OWNER_ID
        assert (data["x"], data["width"], data["height"]) == (100, 100, 60)

    @pytest.mark.parametrize("overrides", [
        {"annotation_type": "underline"},
        {"color": "magenta"},
        {"page_number": 0},
        {"width": 0},
        {"x": -1},
    ])
    def test_create_validation(self, client, overrides):
        response = client.post("/api/v1/annotations", json=_create_body(**overrides), headers=_auth())
        assert response.status_code == 422

    def test_create_unknown_document(self, client, mock_store):
        mock_store.get_document_owner.return_value = None
        response = client.post("/api/v1/annotations", json=_create_body(), headers=_auth())
        assert response.status_code == 404

    def test_create_on_someone_elses_document(self, client, mock_store):
        response = client.post(
            "/api/v1/annotations", json=_create_body(),
            headers=_auth(OTHER_USER_ID, "colleague@example.com"),
        )
        assert response.status_code == 403
        mock_store.create_annotation.assert_not_called()

    def test_update(self, client, mock_store):
        response = client.patch("/api/v1/annotations/ann-1", json={"color": "red"}, headers=_auth())
        assert response.status_code == 200
        assert response.json()["color"] == "red"
        mock_store.update_annotation.assert_called_once_with("ann-1", {"color": "red"})

    def test_update_requires_edit(self, client, mock_store):
        mock_store.get_permission.return_value = "comment"
        response = client.patch("/api/v1/annotations/ann-1", json={"color": "red"}, headers=_auth())
        assert response.status_code == 403

    def test_update_hidden_annotation(self, client, mock_store):
        mock_store.get_permission.return_value = None
        response = client.patch("/api/v1/annotations/ann-1", json={"color": "red"}, headers=_auth())
        assert response.status_code == 404

    @pytest.mark.parametrize("body", [
        {"width": None, "color": None},
        {"color": None},
        {"x": None},
    ])
    def test_update_rejects_null_for_required_columns(self, client, mock_store, body):
        response = client.patch("/api/v1/annotations/ann-1", json=body, headers=_auth())
        assert response.status_code == 422
        mock_store.update_annotation.assert_not_called()

    def test_update_allows_clearing_content(self, client, mock_store):
        response = client.patch("/api/v1/annotations/ann-1", json={"content": None}, headers=_auth())
        assert response.status_code == 200
        mock_store.update_annotation.assert_called_once_with("ann-1", {"content": None})

    def test_update_bad_fields(self, client, mock_store):
        mock_store.update_annotation.side_effect = ValueError("No updatable fields given")
        response = client.patch("/api/v1/annotations/ann-1", json={}, headers=_auth())
        assert response.status_code == 400

    def test_delete(self, client, mock_store):
        response = client.delete("/api/v1/annotations/ann-1", headers=_auth())
        assert response.status_code == 200
        assert response.json() == {"status": "deleted", "annotation_id": "ann-1"}

    def test_delete_by_viewer_forbidden(self, client, mock_store):
        mock_store.get_permission.return_value = "view"
        response = client.delete("/api/v1/annotations/ann-1", headers=_auth())
        assert response.status_code == 403
        mock_store.delete_annotation.assert_not_called()

    def test_delete_missing(self, client, mock_store):
        mock_store.delete_annotation.return_value = False
        response = client.delete("/api/v1/annotations/ann-1", headers=_auth())
        assert response.status_code == 404


class TestExportEndpoint:
    def test_json(self, client):
        response = client.get(f"/api/v1/documents/{DOCUMENT_ID}/annotations/export", headers=_auth())
        assert response.status_code == 200
        assert "attachment" in response.headers["content-disposition"]
        data = json.loads(response.text)
        assert data["document_id"] == DOCUMENT_ID
        assert data["count"] == 1

    def test_csv(self, client):
        response = client.get(f"/api/v1/documents/{DOCUMENT_ID}/annotations/export?format=csv", headers=_auth())
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text.splitlines()[0].startswith("id,page_number")

    def test_type_filter(self, client, mock_store):
        mock_store.list_annotations.return_value = [
            make_annotation_row(id="h1"),
            make_annotation_row(id="n1", annotation_type="note", content="Check"),
            make_annotation_row(id="s1", annotation_type="stamp", properties={"stamp_type": "approved"}),
        ]
        response = client.get(
            f"/api/v1/documents/{DOCUMENT_ID}/annotations/export"
            "?annotation_types=note&annotation_types=stamp",
            headers=_auth(),
        )
        assert response.status_code == 200
        data = json.loads(response.text)
        assert data["count"] == 2
        assert sorted(a["id"] for a in data["annotations"]) == ["n1", "s1"]

    def test_unknown_type_filter(self, client):
        response = client.get(
            f"/api/v1/documents/{DOCUMENT_ID}/annotations/export?annotation_types=circle", headers=_auth()
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("fmt", ["pdf", "xml"])
    def test_unsupported_format(self, client, fmt):
        response = client.get(
            f"/api/v1/documents/{DOCUMENT_ID}/annotations/export?format={fmt}", headers=_auth()
        )
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Comments and shares
# ---------------------------------------------------------------------------

class TestCommentEndpoints:
    def test_list_threaded(self, client, mock_store):
        mock_store.list_comments.return_value = [
            _comment_row(),
            _comment_row(id="c2", parent_comment_id="c1", created_at="2024-03-01T11:00:00+00:00"),
        ]
        response = client.get("/api/v1/annotations/ann-1/comments?threaded=true", headers=_auth())
        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["replies"][0]["id"] == "c2"

    def test_create(self, client, mock_store):
        response = client.post(
            "/api/v1/annotations/ann-1/comments", json={"content": "  Agreed  "}, headers=_auth()
        )
        assert response.status_code == 201
        mock_store.create_comment.assert_called_once_with("ann-1", OWNER_ID, "Agreed", None)

    def test_viewer_cannot_comment(self, client, mock_store):
        mock_store.get_permission.return_value = "view"
        response = client.post("/api/v1/annotations/ann-1/comments", json={"content": "x"}, headers=_auth())
        assert response.status_code == 403

    def test_parent_must_match_annotation(self, client, mock_store):
        mock_store.get_comment.return_value = _comment_row(annotation_id="ann-2")
        response = client.post(
            "/api/v1/annotations/ann-1/comments",
            json={"content": "reply", "parent_comment_id": "c1"},
            headers=_auth(),
        )
        assert response.status_code == 400

    def test_delete_by_stranger_forbidden(self, client, mock_store):
        mock_store.get_permission.return_value = "comment"
        response = client.delete("/api/v1/comments/c1", headers=_auth(OTHER_USER_ID, "colleague@example.com"))
        assert response.status_code == 403

    def test_delete_by_author(self, client, mock_store):
        response = client.delete("/api/v1/comments/c1", headers=_auth())
        assert response.status_code == 200
        mock_store.delete_comment.assert_called_once_with("c1")


class TestShareEndpoints:
    def test_list(self, client):
        response = client.get("/api/v1/annotations/ann-1/shares", headers=_auth())
        assert response.status_code == 200
        assert response.json()[0]["shared_with_user_id"] == OTHER_USER_ID

    def test_create(self, client, mock_store):
        response = client.post(
            "/api/v1/annotations/ann-1/shares",
            json={"email": "colleague@example.com", "permission_level": "comment"},
            headers=_auth(),
        )
        assert response.status_code == 201
        mock_store.create_share.assert_called_once_with("ann-1", OTHER_USER_ID, "comment", OWNER_ID)

    def test_only_owner_shares(self, client, mock_store):
        mock_store.get_permission.return_value = "edit"
        response = client.post(
            "/api/v1/annotations/ann-1/shares", json={"email": "colleague@example.com"}, headers=_auth()
        )
        assert response.status_code == 403

    def test_unknown_email(self, client, mock_store):
        mock_store.find_user_by_email.return_value = None
        response = client.post(
            "/api/v1/annotations/ann-1/shares", json={"email": "nobody@example.com"}, headers=_auth()
        )
        assert response.status_code == 404

    def test_self_share_rejected(self, client, mock_store):
        mock_store.find_user_by_email.return_value = {"id": OWNER_ID, "email": "owner@example.com"}
        response = client.post(
            "/api/v1/annotations/ann-1/shares", json={"email": "owner@example.com"}, headers=_auth()
        )
        assert response.status_code == 400

    def test_bad_permission_level(self, client):
        response = client.post(
            "/api/v1/annotations/ann-1/shares",
            json={"email": "colleague@example.com", "permission_level": "admin"},
            headers=_auth(),
        )
        assert response.status_code == 422

    def test_collaborator_can_leave(self, client, mock_store):
        mock_store.get_permission.return_value = "view"
        response = client.delete("/api/v1/shares/s1", headers=_auth(OTHER_USER_ID, "colleague@example.com"))
        assert response.status_code == 200
        mock_store.delete_share.assert_called_once_with("s1")


# ---------------------------------------------------------------------------
# Status and usage
# ---------------------------------------------------------------------------

class TestStatusAndUsage:
    def test_document_status(self, client, mock_store):
        mock_store.get_document_status.return_value = {
            "document_id": DOCUMENT_ID, "status": "processing", "progress": 40,
            "message": "Extracting text", "error": None,
        }
        response = client.get(f"/api/v1/documents/{DOCUMENT_ID}/status", headers=_auth())
        assert response.status_code == 200
        assert response.json()["progress"] == 40

    def test_document_status_missing(self, client, mock_store):
        mock_store.get_document_status.return_value = None
        response = client.get(f"/api/v1/documents/{DOCUMENT_ID}/status", headers=_auth())
        assert response.status_code == 404

    def test_usage_overview(self, client):
        response = client.get("/api/v1/usage", headers=_auth())
        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "free"
        assert data["ai_query"]["limit"] == 10

    def test_check_usage(self, client, mock_store):
        mock_store.get_monthly_usage.return_value = 8
        response = client.get("/api/v1/usage/ai_query", headers=_auth())
        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["remaining"] == 2
        assert data["percentage"] == 80.0

    def test_unknown_resource(self, client):
        response = client.get("/api/v1/usage/annotations", headers=_auth())
        assert response.status_code == 404

    def test_record_usage(self, client, mock_store):
        response = client.post(
            "/api/v1/usage/document_upload/record", json={"resource_id": "doc-9"}, headers=_auth()
        )
        assert response.status_code == 200
        mock_store.increment_usage.assert_called_once_with(OWNER_ID, "document_upload", "doc-9", {})

    def test_record_usage_over_limit(self, client, mock_store):
        mock_store.get_monthly_usage.return_value = 1
        response = client.post("/api/v1/usage/document_upload/record", json={}, headers=_auth())
        assert response.status_code == 429
        mock_store.increment_usage.assert_not_called()

    def test_record_usage_reports_count_after_recording(self, client, mock_store):
        mock_store.get_monthly_usage.side_effect = lambda *args: mock_store.increment_usage.call_count
        response = client.post("/api/v1/usage/ai_query/record", json={}, headers=_auth())
        assert response.status_code == 200
        data = response.json()
        assert data["current"] == 1
        assert data["remaining"] == 9

    def test_billing_alerts(self, client, mock_store):
        mock_store.list_billing_alerts.return_value = [{
            "id": "alert-1", "user_id": OWNER_ID, "alert_type": "usage_limit_warning",
            "resource_type": "ai_query", "threshold_percentage": 80, "is_read": False,
            "created_at": "2024-03-20T09:00:00+00:00",
        }]
        response = client.get("/api/v1/usage/alerts?unread_only=true", headers=_auth())
        assert response.status_code == 200
        assert response.json()[0]["alert_type"] == "usage_limit_warning"
        mock_store.list_billing_alerts.assert_called_once_with(OWNER_ID, unread_only=True)

    def test_update_document_status(self, client, mock_store):
        mock_store.get_document_status.return_value = {
            "document_id": DOCUMENT_ID, "status": "processing", "progress": 60,
            "message": "Running OCR", "error": None,
        }
        response = client.put(
            f"/api/v1/documents/{DOCUMENT_ID}/status",
            json={"status": "processing", "progress": 60, "message": "Running OCR"},
            headers=_auth(),
        )
        assert response.status_code == 200
        assert response.json()["progress"] == 60
        mock_store.update_document_status.assert_called_once_with(
            DOCUMENT_ID, "processing", 60.0, "Running OCR", None
        )

    def test_update_status_of_someone_elses_document(self, client, mock_store):
        response = client.put(
            f"/api/v1/documents/{DOCUMENT_ID}/status",
            json={"status": "completed"},
            headers=_auth(OTHER_USER_ID, "other@example.com"),
        )
        assert response.status_code == 404
        mock_store.update_document_status.assert_not_called()

    def test_update_status_rejects_unknown_status(self, client, mock_store):
        response = client.put(
            f"/api/v1/documents/{DOCUMENT_ID}/status", json={"status": "queued"}, headers=_auth()
        )
        assert response.status_code == 422
