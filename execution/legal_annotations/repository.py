"""
Annotation Repository with PostgreSQL

Persistence for annotations, comments, shares, usage counters and document
processing status. Every operation runs through a retry-once helper that
reconnects on a stale connection and rolls back on error.

Visibility follows the sharing model: a user sees an annotation they own or
one that was shared with them.
"""

import os
import json
import logging
import uuid
from decimal import Decimal
from datetime import date, datetime
from typing import Optional
from dataclasses import dataclass
from contextlib import contextmanager

import psycopg2
import psycopg2.extras
import psycopg2.pool
from psycopg2.extras import RealDictCursor

from .models import POSITION_FIELDS, UPDATABLE_FIELDS

logger = logging.getLogger(__name__)


@dataclass
class RepositoryConfig:
    """Configuration for the annotation repository."""
    connection_string: Optional[str] = None
    # Connection pooling settings
    pool_min_connections: int = 1
    pool_max_connections: int = 10
    use_pooling: bool = True


SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TABLE IF NOT EXISTS profiles (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email VARCHAR(255) NOT NULL UNIQUE,
    full_name VARCHAR(255),
    subscription_tier VARCHAR(20) NOT NULL DEFAULT 'free'
        CHECK (subscription_tier IN ('free', 'premium', 'pro', 'enterprise')),
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS uploaded_documents (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID REFERENCES profiles(id) ON DELETE CASCADE NOT NULL,
    filename TEXT NOT NULL,
    processing_status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (processing_status IN ('pending', 'processing', 'completed', 'failed')),
    processing_progress NUMERIC DEFAULT 0,
    processing_message TEXT,
    error_message TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS pdf_annotations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    document_id UUID REFERENCES uploaded_documents(id) ON DELETE CASCADE NOT NULL,
    user_id UUID REFERENCES profiles(id) ON DELETE CASCADE NOT NULL,
    page_number INTEGER NOT NULL,
    annotation_type VARCHAR(20) NOT NULL
        CHECK (annotation_type IN ('highlight', 'note', 'drawing', 'text', 'stamp')),
    color VARCHAR(20) DEFAULT 'yellow'
        CHECK (color IN ('yellow', 'red', 'blue', 'green', 'purple', 'orange', 'pink', 'gray')),
    x NUMERIC NOT NULL,
    y NUMERIC NOT NULL,
    width NUMERIC NOT NULL,
    height NUMERIC NOT NULL,
    content TEXT,
    selected_text TEXT,
    properties JSONB DEFAULT '{}',
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW(),
    CONSTRAINT valid_position CHECK (x >= 0 AND y >= 0),
    CONSTRAINT valid_dimensions CHECK (width > 0 AND height > 0),
    CONSTRAINT valid_page CHECK (page_number > 0)
);
CREATE INDEX IF NOT EXISTS idx_pdf_annotations_document_id ON pdf_annotations(document_id);
CREATE INDEX IF NOT EXISTS idx_pdf_annotations_user_id ON pdf_annotations(user_id);
CREATE INDEX IF NOT EXISTS idx_pdf_annotations_page_number ON pdf_annotations(page_number);

CREATE TABLE IF NOT EXISTS annotation_comments (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    annotation_id UUID REFERENCES pdf_annotations(id) ON DELETE CASCADE NOT NULL,
    user_id UUID REFERENCES profiles(id) ON DELETE CASCADE NOT NULL,
    parent_comment_id UUID REFERENCES annotation_comments(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_annotation_comments_annotation_id ON annotation_comments(annotation_id);

CREATE TABLE IF NOT EXISTS annotation_shares (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    annotation_id UUID REFERENCES pdf_annotations(id) ON DELETE CASCADE NOT NULL,
    shared_with_user_id UUID REFERENCES profiles(id) ON DELETE CASCADE NOT NULL,
    permission_level TEXT NOT NULL DEFAULT 'view'
        CHECK (permission_level IN ('view', 'comment', 'edit')),
    shared_by_user_id UUID REFERENCES profiles(id) ON DELETE CASCADE NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE (annotation_id, shared_with_user_id)
);
CREATE INDEX IF NOT EXISTS idx_annotation_shares_shared_with ON annotation_shares(shared_with_user_id);

CREATE TABLE IF NOT EXISTS usage_tracking (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID REFERENCES profiles(id) ON DELETE CASCADE NOT NULL,
    resource_type VARCHAR(30) NOT NULL
        CHECK (resource_type IN ('ai_query', 'document_upload', 'document_download', 'custom_document')),
    resource_id UUID,
    usage_count INTEGER NOT NULL DEFAULT 1,
    usage_date DATE NOT NULL DEFAULT CURRENT_DATE,
    metadata JSONB DEFAULT '{}',
    created_at TIMESTAMPTZ DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_usage_tracking_user_date
    ON usage_tracking(user_id, resource_type, usage_date);

CREATE TABLE IF NOT EXISTS billing_alerts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID REFERENCES profiles(id) ON DELETE CASCADE NOT NULL,
    alert_type VARCHAR(40) NOT NULL,
    resource_type VARCHAR(30),
    threshold_percentage INTEGER,
    is_read BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_billing_alerts_user ON billing_alerts(user_id, created_at DESC);
"""

ANNOTATION_COLUMNS = (
    "id, document_id, user_id, page_number, annotation_type, color, "
    "x, y, width, height, content, selected_text, properties, created_at, updated_at"
)


def _serialize(row: Optional[dict]) -> Optional[dict]:
    """Convert a RealDictCursor row into plain JSON-friendly values."""
    if row is None:
        return None
    result = {}
    for key, value in dict(row).items():
        if isinstance(value, uuid.UUID):
            value = str(value)
        elif isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, (datetime, date)):
            value = value.isoformat()
        result[key] = value
    return result


class AnnotationRepository:
    """
    PostgreSQL storage for the annotation service.

    Usage:
        repo = AnnotationRepository()
        repo.connect()
        repo.initialize_schema()
        rows = repo.list_annotations(document_id, user_id)
    """

    def __init__(self, config: Optional[RepositoryConfig] = None):
        """
        Initialize repository.

        Args:
            config: Optional configuration. Uses env vars if not provided.
        """
        self.config = config or RepositoryConfig()
        self._conn = None
        self._pool = None
        self._connection_string = (
            self.config.connection_string or
            os.getenv("POSTGRES_URL") or
            os.getenv("DATABASE_URL") or
            "postgresql://localhost:5432/legal_annotations"
        )

    def connect(self) -> None:
        """Establish database connection (with optional pooling)."""
        try:
            if self.config.use_pooling:
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self.config.pool_min_connections,
                    maxconn=self.config.pool_max_connections,
                    dsn=self._connection_string,
                    cursor_factory=RealDictCursor,
                )
                logger.info(
                    f"Connection pool initialized (min={self.config.pool_min_connections}, "
                    f"max={self.config.pool_max_connections})"
                )
            else:
                self._conn = psycopg2.connect(
                    self._connection_string,
                    cursor_factory=RealDictCursor
                )
                self._conn.autocommit = False
                logger.info("Connected to PostgreSQL (single connection)")
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise

    def _get_connection(self):
        """Get a database connection (from pool or single connection)."""
        if self._pool:
            return self._pool.getconn()

        # For single connection mode, only reconnect if connection is closed
        if self._conn is None or self._conn.closed:
            if self._conn is not None:
                logger.warning("Connection closed, reconnecting...")
            self.connect()
        return self._conn

    def _release_connection(self, conn):
        """Release a connection back to the pool (if pooling is enabled)."""
        if self._pool and conn:
            self._pool.putconn(conn)

    def _ensure_connection(self):
        """Ensure we have a connection (pool or single) and return it."""
        if not self._conn and not self._pool:
            self.connect()

        try:
            return self._get_connection()
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            logger.warning("Database error in _ensure_connection, retrying after reconnect...")
            self.connect()
            return self._get_connection()

    @contextmanager
    def get_connection(self):
        """
        Context manager for getting a database connection.

        Automatically releases connection back to pool when done.
        """
        conn = self._ensure_connection()
        try:
            yield conn
        finally:
            self._release_connection(conn)

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def _execute_with_retry(self, operation, label="db_operation"):
        """Execute a DB operation with one retry on stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.
        """
        for attempt in range(2):
            conn = self._ensure_connection()
            try:
                result = operation(conn)
                self._release_connection(conn)
                return result
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                self._release_connection(conn)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, reconnecting: {e}")
                    self.connect()
                    continue
                raise
            except Exception:
                self._safe_rollback(conn)
                self._release_connection(conn)
                raise

    def close(self) -> None:
        """Close database connection(s)."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")
        if self._conn:
            self._conn.close()
            self._conn = None

    def initialize_schema(self) -> None:
        """Create all tables and indexes (idempotent)."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
                conn.commit()

        try:
            self._execute_with_retry(_op, "initialize_schema")
            logger.info("Annotation schema initialized")
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise

    # =========================================================================
    # Profiles and documents
    # =========================================================================

    def create_profile(
        self,
        email: str,
        full_name: Optional[str] = None,
        subscription_tier: str = "free",
    ) -> dict:
        """Create a profile, or return the existing one for this e-mail."""
        sql = """
        INSERT INTO profiles (email, full_name, subscription_tier)
        VALUES (%s, %s, %s)
        ON CONFLICT (email) DO UPDATE SET full_name = COALESCE(EXCLUDED.full_name, profiles.full_name)
        RETURNING id, email, full_name, subscription_tier, created_at
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (email.strip().lower(), full_name, subscription_tier))
                row = cur.fetchone()
                conn.commit()
            return _serialize(row)

        return self._execute_with_retry(_op, "create_profile")

    def find_user_by_email(self, email: str) -> Optional[dict]:
        """Look up a profile by e-mail (case-insensitive)."""
        sql = "SELECT id, email, full_name, subscription_tier FROM profiles WHERE lower(email) = lower(%s)"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (email.strip(),))
                return _serialize(cur.fetchone())

        return self._execute_with_retry(_op, "find_user_by_email")

    def get_user_tier(self, user_id: str) -> Optional[str]:
        """Subscription tier of a profile, None if the profile is unknown."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute("SELECT subscription_tier FROM profiles WHERE id = %s::uuid", (user_id,))
                row = cur.fetchone()
            return row["subscription_tier"] if row else None

        return self._execute_with_retry(_op, "get_user_tier")

    def create_document(self, user_id: str, filename: str) -> dict:
        sql = """
        INSERT INTO uploaded_documents (user_id, filename)
        VALUES (%s::uuid, %s)
        RETURNING id, user_id, filename, processing_status, created_at
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (user_id, filename))
                row = cur.fetchone()
                conn.commit()
            return _serialize(row)

        return self._execute_with_retry(_op, "create_document")

    def get_document_owner(self, document_id: str) -> Optional[str]:
        """Owner of a document, None if it does not exist."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute("SELECT user_id FROM uploaded_documents WHERE id = %s::uuid", (document_id,))
                row = cur.fetchone()
            return str(row["user_id"]) if row else None

        return self._execute_with_retry(_op, "get_document_owner")

    def get_document_status(self, document_id: str, user_id: str) -> Optional[dict]:
        """Processing status of a document owned by ``user_id``."""
        sql = """
        SELECT id AS document_id, processing_status AS status,
               processing_progress AS progress, processing_message AS message,
               error_message AS error, updated_at
        FROM uploaded_documents
        WHERE id = %s::uuid AND user_id = %s::uuid
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id, user_id))
                return _serialize(cur.fetchone())

        return self._execute_with_retry(_op, "get_document_status")

    def update_document_status(
        self,
        document_id: str,
        status: str,
        progress: float = 0.0,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        sql = """
        UPDATE uploaded_documents
        SET processing_status = %s, processing_progress = %s,
            processing_message = %s, error_message = %s, updated_at = NOW()
        WHERE id = %s::uuid
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (status, progress, message, error, document_id))
                updated = cur.rowcount > 0
                conn.commit()
            return updated

        return self._execute_with_retry(_op, "update_document_status")

    # =========================================================================
    # Annotations
    # =========================================================================

    def list_annotations(
        self,
        document_id: str,
        user_id: str,
        page_number: Optional[int] = None,
    ) -> list[dict]:
        """Annotations on a document visible to ``user_id``, oldest first."""
        sql = f"""
        SELECT {ANNOTATION_COLUMNS}
        FROM pdf_annotations a
        WHERE a.document_id = %s::uuid
          AND (a.user_id = %s::uuid OR EXISTS (
                SELECT 1 FROM annotation_shares s
                WHERE s.annotation_id = a.id AND s.shared_with_user_id = %s::uuid))
        """
        params = [document_id, user_id, user_id]
        if page_number is not None:
            sql += " AND a.page_number = %s"
            params.append(page_number)
        sql += " ORDER BY a.created_at ASC"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return [_serialize(r) for r in cur.fetchall()]

        return self._execute_with_retry(_op, "list_annotations")

    def get_annotation(self, annotation_id: str) -> Optional[dict]:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {ANNOTATION_COLUMNS} FROM pdf_annotations WHERE id = %s::uuid",
                    (annotation_id,),
                )
                return _serialize(cur.fetchone())

        return self._execute_with_retry(_op, "get_annotation")

    def create_annotation(self, user_id: str, data: dict) -> dict:
        """Insert an annotation owned by ``user_id``."""
        sql = f"""
        INSERT INTO pdf_annotations
            (document_id, user_id, page_number, annotation_type, color,
             x, y, width, height, content, selected_text, properties)
        VALUES (%s::uuid, %s::uuid, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING {ANNOTATION_COLUMNS}
        """
        params = (
            data["document_id"], user_id, data["page_number"], data["annotation_type"],
            data.get("color") or "yellow",
            data["x"], data["y"], data["width"], data["height"],
            data.get("content"), data.get("selected_text"),
            psycopg2.extras.Json(data.get("properties") or {}),
        )

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
                conn.commit()
            return _serialize(row)

        return self._execute_with_retry(_op, "create_annotation")

    def update_annotation(self, annotation_id: str, updates: dict) -> Optional[dict]:
        """
        Apply a partial update. Permission checks happen in the caller.

        Returns:
            The updated row, or None if the annotation does not exist
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        if not updates:
            return self.get_annotation(annotation_id)

        assignments = []
        params = []
        for field_name in sorted(updates):
            value = updates[field_name]
            if field_name == "properties":
                value = psycopg2.extras.Json(value or {})
            elif field_name in POSITION_FIELDS:
                value = float(value)
            assignments.append(f"{field_name} = %s")
            params.append(value)
        params.append(annotation_id)

        sql = f"""
        UPDATE pdf_annotations SET {", ".join(assignments)}, updated_at = NOW()
        WHERE id = %s::uuid
        RETURNING {ANNOTATION_COLUMNS}
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
                conn.commit()
            return _serialize(row)

        return self._execute_with_retry(_op, "update_annotation")

    def delete_annotation(self, annotation_id: str) -> bool:
        """Delete an annotation; comments and shares cascade."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute("DELETE FROM pdf_annotations WHERE id = %s::uuid", (annotation_id,))
                deleted = cur.rowcount > 0
                conn.commit()
            return deleted

        return self._execute_with_retry(_op, "delete_annotation")

    def get_permission(self, annotation_id: str, user_id: str) -> Optional[str]:
        """
        Effective permission of ``user_id`` on an annotation.

        Returns:
            "owner", "edit", "comment", "view", or None
        """
        sql = """
        SELECT a.user_id AS owner_id, s.permission_level
        FROM pdf_annotations a
        LEFT JOIN annotation_shares s
          ON s.annotation_id = a.id AND s.shared_with_user_id = %s::uuid
        WHERE a.id = %s::uuid
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (user_id, annotation_id))
                row = cur.fetchone()
            if not row:
                return None
            if str(row["owner_id"]) == user_id:
                return "owner"
            return row["permission_level"]

        return self._execute_with_retry(_op, "get_permission")

    # =========================================================================
    # Comments
    # =========================================================================

    def list_comments(self, annotation_id: str) -> list[dict]:
        sql = """
        SELECT id, annotation_id, user_id, parent_comment_id, content, created_at, updated_at
        FROM annotation_comments
        WHERE annotation_id = %s::uuid
        ORDER BY created_at ASC
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (annotation_id,))
                return [_serialize(r) for r in cur.fetchall()]

        return self._execute_with_retry(_op, "list_comments")

    def get_comment(self, comment_id: str) -> Optional[dict]:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, annotation_id, user_id, parent_comment_id, content, created_at, updated_at "
                    "FROM annotation_comments WHERE id = %s::uuid",
                    (comment_id,),
                )
                return _serialize(cur.fetchone())

        return self._execute_with_retry(_op, "get_comment")

    def create_comment(
        self,
        annotation_id: str,
        user_id: str,
        content: str,
        parent_comment_id: Optional[str] = None,
    ) -> dict:
        sql = """
        INSERT INTO annotation_comments (annotation_id, user_id, content, parent_comment_id)
        VALUES (%s::uuid, %s::uuid, %s, %s::uuid)
        RETURNING id, annotation_id, user_id, parent_comment_id, content, created_at, updated_at
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (annotation_id, user_id, content, parent_comment_id))
                row = cur.fetchone()
                conn.commit()
            return _serialize(row)

        return self._execute_with_retry(_op, "create_comment")

    def delete_comment(self, comment_id: str) -> bool:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute("DELETE FROM annotation_comments WHERE id = %s::uuid", (comment_id,))
                deleted = cur.rowcount > 0
                conn.commit()
            return deleted

        return self._execute_with_retry(_op, "delete_comment")

    # =========================================================================
    # Shares
    # =========================================================================

    def list_shares(self, annotation_id: str) -> list[dict]:
        sql = """
        SELECT id, annotation_id, shared_with_user_id, permission_level, shared_by_user_id, created_at
        FROM annotation_shares
        WHERE annotation_id = %s::uuid
        ORDER BY created_at ASC
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (annotation_id,))
                return [_serialize(r) for r in cur.fetchall()]

        return self._execute_with_retry(_op, "list_shares")

    def get_share(self, share_id: str) -> Optional[dict]:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, annotation_id, shared_with_user_id, permission_level, "
                    "shared_by_user_id, created_at FROM annotation_shares WHERE id = %s::uuid",
                    (share_id,),
                )
                return _serialize(cur.fetchone())

        return self._execute_with_retry(_op, "get_share")

    def create_share(
        self,
        annotation_id: str,
        shared_with_user_id: str,
        permission_level: str,
        shared_by_user_id: str,
    ) -> dict:
        """Share an annotation. Re-sharing with the same user updates the level."""
        sql = """
        INSERT INTO annotation_shares
            (annotation_id, shared_with_user_id, permission_level, shared_by_user_id)
        VALUES (%s::uuid, %s::uuid, %s, %s::uuid)
        ON CONFLICT (annotation_id, shared_with_user_id)
        DO UPDATE SET permission_level = EXCLUDED.permission_level
        RETURNING id, annotation_id, shared_with_user_id, permission_level, shared_by_user_id, created_at
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (annotation_id, shared_with_user_id, permission_level, shared_by_user_id))
                row = cur.fetchone()
                conn.commit()
            return _serialize(row)

        return self._execute_with_retry(_op, "create_share")

    def delete_share(self, share_id: str) -> bool:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute("DELETE FROM annotation_shares WHERE id = %s::uuid", (share_id,))
                deleted = cur.rowcount > 0
                conn.commit()
            return deleted

        return self._execute_with_retry(_op, "delete_share")

    # =========================================================================
    # Usage tracking
    # =========================================================================

    def get_monthly_usage(self, user_id: str, resource_type: str, month: date) -> int:
        """Sum of usage for the calendar month starting at ``month``."""
        sql = """
        SELECT COALESCE(SUM(usage_count), 0) AS total
        FROM usage_tracking
        WHERE user_id = %s::uuid AND resource_type = %s
          AND usage_date >= %s AND usage_date < (%s::date + INTERVAL '1 month')
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (user_id, resource_type, month, month))
                row = cur.fetchone()
            return int(row["total"]) if row else 0

        return self._execute_with_retry(_op, "get_monthly_usage")

    def increment_usage(
        self,
        user_id: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        sql = """
        INSERT INTO usage_tracking (user_id, resource_type, resource_id, metadata)
        VALUES (%s::uuid, %s, %s::uuid, %s)
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (user_id, resource_type, resource_id, json.dumps(metadata or {})))
                conn.commit()

        self._execute_with_retry(_op, "increment_usage")

    def create_billing_alert(
        self,
        user_id: str,
        alert_type: str,
        resource_type: str,
        threshold_percentage: int,
    ) -> None:
        sql = """
        INSERT INTO billing_alerts (user_id, alert_type, resource_type, threshold_percentage)
        VALUES (%s::uuid, %s, %s, %s)
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (user_id, alert_type, resource_type, threshold_percentage))
                conn.commit()

        self._execute_with_retry(_op, "create_billing_alert")

    def list_billing_alerts(self, user_id: str, unread_only: bool = False) -> list[dict]:
        sql = """
        SELECT id, user_id, alert_type, resource_type, threshold_percentage, is_read, created_at
        FROM billing_alerts WHERE user_id = %s::uuid
        """
        if unread_only:
            sql += " AND is_read = FALSE"
        sql += " ORDER BY created_at DESC"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (user_id,))
                return [_serialize(r) for r in cur.fetchall()]

        return self._execute_with_retry(_op, "list_billing_alerts")
