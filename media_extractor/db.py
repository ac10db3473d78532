"""Database operations for the file processing queue."""
import psycopg2
from psycopg2.extras import RealDictCursor
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any
from contextlib import contextmanager

from media_extractor import settings
from media_extractor.logging_conf import logger
from media_extractor.queue.models import QueueItem, Status

QUEUE_TABLE = "file_processing_queue"
WEBHOOK_TABLES = {
    "umbler": "umbler_webhooks",
    "email": "email_webhooks",
}


class Database:
    """Database connection and queue operations."""

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or settings.DATABASE_URL
        self._conn = None

    @property
    def conn(self):
        """Get or create database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg2.connect(self.dsn)
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            self._conn = None

    @contextmanager
    def cursor(self):
        """Context manager for cursor with auto-commit/rollback."""
        cur = self.conn.cursor(cursor_factory=RealDictCursor)
        try:
            yield cur
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            cur.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_queued(self, limit: int, now: datetime) -> List[QueueItem]:
        """Fetch a bounded batch of eligible queued items, newest first."""
        with self.cursor() as cur:
            cur.execute(f"""
                SELECT *
                FROM {QUEUE_TABLE}
                WHERE status = %s
                  AND (next_retry_at IS NULL OR next_retry_at <= %s)
                ORDER BY COALESCE(received_at, created_at) DESC
                LIMIT %s
            """, (Status.QUEUED, now, limit))
            return [QueueItem.from_row(row) for row in cur.fetchall()]

    def get_item(self, item_id: str) -> Optional[QueueItem]:
        with self.cursor() as cur:
            cur.execute(f"SELECT * FROM {QUEUE_TABLE} WHERE id = %s", (item_id,))
            row = cur.fetchone()
            return QueueItem.from_row(row) if row else None

    def get_webhook(self, source: str, webhook_id: str) -> Optional[Dict[str, Any]]:
        """Load the raw payload of the webhook an item was enqueued from."""
        table = WEBHOOK_TABLES.get(source or "umbler", WEBHOOK_TABLES["umbler"])
        with self.cursor() as cur:
            cur.execute(f"SELECT payload FROM {table} WHERE id = %s", (webhook_id,))
            row = cur.fetchone()
            return row["payload"] if row else None

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim(self, item_id: str, now: datetime) -> Optional[QueueItem]:
        """
        Atomically move an item from queued to processing.

        Returns the claimed item, or None when another worker changed the
        status first (lost race).
        """
        with self.cursor() as cur:
            cur.execute(f"""
                UPDATE {QUEUE_TABLE}
                SET status = %s, last_attempt_at = %s
                WHERE id = %s AND status = %s
                RETURNING *
            """, (Status.PROCESSING, now, item_id, Status.QUEUED))
            row = cur.fetchone()
            return QueueItem.from_row(row) if row else None

    def reset_stuck_items(self, minutes: int, now: datetime) -> int:
        """Requeue items left in processing by a worker that never finished."""
        with self.cursor() as cur:
            cur.execute(f"""
                UPDATE {QUEUE_TABLE}
                SET status = %s
                WHERE status = %s
                  AND COALESCE(last_attempt_at, created_at) < %s
                RETURNING id
            """, (Status.QUEUED, Status.PROCESSING, now - timedelta(minutes=minutes)))
            count = len(cur.fetchall())
        if count > 0:
            logger.warning(f"Reset {count} items stuck in processing")
        return count

    # ------------------------------------------------------------------
    # Writes by the claim holder
    #
    # Every write is fenced on (status = processing, last_attempt_at = claim
    # time). A worker whose claim was reset and re-taken by another worker
    # updates nothing and gets False back.
    # ------------------------------------------------------------------

    def _fenced_update(self, item_id: str, claimed_at: datetime, assignments: str,
                       params: tuple, action: str) -> bool:
        with self.cursor() as cur:
            cur.execute(f"""
                UPDATE {QUEUE_TABLE}
                SET {assignments}
                WHERE id = %s AND status = %s AND last_attempt_at = %s
                RETURNING id
            """, params + (item_id, Status.PROCESSING, claimed_at))
            written = cur.fetchone() is not None
        if not written:
            logger.warning(f"Lost claim on {item_id}, {action} not recorded")
        return written

    def update_media_url(self, item_id: str, media_url: str, claimed_at: datetime) -> bool:
        return self._fenced_update(item_id, claimed_at, "media_url = %s", (media_url,), "media URL")

    def update_media_type(self, item_id: str, media_type: str, mime_type: str,
                          claimed_at: datetime) -> bool:
        """Persist a type corrected by magic-byte sniffing."""
        return self._fenced_update(
            item_id, claimed_at,
            "media_type = %s, media_mime_type = %s, media_type_detected = TRUE",
            (media_type, mime_type),
            "type correction",
        )

    def mark_completed(self, item_id: str, status: str, extracted_text: Optional[str],
                       processing_method: str, stored_url: Optional[str],
                       stored_path: Optional[str], now: datetime, claimed_at: datetime) -> bool:
        """Record a successful attempt (done or needs_review)."""
        written = self._fenced_update(
            item_id, claimed_at,
            """status = %s,
                    extracted_text = %s,
                    processing_method = %s,
                    stored_url = %s,
                    stored_path = %s,
                    processed_at = %s,
                    next_retry_at = NULL,
                    error = NULL""",
            (status, extracted_text, processing_method, stored_url, stored_path, now),
            "result",
        )
        if written:
            logger.info(f"Completed {item_id}: {status} via {processing_method}")
        return written

    def mark_failed(self, item_id: str, error: str, attempts: int, status: str,
                    next_retry_at: Optional[datetime], now: datetime, claimed_at: datetime) -> bool:
        """Record a failed attempt with its retry decision."""
        written = self._fenced_update(
            item_id, claimed_at,
            """status = %s,
                    attempts = %s,
                    error = %s,
                    last_attempt_at = %s,
                    next_retry_at = %s""",
            (status, attempts, error, now, next_retry_at),
            "failure",
        )
        if written:
            logger.warning(f"Failed: {item_id} ({status}, attempt {attempts}) - {error}")
        return written

    def mark_unresolvable(self, item_id: str, error: str, now: datetime, claimed_at: datetime) -> bool:
        """Permanent error without consuming retry attempts."""
        written = self._fenced_update(
            item_id, claimed_at,
            """status = %s,
                    error = %s,
                    last_attempt_at = %s,
                    next_retry_at = NULL""",
            (Status.ERROR, error, now),
            "unresolvable source",
        )
        if written:
            logger.warning(f"Unresolvable source: {item_id} - {error}")
        return written

    # ------------------------------------------------------------------
    # Operator actions
    #
    # Both refuse items a worker currently holds (status = processing).
    # ------------------------------------------------------------------

    def reset_for_retry(self, item_id: str) -> bool:
        """Put an item back in the queue with a fresh retry budget."""
        with self.cursor() as cur:
            cur.execute(f"""
                UPDATE {QUEUE_TABLE}
                SET status = %s,
                    attempts = 0,
                    error = NULL,
                    next_retry_at = NULL,
                    last_attempt_at = NULL
                WHERE id = %s AND status <> %s
                RETURNING id
            """, (Status.QUEUED, item_id, Status.PROCESSING))
            return cur.fetchone() is not None

    def requeue(self, item_id: str) -> bool:
        """Make an item immediately eligible without touching its attempts."""
        with self.cursor() as cur:
            cur.execute(f"""
                UPDATE {QUEUE_TABLE}
                SET status = %s, next_retry_at = NULL
                WHERE id = %s AND status <> %s
                RETURNING id
            """, (Status.QUEUED, item_id, Status.PROCESSING))
            return cur.fetchone() is not None
