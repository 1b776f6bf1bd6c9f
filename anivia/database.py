"""
Postgres backing store for synchronized posts.

The posts table is keyed by a serial ``id``; Notion rows are found by
``notion_page_id`` and local rows by ``slug``. Writes replace every
mutable column in one statement. The schema is in ``create_table.sql``.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from .errors import DatabaseError
from .models import ExistingRecord

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_notion_sync_time"

MUTABLE_COLUMNS = (
    "notion_page_id",
    "slug",
    "title",
    "content",
    "created_time",
    "last_edited_time",
    "published",
    "draft",
    "archived",
    "categories",
    "tags",
    "excerpt",
    "featured_img",
    "gallery_imgs",
    "properties",
    "post_origin",
    "post_type",
)

_LOOKUP_COLUMNS = ("id", "notion_page_id", "slug", "last_edited_time", "title")


def _adapt(column: str, value: Any) -> Any:
    return Json(value) if column == "properties" else value


class PostStore:
    """Reads and writes rows of the posts table."""

    def __init__(self, dsn: str, table: str = "sonder_post", config_table: str = "anivia_config"):
        self.dsn = dsn
        self.table = sql.Identifier(table)
        self.config_table = sql.Identifier(config_table)
        self._conn = None

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """
        Yield an open connection; commit on success, roll back on error.

        Raises:
            DatabaseError: For any psycopg2 failure.
        """
        try:
            if self._conn is None or self._conn.closed:
                self._conn = psycopg2.connect(self.dsn)
            conn = self._conn
        except psycopg2.Error as e:
            raise DatabaseError(f"Could not connect to the database: {e}", details=e) from e

        try:
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise DatabaseError(f"Database operation failed: {e}", details=e) from e
        except Exception:
            conn.rollback()
            raise

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._conn = None

    def _find_one(self, column: str, value: str) -> Optional[ExistingRecord]:
        query = sql.SQL("SELECT {} FROM {} WHERE {} = %s ORDER BY id LIMIT 1").format(
            sql.SQL(", ").join(map(sql.Identifier, _LOOKUP_COLUMNS)),
            self.table,
            sql.Identifier(column),
        )
        with self.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, (value,))
                row = cur.fetchone()
        return ExistingRecord(**row) if row else None

    def find_by_notion_id(self, notion_page_id: str) -> Optional[ExistingRecord]:
        return self._find_one("notion_page_id", notion_page_id)

    def find_by_slug(self, slug: str) -> Optional[ExistingRecord]:
        return self._find_one("slug", slug)

    def insert(self, record: dict[str, Any]) -> int:
        """
        Insert a post.

        Returns:
            The server-assigned row id.
        """
        columns = [column for column in MUTABLE_COLUMNS if column in record]
        query = sql.SQL("INSERT INTO {} ({}, created_at, updated_at) VALUES ({}, now(), now()) RETURNING id").format(
            self.table,
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(sql.Placeholder() * len(columns)),
        )
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, [_adapt(column, record[column]) for column in columns])
                row_id = cur.fetchone()[0]
        logger.debug("Inserted row %s", row_id)
        return row_id

    def update(self, row_id: int, record: dict[str, Any]) -> None:
        """Replace every mutable column of a row and stamp ``updated_at``."""
        columns = [column for column in MUTABLE_COLUMNS if column in record]
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in columns
        )
        query = sql.SQL("UPDATE {} SET {}, updated_at = now() WHERE id = %s").format(self.table, assignments)
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, [_adapt(column, record[column]) for column in columns] + [row_id])
                if cur.rowcount == 0:
                    raise DatabaseError(f"Row {row_id} no longer exists")
        logger.debug("Updated row %s", row_id)

    def list_all(self) -> list[dict[str, Any]]:
        """All rows, newest edit first."""
        query = sql.SQL("SELECT * FROM {} ORDER BY last_edited_time DESC NULLS LAST, id").format(self.table)
        with self.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query)
                return [dict(row) for row in cur.fetchall()]

    def count(self) -> int:
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql.SQL("SELECT count(*) FROM {}").format(self.table))
                return cur.fetchone()[0]

    def verify(self) -> list[tuple[str, str]]:
        """
        Check the connection and both tables.

        Returns:
            List of (check, detail) pairs that passed.

        Raises:
            DatabaseError: On the first failing check.
        """
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT version()")
                version = cur.fetchone()[0]
                cur.execute(sql.SQL("SELECT count(*) FROM {}").format(self.config_table))
        checks = [("Connection", version.split(",")[0])]
        checks.append(("Posts table", f"{self.count()} row(s)"))
        checks.append(("Config table", "readable"))
        return checks

    def touch_last_sync_time(self) -> None:
        """
        Record the time of the latest Notion sync.

        Doubles as a keep-alive write for hosted databases that pause when idle.
        """
        query = sql.SQL(
            """
            INSERT INTO {} (config_key, config_value, updated_at)
            VALUES (%s, now()::text, now())
            ON CONFLICT (config_key) DO UPDATE
                SET config_value = EXCLUDED.config_value,
                    updated_at = EXCLUDED.updated_at
            """
        ).format(self.config_table)
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (LAST_SYNC_KEY,))
        logger.debug("Updated %s", LAST_SYNC_KEY)
