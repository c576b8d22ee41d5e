"""SQLite document table backing the local store."""

import json
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any


class Database:
    """SQLite database manager holding JSON documents keyed by path."""

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                data TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, doc_id)
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Reads
    # ========================================================================

    def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Get a document's fields, or None if absent."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
        row = cursor.fetchone()
        return json.loads(row["data"]) if row else None

    def list_documents(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """Get every (doc_id, fields) pair in a collection, in insertion order."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY rowid",
            (collection,),
        )
        return [(row["doc_id"], json.loads(row["data"])) for row in cursor.fetchall()]

    # ========================================================================
    # Writes
    # ========================================================================

    def put_document(self, collection: str, doc_id: str, data: dict[str, Any]):
        """Insert or replace a document."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO documents (collection, doc_id, data, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection, doc_id) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (collection, doc_id, json.dumps(data), datetime.now().isoformat()),
        )
        self.conn.commit()

    def delete_documents(self, keys: Iterable[tuple[str, str]]) -> int:
        """Delete (collection, doc_id) pairs in a single transaction."""
        with self.conn:
            cursor = self.conn.executemany(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                list(keys),
            )
        return cursor.rowcount
