from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, cast

from backend.app.repositories.database import Database


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class DocumentRepository:
    """JSON documents addressed by a (collection, document id) pair."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, collection: str, document_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT body_json
                FROM documents
                WHERE collection = ? AND document_id = ?
                """,
                (collection, document_id),
            ).fetchone()

        if row is None:
            return None
        return _load_object_dict(row["body_json"])

    def merge(self, collection: str, document_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Upsert: top-level `fields` overwrite, everything else already stored is kept."""
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT body_json
                FROM documents
                WHERE collection = ? AND document_id = ?
                """,
                (collection, document_id),
            ).fetchone()
            merged = _load_object_dict(row["body_json"]) if row is not None else {}
            merged.update(fields)
            conn.execute(
                """
                INSERT INTO documents (collection, document_id, body_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(collection, document_id) DO UPDATE SET
                    body_json = excluded.body_json,
                    updated_at = excluded.updated_at
                """,
                (
                    collection,
                    document_id,
                    json.dumps(merged, sort_keys=True, ensure_ascii=True),
                    now_iso,
                    now_iso,
                ),
            )
        return merged


def _load_object_dict(raw: object) -> dict[str, Any]:
    if not isinstance(raw, str):
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, dict):
        raw_dict = cast(dict[object, object], parsed)
        return {str(key): value for key, value in raw_dict.items()}
    return {}
