"""SQLiteStore: local file-based checkpoint store, the default.

Schema:
  checkpoints  one row per session. ``archived = 0`` marks the active
               session for a branch; ledgers are stored as JSON columns so
               a resume is a single-row read.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone

from mergegate_store.base import BaseStore, StoreError
from mergegate_store.models import CheckpointRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
    session_id           TEXT PRIMARY KEY,
    branch               TEXT NOT NULL,
    phase                TEXT,
    last_completed_step  TEXT,
    iteration_count      INTEGER DEFAULT 0,
    state_json           TEXT DEFAULT '{}',
    comments_json        TEXT DEFAULT '[]',
    verdicts_json        TEXT DEFAULT '[]',
    created_at           TEXT,
    updated_at           TEXT,
    archived             INTEGER DEFAULT 0,
    archived_at          TEXT
);
CREATE INDEX IF NOT EXISTS idx_checkpoints_branch ON checkpoints (branch, archived);
"""


class SQLiteStore(BaseStore):
    """Stores checkpoints in a local SQLite database file.

    The database file path defaults to `.mergegate.db` in the current working
    directory. Configure via .mergegate.yml: `store_path: /path/to/mergegate.db`.
    """

    def __init__(self, db_path: str = ".mergegate.db"):
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def save(self, record: CheckpointRecord) -> None:
        try:
            # A new session on the branch retires any other active one.
            self._conn.execute(
                "UPDATE checkpoints SET archived=1, archived_at=? WHERE branch=? AND archived=0 AND session_id<>?",
                (datetime.now(timezone.utc).isoformat(), record.branch, record.session_id),
            )
            self._conn.execute(
                """
                INSERT INTO checkpoints
                  (session_id, branch, phase, last_completed_step, iteration_count,
                   state_json, comments_json, verdicts_json, created_at, updated_at, archived)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
                ON CONFLICT(session_id) DO UPDATE SET
                  phase=excluded.phase,
                  last_completed_step=excluded.last_completed_step,
                  iteration_count=excluded.iteration_count,
                  state_json=excluded.state_json,
                  comments_json=excluded.comments_json,
                  verdicts_json=excluded.verdicts_json,
                  updated_at=excluded.updated_at
                """,
                (
                    record.session_id,
                    record.branch,
                    record.phase,
                    record.last_completed_step,
                    record.iteration_count,
                    json.dumps(record.state),
                    json.dumps(record.comment_ledger),
                    json.dumps(record.verdict_ledger),
                    record.created_at,
                    record.updated_at,
                ),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StoreError(f"Could not save checkpoint for {record.branch}: {e}") from e

    def load(self, branch: str) -> CheckpointRecord | None:
        row = self._conn.execute(
            "SELECT * FROM checkpoints WHERE branch=? AND archived=0 ORDER BY updated_at DESC LIMIT 1",
            (branch,),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def archive(self, branch: str) -> None:
        self._conn.execute(
            "UPDATE checkpoints SET archived=1, archived_at=? WHERE branch=? AND archived=0",
            (datetime.now(timezone.utc).isoformat(), branch),
        )
        self._conn.commit()

    def list_archived(self, branch: str | None = None, limit: int | None = None) -> list[CheckpointRecord]:
        query = "SELECT * FROM checkpoints WHERE archived=1"
        params: list = []
        if branch is not None:
            query += " AND branch=?"
            params.append(branch)
        query += " ORDER BY archived_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [self._row_to_record(r) for r in self._conn.execute(query, params).fetchall()]

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> CheckpointRecord:
        return CheckpointRecord(
            branch=row["branch"],
            session_id=row["session_id"],
            phase=row["phase"] or "",
            last_completed_step=row["last_completed_step"] or "",
            iteration_count=row["iteration_count"] or 0,
            state=json.loads(row["state_json"] or "{}"),
            comment_ledger=json.loads(row["comments_json"] or "[]"),
            verdict_ledger=json.loads(row["verdicts_json"] or "[]"),
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
            archived_at=row["archived_at"] or "",
        )
