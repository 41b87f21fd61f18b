"""In-process store: used by tests and by `mergegate run --no-persist`.

Checkpoints live only as long as the process, so an interrupted session
cannot be resumed.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone

from mergegate_store.base import BaseStore
from mergegate_store.models import CheckpointRecord


class MemoryStore(BaseStore):
    def __init__(self):
        self._active: dict[str, CheckpointRecord] = {}
        self._archived: list[CheckpointRecord] = []

    def save(self, record: CheckpointRecord) -> None:
        current = self._active.get(record.branch)
        if current is not None and current.session_id != record.session_id:
            self.archive(record.branch)
        self._active[record.branch] = copy.deepcopy(record)

    def load(self, branch: str) -> CheckpointRecord | None:
        record = self._active.get(branch)
        return copy.deepcopy(record) if record is not None else None

    def archive(self, branch: str) -> None:
        record = self._active.pop(branch, None)
        if record is not None:
            record.archived_at = datetime.now(timezone.utc).isoformat()
            self._archived.append(record)

    def list_archived(self, branch: str | None = None, limit: int | None = None) -> list[CheckpointRecord]:
        records = [r for r in reversed(self._archived) if branch is None or r.branch == branch]
        return copy.deepcopy(records[:limit] if limit is not None else records)
