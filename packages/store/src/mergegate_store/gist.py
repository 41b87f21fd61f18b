"""GistStore: zero-infrastructure, team-shared checkpoints via GitHub Gist.

Lets a session started in CI be inspected (``mergegate status``) or resumed
from a developer machine, with Gist ACLs as the access control.

Data format: a single JSON file named `mergegate_checkpoints.json` inside the
Gist, holding ``{"active": {branch: record}, "archived": [record, ...]}``.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone

from github import Github, GithubException

from mergegate_store.base import BaseStore, StoreError
from mergegate_store.models import CheckpointRecord

logger = logging.getLogger(__name__)

_GIST_FILENAME = "mergegate_checkpoints.json"


class GistStore(BaseStore):
    """Stores checkpoints in a GitHub Gist.

    Every save() rewrites the Gist file, so this backend suits the low write
    rate of one checkpoint per orchestration step. The Gist ID is configured
    in .mergegate.yml under `gist_id`.
    """

    def __init__(self, gist_id: str, token: str):
        self._gist_id = gist_id
        self._gh = Github(token)

    def _get_gist(self):
        return self._gh.get_gist(self._gist_id)

    def _read(self, gist) -> dict:
        file_obj = gist.files.get(_GIST_FILENAME)
        if file_obj is None:
            return {"active": {}, "archived": []}
        try:
            data = json.loads(file_obj.content) or {}
        except (json.JSONDecodeError, AttributeError):
            logger.warning("Gist %s holds unreadable checkpoint data; starting fresh", self._gist_id)
            data = {}
        data.setdefault("active", {})
        data.setdefault("archived", [])
        return data

    def _write(self, gist, data: dict) -> None:
        gist.edit(files={_GIST_FILENAME: {"content": json.dumps(data, indent=2)}})

    def _update(self, mutate) -> None:
        try:
            gist = self._get_gist()
            data = self._read(gist)
            mutate(data)
            self._write(gist, data)
        except GithubException as e:
            msg = f"Could not write checkpoint to Gist {self._gist_id} ({type(e).__name__}: {e})"
            if os.environ.get("GITHUB_ACTIONS") == "true":
                msg += (
                    ". The built-in GITHUB_TOKEN does not have Gist permissions; "
                    "use a PAT with 'gist' scope stored as a repository secret."
                )
            raise StoreError(msg) from e

    @staticmethod
    def _retire(data: dict, branch: str) -> None:
        record = data["active"].pop(branch, None)
        if record is not None:
            record["archived_at"] = datetime.now(timezone.utc).isoformat()
            data["archived"].append(record)

    def save(self, record: CheckpointRecord) -> None:
        def mutate(data: dict) -> None:
            current = data["active"].get(record.branch)
            if current is not None and current.get("session_id") != record.session_id:
                self._retire(data, record.branch)
            data["active"][record.branch] = record.to_dict()

        self._update(mutate)

    def load(self, branch: str) -> CheckpointRecord | None:
        try:
            data = self._read(self._get_gist())
        except GithubException as e:
            raise StoreError(f"Could not read checkpoints from Gist {self._gist_id}: {e}") from e
        entry = data["active"].get(branch)
        return CheckpointRecord.from_dict(entry) if entry else None

    def archive(self, branch: str) -> None:
        self._update(lambda data: self._retire(data, branch))

    def list_archived(self, branch: str | None = None, limit: int | None = None) -> list[CheckpointRecord]:
        try:
            data = self._read(self._get_gist())
        except GithubException as e:
            logger.warning("GistStore.list_archived() failed: %s", e)
            return []
        records = [CheckpointRecord.from_dict(d) for d in reversed(data["archived"])]
        if branch is not None:
            records = [r for r in records if r.branch == branch]
        return records[:limit] if limit is not None else records
