"""Bridge between core checkpoints and store records.

mergegate_core has no store knowledge and mergegate_store has no core
knowledge; the CLI owns the mapping in both directions.
"""

from __future__ import annotations

from mergegate_core.models import Checkpoint
from mergegate_core.orchestrator import Checkpoints
from mergegate_store.base import BaseStore
from mergegate_store.models import CheckpointRecord


def checkpoint_to_record(checkpoint: Checkpoint) -> CheckpointRecord:
    return CheckpointRecord(
        branch=checkpoint.branch,
        session_id=checkpoint.session_id,
        phase=checkpoint.state.get("phase", ""),
        last_completed_step=checkpoint.last_completed_step,
        iteration_count=checkpoint.iteration_count,
        state=dict(checkpoint.state),
        comment_ledger=list(checkpoint.comment_ledger),
        verdict_ledger=list(checkpoint.verdict_ledger),
        created_at=checkpoint.created_at,
        updated_at=checkpoint.updated_at,
    )


def record_to_checkpoint(record: CheckpointRecord) -> Checkpoint:
    return Checkpoint(
        session_id=record.session_id,
        branch=record.branch,
        last_completed_step=record.last_completed_step,
        iteration_count=record.iteration_count,
        state=dict(record.state),
        comment_ledger=list(record.comment_ledger),
        verdict_ledger=list(record.verdict_ledger),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class StoreCheckpoints(Checkpoints):
    def __init__(self, store: BaseStore):
        self.store = store

    def save(self, checkpoint: Checkpoint) -> None:
        self.store.save(checkpoint_to_record(checkpoint))

    def load(self, branch: str) -> Checkpoint | None:
        record = self.store.load(branch)
        return record_to_checkpoint(record) if record is not None else None

    def archive(self, branch: str) -> None:
        self.store.archive(branch)
