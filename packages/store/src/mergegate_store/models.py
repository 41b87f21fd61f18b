"""Checkpoint data model.

Decoupled from mergegate_core so the store layer can be used independently
and mergegate_core has no knowledge of persistence concerns.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field


@dataclass
class CheckpointRecord:
    """One review session's persisted state, keyed by branch.

    Created by the CLI layer from a core Checkpoint; ``state``,
    ``comment_ledger`` and ``verdict_ledger`` are opaque JSON-compatible
    structures owned by mergegate_core.
    """

    branch: str
    session_id: str
    phase: str
    last_completed_step: str
    iteration_count: int
    state: dict = field(default_factory=dict)
    comment_ledger: list[dict] = field(default_factory=list)
    verdict_ledger: list[dict] = field(default_factory=list)
    created_at: str = ""  # ISO-8601 UTC timestamp
    updated_at: str = ""
    archived_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> CheckpointRecord:
        return cls(
            branch=d.get("branch", ""),
            session_id=d.get("session_id", ""),
            phase=d.get("phase", ""),
            last_completed_step=d.get("last_completed_step", ""),
            iteration_count=d.get("iteration_count", 0),
            state=d.get("state") or {},
            comment_ledger=d.get("comment_ledger") or [],
            verdict_ledger=d.get("verdict_ledger") or [],
            created_at=d.get("created_at", ""),
            updated_at=d.get("updated_at", ""),
            archived_at=d.get("archived_at", ""),
        )
