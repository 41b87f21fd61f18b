"""Data model shared by every orchestration component.

Comments and verdicts are immutable once created. The only mutable fact
about a comment is its classification, which lives in the Ledger and may
only move forward (see ledger.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from mergegate_core.errors import InvalidVerdictError


class CommentSource(str, Enum):
    LOCAL = "local"
    EXTERNAL = "external"


class Classification(str, Enum):
    UNCLASSIFIED = "unclassified"
    DISPUTED = "disputed"
    CONFIRMED = "confirmed"
    # Terminal classifications.
    FIXED = "fixed"  # defect already absent from the current diff
    STALE = "stale"  # referenced lines changed after the comment was posted
    DISMISSED = "dismissed"  # arbitration ruled the comment invalid
    ADDRESSED = "addressed"  # confirmed and fixed by a commit in this session

    @property
    def rank(self) -> int:
        return _CLASSIFICATION_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self.rank == _TERMINAL_RANK


_TERMINAL_RANK = 3
_CLASSIFICATION_RANK = {
    Classification.UNCLASSIFIED: 0,
    Classification.DISPUTED: 1,
    Classification.CONFIRMED: 2,
    Classification.FIXED: _TERMINAL_RANK,
    Classification.STALE: _TERMINAL_RANK,
    Classification.DISMISSED: _TERMINAL_RANK,
    Classification.ADDRESSED: _TERMINAL_RANK,
}


class VerdictOutcome(str, Enum):
    DISMISSED = "dismissed"
    CONFIRMED = "confirmed"
    ESCALATED = "escalated"


CONFIDENCE_LEVELS = ("low", "medium", "high")


@dataclass(frozen=True)
class Comment:
    """A single review comment, local or external.

    ``line_start``/``line_end`` are new-file line numbers at the head the
    comment was made against. ``line_start`` is None for file-level comments.
    ``outdated`` marks a comment whose lines have left the current diff; its
    line numbers then refer to an older commit and cannot be checked at head.
    """

    id: str
    file_path: str
    line_start: int | None
    line_end: int | None
    body: str
    created_at: datetime
    source: CommentSource
    author: str = ""
    severity: str = "major"
    outdated: bool = False

    @property
    def line_range(self) -> tuple[int, int] | None:
        if self.line_start is None:
            return None
        return (self.line_start, self.line_end if self.line_end is not None else self.line_start)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "file_path": self.file_path,
            "line_start": self.line_start,
            "line_end": self.line_end,
            "body": self.body,
            "created_at": self.created_at.isoformat(),
            "source": self.source.value,
            "author": self.author,
            "severity": self.severity,
            "outdated": self.outdated,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Comment:
        return cls(
            id=d["id"],
            file_path=d.get("file_path", ""),
            line_start=d.get("line_start"),
            line_end=d.get("line_end"),
            body=d.get("body", ""),
            created_at=datetime.fromisoformat(d["created_at"]),
            source=CommentSource(d.get("source", "external")),
            author=d.get("author", ""),
            severity=d.get("severity", "major"),
            outdated=d.get("outdated", False),
        )


@dataclass(frozen=True)
class Position:
    """One side of a dispute: who argues, and what they argue."""

    party: str
    argument: str


@dataclass(frozen=True)
class Verdict:
    """Result of arbitrating one disputed comment. Part of the audit trail.

    A dismissal must name the evaluated parties and carry a confidence label;
    without that evidence it cannot be used to drop a comment.
    """

    comment_id: str
    outcome: VerdictOutcome
    participants: tuple[str, ...]
    rounds: int
    confidence: str
    rationale: str = ""
    recorded_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __post_init__(self):
        if self.outcome == VerdictOutcome.DISMISSED:
            if len([p for p in self.participants if p]) < 2:
                raise InvalidVerdictError(
                    f"Dismissal of {self.comment_id} must record both evaluated positions; got {self.participants!r}"
                )
            if self.confidence not in CONFIDENCE_LEVELS:
                raise InvalidVerdictError(f"Dismissal of {self.comment_id} has no confidence label")
        if self.rounds < 1:
            raise InvalidVerdictError(f"Verdict for {self.comment_id} must record at least one round")

    def to_dict(self) -> dict:
        return {
            "comment_id": self.comment_id,
            "outcome": self.outcome.value,
            "participants": list(self.participants),
            "rounds": self.rounds,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Verdict:
        return cls(
            comment_id=d["comment_id"],
            outcome=VerdictOutcome(d["outcome"]),
            participants=tuple(d.get("participants", [])),
            rounds=d.get("rounds", 1),
            confidence=d.get("confidence", ""),
            rationale=d.get("rationale", ""),
            recorded_at=d.get("recorded_at", ""),
        )


@dataclass(frozen=True)
class ChangeRange:
    """The commit range under review, as seen at the top of an iteration."""

    base_sha: str
    head_sha: str
    changed_paths: tuple[str, ...]


@dataclass(frozen=True)
class HistoryGroup:
    label: str
    file_patterns: tuple[str, ...]


@dataclass(frozen=True)
class HistoryPlan:
    """Ordered commit groups plus the ref that preserves the pre-rewrite head."""

    groups: tuple[HistoryGroup, ...]
    backup_ref: str
    original_head: str
    merge_base: str


@dataclass
class Checkpoint:
    """Persisted marker of the last completed orchestration step.

    ``state`` and the two ledgers are plain dicts so the store layer can
    serialise them without importing mergegate_core types.
    """

    session_id: str
    branch: str
    last_completed_step: str
    iteration_count: int
    state: dict
    comment_ledger: list[dict] = field(default_factory=list)
    verdict_ledger: list[dict] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass(frozen=True)
class Merged:
    head_sha: str
    rationale: str = ""


@dataclass(frozen=True)
class Blocked:
    reason: str
    last_completed_step: str = ""
    iteration_count: int = 0


@dataclass(frozen=True)
class Aborted:
    unresolved_comments: tuple[str, ...]
    reason: str = ""
    last_completed_step: str = ""
    iteration_count: int = 0


Outcome = Merged | Blocked | Aborted
