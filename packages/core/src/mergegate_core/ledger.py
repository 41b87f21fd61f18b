"""Append-only comment and verdict ledger for one review session.

Producers append; nothing is ever overwritten. A comment's classification
may only move forward (unclassified -> disputed -> confirmed -> terminal),
and every move is recorded so the session can be audited after the fact.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass

from mergegate_core.errors import ClassificationOrderError
from mergegate_core.models import Classification, Comment, Verdict, VerdictOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationEvent:
    comment_id: str
    previous: Classification
    current: Classification
    reason: str


class Ledger:
    def __init__(self):
        self._comments: dict[str, Comment] = {}
        self._classification: dict[str, Classification] = {}
        self._events: list[ClassificationEvent] = []
        self._verdicts: list[Verdict] = []
        self._fix_commits: dict[str, str] = {}
        self._counter_rationales: dict[str, str] = {}

    # ------------------------------------------------------------------ #
    # Comments                                                             #
    # ------------------------------------------------------------------ #

    def add(self, comment: Comment) -> bool:
        """Record a newly received comment. Returns False if it was already known."""
        if comment.id in self._comments:
            logger.debug("Ignoring already-ledgered comment %s", comment.id)
            return False
        self._comments[comment.id] = comment
        self._classification[comment.id] = Classification.UNCLASSIFIED
        return True

    def get(self, comment_id: str) -> Comment:
        return self._comments[comment_id]

    def __contains__(self, comment_id: str) -> bool:
        return comment_id in self._comments

    def __len__(self) -> int:
        return len(self._comments)

    @property
    def comments(self) -> list[Comment]:
        return list(self._comments.values())

    def classification(self, comment_id: str) -> Classification:
        return self._classification[comment_id]

    def classify(self, comment_id: str, new: Classification, reason: str = "") -> None:
        current = self._classification[comment_id]
        if new == current:
            return
        if new.rank <= current.rank:
            raise ClassificationOrderError(
                f"Comment {comment_id} cannot move from {current.value} back to {new.value}"
            )
        self._classification[comment_id] = new
        self._events.append(ClassificationEvent(comment_id, current, new, reason))
        logger.info("Comment %s: %s -> %s %s", comment_id, current.value, new.value, f"({reason})" if reason else "")

    def with_classification(self, *classes: Classification) -> list[Comment]:
        return [c for c in self._comments.values() if self._classification[c.id] in classes]

    def unresolved_confirmed(self) -> list[Comment]:
        return self.with_classification(Classification.CONFIRMED)

    def open_disputed(self) -> list[Comment]:
        return self.with_classification(Classification.DISPUTED)

    def counts(self) -> Counter:
        return Counter(c.value for c in self._classification.values())

    @property
    def events(self) -> list[ClassificationEvent]:
        return list(self._events)

    # ------------------------------------------------------------------ #
    # Triage and fixes                                                     #
    # ------------------------------------------------------------------ #

    def set_counter_rationale(self, comment_id: str, rationale: str) -> None:
        self._counter_rationales.setdefault(comment_id, rationale)

    def counter_rationale(self, comment_id: str) -> str:
        return self._counter_rationales.get(comment_id, "")

    def mark_addressed(self, comment_id: str, commit_sha: str) -> None:
        self.classify(comment_id, Classification.ADDRESSED, reason=f"fixed in {commit_sha[:7]}")
        self._fix_commits[comment_id] = commit_sha

    def fix_commit(self, comment_id: str) -> str | None:
        return self._fix_commits.get(comment_id)

    # ------------------------------------------------------------------ #
    # Verdicts                                                             #
    # ------------------------------------------------------------------ #

    def record_verdict(self, verdict: Verdict) -> None:
        if verdict.comment_id not in self._comments:
            raise KeyError(f"Verdict recorded for unknown comment {verdict.comment_id}")
        self._verdicts.append(verdict)

    @property
    def verdicts(self) -> list[Verdict]:
        return list(self._verdicts)

    def final_verdict(self, comment_id: str) -> Verdict | None:
        """Return the most recent non-escalation verdict for a comment."""
        for verdict in reversed(self._verdicts):
            if verdict.comment_id == comment_id and verdict.outcome != VerdictOutcome.ESCALATED:
                return verdict
        return None

    # ------------------------------------------------------------------ #
    # Persistence                                                          #
    # ------------------------------------------------------------------ #

    def comment_entries(self) -> list[dict]:
        entries = []
        for comment in self._comments.values():
            entry = comment.to_dict()
            entry["classification"] = self._classification[comment.id].value
            entry["fix_commit"] = self._fix_commits.get(comment.id)
            entry["counter_rationale"] = self._counter_rationales.get(comment.id, "")
            entry["history"] = [
                {"from": e.previous.value, "to": e.current.value, "reason": e.reason}
                for e in self._events
                if e.comment_id == comment.id
            ]
            entries.append(entry)
        return entries

    def verdict_entries(self) -> list[dict]:
        return [v.to_dict() for v in self._verdicts]

    @classmethod
    def restore(cls, comment_entries: list[dict], verdict_entries: list[dict]) -> Ledger:
        ledger = cls()
        for entry in comment_entries:
            comment = Comment.from_dict(entry)
            ledger._comments[comment.id] = comment
            ledger._classification[comment.id] = Classification(entry.get("classification", "unclassified"))
            for e in entry.get("history", []):
                ledger._events.append(
                    ClassificationEvent(comment.id, Classification(e["from"]), Classification(e["to"]), e.get("reason", ""))
                )
            if entry.get("fix_commit"):
                ledger._fix_commits[comment.id] = entry["fix_commit"]
            if entry.get("counter_rationale"):
                ledger._counter_rationales[comment.id] = entry["counter_rationale"]
        ledger._verdicts = [Verdict.from_dict(v) for v in verdict_entries]
        return ledger
