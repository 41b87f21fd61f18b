"""Comment classifier.

Two passes over the ledger:

1. Category assignment for every unclassified comment: ``fixed`` when the
   defect is already absent from the current diff, ``disputed`` when the
   implementer contests it, ``confirmed`` otherwise.
2. Staleness filter over every open (disputed or confirmed) comment: if the
   referenced lines were modified after the comment was posted, the comment
   is moot and becomes ``stale``. A comment whose target no longer exists
   (file renamed, deleted, or the line range gone) is ``fixed``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone

from mergegate_core.errors import AmbiguousClassificationError
from mergegate_core.ledger import Ledger
from mergegate_core.models import ChangeRange, Classification, Comment
from mergegate_core.providers.base import BaseProvider
from mergegate_core.utils.diff import truncate
from mergegate_core.vcs.base import VersionControl

logger = logging.getLogger(__name__)

_TRIAGE_STATUSES = {
    "fixed": Classification.FIXED,
    "disputed": Classification.DISPUTED,
    "confirmed": Classification.CONFIRMED,
}


@dataclass(frozen=True)
class TriageDecision:
    status: Classification
    rationale: str = ""


@dataclass
class ClassificationSummary:
    fixed: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    disputed: list[str] = field(default_factory=list)
    confirmed: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Triage
# ---------------------------------------------------------------------------


class Triage(ABC):
    """Decides whether the implementer accepts, contests, or has already fixed a comment."""

    @abstractmethod
    def assess(self, comment: Comment, patch: str, content: str | None) -> TriageDecision:
        ...


class AcceptAllTriage(Triage):
    def assess(self, comment: Comment, patch: str, content: str | None) -> TriageDecision:
        return TriageDecision(Classification.CONFIRMED, "accepted without triage")


class LLMTriage(Triage):
    SYSTEM_PROMPT = (
        "You are the author of a code change responding to a review comment. "
        "Decide honestly whether the comment is already fixed in the current diff, "
        "is a real unresolved issue, or is wrong. Never dispute a comment just to avoid work."
    )

    USER_PROMPT = """\
## Review comment on {file_path} (lines {lines})
{body}

## Current diff of {file_path}
```diff
{patch}
```

## Current file content
```
{content}
```

Respond with a single JSON object:
{{"status": "fixed" | "confirmed" | "disputed", "rationale": "<one paragraph>"}}
Use "disputed" only when you can argue concretely why the comment is incorrect.
"""

    def __init__(self, provider: BaseProvider, max_chars: int = 20000):
        self.provider = provider
        self.max_chars = max_chars

    def assess(self, comment: Comment, patch: str, content: str | None) -> TriageDecision:
        rng = comment.line_range
        prompt = self.USER_PROMPT.format(
            file_path=comment.file_path,
            lines=f"{rng[0]}-{rng[1]}" if rng else "whole file",
            body=comment.body,
            patch=truncate(patch, self.max_chars, "diff"),
            content=truncate(content or "", self.max_chars, "file"),
        )
        data = self.provider.parse_json(self.provider.complete(self.SYSTEM_PROMPT, prompt))
        if not isinstance(data, dict) or data.get("status") not in _TRIAGE_STATUSES:
            # No usable answer: treat as a real issue rather than drop it.
            logger.warning("Triage of %s returned no usable decision; treating as confirmed", comment.id)
            return TriageDecision(Classification.CONFIRMED, "triage unavailable")
        return TriageDecision(_TRIAGE_STATUSES[data["status"]], str(data.get("rationale", "")))


# ---------------------------------------------------------------------------
# Staleness
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StalenessFilter:
    def __init__(self, vcs: VersionControl):
        self.vcs = vcs

    def is_stale(self, comment: Comment, head_sha: str) -> bool:
        """Return True if the lines the comment references changed after it was posted.

        Raises AmbiguousClassificationError when the comment no longer maps
        to existing code at head_sha.
        """
        if not self.vcs.file_exists(comment.file_path, head_sha):
            raise AmbiguousClassificationError(f"{comment.file_path} no longer exists at {head_sha[:7]}")
        if comment.outdated:
            raise AmbiguousClassificationError(f"comment on {comment.file_path} is outdated; its lines left the diff")
        rng = comment.line_range
        if rng is None:
            return False
        modified = self.vcs.line_modified_at(comment.file_path, rng[0], rng[1], head_sha)
        if modified is None:
            raise AmbiguousClassificationError(
                f"lines {rng[0]}-{rng[1]} of {comment.file_path} no longer exist at {head_sha[:7]}"
            )
        return _as_utc(modified) > _as_utc(comment.created_at)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class CommentClassifier:
    def __init__(self, vcs: VersionControl, triage: Triage, staleness: StalenessFilter | None = None):
        self.vcs = vcs
        self.triage = triage
        self.staleness = staleness or StalenessFilter(vcs)

    def classify(self, ledger: Ledger, change: ChangeRange) -> ClassificationSummary:
        summary = ClassificationSummary()
        changed = set(change.changed_paths)

        for comment in ledger.with_classification(Classification.UNCLASSIFIED):
            if comment.file_path not in changed:
                ledger.classify(comment.id, Classification.FIXED, "file no longer part of the change")
                summary.fixed.append(comment.id)
                continue
            patch = self.vcs.diff(change.base_sha, change.head_sha, [comment.file_path])
            decision = self.triage.assess(comment, patch, self.vcs.read_file(comment.file_path))
            if decision.status == Classification.DISPUTED:
                ledger.set_counter_rationale(comment.id, decision.rationale)
            ledger.classify(comment.id, decision.status, decision.rationale)
            if decision.status == Classification.FIXED:
                summary.fixed.append(comment.id)

        for comment in ledger.with_classification(Classification.DISPUTED, Classification.CONFIRMED):
            try:
                stale = self.staleness.is_stale(comment, change.head_sha)
            except AmbiguousClassificationError as e:
                logger.warning("Comment %s treated as fixed: %s", comment.id, e)
                ledger.classify(comment.id, Classification.FIXED, str(e))
                summary.fixed.append(comment.id)
                continue
            if stale:
                ledger.classify(comment.id, Classification.STALE, "referenced lines changed after the comment")
                summary.stale.append(comment.id)

        summary.disputed = [c.id for c in ledger.open_disputed()]
        summary.confirmed = [c.id for c in ledger.unresolved_confirmed()]
        logger.info(
            "Classified: %d fixed, %d stale, %d disputed, %d confirmed",
            len(summary.fixed),
            len(summary.stale),
            len(summary.disputed),
            len(summary.confirmed),
        )
        return summary
