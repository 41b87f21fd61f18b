"""Local review gate.

Runs the local reviewer synchronously over the full change range. Nothing is
sent to the external service until this gate passes, which is what makes the
local-only fallback a safe way to merge when the external service is away.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from rich.console import Console

from mergegate_core.errors import LocalReviewFailedError
from mergegate_core.models import ChangeRange, Comment, CommentSource
from mergegate_core.providers.base import BaseProvider
from mergegate_core.utils.code import is_code_file, is_excluded
from mergegate_core.utils.diff import added_lines, truncate
from mergegate_core.vcs.base import VersionControl

console = Console()
logger = logging.getLogger(__name__)

SEVERITIES = ("critical", "major", "minor", "nitpick")
BLOCKING_SEVERITIES = frozenset({"critical", "major"})

_SYSTEM_PROMPT = (
    "You are a senior engineer reviewing one file of a change before it is sent for external review. "
    "Apply the team's review guidelines. Report only real problems on lines the change added or modified."
)

_USER_PROMPT = """\
## Review Guidelines
{guidelines}

## File: {file_name}

### Diff
```diff
{diff_patch}
```

### Full File Content
```
{file_content}
```

Return a JSON array (no prose) of objects with keys:
  "line": new-file line number of an added or modified line,
  "severity": one of "critical", "major", "minor", "nitpick",
  "comment": a concise description of the problem and how to fix it.
Return [] if the file has no issues.
"""


def local_comment_id(path: str, line: int, text: str) -> str:
    digest = hashlib.sha256(f"{path}:{line}:{text.strip()}".encode("utf-8")).hexdigest()
    return f"local-{digest[:12]}"


@dataclass
class GateResult:
    passed: bool
    comments: list[Comment] = field(default_factory=list)
    rounds: int = 1

    @property
    def blocking(self) -> list[Comment]:
        return [c for c in self.comments if c.severity in BLOCKING_SEVERITIES]


class LocalReviewer(ABC):
    @abstractmethod
    def review(self, change: ChangeRange, vcs: VersionControl) -> list[Comment]:
        """Return local findings for every file in the change range."""


class LLMLocalReviewer(LocalReviewer):
    """Reviews a change file by file with a model provider."""

    def __init__(
        self,
        provider: BaseProvider,
        guidelines: str,
        exclude: list[str] | None = None,
        max_chars: int = 20000,
    ):
        self.provider = provider
        self.guidelines = guidelines
        self.exclude = list(exclude or [])
        self.max_chars = max_chars

    def review(self, change: ChangeRange, vcs: VersionControl) -> list[Comment]:
        comments: list[Comment] = []
        total = len(change.changed_paths)
        for i, path in enumerate(sorted(change.changed_paths), 1):
            if is_excluded(path, self.exclude) or not is_code_file(path):
                logger.debug("Skipping %s (excluded or not code)", path)
                continue
            if not vcs.file_exists(path, change.head_sha):
                logger.debug("Skipping %s (deleted in this change)", path)
                continue
            console.print(f"[[{i}/{total}]] Local review: {path}")
            patch = vcs.diff(change.base_sha, change.head_sha, [path])
            content = vcs.read_file(path) or ""
            comments.extend(self._review_file(path, patch, content))
        return comments

    def _review_file(self, path: str, patch: str, content: str) -> list[Comment]:
        if not patch:
            return []
        prompt = _USER_PROMPT.format(
            guidelines=self.guidelines,
            file_name=path,
            diff_patch=truncate(patch, self.max_chars, "diff"),
            file_content=truncate(content, self.max_chars, "file"),
        )
        findings = self.provider.parse_json(self.provider.complete(_SYSTEM_PROMPT, prompt))
        if not isinstance(findings, list):
            return []

        in_diff = added_lines(patch)
        now = datetime.now(timezone.utc)
        results = []
        for finding in findings:
            if not isinstance(finding, dict):
                continue
            line = finding.get("line")
            text = (finding.get("comment") or "").strip()
            severity = finding.get("severity", "minor")
            if severity not in SEVERITIES:
                severity = "minor"
            if not isinstance(line, int) or not text:
                continue
            if line not in in_diff:
                logger.debug("Skipping finding for %s:%d (not an added line)", path, line)
                continue
            results.append(
                Comment(
                    id=local_comment_id(path, line, text),
                    file_path=path,
                    line_start=line,
                    line_end=line,
                    body=f"**[{severity.upper()}]** {text}",
                    created_at=now,
                    source=CommentSource.LOCAL,
                    author=self.provider.name,
                    severity=severity,
                )
            )
        return results


class LocalReviewGate:
    def __init__(self, reviewer: LocalReviewer, max_rounds: int = 3):
        self.reviewer = reviewer
        self.max_rounds = max_rounds

    def run(self, change: ChangeRange, vcs: VersionControl) -> GateResult:
        """Single review pass. The gate fails on any critical or major finding."""
        comments = self.reviewer.review(change, vcs)
        result = GateResult(passed=True, comments=comments)
        result.passed = not result.blocking
        logger.info(
            "Local review of %s..%s: %s (%d finding(s), %d blocking)",
            change.base_sha[:7],
            change.head_sha[:7],
            "pass" if result.passed else "fail",
            len(comments),
            len(result.blocking),
        )
        return result

    def enforce(
        self,
        resolve: Callable[[], ChangeRange],
        vcs: VersionControl,
        fix: Callable[[list[Comment]], None] | None = None,
    ) -> GateResult:
        """Review, fix, and re-review until the gate passes or the rounds run out.

        ``resolve`` is called before every round so each pass reviews the
        current head. Raises LocalReviewFailedError when the last round still
        has blocking findings.
        """
        result = GateResult(passed=False)
        for round_no in range(1, self.max_rounds + 1):
            result = self.run(resolve(), vcs)
            result.rounds = round_no
            if result.passed:
                return result
            if fix is None or round_no == self.max_rounds:
                break
            console.print(f"[yellow]Local review round {round_no}: fixing {len(result.blocking)} finding(s)[/yellow]")
            fix(result.blocking)

        summary = "; ".join(f"{c.file_path}:{c.line_start} {c.body}" for c in result.blocking[:5])
        raise LocalReviewFailedError(
            f"Local review still failing after {result.rounds} round(s) "
            f"with {len(result.blocking)} blocking finding(s): {summary}"
        )
