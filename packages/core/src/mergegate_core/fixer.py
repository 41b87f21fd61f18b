"""Fix application for confirmed comments.

Fixes are applied and committed serially, one commit per comment, and the
branch is pushed once after the whole batch. A fix that breaks the quality
checks or adds a secret-like string is reverted and the comment stays
confirmed for the next iteration.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from rich.console import Console

from mergegate_core.checks import QualityChecks
from mergegate_core.errors import VcsError
from mergegate_core.models import Comment
from mergegate_core.policies import default_commit_message, scan_for_secrets
from mergegate_core.providers.base import BaseProvider
from mergegate_core.vcs.base import VersionControl

console = Console()
logger = logging.getLogger(__name__)


@dataclass
class FixBatchResult:
    head_sha: str
    fixed: dict[str, str] = field(default_factory=dict)  # comment id -> commit sha
    failed: dict[str, str] = field(default_factory=dict)  # comment id -> reason
    pushed: bool = False


class Fixer(ABC):
    @abstractmethod
    def propose(self, comment: Comment, content: str) -> str | None:
        """Return the full new content of the commented file, or None if no fix is possible."""


class LLMFixer(Fixer):
    SYSTEM_PROMPT = (
        "You fix one code review comment at a time. Change only what the comment requires; "
        "keep every unrelated line byte-for-byte identical."
    )

    USER_PROMPT = """\
## Review comment on {file_path} (lines {lines})
{body}

## Current content of {file_path}
```
{content}
```

Respond with a single JSON object:
{{"content": "<the complete corrected file>"}}
Respond with {{"content": null}} if the comment cannot be fixed in this file.
"""

    def __init__(self, provider: BaseProvider):
        self.provider = provider

    def propose(self, comment: Comment, content: str) -> str | None:
        rng = comment.line_range
        prompt = self.USER_PROMPT.format(
            file_path=comment.file_path,
            lines=f"{rng[0]}-{rng[1]}" if rng else "whole file",
            body=comment.body,
            content=content,
        )
        data = self.provider.parse_json(self.provider.complete(self.SYSTEM_PROMPT, prompt))
        if not isinstance(data, dict) or not isinstance(data.get("content"), str):
            return None
        return data["content"]


class FixLoop:
    PUSH_RETRIES = 3

    def __init__(
        self,
        vcs: VersionControl,
        fixer: Fixer,
        checks: QualityChecks | None = None,
        commit_message: Callable[[Comment], str] = default_commit_message,
        security_scan: Callable[[str], list[str]] = scan_for_secrets,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.vcs = vcs
        self.fixer = fixer
        self.checks = checks or QualityChecks()
        self.commit_message = commit_message
        self.security_scan = security_scan
        self._sleep = sleep

    def apply(self, comment: Comment) -> str:
        """Apply and commit a fix for one comment. Returns the commit SHA.

        Raises ValueError when the fix is unavailable or rejected, and
        VcsError when the commit itself fails; the working tree is restored
        before either is raised.
        """
        path = comment.file_path
        content = self.vcs.read_file(path)
        if content is None:
            raise ValueError(f"{path} does not exist in the working tree")
        proposed = self.fixer.propose(comment, content)
        if proposed is None or proposed == content:
            raise ValueError("fixer produced no change")

        self.vcs.write_file(path, proposed)
        result = self.checks.run()
        if not result.passed:
            self.vcs.restore_paths([path])
            raise ValueError("quality checks failed: " + result.failures[0].splitlines()[0])
        findings = self.security_scan(self.vcs.staged_diff([path]))
        if findings:
            self.vcs.restore_paths([path])
            raise ValueError("security scan rejected the fix: " + "; ".join(findings))
        try:
            return self.vcs.commit(self.commit_message(comment), [path])
        except VcsError:
            self.vcs.restore_paths([path])
            raise

    def push(self, branch: str) -> None:
        for attempt in range(1, self.PUSH_RETRIES + 1):
            try:
                self.vcs.push(branch)
                return
            except VcsError as e:
                if attempt == self.PUSH_RETRIES:
                    raise
                delay = 2 ** (attempt - 1)
                logger.warning("Push of %s failed (attempt %d/%d): %s. Retrying in %ds...", branch, attempt, self.PUSH_RETRIES, e, delay)
                self._sleep(delay)

    def apply_batch(
        self,
        comments: list[Comment],
        branch: str,
        on_fixed: Callable[[Comment, str], None] | None = None,
        publish: bool = True,
    ) -> FixBatchResult:
        """Fix every comment in order, then push once if anything was committed.

        ``on_fixed`` runs after each commit so the caller can checkpoint a
        consistent state before the next fix starts.
        """
        fixed: dict[str, str] = {}
        failed: dict[str, str] = {}
        for comment in comments:
            try:
                sha = self.apply(comment)
            except ValueError as e:
                logger.warning("Could not fix %s: %s", comment.id, e)
                failed[comment.id] = str(e)
                continue
            fixed[comment.id] = sha
            console.print(f"  [green]Fixed[/green] {comment.file_path}:{comment.line_start or '-'} in {sha[:7]}")
            if on_fixed is not None:
                on_fixed(comment, sha)

        pushed = False
        if fixed and publish:
            self.push(branch)
            pushed = True
        return FixBatchResult(head_sha=self.vcs.rev_parse("HEAD"), fixed=fixed, failed=failed, pushed=pushed)
