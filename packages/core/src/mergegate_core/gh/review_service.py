"""ExternalReviewService backed by a GitHub pull request.

A review request is an issue comment carrying the configured trigger text
(e.g. ``@codex review``) and a hidden marker with the head SHA, which makes
the request idempotent even across separate processes. Review comments are
read from the pull request's review threads.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from github import GithubException

from mergegate_core.errors import TransientServiceError
from mergegate_core.external import ExternalReviewService
from mergegate_core.gh.pull_request import find_review_request, request_marker
from mergegate_core.models import Comment, CommentSource

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _severity_of(body: str) -> str:
    lowered = body.lower()
    for severity in ("critical", "major", "minor", "nitpick"):
        if f"[{severity}]" in lowered or f"{severity}:" in lowered:
            return severity
    return "major"


class GitHubReviewService(ExternalReviewService):
    def __init__(
        self,
        pr,
        request_body: str = "@codex review",
        reviewer_login: str | None = None,
        self_login: str | None = None,
    ):
        self.pr = pr
        self.request_body = request_body
        self.reviewer_login = reviewer_login
        self.self_login = self_login

    def _counts(self, login: str | None) -> bool:
        if login is None:
            return False
        if self.self_login and login == self.self_login:
            return False
        return self.reviewer_login is None or login == self.reviewer_login

    def post_review_request(self, head_sha: str) -> str:
        try:
            existing = find_review_request(self.pr, head_sha)
            if existing is not None:
                logger.debug("Found existing review request %s for %s", existing.id, head_sha[:7])
                return str(existing.id)
            comment = self.pr.create_issue_comment(f"{self.request_body}\n\n{request_marker(head_sha)}")
        except GithubException as e:
            raise TransientServiceError(f"Could not request review of {head_sha[:7]}: {e}") from e
        return str(comment.id)

    def list_comments(self, since: datetime) -> list[Comment]:
        since = _as_utc(since)
        try:
            raw = list(self.pr.get_review_comments(since=since))
        except GithubException as e:
            raise TransientServiceError(f"Could not list review comments: {e}") from e

        comments = []
        for c in raw:
            if getattr(c, "in_reply_to_id", None):
                continue
            if not self._counts(c.user.login if c.user else None):
                continue
            created_at = _as_utc(c.created_at)
            if created_at < since:
                continue
            # c.line is None once the commented line left the diff. original_line then
            # numbers an older commit, so it is kept for display only.
            outdated = c.line is None
            if outdated:
                line_start = line_end = getattr(c, "original_line", None)
            else:
                line_end = c.line
                line_start = getattr(c, "start_line", None) or line_end
            comments.append(
                Comment(
                    id=f"gh-{c.id}",
                    file_path=c.path,
                    line_start=line_start,
                    line_end=line_end,
                    body=c.body or "",
                    created_at=created_at,
                    source=CommentSource.EXTERNAL,
                    author=c.user.login,
                    severity=_severity_of(c.body or ""),
                    outdated=outdated,
                )
            )
        return comments

    def has_reviewed(self, head_sha: str, since: datetime) -> bool:
        since = _as_utc(since)
        try:
            for review in self.pr.get_reviews():
                if review.commit_id != head_sha or review.submitted_at is None:
                    continue
                if not self._counts(review.user.login if review.user else None):
                    continue
                if _as_utc(review.submitted_at) >= since:
                    return True
        except GithubException as e:
            raise TransientServiceError(f"Could not list reviews: {e}") from e
        return False

    def merge(self, head_sha: str, method: str) -> None:
        try:
            status = self.pr.merge(merge_method=method, sha=head_sha)
        except GithubException as e:
            raise TransientServiceError(f"Merge of {head_sha[:7]} failed: {e}") from e
        if not status.merged:
            raise TransientServiceError(f"Merge of {head_sha[:7]} was refused: {status.message}")

    def post_report(self, body: str) -> None:
        try:
            self.pr.create_issue_comment(body)
        except GithubException as e:
            logger.warning("Could not post session report: %s", e)
