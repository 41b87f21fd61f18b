from __future__ import annotations

import re

from github import Github

_REQUEST_MARKER = "<!-- mergegate-request: {sha} -->"
_REQUEST_MARKER_RE = re.compile(r"<!-- mergegate-request: ([0-9a-f]{40}) -->")


def get_client(token: str) -> Github:
    return Github(token)


def get_repo(repo_name: str, token: str):
    return get_client(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_authenticated_login(token: str) -> str:
    return get_client(token).get_user().login


def request_marker(head_sha: str) -> str:
    return _REQUEST_MARKER.format(sha=head_sha)


def find_review_request(pr, head_sha: str):
    """Return the issue comment that requested a review of head_sha, or None."""
    for comment in pr.get_issue_comments():
        match = _REQUEST_MARKER_RE.search(comment.body or "")
        if match and match.group(1) == head_sha:
            return comment
    return None

