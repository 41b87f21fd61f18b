"""Pluggable policy functions: commit messages and the pre-commit security scan.

Both are plain callables so a team can swap in its own policy by passing a
different function to the fix loop or the history rewriter.
"""

from __future__ import annotations

import re

from mergegate_core.models import Comment
from mergegate_core.utils.code import is_docs_path, is_test_path

_SCOPE_SANITISE_RE = re.compile(r"[^a-z0-9._-]+")
_SUBJECT_LIMIT = 72

# Patterns for credentials that must never be committed by an automated fix.
_SECRET_PATTERNS = [
    ("AWS access key", re.compile(r"AKIA[0-9A-Z]{16}")),
    ("GitHub token", re.compile(r"gh[pousr]_[A-Za-z0-9]{36,}")),
    ("Anthropic API key", re.compile(r"sk-ant-[A-Za-z0-9_-]{20,}")),
    ("OpenAI API key", re.compile(r"sk-(?:proj-)?[A-Za-z0-9]{32,}")),
    ("private key block", re.compile(r"-----BEGIN (?:RSA |EC |OPENSSH |DSA )?PRIVATE KEY-----")),
    (
        "hard-coded credential",
        re.compile(r"""(?i)\b(?:password|passwd|secret|api_key|apikey|token)\s*[:=]\s*['"][^'"\s]{8,}['"]"""),
    ),
]


def derive_scope(path: str) -> str:
    """Derive a conventional-commit scope from a file path."""
    parts = [p for p in path.split("/") if p]
    if not parts:
        return "repo"
    if parts[0] in ("packages", "crates") and len(parts) > 1:
        scope = parts[1]
    elif is_docs_path(path):
        scope = "docs"
    elif len(parts) > 1:
        scope = parts[0]
    else:
        scope = parts[0].rsplit(".", 1)[0]
    scope = _SCOPE_SANITISE_RE.sub("-", scope.lower()).strip("-")
    return scope or "repo"


def _subject(text: str) -> str:
    first = " ".join(text.strip().splitlines()[0].split()) if text.strip() else "address review comment"
    first = re.sub(r"\*\*\[[A-Z]+\]\*\*\s*", "", first)
    if len(first) > _SUBJECT_LIMIT:
        first = first[: _SUBJECT_LIMIT - 3].rstrip() + "..."
    return first[0].lower() + first[1:] if first else first


def default_commit_message(comment: Comment) -> str:
    scope = derive_scope(comment.file_path)
    return f"fix({scope}): {_subject(comment.body)}\n\nAddresses review comment {comment.id}."


def group_commit_message(label: str, paths: list[str]) -> str:
    if paths and all(is_test_path(p) for p in paths):
        kind = "test"
    elif paths and all(is_docs_path(p) for p in paths):
        kind = "docs"
    else:
        kind = "fix"
    scope = _SCOPE_SANITISE_RE.sub("-", label.lower()).strip("-") or "repo"
    body = "\n".join(f"- {p}" for p in sorted(paths))
    return f"{kind}({scope}): consolidate changes under {label}\n\n{body}"


def scan_for_secrets(diff_text: str) -> list[str]:
    """Return a description for each secret-like string added by a diff."""
    findings = []
    for line in diff_text.splitlines():
        if not line.startswith("+") or line.startswith("+++"):
            continue
        for label, pattern in _SECRET_PATTERNS:
            if pattern.search(line):
                findings.append(f"{label}: {line[1:].strip()[:80]}")
    return findings
