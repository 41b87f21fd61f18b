"""In-process fakes for the orchestration collaborators.

FakeVcs keeps commit snapshots in memory and a real working tree under
tmp_path, so read_file/write_file and the fix loop behave as they would on
disk. Each committed line remembers the time of the commit that last
changed it, which is what the staleness filter asks blame for.
"""

from __future__ import annotations

import copy
import difflib
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mergegate_core.arbitration import ArbitrationEngine, Judge, Ruling
from mergegate_core.classifier import CommentClassifier, Triage, TriageDecision
from mergegate_core.errors import TransientServiceError, VcsError
from mergegate_core.external import ExternalReviewService
from mergegate_core.fixer import Fixer, FixLoop
from mergegate_core.history import HistoryRewriter
from mergegate_core.local_gate import LocalReviewer, LocalReviewGate
from mergegate_core.models import Classification, Comment, CommentSource
from mergegate_core.orchestrator import Checkpoints, ReviewOrchestrator, SessionSettings
from mergegate_core.vcs.base import VersionControl

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Version control
# ---------------------------------------------------------------------------


@dataclass
class FakeCommit:
    parent: str | None
    message: str
    time: datetime
    files: dict[str, list[tuple[str, datetime]]] = field(default_factory=dict)


class FakeVcs(VersionControl):
    def __init__(self, root: Path, files: dict[str, str] | None = None, branch: str = "feature"):
        self.root = root
        self.now = T0
        self.commits: dict[str, FakeCommit] = {}
        self.refs: dict[str, str] = {}
        self.head_branch = "main"
        self.pushes: list[tuple[str, bool]] = []
        self.remote: dict[str, str] = {}
        self.fail_push = 0  # number of upcoming pushes that fail
        self.fail_force_push = False
        self._counter = 0

        self._write_tree(files or {})
        self.refs["main"] = self._new_commit(None, "initial", self._snapshot_from_disk({}, list(files or {})))
        self.refs[branch] = self.refs["main"]
        self.head_branch = branch

    # -- helpers used by tests ------------------------------------------

    def tick(self, minutes: int = 1) -> datetime:
        self.now += timedelta(minutes=minutes)
        return self.now

    def commit_files(self, files: dict[str, str | None], message: str = "work") -> str:
        """Write (or delete, with None) files and commit them in one step."""
        for path, content in files.items():
            target = self.root / path
            if content is None:
                target.unlink(missing_ok=True)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content)
        return self.commit(message, list(files))

    def head(self) -> FakeCommit:
        return self.commits[self.refs[self.head_branch]]

    def text_at(self, ref: str, path: str) -> str | None:
        lines = self.commits[self.rev_parse(ref)].files.get(path)
        if lines is None:
            return None
        return "".join(text for text, _ in lines)

    # -- internals ---------------------------------------------------------

    def _write_tree(self, files: dict[str, str]) -> None:
        for path, content in files.items():
            target = self.root / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)

    def _snapshot_from_disk(self, previous: dict, paths: list[str]) -> dict:
        snapshot = copy.deepcopy(previous)
        for path in paths:
            target = self.root / path
            if not target.is_file():
                snapshot.pop(path, None)
                continue
            new_texts = target.read_text().splitlines(keepends=True)
            old = previous.get(path, [])
            old_texts = [t for t, _ in old]
            lines: list[tuple[str, datetime]] = []
            matcher = difflib.SequenceMatcher(a=old_texts, b=new_texts, autojunk=False)
            for tag, i1, i2, j1, j2 in matcher.get_opcodes():
                if tag == "equal":
                    lines.extend(old[i1:i2])
                else:
                    lines.extend((t, self.now) for t in new_texts[j1:j2])
            snapshot[path] = lines
        return snapshot

    def _new_commit(self, parent: str | None, message: str, files: dict) -> str:
        self._counter += 1
        sha = hashlib.sha1(f"{self._counter}:{message}".encode()).hexdigest()
        self.commits[sha] = FakeCommit(parent=parent, message=message, time=self.now, files=files)
        return sha

    def _ancestors(self, sha: str) -> list[str]:
        chain = []
        while sha is not None:
            chain.append(sha)
            sha = self.commits[sha].parent
        return chain

    def _texts(self, files: dict, path: str) -> list[str]:
        return [t for t, _ in files.get(path, [])]

    def _unified(self, old: list[str], new: list[str], path: str) -> str:
        return "".join(difflib.unified_diff(old, new, fromfile=f"a/{path}", tofile=f"b/{path}", n=3))

    # -- VersionControl --------------------------------------------------

    def current_branch(self) -> str:
        return self.head_branch

    def rev_parse(self, ref: str) -> str:
        sha = self.resolve_ref(ref)
        if sha is None:
            raise VcsError(f"unknown revision {ref}")
        return sha

    def resolve_ref(self, ref: str) -> str | None:
        if ref == "HEAD":
            return self.refs[self.head_branch]
        if ref in self.refs:
            return self.refs[ref]
        return ref if ref in self.commits else None

    def merge_base(self, a: str, b: str) -> str:
        seen = set(self._ancestors(self.rev_parse(a)))
        for sha in self._ancestors(self.rev_parse(b)):
            if sha in seen:
                return sha
        raise VcsError(f"no merge base for {a} and {b}")

    def diff(self, base: str, head: str, paths: list[str] | None = None) -> str:
        old = self.commits[self.rev_parse(base)].files
        new = self.commits[self.rev_parse(head)].files
        targets = paths if paths is not None else sorted(set(old) | set(new))
        return "".join(self._unified(self._texts(old, p), self._texts(new, p), p) for p in targets)

    def changed_paths(self, base: str, head: str) -> list[str]:
        old = self.commits[self.rev_parse(base)].files
        new = self.commits[self.rev_parse(head)].files
        return sorted(p for p in set(old) | set(new) if self._texts(old, p) != self._texts(new, p))

    def commit_count(self, base: str, head: str) -> int:
        base_sha = self.rev_parse(base)
        count = 0
        for sha in self._ancestors(self.rev_parse(head)):
            if sha == base_sha:
                break
            count += 1
        return count

    def tree_of(self, ref: str) -> str:
        files = self.commits[self.rev_parse(ref)].files
        flat = sorted((p, "".join(self._texts(files, p))) for p in files)
        return hashlib.sha1(repr(flat).encode()).hexdigest()

    def file_exists(self, path: str, rev: str) -> bool:
        return path in self.commits[self.rev_parse(rev)].files

    def line_modified_at(self, path: str, start: int, end: int, rev: str) -> datetime | None:
        lines = self.commits[self.rev_parse(rev)].files.get(path)
        if lines is None or start < 1 or end > len(lines):
            return None
        return max(t for _, t in lines[start - 1 : end])

    def is_dirty(self) -> bool:
        files = self.head().files
        on_disk = {str(p.relative_to(self.root)) for p in self.root.rglob("*") if p.is_file()}
        if on_disk != set(files):
            return True
        return any((self.root / p).read_text() != "".join(self._texts(files, p)) for p in files)

    def commit(self, message: str, paths: list[str]) -> str:
        previous = self.head().files
        snapshot = self._snapshot_from_disk(previous, paths)
        unchanged = all(
            self._texts(snapshot, p) == self._texts(previous, p) and (p in snapshot) == (p in previous) for p in paths
        )
        if unchanged:
            raise VcsError("nothing to commit", command=["git", "commit"])
        self.tick()
        snapshot = self._snapshot_from_disk(previous, paths)
        sha = self._new_commit(self.refs[self.head_branch], message, snapshot)
        self.refs[self.head_branch] = sha
        return sha

    def push(self, branch: str, force: bool = False) -> None:
        if self.fail_push > 0 or (force and self.fail_force_push):
            self.fail_push = max(0, self.fail_push - 1)
            raise VcsError("remote rejected push", command=["git", "push"])
        self.pushes.append((branch, force))
        self.remote[branch] = self.refs[branch]

    def reset_soft(self, ref: str) -> None:
        self.refs[self.head_branch] = self.rev_parse(ref)

    def reset_hard(self, ref: str) -> None:
        sha = self.rev_parse(ref)
        self.refs[self.head_branch] = sha
        for p in self.root.rglob("*"):
            if p.is_file():
                p.unlink()
        self._write_tree({p: "".join(self._texts(self.commits[sha].files, p)) for p in self.commits[sha].files})

    def unstage_all(self) -> None:
        pass

    def create_ref(self, name: str, target: str) -> None:
        self.refs[name] = self.rev_parse(target)

    def restore_paths(self, paths: list[str]) -> None:
        files = self.head().files
        for path in paths:
            if path in files:
                self._write_tree({path: "".join(self._texts(files, path))})
            else:
                (self.root / path).unlink(missing_ok=True)

    def staged_diff(self, paths: list[str]) -> str:
        files = self.head().files
        out = []
        for path in paths:
            target = self.root / path
            new = target.read_text().splitlines(keepends=True) if target.is_file() else []
            out.append(self._unified(self._texts(files, path), new, path))
        return "".join(out)


# ---------------------------------------------------------------------------
# External review service
# ---------------------------------------------------------------------------


class FakeService(ExternalReviewService):
    """Answers the n-th review request with the n-th scripted batch of comments."""

    def __init__(self, script: list[list[Comment]] | None = None, timeout: bool = False, unreachable: bool = False):
        self.script = list(script or [])
        self.timeout = timeout
        self.unreachable = unreachable
        self.requests: list[str] = []
        self.delivered: list[Comment] = []
        self.merged: list[tuple[str, str]] = []
        self.reports: list[str] = []
        self.refuse_merge = False
        self.list_calls = 0

    def post_review_request(self, head_sha: str) -> str:
        if self.unreachable:
            raise TransientServiceError("service unreachable")
        if head_sha in self.requests:
            return str(self.requests.index(head_sha))
        self.requests.append(head_sha)
        if not self.timeout and self.script:
            self.delivered.extend(self.script.pop(0))
        return str(len(self.requests) - 1)

    def list_comments(self, since: datetime) -> list[Comment]:
        self.list_calls += 1
        if self.timeout:
            return []
        return list(self.delivered)

    def has_reviewed(self, head_sha: str, since: datetime) -> bool:
        return not self.timeout and head_sha in self.requests

    def merge(self, head_sha: str, method: str) -> None:
        if self.refuse_merge:
            raise TransientServiceError("merge refused: checks pending")
        self.merged.append((head_sha, method))

    def post_report(self, body: str) -> None:
        self.reports.append(body)


class FakeCheckpoints(Checkpoints):
    def __init__(self):
        self.active = {}
        self.archived = []
        self.saves = []

    def save(self, checkpoint) -> None:
        self.saves.append(copy.deepcopy(checkpoint))
        self.active[checkpoint.branch] = copy.deepcopy(checkpoint)

    def load(self, branch):
        checkpoint = self.active.get(branch)
        return copy.deepcopy(checkpoint) if checkpoint is not None else None

    def archive(self, branch) -> None:
        checkpoint = self.active.pop(branch, None)
        if checkpoint is not None:
            self.archived.append(checkpoint)


# ---------------------------------------------------------------------------
# Model-backed collaborators
# ---------------------------------------------------------------------------


class ScriptedReviewer(LocalReviewer):
    """Returns the n-th batch of findings on the n-th review; nothing afterwards."""

    def __init__(self, batches: list[list[Comment]] | None = None):
        self.batches = list(batches or [])
        self.calls = 0

    def review(self, change, vcs):
        self.calls += 1
        return self.batches.pop(0) if self.batches else []


class ScriptedTriage(Triage):
    def __init__(self, decisions: dict[str, TriageDecision] | None = None):
        self.decisions = decisions or {}

    def assess(self, comment, patch, content):
        return self.decisions.get(comment.id, TriageDecision(Classification.CONFIRMED, "agreed"))


class ScriptedJudge(Judge):
    def __init__(self, rulings: list[Ruling] | None = None):
        self.rulings = list(rulings or [])
        self.questions: list[str] = []

    def evaluate(self, question, position_a, position_b):
        self.questions.append(question)
        if self.rulings:
            return self.rulings.pop(0)
        return Ruling("confirm", "high", "valid comment", "scripted")


class LineFixer(Fixer):
    """Marks the commented line as fixed; returns None for ids in ``refuse``."""

    def __init__(self, refuse: set[str] | None = None):
        self.refuse = refuse or set()

    def propose(self, comment, content):
        if comment.id in self.refuse:
            return None
        lines = content.splitlines(keepends=True)
        index = (comment.line_start or 1) - 1
        if index >= len(lines):
            return content + f"# fixed {comment.id}\n"
        lines[index] = lines[index].rstrip("\n") + f"  # fixed {comment.id}\n"
        return "".join(lines)


def make_comment(
    comment_id: str,
    path: str = "src/app.py",
    line: int | None = 1,
    created_at: datetime = T0,
    body: str = "This needs attention.",
    source: CommentSource = CommentSource.EXTERNAL,
    severity: str = "major",
) -> Comment:
    return Comment(
        id=comment_id,
        file_path=path,
        line_start=line,
        line_end=line,
        body=body,
        created_at=created_at,
        source=source,
        author="codex" if source == CommentSource.EXTERNAL else "local",
        severity=severity,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

APP_SOURCE = "".join(f"line {i}\n" for i in range(1, 21))


@pytest.fixture
def vcs(tmp_path):
    """A repo whose feature branch has one commit changing src/app.py and src/util.py."""
    repo = FakeVcs(tmp_path, {"src/app.py": APP_SOURCE, "src/util.py": "a = 1\n", "README.md": "# demo\n"})
    repo.commit_files(
        {"src/app.py": APP_SOURCE.replace("line 5\n", "line five\n"), "src/util.py": "a = 2\n"},
        "feat: first change",
    )
    return repo


@pytest.fixture
def comment_factory():
    return make_comment


@pytest.fixture
def fakes():
    """Namespace of fake classes for tests that need bespoke instances."""

    class _Fakes:
        Service = FakeService
        Checkpoints = FakeCheckpoints
        Reviewer = ScriptedReviewer
        Triage = ScriptedTriage
        Judge = ScriptedJudge
        Fixer = LineFixer
        Vcs = FakeVcs

    return _Fakes


@pytest.fixture
def build_orchestrator():
    """Factory wiring a ReviewOrchestrator from fakes; keyword overrides replace any part."""

    def _build(vcs, service, checkpoints=None, **overrides):
        reviewer = overrides.pop("reviewer", None) or ScriptedReviewer()
        triage = overrides.pop("triage", None) or ScriptedTriage()
        judge = overrides.pop("judge", None) or ScriptedJudge()
        fixer = overrides.pop("fixer", None) or LineFixer()
        threshold = overrides.pop("rewrite_threshold", 3)
        rewriter = overrides.pop("rewriter", None) or HistoryRewriter(vcs, threshold=threshold)
        settings = SessionSettings(
            branch=vcs.current_branch(),
            base="main",
            max_iterations=overrides.pop("max_iterations", 10),
            poll_deadline=overrides.pop("poll_deadline", 0),
            poll_interval=1,
            rewrite_history=overrides.pop("rewrite_history", True),
            shadow=overrides.pop("shadow", False),
        )
        return ReviewOrchestrator(
            settings=settings,
            vcs=vcs,
            service=service,
            checkpoints=checkpoints if checkpoints is not None else FakeCheckpoints(),
            local_gate=LocalReviewGate(reviewer, max_rounds=overrides.pop("local_review_rounds", 3)),
            classifier=CommentClassifier(vcs, triage),
            arbitration=ArbitrationEngine(judge),
            fix_loop=FixLoop(vcs, fixer, sleep=lambda _: None),
            rewriter=rewriter,
            clock=lambda: 0.0,
            sleep=lambda _: None,
            now=lambda: vcs.now,
            **overrides,
        )

    return _build
