"""Version-control boundary.

The orchestrator depends on VersionControl, never on git directly, so every
component can be exercised against an in-memory fake. All write primitives
are fallible and raise VcsError; callers decide whether a failure is fatal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path


class VersionControl(ABC):
    root: Path

    # ------------------------------------------------------------------ #
    # Read-only queries                                                    #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def current_branch(self) -> str:
        """Return the checked-out branch name."""

    @abstractmethod
    def rev_parse(self, ref: str) -> str:
        """Resolve a ref to a full commit SHA. Raises VcsError if it does not exist."""

    @abstractmethod
    def resolve_ref(self, ref: str) -> str | None:
        """Resolve a ref to a commit SHA, or None if it does not exist."""

    @abstractmethod
    def merge_base(self, a: str, b: str) -> str:
        """Return the best common ancestor of two commits."""

    @abstractmethod
    def diff(self, base: str, head: str, paths: list[str] | None = None) -> str:
        """Return the unified diff between two commits."""

    @abstractmethod
    def changed_paths(self, base: str, head: str) -> list[str]:
        """Return paths changed between two commits."""

    @abstractmethod
    def commit_count(self, base: str, head: str) -> int:
        """Return the number of commits reachable from head but not from base."""

    @abstractmethod
    def tree_of(self, ref: str) -> str:
        """Return the tree SHA of a commit."""

    @abstractmethod
    def file_exists(self, path: str, rev: str) -> bool:
        """Return True if path exists at rev."""

    @abstractmethod
    def line_modified_at(self, path: str, start: int, end: int, rev: str) -> datetime | None:
        """Return the latest commit time touching lines start..end of path at rev.

        Returns None when the path or the line range does not exist at rev.
        """

    @abstractmethod
    def is_dirty(self) -> bool:
        """Return True if the working tree or index has uncommitted changes."""

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def commit(self, message: str, paths: list[str]) -> str:
        """Stage paths, commit them, and return the new commit SHA."""

    @abstractmethod
    def push(self, branch: str, force: bool = False) -> None:
        """Publish branch to the remote."""

    @abstractmethod
    def reset_soft(self, ref: str) -> None:
        """Move the branch pointer to ref, keeping index and working tree."""

    @abstractmethod
    def reset_hard(self, ref: str) -> None:
        """Move the branch pointer to ref and discard index and working tree changes."""

    @abstractmethod
    def unstage_all(self) -> None:
        """Unstage everything, keeping working tree changes."""

    @abstractmethod
    def create_ref(self, name: str, target: str) -> None:
        """Create or move a ref to point at target."""

    @abstractmethod
    def restore_paths(self, paths: list[str]) -> None:
        """Discard working tree and index changes for paths."""

    @abstractmethod
    def staged_diff(self, paths: list[str]) -> str:
        """Return the diff of uncommitted changes to paths against HEAD."""

    # ------------------------------------------------------------------ #
    # Working tree file access                                             #
    # ------------------------------------------------------------------ #

    def read_file(self, path: str) -> str | None:
        target = self.root / path
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8", errors="replace")

    def write_file(self, path: str, content: str) -> None:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
