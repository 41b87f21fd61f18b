"""VersionControl implementation backed by the git executable."""

from __future__ import annotations

import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path

from mergegate_core.errors import VcsError
from mergegate_core.vcs.base import VersionControl

logger = logging.getLogger(__name__)

# Pushes can block on credential helpers or slow remotes; local commands cannot.
_LOCAL_TIMEOUT = 60
_PUSH_TIMEOUT = 300


class GitRepository(VersionControl):
    def __init__(self, root: str | Path = ".", remote: str = "origin"):
        self.root = Path(root).resolve()
        self.remote = remote

    def _run(
        self, args: list[str], *, check: bool = True, timeout: int = _LOCAL_TIMEOUT
    ) -> subprocess.CompletedProcess[str]:
        cmd = ["git", *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=self.root,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError:
            raise VcsError("git executable not found", command=cmd)
        except subprocess.TimeoutExpired:
            raise VcsError(f"git {args[0]} timed out after {timeout}s", command=cmd)
        if check and result.returncode != 0:
            stderr = result.stderr.strip()
            logger.error("Command failed: %s\nstderr: %s", " ".join(cmd), stderr)
            raise VcsError(f"git {args[0]} failed: {stderr}", command=cmd, stderr=stderr)
        return result

    # ------------------------------------------------------------------ #
    # Read-only queries                                                    #
    # ------------------------------------------------------------------ #

    def current_branch(self) -> str:
        return self._run(["branch", "--show-current"]).stdout.strip()

    def rev_parse(self, ref: str) -> str:
        return self._run(["rev-parse", "--verify", f"{ref}^{{commit}}"]).stdout.strip()

    def resolve_ref(self, ref: str) -> str | None:
        result = self._run(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], check=False)
        sha = result.stdout.strip()
        return sha if result.returncode == 0 and sha else None

    def merge_base(self, a: str, b: str) -> str:
        return self._run(["merge-base", a, b]).stdout.strip()

    def diff(self, base: str, head: str, paths: list[str] | None = None) -> str:
        args = ["diff", f"{base}..{head}"]
        if paths:
            args += ["--", *paths]
        return self._run(args).stdout

    def changed_paths(self, base: str, head: str) -> list[str]:
        out = self._run(["diff", "--name-only", f"{base}..{head}"]).stdout
        return [line for line in out.splitlines() if line.strip()]

    def commit_count(self, base: str, head: str) -> int:
        return int(self._run(["rev-list", "--count", f"{base}..{head}"]).stdout.strip() or 0)

    def tree_of(self, ref: str) -> str:
        return self._run(["rev-parse", f"{ref}^{{tree}}"]).stdout.strip()

    def file_exists(self, path: str, rev: str) -> bool:
        return self._run(["cat-file", "-e", f"{rev}:{path}"], check=False).returncode == 0

    def line_modified_at(self, path: str, start: int, end: int, rev: str) -> datetime | None:
        result = self._run(["blame", "--porcelain", "-L", f"{start},{end}", rev, "--", path], check=False)
        if result.returncode != 0:
            # "no such path" and "file has only N lines" both land here.
            logger.debug("git blame could not map %s:%d-%d at %s: %s", path, start, end, rev, result.stderr.strip())
            return None
        times = [
            int(line.split(" ", 1)[1]) for line in result.stdout.splitlines() if line.startswith("committer-time ")
        ]
        if not times:
            return None
        return datetime.fromtimestamp(max(times), tz=timezone.utc)

    def is_dirty(self) -> bool:
        return bool(self._run(["status", "--porcelain"]).stdout.strip())

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #

    def commit(self, message: str, paths: list[str]) -> str:
        if not paths:
            raise VcsError("Refusing to create a commit with no paths")
        self._run(["add", "-A", "--", *paths])
        self._run(["commit", "-m", message])
        return self.rev_parse("HEAD")

    def push(self, branch: str, force: bool = False) -> None:
        args = ["push", self.remote, f"HEAD:refs/heads/{branch}"]
        if force:
            args.insert(1, "--force-with-lease")
        self._run(args, timeout=_PUSH_TIMEOUT)
        logger.info("Pushed %s to %s%s", branch, self.remote, " (forced)" if force else "")

    def reset_soft(self, ref: str) -> None:
        self._run(["reset", "--soft", ref])

    def reset_hard(self, ref: str) -> None:
        self._run(["reset", "--hard", ref])

    def unstage_all(self) -> None:
        self._run(["reset", "-q"])

    def create_ref(self, name: str, target: str) -> None:
        self._run(["update-ref", name, target])

    def restore_paths(self, paths: list[str]) -> None:
        if not paths:
            return
        tracked = [p for p in paths if self.file_exists(p, "HEAD")]
        if tracked:
            self._run(["checkout", "HEAD", "--", *tracked])
        for p in paths:
            if p not in tracked:
                # New file created by a fix that is being rolled back.
                self._run(["rm", "-q", "--cached", "--ignore-unmatch", "--", p], check=False)
                target = self.root / p
                if target.is_file():
                    target.unlink()

    def staged_diff(self, paths: list[str]) -> str:
        if not paths:
            return ""
        # Intent-to-add makes brand new files show up in the diff.
        self._run(["add", "-N", "--", *paths], check=False)
        return self._run(["diff", "HEAD", "--", *paths]).stdout
