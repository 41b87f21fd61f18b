"""History rewriter.

Squashes the session's accumulated commits into one commit per path group
before the final merge. The pre-rewrite head is preserved under a backup ref
that is verified before anything destructive happens, and every failure
resets the branch to that ref.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable

from mergegate_core.errors import RewriteIntegrityError, VcsError
from mergegate_core.models import HistoryGroup, HistoryPlan
from mergegate_core.policies import group_commit_message
from mergegate_core.vcs.base import VersionControl

logger = logging.getLogger(__name__)

ROOT_GROUP = "root"


def group_label(path: str, depth: int = 1) -> str:
    parts = path.split("/")[:-1]
    if not parts:
        return ROOT_GROUP
    return "/".join(parts[:depth])


class HistoryRewriter:
    def __init__(
        self,
        vcs: VersionControl,
        threshold: int = 3,
        group_depth: int = 1,
        commit_message: Callable[[str, list[str]], str] = group_commit_message,
    ):
        self.vcs = vcs
        self.threshold = threshold
        self.group_depth = group_depth
        self.commit_message = commit_message

    def should_rewrite(self, base_sha: str, head_sha: str) -> bool:
        count = self.vcs.commit_count(base_sha, head_sha)
        logger.debug("Session has %d commit(s); rewrite threshold is %d", count, self.threshold)
        return count > self.threshold

    def plan(self, branch: str, base_ref: str) -> HistoryPlan:
        head = self.vcs.rev_parse(branch)
        merge_base = self.vcs.merge_base(base_ref, head)
        grouped: dict[str, list[str]] = defaultdict(list)
        for path in self.vcs.changed_paths(merge_base, head):
            grouped[group_label(path, self.group_depth)].append(path)
        groups = tuple(HistoryGroup(label, tuple(sorted(paths))) for label, paths in sorted(grouped.items()))
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return HistoryPlan(
            groups=groups,
            backup_ref=f"refs/mergegate/backup/{branch}/{stamp}",
            original_head=head,
            merge_base=merge_base,
        )

    def rewrite(
        self,
        plan: HistoryPlan,
        branch: str,
        publish: bool = True,
        on_backup: Callable[[HistoryPlan], None] | None = None,
    ) -> str:
        """Apply the plan and return the new head SHA.

        Raises RewriteIntegrityError after restoring the backup ref if any
        step fails, including the final force push. ``on_backup`` runs once the
        backup ref is verified and before the branch pointer moves, so the
        caller can persist where to restore from if the process dies mid-rewrite.
        """
        self.vcs.create_ref(plan.backup_ref, plan.original_head)
        if self.vcs.resolve_ref(plan.backup_ref) != plan.original_head:
            raise RewriteIntegrityError(f"Backup ref {plan.backup_ref} could not be verified; rewrite not started")
        logger.info("Backed up %s at %s", branch, plan.backup_ref)
        if on_backup is not None:
            on_backup(plan)

        try:
            self.vcs.reset_soft(plan.merge_base)
            self.vcs.unstage_all()
            produced = []
            for group in plan.groups:
                paths = list(group.file_patterns)
                produced.append(self.vcs.commit(self.commit_message(group.label, paths), paths))
            if not produced:
                raise RewriteIntegrityError("rewrite produced no replacement commits")
            if self.vcs.tree_of("HEAD") != self.vcs.tree_of(plan.backup_ref):
                raise RewriteIntegrityError("rewritten tree differs from the pre-rewrite tree")
            if publish:
                self.vcs.push(branch, force=True)
        except (VcsError, RewriteIntegrityError) as e:
            logger.warning("History rewrite failed, restoring %s: %s", plan.backup_ref, e)
            self.vcs.reset_hard(plan.backup_ref)
            raise RewriteIntegrityError(f"History rewrite rolled back to {plan.backup_ref}: {e}") from e

        new_head = self.vcs.rev_parse("HEAD")
        logger.info("Rewrote %s into %d commit(s); new head %s", branch, len(produced), new_head[:7])
        return new_head
