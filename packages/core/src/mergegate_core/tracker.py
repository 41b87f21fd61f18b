"""Change tracker: resolves the commit range under review.

Read-only. Called at the top of every step that needs the range so later
steps always act on the current head rather than a cached snapshot.
"""

from __future__ import annotations

import logging

from mergegate_core.errors import NoChangesError
from mergegate_core.models import ChangeRange
from mergegate_core.vcs.base import VersionControl

logger = logging.getLogger(__name__)


def resolve_range(vcs: VersionControl, branch: str, base_ref: str) -> ChangeRange:
    """Return ``(base_sha, head_sha, changed_paths)`` for branch against base_ref.

    The base is the merge-base, so commits that landed on base_ref after the
    branch was cut are not counted as changes under review.
    """
    head_sha = vcs.rev_parse(branch)
    base_sha = vcs.merge_base(base_ref, head_sha)
    if head_sha == base_sha:
        raise NoChangesError(f"{branch} has no commits beyond {base_ref}")
    changed = tuple(vcs.changed_paths(base_sha, head_sha))
    logger.debug("Range %s..%s touches %d path(s)", base_sha[:7], head_sha[:7], len(changed))
    return ChangeRange(base_sha=base_sha, head_sha=head_sha, changed_paths=changed)


def has_new_commits(vcs: VersionControl, branch: str, since_sha: str) -> bool:
    return bool(since_sha) and vcs.rev_parse(branch) != since_sha
