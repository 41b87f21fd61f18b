"""Exception taxonomy for review orchestration.

Recoverable errors (transient service faults, ambiguous staleness mapping,
inconclusive arbitration, failed history rewrites) are caught by the
component that owns the recovery path. Fatal errors propagate to the
orchestrator, which turns them into a blocked or aborted outcome.
"""

from __future__ import annotations


class MergeGateError(Exception):
    """Base class for every error raised by mergegate_core.

    ``last_completed_step`` and ``iteration_count`` are filled in by the
    orchestrator before the error reaches the user, so a human can decide
    whether to resume, narrow scope, or abandon the session.
    """

    def __init__(self, message: str, *, last_completed_step: str | None = None, iteration_count: int | None = None):
        super().__init__(message)
        self.last_completed_step = last_completed_step
        self.iteration_count = iteration_count

    def with_progress(self, last_completed_step: str, iteration_count: int) -> MergeGateError:
        self.last_completed_step = last_completed_step
        self.iteration_count = iteration_count
        return self

    def __str__(self) -> str:
        message = super().__str__()
        if self.last_completed_step is None:
            return message
        return f"{message} (last completed step: {self.last_completed_step}, iteration: {self.iteration_count})"


class NoChangesError(MergeGateError):
    """The branch head is identical to its base; nothing to review."""


class VcsError(MergeGateError):
    """A version-control primitive failed (lock contention, rejected push, ...)."""

    def __init__(self, message: str, *, command: list[str] | None = None, stderr: str = ""):
        super().__init__(message)
        self.command = command or []
        self.stderr = stderr


class TransientServiceError(MergeGateError):
    """The external review service is unreachable or returned a server error."""


class AmbiguousClassificationError(MergeGateError):
    """A comment cannot be mapped to a still-existing line range."""


class ArbitrationInconclusiveError(MergeGateError):
    """The judge could not produce a confident verdict."""


class InvalidVerdictError(ValueError):
    """A verdict lacks the evidence trail required for its outcome."""


class ClassificationOrderError(ValueError):
    """A comment classification was moved backward."""


class RewriteIntegrityError(MergeGateError):
    """A history rewrite could not be completed; the backup ref was restored."""


class BoundExceededError(MergeGateError):
    """The fix loop hit its iteration cap with confirmed comments still open."""

    def __init__(self, message: str, unresolved: list[str], **kwargs):
        super().__init__(message, **kwargs)
        self.unresolved = list(unresolved)


class LocalReviewFailedError(MergeGateError):
    """The local review gate still fails after its bounded fix rounds."""


class SessionBusyError(MergeGateError):
    """Another session currently owns the branch."""
