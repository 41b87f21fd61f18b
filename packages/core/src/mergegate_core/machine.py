"""Review session state machine.

Every transition is a pure function ``transition(state, event) -> (state, effects)``.
The orchestrator performs the effects, turns their results into events and
feeds them back in. Keeping the transition table free of I/O makes the
bounded fix loop and the timeout fallback testable without any collaborator.

    idle -> local_review -> triggered -> polling -> classifying
         -> arbitrating -> fixing -> triggered (loop)
                                  | rewriting -> triggered (one confirming pass)
                                  | merging -> merged | blocked
                                  | aborted
    polling --timeout--> fallback_review -> rewriting | merging
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class Phase(str, Enum):
    IDLE = "idle"
    LOCAL_REVIEW = "local_review"
    TRIGGERED = "triggered"
    POLLING = "polling"
    CLASSIFYING = "classifying"
    ARBITRATING = "arbitrating"
    FIXING = "fixing"
    FALLBACK_REVIEW = "fallback_review"
    REWRITING = "rewriting"
    MERGING = "merging"
    MERGED = "merged"
    BLOCKED = "blocked"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.MERGED, Phase.BLOCKED, Phase.ABORTED)


class Effect(str, Enum):
    RUN_LOCAL_REVIEW = "run_local_review"
    REQUEST_REVIEW = "request_review"
    POLL = "poll"
    CLASSIFY = "classify"
    ARBITRATE = "arbitrate"
    APPLY_FIXES = "apply_fixes"
    RUN_FALLBACK_REVIEW = "run_fallback_review"
    REWRITE_HISTORY = "rewrite_history"
    MERGE = "merge"


_PHASE_EFFECTS = {
    Phase.LOCAL_REVIEW: [Effect.RUN_LOCAL_REVIEW],
    Phase.TRIGGERED: [Effect.REQUEST_REVIEW],
    Phase.POLLING: [Effect.POLL],
    Phase.CLASSIFYING: [Effect.CLASSIFY],
    Phase.ARBITRATING: [Effect.ARBITRATE],
    Phase.FIXING: [Effect.APPLY_FIXES],
    Phase.FALLBACK_REVIEW: [Effect.RUN_FALLBACK_REVIEW],
    Phase.REWRITING: [Effect.REWRITE_HISTORY],
    Phase.MERGING: [Effect.MERGE],
}


@dataclass(frozen=True)
class SessionState:
    phase: Phase = Phase.IDLE
    max_iterations: int = 10
    iteration: int = 0
    head_sha: str = ""
    requested_at: str = ""
    requested_shas: tuple[str, ...] = ()
    rewritten: bool = False
    rewrite_backup_ref: str = ""
    rewrite_original_head: str = ""
    local_review_passed: bool = False
    fallback_rationale: str = ""
    reason: str = ""
    unresolved: tuple[str, ...] = ()
    last_completed_step: str = "none"

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "max_iterations": self.max_iterations,
            "iteration": self.iteration,
            "head_sha": self.head_sha,
            "requested_at": self.requested_at,
            "requested_shas": list(self.requested_shas),
            "rewritten": self.rewritten,
            "rewrite_backup_ref": self.rewrite_backup_ref,
            "rewrite_original_head": self.rewrite_original_head,
            "local_review_passed": self.local_review_passed,
            "fallback_rationale": self.fallback_rationale,
            "reason": self.reason,
            "unresolved": list(self.unresolved),
            "last_completed_step": self.last_completed_step,
        }

    @classmethod
    def from_dict(cls, d: dict) -> SessionState:
        return cls(
            phase=Phase(d.get("phase", "idle")),
            max_iterations=d.get("max_iterations", 10),
            iteration=d.get("iteration", 0),
            head_sha=d.get("head_sha", ""),
            requested_at=d.get("requested_at", ""),
            requested_shas=tuple(d.get("requested_shas", [])),
            rewritten=d.get("rewritten", False),
            rewrite_backup_ref=d.get("rewrite_backup_ref", ""),
            rewrite_original_head=d.get("rewrite_original_head", ""),
            local_review_passed=d.get("local_review_passed", False),
            fallback_rationale=d.get("fallback_rationale", ""),
            reason=d.get("reason", ""),
            unresolved=tuple(d.get("unresolved", [])),
            last_completed_step=d.get("last_completed_step", "none"),
        )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Started:
    head_sha: str


@dataclass(frozen=True)
class LocalReviewPassed:
    pass


@dataclass(frozen=True)
class LocalReviewFailed:
    reason: str


@dataclass(frozen=True)
class ReviewRequested:
    head_sha: str
    requested_at: str


@dataclass(frozen=True)
class TriggerFailed:
    reason: str


@dataclass(frozen=True)
class ResponseReceived:
    comment_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class PollTimedOut:
    pass


@dataclass(frozen=True)
class Classified:
    disputed: int
    confirmed: tuple[str, ...] = ()


@dataclass(frozen=True)
class Arbitrated:
    confirmed: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class FixesApplied:
    head_sha: str


@dataclass(frozen=True)
class FallbackPassed:
    rationale: str


@dataclass(frozen=True)
class FallbackFailed:
    reason: str


@dataclass(frozen=True)
class RewriteCompleted:
    head_sha: str


@dataclass(frozen=True)
class RewriteSkipped:
    reason: str


@dataclass(frozen=True)
class MergeAuthorized:
    head_sha: str


@dataclass(frozen=True)
class MergeBlocked:
    reason: str


@dataclass(frozen=True)
class SessionFailed:
    reason: str


Event = (
    Started
    | LocalReviewPassed
    | LocalReviewFailed
    | ReviewRequested
    | TriggerFailed
    | ResponseReceived
    | PollTimedOut
    | Classified
    | Arbitrated
    | FixesApplied
    | FallbackPassed
    | FallbackFailed
    | RewriteCompleted
    | RewriteSkipped
    | MergeAuthorized
    | MergeBlocked
    | SessionFailed
)


class InvalidTransition(ValueError):
    def __init__(self, phase: Phase, event):
        super().__init__(f"{type(event).__name__} is not valid in phase {phase.value!r}")
        self.phase = phase
        self.event = event


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


def effects_for(state: SessionState) -> list[Effect]:
    """Return the effects a state requires. Used both after transitions and on resume."""
    return list(_PHASE_EFFECTS.get(state.phase, []))


# A finished or rolled-back rewrite leaves nothing to restore on resume.
_REWRITE_DONE = {"rewrite_backup_ref": "", "rewrite_original_head": ""}


def _move(state: SessionState, phase: Phase, step: str, **changes) -> tuple[SessionState, list[Effect]]:
    new_state = replace(state, phase=phase, last_completed_step=step, **changes)
    return new_state, effects_for(new_state)


def _after_resolution(state: SessionState, step: str, confirmed: tuple[str, ...], **changes):
    """Decide where to go once disputes are settled for the current batch."""
    if confirmed:
        if state.iteration >= state.max_iterations:
            return _move(
                state,
                Phase.ABORTED,
                step,
                unresolved=confirmed,
                reason=f"iteration bound of {state.max_iterations} reached with {len(confirmed)} unresolved comment(s)",
                **changes,
            )
        return _move(state, Phase.FIXING, step, iteration=state.iteration + 1, unresolved=confirmed, **changes)
    return _ready_to_merge(state, step, **changes)


def _ready_to_merge(state: SessionState, step: str, **changes):
    if state.rewritten:
        return _move(state, Phase.MERGING, step, unresolved=(), **changes)
    return _move(state, Phase.REWRITING, step, unresolved=(), **changes)


def transition(state: SessionState, event) -> tuple[SessionState, list[Effect]]:
    phase = state.phase

    if isinstance(event, SessionFailed):
        if phase.is_terminal:
            raise InvalidTransition(phase, event)
        return _move(state, Phase.BLOCKED, state.last_completed_step, reason=event.reason)

    if phase == Phase.IDLE and isinstance(event, Started):
        return _move(state, Phase.LOCAL_REVIEW, "started", head_sha=event.head_sha, local_review_passed=False, reason="")

    if phase == Phase.LOCAL_REVIEW:
        if isinstance(event, LocalReviewPassed):
            return _move(state, Phase.TRIGGERED, "local_review", local_review_passed=True)
        if isinstance(event, LocalReviewFailed):
            return _move(state, Phase.BLOCKED, "local_review", reason=event.reason)

    if phase == Phase.TRIGGERED:
        if isinstance(event, ReviewRequested):
            shas = state.requested_shas
            if event.head_sha not in shas:
                shas = shas + (event.head_sha,)
            return _move(
                state,
                Phase.POLLING,
                "review_requested",
                head_sha=event.head_sha,
                requested_at=event.requested_at,
                requested_shas=shas,
            )
        if isinstance(event, TriggerFailed):
            return _move(state, Phase.FALLBACK_REVIEW, "review_request_failed", reason=event.reason)

    if phase == Phase.POLLING:
        if isinstance(event, ResponseReceived):
            return _move(state, Phase.CLASSIFYING, "polled")
        if isinstance(event, PollTimedOut):
            return _move(state, Phase.FALLBACK_REVIEW, "poll_timed_out")

    if phase == Phase.CLASSIFYING and isinstance(event, Classified):
        if event.disputed:
            return _move(state, Phase.ARBITRATING, "classified")
        return _after_resolution(state, "classified", tuple(event.confirmed))

    if phase == Phase.ARBITRATING and isinstance(event, Arbitrated):
        return _after_resolution(state, "arbitrated", tuple(event.confirmed))

    if phase == Phase.FIXING and isinstance(event, FixesApplied):
        return _move(state, Phase.TRIGGERED, "fixes_applied", head_sha=event.head_sha, unresolved=())

    if phase == Phase.FALLBACK_REVIEW:
        if isinstance(event, FallbackPassed):
            return _ready_to_merge(state, "fallback_review", fallback_rationale=event.rationale, local_review_passed=True, reason="")
        if isinstance(event, FallbackFailed):
            return _move(state, Phase.BLOCKED, "fallback_review", reason=event.reason)

    if phase == Phase.REWRITING:
        if isinstance(event, RewriteCompleted):
            # A published rewrite gets one confirming external pass.
            return _move(state, Phase.TRIGGERED, "rewrite", head_sha=event.head_sha, rewritten=True, **_REWRITE_DONE)
        if isinstance(event, RewriteSkipped):
            return _move(state, Phase.MERGING, "rewrite", rewritten=True, **_REWRITE_DONE)

    if phase == Phase.MERGING:
        if isinstance(event, MergeAuthorized):
            return _move(state, Phase.MERGED, "merge", head_sha=event.head_sha)
        if isinstance(event, MergeBlocked):
            return _move(state, Phase.BLOCKED, "merge", reason=event.reason)

    raise InvalidTransition(phase, event)
