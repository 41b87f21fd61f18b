"""Tests for the pure session state machine."""

import pytest

from mergegate_core.machine import (
    Arbitrated,
    Classified,
    Effect,
    FallbackFailed,
    FallbackPassed,
    FixesApplied,
    InvalidTransition,
    LocalReviewFailed,
    LocalReviewPassed,
    MergeAuthorized,
    MergeBlocked,
    Phase,
    PollTimedOut,
    ResponseReceived,
    ReviewRequested,
    RewriteCompleted,
    RewriteSkipped,
    SessionFailed,
    SessionState,
    Started,
    TriggerFailed,
    effects_for,
    transition,
)


def _at(phase, **changes):
    return SessionState(phase=phase, **changes)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestHappyPath:
    def test_start_runs_local_review(self):
        state, effects = transition(SessionState(), Started("abc"))
        assert state.phase == Phase.LOCAL_REVIEW
        assert state.head_sha == "abc"
        assert effects == [Effect.RUN_LOCAL_REVIEW]

    def test_local_review_pass_triggers_external_review(self):
        state, effects = transition(_at(Phase.LOCAL_REVIEW), LocalReviewPassed())
        assert state.phase == Phase.TRIGGERED
        assert state.local_review_passed is True
        assert effects == [Effect.REQUEST_REVIEW]

    def test_request_records_head_once(self):
        state, _ = transition(_at(Phase.TRIGGERED, requested_shas=("abc",)), ReviewRequested("abc", "t"))
        assert state.phase == Phase.POLLING
        assert state.requested_shas == ("abc",)

        state, _ = transition(_at(Phase.TRIGGERED, requested_shas=("abc",)), ReviewRequested("def", "t"))
        assert state.requested_shas == ("abc", "def")

    def test_no_disputes_and_nothing_confirmed_goes_to_rewrite(self):
        state, effects = transition(_at(Phase.CLASSIFYING), Classified(disputed=0))
        assert state.phase == Phase.REWRITING
        assert effects == [Effect.REWRITE_HISTORY]

    def test_after_rewrite_nothing_left_goes_straight_to_merge(self):
        state, effects = transition(_at(Phase.CLASSIFYING, rewritten=True), Classified(disputed=0))
        assert state.phase == Phase.MERGING
        assert effects == [Effect.MERGE]

    def test_disputes_go_to_arbitration(self):
        state, effects = transition(_at(Phase.CLASSIFYING), Classified(disputed=2, confirmed=("c1",)))
        assert state.phase == Phase.ARBITRATING
        assert effects == [Effect.ARBITRATE]

    def test_confirmed_comments_start_a_fix_iteration(self):
        state, effects = transition(_at(Phase.ARBITRATING, iteration=2), Arbitrated(confirmed=("c1",)))
        assert state.phase == Phase.FIXING
        assert state.iteration == 3
        assert state.unresolved == ("c1",)
        assert effects == [Effect.APPLY_FIXES]

    def test_fixes_retrigger_review(self):
        state, effects = transition(_at(Phase.FIXING, unresolved=("c1",)), FixesApplied("new"))
        assert state.phase == Phase.TRIGGERED
        assert state.head_sha == "new"
        assert state.unresolved == ()
        assert effects == [Effect.REQUEST_REVIEW]

    def test_completed_rewrite_gets_one_confirming_pass(self):
        state, effects = transition(_at(Phase.REWRITING), RewriteCompleted("rewritten"))
        assert state.phase == Phase.TRIGGERED
        assert state.rewritten is True
        assert effects == [Effect.REQUEST_REVIEW]

    def test_skipped_rewrite_merges(self):
        state, _ = transition(_at(Phase.REWRITING), RewriteSkipped("short history"))
        assert state.phase == Phase.MERGING
        assert state.rewritten is True

    @pytest.mark.parametrize("event", [RewriteCompleted("rewritten"), RewriteSkipped("rolled back")])
    def test_finished_rewrite_forgets_its_backup(self, event):
        pending = _at(
            Phase.REWRITING, rewrite_backup_ref="refs/mergegate/backup/feature/1", rewrite_original_head="abc"
        )
        state, _ = transition(pending, event)
        assert state.rewrite_backup_ref == ""
        assert state.rewrite_original_head == ""

    def test_merge_authorized(self):
        state, effects = transition(_at(Phase.MERGING), MergeAuthorized("abc"))
        assert state.phase == Phase.MERGED
        assert effects == []


# ---------------------------------------------------------------------------
# Bounds and fallbacks
# ---------------------------------------------------------------------------


class TestBoundsAndFallbacks:
    def test_aborts_when_iteration_bound_reached(self):
        state, effects = transition(_at(Phase.CLASSIFYING, iteration=10, max_iterations=10), Classified(0, ("c9",)))
        assert state.phase == Phase.ABORTED
        assert state.unresolved == ("c9",)
        assert "iteration bound of 10" in state.reason
        assert effects == []

    def test_last_allowed_iteration_still_fixes(self):
        state, _ = transition(_at(Phase.CLASSIFYING, iteration=9, max_iterations=10), Classified(0, ("c9",)))
        assert state.phase == Phase.FIXING
        assert state.iteration == 10

    def test_poll_timeout_runs_fallback(self):
        state, effects = transition(_at(Phase.POLLING), PollTimedOut())
        assert state.phase == Phase.FALLBACK_REVIEW
        assert effects == [Effect.RUN_FALLBACK_REVIEW]

    def test_trigger_failure_runs_fallback(self):
        state, _ = transition(_at(Phase.TRIGGERED), TriggerFailed("unreachable"))
        assert state.phase == Phase.FALLBACK_REVIEW

    def test_fallback_pass_records_rationale(self):
        state, _ = transition(_at(Phase.FALLBACK_REVIEW), FallbackPassed("external review unavailable"))
        assert state.phase == Phase.REWRITING
        assert state.fallback_rationale == "external review unavailable"
        assert state.local_review_passed is True

    def test_fallback_failure_blocks(self):
        state, _ = transition(_at(Phase.FALLBACK_REVIEW), FallbackFailed("local gate failed"))
        assert state.phase == Phase.BLOCKED
        assert state.reason == "local gate failed"

    def test_local_review_failure_blocks(self):
        state, _ = transition(_at(Phase.LOCAL_REVIEW), LocalReviewFailed("2 blocking findings"))
        assert state.phase == Phase.BLOCKED

    def test_merge_blocked(self):
        state, _ = transition(_at(Phase.MERGING), MergeBlocked("checks pending"))
        assert state.phase == Phase.BLOCKED
        assert state.last_completed_step == "merge"

    def test_session_failure_keeps_last_completed_step(self):
        state, _ = transition(_at(Phase.POLLING, last_completed_step="review_requested"), SessionFailed("boom"))
        assert state.phase == Phase.BLOCKED
        assert state.last_completed_step == "review_requested"
        assert state.reason == "boom"


# ---------------------------------------------------------------------------
# Invalid transitions and persistence
# ---------------------------------------------------------------------------


class TestInvalid:
    @pytest.mark.parametrize(
        "phase,event",
        [
            (Phase.IDLE, ResponseReceived()),
            (Phase.POLLING, FixesApplied("x")),
            (Phase.MERGED, Started("x")),
            (Phase.FIXING, Classified(0)),
        ],
    )
    def test_rejects_event_not_valid_in_phase(self, phase, event):
        with pytest.raises(InvalidTransition):
            transition(_at(phase), event)

    def test_session_failure_invalid_once_terminal(self):
        with pytest.raises(InvalidTransition):
            transition(_at(Phase.ABORTED), SessionFailed("late"))

    def test_transition_does_not_mutate_input(self):
        before = _at(Phase.TRIGGERED)
        transition(before, ReviewRequested("abc", "t"))
        assert before.phase == Phase.TRIGGERED
        assert before.requested_shas == ()


class TestPersistence:
    def test_round_trip_through_dict(self):
        state = SessionState(
            phase=Phase.FIXING,
            iteration=3,
            head_sha="abc",
            requested_shas=("a", "b"),
            unresolved=("c1",),
            local_review_passed=True,
            rewrite_backup_ref="refs/mergegate/backup/feature/1",
            rewrite_original_head="abc",
            last_completed_step="arbitrated",
        )
        assert SessionState.from_dict(state.to_dict()) == state

    def test_effects_for_resumed_state(self):
        assert effects_for(_at(Phase.POLLING)) == [Effect.POLL]
        assert effects_for(_at(Phase.BLOCKED)) == []
