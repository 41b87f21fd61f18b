"""Review session orchestration.

The orchestrator owns the session: it loads or creates the checkpoint,
performs the effects the state machine asks for, feeds the resulting events
back into ``transition``, and saves a checkpoint after every transition.
All decisions about *where to go next* live in machine.py; this module only
knows how to *do* each step.
"""

from __future__ import annotations

import contextlib
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from rich.console import Console
from rich.markdown import Markdown

from mergegate_core.arbitration import ArbitrationEngine, LLMJudge
from mergegate_core.checks import QualityChecks
from mergegate_core.classifier import CommentClassifier, LLMTriage
from mergegate_core.config import load_guidelines
from mergegate_core.errors import (
    BoundExceededError,
    LocalReviewFailedError,
    MergeGateError,
    RewriteIntegrityError,
    TransientServiceError,
)
from mergegate_core.external import ExternalReviewService
from mergegate_core.fixer import FixLoop, LLMFixer
from mergegate_core.history import HistoryRewriter
from mergegate_core.ledger import Ledger
from mergegate_core.local_gate import LLMLocalReviewer, LocalReviewGate
from mergegate_core.lock import BranchLock
from mergegate_core.machine import (
    Arbitrated,
    Classified,
    Effect,
    FallbackFailed,
    FallbackPassed,
    FixesApplied,
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
from mergegate_core.merge_gate import MergeGate
from mergegate_core.models import (
    Aborted,
    Blocked,
    Checkpoint,
    Classification,
    Comment,
    CommentSource,
    HistoryPlan,
    Merged,
    Outcome,
)
from mergegate_core.poller import ExternalReviewPoller, TimedOut
from mergegate_core.providers.base import get_provider
from mergegate_core.report import build_report
from mergegate_core.tracker import has_new_commits, resolve_range
from mergegate_core.vcs.base import VersionControl

console = Console()
logger = logging.getLogger(__name__)

FALLBACK_RATIONALE = "external review unavailable; local review covered the range"


class Checkpoints(ABC):
    """Where session checkpoints live. One active checkpoint per branch."""

    @abstractmethod
    def save(self, checkpoint: Checkpoint) -> None:
        ...

    @abstractmethod
    def load(self, branch: str) -> Checkpoint | None:
        ...

    @abstractmethod
    def archive(self, branch: str) -> None:
        """Retire the branch's active checkpoint once its session is over."""


@dataclass
class SessionSettings:
    branch: str
    base: str = "main"
    max_iterations: int = 10
    poll_deadline: float = 900
    poll_interval: float = 30
    merge_method: str = "squash"
    rewrite_history: bool = True
    shadow: bool = False
    post_report: bool = True


class ReviewOrchestrator:
    def __init__(
        self,
        settings: SessionSettings,
        vcs: VersionControl,
        service: ExternalReviewService,
        checkpoints: Checkpoints,
        local_gate: LocalReviewGate,
        classifier: CommentClassifier,
        arbitration: ArbitrationEngine,
        fix_loop: FixLoop,
        rewriter: HistoryRewriter | None = None,
        merge_gate: MergeGate | None = None,
        lock: BranchLock | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.settings = settings
        self.vcs = vcs
        self.service = service
        self.checkpoints = checkpoints
        self.local_gate = local_gate
        self.classifier = classifier
        self.arbitration = arbitration
        self.fix_loop = fix_loop
        self.rewriter = rewriter
        self.merge_gate = merge_gate or MergeGate()
        self.lock = lock
        self._clock = clock
        self._sleep = sleep
        self._now = now

        self.state = SessionState(max_iterations=settings.max_iterations)
        self.ledger = Ledger()
        self.session_id = ""
        self.created_at = ""
        self.merge_rationale = ""
        self.poller: ExternalReviewPoller | None = None

        self._handlers: dict[Effect, Callable] = {
            Effect.RUN_LOCAL_REVIEW: self._run_local_review,
            Effect.REQUEST_REVIEW: self._request_review,
            Effect.POLL: self._poll,
            Effect.CLASSIFY: self._classify,
            Effect.ARBITRATE: self._arbitrate,
            Effect.APPLY_FIXES: self._apply_fixes,
            Effect.RUN_FALLBACK_REVIEW: self._run_fallback_review,
            Effect.REWRITE_HISTORY: self._rewrite_history,
            Effect.MERGE: self._merge,
        }

    # ------------------------------------------------------------------ #
    # Session lifecycle                                                    #
    # ------------------------------------------------------------------ #

    def run(self) -> Outcome:
        """Start or resume the branch's session and drive it to a terminal outcome.

        Raises SessionBusyError if another session holds the branch lock.
        """
        with self.lock if self.lock is not None else contextlib.nullcontext():
            self._load()
            self._drive()
            return self._finish()

    def _load(self) -> None:
        branch = self.settings.branch
        checkpoint = self.checkpoints.load(branch)
        if checkpoint is None:
            self.session_id = uuid.uuid4().hex
            self.created_at = self._now().isoformat()
            console.print(f"[cyan]Starting review session {self.session_id[:8]} on {branch}[/cyan]")
        else:
            self.session_id = checkpoint.session_id
            self.created_at = checkpoint.created_at
            self.ledger = Ledger.restore(checkpoint.comment_ledger, checkpoint.verdict_ledger)
            self.state = SessionState.from_dict(checkpoint.state)
            console.print(
                f"[cyan]Resuming session {self.session_id[:8]} on {branch} after step "
                f"{checkpoint.last_completed_step!r} (iteration {checkpoint.iteration_count})[/cyan]"
            )
            self._recover_working_tree()
            if self.state.phase.is_terminal:
                # A blocked session restarts from the top, keeping its ledger and bounds.
                self.state = replace(self.state, phase=Phase.IDLE)
            elif self.state.phase == Phase.POLLING and has_new_commits(self.vcs, branch, self.state.head_sha):
                logger.warning(
                    "%s moved since review of %s was requested; reviewing the new head",
                    branch,
                    self.state.head_sha[:7],
                )
                # New commits have not passed the local gate yet.
                self.state = replace(self.state, phase=Phase.IDLE)

        self.poller = ExternalReviewPoller(
            self.service, already_requested=self.state.requested_shas, clock=self._clock, sleep=self._sleep
        )

        if self.state.phase == Phase.IDLE:
            try:
                current = self.vcs.current_branch()
                if current != branch:
                    raise MergeGateError(f"Working tree is on {current!r}, not {branch!r}")
                event = Started(self._current_range().head_sha)
            except MergeGateError as e:
                event = SessionFailed(str(e))
            self._apply(event)

    def _recover_working_tree(self) -> None:
        """Undo whatever the interrupted process left half done.

        An unfinished history rewrite is rolled back to its backup ref. Any
        other uncommitted change is discarded: checkpoints only ever describe
        committed work.
        """
        state = self.state
        if state.rewrite_backup_ref:
            if self.vcs.rev_parse(self.settings.branch) != state.rewrite_original_head or self.vcs.is_dirty():
                logger.warning(
                    "Restoring %s from %s after an interrupted history rewrite",
                    self.settings.branch,
                    state.rewrite_backup_ref,
                )
                self.vcs.reset_hard(state.rewrite_backup_ref)
            self.state = replace(state, rewrite_backup_ref="", rewrite_original_head="")
        elif self.vcs.is_dirty():
            logger.warning("Discarding uncommitted changes left by the interrupted session")
            self.vcs.reset_hard("HEAD")

    def _drive(self) -> None:
        while not self.state.phase.is_terminal:
            for effect in effects_for(self.state):
                logger.debug("Performing %s in phase %s", effect.value, self.state.phase.value)
                try:
                    event = self._handlers[effect]()
                except MergeGateError as e:
                    logger.error("%s failed: %s", effect.value, e)
                    event = SessionFailed(str(e))
                self._apply(event)

    def _apply(self, event) -> None:
        previous = self.state.phase
        self.state, _ = transition(self.state, event)
        self._checkpoint()
        logger.info(
            "Session %s: %s -> %s (iteration %d)",
            self.session_id[:8],
            previous.value,
            self.state.phase.value,
            self.state.iteration,
        )

    def _checkpoint(self) -> None:
        self.checkpoints.save(
            Checkpoint(
                session_id=self.session_id,
                branch=self.settings.branch,
                last_completed_step=self.state.last_completed_step,
                iteration_count=self.state.iteration,
                state=self.state.to_dict(),
                comment_ledger=self.ledger.comment_entries(),
                verdict_ledger=self.ledger.verdict_entries(),
                created_at=self.created_at,
                updated_at=self._now().isoformat(),
            )
        )

    def _finish(self) -> Outcome:
        state = self.state
        if state.phase == Phase.MERGED:
            outcome: Outcome = Merged(head_sha=state.head_sha, rationale=self.merge_rationale)
            console.print(f"[green]Merged {self.settings.branch} at {state.head_sha[:7]}[/green]")
        elif state.phase == Phase.ABORTED:
            error = BoundExceededError(state.reason, list(state.unresolved)).with_progress(
                state.last_completed_step, state.iteration
            )
            logger.error("%s; unresolved: %s", error, ", ".join(error.unresolved))
            outcome = Aborted(
                unresolved_comments=state.unresolved,
                reason=state.reason,
                last_completed_step=state.last_completed_step,
                iteration_count=state.iteration,
            )
        else:
            logger.error(
                "Session blocked: %s (last completed step: %s, iteration: %d)",
                state.reason,
                state.last_completed_step,
                state.iteration,
            )
            outcome = Blocked(
                reason=state.reason, last_completed_step=state.last_completed_step, iteration_count=state.iteration
            )

        report = build_report(outcome, self.ledger, state.iteration, state.fallback_rationale)
        console.print(Markdown(report))
        if self.settings.post_report and not self.settings.shadow:
            self.service.post_report(report)
        if state.phase in (Phase.MERGED, Phase.ABORTED):
            self.checkpoints.archive(self.settings.branch)
        return outcome

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _current_range(self):
        return resolve_range(self.vcs, self.settings.branch, self.settings.base)

    def _publish(self) -> None:
        if not self.settings.shadow:
            self.fix_loop.push(self.settings.branch)

    def _on_fixed(self, comment: Comment, commit_sha: str) -> None:
        self.ledger.mark_addressed(comment.id, commit_sha)
        self._checkpoint()

    def _on_rewrite_backup(self, plan: HistoryPlan) -> None:
        self.state = replace(self.state, rewrite_backup_ref=plan.backup_ref, rewrite_original_head=plan.original_head)
        self._checkpoint()

    def _fix_local(self, findings: list[Comment]) -> None:
        for finding in findings:
            if self.ledger.add(finding):
                self.ledger.classify(finding.id, Classification.CONFIRMED, "local review finding")
        open_findings = [
            self.ledger.get(f.id) for f in findings if self.ledger.classification(f.id) == Classification.CONFIRMED
        ]
        self.fix_loop.apply_batch(open_findings, self.settings.branch, on_fixed=self._on_fixed, publish=False)

    def _retire_local_findings(self) -> None:
        # The gate passed, so earlier findings it no longer reports are resolved.
        for comment in self.ledger.with_classification(Classification.CONFIRMED):
            if comment.source == CommentSource.LOCAL:
                self.ledger.classify(comment.id, Classification.FIXED, "no longer reported by local review")

    # ------------------------------------------------------------------ #
    # Effect handlers: each performs one step and returns the next event  #
    # ------------------------------------------------------------------ #

    def _run_local_review(self):
        try:
            self.local_gate.enforce(self._current_range, self.vcs, fix=self._fix_local)
        except LocalReviewFailedError as e:
            return LocalReviewFailed(str(e))
        self._retire_local_findings()
        self._publish()
        return LocalReviewPassed()

    def _request_review(self):
        head_sha = self._current_range().head_sha
        if self.settings.shadow:
            return TriggerFailed("shadow mode: external review not requested")
        try:
            posted = self.poller.trigger(head_sha)
        except TransientServiceError as e:
            logger.warning("Could not request external review: %s", e)
            return TriggerFailed(str(e))
        if not posted and self.state.requested_at and self.state.head_sha == head_sha:
            requested_at = self.state.requested_at
        else:
            requested_at = self._now().isoformat()
        return ReviewRequested(head_sha=head_sha, requested_at=requested_at)

    def _poll(self):
        result = self.poller.poll(
            self.state.head_sha,
            since=datetime.fromisoformat(self.state.requested_at),
            deadline=self.settings.poll_deadline,
            interval=self.settings.poll_interval,
            seen=[c.id for c in self.ledger.comments],
        )
        if isinstance(result, TimedOut):
            return PollTimedOut()
        added = tuple(c.id for c in result.comments if self.ledger.add(c))
        console.print(f"External review responded with {len(added)} new comment(s)")
        return ResponseReceived(comment_ids=added)

    def _classify(self):
        summary = self.classifier.classify(self.ledger, self._current_range())
        return Classified(disputed=len(summary.disputed), confirmed=tuple(summary.confirmed))

    def _arbitrate(self):
        return Arbitrated(confirmed=tuple(self.arbitration.resolve(self.ledger)))

    def _apply_fixes(self):
        comments = self.ledger.unresolved_confirmed()
        console.print(f"[bold]Iteration {self.state.iteration}: fixing {len(comments)} confirmed comment(s)[/bold]")
        result = self.fix_loop.apply_batch(
            comments, self.settings.branch, on_fixed=self._on_fixed, publish=not self.settings.shadow
        )
        return FixesApplied(head_sha=result.head_sha)

    def _run_fallback_review(self):
        console.print(f"[yellow]Falling back to local review: {self.state.reason or 'no external response'}[/yellow]")
        try:
            result = self.local_gate.enforce(self._current_range, self.vcs, fix=self._fix_local)
        except LocalReviewFailedError as e:
            return FallbackFailed(str(e))
        self._retire_local_findings()
        if result.rounds > 1:
            self._publish()
        change = self._current_range()
        return FallbackPassed(f"{FALLBACK_RATIONALE} ({change.base_sha[:7]}..{change.head_sha[:7]})")

    def _rewrite_history(self):
        if not self.settings.rewrite_history or self.rewriter is None:
            return RewriteSkipped("history rewriting disabled")
        if self.settings.shadow:
            return RewriteSkipped("shadow mode")
        change = self._current_range()
        if not self.rewriter.should_rewrite(change.base_sha, change.head_sha):
            return RewriteSkipped("commit count at or below the rewrite threshold")
        plan = self.rewriter.plan(self.settings.branch, self.settings.base)
        try:
            head_sha = self.rewriter.rewrite(plan, self.settings.branch, publish=True, on_backup=self._on_rewrite_backup)
        except RewriteIntegrityError as e:
            # Fatal to the rewrite only; the session carries on with the original history.
            return RewriteSkipped(str(e))
        return RewriteCompleted(head_sha=head_sha)

    def _merge(self):
        head_sha = self._current_range().head_sha
        decision = self.merge_gate.evaluate(self.ledger, self.state.local_review_passed, self.state.fallback_rationale)
        if not decision.authorized:
            return MergeBlocked(decision.rationale)
        self.merge_rationale = decision.rationale
        if self.settings.shadow:
            console.print(f"[bold]Shadow mode: would merge {head_sha[:7]} ({self.settings.merge_method}).[/bold]")
            return MergeAuthorized(head_sha=head_sha)
        try:
            self.service.merge(head_sha, self.settings.merge_method)
        except TransientServiceError as e:
            return MergeBlocked(str(e))
        return MergeAuthorized(head_sha=head_sha)


def build_orchestrator(
    config: dict,
    branch: str,
    vcs: VersionControl,
    service: ExternalReviewService,
    checkpoints: Checkpoints,
    shadow: bool = False,
) -> ReviewOrchestrator:
    """Wire every collaborator from a loaded config dict."""
    reviewer_provider = get_provider(config["model"], config)
    judge_provider = get_provider(config["judge_model"], config) if config.get("judge_model") else reviewer_provider
    max_chars = config.get("max_chars_per_file", 20000)

    reviewer = LLMLocalReviewer(
        reviewer_provider, load_guidelines(config), exclude=config.get("exclude", []), max_chars=max_chars
    )
    settings = SessionSettings(
        branch=branch,
        base=config["base"],
        max_iterations=config["max_iterations"],
        poll_deadline=config["poll_deadline_seconds"],
        poll_interval=config["poll_interval_seconds"],
        merge_method=config["merge_method"],
        rewrite_history=config["rewrite_history"],
        shadow=shadow,
    )
    return ReviewOrchestrator(
        settings=settings,
        vcs=vcs,
        service=service,
        checkpoints=checkpoints,
        local_gate=LocalReviewGate(reviewer, max_rounds=config["local_review_rounds"]),
        classifier=CommentClassifier(vcs, LLMTriage(reviewer_provider, max_chars=max_chars)),
        arbitration=ArbitrationEngine(LLMJudge(judge_provider), confidence_threshold=config["confidence_threshold"]),
        fix_loop=FixLoop(vcs, LLMFixer(reviewer_provider), checks=QualityChecks(config.get("checks", []), cwd=vcs.root)),
        rewriter=HistoryRewriter(vcs, threshold=config["rewrite_threshold"], group_depth=config["rewrite_group_depth"]),
        lock=BranchLock(config["lock_dir"], branch),
    )
