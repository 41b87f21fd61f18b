"""Tests for the merge gate."""

import pytest

from mergegate_core.ledger import Ledger
from mergegate_core.merge_gate import MergeGate
from mergegate_core.models import Classification, Verdict, VerdictOutcome


@pytest.fixture
def ledger(comment_factory):
    ledger = Ledger()
    for comment_id in ("c1", "c2", "c3"):
        ledger.add(comment_factory(comment_id))
    return ledger


def _resolve_all(ledger):
    ledger.classify("c1", Classification.STALE)
    ledger.classify("c2", Classification.CONFIRMED)
    ledger.mark_addressed("c2", "abc1234")
    ledger.record_verdict(Verdict("c3", VerdictOutcome.DISMISSED, ("codex", "implementer"), 1, "high"))
    ledger.classify("c3", Classification.DISMISSED)


def test_authorizes_when_everything_resolved(ledger):
    _resolve_all(ledger)
    decision = MergeGate().evaluate(ledger, local_gate_passed=True)
    assert decision.authorized is True
    assert decision.rationale == "all 3 comment(s) resolved (1 addressed, 1 dismissed, 1 stale)"


def test_empty_ledger_is_mergeable():
    decision = MergeGate().evaluate(Ledger(), local_gate_passed=True)
    assert decision.authorized
    assert decision.rationale == "all 0 comment(s) resolved"


def test_blocks_without_local_gate(ledger):
    _resolve_all(ledger)
    decision = MergeGate().evaluate(ledger, local_gate_passed=False)
    assert not decision.authorized
    assert decision.blocking == ("local review gate has not passed",)


def test_blocks_on_open_comment(ledger):
    ledger.classify("c1", Classification.FIXED)
    ledger.classify("c2", Classification.CONFIRMED)
    ledger.classify("c3", Classification.DISPUTED)
    decision = MergeGate().evaluate(ledger, local_gate_passed=True)
    assert decision.blocking == ("c2 is confirmed", "c3 is disputed")


def test_dismissal_needs_a_dismissal_verdict(ledger):
    _resolve_all(ledger)
    ledger.record_verdict(Verdict("c3", VerdictOutcome.CONFIRMED, ("codex", "implementer"), 2, "high"))
    decision = MergeGate().evaluate(ledger, local_gate_passed=True)
    assert decision.blocking == ("c3 was dismissed without a dismissal verdict",)


def test_fallback_rationale_is_appended(ledger):
    _resolve_all(ledger)
    decision = MergeGate().evaluate(ledger, True, fallback_rationale="external review unavailable")
    assert decision.rationale.endswith("; external review unavailable")
