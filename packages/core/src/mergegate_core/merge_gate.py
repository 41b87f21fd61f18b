"""Merge gate: the only component allowed to authorize the irreversible merge.

Everything upstream produces evidence; this decides. Authorization requires
that the local review gate passed and that every ledgered comment reached a
terminal classification. A dismissal only counts when a valid dismissal
verdict backs it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mergegate_core.ledger import Ledger
from mergegate_core.models import Classification, VerdictOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeDecision:
    authorized: bool
    blocking: tuple[str, ...] = ()
    rationale: str = ""


class MergeGate:
    def evaluate(self, ledger: Ledger, local_gate_passed: bool, fallback_rationale: str = "") -> MergeDecision:
        blocking: list[str] = []
        if not local_gate_passed:
            blocking.append("local review gate has not passed")

        for comment in ledger.comments:
            classification = ledger.classification(comment.id)
            if not classification.is_terminal:
                blocking.append(f"{comment.id} is {classification.value}")
            elif classification == Classification.DISMISSED:
                verdict = ledger.final_verdict(comment.id)
                if verdict is None or verdict.outcome != VerdictOutcome.DISMISSED:
                    blocking.append(f"{comment.id} was dismissed without a dismissal verdict")
            elif classification == Classification.ADDRESSED and not ledger.fix_commit(comment.id):
                blocking.append(f"{comment.id} is marked addressed without a fix commit")

        if blocking:
            logger.info("Merge blocked: %s", "; ".join(blocking))
            return MergeDecision(authorized=False, blocking=tuple(blocking), rationale="; ".join(blocking))

        counts = ledger.counts()
        parts = [f"{n} {name}" for name, n in sorted(counts.items())]
        rationale = f"all {len(ledger)} comment(s) resolved" + (f" ({', '.join(parts)})" if parts else "")
        if fallback_rationale:
            rationale += f"; {fallback_rationale}"
        logger.info("Merge authorized: %s", rationale)
        return MergeDecision(authorized=True, rationale=rationale)
