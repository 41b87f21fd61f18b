"""Arbitration of disputed comments by an independent judge.

The judge sees both positions (the reviewer's comment and the implementer's
counter-rationale) and rules. One escalation round is allowed when the first
ruling is inconclusive; after that the dispute defaults to ``confirmed`` so
an unresolved disagreement never silently disappears.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from mergegate_core.errors import ArbitrationInconclusiveError, TransientServiceError
from mergegate_core.ledger import Ledger
from mergegate_core.models import CONFIDENCE_LEVELS, Classification, Comment, Position, Verdict, VerdictOutcome
from mergegate_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)

DISMISS = "dismiss"
CONFIRM = "confirm"
INCONCLUSIVE = "inconclusive"

IMPLEMENTER = "implementer"


@dataclass(frozen=True)
class Ruling:
    decision: str  # "dismiss" | "confirm" | "inconclusive"
    confidence: str = "low"
    rationale: str = ""
    judge: str = ""


class Judge(ABC):
    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def evaluate(self, question: str, position_a: Position, position_b: Position) -> Ruling:
        """Rule between two positions. May raise TransientServiceError."""


class LLMJudge(Judge):
    SYSTEM_PROMPT = (
        "You are an impartial senior engineer arbitrating a disagreement about a code review comment. "
        "You are neither the reviewer nor the author. Weigh both positions on technical merit only."
    )

    USER_PROMPT = """\
## Question
{question}

## Position A ({party_a})
{argument_a}

## Position B ({party_b})
{argument_b}

Respond with a single JSON object:
{{"decision": "dismiss" | "confirm" | "inconclusive",
  "confidence": "low" | "medium" | "high",
  "rationale": "<why>"}}
"dismiss" means the comment is invalid; "confirm" means it must be fixed.
"""

    def __init__(self, provider: BaseProvider):
        self.provider = provider

    @property
    def name(self) -> str:
        return self.provider.name

    def evaluate(self, question: str, position_a: Position, position_b: Position) -> Ruling:
        prompt = self.USER_PROMPT.format(
            question=question,
            party_a=position_a.party,
            argument_a=position_a.argument,
            party_b=position_b.party,
            argument_b=position_b.argument,
        )
        data = self.provider.parse_json(self.provider.complete(self.SYSTEM_PROMPT, prompt))
        if not isinstance(data, dict):
            return Ruling(INCONCLUSIVE, "low", "judge returned no usable answer", self.name)
        decision = data.get("decision")
        confidence = data.get("confidence")
        if decision not in (DISMISS, CONFIRM, INCONCLUSIVE):
            decision = INCONCLUSIVE
        if confidence not in CONFIDENCE_LEVELS:
            confidence = "low"
        return Ruling(decision, confidence, str(data.get("rationale", "")), self.name)


class ArbitrationEngine:
    def __init__(self, judge: Judge, confidence_threshold: str = "medium", max_escalations: int = 1):
        if confidence_threshold not in CONFIDENCE_LEVELS:
            raise ValueError(f"confidence_threshold must be one of {CONFIDENCE_LEVELS}, got {confidence_threshold!r}")
        self.judge = judge
        self.confidence_threshold = confidence_threshold
        self.max_escalations = max_escalations

    def _is_conclusive(self, ruling: Ruling) -> bool:
        if ruling.decision not in (DISMISS, CONFIRM):
            return False
        return CONFIDENCE_LEVELS.index(ruling.confidence) >= CONFIDENCE_LEVELS.index(self.confidence_threshold)

    def _ask(self, question: str, a: Position, b: Position) -> Ruling:
        try:
            return self.judge.evaluate(question, a, b)
        except TransientServiceError as e:
            logger.warning("Judge %s unavailable: %s", self.judge.name, e)
            return Ruling(INCONCLUSIVE, "low", f"judge unavailable: {e}", self.judge.name)

    def _deliberate(self, comment: Comment, a: Position, b: Position, verdicts: list[Verdict]) -> None:
        participants = (a.party, b.party)
        question = f"Is this review comment on {comment.file_path} valid and still in need of a fix?"
        for round_no in range(1, self.max_escalations + 2):
            ruling = self._ask(question, a, b)
            if self._is_conclusive(ruling):
                outcome = VerdictOutcome.DISMISSED if ruling.decision == DISMISS else VerdictOutcome.CONFIRMED
                verdicts.append(
                    Verdict(comment.id, outcome, participants, round_no, ruling.confidence, ruling.rationale)
                )
                return
            if round_no > self.max_escalations:
                break
            verdicts.append(
                Verdict(comment.id, VerdictOutcome.ESCALATED, participants, round_no, ruling.confidence, ruling.rationale)
            )
            question = (
                f"{question}\nA previous ruling was not decisive ({ruling.decision}, {ruling.confidence} "
                f"confidence): {ruling.rationale or 'no rationale given'}. Give a definitive decision."
            )
        raise ArbitrationInconclusiveError(f"No confident verdict for {comment.id} after {round_no} round(s)")

    def arbitrate(self, comment: Comment, reviewer: Position, implementer: Position) -> list[Verdict]:
        """Return the verdict trail for one disputed comment; the last entry is final."""
        verdicts: list[Verdict] = []
        try:
            self._deliberate(comment, reviewer, implementer, verdicts)
        except ArbitrationInconclusiveError as e:
            logger.warning("%s; defaulting to confirmed", e)
            verdicts.append(
                Verdict(
                    comment.id,
                    VerdictOutcome.CONFIRMED,
                    (reviewer.party, implementer.party),
                    len(verdicts) + 1,
                    "low",
                    "defaulted to confirmed after inconclusive arbitration",
                )
            )
        return verdicts

    def resolve(self, ledger: Ledger) -> list[str]:
        """Arbitrate every open dispute in the ledger and return the confirmed comment ids."""
        for comment in ledger.open_disputed():
            reviewer = Position(comment.author or "reviewer", comment.body)
            implementer = Position(IMPLEMENTER, ledger.counter_rationale(comment.id) or "The comment is incorrect.")
            verdicts = self.arbitrate(comment, reviewer, implementer)
            for verdict in verdicts:
                ledger.record_verdict(verdict)
            final = verdicts[-1]
            if final.outcome == VerdictOutcome.DISMISSED:
                ledger.classify(comment.id, Classification.DISMISSED, f"dismissed with {final.confidence} confidence")
            else:
                ledger.classify(comment.id, Classification.CONFIRMED, f"confirmed with {final.confidence} confidence")
        return [c.id for c in ledger.unresolved_confirmed()]
