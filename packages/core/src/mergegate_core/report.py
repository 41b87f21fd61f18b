"""Markdown session report, printed at the end of a run and optionally posted to the PR."""

from __future__ import annotations

from mergegate_core.ledger import Ledger
from mergegate_core.models import Aborted, Blocked, Classification, Merged, Outcome

_ORDER = (
    Classification.ADDRESSED,
    Classification.FIXED,
    Classification.STALE,
    Classification.DISMISSED,
    Classification.CONFIRMED,
    Classification.DISPUTED,
    Classification.UNCLASSIFIED,
)


def _headline(outcome: Outcome) -> str:
    if isinstance(outcome, Merged):
        return f"> Merged at `{outcome.head_sha[:7]}`."
    if isinstance(outcome, Blocked):
        return f"> Blocked: {outcome.reason}"
    if isinstance(outcome, Aborted):
        ids = ", ".join(f"`{c}`" for c in outcome.unresolved_comments)
        return f"> Aborted with {len(outcome.unresolved_comments)} unresolved comment(s): {ids}"
    raise TypeError(f"Unknown outcome {outcome!r}")


def build_report(outcome: Outcome, ledger: Ledger, iteration: int, fallback_rationale: str = "") -> str:
    lines = ["## Merge gate summary\n", _headline(outcome) + "\n"]

    counts = ledger.counts()
    stats = " · ".join(f"**{counts[c.value]}** {c.value}" for c in _ORDER if counts.get(c.value))
    lines.append(f"**{len(ledger)}** comment(s) · {iteration} fix iteration(s)" + (f" · {stats}" if stats else "") + "\n")

    if fallback_rationale:
        lines.append(f"_{fallback_rationale}_\n")

    if ledger.comments:
        lines.append("| Comment | File | Source | Classification | Fix |")
        lines.append("|---------|------|--------|----------------|-----|")
        for comment in ledger.comments:
            where = comment.file_path + (f":{comment.line_start}" if comment.line_start else "")
            fix = ledger.fix_commit(comment.id)
            lines.append(
                f"| `{comment.id}` | `{where}` | {comment.source.value} "
                f"| {ledger.classification(comment.id).value} | {f'`{fix[:7]}`' if fix else '-'} |"
            )

    verdicts = ledger.verdicts
    if verdicts:
        lines.append("\n**Arbitration**\n")
        lines.append("| Comment | Outcome | Round | Confidence | Rationale |")
        lines.append("|---------|---------|:-----:|:----------:|-----------|")
        for v in verdicts:
            rationale = " ".join(v.rationale.split())[:120] or "-"
            lines.append(f"| `{v.comment_id}` | {v.outcome.value} | {v.rounds} | {v.confidence or '-'} | {rationale} |")

    return "\n".join(lines)
