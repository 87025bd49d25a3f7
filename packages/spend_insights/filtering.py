"""Drop non-spending records and flag borderline ones for a user decision.

Rules run in a fixed order and the first match decides. Every input lands in
exactly one of ``kept``, ``flagged`` or ``dropped``; flagged records wait for
:func:`resolve_review` before they can be grouped.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum

from .errors import ValidationError
from .logging_setup import get_logger
from .models import NormalizedTransaction, TransactionKind
from .rules import FilterRuleSet

logger = get_logger("spend_insights.filtering")


class DropReason(StrEnum):
    TRANSFER = "Transfer"
    FEE = "Fee"
    INVESTMENT_TRANSFER = "InvestmentTransfer"
    IGNORED = "Ignored"
    INCOME_EXCLUDED = "IncomeExcluded"


class ReviewDecision(StrEnum):
    KEEP = "keep"
    DROP = "drop"


@dataclass(frozen=True, slots=True)
class DroppedTransaction:
    transaction: NormalizedTransaction
    reason: DropReason


@dataclass(frozen=True, slots=True)
class FilterOutcome:
    kept: tuple[NormalizedTransaction, ...]
    flagged: tuple[NormalizedTransaction, ...]
    dropped: tuple[DroppedTransaction, ...]
    # Ids of every input record, in input order.
    input_order: tuple[str, ...] = ()

    @property
    def needs_review(self) -> bool:
        return bool(self.flagged)

    def dropped_transactions(self) -> list[NormalizedTransaction]:
        return [d.transaction for d in self.dropped]


def _disposition(t: NormalizedTransaction, rules: FilterRuleSet) -> DropReason | str | None:
    """``None`` to keep, ``"flag"`` to flag, otherwise the drop reason."""

    text = t.clean_description
    if t.kind is TransactionKind.TRANSFER:
        return DropReason.TRANSFER
    if t.kind is TransactionKind.FEE and not rules.is_interest(text):
        return DropReason.FEE
    if rules.is_investment_transfer(text):
        return DropReason.INVESTMENT_TRANSFER
    if (
        t.kind is TransactionKind.EXPENSE
        and rules.is_cash_withdrawal(text)
        and t.amount > rules.cash_withdrawal_threshold
    ):
        return "flag"
    if t.kind is TransactionKind.IGNORE:
        return DropReason.IGNORED
    if t.kind is TransactionKind.INCOME and not rules.keep_income:
        return DropReason.INCOME_EXCLUDED
    return None


def filter_transactions(
    txns: Sequence[NormalizedTransaction], rules: FilterRuleSet
) -> FilterOutcome:
    kept: list[NormalizedTransaction] = []
    flagged: list[NormalizedTransaction] = []
    dropped: list[DroppedTransaction] = []
    for t in txns:
        decision = _disposition(t, rules)
        if decision is None:
            kept.append(t)
        elif decision == "flag":
            flagged.append(t)
        else:
            dropped.append(DroppedTransaction(t, DropReason(decision)))

    logger.info(
        "filter:done input=%d kept=%d flagged=%d dropped=%d",
        len(txns),
        len(kept),
        len(flagged),
        len(dropped),
    )
    return FilterOutcome(
        kept=tuple(kept),
        flagged=tuple(flagged),
        dropped=tuple(dropped),
        input_order=tuple(t.id for t in txns),
    )


def resolve_review(
    outcome: FilterOutcome, decisions: Mapping[str, ReviewDecision | str]
) -> list[NormalizedTransaction]:
    """Apply keep/drop decisions for flagged records.

    Returns the final kept list in the original input order of the filter's
    kept and flagged records. Every flagged id must be decided; ids that were
    not flagged are rejected.
    """

    flagged_ids = {t.id for t in outcome.flagged}
    unknown = sorted(set(decisions) - flagged_ids)
    if unknown:
        raise ValidationError(f"Decisions given for transactions not under review: {unknown}")
    missing = [t.id for t in outcome.flagged if t.id not in decisions]
    if missing:
        raise ValidationError(f"Missing keep/drop decision for: {missing}")

    resolved: dict[str, ReviewDecision] = {}
    for tid, raw in decisions.items():
        try:
            resolved[tid] = ReviewDecision(str(raw).lower())
        except ValueError as e:
            raise ValidationError(f"Invalid review decision for {tid}: {raw!r}") from e

    keep_ids = {t.id for t in outcome.kept}
    keep_ids.update(tid for tid, d in resolved.items() if d is ReviewDecision.KEEP)

    position = {tid: i for i, tid in enumerate(outcome.input_order)}
    ordered = sorted(
        (*outcome.kept, *outcome.flagged), key=lambda t: position.get(t.id, len(position))
    )
    final = [t for t in ordered if t.id in keep_ids]
    logger.info(
        "filter:review_resolved flagged=%d kept=%d",
        len(outcome.flagged),
        sum(1 for d in resolved.values() if d is ReviewDecision.KEEP),
    )
    return final


__all__ = [
    "DropReason",
    "ReviewDecision",
    "DroppedTransaction",
    "FilterOutcome",
    "filter_transactions",
    "resolve_review",
]
