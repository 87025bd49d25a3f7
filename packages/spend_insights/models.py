"""Data models for ``spend_insights``.

All pipeline values are frozen, slotted dataclasses so a stage can never
mutate the output of an earlier one. Amounts are ``Decimal`` throughout and
follow one sign convention: positive = money out (purchase/debit), negative =
money in (credit/refund/deposit).
"""

from __future__ import annotations

import datetime
import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum

from .allocation import AllocationSet

UNCATEGORIZED = "Uncategorized"


def merchant_key(merchant: str) -> str:
    """Return the grouping/rule key for a merchant name.

    NFKC-normalizes, collapses internal whitespace and casefolds, so
    ``"Woolworths"`` and ``" WOOLWORTHS "`` share a key.
    """

    s = unicodedata.normalize("NFKC", merchant)
    return " ".join(s.split()).casefold()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class TransactionKind(StrEnum):
    EXPENSE = "Expense"
    INCOME = "Income"
    TRANSFER = "Transfer"
    FEE = "Fee"
    IGNORE = "Ignore"


@dataclass(frozen=True, slots=True)
class RawRecord:
    """A single transaction row as produced by the ingestor.

    ``row`` is the 1-based data-row index inside ``source_file``; the pair
    forms the stable record id. ``metadata`` carries any extra columns.
    """

    date: datetime.date
    description: str
    amount: Decimal
    source_file: str
    row: int = 0
    metadata: Mapping[str, str] = field(default_factory=dict, compare=False)

    @property
    def record_id(self) -> str:
        return f"{self.source_file}#{self.row}"


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """A :class:`RawRecord` plus cleaned text, merchant, kind and FX flag."""

    raw: RawRecord
    clean_description: str
    merchant: str
    kind: TransactionKind
    foreign_flag: bool = False

    @property
    def id(self) -> str:
        return self.raw.record_id

    @property
    def date(self) -> datetime.date:
        return self.raw.date

    @property
    def description(self) -> str:
        return self.raw.description

    @property
    def amount(self) -> Decimal:
        return self.raw.amount

    @property
    def merchant_key(self) -> str:
        return merchant_key(self.merchant)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AmountBand:
    """Half-open magnitude interval ``(low, high]`` on one side of zero.

    The band ``[0, 1]`` (``low == 0``) is closed at zero so tiny and zero
    amounts have a home. ``direction`` is ``1`` for outflows (and zero) and
    ``-1`` for inflows.
    """

    low: Decimal
    high: Decimal
    direction: int = 1

    def contains(self, amount: Decimal) -> bool:
        direction = -1 if amount < 0 else 1
        if direction != self.direction:
            return False
        magnitude = abs(amount)
        if self.low == 0:
            return magnitude <= self.high
        return self.low < magnitude <= self.high

    @property
    def bounds(self) -> tuple[Decimal, Decimal]:
        """Signed ``(min, max)`` of the band."""

        if self.direction < 0:
            return (-self.high, -self.low)
        return (self.low, self.high)


@dataclass(frozen=True, slots=True)
class TransactionGroup:
    group_id: str
    representative_merchant: str
    amount_band: AmountBand
    members: tuple[NormalizedTransaction, ...]

    @property
    def total_amount(self) -> Decimal:
        return sum((m.amount for m in self.members), Decimal("0"))

    @property
    def kind(self) -> TransactionKind:
        # Members share merchant and direction; the first member speaks for all.
        return self.members[0].kind

    @property
    def exemplar(self) -> NormalizedTransaction:
        return self.members[0]


# ---------------------------------------------------------------------------
# Categories and results
# ---------------------------------------------------------------------------


class CategoryKind(StrEnum):
    EXPENSE = "expense"
    INCOME = "income"


@dataclass(frozen=True, slots=True)
class Category:
    name: str
    keywords: frozenset[str] = frozenset()
    patterns: tuple[str, ...] = ()
    sub_categories: frozenset[str] = frozenset()
    user_defined: bool = False
    color: str | None = None
    kind: CategoryKind = CategoryKind.EXPENSE


class CategorySource(StrEnum):
    LOCAL_RULE = "LocalRule"
    EXTERNAL_SERVICE = "ExternalService"
    USER_OVERRIDE = "UserOverride"


class ResolutionState(StrEnum):
    UNCATEGORIZED = "Uncategorized"
    LOCALLY_MATCHED = "LocallyMatched"
    PENDING_EXTERNAL = "PendingExternal"
    EXTERNALLY_MATCHED = "ExternallyMatched"
    STILL_UNCATEGORIZED = "StillUncategorized"
    USER_REVIEWED = "UserReviewed"


@dataclass(frozen=True, slots=True)
class CategorizationResult:
    """Category decision for one transaction group.

    ``category`` is ``None`` while unresolved. When ``allocation`` is set the
    amount is split across its shares and ``category`` names the dominant one.
    ``needs_review`` marks results surfaced for user confirmation.
    """

    item_id: str
    category: str | None
    confidence: float
    source: CategorySource | None
    state: ResolutionState
    needs_review: bool = False
    allocation: AllocationSet | None = None
    rationale: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0,1], got {self.confidence}")

    @property
    def is_resolved(self) -> bool:
        return self.category is not None

    @property
    def is_final(self) -> bool:
        return self.state is ResolutionState.USER_REVIEWED


@dataclass(frozen=True, slots=True)
class AmountedResult:
    """A categorization result paired with the amount it covers."""

    result: CategorizationResult
    amount: Decimal


@dataclass(frozen=True, slots=True)
class AnnualProjection:
    category: str
    total: Decimal
    monthly_average: Decimal
    projected_annual: Decimal
    basis_months: Decimal


__all__ = [
    "UNCATEGORIZED",
    "merchant_key",
    "TransactionKind",
    "RawRecord",
    "NormalizedTransaction",
    "AmountBand",
    "TransactionGroup",
    "CategoryKind",
    "Category",
    "CategorySource",
    "ResolutionState",
    "CategorizationResult",
    "AmountedResult",
    "AnnualProjection",
]
