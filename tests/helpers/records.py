"""Small builders for raw and normalized records."""

from __future__ import annotations

import datetime
from decimal import Decimal

from spend_insights.models import NormalizedTransaction, RawRecord
from spend_insights.normalize import normalize
from spend_insights.rules import default_normalization_rules


def raw(
    description: str,
    amount: str | Decimal,
    date: str = "2024-01-15",
    *,
    row: int = 1,
    source_file: str = "bank.csv",
) -> RawRecord:
    return RawRecord(
        date=datetime.date.fromisoformat(date),
        description=description,
        amount=Decimal(amount),
        source_file=source_file,
        row=row,
    )


def raws(*rows: tuple[str, str] | tuple[str, str, str], source_file: str = "bank.csv"):
    """``raws(("DESC", "12.00"), ("DESC", "3.00", "2024-02-01"))`` with rows 1..n."""

    return [raw(*r, row=i, source_file=source_file) for i, r in enumerate(rows, start=1)]


def txn(description: str, amount: str | Decimal, date: str = "2024-01-15", *, row: int = 1):
    return normalize(raw(description, amount, date, row=row), default_normalization_rules())


def txns(*rows: tuple[str, str] | tuple[str, str, str]) -> list[NormalizedTransaction]:
    rules = default_normalization_rules()
    return [normalize(r, rules) for r in raws(*rows)]
