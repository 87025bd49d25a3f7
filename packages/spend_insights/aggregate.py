"""Per-category totals, annual projection and visualization payloads."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from .errors import ConfigurationError
from .logging_setup import get_logger
from .models import UNCATEGORIZED, AmountedResult, AnnualProjection, NormalizedTransaction
from .rules import CategoryRuleSet

if TYPE_CHECKING:
    from .categorize import CategorizationRun

logger = get_logger("spend_insights.aggregate")

_CENT = Decimal("0.01")
_MONTHS_PER_YEAR = Decimal("12")
_DAYS_PER_MONTH = Decimal("365.25") / _MONTHS_PER_YEAR


def _to_months(period_months: Decimal | int | float | str) -> Decimal:
    if isinstance(period_months, bool):
        raise ConfigurationError("period_months must be a number")
    try:
        months = (
            period_months if isinstance(period_months, Decimal) else Decimal(str(period_months))
        )
    except InvalidOperation as e:
        raise ConfigurationError(f"period_months is not a number: {period_months!r}") from e
    if not months.is_finite() or months <= 0:
        raise ConfigurationError(f"period_months must be > 0, got {period_months}")
    return months


def category_totals(items: Iterable[AmountedResult]) -> dict[str, Decimal]:
    """Sum amounts per category; allocations contribute their split parts."""

    totals: dict[str, Decimal] = {}
    for item in items:
        r = item.result
        if r.allocation is not None:
            parts = r.allocation.split(item.amount)
        else:
            parts = [(r.category if r.is_resolved else UNCATEGORIZED, item.amount)]
        for name, amount in parts:
            totals[name] = totals.get(name, Decimal("0")) + amount
    return totals


def aggregate(
    items: Sequence[AmountedResult], period_months: Decimal | int | float | str
) -> list[AnnualProjection]:
    """Project each category's total to a full year.

    ``projected_annual = total / period_months * 12``. Sorted by descending
    projection, then by name.
    """

    months = _to_months(period_months)
    out: list[AnnualProjection] = []
    for name, total in category_totals(items).items():
        monthly = total / months
        out.append(
            AnnualProjection(
                category=name,
                total=total,
                monthly_average=monthly.quantize(_CENT, rounding=ROUND_HALF_UP),
                projected_annual=(monthly * _MONTHS_PER_YEAR).quantize(
                    _CENT, rounding=ROUND_HALF_UP
                ),
                basis_months=months,
            )
        )
    out.sort(key=lambda p: (-p.projected_annual, p.category))
    logger.info("aggregate:done categories=%d period_months=%s", len(out), months)
    return out


def infer_period_months(transactions: Iterable[NormalizedTransaction]) -> Decimal:
    """Months covered by the transactions' date span (inclusive)."""

    dates = [t.date for t in transactions]
    if not dates:
        raise ConfigurationError("Cannot infer a period from zero transactions")
    days = (max(dates) - min(dates)).days + 1
    return (Decimal(days) / _DAYS_PER_MONTH).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


def chart_payload(
    projections: Sequence[AnnualProjection], rules: CategoryRuleSet | None = None
) -> dict[str, Any]:
    """Plain structure for an external chart: parallel label/value/color lists."""

    colors: list[str | None] = []
    for p in projections:
        cat = rules.find(p.category) if rules is not None else None
        colors.append(cat.color if cat is not None else None)
    return {
        "labels": [p.category for p in projections],
        "projected_annual": [f"{p.projected_annual:.2f}" for p in projections],
        "monthly_average": [f"{p.monthly_average:.2f}" for p in projections],
        "totals": [f"{p.total:.2f}" for p in projections],
        "colors": colors,
        "basis_months": f"{projections[0].basis_months}" if projections else None,
    }


def detail_rows(run: CategorizationRun) -> list[dict[str, Any]]:
    """One row per transaction with its group's category decision."""

    rows: list[dict[str, Any]] = []
    for g in run.groups:
        r = run.results[g.group_id]
        for t in g.members:
            rows.append(
                {
                    "id": t.id,
                    "date": t.date.isoformat(),
                    "description": t.description,
                    "merchant": t.merchant,
                    "amount": f"{t.amount:.2f}",
                    "kind": str(t.kind),
                    "foreign": t.foreign_flag,
                    "group_id": g.group_id,
                    "category": r.category or UNCATEGORIZED,
                    "resolved": r.is_resolved,
                    "confidence": r.confidence,
                    "source": str(r.source) if r.source is not None else None,
                    "state": str(r.state),
                    "needs_review": r.needs_review,
                    "allocation": (
                        {name: f"{pct.value}" for name, pct in r.allocation.shares}
                        if r.allocation is not None
                        else None
                    ),
                }
            )
    return rows


__all__ = [
    "category_totals",
    "aggregate",
    "infer_period_months",
    "chart_payload",
    "detail_rows",
]
