"""Session orchestration: ingest -> normalize -> filter -> review -> group ->
categorize -> aggregate.

:class:`AnalysisSession` holds the intermediate values of one upload-to-report
cycle so that user decision points can pause it:

- after :meth:`AnalysisSession.prepare`, flagged transactions wait for
  :meth:`AnalysisSession.resolve_review`; resolving does not re-run ingest,
  normalization or filtering;
- a cancelled categorization is resumed with :meth:`AnalysisSession.resume`.

Nothing is persisted; dropping the session discards everything.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import StrEnum
from typing import Any

from .aggregate import aggregate, chart_payload, detail_rows, infer_period_months
from .allocation import Percentage
from .categories import add_user_category
from .categorize import (
    CategorizationRun,
    apply_allocation,
    apply_user_feedback,
    categorize,
    resolve_pending,
)
from .classifier import Classifier
from .config import Settings
from .errors import ValidationError
from .filtering import FilterOutcome, ReviewDecision, filter_transactions, resolve_review
from .grouping import group
from .ingest import parse
from .logging_setup import get_logger
from .models import (
    AnnualProjection,
    CategoryKind,
    NormalizedTransaction,
    RawRecord,
    TransactionGroup,
)
from .normalize import normalize_all
from .rules import (
    CategoryRuleSet,
    FilterRuleSet,
    NormalizationRuleSet,
    default_filter_rules,
    default_normalization_rules,
)

_logger = get_logger("spend_insights.pipeline")


class Stage(StrEnum):
    EMPTY = "empty"
    LOADED = "loaded"
    AWAITING_REVIEW = "awaiting_review"
    READY = "ready"
    CATEGORIZED = "categorized"


@dataclass
class AnalysisSession:
    """Mutable holder for one session's pipeline state."""

    categories: CategoryRuleSet
    settings: Settings = field(default_factory=Settings)
    normalization_rules: NormalizationRuleSet = field(default_factory=default_normalization_rules)
    filter_rules: FilterRuleSet | None = None
    records: list[RawRecord] = field(default_factory=list)
    transactions: list[NormalizedTransaction] = field(default_factory=list)
    filter_outcome: FilterOutcome | None = None
    kept: list[NormalizedTransaction] | None = None
    groups: list[TransactionGroup] = field(default_factory=list)
    run: CategorizationRun | None = None

    def __post_init__(self) -> None:
        if self.filter_rules is None:
            self.filter_rules = default_filter_rules(self.settings.cash_withdrawal_threshold)
        self.normalization_rules.validate()
        self.filter_rules.validate()

    # ---- Stage bookkeeping --------------------------------------------------

    @property
    def stage(self) -> Stage:
        if self.run is not None:
            return Stage.CATEGORIZED
        if self.kept is not None:
            return Stage.READY
        if self.filter_outcome is not None:
            return Stage.AWAITING_REVIEW
        if self.records:
            return Stage.LOADED
        return Stage.EMPTY

    def _reset_downstream(self) -> None:
        self.transactions = []
        self.filter_outcome = None
        self.kept = None
        self.groups = []
        self.run = None

    def _require_run(self) -> CategorizationRun:
        if self.run is None:
            raise ValidationError("Categorization has not run yet")
        return self.run

    # ---- Ingest ---------------------------------------------------------------

    def add_file(
        self,
        file_bytes: bytes,
        file_kind: str,
        *,
        source_file: str,
        column_map: Mapping[str, str] | None = None,
        day_first: bool | None = None,
    ) -> list[RawRecord]:
        """Parse one file and append its records.

        A ``ParseError`` leaves the session untouched; other files already
        added stay loaded.
        """

        records = parse(
            file_bytes,
            file_kind,
            source_file=source_file,
            column_map=column_map,
            day_first=day_first,
        )
        self.add_records(records)
        return records

    def add_records(self, records: Sequence[RawRecord]) -> None:
        self.records.extend(records)
        self._reset_downstream()

    # ---- Normalize + filter -----------------------------------------------

    def prepare(self) -> FilterOutcome:
        """Normalize and filter every loaded record.

        With nothing flagged the session moves straight to ``READY``.
        """

        if self.filter_rules is None:
            raise ValidationError("Filter rules are not configured")
        self._reset_downstream()
        self.transactions = normalize_all(self.records, self.normalization_rules)
        outcome = filter_transactions(self.transactions, self.filter_rules)
        self.filter_outcome = outcome
        if not outcome.flagged:
            self.kept = list(outcome.kept)
        _logger.info(
            "pipeline:prepared records=%d kept=%d flagged=%d dropped=%d",
            len(self.records),
            len(outcome.kept),
            len(outcome.flagged),
            len(outcome.dropped),
        )
        return outcome

    def resolve_review(
        self, decisions: Mapping[str, ReviewDecision | str]
    ) -> list[NormalizedTransaction]:
        if self.filter_outcome is None:
            raise ValidationError("Nothing to review; call prepare() first")
        self.kept = resolve_review(self.filter_outcome, decisions)
        self.groups = []
        self.run = None
        return self.kept

    # ---- Group + categorize -------------------------------------------------

    def categorize(
        self,
        classifier: Classifier | None,
        *,
        cancel: threading.Event | None = None,
    ) -> CategorizationRun:
        if self.kept is None:
            if self.filter_outcome is not None and self.filter_outcome.flagged:
                raise ValidationError(
                    f"{len(self.filter_outcome.flagged)} flagged transaction(s) need a "
                    "keep/drop decision first"
                )
            raise ValidationError("Nothing to categorize; call prepare() first")
        self.groups = group(self.kept, band_ratio=self.settings.band_ratio)
        self.run = categorize(
            self.groups,
            self.categories,
            classifier,
            settings=self.settings,
            cancel=cancel,
        )
        self.categories = self.run.rules
        return self.run

    def resume(
        self, classifier: Classifier, *, cancel: threading.Event | None = None
    ) -> CategorizationRun:
        """Send still-pending groups (e.g. after a cancel) to ``classifier``."""

        self.run = resolve_pending(
            self._require_run(), classifier, settings=self.settings, cancel=cancel
        )
        return self.run

    def apply_user_feedback(self, item_id: str, category: str) -> CategorizationRun:
        self.run = apply_user_feedback(self._require_run(), item_id, category)
        self.categories = self.run.rules
        return self.run

    def apply_allocation(
        self, item_id: str, splits: Mapping[str, Percentage | Decimal | int | float | str]
    ) -> CategorizationRun:
        self.run = apply_allocation(
            self._require_run(), item_id, splits, settings=self.settings
        )
        return self.run

    def add_category(self, name: str, *, kind: CategoryKind = CategoryKind.EXPENSE) -> str:
        """Create a user-defined category mid-session; returns its name."""

        self.categories = add_user_category(self.categories, name, kind=kind)
        if self.run is not None:
            self.run = replace(self.run, rules=self.categories)
        return self.categories.categories[-1].name

    # ---- Aggregate --------------------------------------------------------------

    def period_months(self) -> Decimal:
        return infer_period_months(self.kept or self.transactions)

    def projections(
        self, period_months: Decimal | int | float | str | None = None
    ) -> list[AnnualProjection]:
        """Annual projections; the period defaults to the kept date span."""

        run = self._require_run()
        months = self.period_months() if period_months is None else period_months
        return aggregate(run.amounted(), months)

    def report(self, period_months: Decimal | int | float | str | None = None) -> dict[str, Any]:
        """Chart payload plus per-transaction detail rows."""

        projections = self.projections(period_months)
        return {
            "chart": chart_payload(projections, self.categories),
            "details": detail_rows(self._require_run()),
        }


__all__ = ["Stage", "AnalysisSession"]
