"""Categorizer orchestration.

Public API:
    - :func:`categorize`: local matching, then external classification of
      whatever is still unresolved.
    - :func:`resolve_pending`: run (or resume) the external step.
    - :func:`apply_user_feedback` / :func:`apply_allocation`: user decisions.
    - :class:`CategorizationRun`: the immutable state threaded between them.

Each group moves through ``Uncategorized -> LocallyMatched | PendingExternal
-> ExternallyMatched | StillUncategorized -> UserReviewed``. External batches
run concurrently (bounded) via :func:`spend_insights.pmap.p_map`; a batch that
fails for good degrades only its own items. No side effects at import time.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from types import MappingProxyType
from typing import NamedTuple

from .allocation import AllocationSet, Percentage
from .categorization import ClassifyContext, ClassifyDecision, ClassifyItem
from .classifier import Classifier, is_retryable
from .config import Settings
from .errors import ConfigurationError, ValidationError
from .logging_setup import get_logger
from .matching import match_group
from .models import (
    AmountedResult,
    CategorizationResult,
    CategorySource,
    ResolutionState,
    TransactionGroup,
    merchant_key,
)
from .pmap import p_map
from .rules import CategoryRuleSet

_logger = get_logger("spend_insights.categorize")


@dataclass(frozen=True, slots=True)
class CategorizationRun:
    """Groups, their current results (keyed by group id) and the rule version."""

    groups: tuple[TransactionGroup, ...]
    results: Mapping[str, CategorizationResult]
    rules: CategoryRuleSet
    cancelled: bool = False

    def group(self, item_id: str) -> TransactionGroup:
        for g in self.groups:
            if g.group_id == item_id:
                return g
        raise ValidationError(f"Unknown item id: {item_id!r}")

    def result(self, item_id: str) -> CategorizationResult:
        self.group(item_id)
        return self.results[item_id]

    def ordered_results(self) -> list[CategorizationResult]:
        return [self.results[g.group_id] for g in self.groups]

    def pending(self) -> list[TransactionGroup]:
        return [
            g
            for g in self.groups
            if self.results[g.group_id].state is ResolutionState.PENDING_EXTERNAL
        ]

    def review_queue(self) -> list[CategorizationResult]:
        """Non-final results the user should look at, in group order."""

        return [
            r
            for r in self.ordered_results()
            if not r.is_final
            and (r.needs_review or r.state is ResolutionState.STILL_UNCATEGORIZED)
        ]

    def amounted(self) -> list[AmountedResult]:
        return [AmountedResult(self.results[g.group_id], g.total_amount) for g in self.groups]

    def with_results(
        self, updates: Mapping[str, CategorizationResult], **changes: object
    ) -> CategorizationRun:
        merged = dict(self.results)
        merged.update(updates)
        return replace(self, results=MappingProxyType(merged), **changes)


# ---- Local step --------------------------------------------------------------


def _local_result(
    group: TransactionGroup, rules: CategoryRuleSet, settings: Settings
) -> CategorizationResult:
    m = match_group(group, rules)
    if m.category is None:
        return CategorizationResult(
            item_id=group.group_id,
            category=None,
            confidence=0.0,
            source=None,
            state=ResolutionState.PENDING_EXTERNAL,
        )
    return CategorizationResult(
        item_id=group.group_id,
        category=m.category,
        confidence=m.confidence,
        source=CategorySource.LOCAL_RULE,
        state=ResolutionState.LOCALLY_MATCHED,
        needs_review=m.confidence < settings.confidence_threshold,
        rationale="learned from user feedback" if m.learned else None,
    )


# ---- External step -----------------------------------------------------------


class _Batch(NamedTuple):
    batch_index: int
    groups: tuple[TransactionGroup, ...]
    candidates: tuple[str, ...]


class _BatchOutcome(NamedTuple):
    batch_index: int
    results: list[CategorizationResult]


def _plan_batches(
    pending: Sequence[TransactionGroup], rules: CategoryRuleSet, batch_size: int
) -> list[_Batch]:
    """Chunk pending groups into batches sharing one candidate list."""

    by_candidates: dict[tuple[str, ...], list[TransactionGroup]] = {}
    for g in pending:
        by_candidates.setdefault(tuple(rules.names(g.kind)), []).append(g)

    batches: list[_Batch] = []
    for candidates, groups in by_candidates.items():
        for base in range(0, len(groups), batch_size):
            batches.append(
                _Batch(len(batches), tuple(groups[base : base + batch_size]), candidates)
            )
    return batches


def _batch_items(groups: Iterable[TransactionGroup]) -> list[ClassifyItem]:
    items: list[ClassifyItem] = []
    for idx, g in enumerate(groups):
        ex = g.exemplar
        items.append(
            ClassifyItem(
                idx=idx,
                description=ex.clean_description or ex.description,
                amount=ex.amount,
                date=ex.date,
            )
        )
    return items


def _sleep_backoff(attempt_no: int, settings: Settings) -> None:
    schedule = settings.backoff_schedule_s
    base = schedule[min(attempt_no - 1, len(schedule) - 1)]
    jitter = base * settings.jitter_pct
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def _still_uncategorized(group: TransactionGroup, rationale: str | None) -> CategorizationResult:
    return CategorizationResult(
        item_id=group.group_id,
        category=None,
        confidence=0.0,
        source=None,
        state=ResolutionState.STILL_UNCATEGORIZED,
        needs_review=True,
        rationale=rationale,
    )


def _decision_result(
    group: TransactionGroup,
    decision: ClassifyDecision,
    candidates: Sequence[str],
    settings: Settings,
) -> CategorizationResult:
    if decision.category is None or decision.category not in candidates:
        return _still_uncategorized(group, decision.rationale or "no usable category returned")
    return CategorizationResult(
        item_id=group.group_id,
        category=decision.category,
        confidence=decision.confidence,
        source=CategorySource.EXTERNAL_SERVICE,
        state=ResolutionState.EXTERNALLY_MATCHED,
        needs_review=decision.confidence < settings.confidence_threshold,
        rationale=decision.rationale,
    )


def _run_batch(
    batch: _Batch,
    *,
    classifier: Classifier,
    context: ClassifyContext,
    settings: Settings,
) -> _BatchOutcome:
    items = _batch_items(batch.groups)
    count = len(items)
    _logger.info("categorize:batch_start batch_index=%d num_groups=%d", batch.batch_index, count)

    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            decisions = classifier.classify(items, categories=batch.candidates, context=context)
            if len(decisions) != count:
                raise ValueError(f"expected {count} decisions, got {len(decisions)}")
            results = [
                _decision_result(g, d, batch.candidates, settings)
                for g, d in zip(batch.groups, decisions, strict=True)
            ]
            dt_ms = (time.perf_counter() - t0) * 1000.0
            _logger.info(
                "categorize:batch_done batch_index=%d num_groups=%d latency_ms=%.2f",
                batch.batch_index,
                count,
                dt_ms,
            )
            return _BatchOutcome(batch.batch_index, results)
        except Exception as e:  # noqa: BLE001
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= settings.max_attempts or not is_retryable(e):
                _logger.error(
                    (
                        "categorize:batch_failed_terminal batch_index=%d num_groups=%d "
                        "attempts=%d latency_ms=%.2f error=%s"
                    ),
                    batch.batch_index,
                    count,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                reason = f"external categorization failed: {e.__class__.__name__}"
                return _BatchOutcome(
                    batch.batch_index, [_still_uncategorized(g, reason) for g in batch.groups]
                )
            _logger.warning(
                (
                    "categorize:batch_retry batch_index=%d num_groups=%d "
                    "latency_ms=%.2f error=%s attempt=%d"
                ),
                batch.batch_index,
                count,
                dt_ms,
                e.__class__.__name__,
                attempt,
            )
            _sleep_backoff(attempt, settings)
            attempt += 1


def resolve_pending(
    run: CategorizationRun,
    classifier: Classifier,
    *,
    settings: Settings | None = None,
    cancel: threading.Event | None = None,
) -> CategorizationRun:
    """Send every PendingExternal group to ``classifier``.

    Once ``cancel`` is set no new batch starts; batches already running finish
    and their results are kept. Groups whose batch never started remain
    PendingExternal and the returned run has ``cancelled=True``, so calling
    this again later resumes where it stopped.
    """

    settings = settings or Settings()
    pending = run.pending()
    if not pending:
        return run

    batches = _plan_batches(pending, run.rules, settings.batch_size)
    context = ClassifyContext(
        user_preferences=settings.user_preferences,
        previous_categorizations=tuple(run.rules.learned_pairs()),
    )
    _logger.info(
        "categorize:external_start pending=%d batches=%d concurrency=%d",
        len(pending),
        len(batches),
        settings.concurrency,
    )

    outcomes = p_map(
        batches,
        lambda b: _run_batch(b, classifier=classifier, context=context, settings=settings),
        concurrency=settings.concurrency,
        cancel=cancel,
    )

    updates = {r.item_id: r for o in outcomes for r in o.results}
    cancelled = len(outcomes) < len(batches)
    if cancelled:
        _logger.warning(
            "categorize:cancelled batches_done=%d batches_total=%d",
            len(outcomes),
            len(batches),
        )
    return run.with_results(updates, cancelled=cancelled)


def categorize(
    groups: Sequence[TransactionGroup],
    rules: CategoryRuleSet,
    classifier: Classifier | None,
    *,
    settings: Settings | None = None,
    cancel: threading.Event | None = None,
) -> CategorizationRun:
    """Categorize ``groups``: local rules first, then ``classifier``.

    With ``classifier=None`` the external step is skipped and unmatched groups
    stay PendingExternal.
    """

    settings = settings or Settings()
    if not rules.categories:
        raise ConfigurationError("At least one category is required")

    results = {g.group_id: _local_result(g, rules, settings) for g in groups}
    run = CategorizationRun(groups=tuple(groups), results=MappingProxyType(results), rules=rules)
    _logger.info(
        "categorize:local_done groups=%d matched=%d pending=%d rules_version=%d",
        len(groups),
        sum(1 for r in results.values() if r.state is ResolutionState.LOCALLY_MATCHED),
        len(run.pending()),
        rules.version,
    )
    if classifier is None:
        return run
    return resolve_pending(run, classifier, settings=settings, cancel=cancel)


# ---- User decisions ----------------------------------------------------------


def apply_user_feedback(run: CategorizationRun, item_id: str, category: str) -> CategorizationRun:
    """Record a user's category choice and teach it to the rule set.

    The item becomes UserReviewed with confidence 1.0. The rule set gains a
    ``merchant key -> category`` entry (new version unless already known), and
    every other non-final group of the same merchant is re-matched locally.
    Applying the same feedback twice yields an equal run.
    """

    group = run.group(item_id)
    rules = run.rules.with_learned(group.representative_merchant, category)
    canonical = rules.require(category).name

    updates: dict[str, CategorizationResult] = {
        item_id: CategorizationResult(
            item_id=item_id,
            category=canonical,
            confidence=1.0,
            source=CategorySource.USER_OVERRIDE,
            state=ResolutionState.USER_REVIEWED,
        )
    }
    key = group.exemplar.merchant_key
    rematched = 0
    for g in run.groups:
        if g.group_id == item_id or run.results[g.group_id].is_final:
            continue
        if g.exemplar.merchant_key == key:
            updates[g.group_id] = CategorizationResult(
                item_id=g.group_id,
                category=canonical,
                confidence=1.0,
                source=CategorySource.LOCAL_RULE,
                state=ResolutionState.LOCALLY_MATCHED,
                rationale="learned from user feedback",
            )
            rematched += 1

    _logger.info(
        "categorize:user_feedback item_id=%s category=%s rules_version=%d rematched=%d",
        item_id,
        canonical,
        rules.version,
        rematched,
    )
    return run.with_results(updates, rules=rules)


def apply_allocation(
    run: CategorizationRun,
    item_id: str,
    splits: Mapping[str, Percentage | Decimal | int | float | str],
    *,
    settings: Settings | None = None,
) -> CategorizationRun:
    """Split one multi-vendor group across categories by percentage.

    Raises ``ConfigurationError`` when the merchant is not designated
    multi-vendor or a category is unknown, and ``ValidationError`` when the
    percentages do not sum to 100.
    """

    settings = settings or Settings()
    group = run.group(item_id)
    designated = {merchant_key(m) for m in settings.multi_vendor_merchants}
    if group.exemplar.merchant_key not in designated:
        raise ConfigurationError(
            f"Merchant {group.representative_merchant!r} is not designated multi-vendor"
        )

    allocation = AllocationSet.from_mapping(splits)
    allocation = AllocationSet(
        tuple((run.rules.require(name).name, pct) for name, pct in allocation.shares)
    )
    result = CategorizationResult(
        item_id=item_id,
        category=allocation.dominant(),
        confidence=1.0,
        source=CategorySource.USER_OVERRIDE,
        state=ResolutionState.USER_REVIEWED,
        allocation=allocation,
    )
    _logger.info(
        "categorize:allocation item_id=%s shares=%d dominant=%s",
        item_id,
        len(allocation.shares),
        allocation.dominant(),
    )
    return run.with_results({item_id: result})


__all__ = [
    "CategorizationRun",
    "categorize",
    "resolve_pending",
    "apply_user_feedback",
    "apply_allocation",
]
