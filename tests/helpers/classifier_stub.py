"""Deterministic in-process :class:`~spend_insights.classifier.Classifier`.

Tests pass a ``decide`` callable mapping one item to ``(category, confidence)``
and, optionally, a ``fail`` callable that returns an exception to raise for a
whole batch (or ``None`` to answer normally). Every call is recorded so tests
can assert on batching and retries.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from typing import Any

from spend_insights.categorization import ClassifyContext, ClassifyDecision, ClassifyItem

Decide = Callable[[ClassifyItem, Sequence[str]], tuple[str | None, float]]


def by_keyword(table: dict[str, str], confidence: float = 0.9) -> Decide:
    """Decide by the first ``table`` key found in the item's description."""

    def _decide(item: ClassifyItem, categories: Sequence[str]) -> tuple[str | None, float]:
        text = item.description.casefold()
        for needle, category in table.items():
            if needle.casefold() in text:
                return category, confidence
        return None, 0.0

    return _decide


class StubClassifier:
    def __init__(
        self,
        decide: Decide,
        *,
        fail: Callable[[Sequence[ClassifyItem]], BaseException | None] | None = None,
        before_answer: Callable[[Sequence[ClassifyItem]], None] | None = None,
    ) -> None:
        self._decide = decide
        self._fail = fail
        self._before_answer = before_answer
        self._lock = threading.Lock()
        self.calls: list[dict[str, Any]] = []

    def classify(
        self,
        batch: Sequence[ClassifyItem],
        *,
        categories: Sequence[str],
        context: ClassifyContext,
    ) -> list[ClassifyDecision]:
        with self._lock:
            self.calls.append(
                {
                    "descriptions": [it.description for it in batch],
                    "categories": list(categories),
                    "context": context,
                }
            )
        if self._before_answer is not None:
            self._before_answer(batch)
        if self._fail is not None:
            exc = self._fail(batch)
            if exc is not None:
                raise exc
        out = []
        for it in batch:
            category, confidence = self._decide(it, categories)
            out.append(
                ClassifyDecision(
                    idx=it.idx, category=category, confidence=confidence, rationale="stub"
                )
            )
        return out

    def calls_for(self, description: str) -> int:
        with self._lock:
            return sum(1 for c in self.calls if description in c["descriptions"])
