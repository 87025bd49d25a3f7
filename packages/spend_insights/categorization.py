"""Request/response shapes for external categorization and response parsing.

The external service answers per transaction with ``{idx, category,
confidence}``. Parsing is strict about structure (every ``idx`` exactly once)
but lenient about content: a category outside the candidate list does not
fail the batch, it yields a decision with ``category=None`` so that one item
ends up StillUncategorized.
"""

from __future__ import annotations

import datetime
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator


@dataclass(frozen=True, slots=True)
class ClassifyItem:
    """One transaction sent for classification; ``idx`` is batch-relative."""

    idx: int
    description: str
    amount: Decimal
    date: datetime.date


@dataclass(frozen=True, slots=True)
class ClassifyContext:
    user_preferences: str = ""
    # ``{"pattern": merchant_key, "category": name}`` pairs taught by the user.
    previous_categorizations: tuple[Mapping[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class ClassifyDecision:
    idx: int
    category: str | None
    confidence: float
    rationale: str | None = None


def ensure_valid_items(items: Sequence[ClassifyItem]) -> None:
    """Raise ``ValueError`` if any item has a blank description or a bad ``idx``."""

    for pos, item in enumerate(items):
        if item.idx != pos:
            raise ValueError(f"Invalid input: idx {item.idx} at position {pos}")
        if not item.description.strip():
            raise ValueError(f"Invalid input: description missing/empty for idx {item.idx}")


class _ResultItem(BaseModel):
    """Typed view of one result.

    ``ValidationInfo.context`` supplies ``allowed_set`` (casefolded name ->
    canonical name). Unknown names become ``None``.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    idx: int
    category: str | None = None
    confidence: float = 0.0
    rationale: str | None = None

    @field_validator("category")
    @classmethod
    def _category_in_allowlist(cls, v: str | None, info: ValidationInfo) -> str | None:
        if v is None:
            return None
        allowed = info.context.get("allowed_set") if info.context else None
        s = v.strip()
        if not s:
            return None
        if not allowed:
            return s
        return allowed.get(s.casefold())

    @field_validator("confidence")
    @classmethod
    def _confidence_in_range(cls, v: float) -> float:
        if 0.0 <= float(v) <= 1.0:
            return float(v)
        raise ValueError("confidence must be in [0,1]")

    @field_validator("rationale")
    @classmethod
    def _blank_rationale_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class _ResultBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[_ResultItem]


def parse_decisions(
    body: Mapping[str, Any],
    *,
    num_items: int,
    allowed_categories: Sequence[str],
) -> list[ClassifyDecision]:
    """Validate a response body and return decisions aligned by ``idx``.

    Raises ``ValueError`` (pydantic's ``ValidationError`` is a subclass) on a
    structural problem: wrong count, duplicate or out-of-range ``idx``.
    """

    if not isinstance(body, Mapping):
        raise ValueError("Invalid response: expected a JSON object at top level")

    allowed = {c.casefold(): c for c in allowed_categories}
    parsed = _ResultBody.model_validate(body, context={"allowed_set": allowed})
    if len(parsed.results) != num_items:
        raise ValueError(
            f"Invalid response: expected {num_items} results, got {len(parsed.results)}"
        )

    out: list[ClassifyDecision | None] = [None] * num_items
    for item in parsed.results:
        if not 0 <= item.idx < num_items:
            raise ValueError(f"Invalid response: 'idx' out of range: {item.idx}")
        if out[item.idx] is not None:
            raise ValueError(f"Invalid response: duplicate idx {item.idx}")
        out[item.idx] = ClassifyDecision(
            idx=item.idx,
            category=item.category,
            confidence=item.confidence if item.category is not None else 0.0,
            rationale=item.rationale,
        )

    missing = [i for i, v in enumerate(out) if v is None]
    if missing:
        raise ValueError(f"Invalid response: missing indices {missing}")
    return [d for d in out if d is not None]


__all__ = [
    "ClassifyItem",
    "ClassifyContext",
    "ClassifyDecision",
    "ensure_valid_items",
    "parse_decisions",
]
