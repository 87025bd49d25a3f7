"""Local keyword/pattern matching against the configured categories."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from .models import Category, TransactionGroup
from .rules import CategoryRuleSet, compile_pattern


@lru_cache(maxsize=2048)
def _keyword_re(keyword: str) -> re.Pattern[str]:
    # Word-bounded on both sides, tolerant of internal whitespace runs.
    body = r"\s+".join(re.escape(part) for part in keyword.split())
    return re.compile(rf"(?<!\w){body}(?!\w)", re.IGNORECASE)


def score_category(category: Category, texts: tuple[str, ...]) -> int:
    """One point per keyword hit plus one per pattern hit across ``texts``."""

    score = 0
    for kw in category.keywords:
        if kw.strip() and any(_keyword_re(kw.strip()).search(t) for t in texts):
            score += 1
    for pattern in category.patterns:
        if any(compile_pattern(pattern).search(t) for t in texts):
            score += 1
    return score


@dataclass(frozen=True, slots=True)
class LocalMatch:
    """Outcome of a local attempt.

    ``category`` is ``None`` when nothing scored or the top score was tied;
    ``learned`` marks a hit from a user-taught merchant rule.
    """

    category: str | None
    confidence: float
    score: int = 0
    learned: bool = False


_NO_MATCH = LocalMatch(category=None, confidence=0.0)


def match_group(group: TransactionGroup, rules: CategoryRuleSet) -> LocalMatch:
    learned = rules.learned_category(group.representative_merchant)
    if learned is not None:
        return LocalMatch(category=learned, confidence=1.0, learned=True)

    exemplar = group.exemplar
    texts = (exemplar.clean_description, exemplar.merchant)
    scored = [
        (score_category(c, texts), c.name) for c in rules.candidates_for(group.kind)
    ]
    scored = [(s, n) for s, n in scored if s > 0]
    if not scored:
        return _NO_MATCH

    scored.sort(key=lambda sn: -sn[0])
    best, best_name = scored[0]
    runner_up = scored[1][0] if len(scored) > 1 else 0
    if runner_up == best:
        return LocalMatch(category=None, confidence=0.0, score=best)
    return LocalMatch(category=best_name, confidence=(best - runner_up) / best, score=best)


__all__ = ["LocalMatch", "score_category", "match_group"]
