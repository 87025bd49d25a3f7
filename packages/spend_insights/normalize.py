"""Description cleaning, merchant extraction and kind classification.

``normalize`` is a pure function of ``(RawRecord, NormalizationRuleSet)``.
``normalize_all`` adds the one cross-record heuristic (a conversion-fee line
next to a purchase marks that purchase foreign); it looks records up by
``(source_file, date)`` so the result does not depend on input order.
"""

from __future__ import annotations

import re
import unicodedata
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import replace
from decimal import Decimal

from .logging_setup import get_logger
from .models import NormalizedTransaction, RawRecord, TransactionKind
from .rules import NormalizationRuleSet, compile_pattern

logger = get_logger("spend_insights.normalize")

# Everything except word chars, whitespace and the three kept marks.
_PUNCT_RE = re.compile(r"[^\w\s&'.]+")
_WS_RE = re.compile(r"\s+")


def clean_description(description: str, rules: NormalizationRuleSet) -> str:
    """Return the canonical uppercase form of a raw bank description."""

    s = unicodedata.normalize("NFKC", description).upper()
    s = _WS_RE.sub(" ", s).strip()
    for pattern in rules.strip_patterns:
        s = compile_pattern(pattern).sub(" ", s).strip()
    s = _PUNCT_RE.sub(" ", s)
    # Dots survive only inside tokens (AMAZON.COM), not as trailing noise.
    s = re.sub(r"(?<!\w)\.|\.(?!\w)", " ", s)
    return _WS_RE.sub(" ", s).strip()


def extract_merchant(clean: str, rules: NormalizationRuleSet) -> str:
    for rule in rules.merchant_rules:
        m = compile_pattern(rule.pattern).search(clean)
        if m:
            return m.expand(rule.merchant).strip() or clean
    return clean


def classify_kind(clean: str, amount: Decimal, rules: NormalizationRuleSet) -> TransactionKind:
    direction = -1 if amount < 0 else 1
    for rule in rules.kind_rules:
        if rule.direction is not None and (amount == 0 or rule.direction != direction):
            continue
        if compile_pattern(rule.pattern).search(clean):
            return rule.kind
    if amount > 0:
        return TransactionKind.EXPENSE
    if amount < 0:
        return TransactionKind.INCOME
    return TransactionKind.IGNORE


def _is_foreign(raw_upper: str, clean: str, rules: NormalizationRuleSet) -> bool:
    for pattern in rules.foreign_markers:
        rx = compile_pattern(pattern)
        if rx.search(clean) or rx.search(raw_upper):
            return True
    for pattern in rules.foreign_merchant_suffixes:
        if compile_pattern(pattern).search(raw_upper.rstrip()):
            return True
    return False


def normalize(raw: RawRecord, rules: NormalizationRuleSet) -> NormalizedTransaction:
    """Normalize one record; flags only what the record itself reveals."""

    clean = clean_description(raw.description, rules)
    raw_upper = _WS_RE.sub(" ", unicodedata.normalize("NFKC", raw.description).upper()).strip()
    return NormalizedTransaction(
        raw=raw,
        clean_description=clean,
        merchant=extract_merchant(clean, rules),
        kind=classify_kind(clean, raw.amount, rules),
        foreign_flag=_is_foreign(raw_upper, clean, rules),
    )


def normalize_all(
    records: Sequence[RawRecord], rules: NormalizationRuleSet
) -> list[NormalizedTransaction]:
    """Normalize ``records`` and apply the adjacent conversion-fee heuristic.

    A record is also flagged foreign when its source file holds a conversion
    fee line on the same date whose magnitude is at most
    ``rules.fx_fee_max_ratio`` of the record's magnitude.
    """

    txns = [normalize(r, rules) for r in records]

    fees: dict[tuple[str, object], list[Decimal]] = defaultdict(list)
    for t in txns:
        if rules.is_fx_fee_line(t.clean_description):
            fees[(t.raw.source_file, t.date)].append(abs(t.amount))
    if not fees:
        return txns

    out: list[NormalizedTransaction] = []
    flagged = 0
    for t in txns:
        if not t.foreign_flag and not rules.is_fx_fee_line(t.clean_description):
            magnitude = abs(t.amount)
            candidates = fees.get((t.raw.source_file, t.date), ())
            if magnitude > 0 and any(
                0 < fee <= magnitude * rules.fx_fee_max_ratio for fee in candidates
            ):
                t = replace(t, foreign_flag=True)
                flagged += 1
        out.append(t)
    logger.debug("normalize:fx_adjacency fee_days=%d flagged=%d", len(fees), flagged)
    return out


__all__ = ["clean_description", "extract_merchant", "classify_kind", "normalize", "normalize_all"]
