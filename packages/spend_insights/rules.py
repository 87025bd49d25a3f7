"""Rule-set values threaded through the pipeline.

Rule sets are immutable values, never module-level state: the Normalizer and
Filter take them as arguments, and the Categorizer receives a
:class:`CategoryRuleSet` and hands back a new *version* whenever user feedback
teaches it something. Patterns are stored as strings (so rule sets stay
hashable and printable) and compiled through a shared cache.

Default rule sets (``default_*``) cover common card/bank boilerplate; callers
replace or extend them with :func:`dataclasses.replace`.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal
from functools import lru_cache
from types import MappingProxyType

from .errors import ConfigurationError
from .models import Category, CategoryKind, TransactionKind, merchant_key


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a case-insensitive rule pattern, raising ``ConfigurationError``."""

    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ConfigurationError(f"Invalid rule pattern {pattern!r}: {e}") from e


def _any_match(patterns: Iterable[str], text: str) -> bool:
    return any(compile_pattern(p).search(text) for p in patterns)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MerchantRule:
    """Map a cleaned description to a canonical merchant.

    ``merchant`` may reference match groups (``\\1`` or ``\\g<name>``); it is
    expanded with :meth:`re.Match.expand`.
    """

    pattern: str
    merchant: str


@dataclass(frozen=True, slots=True)
class KindRule:
    """Assign a :class:`TransactionKind` when ``pattern`` matches.

    ``direction`` restricts the rule to outflows (``1``) or inflows (``-1``);
    ``None`` matches either.
    """

    pattern: str
    kind: TransactionKind
    direction: int | None = None


@dataclass(frozen=True, slots=True)
class NormalizationRuleSet:
    # Removed (in order) before punctuation cleanup.
    strip_patterns: tuple[str, ...] = ()
    merchant_rules: tuple[MerchantRule, ...] = ()
    kind_rules: tuple[KindRule, ...] = ()
    foreign_markers: tuple[str, ...] = ()
    foreign_merchant_suffixes: tuple[str, ...] = ()
    fx_fee_patterns: tuple[str, ...] = ()
    fx_fee_max_ratio: Decimal = Decimal("0.05")

    def validate(self) -> NormalizationRuleSet:
        for p in (
            *self.strip_patterns,
            *(r.pattern for r in self.merchant_rules),
            *(r.pattern for r in self.kind_rules),
            *self.foreign_markers,
            *self.foreign_merchant_suffixes,
            *self.fx_fee_patterns,
        ):
            compile_pattern(p)
        if self.fx_fee_max_ratio <= 0:
            raise ConfigurationError("fx_fee_max_ratio must be positive")
        return self

    def is_fx_fee_line(self, clean_description: str) -> bool:
        return _any_match(self.fx_fee_patterns, clean_description)


_DEFAULT_STRIP_PATTERNS: tuple[str, ...] = (
    # Payment processor / wallet prefixes
    r"^(?:SQ\s*\*|TST\s*\*|APLPAY\s+|PAYPAL\s*\*|PP\s*\*|PY\s*\*|SP\s+|GOOGLE\s*\*)",
    r"^(?:POS|VISA|EFTPOS|DEBIT CARD)\s+(?:PURCHASE|DEBIT|CARD)?\s*",
    # Terminal, store and card identifiers
    r"\bPOS\s*\d+\b",
    r"#\s*\d+",
    r"\bSTORE\s*\d+\b",
    r"\bTERM(?:INAL)?\s*\d+\b",
    r"\b(?:X{2,}|\*{2,})\d{4}\b",
    r"\bCARD\s+\d{4}\b",
    r"\b\d{2}/\d{2}(?:/\d{2,4})?\b",
    # Reference tails
    r"\s+(?:REF|ID|DES|INDN|CO ID|RECEIPT)\s*[:#].*$",
    # City/state suffixes
    r"\s{2,}[A-Z]{2}$",
    r"\s+(?:NSW|VIC|QLD|TAS|ACT)(?:\s+AUS?)?$",
    # Trailing store numbers
    r"\s+\d{2,}$",
)

_DEFAULT_MERCHANT_RULES: tuple[MerchantRule, ...] = (
    MerchantRule(r"\b(?:ATM|CASH WITHDRAWAL|CASH WDL)\b", "ATM Withdrawal"),
    MerchantRule(r"\bWOOLWORTHS\b", "Woolworths"),
    MerchantRule(r"\bCOLES\b", "Coles"),
    MerchantRule(r"\bALDI\b", "Aldi"),
    MerchantRule(r"\bWHOLE ?FOODS\b", "Whole Foods"),
    MerchantRule(r"\bTRADER JOE'?S\b", "Trader Joe's"),
    MerchantRule(r"\bCOSTCO\b", "Costco"),
    MerchantRule(r"\bWAL-?MART\b", "Walmart"),
    MerchantRule(r"\bTARGET\b", "Target"),
    MerchantRule(r"\b(?:AMZN|AMAZON)\b", "Amazon"),
    MerchantRule(r"\bUBER\s*\*?\s*EATS\b", "Uber Eats"),
    MerchantRule(r"\bUBER\b", "Uber"),
    MerchantRule(r"\bLYFT\b", "Lyft"),
    MerchantRule(r"\bSTARBUCKS\b", "Starbucks"),
    MerchantRule(r"\bMCDONALD'?S?\b", "McDonald's"),
    MerchantRule(r"\bNETFLIX\b", "Netflix"),
    MerchantRule(r"\bSPOTIFY\b", "Spotify"),
    MerchantRule(r"\bWALGREENS\b", "Walgreens"),
    MerchantRule(r"\bCVS\b", "CVS"),
)

_DEFAULT_KIND_RULES: tuple[KindRule, ...] = (
    KindRule(r"\bAUTHORI[SZ]ATION\b|\bPENDING\b", TransactionKind.IGNORE),
    KindRule(r"\b(?:TRANSFER|XFER|TFR)\b", TransactionKind.TRANSFER),
    KindRule(r"\bPAYMENT\b.*\bTHANK YOU\b", TransactionKind.TRANSFER),
    KindRule(
        r"\b(?:AUTOPAY|AUTOMATIC PAYMENT|ONLINE PAYMENT|CREDIT CARD PAYMENT|CARD PAYMENT)\b",
        TransactionKind.TRANSFER,
    ),
    KindRule(r"\bINTEREST\b", TransactionKind.INCOME, direction=-1),
    KindRule(r"\bINTEREST\b", TransactionKind.FEE, direction=1),
    KindRule(r"\bFEE\b|\bSERVICE CHARGE\b|\bLATE CHARGE\b", TransactionKind.FEE, direction=1),
    KindRule(
        r"\b(?:PAYROLL|SALARY|WAGES|DIRECT DEP(?:OSIT)?|DIR DEP|DIVIDEND)\b",
        TransactionKind.INCOME,
        direction=-1,
    ),
)

_DEFAULT_FX_FEE_PATTERNS: tuple[str, ...] = (
    r"\b(?:FOREIGN (?:TRANSACTION|TXN|CURRENCY) |INTERNATIONAL (?:TRANSACTION )?|FX |"
    r"(?:CURRENCY )?CONVERSION )FEE\b",
)


def default_normalization_rules() -> NormalizationRuleSet:
    return NormalizationRuleSet(
        strip_patterns=_DEFAULT_STRIP_PATTERNS,
        merchant_rules=_DEFAULT_MERCHANT_RULES,
        kind_rules=_DEFAULT_KIND_RULES,
        foreign_markers=(
            r"\bFX\b",
            r"\bCONVER(?:SION|TED)\b",
            r"\bEXCHANGE RATE\b",
            r"\b(?:USD|EUR|GBP|AUD|NZD|CAD|JPY|CHF|SGD|HKD)\s*\d",
        ),
        foreign_merchant_suffixes=(
            r"\.CO\.UK$",
            r"\.(?:DE|FR|ES|IT|JP|NL)$",
            r"\s(?:GBR|FRA|DEU|ESP|ITA|JPN|SGP|HKG|NZL|NLD)$",
        ),
        fx_fee_patterns=_DEFAULT_FX_FEE_PATTERNS,
    )


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FilterRuleSet:
    interest_patterns: tuple[str, ...] = (r"\bINTEREST\b",)
    investment_patterns: tuple[str, ...] = (
        r"\b(?:VANGUARD|FIDELITY|SCHWAB|ROBINHOOD|E\s?\*?TRADE|BROKERAGE|INVESTMENT|"
        r"SUPERANNUATION|401K|IRA CONTRIB(?:UTION)?)\b",
    )
    cash_withdrawal_patterns: tuple[str, ...] = (
        r"\b(?:ATM|CASH WITHDRAWAL|CASH WDL|WITHDRAWAL)\b",
    )
    cash_withdrawal_threshold: Decimal = Decimal("100")
    keep_income: bool = True

    def validate(self) -> FilterRuleSet:
        for p in (
            *self.interest_patterns,
            *self.investment_patterns,
            *self.cash_withdrawal_patterns,
        ):
            compile_pattern(p)
        if self.cash_withdrawal_threshold < 0:
            raise ConfigurationError("cash_withdrawal_threshold must be >= 0")
        return self

    def is_interest(self, text: str) -> bool:
        return _any_match(self.interest_patterns, text)

    def is_investment_transfer(self, text: str) -> bool:
        return _any_match(self.investment_patterns, text)

    def is_cash_withdrawal(self, text: str) -> bool:
        return _any_match(self.cash_withdrawal_patterns, text)


def default_filter_rules(threshold: Decimal | None = None) -> FilterRuleSet:
    if threshold is None:
        return FilterRuleSet()
    return replace(FilterRuleSet(), cash_withdrawal_threshold=threshold)


# ---------------------------------------------------------------------------
# Categories (versioned)
# ---------------------------------------------------------------------------


_EMPTY_LEARNED: Mapping[str, str] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class CategoryRuleSet:
    """Categories plus rules learned from user feedback.

    ``learned`` maps a merchant key to a category name. Each change produces a
    new value with ``version + 1``; re-teaching an identical pair returns the
    same value so repeated feedback is idempotent.
    """

    categories: tuple[Category, ...]
    learned: Mapping[str, str] = field(default=_EMPTY_LEARNED, compare=False, hash=False)
    version: int = 0

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for c in self.categories:
            key = c.name.casefold()
            if key in seen:
                raise ConfigurationError(f"Duplicate category name: {c.name!r}")
            seen.add(key)
            for p in c.patterns:
                compile_pattern(p)

    def find(self, name: str) -> Category | None:
        key = name.strip().casefold()
        for c in self.categories:
            if c.name.casefold() == key:
                return c
        return None

    def require(self, name: str) -> Category:
        found = self.find(name)
        if found is None:
            raise ConfigurationError(f"Unknown category: {name!r}")
        return found

    def candidates_for(self, kind: TransactionKind) -> tuple[Category, ...]:
        """Categories competing for a transaction of ``kind``."""

        wanted = CategoryKind.INCOME if kind is TransactionKind.INCOME else CategoryKind.EXPENSE
        return tuple(c for c in self.categories if c.kind is wanted)

    def names(self, kind: TransactionKind | None = None) -> list[str]:
        cats = self.categories if kind is None else self.candidates_for(kind)
        return [c.name for c in cats]

    def learned_category(self, merchant: str) -> str | None:
        return self.learned.get(merchant_key(merchant))

    def with_learned(self, merchant: str, category: str) -> CategoryRuleSet:
        canonical = self.require(category).name
        key = merchant_key(merchant)
        if self.learned.get(key) == canonical:
            return self
        learned = dict(self.learned)
        learned[key] = canonical
        return replace(self, learned=MappingProxyType(learned), version=self.version + 1)

    def with_category(self, category: Category) -> CategoryRuleSet:
        if self.find(category.name) is not None:
            raise ConfigurationError(f"Category already exists: {category.name!r}")
        return replace(
            self, categories=(*self.categories, category), version=self.version + 1
        )

    def learned_pairs(self) -> list[dict[str, str]]:
        """Prior user corrections as ``{"pattern", "category"}`` dicts, sorted."""

        return [{"pattern": k, "category": v} for k, v in sorted(self.learned.items())]


__all__ = [
    "compile_pattern",
    "MerchantRule",
    "KindRule",
    "NormalizationRuleSet",
    "default_normalization_rules",
    "FilterRuleSet",
    "default_filter_rules",
    "CategoryRuleSet",
]
