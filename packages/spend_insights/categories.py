"""Category configuration loading and name validation.

The configuration is a JSON document with separate expense and income lists::

    {
      "expenses": [{"name": "Groceries", "keywords": ["woolworths"],
                    "patterns": ["\\\\bALDI\\\\b"], "color": "#4caf50",
                    "sub_categories": ["Produce"]}],
      "income":   [{"name": "Salary", "keywords": ["payroll"]}]
    }

``load_categories`` validates it with pydantic and returns version 0 of a
:class:`~spend_insights.rules.CategoryRuleSet`. ``normalize_name`` /
``validate_name`` are shared with the terminal UI for user-created
categories.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .models import Category, CategoryKind
from .rules import CategoryRuleSet, compile_pattern

_ALLOWED_RE = re.compile(r"^[A-Za-z0-9 &\-/',.]+$")
_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def normalize_name(name: str) -> str:
    """Return a trimmed, single-spaced ``name``. Case is preserved."""

    return " ".join(name.strip().split())


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_name(name: str, *, min_len: int = 1, max_len: int = 64) -> NameValidation:
    """Check length bounds and the allowed character set."""

    n = normalize_name(name)
    if len(n) < min_len:
        return NameValidation(False, "Name cannot be empty")
    if len(n) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters")
    if not _ALLOWED_RE.match(n):
        return NameValidation(
            False, "Only letters, numbers, spaces, and & - / ' , . are allowed"
        )
    return NameValidation(True, None)


class _CategoryEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str
    keywords: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    color: str | None = None
    sub_categories: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _valid_name(cls, v: str) -> str:
        check = validate_name(v)
        if not check.ok:
            raise ValueError(check.reason or "invalid name")
        return normalize_name(v)

    @field_validator("keywords", "sub_categories")
    @classmethod
    def _drop_blank(cls, v: list[str]) -> list[str]:
        return [normalize_name(s) for s in v if s.strip()]

    @field_validator("patterns")
    @classmethod
    def _compilable(cls, v: list[str]) -> list[str]:
        for p in v:
            try:
                compile_pattern(p)
            except ConfigurationError as e:
                raise ValueError(str(e)) from e
        return v

    @field_validator("color")
    @classmethod
    def _hex_color(cls, v: str | None) -> str | None:
        if v is None or not v:
            return None
        if not _COLOR_RE.match(v):
            raise ValueError(f"color must be #rgb or #rrggbb, got {v!r}")
        return v.lower()

    def to_category(self, kind: CategoryKind) -> Category:
        return Category(
            name=self.name,
            keywords=frozenset(k.casefold() for k in self.keywords),
            patterns=tuple(self.patterns),
            sub_categories=frozenset(self.sub_categories),
            color=self.color,
            kind=kind,
        )


class _CategoryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    expenses: list[_CategoryEntry] = Field(default_factory=list)
    income: list[_CategoryEntry] = Field(default_factory=list)


def categories_from_mapping(data: Mapping[str, Any]) -> CategoryRuleSet:
    """Validate a parsed configuration document into a rule set."""

    try:
        cfg = _CategoryConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid category configuration: {e}") from e

    cats = [e.to_category(CategoryKind.EXPENSE) for e in cfg.expenses]
    cats.extend(e.to_category(CategoryKind.INCOME) for e in cfg.income)
    if not cats:
        raise ConfigurationError("Category configuration defines no categories")
    # Duplicate names across both lists are rejected by CategoryRuleSet.
    return CategoryRuleSet(categories=tuple(cats))


def load_categories(path: str | Path) -> CategoryRuleSet:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Category configuration not found: {p}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Category configuration is not valid JSON: {e}") from e
    if not isinstance(data, Mapping):
        raise ConfigurationError("Category configuration must be a JSON object")
    return categories_from_mapping(data)


def add_user_category(
    rules: CategoryRuleSet, name: str, *, kind: CategoryKind = CategoryKind.EXPENSE
) -> CategoryRuleSet:
    """Return a new rule-set version with a user-defined category appended."""

    check = validate_name(name)
    if not check.ok:
        raise ConfigurationError(f"Invalid category name: {check.reason}")
    return rules.with_category(Category(name=normalize_name(name), user_defined=True, kind=kind))


__all__ = [
    "normalize_name",
    "NameValidation",
    "validate_name",
    "categories_from_mapping",
    "load_categories",
    "add_user_category",
]
