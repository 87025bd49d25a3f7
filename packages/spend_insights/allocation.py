"""Validated value types for multi-vendor percentage allocation.

A :class:`Percentage` is constrained to ``[0, 100]``; an
:class:`AllocationSet` is an ordered set of ``(category, Percentage)`` shares
whose sum must equal 100 (within :data:`SUM_EPSILON`). Constructing an
invalid value raises :class:`~spend_insights.errors.ValidationError`, so a
value that exists is structurally valid.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import ValidationError

HUNDRED = Decimal("100")
SUM_EPSILON = Decimal("0.01")
_CENT = Decimal("0.01")


@dataclass(frozen=True, slots=True, order=True)
class Percentage:
    value: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.value, Decimal):
            raise ValidationError(
                f"Percentage value must be a Decimal, got {type(self.value).__name__}"
            )
        if not self.value.is_finite() or not Decimal("0") <= self.value <= HUNDRED:
            raise ValidationError(f"Percentage must be within [0, 100], got {self.value}")

    @classmethod
    def of(cls, raw: Percentage | Decimal | int | float | str) -> Percentage:
        if isinstance(raw, Percentage):
            return raw
        if isinstance(raw, bool):
            raise ValidationError("Percentage cannot be a boolean")
        try:
            # str() keeps float inputs like 33.3 from dragging binary noise along
            value = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except InvalidOperation as e:
            raise ValidationError(f"Invalid percentage: {raw!r}") from e
        return cls(value)

    def __str__(self) -> str:
        return f"{self.value}%"


@dataclass(frozen=True, slots=True)
class AllocationSet:
    """Ordered category shares that sum to 100%."""

    shares: tuple[tuple[str, Percentage], ...]

    def __post_init__(self) -> None:
        if not self.shares:
            raise ValidationError("Allocation must contain at least one category")
        seen: set[str] = set()
        for name, pct in self.shares:
            if not isinstance(pct, Percentage):
                raise ValidationError(f"Share for {name!r} must be a Percentage")
            key = name.casefold()
            if key in seen:
                raise ValidationError(f"Duplicate category in allocation: {name!r}")
            seen.add(key)
        total = sum((pct.value for _, pct in self.shares), Decimal("0"))
        mismatch = total - HUNDRED
        if abs(mismatch) > SUM_EPSILON:
            raise ValidationError(
                f"Allocation percentages must sum to 100, got {total} (off by {mismatch})",
                mismatch=mismatch,
            )

    @classmethod
    def from_mapping(
        cls, splits: Mapping[str, Percentage | Decimal | int | float | str]
    ) -> AllocationSet:
        return cls.from_pairs(splits.items())

    @classmethod
    def from_pairs(
        cls, pairs: Iterable[tuple[str, Percentage | Decimal | int | float | str]]
    ) -> AllocationSet:
        return cls(tuple((str(name).strip(), Percentage.of(pct)) for name, pct in pairs))

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.shares)

    def dominant(self) -> str:
        """Category with the largest share (first one wins on ties)."""

        best_name, best_pct = self.shares[0]
        for name, pct in self.shares[1:]:
            if pct.value > best_pct.value:
                best_name, best_pct = name, pct
        return best_name

    def split(self, amount: Decimal) -> list[tuple[str, Decimal]]:
        """Distribute ``amount`` across the shares, rounded to cents.

        The rounding remainder goes to the dominant share so the parts always
        add back up to the (cent-rounded) input amount.
        """

        total = amount.quantize(_CENT, rounding=ROUND_HALF_UP)
        parts = [
            (name, (total * pct.value / HUNDRED).quantize(_CENT, rounding=ROUND_HALF_UP))
            for name, pct in self.shares
        ]
        remainder = total - sum((p for _, p in parts), Decimal("0"))
        if remainder:
            dom = self.dominant()
            parts = [(n, p + remainder if n == dom else p) for n, p in parts]
        return parts


__all__ = ["Percentage", "AllocationSet", "SUM_EPSILON"]
