from __future__ import annotations

from decimal import Decimal

import pytest

from spend_insights.allocation import AllocationSet, Percentage
from spend_insights.errors import ValidationError


def test_percentage_bounds() -> None:
    assert Percentage.of("33.3").value == Decimal("33.3")
    assert Percentage.of(33.3).value == Decimal("33.3")
    for bad in ("-1", "100.5", "abc", True):
        with pytest.raises(ValidationError):
            Percentage.of(bad)


def test_allocation_must_sum_to_hundred() -> None:
    with pytest.raises(ValidationError) as excinfo:
        AllocationSet.from_mapping({"Groceries": 60, "Household": 30})
    assert excinfo.value.mismatch == Decimal("-10")


def test_allocation_within_epsilon_is_accepted() -> None:
    alloc = AllocationSet.from_mapping({"A": "33.33", "B": "33.33", "C": "33.34"})
    assert alloc.categories == ("A", "B", "C")


def test_duplicate_categories_rejected() -> None:
    with pytest.raises(ValidationError, match="Duplicate"):
        AllocationSet.from_pairs([("Groceries", 50), ("groceries", 50)])


def test_split_parts_sum_to_amount() -> None:
    alloc = AllocationSet.from_mapping(
        {"Groceries": "33.33", "Household": "33.33", "Pets": "33.34"}
    )
    parts = alloc.split(Decimal("100.00"))
    assert sum(p for _, p in parts) == Decimal("100.00")
    assert alloc.dominant() == "Pets"

    odd = AllocationSet.from_mapping({"Groceries": 60, "Household": 40}).split(Decimal("10.01"))
    assert odd == [("Groceries", Decimal("6.01")), ("Household", Decimal("4.00"))]
    assert sum(p for _, p in odd) == Decimal("10.01")


def test_dominant_prefers_first_on_tie() -> None:
    assert AllocationSet.from_mapping({"A": 50, "B": 50}).dominant() == "A"
