from __future__ import annotations

from decimal import Decimal

import pytest

from spend_insights.errors import ConfigurationError
from spend_insights.grouping import amount_band, group
from tests.helpers.records import txns


@pytest.mark.parametrize(
    ("amount", "low", "high"),
    [
        ("0", "0", "1"),
        ("0.40", "0", "1"),
        ("1", "0", "1"),
        ("1.01", "1", "1.5"),
        ("9.99", "9.5", "10"),
        ("10", "9.5", "10"),
        ("10.01", "10", "15"),
        ("47.32", "45", "50"),
        ("100", "95", "100"),
        ("100.01", "100", "150"),
        ("149.99", "100", "150"),
        ("150", "100", "150"),
        ("2500", "2000", "2500"),
        ("2500.01", "2500", "3000"),
    ],
)
def test_amount_band_boundaries(amount: str, low: str, high: str) -> None:
    band = amount_band(Decimal(amount))
    assert (band.low, band.high) == (Decimal(low), Decimal(high))
    assert band.contains(Decimal(amount))


def test_inflows_band_on_their_own_side() -> None:
    band = amount_band(Decimal("-47.32"))
    assert band.direction == -1
    assert band.bounds == (Decimal("-50"), Decimal("-45"))
    assert not band.contains(Decimal("47.32"))


def test_band_ratio_must_be_in_range() -> None:
    with pytest.raises(ConfigurationError):
        amount_band(Decimal("5"), Decimal("0"))


def test_groups_partition_transactions() -> None:
    items = txns(
        ("WOOLWORTHS METRO 123", "47.32"),
        ("UBER *TRIP", "18.00"),
        ("WOOLWORTHS TOWN HALL", "46.10"),
        ("WOOLWORTHS METRO 123", "120.00"),
        ("UBER *TRIP", "16.50"),
        ("WOOLWORTHS REFUND", "-46.00"),
    )
    groups = group(items)

    member_ids = [t.id for g in groups for t in g.members]
    assert sorted(member_ids) == sorted(t.id for t in items)
    assert len(member_ids) == len(set(member_ids))
    for g in groups:
        for t in g.members:
            assert t.merchant_key == g.exemplar.merchant_key
            assert g.amount_band.contains(t.amount)

    summary = [(g.representative_merchant, len(g.members)) for g in groups]
    assert summary == [("Woolworths", 2), ("Uber", 2), ("Woolworths", 1), ("Woolworths", 1)]
    assert [g.group_id for g in groups] == ["g1", "g2", "g3", "g4"]
    assert groups[0].total_amount == Decimal("93.42")


def test_grouping_is_deterministic() -> None:
    items = txns(("COLES 0456", "20.00"), ("ALDI STORE 12", "31.00"), ("COLES 0999", "21.00"))
    assert group(items) == group(items)
