from __future__ import annotations

from decimal import Decimal

import pytest

from spend_insights.models import TransactionKind
from spend_insights.normalize import clean_description, normalize, normalize_all
from spend_insights.rules import MerchantRule, default_normalization_rules
from tests.helpers.records import raw, raws

RULES = default_normalization_rules()


@pytest.mark.parametrize(
    ("description", "expected"),
    [
        ("WOOLWORTHS METRO 123", "WOOLWORTHS METRO"),
        ("POS WOOLWORTHS 1234", "WOOLWORTHS"),
        ("SQ *BLUE BOTTLE COFFEE", "BLUE BOTTLE COFFEE"),
        ("  uber   *trip  ", "UBER TRIP"),
        ("AMAZON.COM*2K4L19 AMZN.COM/BILL", "AMAZON.COM 2K4L19 AMZN.COM BILL"),
        ("TST* JOE'S DINER #0042", "JOE'S DINER"),
    ],
)
def test_clean_description_strips_processor_noise(description: str, expected: str) -> None:
    assert clean_description(description, RULES) == expected


def test_woolworths_maps_to_canonical_merchant() -> None:
    t = normalize(raw("WOOLWORTHS METRO 123", "47.32"), RULES)
    assert t.merchant == "Woolworths"
    assert t.kind is TransactionKind.EXPENSE
    assert t.foreign_flag is False
    assert t.id == "bank.csv#1"


def test_normalize_is_deterministic() -> None:
    r = raw("PAYPAL *NETFLIX.COM 866-579", "15.99")
    assert normalize(r, RULES) == normalize(r, RULES)


@pytest.mark.parametrize(
    ("description", "amount", "kind"),
    [
        ("TRANSFER TO SAVINGS", "500.00", TransactionKind.TRANSFER),
        ("PAYMENT RECEIVED - THANK YOU", "-1200.00", TransactionKind.TRANSFER),
        ("ACME CORP PAYROLL", "-3000.00", TransactionKind.INCOME),
        ("INTEREST CHARGED ON PURCHASES", "12.40", TransactionKind.FEE),
        ("INTEREST PAID", "-1.05", TransactionKind.INCOME),
        ("MONTHLY SERVICE FEE", "5.00", TransactionKind.FEE),
        ("PENDING AUTHORIZATION HOLD", "1.00", TransactionKind.IGNORE),
        ("REFUND COLES", "-20.00", TransactionKind.INCOME),
        ("COLES 0456", "20.00", TransactionKind.EXPENSE),
        ("ZERO ROW", "0", TransactionKind.IGNORE),
    ],
)
def test_kind_classification(description: str, amount: str, kind: TransactionKind) -> None:
    assert normalize(raw(description, amount), RULES).kind is kind


def test_foreign_flag_from_description_markers() -> None:
    assert normalize(raw("HOTEL PARIS EUR 120.00 FX RATE", "140.00"), RULES).foreign_flag
    assert normalize(raw("BOOKSHOP.CO.UK", "30.00"), RULES).foreign_flag
    assert not normalize(raw("BOOKSHOP SYDNEY", "30.00"), RULES).foreign_flag


def test_conversion_fee_line_marks_same_day_purchase_foreign() -> None:
    records = raws(
        ("MUSEUM SHOP", "100.00", "2024-03-02"),
        ("FOREIGN TRANSACTION FEE", "3.00", "2024-03-02"),
        ("CORNER BAKERY", "8.00", "2024-03-03"),
    )
    out = normalize_all(records, RULES)
    assert [t.foreign_flag for t in out] == [True, False, False]


def test_normalize_all_does_not_depend_on_input_order() -> None:
    records = raws(
        ("MUSEUM SHOP", "100.00", "2024-03-02"),
        ("FOREIGN TRANSACTION FEE", "3.00", "2024-03-02"),
    )
    forward = {t.id: t for t in normalize_all(records, RULES)}
    backward = {t.id: t for t in normalize_all(list(reversed(records)), RULES)}
    assert forward == backward


def test_custom_merchant_rule_with_group_reference() -> None:
    from dataclasses import replace

    rules = replace(
        RULES, merchant_rules=(MerchantRule(r"\bCITY OF (\w+)\b", r"City of \1"),)
    )
    t = normalize(raw("CITY OF SPRINGFIELD PARKING", "4.50"), rules)
    assert t.merchant == "City of SPRINGFIELD"
    assert t.amount == Decimal("4.50")
