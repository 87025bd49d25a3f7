from __future__ import annotations

import datetime
import io
from decimal import Decimal

import pytest
from openpyxl import Workbook

from spend_insights.errors import AmbiguousColumnsError, ParseError, ParseErrorKind
from spend_insights.ingest import detect_columns, parse


def _csv(text: str) -> bytes:
    return text.encode("utf-8")


def test_csv_with_purchases_positive() -> None:
    data = _csv(
        "Date,Description,Amount,Reference\n"
        "01/15/2024,WOOLWORTHS METRO 123,47.32,A1\n"
        "01/16/2024,TRANSFER TO SAVINGS,500.00,\n"
        "01/20/2024,REFUND COLES,-20.00,A3\n"
    )
    records = parse(data, "csv", source_file="amex.csv")
    assert [(r.date, r.description, r.amount) for r in records] == [
        (datetime.date(2024, 1, 15), "WOOLWORTHS METRO 123", Decimal("47.32")),
        (datetime.date(2024, 1, 16), "TRANSFER TO SAVINGS", Decimal("500.00")),
        (datetime.date(2024, 1, 20), "REFUND COLES", Decimal("-20.00")),
    ]
    assert [r.record_id for r in records] == ["amex.csv#1", "amex.csv#2", "amex.csv#3"]
    assert records[0].metadata == {"Reference": "A1"}
    assert records[1].metadata == {}


def test_purchases_negative_exports_are_flipped() -> None:
    data = _csv(
        "Transaction Date,Narrative,Amount\n"
        "2024-02-01,COLES 0456,-20.00\n"
        "2024-02-02,UBER *TRIP,-18.00\n"
        "2024-02-03,ACME CORP PAYROLL,3000.00\n"
    )
    amounts = [r.amount for r in parse(data, ".CSV", source_file="bank.csv")]
    assert amounts == [Decimal("20.00"), Decimal("18.00"), Decimal("-3000.00")]


def test_explicit_sign_convention_overrides_inference() -> None:
    data = _csv("Date,Description,Amount\n2024-02-01,COLES,-20.00\n2024-02-02,ALDI,5.00\n")
    out = parse(data, "csv", source_file="b.csv", amount_sign="outflow_negative")
    assert [r.amount for r in out] == [Decimal("20.00"), Decimal("-5.00")]


def test_debit_credit_columns() -> None:
    data = _csv(
        "Date\tDetails\tDebit\tCredit\n"
        "03/02/2024\tCOLES 0456\t$1,020.50\t\n"
        "04/02/2024\tSALARY\t\t3000\n"
    )
    records = parse(data, "tsv", source_file="bank.tsv", day_first=True)
    assert [(r.date, r.amount) for r in records] == [
        (datetime.date(2024, 2, 3), Decimal("1020.50")),
        (datetime.date(2024, 2, 4), Decimal("-3000")),
    ]


def test_ambiguous_dates_default_to_month_first() -> None:
    data = _csv("Date,Description,Amount\n03/04/2024,COLES,1.00\n")
    (record,) = parse(data, "csv", source_file="b.csv")
    assert record.date == datetime.date(2024, 3, 4)


def test_unambiguous_day_first_file_is_detected() -> None:
    data = _csv("Date,Description,Amount\n03/04/2024,COLES,1.00\n25/04/2024,ALDI,2.00\n")
    dates = [r.date for r in parse(data, "csv", source_file="b.csv")]
    assert dates == [datetime.date(2024, 4, 3), datetime.date(2024, 4, 25)]


@pytest.mark.parametrize(
    ("cell", "expected"),
    [
        ("(12.50)", "-12.50"),
        ("12.50 CR", "-12.50"),
        ("12.50 DR", "12.50"),
        ("-$1,234.00", "-1234.00"),
        ("45.00-", "-45.00"),
    ],
)
def test_amount_cell_formats(cell: str, expected: str) -> None:
    data = _csv(
        "Date,Description,Amount\n"
        f'2024-01-01,ONE,"{cell}"\n'
        "2024-01-02,TWO,1.00\n"
        "2024-01-03,THREE,1.00\n"
    )
    first = parse(data, "csv", source_file="b.csv", amount_sign="outflow_positive")[0]
    assert first.amount == Decimal(expected)


def test_xlsx_workbook() -> None:
    wb = Workbook()
    ws = wb.active
    ws.append(["Posted Date", "Description", "Amount"])
    ws.append([datetime.datetime(2024, 5, 1), "WOOLWORTHS METRO 123", 47.32])
    ws.append(["05/02/2024", "UBER *TRIP", 18])
    buf = io.BytesIO()
    wb.save(buf)

    records = parse(buf.getvalue(), "xlsx", source_file="card.xlsx")
    assert [(r.date, r.description, r.amount) for r in records] == [
        (datetime.date(2024, 5, 1), "WOOLWORTHS METRO 123", Decimal("47.32")),
        (datetime.date(2024, 5, 2), "UBER *TRIP", Decimal("18")),
    ]


def test_ambiguous_columns_need_confirmation() -> None:
    data = _csv(
        "Transaction Date,Posted Date,Description,Amount\n"
        "2024-01-01,2024-01-02,COLES,1.00\n"
    )
    with pytest.raises(AmbiguousColumnsError) as excinfo:
        parse(data, "csv", source_file="b.csv")
    assert excinfo.value.candidates == {"date": ["Transaction Date", "Posted Date"]}

    (record,) = parse(data, "csv", source_file="b.csv", column_map={"date": "Posted Date"})
    assert record.date == datetime.date(2024, 1, 2)


def test_exact_role_name_wins_over_synonyms() -> None:
    cols = detect_columns(["Date", "Posted Date", "Description", "Amount"])
    assert cols == {"date": 0, "description": 2, "amount": 3}


def test_unsupported_kind() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse(b"whatever", "pdf", source_file="statement.pdf")
    assert excinfo.value.kind is ParseErrorKind.UNSUPPORTED_FORMAT


def test_non_utf8_bytes_are_unsupported() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse(b"\xff\xfe\x00D\x00a", "csv", source_file="b.csv")
    assert excinfo.value.kind is ParseErrorKind.UNSUPPORTED_FORMAT


def test_broken_workbook_is_unsupported() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse(b"not a zip", "xlsx", source_file="b.xlsx")
    assert excinfo.value.kind is ParseErrorKind.UNSUPPORTED_FORMAT


def test_missing_column() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse(_csv("Date,Description\n2024-01-01,COLES\n"), "csv", source_file="b.csv")
    assert excinfo.value.kind is ParseErrorKind.MISSING_REQUIRED_COLUMN
    assert "amount" in str(excinfo.value)


@pytest.mark.parametrize(
    ("body", "line"),
    [
        ("2024-01-01,COLES,1.00\n2024-01-02,,2.00\n", 3),
        ("2024-01-01,COLES,1.00\n2024-01-02,ALDI,abc\n", 3),
        ("2024-01-01,COLES,1.00\nnot a date,ALDI,2.00\n", 3),
    ],
)
def test_malformed_rows_report_line(body: str, line: int) -> None:
    with pytest.raises(ParseError) as excinfo:
        parse(_csv("Date,Description,Amount\n" + body), "csv", source_file="b.csv")
    assert excinfo.value.kind is ParseErrorKind.MALFORMED_ROW
    assert excinfo.value.line == line


def test_blank_lines_are_skipped() -> None:
    data = _csv("Date,Description,Amount\n\n2024-01-01,COLES,1.00\n,,\n")
    assert len(parse(data, "csv", source_file="b.csv")) == 1
