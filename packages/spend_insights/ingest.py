"""Bank/card export files (CSV, TSV, XLSX) to :class:`RawRecord` lists.

Column roles (``date``, ``description``, ``amount`` or a ``debit``/``credit``
pair) are detected from header synonyms. When a role has several plausible
columns, :class:`~spend_insights.errors.AmbiguousColumnsError` lists them and
the caller retries with an explicit ``column_map``.

Amounts are converted to the package sign convention (positive = money out).
With a single amount column the sign is inferred per file: exports where most
rows are negative are treated as "purchases negative" and flipped. Dates use
one format per file; a file that parses both as month-first and day-first is
resolved by ``day_first`` (default month-first).
"""

from __future__ import annotations

import csv
import datetime
import io
import re
import zipfile
from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .errors import AmbiguousColumnsError, ParseError, ParseErrorKind
from .logging_setup import get_logger
from .models import RawRecord

logger = get_logger("spend_insights.ingest")

SUPPORTED_KINDS: tuple[str, ...] = ("csv", "tsv", "xlsx")

AmountSign = Literal["auto", "outflow_positive", "outflow_negative"]

_HEADER_SYNONYMS: dict[str, frozenset[str]] = {
    "date": frozenset(
        {
            "date",
            "transaction date",
            "trans date",
            "posted date",
            "post date",
            "posting date",
            "value date",
            "booking date",
        }
    ),
    "description": frozenset(
        {
            "description",
            "transaction description",
            "details",
            "transaction details",
            "narrative",
            "payee",
            "merchant",
            "particulars",
            "name",
        }
    ),
    "amount": frozenset({"amount", "transaction amount", "amount usd", "amount aud", "value"}),
    "debit": frozenset(
        {"debit", "debit amount", "withdrawal", "withdrawals", "money out", "paid out"}
    ),
    "credit": frozenset({"credit", "credit amount", "deposit", "deposits", "money in", "paid in"}),
}

ROLES: tuple[str, ...] = tuple(_HEADER_SYNONYMS)

# (format, day_first) where day_first is None for unambiguous formats.
_DATE_FORMATS: tuple[tuple[str, bool | None], ...] = (
    ("%Y-%m-%d", None),
    ("%Y/%m/%d", None),
    ("%m/%d/%Y", False),
    ("%d/%m/%Y", True),
    ("%m/%d/%y", False),
    ("%d/%m/%y", True),
    ("%d-%m-%Y", True),
    ("%d %b %Y", None),
    ("%d-%b-%Y", None),
    ("%b %d, %Y", None),
)


def _norm_header(h: Any) -> str:
    return " ".join(re.sub(r"[^0-9a-z]+", " ", str(h or "").casefold()).split())


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------


def _to_decimal(raw: Any) -> Decimal:
    """Parse an amount cell: currency symbols, thousands separators,
    parentheses, leading/trailing minus and ``CR``/``DR`` suffixes."""

    if isinstance(raw, bool):
        raise ValueError(f"invalid amount: {raw!r}")
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, (int, float)):
        return Decimal(str(raw))
    if raw is None:
        raise ValueError("amount is required")
    s = str(raw).strip()
    if not s:
        raise ValueError("amount is empty")

    negative = False
    upper = s.upper()
    if upper.endswith("CR"):
        negative = True
        s = s[:-2].strip()
    elif upper.endswith("DR"):
        s = s[:-2].strip()
    if s.endswith("-"):
        negative = not negative
        s = s[:-1].strip()

    # Strip leading sign, currency symbol and parentheses in any order.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = not negative
            s = s[1:].lstrip()
            changed = True
        if s[:1] in {"$", "€", "£"}:
            s = s[1:].lstrip()
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    s = s.replace(",", "").replace(" ", "")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return -abs(d) if negative else d


def _cell_text(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, datetime.datetime):
        return v.date().isoformat()
    if isinstance(v, datetime.date):
        return v.isoformat()
    return str(v).strip()


def _is_blank(cells: Sequence[Any]) -> bool:
    return all(_cell_text(c) == "" for c in cells)


# ---------------------------------------------------------------------------
# Readers: yield (line, cells)
# ---------------------------------------------------------------------------


def _read_delimited(file_bytes: bytes, delimiter: str) -> list[tuple[int, list[Any]]]:
    try:
        text = file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(ParseErrorKind.UNSUPPORTED_FORMAT, f"file is not UTF-8 text: {e}") from e
    rows: list[tuple[int, list[Any]]] = []
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    start = 1
    try:
        for cells in reader:
            rows.append((start, cells))
            start = reader.line_num + 1
    except csv.Error as e:
        raise ParseError(
            ParseErrorKind.MALFORMED_ROW, f"unreadable row: {e}", line=reader.line_num
        ) from e
    return rows


def _read_xlsx(file_bytes: bytes) -> list[tuple[int, list[Any]]]:
    try:
        wb = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ParseError(ParseErrorKind.UNSUPPORTED_FORMAT, f"not a readable workbook: {e}") from e
    try:
        ws = wb.worksheets[0] if wb.worksheets else None
        if ws is None:
            return []
        return [
            (i, list(values)) for i, values in enumerate(ws.iter_rows(values_only=True), start=1)
        ]
    finally:
        wb.close()


# ---------------------------------------------------------------------------
# Column detection
# ---------------------------------------------------------------------------


def detect_columns(
    headers: Sequence[str], column_map: Mapping[str, str] | None = None
) -> dict[str, int]:
    """Map roles to column indices.

    Raises ``AmbiguousColumnsError`` when a required role has several
    candidates and ``ParseError(MissingRequiredColumn)`` when one has none.
    """

    normed = [_norm_header(h) for h in headers]
    chosen: dict[str, int] = {}

    for role, header in (column_map or {}).items():
        if role not in ROLES:
            raise ParseError(
                ParseErrorKind.MISSING_REQUIRED_COLUMN, f"unknown column role {role!r}"
            )
        target = _norm_header(header)
        if target not in normed:
            raise ParseError(
                ParseErrorKind.MISSING_REQUIRED_COLUMN,
                f"column {header!r} for {role} not found in header",
            )
        chosen[role] = normed.index(target)

    ambiguous: dict[str, list[str]] = {}
    taken = set(chosen.values())
    for role, synonyms in _HEADER_SYNONYMS.items():
        if role in chosen:
            continue
        hits = [i for i, h in enumerate(normed) if h in synonyms and i not in taken]
        if len(hits) > 1:
            # A header spelled exactly like the role wins outright.
            exact = [i for i in hits if normed[i] == role]
            hits = exact if len(exact) == 1 else hits
        if len(hits) == 1:
            chosen[role] = hits[0]
            taken.add(hits[0])
        elif len(hits) > 1 and role in ("date", "description", "amount"):
            ambiguous[role] = [str(headers[i]) for i in hits]

    if ambiguous:
        raise AmbiguousColumnsError(ambiguous)

    missing = [r for r in ("date", "description") if r not in chosen]
    if "amount" not in chosen and not ("debit" in chosen and "credit" in chosen):
        missing.append("amount")
    if missing:
        raise ParseError(
            ParseErrorKind.MISSING_REQUIRED_COLUMN,
            f"could not find column(s) for: {', '.join(missing)}",
        )
    return chosen


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _strip_time(s: str) -> str:
    s = s.strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}[T ]", s):
        return s[:10]
    m = re.match(r"^(\S+)\s+\d{1,2}:\d{2}", s)
    return m.group(1) if m else s


def _parse_with(fmt: str, s: str) -> datetime.date | None:
    try:
        return datetime.datetime.strptime(s, fmt).date()
    except ValueError:
        return None


def _choose_date_format(samples: Sequence[tuple[int, str]], day_first: bool | None) -> str:
    if not samples:
        return _DATE_FORMATS[0][0]
    fits = [
        (fmt, df)
        for fmt, df in _DATE_FORMATS
        if all(_parse_with(fmt, s) is not None for _, s in samples)
    ]
    if not fits:
        best_fmt = max(
            (fmt for fmt, _ in _DATE_FORMATS),
            key=lambda f: sum(1 for _, s in samples if _parse_with(f, s) is not None),
        )
        line, bad = next((ln, s) for ln, s in samples if _parse_with(best_fmt, s) is None)
        raise ParseError(ParseErrorKind.MALFORMED_ROW, f"unrecognized date {bad!r}", line=line)
    if len(fits) > 1 and any(df is not None for _, df in fits):
        want = bool(day_first)
        for fmt, df in fits:
            if df is want:
                return fmt
    return fits[0][0]


def _date_of(v: Any, fmt: str, line: int) -> datetime.date:
    if isinstance(v, datetime.datetime):
        return v.date()
    if isinstance(v, datetime.date):
        return v
    d = _parse_with(fmt, _strip_time(_cell_text(v)))
    if d is None:
        raise ParseError(ParseErrorKind.MALFORMED_ROW, f"unrecognized date {v!r}", line=line)
    return d


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse(
    file_bytes: bytes,
    file_kind: str,
    *,
    source_file: str,
    column_map: Mapping[str, str] | None = None,
    day_first: bool | None = None,
    amount_sign: AmountSign = "auto",
) -> list[RawRecord]:
    """Parse one export file into raw records (in file order).

    Each record's ``row`` is its 1-based index among the data rows, so
    ``"<source_file>#<row>"`` is a stable id.
    """

    kind = file_kind.strip().lower().lstrip(".")
    if kind == "csv":
        rows = _read_delimited(file_bytes, ",")
    elif kind == "tsv":
        rows = _read_delimited(file_bytes, "\t")
    elif kind == "xlsx":
        rows = _read_xlsx(file_bytes)
    else:
        raise ParseError(
            ParseErrorKind.UNSUPPORTED_FORMAT,
            f"unsupported file kind {file_kind!r}; expected one of {', '.join(SUPPORTED_KINDS)}",
        )

    rows = [(line, cells) for line, cells in rows if not _is_blank(cells)]
    if not rows:
        raise ParseError(ParseErrorKind.MISSING_REQUIRED_COLUMN, "file has no header row")

    _, header_cells = rows[0]
    headers = [_cell_text(h) for h in header_cells]
    cols = detect_columns(headers, column_map)
    data = rows[1:]

    def cell(cells: Sequence[Any], role: str) -> Any:
        i = cols.get(role)
        if i is None or i >= len(cells):
            return None
        return cells[i]

    date_samples = [
        (line, _strip_time(_cell_text(cell(cells, "date"))))
        for line, cells in data
        if not isinstance(cell(cells, "date"), datetime.date)
    ]
    for line, s in date_samples:
        if not s:
            raise ParseError(ParseErrorKind.MALFORMED_ROW, "missing date", line=line)
    date_fmt = _choose_date_format(date_samples, day_first)

    parsed: list[tuple[int, datetime.date, str, Decimal, dict[str, str]]] = []
    for line, cells in data:
        description = _cell_text(cell(cells, "description"))
        if not description:
            raise ParseError(ParseErrorKind.MALFORMED_ROW, "missing description", line=line)
        try:
            if "amount" in cols:
                amount = _to_decimal(cell(cells, "amount"))
            else:
                debit_raw = _cell_text(cell(cells, "debit"))
                credit_raw = _cell_text(cell(cells, "credit"))
                if not debit_raw and not credit_raw:
                    raise ValueError("both debit and credit are empty")
                debit = abs(_to_decimal(debit_raw)) if debit_raw else Decimal("0")
                credit = abs(_to_decimal(credit_raw)) if credit_raw else Decimal("0")
                amount = debit - credit
        except ValueError as e:
            raise ParseError(ParseErrorKind.MALFORMED_ROW, str(e), line=line) from e

        used = set(cols.values())
        metadata = {
            headers[i]: _cell_text(v)
            for i, v in enumerate(cells)
            if i not in used and i < len(headers) and headers[i] and _cell_text(v)
        }
        date = _date_of(cell(cells, "date"), date_fmt, line)
        parsed.append((line, date, description, amount, metadata))

    flip = False
    if "amount" in cols:
        if amount_sign == "outflow_negative":
            flip = True
        elif amount_sign == "auto":
            negatives = sum(1 for p in parsed if p[3] < 0)
            positives = sum(1 for p in parsed if p[3] > 0)
            flip = negatives > positives

    records = [
        RawRecord(
            date=date,
            description=description,
            amount=-amount if flip else amount,
            source_file=source_file,
            row=row,
            metadata=metadata,
        )
        for row, (_, date, description, amount, metadata) in enumerate(parsed, start=1)
    ]
    logger.info(
        "ingest:parsed source_file=%s kind=%s records=%d date_format=%s flipped_sign=%s",
        source_file,
        kind,
        len(records),
        date_fmt,
        flip,
    )
    return records


__all__ = ["SUPPORTED_KINDS", "ROLES", "detect_columns", "parse"]
