"""Error taxonomy for ``spend_insights``.

Every error raised deliberately by the pipeline derives from
:class:`SpendInsightsError`. The concrete classes also inherit from the
closest builtin (``ValueError`` / ``RuntimeError``) so callers that already
catch those keep working.

- ``ParseError``: malformed or unsupported input. Halts processing of that
  file only.
- ``ConfigurationError``: invalid rule sets or parameters (e.g. non-positive
  ``period_months``). The operation is rejected with no partial result.
- ``ValidationError``: a user-supplied value violates an invariant (e.g.
  allocation percentages not summing to 100). Carries the mismatch.
- ``ExternalServiceError``: timeout/transport/quota failures of the external
  categorization service. Retried per policy, then degraded.
"""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum


class SpendInsightsError(Exception):
    """Base class for all package errors."""


class ParseErrorKind(StrEnum):
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    MALFORMED_ROW = "MalformedRow"
    MISSING_REQUIRED_COLUMN = "MissingRequiredColumn"


class ParseError(SpendInsightsError, ValueError):
    """Input file could not be turned into raw records.

    ``line`` is the 1-based physical line (CSV) or sheet row (XLSX) for
    ``MalformedRow`` errors and ``None`` otherwise.
    """

    def __init__(self, kind: ParseErrorKind, message: str, *, line: int | None = None) -> None:
        self.kind = kind
        self.line = line
        where = f" (line {line})" if line is not None else ""
        super().__init__(f"{kind}: {message}{where}")


class AmbiguousColumnsError(ParseError):
    """Column detection found more than one candidate for a required role.

    ``candidates`` maps a role (``date``/``description``/``amount``) to the
    header names that could fill it. Callers resolve it by passing an explicit
    ``column_map`` to :func:`spend_insights.ingest.parse`.
    """

    def __init__(self, candidates: dict[str, list[str]]) -> None:
        self.candidates = candidates
        roles = ", ".join(f"{role}={names}" for role, names in sorted(candidates.items()))
        super().__init__(
            ParseErrorKind.MISSING_REQUIRED_COLUMN,
            f"ambiguous column detection, confirm one of: {roles}",
        )


class ConfigurationError(SpendInsightsError, ValueError):
    """Invalid configuration or parameter; the operation is rejected."""


class ValidationError(SpendInsightsError, ValueError):
    """A user-supplied value violates an invariant.

    ``mismatch`` holds the signed difference from the expected value when one
    applies (e.g. ``sum(percentages) - 100``).
    """

    def __init__(self, message: str, *, mismatch: Decimal | None = None) -> None:
        self.mismatch = mismatch
        super().__init__(message)


class ExternalServiceError(SpendInsightsError, RuntimeError):
    """Failure talking to the external categorization service."""

    def __init__(self, message: str, *, retryable: bool) -> None:
        self.retryable = retryable
        super().__init__(message)


__all__ = [
    "SpendInsightsError",
    "ParseErrorKind",
    "ParseError",
    "AmbiguousColumnsError",
    "ConfigurationError",
    "ValidationError",
    "ExternalServiceError",
]
