"""Runtime settings for the categorization pipeline.

Defaults mirror the documented service contract (30 s timeout, 3 attempts,
batches of 50). ``Settings.from_env`` reads ``SPEND_INSIGHTS_*`` overrides;
entrypoints load ``.env`` (python-dotenv) before calling it.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation

from .errors import ConfigurationError
from .models import merchant_key

_ENV_PREFIX = "SPEND_INSIGHTS_"


@dataclass(frozen=True, slots=True)
class Settings:
    """Tunables for filtering, grouping and categorization.

    Attributes
    ----------
    batch_size:
        Unresolved groups per external request.
    max_attempts:
        Total attempts per batch (first call plus retries).
    timeout_s:
        Per-request timeout passed to the external client.
    concurrency:
        Maximum batches in flight.
    backoff_schedule_s / jitter_pct:
        Sleep before retry ``n`` is ``schedule[n-1]`` (last entry repeats)
        with +/- ``jitter_pct`` random jitter.
    confidence_threshold:
        Results below this confidence are surfaced for user confirmation.
    cash_withdrawal_threshold:
        Cash withdrawals above this amount are flagged for review.
    band_ratio:
        Amount band width as a fraction of the amount's decade base.
    multi_vendor_merchants:
        Merchant keys (casefolded) allowed to carry percentage splits.
    user_preferences:
        Free text forwarded to the external service as context.
    """

    batch_size: int = 50
    max_attempts: int = 3
    timeout_s: float = 30.0
    concurrency: int = 4
    backoff_schedule_s: tuple[float, ...] = (0.5, 2.0)
    jitter_pct: float = 0.20
    confidence_threshold: float = 0.7
    cash_withdrawal_threshold: Decimal = Decimal("100")
    band_ratio: Decimal = Decimal("0.5")
    model: str = "gpt-5"
    multi_vendor_merchants: frozenset[str] = field(default_factory=frozenset)
    user_preferences: str = ""

    def __post_init__(self) -> None:
        for name in ("batch_size", "max_attempts", "concurrency"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, int) or val <= 0:
                raise ConfigurationError(f"Settings.{name} must be a positive integer")
        if self.timeout_s <= 0:
            raise ConfigurationError("Settings.timeout_s must be positive")
        if not self.backoff_schedule_s or any(s < 0 for s in self.backoff_schedule_s):
            raise ConfigurationError("Settings.backoff_schedule_s must be non-empty and >= 0")
        if not 0.0 <= self.jitter_pct < 1.0:
            raise ConfigurationError("Settings.jitter_pct must be within [0, 1)")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError("Settings.confidence_threshold must be within [0, 1]")
        if self.cash_withdrawal_threshold < 0:
            raise ConfigurationError("Settings.cash_withdrawal_threshold must be >= 0")
        if not Decimal("0") < self.band_ratio <= Decimal("1"):
            raise ConfigurationError("Settings.band_ratio must be within (0, 1]")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``SPEND_INSIGHTS_*`` variables over the defaults."""

        source = os.environ if env is None else env
        base = cls()
        overrides: dict[str, object] = {}

        def _get(key: str) -> str | None:
            raw = source.get(_ENV_PREFIX + key)
            if raw is None or not raw.strip():
                return None
            return raw.strip()

        for key, attr in (
            ("BATCH_SIZE", "batch_size"),
            ("MAX_ATTEMPTS", "max_attempts"),
            ("CONCURRENCY", "concurrency"),
        ):
            raw = _get(key)
            if raw is not None:
                try:
                    overrides[attr] = int(raw)
                except ValueError as e:
                    raise ConfigurationError(f"{_ENV_PREFIX}{key} must be an integer") from e

        for key, attr in (
            ("TIMEOUT_S", "timeout_s"),
            ("CONFIDENCE_THRESHOLD", "confidence_threshold"),
        ):
            raw = _get(key)
            if raw is not None:
                try:
                    overrides[attr] = float(raw)
                except ValueError as e:
                    raise ConfigurationError(f"{_ENV_PREFIX}{key} must be a number") from e

        for key, attr in (
            ("CASH_WITHDRAWAL_THRESHOLD", "cash_withdrawal_threshold"),
            ("BAND_RATIO", "band_ratio"),
        ):
            raw = _get(key)
            if raw is not None:
                try:
                    overrides[attr] = Decimal(raw)
                except InvalidOperation as e:
                    raise ConfigurationError(f"{_ENV_PREFIX}{key} must be a decimal") from e

        model = _get("MODEL")
        if model is not None:
            overrides["model"] = model
        prefs = _get("USER_PREFERENCES")
        if prefs is not None:
            overrides["user_preferences"] = prefs
        vendors = _get("MULTI_VENDOR_MERCHANTS")
        if vendors is not None:
            overrides["multi_vendor_merchants"] = frozenset(
                merchant_key(v) for v in vendors.split(",") if v.strip()
            )

        return replace(base, **overrides) if overrides else base


__all__ = ["Settings"]
