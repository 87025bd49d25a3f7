"""Pytest configuration for test isolation.

``Settings.from_env`` and ``configure_logging`` read ``SPEND_INSIGHTS_*``
variables, and a developer's shell (or a ``.env`` loaded by an earlier CLI
test) may carry real values. An autouse fixture clears them for every test so
results never depend on the environment the suite runs in.
"""

from __future__ import annotations

import os
import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Make sure the workspace `packages/` dir (and the repo root, for `tests.helpers`)
# are importable without an editable install.
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from spend_insights.categories import categories_from_mapping  # noqa: E402
from spend_insights.config import Settings  # noqa: E402
from spend_insights.rules import CategoryRuleSet  # noqa: E402

from tests.helpers.category_config import CATEGORY_CONFIG  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop ``SPEND_INSIGHTS_*`` and ``OPENAI_API_KEY`` from the test environment."""

    for key in list(os.environ):
        if key.startswith("SPEND_INSIGHTS_") or key == "OPENAI_API_KEY":
            monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def category_rules() -> CategoryRuleSet:
    return categories_from_mapping(CATEGORY_CONFIG)


@pytest.fixture()
def fast_settings() -> Settings:
    """Default settings without real backoff sleeps."""

    return Settings(
        backoff_schedule_s=(0.0,),
        jitter_pct=0.0,
        multi_vendor_merchants=frozenset({"costco", "amazon"}),
        cash_withdrawal_threshold=Decimal("100"),
    )
