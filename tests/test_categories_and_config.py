from __future__ import annotations

import io
import json
import logging
from decimal import Decimal
from pathlib import Path

import pytest

from spend_insights.categories import (
    add_user_category,
    load_categories,
    normalize_name,
    validate_name,
)
from spend_insights.config import Settings
from spend_insights.errors import ConfigurationError
from spend_insights.logging_setup import get_logger, resolve_level
from spend_insights.models import CategoryKind, TransactionKind
from tests.helpers.category_config import CATEGORY_CONFIG


def _write(tmp_path: Path, data) -> Path:
    p = tmp_path / "categories.json"
    p.write_text(json.dumps(data), encoding="utf-8")
    return p


def test_load_categories(tmp_path: Path) -> None:
    rules = load_categories(_write(tmp_path, CATEGORY_CONFIG))
    assert rules.version == 0
    assert rules.names(TransactionKind.INCOME) == ["Salary", "Refunds"]
    # Fees and other non-income kinds compete among expense categories.
    assert rules.names(TransactionKind.FEE)[0] == "Groceries"
    groceries = rules.require("groceries")
    assert groceries.keywords == frozenset({"woolworths", "coles", "aldi"})
    assert groceries.color == "#4caf50"
    assert groceries.kind is CategoryKind.EXPENSE


@pytest.mark.parametrize(
    "data",
    [
        {"expenses": [{"name": "Groceries"}, {"name": "groceries"}]},
        {"expenses": [{"name": "Bad|Name"}]},
        {"expenses": [{"name": "Dining", "patterns": ["(unclosed"]}]},
        {"expenses": [{"name": "Dining", "color": "green"}]},
        {"expenses": [{"name": "Dining", "unexpected": 1}]},
        {"expenses": [], "income": []},
        ["not", "an", "object"],
    ],
)
def test_invalid_configuration_is_rejected(tmp_path: Path, data) -> None:
    with pytest.raises(ConfigurationError):
        load_categories(_write(tmp_path, data))


def test_missing_and_malformed_files(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_categories(tmp_path / "nope.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="not valid JSON"):
        load_categories(bad)


def test_name_validation() -> None:
    assert normalize_name("  Home   Improvement ") == "Home Improvement"
    assert validate_name("Kids & School").ok
    assert not validate_name("   ").ok
    assert not validate_name("x" * 65).ok
    assert validate_name("Pets!").reason is not None


def test_add_user_category_bumps_version(category_rules) -> None:
    rules = add_user_category(category_rules, "  Pet   Care ")
    assert rules.version == category_rules.version + 1
    pet = rules.require("pet care")
    assert pet.user_defined
    assert pet.name == "Pet Care"
    with pytest.raises(ConfigurationError, match="already exists"):
        add_user_category(rules, "PET CARE")
    with pytest.raises(ConfigurationError):
        add_user_category(rules, "")


def test_settings_from_env() -> None:
    s = Settings.from_env(
        {
            "SPEND_INSIGHTS_BATCH_SIZE": "10",
            "SPEND_INSIGHTS_CONFIDENCE_THRESHOLD": "0.8",
            "SPEND_INSIGHTS_CASH_WITHDRAWAL_THRESHOLD": "250",
            "SPEND_INSIGHTS_MULTI_VENDOR_MERCHANTS": "Costco, Amazon ,",
            "SPEND_INSIGHTS_MODEL": "gpt-test",
            "SPEND_INSIGHTS_TIMEOUT_S": " ",
        }
    )
    assert s.batch_size == 10
    assert s.confidence_threshold == 0.8
    assert s.cash_withdrawal_threshold == Decimal("250")
    assert s.multi_vendor_merchants == frozenset({"costco", "amazon"})
    assert s.model == "gpt-test"
    assert s.timeout_s == 30.0


def test_settings_defaults_and_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    assert Settings.from_env() == Settings()
    monkeypatch.setenv("SPEND_INSIGHTS_CONCURRENCY", "2")
    assert Settings.from_env().concurrency == 2


@pytest.mark.parametrize(
    "env",
    [
        {"SPEND_INSIGHTS_BATCH_SIZE": "many"},
        {"SPEND_INSIGHTS_BATCH_SIZE": "0"},
        {"SPEND_INSIGHTS_CONFIDENCE_THRESHOLD": "1.5"},
        {"SPEND_INSIGHTS_BAND_RATIO": "2"},
        {"SPEND_INSIGHTS_CASH_WITHDRAWAL_THRESHOLD": "lots"},
    ],
)
def test_invalid_settings(env) -> None:
    with pytest.raises(ConfigurationError):
        Settings.from_env(env)


def test_library_loggers_stay_quiet_until_configured() -> None:
    get_logger("spend_insights.test")
    pkg = logging.getLogger("spend_insights")
    assert pkg.handlers


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("debug", logging.DEBUG),
        (" WARNING ", logging.WARNING),
        ("15", 15),
        ("chatty", logging.INFO),
    ],
)
def test_resolve_level(value, expected) -> None:
    assert resolve_level(value) == expected


def test_resolve_level_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SPEND_INSIGHTS_LOG_LEVEL", "error")
    assert resolve_level() == logging.ERROR


@pytest.fixture()
def fresh_logging(monkeypatch: pytest.MonkeyPatch):
    import spend_insights.logging_setup as logging_setup

    names = ("spend_insights", *logging_setup.CLIENT_LOGGERS)
    saved = {n: (logging.getLogger(n).level, list(logging.getLogger(n).handlers)) for n in names}
    propagate = logging.getLogger("spend_insights").propagate
    monkeypatch.setattr(logging_setup, "_configured", False)
    yield logging_setup
    for n, (level, handlers) in saved.items():
        lg = logging.getLogger(n)
        lg.setLevel(level)
        lg.handlers[:] = handlers
    logging.getLogger("spend_insights").propagate = propagate


def test_configure_logging_quiets_http_clients(fresh_logging) -> None:
    stream = io.StringIO()
    assert fresh_logging.configure_logging("info", stream=stream) == logging.INFO
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("openai").level == logging.WARNING

    get_logger("spend_insights.test").info("test:event key=value")
    assert "spend_insights.test test:event key=value" in stream.getvalue()
    # Second call keeps the first configuration.
    assert fresh_logging.configure_logging("debug", stream=io.StringIO()) == logging.INFO


def test_debug_logging_lets_http_clients_through(fresh_logging) -> None:
    fresh_logging.configure_logging(logging.DEBUG, stream=io.StringIO())
    assert logging.getLogger("httpcore").level == logging.DEBUG
