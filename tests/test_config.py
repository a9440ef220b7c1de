"""Tests for configuration management."""

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from polymarket_copy_trader.config import (
    CTF_EXCHANGE_ADDRESS,
    NEG_RISK_CTF_EXCHANGE_ADDRESS,
    CopyTradeSettings,
    DatabaseSettings,
    ExchangeSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run each test away from any local .env file."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "DATABASE_URL",
        "REDIS_URL",
        "EXCHANGE_CONTRACT_ADDRESSES",
        "COPY_TRADE_MULTIPLIER",
        "DRY_RUN",
        "LOG_LEVEL",
        "POLYMARKET_CLOB_PRIVATE_KEY",
        "POLYMARKET_CLOB_API_KEY",
        "POLYMARKET_CLOB_API_SECRET",
        "POLYMARKET_CLOB_API_PASSPHRASE",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()


class TestDefaults:
    """Tests for default settings."""

    def test_defaults(self) -> None:
        settings = Settings()

        assert settings.database.url.startswith("sqlite+aiosqlite://")
        assert settings.redis.url is None
        assert settings.exchange.contract_addresses == (
            CTF_EXCHANGE_ADDRESS,
            NEG_RISK_CTF_EXCHANGE_ADDRESS,
        )
        assert settings.copy_trade.top_traders_count == 10
        assert settings.copy_trade.min_profit_threshold == 1000.0
        assert settings.copy_trade.multiplier == 0.1
        assert settings.copy_trade.queue_full_policy == "block"
        assert settings.dry_run is False

    def test_logging_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        assert Settings().get_logging_level() == logging.DEBUG

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()


class TestValidation:
    """Tests for field validation."""

    def test_contract_addresses_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(
            "EXCHANGE_CONTRACT_ADDRESSES",
            f" {CTF_EXCHANGE_ADDRESS} ,{NEG_RISK_CTF_EXCHANGE_ADDRESS},",
        )
        assert ExchangeSettings().contract_addresses == (
            CTF_EXCHANGE_ADDRESS,
            NEG_RISK_CTF_EXCHANGE_ADDRESS,
        )

    def test_invalid_contract_address(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EXCHANGE_CONTRACT_ADDRESSES", "0x1234")
        with pytest.raises(ValidationError):
            ExchangeSettings()

    @pytest.mark.parametrize("value", ["0", "-0.5", "1.5"])
    def test_multiplier_out_of_range(self, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
        monkeypatch.setenv("COPY_TRADE_MULTIPLIER", value)
        with pytest.raises(ValidationError):
            CopyTradeSettings()

    def test_multiplier_upper_bound_inclusive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COPY_TRADE_MULTIPLIER", "1")
        assert CopyTradeSettings().multiplier == 1.0

    def test_invalid_database_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "mysql://localhost/db")
        with pytest.raises(ValidationError):
            DatabaseSettings()

    def test_env_file_is_read(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("COPY_TRADE_MULTIPLIER=0.25\nDRY_RUN=true\n")

        settings = Settings()

        assert settings.copy_trade.multiplier == 0.25
        assert settings.dry_run is True


class TestRequirements:
    """Tests for command-specific requirements."""

    def test_live_run_requires_credentials(self) -> None:
        with pytest.raises(ValueError, match="PRIVATE_KEY"):
            Settings().validate_requirements(command="run")

    def test_live_run_requires_api_creds(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POLYMARKET_CLOB_PRIVATE_KEY", "0x" + "1" * 64)
        with pytest.raises(ValueError, match="API_KEY"):
            Settings().validate_requirements(command="run")

    def test_dry_run_needs_no_credentials(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DRY_RUN", "true")
        Settings().validate_requirements(command="run")

    def test_init_db_needs_no_credentials(self) -> None:
        Settings().validate_requirements(command="init-db")


class TestRedaction:
    """Tests for redacted_summary."""

    def test_secrets_redacted(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://user:hunter2@db:5432/ledger")
        monkeypatch.setenv("POLYMARKET_CLOB_PRIVATE_KEY", "0x" + "ab" * 32)

        summary = Settings().redacted_summary()

        assert summary["database_url"] == "postgresql+asyncpg://user:***@db:5432/ledger"
        assert "hunter2" not in str(summary)
        assert "ab" * 32 not in str(summary)
