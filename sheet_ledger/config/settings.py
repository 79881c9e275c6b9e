"""
Configuration Management for Sheet Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Sheet names, cache windows and fallback constants are the values most
likely to differ between personal spreadsheets, so none of them are
hardcoded in the ledger or rate modules.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the ledger spreadsheet"
    )

    # Sheet names within the spreadsheet
    balance_sheet_name: str = Field(
        default="5. 계좌내역(누적)",
        description="Sheet holding month-end account balances"
    )
    deposit_sheet_name: str = Field(
        default="6. 입금내역",
        description="Sheet holding deposit/withdrawal log"
    )
    dividend_sheet_name: str = Field(
        default="7. 배당내역",
        description="Sheet holding dividend receipts"
    )
    holding_sheet_name: str = Field(
        default="3. 종목현황",
        description="Sheet holding portfolio positions"
    )
    index_sheet_name: str = Field(
        default="1. 계좌현황(누적)",
        description="Sheet holding the monthly index comparison block"
    )
    index_block_range: str = Field(
        default="G17:AB200",
        description="A1 range of the index comparison block"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class ExchangeRateSettings(BaseSettings):
    """USD/KRW exchange rate resolution configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EXCHANGE_RATE_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Korea Exim Bank open API key (provider tier disabled if unset)"
    )
    primary_url: str = Field(
        default="https://oapi.koreaexim.go.kr/site/program/financial/exchangeJSON",
        description="Primary provider endpoint"
    )
    legacy_url: str = Field(
        default="https://www.koreaexim.go.kr/site/program/financial/exchangeJSON",
        description="Legacy provider endpoint, tried after the primary one"
    )
    currency_code: str = Field(
        default="USD",
        description="Currency unit to pick from the provider response"
    )
    lookback_business_days: int = Field(
        default=5,
        ge=1,
        le=15,
        description="How many recent business days to query before giving up"
    )
    provider_refresh_hour: int = Field(
        default=11,
        ge=0,
        le=23,
        description="Local hour after which the provider publishes today's rate"
    )
    timezone: str = Field(
        default="Asia/Seoul",
        description="Timezone the provider refresh hour is expressed in"
    )
    current_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Freshness window of the current rate (memory and store tiers)"
    )
    historical_ttl_seconds: int = Field(
        default=86400,
        ge=1,
        description="Freshness window of the historical rate table"
    )
    fallback_rate: float = Field(
        default=1350.0,
        gt=0,
        description="Static rate used when every other tier fails"
    )
    historical_sheet_id: str = Field(
        default="1mhRnA1oB2OizL-jRtbBV-b2evYVJooMaVGyWIgQeBMM",
        description="Public spreadsheet holding the monthly historical rate table"
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single provider request"
    )

    @property
    def historical_csv_url(self) -> str:
        """CSV export URL of the historical rate spreadsheet."""
        return (
            f"https://docs.google.com/spreadsheets/d/{self.historical_sheet_id}"
            "/export?format=csv"
        )


class LedgerSettings(BaseSettings):
    """Ledger behaviour configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    owner_id: str = Field(
        default="local",
        description="Owner identifier used as the mirror partition key"
    )
    default_dividend_rate: float = Field(
        default=1400.0,
        gt=0,
        description="Rate used to convert USD dividends when no period rate is known"
    )
    balance_min_start_row: int = Field(
        default=45,
        ge=2,
        description="First sheet row for balances when the sheet has no valid row yet"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level for the structured logger"
    )
    standalone_mode: bool = Field(
        default=False,
        description="Serve every operation from the mirror without a spreadsheet"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def exchange_rate(self) -> ExchangeRateSettings:
        return ExchangeRateSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    "<name>_error" entry for each group that failed to load.
    """
    results = {}
    settings = get_settings()

    for name in ("google_sheets", "exchange_rate", "ledger", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
