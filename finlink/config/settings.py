"""
Configuration Management for finlink

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Settings are built once per process (see get_settings) and handed to the
engines through their constructors. No engine reaches for a global client
or credential on its own.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlaidSettings(BaseSettings):
    """Plaid aggregator configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PLAID_",
        extra="ignore"
    )

    client_id: str = Field(
        ...,
        description="Plaid client ID"
    )
    secret: str = Field(
        ...,
        description="Plaid secret for the selected environment"
    )
    environment: str = Field(
        default="sandbox",
        description="Plaid environment: sandbox or production"
    )
    client_name: str = Field(
        default="finlink",
        description="Name shown to the user inside Plaid Link"
    )
    products: str = Field(
        default="transactions",
        description="Comma-separated list of Plaid products"
    )
    country_codes: str = Field(
        default="US",
        description="Comma-separated list of country codes"
    )
    language: str = Field(
        default="en",
        description="Plaid Link language"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("sandbox", "production"):
            raise ValueError("PLAID_ENVIRONMENT must be 'sandbox' or 'production'")
        return v

    @property
    def products_list(self) -> list[str]:
        return [p.strip().lower() for p in self.products.split(",") if p.strip()]

    @property
    def country_codes_list(self) -> list[str]:
        return [c.strip().upper() for c in self.country_codes.split(",") if c.strip()]


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model used for text prompts"
    )
    vision_model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model used for receipt images"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

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
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    accounts_sheet_name: str = Field(
        default="LinkedAccounts",
        description="Sheet holding one row per linked account"
    )
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Sheet holding normalized transactions"
    )
    receipts_sheet_name: str = Field(
        default="Receipts",
        description="Sheet holding extracted receipts"
    )
    insights_sheet_name: str = Field(
        default="Insights",
        description="Sheet holding the latest AI insights per user"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator("credentials_path")
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


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Every field has a default so the engines can run without any
    external service configured.
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
        description="Minimum level for structured logs"
    )

    # Sync
    sync_page_size: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Transactions requested per sync page"
    )
    sync_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Upper bound for one account's sync attempt"
    )

    # Matching window
    match_date_tolerance_days: int = Field(
        default=2,
        ge=0,
        description="Days either side of the receipt date a transaction may fall"
    )
    match_amount_tolerance: float = Field(
        default=0.05,
        ge=0.0,
        lt=1.0,
        description="Relative amount tolerance between receipt total and transaction"
    )

    # Queries and insights
    recent_transactions_limit: int = Field(
        default=5,
        ge=1,
        description="Default number of transactions listed by queries"
    )
    insights_lookback_days: int = Field(
        default=30,
        ge=1,
        description="Days of history fed into insight generation"
    )
    insights_max_transactions: int = Field(
        default=200,
        ge=1,
        description="Maximum transactions fed into insight generation"
    )
    default_currency: str = Field(
        default="USD",
        description="Currency assumed when a record carries none"
    )

    # Receipt uploads
    max_receipt_image_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum receipt image size in MB"
    )

    @property
    def max_receipt_image_bytes(self) -> int:
        """Get max receipt image size in bytes."""
        return self.max_receipt_image_mb * 1024 * 1024


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
    def plaid(self) -> PlaidSettings:
        return PlaidSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("plaid", "gemini", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
