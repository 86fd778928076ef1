"""
Configuration Management for Expense Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every threshold the categorization and query code depends on
(deadline, confidence cut-offs, page sizes) lives in AppSettings
so it can be tuned without touching the algorithms.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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
    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Name of the sheet for expense records"
    )
    merchant_mappings_sheet_name: str = Field(
        default="MerchantMappings",
        description="Name of the sheet for merchant to category overrides"
    )
    categories_sheet_name: str = Field(
        default="Categories",
        description="Name of the sheet for the category catalogue"
    )
    profiles_sheet_name: str = Field(
        default="Profiles",
        description="Name of the sheet for user profiles"
    )
    ai_logs_sheet_name: str = Field(
        default="AiLogs",
        description="Name of the sheet for categorization provider calls"
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
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=256,
        ge=64,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
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

    # Categorization
    categorization_deadline_ms: int = Field(
        default=400,
        ge=1,
        le=10000,
        description="How long the AI provider may take before we give up"
    )
    auto_apply_confidence: float = Field(
        default=0.75,
        ge=0.0,
        le=1.0,
        description="Minimum provider confidence to apply a category automatically"
    )
    fuzzy_match_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Minimum similarity for a fuzzy merchant mapping match"
    )
    max_suggestions: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many ranked suggestions are returned to the caller"
    )

    # Listing
    default_page_size: int = Field(
        default=50,
        ge=1,
        le=50,
        description="Page size used when the caller does not ask for one"
    )
    max_page_size: int = Field(
        default=50,
        ge=1,
        le=50,
        description="Largest page size a caller may request"
    )
    max_list_category_filters: int = Field(
        default=20,
        ge=1,
        description="Maximum number of category ids in an expense list filter"
    )
    max_dashboard_category_filters: int = Field(
        default=50,
        ge=1,
        description="Maximum number of category ids in a dashboard filter"
    )
    default_mapping_page_size: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Page size for the merchant mapping list when none is given"
    )
    max_mapping_page_size: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Largest page size for the merchant mapping list"
    )

    # Lifecycle
    restore_retention_days: int = Field(
        default=7,
        ge=1,
        description="How long a soft-deleted expense can still be restored"
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

    # Load all sub-settings
    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

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

    try:
        _ = settings.google_sheets
        results["google_sheets"] = True
    except Exception as e:
        results["google_sheets"] = False
        results["google_sheets_error"] = str(e)

    try:
        _ = settings.gemini
        results["gemini"] = True
    except Exception as e:
        results["gemini"] = False
        results["gemini_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
