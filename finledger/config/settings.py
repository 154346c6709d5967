"""
Configuration Management for finledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Ledger policies (rounding, adjustment labels) live next to the storage
settings so the whole behaviour of a deployment is visible in one place.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets record store configuration."""
    
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
    
    # One worksheet per record table
    expenses_sheet_name: str = Field(default="Expenses")
    incomes_sheet_name: str = Field(default="Incomes")
    services_sheet_name: str = Field(default="RecurringServices")
    payments_sheet_name: str = Field(default="ServicePayments")
    categories_sheet_name: str = Field(default="Categories")
    preferences_sheet_name: str = Field(default="Preferences")
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


class LedgerSettings(BaseSettings):
    """
    Ledger policies.
    
    These change numbers the user sees, so they are explicit settings
    rather than constants buried in the engine.
    """
    
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )
    
    installment_rounding: Literal["remainder_to_last", "independent"] = Field(
        default="remainder_to_last",
        description=(
            "How per-installment rounding drift is handled. "
            "'remainder_to_last' makes installments sum exactly to the total; "
            "'independent' rounds each installment on its own."
        )
    )
    max_installments: int = Field(
        default=120,
        ge=1,
        le=600,
        description="Largest installment count accepted for a purchase"
    )
    max_expense_amount: float = Field(
        default=100_000_000.0,
        description="Amounts above this are flagged as suspicious (warning only)"
    )
    adjustment_description: str = Field(
        default="Unregistered spending adjustment",
        description="Description of the expense created when closing a month as spent"
    )
    comparison_months: int = Field(
        default=6,
        ge=1,
        le=24,
        description="Months shown in the income vs expenses comparison"
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
    storage_backend: Literal["memory", "google_sheets"] = Field(
        default="memory",
        description="Which record store backs the ledger"
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
    
    # Sub-settings are loaded lazily to allow partial configuration
    
    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()
    
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
    
    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    
    settings = get_settings()
    
    sections = {
        "google_sheets": lambda: settings.google_sheets,
        "ledger": lambda: settings.ledger,
        "app": lambda: settings.app,
    }
    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)
    
    return results
