"""
Application Settings
====================
Loads configuration from environment variables / .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Google Gemini ─────────────────────────────────────
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_FALLBACK_MODEL: str = "gemini-2.5-pro"  # empty disables escalation
    GEMINI_TEMPERATURE: float = 0.0

    # ── Snowflake ─────────────────────────────────────────
    SNOWFLAKE_ACCOUNT: str = ""
    SNOWFLAKE_USER: str = ""
    SNOWFLAKE_PASSWORD: str = ""
    SNOWFLAKE_DATABASE: str = "CARBON_MRV"
    SNOWFLAKE_SCHEMA: str = "PUBLIC"
    SNOWFLAKE_WAREHOUSE: str = "COMPUTE_WH"

    # ── Logging ───────────────────────────────────────────
    LOG_LEVEL: str = "INFO"

    # ── Extraction ────────────────────────────────────────
    EXTRACTION_MIN_CONFIDENCE: float = 60.0
    MAX_UPLOAD_MB: int = 10

    # ── Verification ──────────────────────────────────────
    VERIFIED_SCORE_THRESHOLD: float = 0.8

    # ── Monetization ──────────────────────────────────────
    CARBON_CREDIT_RATE: float = 750.0  # per tonne CO2e
    GREEN_LOAN_PRINCIPAL: float = 500000.0
    GREEN_LOAN_RATE_REDUCTION_PCT: float = 0.5
    MONETIZATION_CURRENCY: str = "INR"


settings = Settings()
