from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Local run ledger (dedup runs + merge operations)
    DATABASE_URL: str = "sqlite:///seawatch.db"
    DEDUP_CONFIG: str = "config/dedup.yaml"
    LOG_LEVEL: str = "INFO"
    # Airtable-style record store
    AIRTABLE_API_KEY: str | None = None
    AIRTABLE_BASE_ID: str | None = None
    AIRTABLE_API_URL: str = "https://api.airtable.com/v0"
    AIRTABLE_RAW_DATA_TABLE: str = "raw_data"
    AIRTABLE_INCIDENT_TYPE_TABLE: str = "incident_type"
    AIRTABLE_TIMEOUT: float = 30.0
    AIRTABLE_PAGE_SIZE: int = 100
    # Downstream re-scan job, signalled after every non-dry run
    PUBLIC_URL: str | None = None
    DOWNSTREAM_TRIGGER_PATH: str = "/.netlify/functions/process-raw-data-background"
    DOWNSTREAM_REFRESH_VIEW: str = "Process"
    # Run defaults (overridable per run)
    DEDUP_CONFIDENCE_THRESHOLD: float = 0.7
    DEDUP_MAX_RECORDS: int = 100
    DEDUP_LOOKBACK_DAYS: int = 30
    # Max in-flight pair scorings during the fan-out phase
    DEDUP_SCORE_CONCURRENCY: int = 8
    # API authentication (if unset, all requests pass, local dev)
    SEAWATCH_API_KEY: str | None = None
    # CORS origins (comma-separated string for env var support)
    CORS_ORIGINS: str = "http://localhost:5173"


settings = Settings()
