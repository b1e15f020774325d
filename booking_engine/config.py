from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./bookings.db"
    # Create missing tables on startup. Turn off when migrations own the schema.
    AUTO_CREATE_TABLES: bool = True

    # This service only VERIFIES tokens, it never issues them
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    REDIS_URL: str = "redis://localhost:6379/0"

    # --- KAFKA SETTINGS (change-event relay) ---
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_BOOKING_TOPIC: str = "booking_changes"
    OUTBOX_POLL_INTERVAL_SECONDS: int = 5

    # --- RECONCILIATION ENGINE ---
    WRITE_MAX_ATTEMPTS: int = 3
    COLUMN_LOOKUP_FALLBACK_ON_NETWORK_ERROR: bool = False
    RECONCILE_POLL_INTERVAL_SECONDS: int = 30
    RECONCILE_MAX_ATTEMPTS: int = 5
    RECONCILE_BATCH_SIZE: int = 50

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
