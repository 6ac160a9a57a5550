"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Pipeline trigger secrets (one per function, empty = function disabled)
    PUNCTUALITY_MONITOR_SECRET: str = ""
    PUNCTUALITY_SCHEDULER_SECRET: str = ""
    PUNCTUALITY_PUSH_DISPATCHER_SECRET: str = ""
    PUNCTUALITY_WHATSAPP_DISPATCHER_SECRET: str = ""
    PUNCTUALITY_RETENTION_SECRET: str = ""

    # ETA provider: google | mapbox | osrm | none
    PUNCTUALITY_ETA_PROVIDER: str = "none"
    PUNCTUALITY_ETA_TIMEOUT_MS: int = 4500
    PUNCTUALITY_ETA_RETRY_MAX: int = 2
    GOOGLE_MAPS_API_KEY: str = ""
    MAPBOX_ACCESS_TOKEN: str = ""
    OSRM_BASE_URL: str = "https://router.project-osrm.org"

    # Monitor
    PUNCTUALITY_NOTIFICATION_DEDUP_MINUTES: int = 10
    PUNCTUALITY_MONITOR_MAX_BATCH: int = 400
    PUNCTUALITY_SCHEDULER_SCAN_LIMIT: int = 5000

    # Push dispatch: expo | none (none = simulated delivery)
    PUSH_PROVIDER: str = "none"
    EXPO_ACCESS_TOKEN: str = ""
    PUSH_TIMEOUT_SECONDS: float = 10.0

    # WhatsApp dispatch: meta | none (none = simulated delivery)
    WHATSAPP_DISPATCH_PROVIDER: str = "none"
    WHATSAPP_ACCESS_TOKEN: str = ""
    WHATSAPP_API_VERSION: str = "v22.0"
    WHATSAPP_PHONE_NUMBER_ID: str = ""  # Default sending number
    WHATSAPP_TIMEOUT_SECONDS: float = 10.0
    WHATSAPP_MESSAGE_TIMEZONE: str = "America/Sao_Paulo"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
