from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    FUEL_FINDER_API_URL: str = "https://api.fuelprices.gov.uk"
    FUEL_FINDER_TOKEN_URL: str = ""  # defaults to <api url>/oauth/token
    FUEL_FINDER_CLIENT_ID: str = ""
    FUEL_FINDER_CLIENT_SECRET: str = ""
    FUEL_FINDER_SCOPE: str = "fuelfinder.read"

    POSTCODES_API_URL: str = "https://api.postcodes.io"
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"

    # seconds, per upstream
    FUEL_FINDER_TIMEOUT: float = 15
    TOKEN_TIMEOUT: float = 15
    POSTCODES_TIMEOUT: float = 10
    EXPO_PUSH_TIMEOUT: float = 10

    RETRY_MAX_ATTEMPTS: int = 4
    RETRY_BASE_DELAY: float = 1.0
    TOKEN_REFRESH_BUFFER_SECONDS: int = 300

    DB_URL: str = "sqlite+aiosqlite:///./fuel.db"

    SYNC_PRICES_SECONDS: int = 900
    ALERT_RUN_SECONDS: int = 3600
    RUN_SCHEDULERS: bool = True

    ALERT_DAILY_CAP: int = 2
    ALERT_COOLDOWN_HOURS: int = 24
    SEARCH_RESULT_LIMIT: int = 10
    INGESTION_CONCURRENCY: int = 1  # parallel station upserts; keep 1 on sqlite

    LOG_LEVEL: str = "INFO"

    @property
    def token_url(self) -> str:
        if self.FUEL_FINDER_TOKEN_URL:
            return self.FUEL_FINDER_TOKEN_URL
        return f"{self.FUEL_FINDER_API_URL.rstrip('/')}/oauth/token"

    class Config:
        env_file = ".env"

settings = Settings()
