# app/config.py
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # App
    APP_ENV: Literal["dev", "prod", "staging"] = "dev"
    TZ: str = "Europe/London"

    # Junction offers API (train + flight searches, places)
    JUNCTION_API_KEY: str = ""
    JUNCTION_BASE_URL: str = "https://content-api.sandbox.junction.dev"

    # Offer polling
    POLL_MAX_ATTEMPTS: int = 10
    POLL_INTERVAL_SECONDS: float = 2.0

    # HTTP timeouts (seconds)
    HTTP_CONNECT_TIMEOUT: float = 3.0
    HTTP_READ_TIMEOUT: float = 12.0

    # Search defaults sent upstream
    DEPARTURE_TIME: str = "T10:00:00Z"  # appended to the YYYY-MM-DD date
    PASSENGER_DOB: str = "1995-01-01"

    # read .env and ignore any extra keys so this doesn't break again
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
