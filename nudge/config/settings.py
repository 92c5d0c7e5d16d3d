import os
from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STRAVA_API_BASE = "https://www.strava.com/api/v3"
STRAVA_AUTH_BASE = "https://www.strava.com/oauth"


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues."""
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        return db_url

    db_path = Path(__file__).parent.parent.parent / "nudge.db"
    db_url = f"sqlite:///{db_path.resolve()}"
    logger.info(f"Using default database path: {db_url}")
    return db_url


def get_session_file() -> str:
    return str(Path.home() / ".nudge" / "session.json")


@dataclass(frozen=True)
class StravaConfig:
    """Client credentials and endpoints for the Strava API.

    Passed explicitly to the client and the token manager so neither reads
    process state at call time.
    """

    client_id: str
    client_secret: str
    redirect_uri: str = "http://localhost:5173/callback"
    api_base: str = STRAVA_API_BASE
    auth_base: str = STRAVA_AUTH_BASE
    timeout: float = 15.0


class Settings(BaseSettings):
    strava_client_id: str = Field(default="", validation_alias="STRAVA_CLIENT_ID")
    strava_client_secret: str = Field(default="", validation_alias="STRAVA_CLIENT_SECRET")
    strava_redirect_uri: str = Field(
        default="http://localhost:5173/callback",
        validation_alias="STRAVA_REDIRECT_URI",
    )
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str = Field(default="", validation_alias="NUDGE_LOG_FILE")
    log_rotation: str = Field(default="10 MB", validation_alias="NUDGE_LOG_ROTATION")
    log_retention: str = Field(default="7 days", validation_alias="NUDGE_LOG_RETENTION")
    session_file: str = Field(default_factory=get_session_file, validation_alias="NUDGE_SESSION_FILE")
    encryption_key: str = Field(default="", validation_alias="ENCRYPTION_KEY")
    sync_max_age_hours: float = Field(default=24, validation_alias="SYNC_MAX_AGE_HOURS")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("strava_client_id", "strava_client_secret")
    @classmethod
    def validate_required(cls, value: str) -> str:
        """Warn when Strava credentials are missing.

        Empty values are allowed so the store and PR commands keep working
        offline; token exchange and refresh will fail until they are set.
        """
        if not value:
            logger.warning(
                "STRAVA_CLIENT_ID and/or STRAVA_CLIENT_SECRET are not set. "
                "Token exchange and refresh will not work. "
                "Set them in .env file or environment variables."
            )
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    def strava_config(self) -> StravaConfig:
        return StravaConfig(
            client_id=self.strava_client_id,
            client_secret=self.strava_client_secret,
            redirect_uri=self.strava_redirect_uri,
        )


settings = Settings()
