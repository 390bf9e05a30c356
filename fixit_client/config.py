from pydantic import Field
from pydantic_settings import BaseSettings

VERSION = "1.0.0"


class Settings(BaseSettings):
    """FixIT client configuration settings

    These settings can be configured via environment variables
    or .envrc files (loaded automatically by direnv).
    """

    service_name: str = "FixIT Client"
    service_version: str = VERSION

    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Service URLs
    api_url: str = Field(default="http://localhost:5000", alias="FIXIT_API_URL")
    realtime_url: str = Field(
        default="ws://localhost:5000/ws", alias="FIXIT_REALTIME_URL"
    )

    # REST calls fail instead of hanging past this many seconds
    request_timeout: float = Field(default=10.0, alias="FIXIT_REQUEST_TIMEOUT")

    # Sentry configuration
    sentry_dsn: str | None = Field(default=None, alias="FIXIT_CLIENT_SENTRY_DSN")

    model_config = {
        "env_file": ".envrc",
        "case_sensitive": False,
        "extra": "ignore",  # Ignore extra environment variables
    }

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Convert string environment variables to boolean for flags
        if isinstance(self.debug, str):
            self.debug = self.debug == "1"


# Global settings instance
settings = Settings()
