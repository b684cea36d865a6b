from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # School API settings
    API_BASE_URL: str = "https://ajws-school-ba8ae5e3f955.herokuapp.com"
    WS_URL: str | None = None

    # HTTP client settings
    REQUEST_TIMEOUT: float = 30.0
    API_MAX_RETRIES: int = 3
    API_RETRY_BACKOFF: float = 0.5

    # Chat display settings
    DISPLAY_TIMEZONE: str = "UTC"
    PRINCIPAL_CHATS_PAGE_SIZE: int = 50
    CHAT_SESSION_IDLE_TTL: float = 1800.0

    # Realtime channel settings
    REALTIME_ENABLED: bool = False
    REALTIME_MAX_RECONNECTS: int = 5
    REALTIME_RECONNECT_DELAY: float = 1.0
    REALTIME_CONNECT_TIMEOUT: float = 10.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def websocket_url(self) -> str:
        """
        Realtime endpoint with websocket scheme.
        Derived from API_BASE_URL when WS_URL is not set, e.g.
        https://school.example.com -> wss://school.example.com
        """
        if self.WS_URL:
            return self.WS_URL
        parsed = urlparse(self.API_BASE_URL)
        scheme = "wss" if parsed.scheme == "https" else "ws"
        return f"{scheme}://{parsed.netloc}"

    def get_http_client_config(self) -> dict:
        """
        Get HTTP client configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "timeout": self.REQUEST_TIMEOUT,
            "max_retries": self.API_MAX_RETRIES,
            "retry_backoff": self.API_RETRY_BACKOFF,
        }

        if self.environment == "development":
            # Fail faster against a local API
            config.update({"timeout": min(self.REQUEST_TIMEOUT, 15.0)})

        return config


settings = Settings()
