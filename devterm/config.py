import functools
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Gateway route for remote terminal connections
CONNECT_PATH = "/api/management/v1/deviceconnect/devices/{device_id}/connect"

# HTTP gateway schemes mapped to their websocket equivalents
SCHEME_MAP: dict[str, str] = {
    "https": "wss",
    "http": "ws",
    "wss": "wss",
    "ws": "ws",
}


class TerminalTimeouts(BaseModel):
    """Timing configuration for terminal sessions."""

    resize_poll: float = 1.0
    connect: float = 30.0
    close_grace: float = 10.0

    @field_validator("resize_poll", "connect", "close_grace")
    @classmethod
    def validate_positive(cls, v: float, info) -> float:
        """Ensure timeout values are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v


class TerminalGeometry(BaseModel):
    """Fallback geometry used when the terminal cannot be measured."""

    rows: int = 24
    cols: int = 80

    @field_validator("rows", "cols")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        """Ensure dimensions are positive integers."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer, got {v}")
        return v


class Config(BaseSettings):
    """
    Application configuration loaded from multiple sources.

    Priority (highest to lowest):
    1. Explicit keyword arguments
    2. Environment variables
    3. .env file
    4. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Gateway connection
    GATEWAY_URL: str = "wss://localhost"
    API_TOKEN: str = ""
    SSL_VERIFY: bool = True

    # Fallback terminal geometry
    DEFAULT_ROWS: int = 24
    DEFAULT_COLS: int = 80

    # Timing overrides from environment
    RESIZE_POLL_INTERVAL: float = 1.0
    CONNECT_TIMEOUT: float = 30.0
    CLOSE_GRACE: float = 10.0

    # How long user-visible notifications stay up
    NOTIFY_DURATION_MS: int = 5000

    LOG_LEVEL: str = Field(default="INFO")

    @functools.cached_property
    def timeouts(self) -> TerminalTimeouts:
        """Build TerminalTimeouts from environment variables."""
        return TerminalTimeouts(
            resize_poll=self.RESIZE_POLL_INTERVAL,
            connect=self.CONNECT_TIMEOUT,
            close_grace=self.CLOSE_GRACE,
        )

    @functools.cached_property
    def geometry(self) -> TerminalGeometry:
        return TerminalGeometry(rows=self.DEFAULT_ROWS, cols=self.DEFAULT_COLS)

    def auth_headers(self) -> dict[str, str]:
        """Headers sent with the websocket upgrade request."""
        if not self.API_TOKEN:
            return {}
        return {"Authorization": f"Bearer {self.API_TOKEN}"}

    def connect_url(self, device_id: str, gateway_url: Optional[str] = None) -> str:
        """Build the websocket URL of a device's terminal endpoint.

        Args:
            device_id: Device to connect to
            gateway_url: Override for GATEWAY_URL

        Returns:
            ws:// or wss:// URL of the connect endpoint
        """
        parts = urlsplit(gateway_url or self.GATEWAY_URL)
        scheme = SCHEME_MAP.get(parts.scheme.lower())
        if scheme is None:
            raise ValueError(f"Unsupported gateway scheme: {parts.scheme!r}")
        endpoint = CONNECT_PATH.format(device_id=quote(device_id, safe=""))
        path = parts.path.rstrip("/") + endpoint
        return urlunsplit((scheme, parts.netloc, path, "", ""))

    def validate_required(self) -> list[str]:
        """Validate required configuration."""
        errors = []
        if not self.GATEWAY_URL:
            errors.append("GATEWAY_URL is required")
        else:
            parts = urlsplit(self.GATEWAY_URL)
            if parts.scheme.lower() not in SCHEME_MAP:
                errors.append(
                    f"GATEWAY_URL must use one of {', '.join(sorted(SCHEME_MAP))}, "
                    f"got {self.GATEWAY_URL!r}"
                )
            elif not parts.netloc:
                errors.append(f"GATEWAY_URL has no host: {self.GATEWAY_URL!r}")
        return errors


config = Config()
