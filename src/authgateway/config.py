"""Gateway configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class GatewaySettings(BaseSettings):
    base_url: str = "http://localhost:8000"
    client_id: str = ""
    # Where the user is sent when the session cannot be refreshed.
    login_url: str | None = None
    token_path: str = "/oauth/token"
    token_storage_key: str = "token"
    authorization_header_prefix: str = "Bearer "
    timeout_seconds: float = 30.0
    config_dir: str = "~/.authgateway"
    # Raise SessionInvalidatedError instead of leaving the caller suspended.
    reject_on_invalidation: bool = False
    log_level: str = "WARNING"

    model_config = {"env_prefix": "AUTHGATEWAY_", "env_file": ".env", "extra": "ignore"}

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir).expanduser()

    @property
    def session_file(self) -> Path:
        return self.config_path / "session.json"

    @property
    def redirect_url(self) -> str:
        return self.login_url or "/"
