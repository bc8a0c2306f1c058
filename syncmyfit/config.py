"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "SyncMyFit"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Fitbit OAuth ---
    fitbit_client_id: str
    fitbit_redirect_uri: str = "syncmyfit://auth"
    authorization_expires_in: int = 604800  # seconds, sent as the expires_in hint
    login_timeout_seconds: float = 300.0
    open_browser: bool = True

    # --- Storage ---
    token_encryption_secret: str  # Fernet key is derived from this, never logged
    secure_store_path: str = "syncmyfit_secure.db"
    health_store_path: str = "syncmyfit_health.db"

    # --- Timeouts ---
    request_timeout_seconds: float = 30.0
    sync_deadline_seconds: float = 120.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
