"""
Configuration management for mangasync.
Supports environment variables plus the session stored in the database.
"""

import os
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from mangasync.auth import AuthContext
from mangasync.utils.dates import ensure_utc, to_naive_utc

load_dotenv()


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


def _env_datetime(name: str) -> Optional[datetime]:
    value = os.getenv(name)
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


class SyncConfig(BaseModel):
    """Configuration for the sync service."""

    # Remote service settings
    remote_url: Optional[str] = Field(default=None, description="Remote service URL")
    remote_api_key: Optional[str] = Field(default=None, description="Remote service public API key")
    remote_table_prefix: str = Field(default="scanio_", description="Prefix of remote tables and RPCs")
    remote_max_retries: int = Field(default=2, ge=0, description="Transport retries for idempotent calls")

    # Session settings (the stored session takes precedence)
    access_token: Optional[str] = Field(default=None, description="Session access token")
    user_id: Optional[str] = Field(default=None, description="Signed-in user id")
    token_expires_at: Optional[datetime] = Field(default=None, description="Session expiry")

    # Content provider settings
    content_provider_url: Optional[str] = Field(default=None, description="Source runner URL")

    # Sync settings
    sync_interval_minutes: int = Field(default=60, ge=1, description="Sync interval in minutes")
    sync_max_workers: int = Field(default=4, ge=1, le=32, description="Parallel item operations per phase")
    request_timeout: float = Field(default=30, gt=0, description="Per-request timeout in seconds")

    # Feature toggles
    enable_source_sync: bool = Field(default=True, description="Enable source sync")
    enable_library_sync: bool = Field(default=True, description="Enable library sync")
    enable_history_sync: bool = Field(default=True, description="Enable reading history sync")

    # Application settings
    database_url: str = Field(
        default="sqlite:///data/mangasync.db",
        description="Database connection URL"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    port: int = Field(default=5000, description="HTTP port of the service host")


def get_config_from_env() -> SyncConfig:
    """Load configuration from environment variables."""
    return SyncConfig(
        remote_url=os.getenv("REMOTE_URL"),
        remote_api_key=os.getenv("REMOTE_API_KEY"),
        remote_table_prefix=os.getenv("REMOTE_TABLE_PREFIX", "scanio_"),
        remote_max_retries=int(os.getenv("REMOTE_MAX_RETRIES", "2")),
        access_token=os.getenv("ACCESS_TOKEN"),
        user_id=os.getenv("USER_ID"),
        token_expires_at=_env_datetime("TOKEN_EXPIRES_AT"),
        content_provider_url=os.getenv("CONTENT_PROVIDER_URL"),
        sync_interval_minutes=int(os.getenv("SYNC_INTERVAL_MINUTES", "60")),
        sync_max_workers=int(os.getenv("SYNC_MAX_WORKERS", "4")),
        request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
        enable_source_sync=_env_bool("ENABLE_SOURCE_SYNC"),
        enable_library_sync=_env_bool("ENABLE_LIBRARY_SYNC"),
        enable_history_sync=_env_bool("ENABLE_HISTORY_SYNC"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/mangasync.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        port=int(os.getenv("PORT", "5000")),
    )


class ConfigManager:
    """
    Manages configuration with the stored session layered over the environment.
    """

    def __init__(self, database=None, env_config: Optional[SyncConfig] = None):
        self.database = database
        self._env_config = env_config or get_config_from_env()

    def load_session(self):
        """Load the stored session row if available."""
        if not self.database:
            return None

        from mangasync.db.models import AuthSession
        with self.database.session() as session:
            return session.query(AuthSession).order_by(AuthSession.id.desc()).first()

    def get_config(self) -> SyncConfig:
        """
        Get configuration, merging the stored session with environment variables.
        Stored values take precedence over environment variables.
        """
        stored = self.load_session()

        if stored and stored.access_token:
            return self._env_config.model_copy(update={
                "access_token": stored.access_token,
                "user_id": stored.user_id or self._env_config.user_id,
                "token_expires_at": ensure_utc(stored.expires_at),
            })

        return self._env_config

    def get_auth_context(self) -> AuthContext:
        config = self.get_config()
        return AuthContext(
            access_token=config.access_token,
            user_id=config.user_id,
            expires_at=config.token_expires_at,
        )

    def save_session(self, auth: AuthContext) -> None:
        """Save the session to the database."""
        if not self.database:
            raise RuntimeError("Database not available")

        from mangasync.db.models import AuthSession
        with self.database.session() as session:
            row = session.query(AuthSession).order_by(AuthSession.id.desc()).first()
            if not row:
                row = AuthSession()
                session.add(row)

            row.access_token = auth.access_token
            row.user_id = auth.user_id
            row.expires_at = to_naive_utc(auth.expires_at)

    def clear_session(self) -> None:
        """Forget the stored session (sign out)."""
        if not self.database:
            return

        from mangasync.db.models import AuthSession
        with self.database.session() as session:
            session.query(AuthSession).delete()

    def is_configured(self) -> bool:
        """Check if the minimum required configuration is present."""
        config = self.get_config()

        if not config.remote_url or not config.remote_api_key:
            return False

        return bool(config.content_provider_url)
