"""
Runtime configuration loaded from the environment (prefix SPACE_SYNC_)
or a local .env file, plus process-wide logging setup.
"""

import logging
from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from space_sync.models.config import ControllerConfig, RemoteConfig, TokenConfig
from space_sync.models.remote import ArticleMapping

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Runtime configuration for the space sync service."""

    model_config = SettingsConfigDict(
        env_prefix="SPACE_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
    )

    app_title: str = Field(default="Space Sync API")
    app_version: str = Field(default="0.1.0")
    log_level: str = Field(default="INFO")

    # Remote label service
    remote_enabled: bool = Field(
        default=False,
        description="Talk to the remote service. False keeps every operation local.",
    )
    remote_base_url: str = Field(default="https://eu.common.solumesl.com")
    remote_cluster: str = Field(default="common", description='"c1" adds a /c1 prefix.')
    company: str = Field(default="")
    store: str = Field(default="")
    username: str = Field(default="")
    password: str = Field(default="")
    request_timeout_seconds: float = Field(default=30.0)
    connect_timeout_seconds: float = Field(default=10.0)

    # Token lifecycle
    token_check_interval_seconds: int = Field(default=60, gt=0)
    token_refresh_threshold_seconds: int = Field(default=300, ge=0)

    # Assignment controller
    total_spaces: int = Field(default=0, ge=0)
    page_size: int = Field(default=100, gt=0)
    max_push_attempts: int = Field(default=1, ge=1)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)

    # Article field mapping
    article_id_field: str = Field(default="ARTICLE_ID")
    article_name_field: Optional[str] = Field(default=None)
    store_field: Optional[str] = Field(default=None)
    global_fields: Dict[str, str] = Field(default_factory=dict)

    # Persistence
    db_path: Optional[str] = Field(
        default=None, description="SQLite file for store snapshots. None disables persistence."
    )

    def remote_config(self) -> RemoteConfig:
        return RemoteConfig(
            base_url=self.remote_base_url,
            cluster=self.remote_cluster,
            company=self.company,
            store=self.store,
            username=self.username,
            password=self.password,
            request_timeout_seconds=self.request_timeout_seconds,
            connect_timeout_seconds=self.connect_timeout_seconds,
        )

    def token_config(self) -> TokenConfig:
        return TokenConfig(
            check_interval_seconds=self.token_check_interval_seconds,
            refresh_threshold_seconds=self.token_refresh_threshold_seconds,
        )

    def controller_config(self) -> ControllerConfig:
        return ControllerConfig(
            page_size=self.page_size,
            max_push_attempts=self.max_push_attempts,
            retry_backoff_seconds=self.retry_backoff_seconds,
        )

    def article_mapping(self) -> ArticleMapping:
        return ArticleMapping(
            article_id_field=self.article_id_field,
            article_name_field=self.article_name_field,
            store_field=self.store_field,
            global_fields=dict(self.global_fields),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Install the root handler once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    root.setLevel(level.upper())
