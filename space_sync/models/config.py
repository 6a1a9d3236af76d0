"""Component configuration with defaults usable without any environment."""

from pydantic import BaseModel, Field


class TokenConfig(BaseModel):
    """Configuration for the Token Lifecycle Manager."""

    check_interval_seconds: int = 60
    refresh_threshold_seconds: int = 300


class ControllerConfig(BaseModel):
    """Configuration for the Assignment Controller."""

    page_size: int = Field(gt=0, default=100)
    max_push_attempts: int = Field(ge=1, default=1)
    retry_backoff_seconds: float = 0.5


class RemoteConfig(BaseModel):
    """Connection details for the remote label-management service."""

    base_url: str = "https://eu.common.solumesl.com"
    cluster: str = "common"                 # "c1" inserts a /c1 path prefix
    company: str = ""
    store: str = ""
    username: str = ""
    password: str = ""
    request_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0

    @property
    def api_root(self) -> str:
        prefix = "/c1" if self.cluster == "c1" else ""
        return f"{self.base_url.rstrip('/')}{prefix}/common/api/v2"
