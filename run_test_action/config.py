"""Configuration for talking to the backend."""

from pydantic import BaseModel, Field, SecretStr, field_validator


class MonitorConfig(BaseModel):
    """Configuration for job submission and monitoring.

    The API key is only ever handed to the components that need it; nothing
    in the monitor reads it from the environment.
    """

    api_key: SecretStr
    backend_url: str = "https://backend.revyl.ai"
    device_url: str = "https://device.revyl.ai"
    dashboard_url: str = "https://app.revyl.ai"
    connect_timeout: float = Field(default=30, gt=0)
    # A stream silent for longer than this (no heartbeat either) is considered dead
    read_timeout: float = Field(default=90, gt=0)
    request_timeout: float = Field(default=30, gt=0)

    @field_validator("backend_url", "device_url", "dashboard_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")
