"""Base model configuration for all data structures."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Base model with standard configuration."""

    model_config = ConfigDict(frozen=True)


class WireModel(BaseModel):
    """Base model for backend payloads, tolerant of fields we do not model."""

    model_config = ConfigDict(frozen=True, extra="allow")
