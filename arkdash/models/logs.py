"""Log stream message models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class LogLevel(str, Enum):
    """Severity attached to a streamed log line."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    DEBUG = "debug"


class LogMessage(BaseModel):
    """A single log line delivered over the push channel."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    level: LogLevel = LogLevel.INFO
    message: str
    container: str = "unknown"

    @field_validator("level", mode="before")
    @classmethod
    def _normalise_level(cls, value: Any) -> LogLevel:
        text = str(value or "info").lower()
        if text == "warning":
            text = "warn"
        try:
            return LogLevel(text)
        except ValueError:
            return LogLevel.INFO
