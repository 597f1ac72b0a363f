"""Core configuration, logging and exceptions."""

from arkdash.core.config import Settings, get_settings
from arkdash.core.exceptions import (
    ApiError,
    ArkDashError,
    ChannelConnectionError,
    JobFailedError,
    PollError,
    ProbeUnavailableError,
    ProtocolError,
    ReconnectExhaustedError,
    StaleReportDiscarded,
)
from arkdash.core.logging import configure_logging, get_logger

__all__ = [
    # Configuration
    "Settings",
    "get_settings",
    # Logging
    "configure_logging",
    "get_logger",
    # Exceptions
    "ArkDashError",
    "ApiError",
    "ChannelConnectionError",
    "JobFailedError",
    "PollError",
    "ProbeUnavailableError",
    "ProtocolError",
    "ReconnectExhaustedError",
    "StaleReportDiscarded",
]
