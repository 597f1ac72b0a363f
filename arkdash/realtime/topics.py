"""Push-channel topic definitions.

Each topic kind fixes its wire contract:

- start event  client -> server, carries the topic payload
- stop event   client -> server, releases server-side resources
- data event   server -> client, carries the typed message

Topic kind       start / stop                                data event
---------------  ------------------------------------------  -----------------
job-progress     start-job-progress / stop-job-progress      job-progress
container-logs   start-container-logs / stop-container-logs  container-log-data
ark-logs         start-ark-logs / stop-ark-logs              ark-log-data
system-logs      start-system-logs / stop-system-logs        system-log-data
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Union

from pydantic import ValidationError

from arkdash.core.exceptions import ProtocolError
from arkdash.models.job import ProgressReport
from arkdash.models.logs import LogMessage

TopicMessage = Union[ProgressReport, LogMessage]
TopicCallback = Callable[[TopicMessage], None]


class TopicKind(str, Enum):
    """Named message streams multiplexed over the push channel."""

    JOB_PROGRESS = "job-progress"
    CONTAINER_LOGS = "container-logs"
    ARK_LOGS = "ark-logs"
    SYSTEM_LOGS = "system-logs"

    @property
    def start_event(self) -> str:
        return f"start-{self.value}"

    @property
    def stop_event(self) -> str:
        return f"stop-{self.value}"

    @property
    def data_event(self) -> str:
        return DATA_EVENTS[self]


DATA_EVENTS: dict[TopicKind, str] = {
    TopicKind.JOB_PROGRESS: "job-progress",
    TopicKind.CONTAINER_LOGS: "container-log-data",
    TopicKind.ARK_LOGS: "ark-log-data",
    TopicKind.SYSTEM_LOGS: "system-log-data",
}

KIND_BY_DATA_EVENT: dict[str, TopicKind] = {
    event: kind for kind, event in DATA_EVENTS.items()
}


@dataclass(frozen=True)
class Topic:
    """A subscribable stream: kind plus an optional routing key.

    Attributes:
        kind: Topic kind (fixes the wire events and message shape).
        key: Routing key such as a job id or container name.
        payload: Body sent with the start/stop control messages.
    """

    kind: TopicKind
    key: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @property
    def name(self) -> str:
        """Unique subscription name, e.g. ``job-progress:J1``."""
        if self.key is None:
            return self.kind.value
        return f"{self.kind.value}:{self.key}"

    # =========================================================================
    # Constructors
    # =========================================================================

    @classmethod
    def job_progress(cls, job_id: str) -> Topic:
        return cls(TopicKind.JOB_PROGRESS, job_id, {"jobId": job_id})

    @classmethod
    def container_logs(cls, container: str) -> Topic:
        return cls(TopicKind.CONTAINER_LOGS, container, {"container": container})

    @classmethod
    def ark_logs(cls, server_name: str, log_file: str = "shootergame.log") -> Topic:
        return cls(
            TopicKind.ARK_LOGS,
            server_name,
            {"serverName": server_name, "logFileName": log_file},
        )

    @classmethod
    def system_logs(cls) -> Topic:
        return cls(TopicKind.SYSTEM_LOGS)

    # =========================================================================
    # Message translation
    # =========================================================================

    def routing_key(self, data: Mapping[str, Any]) -> str | None:
        """Extract the key a raw message is addressed to, if it names one."""
        if self.kind is TopicKind.JOB_PROGRESS:
            return data.get("jobId") or data.get("job_id")
        if self.kind is TopicKind.ARK_LOGS:
            return data.get("serverName") or data.get("container")
        if self.kind is TopicKind.CONTAINER_LOGS:
            return data.get("container")
        return None

    def accepts(self, data: Mapping[str, Any]) -> bool:
        """Check if a raw message on this topic's data event is addressed here."""
        if self.key is None:
            return True
        target = self.routing_key(data)
        return target is None or target == self.key

    def parse(self, data: Any) -> TopicMessage:
        """Translate a raw wire message into the topic's typed shape.

        Raises:
            ProtocolError: If the payload cannot be translated.
        """
        event = self.kind.data_event
        if not isinstance(data, Mapping):
            raise ProtocolError(event, f"expected an object, got {type(data).__name__}")

        try:
            if self.kind is TopicKind.JOB_PROGRESS:
                return ProgressReport.model_validate(dict(data))

            timestamp = data.get("timestamp") or datetime.now(UTC).isoformat()
            if self.kind is TopicKind.CONTAINER_LOGS:
                # Docker logs carry no level; the line is in "data"
                return LogMessage(
                    timestamp=timestamp,
                    level="info",
                    message=str(data.get("data", data.get("message", ""))),
                    container=self.key or data.get("container") or "unknown",
                )
            if self.kind is TopicKind.ARK_LOGS:
                return LogMessage(
                    timestamp=timestamp,
                    level=data.get("level") or "info",
                    message=str(data.get("message", "")),
                    container=data.get("container") or self.key or "unknown",
                )
            return LogMessage(
                timestamp=timestamp,
                level=data.get("level") or "info",
                message=str(data.get("message", "")),
                container="system",
            )
        except ValidationError as e:
            raise ProtocolError(event, str(e)) from e
