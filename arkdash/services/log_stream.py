"""Live log streaming over the push channel.

One log view is followed at a time: a container's Docker output, an ARK
server's game log file, or the host's system log. Starting a new stream
releases the previous one on the server.
"""

from __future__ import annotations

from collections.abc import Callable

from arkdash.core.logging import get_logger
from arkdash.models.logs import LogMessage
from arkdash.realtime.channel_manager import (
    ChannelManager,
    ConnectionState,
    get_channel_manager,
)
from arkdash.realtime.topics import Topic, TopicKind, TopicMessage

logger = get_logger(__name__)

DEFAULT_LOG_FILE = "shootergame.log"

LogCallback = Callable[[LogMessage], None]


class LogStreamService:
    """Follows a single log stream on the shared channel manager.

    Example:
        >>> logs = LogStreamService()
        >>> logs.follow_server_log("island", print)
        >>> logs.switch_log_file("servergame.log")
        >>> logs.stop()
    """

    def __init__(self, channel: ChannelManager | None = None) -> None:
        self._channel = channel or get_channel_manager()
        self._topic: Topic | None = None
        self._callback: LogCallback | None = None
        # Container the current server log view falls back to
        self._container: str | None = None
        self._channel.add_state_listener(self._on_connection_state)

    @property
    def current_topic(self) -> Topic | None:
        return self._topic

    @property
    def log_file(self) -> str | None:
        """File of the followed server log, if one is followed."""
        if self._topic is None or self._topic.kind is not TopicKind.ARK_LOGS:
            return None
        return self._topic.payload.get("logFileName")

    def follow_container(self, container: str, callback: LogCallback) -> bool:
        """Stream a container's Docker output."""
        self._container = container
        return self._follow(Topic.container_logs(container), callback)

    def follow_server_log(
        self,
        server_name: str,
        callback: LogCallback,
        log_file: str = DEFAULT_LOG_FILE,
    ) -> bool:
        """Stream one of an ARK server's log files.

        Args:
            server_name: Server (container) whose log directory is read.
            callback: Receives each LogMessage.
            log_file: File name inside the server's log directory.

        Returns:
            True if the stream was started.
        """
        self._container = server_name
        return self._follow(Topic.ark_logs(server_name, log_file), callback)

    def follow_system(self, callback: LogCallback) -> bool:
        """Stream the host's system log."""
        self._container = None
        return self._follow(Topic.system_logs(), callback)

    def switch_log_file(self, log_file: str) -> bool:
        """Re-issue the current server stream against another file.

        Returns:
            False if no server log is being followed.
        """
        if self._topic is None or self._topic.kind is not TopicKind.ARK_LOGS:
            logger.info("log_file_switch_skipped", log_file=log_file)
            return False
        return self._follow(Topic.ark_logs(self._topic.key, log_file), self._callback)

    def switch_to_container_logs(self) -> bool:
        """Go back from a server log file to the container's Docker output."""
        if self._container is None or self._callback is None:
            logger.info("container_switch_skipped")
            return False
        return self._follow(Topic.container_logs(self._container), self._callback)

    def stop(self) -> bool:
        """Stop whatever stream is followed.

        Returns:
            True if a stream was active.
        """
        topic, self._topic = self._topic, None
        if topic is None:
            return False
        self._channel.unsubscribe(topic)
        logger.info("log_stream_stopped", topic=topic.name)
        return True

    def close(self) -> None:
        """Stop streaming and detach from the channel manager."""
        self.stop()
        self._channel.remove_state_listener(self._on_connection_state)

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state is not ConnectionState.CONNECTED:
            return
        if self._topic is None or self._callback is None:
            return
        topic = self._topic
        self._topic = None
        if self._follow(topic, self._callback):
            logger.info("log_stream_resumed", topic=topic.name)

    def _follow(self, topic: Topic, callback: LogCallback) -> bool:
        if not self._channel.is_connected:
            logger.info(
                "log_stream_unavailable",
                topic=topic.name,
                state=self._channel.state.value,
            )
            return False

        if self._topic is not None:
            self._channel.unsubscribe(self._topic)

        def deliver(message: TopicMessage) -> None:
            if isinstance(message, LogMessage):
                callback(message)

        self._topic = topic
        self._callback = callback
        self._channel.subscribe(topic, deliver)
        logger.info("log_stream_started", topic=topic.name, payload=dict(topic.payload))
        return True
