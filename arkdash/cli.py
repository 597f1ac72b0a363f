"""Terminal front-end for job progress and live logs.

Usage:
    arkdash watch JOB_ID
    arkdash start --config cluster.json        # start a cluster-create job and watch it
    arkdash logs --container ark-island
    arkdash logs --server ark-island --file servergame.log
    arkdash logs --system
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from arkdash.api.client import ArkApiClient
from arkdash.core.config import get_settings
from arkdash.core.exceptions import (
    ApiError,
    ArkDashError,
    JobFailedError,
    ReconnectExhaustedError,
)
from arkdash.core.logging import configure_logging
from arkdash.models.job import JobType, ReconciledJob
from arkdash.models.logs import LogLevel, LogMessage
from arkdash.realtime.channel_manager import ChannelManager
from arkdash.services.job_tracking.tracker import JobTracker
from arkdash.services.log_stream import LogStreamService

console = Console()

LEVEL_STYLES = {
    LogLevel.INFO: "white",
    LogLevel.WARN: "yellow",
    LogLevel.ERROR: "bold red",
    LogLevel.DEBUG: "dim",
}


class ConsoleNotifier:
    """Prints the terminal outcome and releases the waiting command."""

    def __init__(self) -> None:
        self.done = asyncio.Event()
        self.succeeded = False

    def job_succeeded(self, job: ReconciledJob) -> None:
        self.succeeded = True
        console.print(f"[bold green]Job {job.job_id} completed[/bold green] {job.message}")
        self.done.set()

    def job_failed(self, job: ReconciledJob, error: JobFailedError) -> None:
        console.print(f"[bold red]{error.message}[/bold red]")
        self.done.set()


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="arkdash",
        description="Follow ARK cluster jobs and server logs",
    )
    parser.add_argument("--api-url", default=settings.api_url, help="Backend base URL")
    parser.add_argument("--token", default=settings.auth_token, help="Bearer token")
    parser.add_argument("--debug", action="store_true", help="Verbose console logging")

    commands = parser.add_subparsers(dest="command", required=True)

    watch = commands.add_parser("watch", help="Watch an existing job")
    watch.add_argument("job_id")
    watch.add_argument(
        "--type",
        dest="job_type",
        choices=[t.value for t in JobType],
        default=None,
        help="Job type (sets the expected step count for poll estimates)",
    )
    watch.add_argument("--interval", type=float, default=None, help="Poll interval in seconds")

    start = commands.add_parser("start", help="Start a job and watch it")
    start.add_argument(
        "--type",
        dest="job_type",
        choices=[t.value for t in JobType],
        default=JobType.CLUSTER_CREATE.value,
    )
    start.add_argument("--config", type=Path, required=True, help="JSON job payload")
    start.add_argument("--interval", type=float, default=None, help="Poll interval in seconds")

    logs = commands.add_parser("logs", help="Follow a live log stream")
    source = logs.add_mutually_exclusive_group(required=True)
    source.add_argument("--container", help="Docker output of a container")
    source.add_argument("--server", help="Log file of an ARK server")
    source.add_argument("--system", action="store_true", help="Host system log")
    logs.add_argument("--file", default="shootergame.log", help="Server log file name")

    return parser


async def _connect(args: argparse.Namespace) -> ChannelManager:
    manager = ChannelManager()

    def on_error(error: ArkDashError) -> None:
        style = "red" if isinstance(error, ReconnectExhaustedError) else "yellow"
        console.print(f"[{style}]{error.message}[/{style}]")

    manager.add_error_listener(on_error)
    await manager.connect(args.api_url, args.token)
    if manager.degraded:
        console.print("[yellow]Live updates unavailable, falling back to polling[/yellow]")
    return manager


async def _track(args: argparse.Namespace, start_payload: dict | None) -> int:
    api = ArkApiClient(args.api_url, args.token)
    manager = await _connect(args)
    notifier = ConsoleNotifier()
    tracker = JobTracker(api, manager, notifier, poll_interval=args.interval)
    job_type = JobType(args.job_type) if args.job_type else None

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            bar = progress.add_task("Waiting for progress...", total=100)

            def render(job: ReconciledJob) -> None:
                progress.update(
                    bar,
                    completed=job.progress,
                    description=job.message or job.status.value,
                )

            tracker.add_listener(render)
            if start_payload is not None:
                job = await tracker.start_job(
                    job_type or JobType.CLUSTER_CREATE,
                    start_payload,
                    poll_interval=args.interval,
                )
                console.print(f"[dim]Started job {job.job_id}[/dim]")
            else:
                tracker.track(args.job_id, job_type=job_type, poll_interval=args.interval)

            await notifier.done.wait()
    except ApiError as e:
        console.print(f"[bold red]{e.message}[/bold red]")
        return 1
    finally:
        close_task = tracker.teardown()
        if close_task is not None:
            await close_task
        await api.aclose()

    return 0 if notifier.succeeded else 1


def _print_log(message: LogMessage) -> None:
    style = LEVEL_STYLES.get(message.level, "white")
    console.print(
        f"[dim]{message.timestamp}[/dim] [{style}]{message.message}[/{style}]",
        highlight=False,
    )


async def _follow_logs(args: argparse.Namespace) -> int:
    manager = await _connect(args)
    stream = LogStreamService(manager)

    if args.system:
        started = stream.follow_system(_print_log)
    elif args.server:
        started = stream.follow_server_log(args.server, _print_log, args.file)
    else:
        started = stream.follow_container(args.container, _print_log)

    if not started:
        console.print("[bold red]Not connected; log streaming needs the push channel[/bold red]")
        close_task = manager.disconnect()
        if close_task is not None:
            await close_task
        return 1

    console.print(f"[dim]Following {stream.current_topic.name} (Ctrl+C to stop)[/dim]")
    stopped = asyncio.Event()
    manager.add_error_listener(
        lambda error: stopped.set() if isinstance(error, ReconnectExhaustedError) else None
    )
    try:
        await stopped.wait()
    finally:
        stream.close()
        close_task = manager.disconnect()
        if close_task is not None:
            await close_task
    return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(debug=args.debug or None)

    try:
        if args.command == "logs":
            return asyncio.run(_follow_logs(args))
        if args.command == "start":
            try:
                payload = json.loads(args.config.read_text())
            except (OSError, ValueError) as e:
                console.print(f"[bold red]Cannot read {args.config}: {e}[/bold red]")
                return 2
            return asyncio.run(_track(args, payload))
        return asyncio.run(_track(args, None))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
