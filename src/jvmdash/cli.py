"""Command-line entry point for jvmdash.

Usage:
    jvmdash                         # run the dashboard
    jvmdash --server http://ops:8080 --theme dark
    jvmdash jvms                    # list local Java processes
    jvmdash register 4242 --port 8081
    jvmdash offline 7
    jvmdash heartbeat 7
"""

import argparse
import asyncio
import sys
import time
from collections.abc import Sequence

import psutil
import structlog

from jvmdash.api import DashboardApi
from jvmdash.app import run_app
from jvmdash.config import THEMES, DashboardConfig
from jvmdash.discovery import discover_jvms, guess_jvm_version, inspect_jvm, registration_for
from jvmdash.exceptions import DashboardError
from jvmdash.formatting import format_duration
from jvmdash.logs import configure_logging

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jvmdash",
        description="Real-time dashboard for a fleet of monitored JVMs",
    )
    parser.add_argument("--server", dest="server_url", help="Dashboard server URL")
    parser.add_argument("--window", dest="window_ms", type=int, help="History window in ms")
    parser.add_argument("--reconnect-delay", type=float, help="Seconds between stream reconnects")
    parser.add_argument("--timeout", dest="request_timeout", type=float, help="HTTP timeout in seconds")
    parser.add_argument("--theme", choices=THEMES, help="Colour theme")
    parser.add_argument("--log-file", help="Log file for the dashboard")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, ...)")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("ui", help="Run the dashboard (default)")
    sub.add_parser("jvms", help="List Java processes on this host")

    register = sub.add_parser("register", help="Register a local JVM with the server")
    register.add_argument("pid", type=int, help="Local process id of the JVM")
    register.add_argument("--host", help="Host name to advertise (default: this host)")
    register.add_argument("--port", type=int, help="Application port to advertise")
    register.add_argument("--name", help="Application name (default: derived from the command line)")

    offline = sub.add_parser("offline", help="Mark a registered process offline")
    offline.add_argument("process_id", type=int)

    heartbeat = sub.add_parser("heartbeat", help="Send a heartbeat for a registered process")
    heartbeat.add_argument("process_id", type=int)
    return parser


def load_config(args: argparse.Namespace) -> DashboardConfig:
    """Environment first, command-line flags on top."""
    return DashboardConfig.from_env().override(
        server_url=args.server_url,
        window_ms=args.window_ms,
        reconnect_delay=args.reconnect_delay,
        request_timeout=args.request_timeout,
        theme=args.theme,
        log_file=args.log_file,
        log_level=args.log_level,
    )


def cmd_jvms() -> int:
    jvms = discover_jvms()
    if not jvms:
        print("No Java processes found")
        return 0
    now = time.time()
    print(f"{'PID':>7}  {'APP':<28} {'VERSION':<12} UPTIME")
    for jvm in jvms:
        uptime = format_duration((now - jvm.create_time) * 1000) if jvm.create_time else "-"
        version = guess_jvm_version(jvm.executable) or "-"
        print(f"{jvm.pid:>7}  {jvm.app_name[:28]:<28} {version:<12} {uptime}")
    return 0


async def cmd_register(config: DashboardConfig, args: argparse.Namespace) -> int:
    try:
        jvm = inspect_jvm(args.pid)
    except psutil.NoSuchProcess:
        print(f"No process with pid {args.pid}", file=sys.stderr)
        return 1
    except psutil.AccessDenied:
        print(f"Access denied to process {args.pid}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    registration = registration_for(jvm, host=args.host, port=args.port, app_name=args.name)
    async with DashboardApi(config.server_url, config.request_timeout) as api:
        process_id = await api.register_process(registration)
    print(f"Registered {registration.app_name} as process {process_id}")
    return 0


async def cmd_lifecycle(config: DashboardConfig, command: str, process_id: int) -> int:
    async with DashboardApi(config.server_url, config.request_timeout) as api:
        if command == "offline":
            await api.offline_process(process_id)
        else:
            await api.heartbeat_process(process_id)
    print(f"{command}: process {process_id} ok")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the jvmdash command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args)
    except DashboardError as exc:
        parser.error(str(exc))

    command = args.command or "ui"
    if command == "ui":
        configure_logging(config.log_level, config.log_file)
        run_app(config)
        return 0

    configure_logging(config.log_level, None)
    try:
        if command == "jvms":
            return cmd_jvms()
        if command == "register":
            return asyncio.run(cmd_register(config, args))
        return asyncio.run(cmd_lifecycle(config, command, args.process_id))
    except DashboardError as exc:
        log.error("command_failed", command=command, error=str(exc))
        print(f"{command} failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
