#!/usr/bin/env python3
"""
Punchclock command line.

Usage:
    punchclock serve                 # run the tracking server
    punchclock status                # show the current session
    punchclock start 3               # start (or switch to) project 3
    punchclock stop                  # stop the running timer
    punchclock projects              # list projects, marking the running one

Client commands talk to the server at PUNCHCLOCK_URL
(default http://127.0.0.1:7788).
"""

import argparse
import sys
from datetime import datetime

import requests
from rich.console import Console
from rich.table import Table

from .clock import parse_ts
from .config import Config, api_url
from .surface import format_tray_time

console = Console()

REQUEST_TIMEOUT = 5


class ApiError(Exception):
    pass


def _request(method: str, path: str, **kwargs) -> dict:
    url = f"{api_url().rstrip('/')}{path}"
    try:
        response = requests.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
    except requests.RequestException as e:
        raise ApiError(f"Cannot reach punchclock server at {api_url()}: {e}") from e
    if not response.ok:
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        raise ApiError(f"{response.status_code}: {detail}")
    return response.json()


def _local_time(value: str) -> str:
    """Stored UTC timestamp -> local HH:MM."""
    try:
        return parse_ts(value).astimezone().strftime("%H:%M")
    except (TypeError, ValueError):
        return "??:??"


def _print_session(session: dict) -> None:
    if session.get("status") == "running":
        console.print(
            f"[bold green]● Running[/bold green] [bold]{session['project_name']}[/bold] "
            f"since {_local_time(session['start_time'])} "
            f"([cyan]{format_tray_time(session['elapsed'])}[/cyan])"
        )
    else:
        selected = session.get("selected_project_id")
        hint = f" (selected project {selected})" if selected is not None else ""
        console.print(f"[dim]○ Idle{hint}[/dim]")


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the API server with the background evaluators."""
    import uvicorn

    from .api import create_app
    from .log import setup_logging

    config = Config.from_env()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    setup_logging(config.log_level)
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level=config.log_level.lower())
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    try:
        session = _request("GET", "/api/session")
    except ApiError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    _print_session(session)
    return 0


def cmd_start(args: argparse.Namespace) -> int:
    """Start tracking a project, switching if a timer is already running."""
    try:
        session = _request("POST", "/api/session/switch", json={"project_id": args.project_id})
    except ApiError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    _print_session(session)
    return 0


def cmd_stop(args: argparse.Namespace) -> int:
    try:
        result = _request("POST", "/api/session/stop")
    except ApiError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    stopped = result.get("stopped")
    if stopped is None:
        console.print("[dim]No timer was running[/dim]")
    else:
        console.print(f"[green]Stopped[/green] entry {stopped['id']} after {format_tray_time(stopped['duration'])}")
    return 0


def cmd_projects(args: argparse.Namespace) -> int:
    try:
        projects = _request("GET", "/api/projects")["projects"]
        session = _request("GET", "/api/session")
    except ApiError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    running_id = session.get("project_id") if session.get("status") == "running" else None
    table = Table(show_header=True, header_style="bold cyan", border_style="blue", expand=False)
    table.add_column("", width=2, justify="center")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="white")
    table.add_column("Color")
    for project in projects:
        marker = "[green]●[/green]" if project["id"] == running_id else ""
        color = project["color"]
        table.add_row(marker, str(project["id"]), project["name"], f"[{color}]■[/{color}] {color}")
    console.print(table)
    console.print(f"[dim]{len(projects)} projects | {datetime.now().strftime('%H:%M')}[/dim]")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="punchclock",
        description="Personal time tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    serve_parser = subparsers.add_parser("serve", help="Run the tracking server")
    serve_parser.add_argument("--host", help="Bind address (default: PUNCHCLOCK_HOST or 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, help="Port (default: PUNCHCLOCK_PORT or 7788)")
    serve_parser.set_defaults(func=cmd_serve)

    status_parser = subparsers.add_parser("status", help="Show the current session")
    status_parser.set_defaults(func=cmd_status)

    start_parser = subparsers.add_parser("start", help="Start or switch to a project")
    start_parser.add_argument("project_id", type=int, help="Project id (see 'projects')")
    start_parser.set_defaults(func=cmd_start)

    stop_parser = subparsers.add_parser("stop", help="Stop the running timer")
    stop_parser.set_defaults(func=cmd_stop)

    projects_parser = subparsers.add_parser("projects", help="List projects")
    projects_parser.set_defaults(func=cmd_projects)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        args.func = cmd_status

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
