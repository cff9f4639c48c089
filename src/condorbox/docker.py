"""Local container management: RStudio Server and interactive cleanup."""

from __future__ import annotations

import logging
import subprocess
import time
import webbrowser
from enum import Enum
from typing import Callable

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

logger = logging.getLogger(__name__)

console = Console()

DEFAULT_RSTUDIO_IMAGE = "rocker/rstudio"
DEFAULT_CONTAINER_NAME = "rstudio"
DEFAULT_HOST_PORT = 8787
RSTUDIO_PORT = 8787

Prompter = Callable[[str], str]


class ServerAction(str, Enum):
    START = "start"
    STOP = "stop"


def _run(args: list[str], timeout: float | None = 120) -> subprocess.CompletedProcess:
    logger.debug("Running: %s", " ".join(args))
    return subprocess.run(args, capture_output=True, text=True, timeout=timeout, check=False)


def detect_container_cli() -> str:
    """Return ``"podman"`` when ``docker`` is podman's compatibility shim."""
    try:
        result = _run(["docker", "--version"], timeout=15)
    except (OSError, subprocess.SubprocessError):
        return "docker"
    return "podman" if "podman" in result.stdout.lower() else "docker"


def _names(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


def container_exists(name: str, cli: str = "docker") -> bool:
    result = _run([cli, "ps", "-a", "--filter", f"name=^/{name}$", "--format", "{{.Names}}"])
    return name in _names(result.stdout)


def container_running(name: str, cli: str = "docker") -> bool:
    result = _run([
        cli, "ps", "--filter", f"name=^/{name}$", "--filter", "status=running",
        "--format", "{{.Names}}",
    ])
    return name in _names(result.stdout)


def _show_logs(name: str, cli: str) -> None:
    result = _run([cli, "logs", name])
    console.print(result.stdout + result.stderr)


def manage_rstudio_server(
    action: str = "start",
    image: str = DEFAULT_RSTUDIO_IMAGE,
    container_name: str = DEFAULT_CONTAINER_NAME,
    host_port: int = DEFAULT_HOST_PORT,
    container_port: int = RSTUDIO_PORT,
    password: str = "yourpassword",
    cli: str = "docker",
    sleep: Callable[[float], None] = time.sleep,
    open_browser: bool = True,
) -> bool:
    """Start or stop an RStudio Server container.

    ``start`` reuses an existing container (starting it if stopped) and only
    runs a new one from ``image`` when none exists. ``stop`` stops the
    container if running and removes it.

    Returns:
        True if the container ended up in the requested state
    """
    action = ServerAction(action)

    if action is ServerAction.STOP:
        if container_running(container_name, cli):
            console.print(f"Stopping container '{container_name}'...")
            _run([cli, "stop", container_name])
        else:
            console.print(f"Container '{container_name}' is not running.")

        if container_exists(container_name, cli):
            console.print(f"Removing container '{container_name}'...")
            _run([cli, "rm", container_name])
            console.print(f"Container '{container_name}' has been removed.")
        else:
            console.print(f"Container '{container_name}' does not exist.")
        return not container_exists(container_name, cli)

    if container_exists(container_name, cli):
        if container_running(container_name, cli):
            console.print(f"Container '{container_name}' is already running.")
            return True

        console.print(f"Starting existing container '{container_name}'...")
        _run([cli, "start", container_name])
        sleep(2)
        if container_running(container_name, cli):
            console.print("✓ RStudio Server has been started.", style="green")
            return True
        console.print("❌ Failed to start RStudio Server. Container logs:", style="red")
        _show_logs(container_name, cli)
        return False

    run_cmd = [
        cli, "run", "-d",
        "-p", f"{host_port}:{container_port}",
        "--name", container_name,
        "-e", f"PASSWORD={password}",
        image,
    ]
    logger.info("Executing: %s", " ".join(run_cmd).replace(password, "****"))
    result = _run(run_cmd, timeout=None)
    if result.returncode != 0:
        logger.error("%s run failed: %s", cli, result.stderr.strip())

    sleep(3)
    if not container_running(container_name, cli):
        console.print("❌ Failed to start RStudio Server.", style="red")
        _show_logs(container_name, cli)
        return False

    url = f"http://localhost:{host_port}"
    console.print("✓ RStudio Server is running.", style="green")
    console.print(f"Access it at: {url}")
    if open_browser:
        try:
            webbrowser.open(url)
        except webbrowser.Error:
            logger.debug("No browser available to open %s", url)
    return True


def parse_id_selection(raw: str) -> list[str]:
    """Turn ``"a1, b2,,c3"`` into ``["a1", "b2", "c3"]``."""
    return [part for part in "".join(raw.split()).split(",") if part]


def _select_and_remove(
    kind: str,
    cli: str,
    list_args: list[str],
    columns: list[str],
    remove_args: list[str],
    prompt: Prompter,
) -> list[str]:
    console.print(f"\nListing all {kind}s:", style="bold")
    try:
        listing = _run([cli, *list_args])
    except (OSError, subprocess.SubprocessError) as e:
        console.print(f"Could not list {kind}s: {e}", style="red")
        return []

    rows = [line.split("\t") for line in listing.stdout.splitlines() if line.strip()]
    if not rows:
        console.print(f"No {kind}s found.")
        return []

    table = Table(show_header=True, header_style="bold magenta")
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*row[:len(columns)])
    console.print(table)

    selected = parse_id_selection(
        prompt(f"Enter {kind} IDs to remove (comma-separated, or press Enter to skip)")
    )
    if not selected:
        return []

    remove_cmd = [cli, *remove_args, *selected]
    logger.debug("Running command: %s", " ".join(remove_cmd))
    try:
        result = _run(remove_cmd)
    except (OSError, subprocess.SubprocessError) as e:
        console.print(f"An error occurred: {e}", style="red")
        return []
    output = (result.stdout + result.stderr).strip()
    if output:
        console.print(output)
    console.print(f"Selected {kind}s removed (if they existed).")
    return selected


def _default_prompt(message: str) -> str:
    return Prompt.ask(message, default="", show_default=False)


def clean_docker_resources_interactive(
    cli: str | None = None,
    prompt: Prompter | None = None,
) -> dict[str, list[str]]:
    """List containers and images and remove the ones the user picks.

    Returns:
        IDs submitted for removal, keyed by ``"containers"`` and ``"images"``
    """
    cli = cli or detect_container_cli()
    prompt = prompt or _default_prompt
    console.print(f"Using CLI: {cli}")

    containers = _select_and_remove(
        "container", cli,
        ["ps", "-a", "--format", "{{.ID}}\t{{.Names}}\t{{.Status}}"],
        ["ID", "Name", "Status"],
        ["rm", "-f"],
        prompt,
    )
    images = _select_and_remove(
        "image", cli,
        ["images", "--format", "{{.ID}}\t{{.Repository}}\t{{.Tag}}"],
        ["ID", "Repository", "Tag"],
        ["rmi", "-f"],
        prompt,
    )

    console.print("\n=== Cleanup Complete ===\n", style="bold green")
    return {"containers": containers, "images": images}
