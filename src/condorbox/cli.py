"""condorbox CLI: Main command interface.

Submit GitHub projects to HTCondor as docker jobs, collect their output and
manage the local container and SSH tooling around them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .batch_files import handle_batch_file
from .config import CondorBoxConfig, load_config
from .docker import (
    DEFAULT_CONTAINER_NAME,
    DEFAULT_HOST_PORT,
    DEFAULT_RSTUDIO_IMAGE,
    clean_docker_resources_interactive,
    manage_rstudio_server,
)
from .exceptions import CondorBoxError
from .github import DEFAULT_KEY_PATH, clean_github_ssh_keys_interactive, setup_github_ssh, setup_ssh_key
from .runner import run_commands
from .ssh_utils import SSHClient
from .submit import submit_job
from .templates import OUTPUT_ARCHIVE, generate_condor_template, generate_rserver_template
from .unbox import unbox as unbox_output

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Initialize Typer app and Rich console
app = typer.Typer(help="condorbox: run GitHub projects as HTCondor docker jobs")
console = Console()
error_console = Console(stderr=True, style="bold red")


@app.callback()
def context_callback(
    ctx: typer.Context,
    config: Annotated[Optional[Path], typer.Option("--config", "-c", help="YAML config file")] = None,
    host: Annotated[Optional[str], typer.Option("--host", help="Submit host address")] = None,
    user: Annotated[Optional[str], typer.Option("--user", "-u", help="Username on the submit host")] = None,
    port: Annotated[Optional[int], typer.Option("--port", "-p", help="SSH port")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Initialize logging and connection options."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["remote"] = {"host": host, "user": user, "port": port}


def _load(ctx: typer.Context, overrides: dict[str, Any] | None = None) -> CondorBoxConfig:
    """Build the configuration from the file, environment and CLI options."""
    settings: dict[str, Any] = {"remote": dict(ctx.obj["remote"])}
    for section, values in (overrides or {}).items():
        settings.setdefault(section, {}).update(values)
    try:
        return load_config(ctx.obj["config_path"], overrides=settings)
    except (FileNotFoundError, ValidationError) as e:
        error_console.print(f"Invalid configuration: {e}")
        raise typer.Exit(code=1)


def _ssh(ctx: typer.Context, remote_dir: str | None = None) -> tuple[SSHClient, CondorBoxConfig]:
    config = _load(ctx, {"remote": {"dir": remote_dir}})
    return SSHClient.from_config(config.remote), config


def _parse_env(pairs: list[str] | None) -> dict[str, str] | None:
    if not pairs:
        return None
    env = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value
    return env


@app.command()
def submit(
    ctx: typer.Context,
    remote_dir: Annotated[Optional[str], typer.Option("--remote-dir", "-d", help="Remote job directory")] = None,
    image: Annotated[Optional[str], typer.Option("--image", "-i", help="Docker image for the job")] = None,
    target_folder: Annotated[Optional[str], typer.Option("--target-folder", help="Only check out this folder")] = None,
    branch: Annotated[Optional[str], typer.Option("--branch", "-b", help="Git branch")] = None,
    make_options: Annotated[Optional[str], typer.Option("--make-options", help="Arguments to make")] = None,
    cpus: Annotated[Optional[int], typer.Option("--cpus", help="request_cpus")] = None,
    memory: Annotated[Optional[str], typer.Option("--memory", help="request_memory, e.g. 6GB")] = None,
    disk: Annotated[Optional[str], typer.Option("--disk", help="request_disk, e.g. 10GB")] = None,
    batch_name: Annotated[Optional[str], typer.Option("--batch-name", help="Custom batch name")] = None,
    env: Annotated[Optional[list[str]], typer.Option("--env", "-e", help="Job environment KEY=VALUE")] = None,
    stream_error: Annotated[Optional[bool], typer.Option("--stream-error/--no-stream-error")] = None,
    keep_clone_script: Annotated[bool, typer.Option("--keep-clone-script", help="Do not wait to delete the clone script")] = False,
    registry_login: Annotated[Optional[bool], typer.Option("--registry-login/--no-registry-login", help="docker login to ghcr.io first")] = None,
):
    """Submit the configured GitHub project as an HTCondor job."""
    job: dict[str, Any] = {
        "docker_image": image,
        "target_folder": target_folder,
        "make_options": make_options,
        "batch_name": batch_name,
        "environment": _parse_env(env),
        "stream_error": stream_error,
        "registry_login": registry_login,
    }
    if keep_clone_script:
        job["remove_clone_script"] = False

    config = _load(ctx, {
        "remote": {"dir": remote_dir},
        "github": {"branch": branch},
        "resources": {"cpus": cpus, "memory": memory, "disk": disk},
        "job": job,
    })

    console.print("🚀 Submitting job...", style="bold green")
    try:
        result = submit_job(config)
    except (ValueError, CondorBoxError) as e:
        error_console.print(f"❌ Submission failed: {e}")
        raise typer.Exit(code=1)

    if not result.submitted:
        error_console.print("❌ condor_submit failed or reported no job ID")
        raise typer.Exit(code=1)

    console.print(f"✓ Job ID: {result.job_id}", style="green")
    console.print(f"✓ Batch name: {result.batch_name}", style="green")
    if not result.clone_script_removed and config.job.remove_clone_script:
        console.print("⚠️ The clone script is still in the remote directory", style="yellow")


@app.command()
def unbox(
    ctx: typer.Context,
    remote_dir: Annotated[Optional[str], typer.Option("--remote-dir", "-d", help="Remote job directory")] = None,
    local_dir: Annotated[Path, typer.Option("--local-dir", "-l", help="Local project directory")] = Path("."),
    archive: Annotated[str, typer.Option("--archive", help="Output archive name")] = OUTPUT_ARCHIVE,
    overwrite: Annotated[bool, typer.Option("--overwrite", help="Replace existing local files")] = False,
):
    """Download a finished job's output and merge it into a local directory."""
    ssh, config = _ssh(ctx, remote_dir)
    if not config.remote.dir:
        error_console.print("A remote directory is required (--remote-dir or remote.dir)")
        raise typer.Exit(code=1)

    try:
        summary = unbox_output(
            ssh, config.remote.dir, local_dir, remote_output_file=archive, overwrite=overwrite, console=console
        )
    except CondorBoxError as e:
        error_console.print(f"❌ {e}")
        raise typer.Exit(code=1)

    console.print(f"✓ {len(summary.moved)} files synchronised into {local_dir}", style="green")
    if summary.skipped:
        console.print(f"{len(summary.skipped)} existing files were skipped (use --overwrite to replace them)")


@app.command()
def fetch(
    ctx: typer.Context,
    folder: Annotated[str, typer.Argument(help="Remote batch directory")],
    file_name: Annotated[Optional[str], typer.Argument(help="File, folder/ or pattern inside the directory")] = None,
    fetch_dir: Annotated[Path, typer.Option("--to", help="Local destination")] = Path("."),
    archive: Annotated[Optional[str], typer.Option("--archive", help="Archive to fetch and extract")] = None,
    entire: Annotated[bool, typer.Option("--entire", help="Extract the whole archive")] = False,
    extract_folder: Annotated[Optional[str], typer.Option("--folder", help="Extract only this folder")] = None,
    pattern: Annotated[Optional[str], typer.Option("--pattern", help="Extract only matching members")] = None,
    direct: Annotated[bool, typer.Option("--direct", help="Extract on the remote host and stream back")] = False,
):
    """Fetch a file, folder or extracted archive from a batch directory."""
    ssh, _ = _ssh(ctx)
    try:
        ok = handle_batch_file(
            ssh,
            folder,
            file_name=file_name,
            action="fetch",
            fetch_dir=fetch_dir,
            extract_archive=archive is not None,
            archive_name=archive,
            extract_pattern=pattern,
            extract_folder=extract_folder,
            extract_entire=entire,
            direct_extract=direct,
        )
    except ValueError as e:
        error_console.print(str(e))
        raise typer.Exit(code=1)

    if not ok:
        error_console.print("❌ Fetch failed")
        raise typer.Exit(code=1)
    console.print(f"✓ Fetched into {fetch_dir}", style="green")


@app.command()
def delete(
    ctx: typer.Context,
    folder: Annotated[str, typer.Argument(help="Remote batch directory")],
    file_name: Annotated[str, typer.Argument(help="File or folder inside the directory")],
    wait: Annotated[bool, typer.Option("--wait", help="Wait until the batch is running first")] = False,
    check_sec: Annotated[float, typer.Option("--check-sec", help="Polling interval while waiting")] = 15,
):
    """Delete a file from a batch directory."""
    ssh, _ = _ssh(ctx)
    ok = handle_batch_file(
        ssh, folder, file_name=file_name, action="delete", wait_if_running=wait, check_sec=check_sec
    )
    if not ok:
        error_console.print("❌ Delete failed")
        raise typer.Exit(code=1)
    console.print(f"✓ Deleted {file_name}", style="green")


# RStudio Server group
rstudio_app = typer.Typer(help="Manage a local RStudio Server container")
app.add_typer(rstudio_app, name="rstudio")


@rstudio_app.command("start")
def rstudio_start(
    image: Annotated[str, typer.Option("--image", "-i")] = DEFAULT_RSTUDIO_IMAGE,
    name: Annotated[str, typer.Option("--name", "-n", help="Container name")] = DEFAULT_CONTAINER_NAME,
    port: Annotated[int, typer.Option("--port", "-p", help="Host port")] = DEFAULT_HOST_PORT,
    password: Annotated[str, typer.Option("--password", envvar="RSTUDIO_PASSWORD", help="RStudio password")] = "yourpassword",
    no_browser: Annotated[bool, typer.Option("--no-browser")] = False,
):
    """Start (or reuse) an RStudio Server container."""
    if not manage_rstudio_server(
        "start", image=image, container_name=name, host_port=port, password=password, open_browser=not no_browser
    ):
        raise typer.Exit(code=1)


@rstudio_app.command("stop")
def rstudio_stop(
    name: Annotated[str, typer.Option("--name", "-n", help="Container name")] = DEFAULT_CONTAINER_NAME,
):
    """Stop and remove the RStudio Server container."""
    if not manage_rstudio_server("stop", container_name=name):
        raise typer.Exit(code=1)


@app.command("clean-docker")
def clean_docker(
    cli: Annotated[Optional[str], typer.Option("--cli", help="docker or podman (detected if omitted)")] = None,
):
    """Interactively remove containers and images."""
    clean_docker_resources_interactive(cli=cli)


# GitHub group
github_app = typer.Typer(help="Manage SSH keys on GitHub")
app.add_typer(github_app, name="github")


@github_app.command("setup")
def github_setup(
    email: Annotated[str, typer.Option("--email", help="Email for the key comment and git identity")],
    username: Annotated[str, typer.Option("--username", help="GitHub username")],
    token: Annotated[Optional[str], typer.Option("--token", envvar="GITHUB_TOKEN", help="Token with write:public_key")] = None,
    key_path: Annotated[Path, typer.Option("--key-path")] = DEFAULT_KEY_PATH,
):
    """Generate an SSH key, register it on GitHub and configure git."""
    try:
        path = setup_github_ssh(email, username, github_token=token, key_path=key_path)
    except CondorBoxError as e:
        error_console.print(f"❌ {e}")
        raise typer.Exit(code=1)
    console.print(f"✓ Using key {path}", style="green")


@github_app.command("clean")
def github_clean(
    token: Annotated[str, typer.Option("--token", envvar="GITHUB_TOKEN", help="Token with admin:public_key")],
):
    """Interactively delete SSH keys from the GitHub account."""
    try:
        clean_github_ssh_keys_interactive(token)
    except (ValueError, CondorBoxError) as e:
        error_console.print(f"❌ {e}")
        raise typer.Exit(code=1)


@app.command("ssh-key")
def ssh_key(
    ctx: typer.Context,
    key_path: Annotated[Path, typer.Option("--key-path")] = DEFAULT_KEY_PATH,
):
    """Create a local SSH key and install it on the submit host."""
    remote = ctx.obj["remote"]
    if not (remote["user"] and remote["host"]):
        config = _load(ctx)
        remote = {"user": config.remote.user, "host": config.remote.host}
    try:
        ok = setup_ssh_key(remote["user"], remote["host"], key_path=key_path)
    except CondorBoxError as e:
        error_console.print(f"❌ {e}")
        raise typer.Exit(code=1)
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def run(
    commands: Annotated[list[str], typer.Argument(help="Shell commands to run")],
    work_dir: Annotated[Optional[list[Path]], typer.Option("--work-dir", "-w", help="Working directory per command")] = None,
    parallel: Annotated[bool, typer.Option("--parallel", help="Run on a worker pool")] = False,
    workers: Annotated[Optional[int], typer.Option("--workers", help="Pool size")] = None,
    show_output: Annotated[bool, typer.Option("--output", help="Capture and print command output")] = False,
    log_file: Annotated[Optional[Path], typer.Option("--log-file", help="Write a results log")] = None,
):
    """Run shell commands sequentially or in parallel."""
    try:
        results = run_commands(
            commands,
            work_dirs=work_dir or None,
            parallel=parallel,
            workers=workers,
            verbose=show_output,
            save_log=log_file is not None,
            log_file=log_file or "execution_log.txt",
        )
    except ValueError as e:
        error_console.print(str(e))
        raise typer.Exit(code=1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Command")
    table.add_column("Status")
    for result in results:
        status = "[green]✓ success[/]" if result.success else "[red]❌ failed[/]"
        table.add_row(str(result.index), result.command, status)
    console.print(table)

    if show_output:
        for result in results:
            if result.output:
                console.print(f"\n[bold]{result.command}[/]")
                console.print(result.output, markup=False, highlight=False)

    if not all(result.success for result in results):
        raise typer.Exit(code=1)


# Template group
template_app = typer.Typer(help="Write starter scripts")
app.add_typer(template_app, name="template")


@template_app.command("condor")
def template_condor(
    output: Annotated[Path, typer.Option("--output", "-o")] = Path("launch_condor.py"),
):
    """Write a script that submits a job and collects its output."""
    path = generate_condor_template(output)
    console.print(f"✓ Template script saved to '{path}'", style="green")


@template_app.command("rserver")
def template_rserver(
    output: Annotated[Path, typer.Option("--output", "-o")] = Path("launch_rserver.py"),
):
    """Write a script that launches an RStudio Server container."""
    path = generate_rserver_template(output)
    console.print(f"✓ Template script saved to '{path}'", style="green")


def main():
    app()


if __name__ == "__main__":
    main()
