"""Run shell commands sequentially or across a worker pool."""

from __future__ import annotations

import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import psutil

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of one command."""
    index: int
    command: str
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    work_dir: Optional[Path] = None


def default_workers() -> int:
    """One less than the number of CPUs, at least one."""
    return max(1, (psutil.cpu_count(logical=True) or 2) - 1)


def _resolve_work_dirs(
    commands: Sequence[str],
    work_dirs: Sequence[str | Path] | None,
) -> list[Optional[Path]]:
    if work_dirs is None:
        return [None] * len(commands)
    if len(work_dirs) != len(commands):
        raise ValueError("The length of 'work_dirs' must match the length of 'commands'.")

    resolved = []
    for work_dir in work_dirs:
        path = Path(work_dir).expanduser()
        if not path.is_dir():
            raise ValueError(f"Working directory does not exist: {work_dir}")
        resolved.append(path.resolve())
    return resolved


def run_command(index: int, command: str, work_dir: Path | None = None, verbose: bool = False) -> CommandResult:
    """Run one shell command, optionally inside ``work_dir``.

    Output is kept only when ``verbose``; it is discarded otherwise.
    """
    logger.info("[Running Command %d]: %s", index, command)
    logger.debug("Working directory: %s", work_dir or Path.cwd())

    try:
        completed = subprocess.run(
            command,
            shell=True,
            cwd=work_dir,
            stdout=subprocess.PIPE if verbose else subprocess.DEVNULL,
            stderr=subprocess.PIPE if verbose else subprocess.DEVNULL,
            text=True,
            check=False,
        )
    except OSError as e:
        result = CommandResult(index, command, False, error=str(e), work_dir=work_dir)
    else:
        success = completed.returncode == 0
        error = None
        if not success:
            error = (completed.stderr or "").strip() or f"exit status {completed.returncode}"
        result = CommandResult(
            index,
            command,
            success,
            output=completed.stdout if verbose else None,
            error=error,
            work_dir=work_dir,
        )

    status = "Finished" if result.success else "Failed"
    logger.info("[%s Command %d]: %s", status, index, command)
    return result


def format_log(results: Sequence[CommandResult]) -> str:
    lines = ["[Execution Results]"]
    for result in results:
        lines.append(f"- Command: {result.command}")
        if result.success:
            lines.append("  Status: Success")
            lines.append(f"  Output: {result.output or ''}".rstrip())
        else:
            lines.append("  Status: Failed")
            lines.append(f"  Error: {result.error}")
    return "\n".join(lines) + "\n"


def run_commands(
    commands: Sequence[str],
    work_dirs: Sequence[str | Path] | None = None,
    parallel: bool = False,
    workers: int | None = None,
    verbose: bool = False,
    save_log: bool = False,
    log_file: str | Path = "execution_log.txt",
) -> list[CommandResult]:
    """Execute shell commands and collect their results.

    Args:
        commands: Shell commands to execute
        work_dirs: Working directory for each command (same length as ``commands``)
        parallel: Fan the commands out over a thread pool
        workers: Pool size (default: CPU count - 1)
        verbose: Capture command output
        save_log: Write a summary of the results to ``log_file``
        log_file: Path of the summary log

    Returns:
        One result per command, in input order
    """
    dirs = _resolve_work_dirs(commands, work_dirs)
    jobs = [(i, cmd, d) for i, (cmd, d) in enumerate(zip(commands, dirs), start=1)]

    if parallel:
        workers = workers or default_workers()
        logger.info("Running %d commands in parallel using %d workers...", len(commands), workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(lambda job: run_command(*job, verbose=verbose), jobs))
    else:
        logger.info("Running %d commands sequentially...", len(commands))
        results = [run_command(*job, verbose=verbose) for job in jobs]

    if save_log:
        Path(log_file).write_text(format_log(results), encoding="utf-8")
        logger.info("Logs saved to %s", log_file)

    return results
