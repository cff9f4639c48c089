"""Synchronise a finished job's output archive into a local project."""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn

from .exceptions import UnboxError
from .ssh_utils import remote_join
from .templates import OUTPUT_ARCHIVE

if TYPE_CHECKING:
    from .ssh_utils import SSHClient

logger = logging.getLogger(__name__)


@dataclass
class UnboxSummary:
    """Files moved into and skipped in the destination directory."""
    moved: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)


def _extract_tar(archive: Path, destination: Path) -> None:
    with tarfile.open(archive) as tar:
        if hasattr(tarfile, "data_filter"):
            tar.extractall(destination, filter="data")
        else:
            tar.extractall(destination)


def single_top_level_dir(root: Path) -> Path:
    """Return the only directory directly below ``root``."""
    dirs = [p for p in root.iterdir() if p.is_dir()]
    if len(dirs) != 1:
        raise UnboxError("The archive does not have a single top-level directory.")
    return dirs[0]


def sync_tree(source: Path, destination: Path, overwrite: bool = False) -> UnboxSummary:
    """Move every file below ``source`` to the same relative path in ``destination``."""
    summary = UnboxSummary()
    for path in sorted(source.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(source)
        dest_path = destination / relative

        if dest_path.exists() and not overwrite:
            logger.info("Skipping existing file: %s", relative)
            summary.skipped.append(relative)
            continue

        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(path), str(dest_path))
        summary.moved.append(relative)
    return summary


def unbox(
    ssh: SSHClient,
    remote_dir: str,
    local_dir: Path | str | None = None,
    remote_output_file: str = OUTPUT_ARCHIVE,
    overwrite: bool = False,
    console: Console | None = None,
) -> UnboxSummary:
    """Download a job's output archive and merge it into a local directory.

    The archive is expected to contain a single top-level folder (the
    repository or target folder the job ran in); its contents are moved into
    ``local_dir`` with that folder stripped.

    Args:
        ssh: Client for the submit host
        remote_dir: Remote job directory holding the archive
        local_dir: Destination, typically the local clone (default: cwd)
        remote_output_file: Archive name on the remote host
        overwrite: Replace files that already exist locally
        console: Console for the progress bar

    Returns:
        Summary of moved and skipped files
    """
    destination = Path(local_dir) if local_dir is not None else Path.cwd()
    console = console or Console(stderr=True)

    with tempfile.TemporaryDirectory(prefix="condorbox_unbox_") as tmp, Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Downloading output archive", total=3)
        archive = Path(tmp) / Path(remote_output_file).name

        if not ssh.pull_file(remote_join(remote_dir, remote_output_file), archive):
            raise UnboxError(f"Failed to download the output archive {remote_output_file}")
        logger.info("Output archive downloaded successfully to: %s", archive)
        progress.update(task, advance=1, description="Extracting output archive")

        extract_dir = Path(tmp) / "extract"
        extract_dir.mkdir()
        try:
            _extract_tar(archive, extract_dir)
        except (tarfile.TarError, OSError) as e:
            raise UnboxError(f"Failed to extract the archive: {e}") from e
        progress.update(task, advance=1, description="Synchronising files")

        destination.mkdir(parents=True, exist_ok=True)
        summary = sync_tree(single_top_level_dir(extract_dir), destination, overwrite=overwrite)
        progress.update(task, advance=1, description="Cleaning up")

    logger.info("Archive extracted successfully to: %s", destination)
    if summary.skipped:
        logger.info("%d files were skipped as they already exist.", len(summary.skipped))
    return summary
