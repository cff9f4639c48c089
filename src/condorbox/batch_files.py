"""Fetch, extract and delete files in remote HTCondor batch directories."""

from __future__ import annotations

import logging
import posixpath
import shlex
import shutil
import subprocess
import tempfile
import uuid
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from .monitor import CondorMonitor, batch_name_from_folder
from .ssh_utils import remote_join

if TYPE_CHECKING:
    from .ssh_utils import SSHClient

logger = logging.getLogger(__name__)


class Action(str, Enum):
    DELETE = "delete"
    FETCH = "fetch"


class ExtractMode(str, Enum):
    """What part of an archive to extract."""
    ENTIRE = "entire"
    FOLDER = "folder"
    PATTERN = "pattern"


class ArchiveKind(str, Enum):
    TAR_GZ = "tar.gz"
    ZIP = "zip"


def select_extract_mode(
    extract_entire: bool = False,
    extract_folder: str | None = None,
    extract_pattern: str | None = None,
) -> ExtractMode | None:
    """Pick exactly one extraction mode: entire, then folder, then pattern."""
    if extract_entire:
        return ExtractMode.ENTIRE
    if extract_folder:
        return ExtractMode.FOLDER
    if extract_pattern:
        return ExtractMode.PATTERN
    return None


def archive_kind(name: str) -> ArchiveKind | None:
    if name.endswith((".tar.gz", ".tgz")):
        return ArchiveKind.TAR_GZ
    if name.endswith(".zip"):
        return ArchiveKind.ZIP
    return None


def build_extract_command(
    archive: Path,
    output_dir: Path,
    mode: ExtractMode,
    folder: str | None = None,
    pattern: str | None = None,
) -> list[str]:
    """Build the tar/unzip invocation for one extraction mode.

    For ``FOLDER`` the folder itself is extracted into ``output_dir``; callers
    flatten it afterwards.
    """
    kind = archive_kind(archive.name)
    if kind is None:
        raise ValueError(f"Unsupported archive format: {archive.name}")

    if kind is ArchiveKind.TAR_GZ:
        cmd = ["tar", "-xzf", str(archive), "-C", str(output_dir)]
        if mode is ExtractMode.FOLDER:
            cmd.append(folder.rstrip("/"))
        elif mode is ExtractMode.PATTERN:
            cmd.extend(["--wildcards", pattern])
        return cmd

    cmd = ["unzip", "-q", str(archive)]
    if mode is ExtractMode.FOLDER:
        cmd.append(f"{folder.rstrip('/')}/*")
    elif mode is ExtractMode.PATTERN:
        cmd.append(pattern)
    return cmd + ["-d", str(output_dir)]


def _copy_contents(source: Path, destination: Path) -> None:
    destination.mkdir(parents=True, exist_ok=True)
    shutil.copytree(source, destination, dirs_exist_ok=True)


def extract_archive_locally(
    archive: Path,
    output_dir: Path,
    mode: ExtractMode | None,
    folder: str | None = None,
    pattern: str | None = None,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> bool:
    """Extract a local tar.gz or zip archive.

    Returns:
        True if the extraction command succeeded
    """
    if archive_kind(archive.name) is None:
        logger.error("Unsupported archive format: %s", archive)
        return False
    if mode is None:
        logger.error("No extraction criteria specified for %s", archive.name)
        return False

    output_dir.mkdir(parents=True, exist_ok=True)

    if mode is not ExtractMode.FOLDER:
        if mode is ExtractMode.ENTIRE:
            logger.info("Extracting entire archive %s...", archive.name)
        else:
            logger.info("Extracting files matching pattern: %s", pattern)
        result = runner(build_extract_command(archive, output_dir, mode, pattern=pattern),
                        capture_output=True, text=True, check=False)
        if result.returncode != 0:
            logger.error("Archive extraction failed: %s", result.stderr.strip())
            return False
        logger.info("✓ Archive extracted successfully")
        return True

    # Folder mode: extract into scratch space, then copy only the folder's contents
    with tempfile.TemporaryDirectory(prefix="condorbox_extract_") as tmp:
        scratch = Path(tmp)
        result = runner(build_extract_command(archive, scratch, mode, folder=folder),
                        capture_output=True, text=True, check=False)
        if result.returncode != 0:
            logger.error("Could not extract folder %s: %s", folder, result.stderr.strip())
            return False

        extracted = scratch / folder.strip("/")
        if extracted.is_dir():
            _copy_contents(extracted, output_dir)
            logger.info("Extracted contents of folder: %s", folder)
        else:
            logger.warning("Folder %s not found in %s", folder, archive.name)
    return True


def build_remote_extract_command(
    remote_archive: str,
    remote_tmp: str,
    mode: ExtractMode,
    folder: str | None = None,
    pattern: str | None = None,
) -> str:
    """Shell command that unpacks on the remote host and writes a tar stream to stdout."""
    archive = shlex.quote(remote_archive)
    tmp = shlex.quote(remote_tmp)
    unpack = f"mkdir -p {tmp} && tar -xzf {archive} -C {tmp}"

    if mode is ExtractMode.ENTIRE:
        return f"{unpack} && tar -czf - -C {tmp} ."
    if mode is ExtractMode.FOLDER:
        folder = folder.strip("/")
        return (
            f"{unpack} {shlex.quote(folder)} && "
            f"tar -czf - -C {shlex.quote(posixpath.join(remote_tmp, folder))} ."
        )
    return f"{unpack} --wildcards {shlex.quote(pattern)} && tar -czf - -C {tmp} ."


def extract_archive_remotely(
    ssh: SSHClient,
    remote_archive: str,
    output_dir: Path,
    mode: ExtractMode | None,
    folder: str | None = None,
    pattern: str | None = None,
) -> bool:
    """Unpack on the remote host and stream the selected files back.

    Only tar.gz archives are supported. The remote scratch directory is
    removed afterwards regardless of the outcome.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    if archive_kind(remote_archive) is not ArchiveKind.TAR_GZ:
        logger.error("Direct extraction only supports tar.gz files")
        return False
    if mode is None:
        logger.error("No extraction criteria specified")
        return False

    remote_tmp = f"/tmp/extract_{uuid.uuid4().hex[:12]}"
    command = build_remote_extract_command(remote_archive, remote_tmp, mode, folder, pattern)
    logger.info("Extracting %s directly from remote (%s)...", remote_archive, mode.value)

    try:
        return ssh.stream_command(command, ["tar", "-xzf", "-", "-C", str(output_dir)])
    finally:
        ssh.remove(remote_tmp)


def _fetch_archive(
    ssh: SSHClient,
    folder_name: str,
    archive_name: str,
    fetch_dir: Path,
    mode: ExtractMode | None,
    extract_folder: str | None,
    extract_pattern: str | None,
    direct_extract: bool,
) -> bool:
    remote_archive = remote_join(folder_name, archive_name)

    if direct_extract:
        logger.info("Using direct extraction for: %s", archive_name)
        ok = extract_archive_remotely(ssh, remote_archive, fetch_dir, mode, extract_folder, extract_pattern)
        logger.info("✓ Direct extraction successful" if ok else "❌ Direct extraction failed")
        return ok

    local_archive = fetch_dir / posixpath.basename(archive_name)
    logger.info("Downloading archive: %s", archive_name)
    if not ssh.pull_file(remote_archive, local_archive):
        logger.error("❌ Archive download failed")
        return False
    logger.info("✓ Archive downloaded successfully")

    if not extract_archive_locally(local_archive, fetch_dir, mode, extract_folder, extract_pattern):
        return False

    local_archive.unlink(missing_ok=True)
    logger.info("✓ Temporary archive file removed")
    return True


def _fetch_path(ssh: SSHClient, remote_path: str, file_name: str, fetch_dir: Path) -> bool:
    if file_name.endswith("/") or "*" in file_name:
        logger.info("Fetching folder/pattern...")
        ok = ssh.pull_dir(remote_path, fetch_dir)
    else:
        logger.info("Fetching single file...")
        ok = ssh.pull_file(remote_path, fetch_dir / posixpath.basename(file_name))

    if ok:
        logger.info("✓ fetched successfully")
    else:
        logger.error("❌ fetch failed (maybe file not present)")
    return ok


def handle_batch_file(
    ssh: SSHClient,
    folder_name: str,
    file_name: str | None = None,
    action: str = "delete",
    fetch_dir: Path | str = ".",
    wait_if_running: bool = False,
    check_sec: float = 15,
    extract_archive: bool = False,
    archive_name: str | None = None,
    extract_pattern: str | None = None,
    extract_folder: str | None = None,
    extract_entire: bool = False,
    direct_extract: bool = False,
    monitor: CondorMonitor | None = None,
) -> bool:
    """Delete or fetch files in a remote batch directory.

    Args:
        ssh: Client for the submit host
        folder_name: Remote batch directory (e.g. ``/path/to/SWO_Batch_1``)
        file_name: File or folder inside ``folder_name``; a trailing ``/`` or a
            ``*`` fetches recursively. Optional when extracting an archive.
        action: ``"delete"`` or ``"fetch"``
        fetch_dir: Local destination for fetched files (created if missing)
        wait_if_running: Before deleting, wait until the batch derived from
            ``folder_name`` has a running job
        check_sec: Polling interval while waiting
        extract_archive: Fetch ``archive_name`` and extract it
        archive_name: Archive inside ``folder_name`` (tar.gz/tgz or zip)
        extract_pattern: Extract only members matching this pattern
        extract_folder: Extract only the contents of this folder
        extract_entire: Extract the whole archive
        direct_extract: Unpack on the remote host and stream the result back
        monitor: Status poller used for ``wait_if_running``

    Returns:
        True if the operation succeeded
    """
    try:
        action = Action(action)
    except ValueError:
        raise ValueError(f"action must be 'delete' or 'fetch', got {action!r}") from None

    if action is Action.DELETE and not file_name:
        raise ValueError("file_name is required for delete action")
    if action is Action.FETCH and not extract_archive and not file_name:
        raise ValueError("file_name is required for fetch action when not extracting archive")

    remote_path = remote_join(folder_name, file_name) if file_name else None
    if remote_path:
        logger.info("%s – %s", action.value, remote_path)
    else:
        logger.info("%s – extracting from archive in %s", action.value, folder_name)

    if action is Action.DELETE:
        if wait_if_running:
            monitor = monitor or CondorMonitor(ssh, interval=check_sec, max_attempts=None)
            monitor.wait_for_batch(batch_name_from_folder(folder_name))

        ok = ssh.remove(remote_path)
        if ok:
            logger.info("✓ deleted")
        else:
            logger.error("❌ delete failed (maybe file not present)")
        return ok

    fetch_dir = Path(fetch_dir).expanduser()
    if not fetch_dir.exists():
        fetch_dir.mkdir(parents=True)
        logger.info("Created directory: %s", fetch_dir)

    if extract_archive and archive_name:
        mode = select_extract_mode(extract_entire, extract_folder, extract_pattern)
        return _fetch_archive(
            ssh, folder_name, archive_name, fetch_dir, mode,
            extract_folder, extract_pattern, direct_extract,
        )

    if not file_name:
        logger.error("archive_name is required to extract an archive")
        return False
    return _fetch_path(ssh, remote_path, file_name, fetch_dir)
