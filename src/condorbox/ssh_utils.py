"""SSH utilities for remote execution and file transfer."""

from __future__ import annotations

import logging
import posixpath
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import RemoteConfig

logger = logging.getLogger(__name__)


DEFAULT_SSH_OPTIONS = [
    '-o', 'StrictHostKeyChecking=accept-new',
    '-o', 'LogLevel=ERROR',
    '-o', 'ConnectTimeout=10',
    '-o', 'BatchMode=yes',
]


class SSHClient:
    """Thin wrapper around the ``ssh`` and ``scp`` executables."""

    def __init__(
        self,
        host: str,
        user: str,
        port: int = 22,
        ssh_options: list[str] | None = None,
        login_shell: bool = True,
    ):
        """Initialize SSH client

        Args:
            host: Remote host address
            user: Username for SSH connection
            port: SSH port (default: 22)
            ssh_options: Extra ``-o`` options passed to ssh and scp
            login_shell: Wrap remote commands in ``bash -l -c`` so the remote
                PATH (condor_*, docker) is loaded. Disable for Windows hosts.
        """
        self.host = host
        self.user = user
        self.port = port
        self.login_shell = login_shell
        self.ssh_executable = self._find_executable("ssh")
        self.scp_executable = self._find_executable("scp")
        self.ssh_options = list(DEFAULT_SSH_OPTIONS if ssh_options is None else ssh_options)

    @classmethod
    def from_config(cls, remote: RemoteConfig) -> "SSHClient":
        """Build a client from the ``remote`` config section."""
        return cls(
            host=remote.host,
            user=remote.user,
            port=remote.port,
            login_shell=remote.os.value != "windows",
        )

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}"

    def _find_executable(self, name: str) -> str:
        """Find an OpenSSH executable on the system."""
        path = shutil.which(name)
        if path:
            return path

        for candidate in (f"/usr/bin/{name}", f"/usr/local/bin/{name}", f"/bin/{name}"):
            if Path(candidate).exists():
                return candidate

        return name

    def build_ssh_command(self, command: str) -> list[str]:
        """Build the raw SSH argument list for a remote command."""
        if self.login_shell:
            command = f"bash -l -c {shlex.quote(command)}"

        return [
            self.ssh_executable,
            f'-p{self.port}',
            *self.ssh_options,
            self.target,
            command,
        ]

    def run_command(
        self,
        command: str,
        timeout: float | None = 60,
        input: str | None = None,
    ) -> tuple[bool, str, str]:
        """Run command on remote host

        Args:
            command: Command to execute
            timeout: Command timeout in seconds (``None`` waits forever)
            input: Text written to the remote command's stdin

        Returns:
            Tuple of (success, stdout, stderr)
        """
        ssh_cmd = self.build_ssh_command(command)
        logger.debug("ssh %s: %s", self.target, command)

        try:
            result = subprocess.run(
                ssh_cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return False, "", f"Command timed out after {timeout} seconds"
        except OSError as e:
            return False, "", f"SSH error: {e}"

        if result.returncode != 0:
            logger.debug("ssh exited with %s: %s", result.returncode, result.stderr.strip())
        return result.returncode == 0, result.stdout, result.stderr

    def test_connection(self) -> bool:
        """Test SSH connection to host

        Returns:
            True if connection successful, False otherwise
        """
        success, stdout, _ = self.run_command('echo "connection_test"', timeout=15)
        return success and "connection_test" in stdout

    def make_dir(self, remote_path: str) -> bool:
        """Create a remote directory (and parents)."""
        success, _, stderr = self.run_command(f"mkdir -p {shlex.quote(remote_path)}")
        if not success:
            logger.error("Could not create %s on %s: %s", remote_path, self.host, stderr.strip())
        return success

    def remove(self, remote_path: str) -> bool:
        """Remove a remote file or directory tree."""
        success, _, stderr = self.run_command(f"rm -rf {shlex.quote(remote_path)}")
        if not success:
            logger.warning("Could not remove %s on %s: %s", remote_path, self.host, stderr.strip())
        return success

    def _scp(self, args: list[str], timeout: float | None) -> bool:
        scp_cmd = [
            self.scp_executable,
            '-P', str(self.port),
            *self.ssh_options,
            *args,
        ]
        try:
            result = subprocess.run(
                scp_cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.error("scp failed: %s", e)
            return False

        if result.returncode != 0:
            logger.error("scp exited with %s: %s", result.returncode, result.stderr.strip())
        return result.returncode == 0

    def remote_spec(self, remote_path: str) -> str:
        return f"{self.target}:{remote_path}"

    def copy_file(self, local_path: str | Path, remote_path: str, timeout: float | None = None) -> bool:
        """Copy file to remote host"""
        return self._scp([str(local_path), self.remote_spec(remote_path)], timeout)

    def pull_file(self, remote_path: str, local_path: str | Path, timeout: float | None = None) -> bool:
        """Copy a single remote file to a local path"""
        return self._scp([self.remote_spec(remote_path), str(local_path)], timeout)

    def pull_dir(self, remote_path: str, local_path: str | Path, timeout: float | None = None) -> bool:
        """Recursively copy a remote folder (or wildcard pattern) into a local directory"""
        Path(local_path).mkdir(parents=True, exist_ok=True)
        return self._scp(['-r', self.remote_spec(remote_path), str(local_path)], timeout)

    def stream_command(self, command: str, local_command: list[str]) -> bool:
        """Pipe the stdout of a remote command into a local command.

        Returns:
            True if both sides exited with status 0
        """
        ssh_cmd = self.build_ssh_command(command)
        logger.debug("ssh %s: %s | %s", self.target, command, " ".join(local_command))

        try:
            with subprocess.Popen(ssh_cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL) as remote:
                local = subprocess.run(
                    local_command,
                    stdin=remote.stdout,
                    capture_output=True,
                    check=False,
                )
                remote.stdout.close()
                remote_status = remote.wait()
        except OSError as e:
            logger.error("Streaming from %s failed: %s", self.host, e)
            return False

        if local.returncode != 0:
            logger.error("Local command failed: %s", local.stderr.decode(errors="replace").strip())
        return remote_status == 0 and local.returncode == 0


def remote_join(*parts: str) -> str:
    """Join remote (POSIX) path components."""
    return posixpath.join(*parts)
