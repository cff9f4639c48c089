"""Submit a GitHub project as an HTCondor docker-universe job.

The workflow is linear:

1. Render the clone/run scripts, the environment file and the submit
   descriptor into a local staging directory
2. Create the remote job directory and copy the files over with scp
3. Optionally log the remote docker daemon into ghcr.io
4. Run ``condor_submit`` and pick the cluster id out of its output
5. Wait for the job to start, then delete the remote clone script (it holds
   the personal access token)
6. Delete the local files, whatever happened remotely
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .monitor import CondorMonitor, WaitOutcome
from .ssh_utils import SSHClient, remote_join
from .templates import CLONE_SCRIPT, SUBMIT_FILE, JobFiles, write_job_files

if TYPE_CHECKING:
    from .config import CondorBoxConfig

logger = logging.getLogger(__name__)


UNKNOWN_JOB_ID = "unknown"
REGISTRY = "ghcr.io"
LINUX_DOCKER_CONFIG = "/tmp/docker_config"

_CLUSTER_LINE = re.compile(r"cluster", re.IGNORECASE)
_NUMBER = re.compile(r"\d+")


@dataclass
class SubmitResult:
    """Outcome of one submission."""
    job_id: str
    batch_name: str
    output: list[str] = field(default_factory=list)
    clone_script_removed: bool = False

    @property
    def submitted(self) -> bool:
        return self.job_id != UNKNOWN_JOB_ID


def extract_job_id(lines: list[str]) -> str | None:
    """Pick the cluster id out of ``condor_submit`` output.

    ``"1 job(s) submitted to cluster 8445."`` yields ``"8445"``. Lines that
    mention a cluster are preferred; failing that, the last number of the
    first line containing any digits is used.
    """
    for line in lines:
        if _CLUSTER_LINE.search(line):
            numbers = _NUMBER.findall(line)
            if numbers:
                return numbers[-1]

    for line in lines:
        numbers = _NUMBER.findall(line)
        if numbers:
            return numbers[-1]

    return None


class CondorSubmitter:
    """Runs the CondorBox submission workflow for one configuration."""

    def __init__(
        self,
        config: CondorBoxConfig,
        ssh: SSHClient | None = None,
        monitor: CondorMonitor | None = None,
        staging_dir: Path | None = None,
    ):
        """Initialize submitter

        Args:
            config: Validated configuration; ``github``, ``job`` and
                ``remote.dir`` must be set
            ssh: Client for the submit host (built from config if omitted)
            monitor: Status poller (built from the job settings if omitted)
            staging_dir: Directory for the generated files; a temporary
                directory is used if omitted
        """
        if config.github is None:
            raise ValueError("github settings are required to submit a job")
        if config.job is None:
            raise ValueError("job settings are required to submit a job")
        if not config.remote.dir:
            raise ValueError("remote.dir is required to submit a job")

        self.config = config
        self.ssh = ssh or SSHClient.from_config(config.remote)
        self.monitor = monitor or CondorMonitor(
            self.ssh,
            interval=config.job.poll_interval,
            max_attempts=config.job.max_attempts,
        )
        self.staging_dir = staging_dir
        self.remote_dir = self._normalise_remote_dir(config.remote.dir)

    @staticmethod
    def _normalise_remote_dir(remote_dir: str) -> str:
        if os.name == "nt":
            return remote_dir.replace("\\", "/")
        return remote_dir

    def submit(self) -> SubmitResult:
        """Submit the job and supervise clone script removal.

        Returns:
            Submission result; ``job_id`` is ``"unknown"`` if no id could be
            read from the submit output
        """
        job = self.config.job
        created_dir = self.staging_dir is None
        staging_dir = Path(tempfile.mkdtemp(prefix="condorbox_")) if created_dir else Path(self.staging_dir)
        files: JobFiles | None = None

        try:
            files = write_job_files(
                staging_dir,
                github=self.config.github,
                docker_image=job.docker_image,
                target_folder=job.target_folder,
                make_options=job.make_options,
                resources=self.config.resources,
                environment=job.environment,
                batch_name=job.batch_name,
                stream_error=job.stream_error,
            )

            logger.info("Creating remote directory %s...", self.remote_dir)
            self.ssh.make_dir(self.remote_dir)

            logger.info("Transferring files...")
            self.transfer(files)

            if job.registry_login:
                self.registry_login()

            submitted, output = self.run_condor_submit()
            job_id = extract_job_id(output) if submitted else None

            if not job_id:
                if submitted:
                    logger.error("Job submitted but could not extract job ID")
                else:
                    logger.error("condor_submit failed; the job was not queued")
                for line in output:
                    logger.error("  %s", line)
                return SubmitResult(job_id=UNKNOWN_JOB_ID, batch_name=job.batch_name or "", output=output)

            batch_name = job.batch_name or job_id
            logger.info("Job submitted successfully! Job ID: %s, Batch Name: %s", job_id, batch_name)

            removed = False
            if job.remove_clone_script:
                removed = self.remove_clone_script_when_started(job_id)

            return SubmitResult(job_id=job_id, batch_name=batch_name, output=output, clone_script_removed=removed)
        finally:
            self._cleanup_local(files, staging_dir, created_dir)
            logger.info("Process completed.")

    def transfer(self, files: JobFiles) -> dict[str, bool]:
        """Copy every generated file into the remote directory.

        A failed copy is reported and the remaining files are still sent.
        """
        results = {}
        for path in files.all():
            ok = self.ssh.copy_file(path, remote_join(self.remote_dir, path.name))
            if not ok:
                logger.error("Failed to transfer %s", path.name)
            results[path.name] = ok
        return results

    def registry_login(self) -> bool:
        """Log the remote docker daemon into ghcr.io with the GitHub token."""
        logger.info("Performing docker login...")
        github = self.config.github
        user = shlex.quote(github.username)

        if self.config.remote.os.value == "windows":
            config_cmd = (
                'mkdir %USERPROFILE%\\.docker && '
                'echo {"credsStore": "wincred"} > %USERPROFILE%\\.docker\\config.json'
            )
            login_cmd = f"docker login {REGISTRY} -u {user} --password-stdin"
        else:
            config_cmd = f"mkdir -p {LINUX_DOCKER_CONFIG} && echo '{{}}' > {LINUX_DOCKER_CONFIG}/config.json"
            login_cmd = f"DOCKER_CONFIG={LINUX_DOCKER_CONFIG} docker login {REGISTRY} -u {user} --password-stdin"

        self.ssh.run_command(config_cmd)
        # Token goes over stdin so it never shows up in a process list
        success, _, stderr = self.ssh.run_command(login_cmd, input=github.pat.get_secret_value() + "\n")
        if not success:
            logger.error("docker login failed: %s", stderr.strip())
        return success

    def run_condor_submit(self) -> tuple[bool, list[str]]:
        """Run ``condor_submit`` remotely.

        Returns:
            Tuple of (success, output lines)
        """
        logger.info("Submitting job...")
        command = f"cd {shlex.quote(self.remote_dir)} && condor_submit {SUBMIT_FILE}"
        success, stdout, stderr = self.ssh.run_command(command, timeout=300)
        if not success:
            logger.error("condor_submit reported a failure")

        output = [line for line in (stdout + stderr).splitlines() if line.strip()]
        logger.info("Submit result:")
        for line in output:
            logger.info("  %s", line)
        return success, output

    def remove_clone_script_when_started(self, job_id: str) -> bool:
        """Delete the remote clone script once the job no longer needs it.

        The script is input to the job, so it may only go once the job is
        running or has left the queue.
        """
        logger.info("Setting up clone script monitoring...")
        outcome = self.monitor.wait_for_job(job_id)

        if outcome is WaitOutcome.TIMED_OUT:
            logger.warning(
                "Job %s has not started; %s was left in %s",
                job_id, CLONE_SCRIPT, self.remote_dir,
            )
            return False

        removed = self.ssh.remove(remote_join(self.remote_dir, CLONE_SCRIPT))
        if removed:
            logger.info("Clone script deleted successfully")
        return removed

    def _cleanup_local(self, files: JobFiles | None, staging_dir: Path, created_dir: bool) -> None:
        if created_dir:
            shutil.rmtree(staging_dir, ignore_errors=True)
            return
        if files is not None:
            for path in files.all():
                path.unlink(missing_ok=True)


def submit_job(
    config: CondorBoxConfig,
    ssh: SSHClient | None = None,
    monitor: CondorMonitor | None = None,
    staging_dir: Path | None = None,
) -> SubmitResult:
    """Submit a job via HTCondor and docker; see ``CondorSubmitter``."""
    return CondorSubmitter(config, ssh=ssh, monitor=monitor, staging_dir=staging_dir).submit()
