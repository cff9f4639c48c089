"""HTCondor job status polling."""

from __future__ import annotations

import logging
import posixpath
import shlex
import time
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from .ssh_utils import SSHClient

logger = logging.getLogger(__name__)


class JobStatus(IntEnum):
    """``JobStatus`` ClassAd values as reported by ``condor_q``."""
    IDLE = 1
    RUNNING = 2
    REMOVED = 3
    COMPLETED = 4
    HELD = 5
    TRANSFERRING_OUTPUT = 6
    SUSPENDED = 7


FINISHED_STATUSES = frozenset({JobStatus.REMOVED, JobStatus.COMPLETED})


class WaitOutcome(str, Enum):
    """Why a wait loop stopped."""
    RUNNING = "running"
    FINISHED = "finished"
    GONE = "gone"
    TIMED_OUT = "timed_out"


FORMAT_STATUS = "%s\\n"


def _quote_arg(ssh: SSHClient, value: str) -> str:
    """Quote one ``condor_q`` argument for the remote shell.

    Windows hosts run commands through cmd.exe (no login shell), where single
    quotes are literal; there the argument goes in double quotes with inner
    double quotes backslash-escaped.
    """
    if getattr(ssh, "login_shell", True):
        return shlex.quote(value)
    return '"' + value.replace('"', '\\"') + '"'


def parse_status_codes(output: str) -> list[int]:
    """Parse the integer status codes printed by ``condor_q -format``."""
    codes = []
    for token in output.split():
        try:
            codes.append(int(float(token)))
        except ValueError:
            logger.debug("Ignoring non-numeric status token %r", token)
    return codes


def query_job_status(ssh: SSHClient, job_id: str) -> Optional[list[int]]:
    """Status codes of all procs in a cluster.

    Returns:
        List of codes (empty once the job has left the queue), or None if the
        query itself could not be run
    """
    command = f"condor_q {_quote_arg(ssh, str(job_id))} -format {_quote_arg(ssh, FORMAT_STATUS)} JobStatus"
    success, stdout, stderr = ssh.run_command(command, timeout=60)
    if not success:
        logger.warning("condor_q for job %s failed: %s", job_id, stderr.strip())
        return None
    return parse_status_codes(stdout)


def query_batch_status(ssh: SSHClient, batch_name: str) -> Optional[list[int]]:
    """Status codes of all jobs whose ``BatchName`` matches ``batch_name``."""
    constraint = _quote_arg(ssh, f'BatchName == "{batch_name}"')
    command = f"condor_q -constraint {constraint} -format {_quote_arg(ssh, FORMAT_STATUS)} JobStatus"
    success, stdout, stderr = ssh.run_command(command, timeout=60)
    if not success:
        logger.warning("condor_q for batch %s failed: %s", batch_name, stderr.strip())
        return None
    return parse_status_codes(stdout)


def batch_name_from_folder(folder_name: str) -> str:
    """Derive the batch name that jobs in ``folder_name`` were submitted with.

    ``/data/run_SWO_Batch_3`` -> ``SWO_Batch_3``; names without ``_Batch_`` are
    used as-is.
    """
    name = posixpath.basename(folder_name.rstrip("/"))
    if "_Batch_" in name:
        name = "SWO_Batch_" + name.rsplit("_Batch_", 1)[1]
    return name


def _describe(codes: list[int]) -> str:
    names = []
    for code in codes:
        try:
            names.append(JobStatus(code).name)
        except ValueError:
            names.append(str(code))
    return ",".join(names)


def wait_until_running(
    poll: Callable[[], Optional[list[int]]],
    interval: float = 10.0,
    max_attempts: int | None = 120,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "job",
) -> WaitOutcome:
    """Poll until a job runs, finishes or leaves the queue.

    Args:
        poll: Returns the current status codes, ``[]`` when nothing is queued,
            or None when the status could not be determined
        interval: Seconds to sleep between polls
        max_attempts: Upper bound on polls; None polls until a terminal state
        sleep: Sleep function
        label: Name used in log messages

    Returns:
        The reason the loop stopped
    """
    attempt = 0
    while max_attempts is None or attempt < max_attempts:
        codes = poll()
        attempt += 1

        if codes is None:
            logger.info("%s: status unavailable, retrying", label)
        elif not codes:
            logger.info("%s is no longer in the queue - stopping monitoring", label)
            return WaitOutcome.GONE
        elif JobStatus.RUNNING in codes:
            logger.info("%s is now RUNNING", label)
            return WaitOutcome.RUNNING
        elif all(code in FINISHED_STATUSES for code in codes):
            logger.info("%s finished - stopping monitoring", label)
            return WaitOutcome.FINISHED
        elif JobStatus.HELD in codes:
            logger.warning("%s is HELD - continuing to monitor", label)
        else:
            logger.info("%s still waiting (status: %s)", label, _describe(codes))

        if max_attempts is None or attempt < max_attempts:
            sleep(interval)

    logger.warning("%s did not start after %d checks", label, attempt)
    return WaitOutcome.TIMED_OUT


class CondorMonitor:
    """Waits on jobs in the queue of a remote submit host."""

    def __init__(
        self,
        ssh: SSHClient,
        interval: float = 10.0,
        max_attempts: int | None = 120,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ssh = ssh
        self.interval = interval
        self.max_attempts = max_attempts
        self.sleep = sleep

    def wait_for_job(self, job_id: str) -> WaitOutcome:
        """Wait until the cluster ``job_id`` is running or gone."""
        return wait_until_running(
            lambda: query_job_status(self.ssh, job_id),
            interval=self.interval,
            max_attempts=self.max_attempts,
            sleep=self.sleep,
            label=f"Job {job_id}",
        )

    def wait_for_batch(self, batch_name: str) -> WaitOutcome:
        """Wait until any job of ``batch_name`` is running or none is queued."""
        logger.info("Waiting for batch '%s' to start running...", batch_name)
        return wait_until_running(
            lambda: query_batch_status(self.ssh, batch_name),
            interval=self.interval,
            max_attempts=self.max_attempts,
            sleep=self.sleep,
            label=f"Batch '{batch_name}'",
        )
