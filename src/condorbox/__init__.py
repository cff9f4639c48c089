"""condorbox: run GitHub projects as HTCondor docker-universe jobs."""

__version__ = "0.1.0"

from .batch_files import handle_batch_file
from .config import CondorBoxConfig, load_config
from .docker import clean_docker_resources_interactive, manage_rstudio_server
from .exceptions import CondorBoxError, GitHubAPIError, SSHKeyError, UnboxError
from .github import clean_github_ssh_keys_interactive, setup_github_ssh, setup_ssh_key
from .monitor import CondorMonitor, JobStatus
from .runner import CommandResult, run_commands
from .ssh_utils import SSHClient
from .submit import CondorSubmitter, SubmitResult, submit_job
from .templates import generate_condor_template, generate_rserver_template, write_job_files
from .unbox import unbox

__all__ = [
    "CommandResult",
    "CondorBoxConfig",
    "CondorBoxError",
    "CondorMonitor",
    "CondorSubmitter",
    "GitHubAPIError",
    "JobStatus",
    "SSHClient",
    "SSHKeyError",
    "SubmitResult",
    "UnboxError",
    "clean_docker_resources_interactive",
    "clean_github_ssh_keys_interactive",
    "generate_condor_template",
    "generate_rserver_template",
    "handle_batch_file",
    "load_config",
    "manage_rstudio_server",
    "run_commands",
    "setup_github_ssh",
    "setup_ssh_key",
    "submit_job",
    "unbox",
    "write_job_files",
]
