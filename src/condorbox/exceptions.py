"""Exceptions raised by condorbox."""


class CondorBoxError(Exception):
    """Base class for condorbox errors."""


class UnboxError(CondorBoxError):
    """Raised when a job output archive cannot be downloaded or unpacked."""


class SSHKeyError(CondorBoxError):
    """Raised when a local SSH key cannot be generated or read."""


class GitHubAPIError(CondorBoxError):
    """Raised when the GitHub API rejects a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
