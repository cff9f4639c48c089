# tests/conftest.py
import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class FakeSSHClient:
    """Records remote calls and answers them from scripted results."""

    def __init__(self, host="submit.example.org", user="alice"):
        self.host = host
        self.user = user
        self.commands = []
        self.inputs = []
        self.copied = []
        self.pulled = []
        self.removed = []
        self.made = []
        self.streamed = []
        # substring -> list of (success, stdout, stderr) consumed in order
        self.responses = {}
        self.copy_ok = True
        self.remove_ok = True
        self.pull_ok = True
        self.stream_ok = True
        self.pull_source = None

    def respond(self, fragment, *results):
        self.responses.setdefault(fragment, []).extend(results)

    def run_command(self, command, timeout=60, input=None):
        self.commands.append(command)
        self.inputs.append(input)
        for fragment, results in self.responses.items():
            if fragment in command and results:
                return results.pop(0) if len(results) > 1 else results[0]
        return True, "", ""

    def make_dir(self, remote_path):
        self.made.append(remote_path)
        return True

    def remove(self, remote_path):
        self.removed.append(remote_path)
        return self.remove_ok

    def copy_file(self, local_path, remote_path, timeout=None):
        self.copied.append((Path(local_path), remote_path))
        return self.copy_ok

    def pull_file(self, remote_path, local_path, timeout=None):
        self.pulled.append((remote_path, Path(local_path)))
        if self.pull_ok and self.pull_source is not None:
            Path(local_path).write_bytes(Path(self.pull_source).read_bytes())
        return self.pull_ok

    def pull_dir(self, remote_path, local_path, timeout=None):
        self.pulled.append((remote_path, Path(local_path)))
        return self.pull_ok

    def stream_command(self, command, local_command):
        self.streamed.append((command, local_command))
        return self.stream_ok


@pytest.fixture
def fake_ssh():
    return FakeSSHClient()


@pytest.fixture
def github_settings():
    return {
        "pat": "ghp_secrettoken123",
        "username": "octocat",
        "org": "octo-org",
        "repo": "analysis",
        "branch": "main",
    }


@pytest.fixture
def base_settings(github_settings):
    return {
        "remote": {"user": "alice", "host": "submit.example.org", "dir": "/home/alice/jobs/run1"},
        "github": github_settings,
        "resources": {"cpus": 4, "memory": "6GB"},
        "job": {"docker_image": "ghcr.io/octo-org/analysis:latest", "poll_interval": 0},
    }
