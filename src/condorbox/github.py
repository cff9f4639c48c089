"""SSH key setup for GitHub and remote hosts."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from datetime import date
from pathlib import Path
from typing import Any, Callable

import requests
from rich.console import Console
from rich.prompt import Prompt

from .exceptions import GitHubAPIError, SSHKeyError

logger = logging.getLogger(__name__)

console = Console()

GITHUB_KEYS_URL = "https://api.github.com/user/keys"
DEFAULT_KEY_PATH = Path("~/.ssh/id_rsa")

_AGENT_VAR = re.compile(r"(SSH_AUTH_SOCK|SSH_AGENT_PID)=([^;]+);")


class GitHubKeysClient:
    """Minimal client for the authenticated user's SSH keys."""

    def __init__(self, token: str, session: requests.Session | None = None, timeout: float = 30):
        if not token:
            raise ValueError("GitHub token is required to manage SSH keys.")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
        })
        self.timeout = timeout

    def list_keys(self) -> list[dict[str, Any]]:
        """Return the keys registered on the account."""
        response = self.session.get(GITHUB_KEYS_URL, timeout=self.timeout)
        if response.status_code != 200:
            raise GitHubAPIError(
                "Failed to retrieve SSH keys. Ensure your GitHub token has the 'read:public_key' scope.",
                status_code=response.status_code,
            )
        return response.json()

    def add_key(self, title: str, key: str) -> requests.Response:
        return self.session.post(
            GITHUB_KEYS_URL, json={"title": title, "key": key}, timeout=self.timeout
        )

    def delete_key(self, key_id: str | int) -> bool:
        response = self.session.delete(f"{GITHUB_KEYS_URL}/{key_id}", timeout=self.timeout)
        if response.status_code != 204:
            logger.warning("Failed to delete key with ID '%s': %s", key_id, response.text)
            return False
        return True


def key_already_registered(response: requests.Response) -> bool:
    """True for the 422 GitHub returns when a key is already on an account."""
    if response.status_code != 422:
        return False
    try:
        errors = response.json().get("errors", [])
    except ValueError:
        return False
    return any("key is already in use" in str(error.get("message", "")) for error in errors)


def parse_key_selection(raw: str, keys: list[dict[str, Any]]) -> list[str]:
    """Resolve user input into key ids.

    Each comma separated entry is a 1-based index into ``keys`` when it is a
    number in range; any other entry is taken as a key id. ``0`` is never a
    valid index or id and is skipped.
    """
    ids = []
    for entry in (part.strip() for part in raw.split(",")):
        if not entry:
            continue
        if entry.isdigit() and 1 <= int(entry) <= len(keys):
            ids.append(str(keys[int(entry) - 1]["id"]))
        elif entry.isdigit() and int(entry) == 0:
            console.print(f"Invalid index: {entry}. Skipping.", style="yellow")
        else:
            ids.append(entry)
    return ids


def clean_github_ssh_keys_interactive(
    github_token: str,
    prompt: Callable[[str], str] | None = None,
    client: GitHubKeysClient | None = None,
) -> list[str]:
    """List the account's SSH keys and delete the ones the user selects.

    Returns:
        IDs of the keys that were deleted
    """
    client = client or GitHubKeysClient(github_token)
    prompt = prompt or (lambda message: Prompt.ask(message, default="", show_default=False))

    keys = client.list_keys()
    if not keys:
        console.print("No SSH keys found on your GitHub account.")
        return []

    console.print("\nSSH keys associated with your GitHub account:\n", style="bold")
    for i, key in enumerate(keys, start=1):
        console.print(
            f"[{i}] Title: {key.get('title')}\n"
            f"    Created At: {key.get('created_at')}\n"
            f"    ID: {key.get('id')}",
            highlight=False,
            markup=False,
        )

    raw = prompt("\nEnter the numbers or IDs of the keys to delete (comma-separated), or press Enter to skip")
    if not raw.strip():
        console.print("No keys selected for deletion.")
        return []

    ids = parse_key_selection(raw, keys)
    if not ids:
        console.print("No valid keys selected for deletion.")
        return []

    deleted = []
    for key_id in ids:
        if client.delete_key(key_id):
            console.print(f"✓ Key with ID '{key_id}' successfully deleted.", style="green")
            deleted.append(key_id)
        else:
            console.print(f"❌ Failed to delete key with ID '{key_id}'.", style="red")

    console.print("\n=== SSH Key Management Complete ===", style="bold green")
    return deleted


def ensure_ssh_key(key_path: Path | str = DEFAULT_KEY_PATH, comment: str = "Generated SSH Key") -> Path:
    """Generate an RSA key pair at ``key_path`` unless one already exists.

    Returns:
        Path of the private key
    """
    key_path = Path(key_path).expanduser()
    ssh_dir = key_path.parent
    if not ssh_dir.exists():
        logger.info("Creating %s directory...", ssh_dir)
        ssh_dir.mkdir(parents=True, mode=0o700)

    if key_path.exists():
        logger.info("SSH key already exists at: %s", key_path)
        return key_path

    keygen = shutil.which("ssh-keygen")
    if not keygen:
        raise SSHKeyError("ssh-keygen not found. Please install the OpenSSH client.")

    logger.info("Generating SSH key...")
    result = subprocess.run(
        [keygen, "-q", "-t", "rsa", "-b", "4096", "-C", comment, "-f", str(key_path), "-N", ""],
        capture_output=True,
        text=True,
        check=False,
    )
    public_key = key_path.with_name(key_path.name + ".pub")
    if result.returncode != 0 or not public_key.exists():
        raise SSHKeyError(f"SSH key generation failed. Details:\n{result.stdout}{result.stderr}")

    logger.info("SSH key generated at: %s", key_path)
    return key_path


def read_public_key(key_path: Path) -> str:
    public_key = key_path.with_name(key_path.name + ".pub")
    try:
        return public_key.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise SSHKeyError("Failed to read the public key. Ensure SSH key generation was successful.") from e


def start_ssh_agent() -> bool:
    """Start an ssh-agent and export its socket into this process' environment."""
    try:
        result = subprocess.run(["ssh-agent", "-s"], capture_output=True, text=True, check=False)
    except OSError as e:
        logger.error("Failed to start the SSH agent: %s", e)
        return False

    found = dict(_AGENT_VAR.findall(result.stdout))
    if "SSH_AUTH_SOCK" not in found:
        logger.error("Failed to start the SSH agent. Please start it manually.")
        return False
    os.environ.update(found)
    return True


def upload_github_key(client: GitHubKeysClient, public_key: str, title: str | None = None) -> bool:
    """Register ``public_key`` on the account; an already registered key counts as success."""
    title = title or f"condorbox key - {date.today().isoformat()}"
    response = client.add_key(title, public_key)
    if response.status_code == 201:
        console.print("✓ SSH key successfully added to your GitHub account.", style="green")
        return True
    if key_already_registered(response):
        console.print("The SSH key is already registered with your GitHub account. Proceeding...")
        return True
    console.print("❌ Failed to add SSH key to GitHub. Please add it manually.", style="red")
    console.print(response.text, markup=False)
    return False


def check_github_connection() -> bool:
    """Check that ``ssh -T git@github.com`` authenticates."""
    try:
        result = subprocess.run(
            ["ssh", "-o", "StrictHostKeyChecking=accept-new", "-T", "git@github.com"],
            capture_output=True,
            text=True,
            timeout=30,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        console.print(f"SSH connection test failed: {e}", style="red")
        return False

    # GitHub exits with status 1 even when authentication succeeds
    output = (result.stdout + result.stderr).strip()
    if "successfully authenticated" in output:
        console.print("✓ SSH connection successful.", style="green")
        return True
    if output:
        console.print(f"SSH connection failed, but SSH command returned output:\n{output}", markup=False)
    else:
        console.print("SSH connection test failed. Ensure your SSH key is added to GitHub.", style="red")
    return False


def configure_git_identity(github_username: str, email: str) -> None:
    subprocess.run(["git", "config", "--global", "user.name", github_username], check=False)
    subprocess.run(["git", "config", "--global", "user.email", email], check=False)
    result = subprocess.run(["git", "config", "--global", "--list"], capture_output=True, text=True, check=False)
    console.print("\nGit configuration set:", style="bold")
    console.print(result.stdout, markup=False)


def setup_github_ssh(
    email: str,
    github_username: str,
    github_token: str | None = None,
    key_path: Path | str = DEFAULT_KEY_PATH,
    client: GitHubKeysClient | None = None,
) -> Path:
    """Set up SSH access to GitHub for this machine.

    Generates a key if needed, uploads it when a token with the
    ``write:public_key`` scope is given (otherwise prints it for manual
    upload), loads it into an ssh-agent, tests the connection and sets the
    global git identity.

    Returns:
        Path of the private key
    """
    key_path = ensure_ssh_key(key_path, comment=email)
    public_key = read_public_key(key_path)

    if github_token or client is not None:
        upload_github_key(client or GitHubKeysClient(github_token), public_key)
    else:
        console.print("\nNo GitHub token provided. Add the SSH key manually:")
        console.print(public_key, markup=False)
        console.print("\nGo to: https://github.com/settings/keys, click 'New SSH key', and paste the key above.")

    console.print("\nAdding SSH key to the SSH agent...")
    if not start_ssh_agent():
        raise SSHKeyError("Failed to start the SSH agent. Please start it manually.")
    subprocess.run(["ssh-add", str(key_path)], capture_output=True, check=False)

    console.print("\nTesting SSH connection to GitHub...")
    check_github_connection()

    console.print("\nSetting global Git configuration...")
    configure_git_identity(github_username, email)

    console.print("\n=== Setup Complete ===", style="bold green")
    return key_path


def setup_ssh_key(remote_user: str, remote_host: str, key_path: Path | str = DEFAULT_KEY_PATH) -> bool:
    """Ensure a local key exists and install it on ``remote_user@remote_host``.

    ``ssh-copy-id`` runs attached to the terminal so it can ask for the
    remote password.
    """
    key_path = ensure_ssh_key(key_path)

    if not remote_user or not remote_host:
        console.print("No remote server specified. Skipping SSH key copying.")
        return False

    console.print("Copying SSH key to remote server...")
    result = subprocess.run(
        ["ssh-copy-id", "-i", str(key_path.with_name(key_path.name + ".pub")), f"{remote_user}@{remote_host}"],
        check=False,
    )
    if result.returncode != 0:
        console.print("❌ Copying the SSH key failed.", style="red")
        return False
    console.print("✓ SSH key copied to remote server successfully.", style="green")
    return True
