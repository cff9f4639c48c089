"""Configuration models for condorbox.

Settings come from a YAML file, ``CONDORBOX_*`` environment variables (a local
``.env`` file is honoured) and explicit overrides, in increasing order of
precedence.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator


ENV_PREFIX = "CONDORBOX_"

# Environment variable suffix -> (section, field)
ENV_FIELDS: dict[str, tuple[str, str]] = {
    "REMOTE_USER": ("remote", "user"),
    "REMOTE_HOST": ("remote", "host"),
    "REMOTE_PORT": ("remote", "port"),
    "REMOTE_DIR": ("remote", "dir"),
    "REMOTE_OS": ("remote", "os"),
    "GITHUB_PAT": ("github", "pat"),
    "GITHUB_USERNAME": ("github", "username"),
    "GITHUB_ORG": ("github", "org"),
    "GITHUB_REPO": ("github", "repo"),
    "GITHUB_BRANCH": ("github", "branch"),
    "DOCKER_IMAGE": ("job", "docker_image"),
}


class RemoteOS(str, Enum):
    """Operating system of the submit host."""
    LINUX = "linux"
    WINDOWS = "windows"


class RemoteConfig(BaseModel):
    """Submit host connection settings."""
    user: str = Field(min_length=1)
    host: str = Field(min_length=1)
    port: int = 22
    dir: Optional[str] = None
    os: RemoteOS = RemoteOS.LINUX

    @field_validator("os", mode="before")
    @classmethod
    def lower_os(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class GitHubConfig(BaseModel):
    """Repository coordinates and credentials used by the job to clone code."""
    pat: SecretStr
    username: str = Field(min_length=1)
    org: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    branch: str = Field(default="main", min_length=1)

    @field_validator("pat")
    @classmethod
    def pat_not_empty(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("GitHub personal access token must not be empty")
        return v


class CondorResources(BaseModel):
    """Resource requests written into the submit descriptor."""
    cpus: Optional[int] = Field(default=None, gt=0)
    memory: Optional[str] = None
    disk: Optional[str] = None


class JobConfig(BaseModel):
    """What the job runs and how the submission is supervised."""
    docker_image: str = Field(min_length=1)
    target_folder: Optional[str] = None
    make_options: str = "all"
    stream_error: bool = False
    remove_clone_script: bool = True
    registry_login: bool = False
    environment: Optional[Union[Dict[str, str], str]] = None
    batch_name: Optional[str] = None
    poll_interval: float = Field(default=10.0, ge=0)
    max_attempts: int = Field(default=120, gt=0)

    @field_validator("target_folder", "batch_name", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("environment", mode="before")
    @classmethod
    def stringify_values(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return {str(key): str(value) for key, value in v.items()}
        return v


def read_yaml(path: Path | str) -> dict[str, Any]:
    """Read a YAML settings file; an empty file gives an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


class CondorBoxConfig(BaseModel):
    """Root configuration."""
    remote: RemoteConfig
    github: Optional[GitHubConfig] = None
    resources: CondorResources = Field(default_factory=CondorResources)
    job: Optional[JobConfig] = None

    @classmethod
    def from_yaml(cls, path: Path) -> "CondorBoxConfig":
        return cls(**read_yaml(path))


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, dict[str, Any]]:
    """Collect ``CONDORBOX_*`` variables into a nested settings dict."""
    if environ is None:
        environ = os.environ

    overrides: dict[str, dict[str, Any]] = {}
    for suffix, (section, key) in ENV_FIELDS.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value:
            overrides.setdefault(section, {})[key] = value
    return overrides


def merge_settings(base: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``updates`` into a copy of ``base``.

    ``None`` values in ``updates`` are ignored so unset CLI options never
    clobber values from a file.
    """
    merged = dict(base)
    for key, value in updates.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_settings(dict(merged[key]), value)
        elif isinstance(value, Mapping):
            merged[key] = merge_settings({}, value)
        else:
            merged[key] = value
    return merged


def load_config(
    path: Path | str | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> CondorBoxConfig:
    """Load and validate configuration.

    Args:
        path: Optional YAML file
        overrides: Nested settings that win over file and environment
        environ: Environment mapping (defaults to ``os.environ`` after loading ``.env``)

    Returns:
        Validated configuration
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    raw: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config not found: {config_path}")
        raw = read_yaml(config_path)

    raw = merge_settings(raw, env_overrides(environ))
    if overrides:
        raw = merge_settings(raw, overrides)

    return CondorBoxConfig(**raw)
