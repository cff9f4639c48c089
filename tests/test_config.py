# tests/test_config.py
import pytest
import yaml
from pydantic import ValidationError

from condorbox.config import (
    CondorBoxConfig,
    RemoteOS,
    env_overrides,
    load_config,
    merge_settings,
    read_yaml,
)


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))
    return path


def test_load_config_from_yaml(tmp_path, base_settings):
    path = write_yaml(tmp_path / "condorbox.yaml", base_settings)

    config = load_config(path, environ={})

    assert config.remote.host == "submit.example.org"
    assert config.remote.port == 22
    assert config.remote.os is RemoteOS.LINUX
    assert config.github.pat.get_secret_value() == "ghp_secrettoken123"
    assert config.resources.cpus == 4
    assert config.job.make_options == "all"
    assert config.job.remove_clone_script is True
    assert config.job.max_attempts == 120


def test_secret_not_in_repr(base_settings):
    config = CondorBoxConfig(**base_settings)
    assert "ghp_secrettoken123" not in repr(config)


def test_from_yaml(tmp_path, base_settings):
    path = write_yaml(tmp_path / "c.yaml", base_settings)
    assert CondorBoxConfig.from_yaml(path).job.docker_image == "ghcr.io/octo-org/analysis:latest"


def test_from_yaml_and_load_config_read_the_same_file(tmp_path, base_settings):
    path = write_yaml(tmp_path / "c.yaml", base_settings)
    assert CondorBoxConfig.from_yaml(path) == load_config(path, environ={})

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert read_yaml(empty) == {}
    config = load_config(empty, overrides={"remote": {"user": "u", "host": "h"}}, environ={})
    assert config.remote.host == "h"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", environ={})


def test_environment_overrides_file(tmp_path, base_settings):
    path = write_yaml(tmp_path / "c.yaml", base_settings)
    environ = {
        "CONDORBOX_REMOTE_HOST": "other.example.org",
        "CONDORBOX_REMOTE_PORT": "2222",
        "CONDORBOX_GITHUB_BRANCH": "dev",
        "UNRELATED": "x",
    }

    config = load_config(path, environ=environ)

    assert config.remote.host == "other.example.org"
    assert config.remote.port == 2222
    assert config.github.branch == "dev"
    assert config.github.repo == "analysis"


def test_overrides_win_and_ignore_none(tmp_path, base_settings):
    path = write_yaml(tmp_path / "c.yaml", base_settings)

    config = load_config(
        path,
        overrides={"remote": {"host": None, "dir": "/other"}, "job": {"batch_name": "SWO_Batch_1"}},
        environ={"CONDORBOX_REMOTE_DIR": "/from-env"},
    )

    assert config.remote.host == "submit.example.org"
    assert config.remote.dir == "/other"
    assert config.job.batch_name == "SWO_Batch_1"


def test_environment_only():
    environ = {
        "CONDORBOX_REMOTE_USER": "bob",
        "CONDORBOX_REMOTE_HOST": "h",
        "CONDORBOX_REMOTE_OS": "WINDOWS",
    }
    config = load_config(environ=environ)
    assert config.remote.os is RemoteOS.WINDOWS
    assert config.github is None
    assert config.job is None


def test_env_overrides_skips_empty():
    assert env_overrides({"CONDORBOX_REMOTE_HOST": ""}) == {}
    assert env_overrides({"CONDORBOX_DOCKER_IMAGE": "img"}) == {"job": {"docker_image": "img"}}


def test_merge_settings():
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    merged = merge_settings(base, {"a": {"b": 10, "c": None}, "e": {"f": 1}})

    assert merged == {"a": {"b": 10, "c": 2}, "d": 3, "e": {"f": 1}}
    assert base == {"a": {"b": 1, "c": 2}, "d": 3}


@pytest.mark.parametrize("job", [
    {"docker_image": ""},
    {"docker_image": "img", "max_attempts": 0},
])
def test_invalid_job(base_settings, job):
    with pytest.raises(ValidationError):
        CondorBoxConfig(**{**base_settings, "job": job})


def test_empty_pat_rejected(base_settings):
    github = {**base_settings["github"], "pat": ""}
    with pytest.raises(ValidationError):
        CondorBoxConfig(**{**base_settings, "github": github})


def test_job_normalisation(base_settings):
    job = {"docker_image": "img", "target_folder": "  ", "environment": {"SEED": 42}}
    config = CondorBoxConfig(**{**base_settings, "job": job})

    assert config.job.target_folder is None
    assert config.job.environment == {"SEED": "42"}
