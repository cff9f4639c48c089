# tests/test_cli.py
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from condorbox.cli import app
from condorbox.submit import SubmitResult
from condorbox.unbox import UnboxSummary

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, base_settings):
    path = tmp_path / "condorbox.yaml"
    path.write_text(yaml.safe_dump(base_settings))
    return path


def test_cli_commands_registered():
    """Test the commands exist"""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in ("submit", "unbox", "fetch", "delete", "rstudio", "clean-docker", "github", "ssh-key", "run", "template"):
        assert name in result.output


def test_submit_applies_overrides(config_file):
    with patch("condorbox.cli.submit_job") as mock_submit:
        mock_submit.return_value = SubmitResult(job_id="8445", batch_name="SWO_Batch_1", clone_script_removed=True)
        result = runner.invoke(app, [
            "--config", str(config_file), "--host", "other.example.org",
            "submit", "--cpus", "8", "--batch-name", "SWO_Batch_1",
            "--env", "SEED=42", "--env", "MODE=fast", "--keep-clone-script",
        ])

    assert result.exit_code == 0, result.output
    assert "8445" in result.output
    config = mock_submit.call_args.args[0]
    assert config.remote.host == "other.example.org"
    assert config.resources.cpus == 8
    assert config.resources.memory == "6GB"
    assert config.job.batch_name == "SWO_Batch_1"
    assert config.job.environment == {"SEED": "42", "MODE": "fast"}
    assert config.job.remove_clone_script is False


def test_submit_unknown_job_id_fails(config_file):
    with patch("condorbox.cli.submit_job") as mock_submit:
        mock_submit.return_value = SubmitResult(job_id="unknown", batch_name="")
        result = runner.invoke(app, ["--config", str(config_file), "submit"])

    assert result.exit_code == 1


def test_submit_bad_env(config_file):
    result = runner.invoke(app, ["--config", str(config_file), "submit", "--env", "NOEQUALS"])
    assert result.exit_code != 0


def test_missing_config_file(tmp_path):
    result = runner.invoke(app, ["--config", str(tmp_path / "missing.yaml"), "submit"])
    assert result.exit_code == 1


def test_unbox(config_file, tmp_path):
    with patch("condorbox.cli.unbox_output") as mock_unbox:
        mock_unbox.return_value = UnboxSummary(moved=[tmp_path / "a"], skipped=[])
        result = runner.invoke(app, ["--config", str(config_file), "unbox", "--local-dir", str(tmp_path)])

    assert result.exit_code == 0, result.output
    ssh, remote_dir = mock_unbox.call_args.args[:2]
    assert remote_dir == "/home/alice/jobs/run1"
    assert ssh.host == "submit.example.org"


def test_fetch_archive(config_file, tmp_path):
    with patch("condorbox.cli.handle_batch_file", return_value=True) as mock_handle:
        result = runner.invoke(app, [
            "--config", str(config_file), "fetch", "/jobs/SWO_Batch_1",
            "--archive", "out.tar.gz", "--folder", "results", "--to", str(tmp_path),
        ])

    assert result.exit_code == 0, result.output
    kwargs = mock_handle.call_args.kwargs
    assert kwargs["action"] == "fetch"
    assert kwargs["extract_archive"] is True
    assert kwargs["extract_folder"] == "results"


def test_delete_failure_exit_code(config_file):
    with patch("condorbox.cli.handle_batch_file", return_value=False):
        result = runner.invoke(app, ["--config", str(config_file), "delete", "/jobs/b1", "clone_job.sh"])
    assert result.exit_code == 1


def test_run_command(tmp_path):
    log_file = tmp_path / "log.txt"
    result = runner.invoke(app, ["run", "echo hi", "true", "--log-file", str(log_file)])

    assert result.exit_code == 0, result.output
    assert log_file.read_text().startswith("[Execution Results]")


def test_run_command_failure():
    result = runner.invoke(app, ["run", "exit 2"])
    assert result.exit_code == 1


def test_template_condor(tmp_path):
    output = tmp_path / "launch_condor.py"
    result = runner.invoke(app, ["template", "condor", "--output", str(output)])

    assert result.exit_code == 0
    assert output.exists()


def test_rstudio_stop():
    with patch("condorbox.cli.manage_rstudio_server", return_value=True) as mock_manage:
        result = runner.invoke(app, ["rstudio", "stop", "--name", "rs"])

    assert result.exit_code == 0
    mock_manage.assert_called_once_with("stop", container_name="rs")
