# tests/test_submit.py
import pytest

from condorbox.config import CondorBoxConfig
from condorbox.monitor import WaitOutcome
from condorbox.submit import (
    UNKNOWN_JOB_ID,
    CondorSubmitter,
    extract_job_id,
    submit_job,
)
from condorbox.templates import CLONE_SCRIPT, ENV_FILE, RUN_SCRIPT, SUBMIT_FILE

SUBMIT_OUTPUT = "Submitting job(s).\n1 job(s) submitted to cluster 8445.\n"


class StubMonitor:
    def __init__(self, outcome=WaitOutcome.RUNNING):
        self.outcome = outcome
        self.waited = []

    def wait_for_job(self, job_id):
        self.waited.append(job_id)
        return self.outcome


def make_config(settings, **job):
    settings = dict(settings)
    settings["job"] = {**settings["job"], **job}
    return CondorBoxConfig(**settings)


@pytest.mark.parametrize("lines, job_id", [
    (["Submitting job(s).", "1 job(s) submitted to cluster 8445."], "8445"),
    (["** Proc 12.0:", "Cluster 99 submitted"], "99"),
    (["Job 123 queued"], "123"),
    (["Submitting job(s).", "ERROR: no such file"], None),
    ([], None),
])
def test_extract_job_id(lines, job_id):
    assert extract_job_id(lines) == job_id


def test_submitter_requires_sections(base_settings):
    settings = dict(base_settings)
    settings.pop("github")
    with pytest.raises(ValueError, match="github"):
        CondorSubmitter(CondorBoxConfig(**settings))

    settings = dict(base_settings)
    settings["remote"] = {"user": "alice", "host": "h"}
    with pytest.raises(ValueError, match="remote.dir"):
        CondorSubmitter(CondorBoxConfig(**settings))


def test_submit_happy_path(base_settings, fake_ssh, tmp_path):
    fake_ssh.respond("condor_submit", (True, SUBMIT_OUTPUT, ""))
    monitor = StubMonitor(WaitOutcome.RUNNING)
    stage = tmp_path / "stage"

    result = submit_job(CondorBoxConfig(**base_settings), ssh=fake_ssh, monitor=monitor, staging_dir=stage)

    assert result.submitted
    assert result.job_id == "8445"
    assert result.batch_name == "8445"
    assert result.clone_script_removed is True

    assert fake_ssh.made == ["/home/alice/jobs/run1"]
    assert [remote for _, remote in fake_ssh.copied] == [
        f"/home/alice/jobs/run1/{name}" for name in (CLONE_SCRIPT, RUN_SCRIPT, ENV_FILE, SUBMIT_FILE)
    ]
    assert fake_ssh.commands[-1] == f"cd /home/alice/jobs/run1 && condor_submit {SUBMIT_FILE}"
    assert monitor.waited == ["8445"]
    assert fake_ssh.removed == [f"/home/alice/jobs/run1/{CLONE_SCRIPT}"]

    # Local files are gone, the caller's directory stays
    assert stage.is_dir()
    assert list(stage.iterdir()) == []


def test_submit_custom_batch_name(base_settings, fake_ssh):
    fake_ssh.respond("condor_submit", (True, SUBMIT_OUTPUT, ""))
    config = make_config(base_settings, batch_name="SWO_Batch_2", remove_clone_script=False)
    monitor = StubMonitor()

    result = submit_job(config, ssh=fake_ssh, monitor=monitor)

    assert result.batch_name == "SWO_Batch_2"
    assert result.clone_script_removed is False
    assert monitor.waited == []
    assert fake_ssh.removed == []


def test_submit_without_job_id(base_settings, fake_ssh, tmp_path):
    fake_ssh.respond("condor_submit", (False, "", "ERROR: Failed to connect to local queue manager"))
    monitor = StubMonitor()

    result = submit_job(CondorBoxConfig(**base_settings), ssh=fake_ssh, monitor=monitor, staging_dir=tmp_path)

    assert result.job_id == UNKNOWN_JOB_ID
    assert not result.submitted
    assert monitor.waited == []
    assert list(tmp_path.iterdir()) == []


def test_failed_submit_ignores_numbers_in_error_output(base_settings, fake_ssh):
    fake_ssh.respond("condor_submit", (False, "", "ERROR: on Line 12 of submit file:\nbad command\n"))
    monitor = StubMonitor()

    result = submit_job(CondorBoxConfig(**base_settings), ssh=fake_ssh, monitor=monitor)

    assert result.job_id == UNKNOWN_JOB_ID
    assert not result.submitted
    assert result.output == ["ERROR: on Line 12 of submit file:", "bad command"]
    assert monitor.waited == []
    assert fake_ssh.removed == []


def test_clone_script_kept_when_job_never_starts(base_settings, fake_ssh):
    fake_ssh.respond("condor_submit", (True, SUBMIT_OUTPUT, ""))

    result = submit_job(
        CondorBoxConfig(**base_settings), ssh=fake_ssh, monitor=StubMonitor(WaitOutcome.TIMED_OUT)
    )

    assert result.clone_script_removed is False
    assert fake_ssh.removed == []


@pytest.mark.parametrize("outcome", [WaitOutcome.FINISHED, WaitOutcome.GONE])
def test_clone_script_removed_when_job_left_queue(base_settings, fake_ssh, outcome):
    fake_ssh.respond("condor_submit", (True, SUBMIT_OUTPUT, ""))

    result = submit_job(CondorBoxConfig(**base_settings), ssh=fake_ssh, monitor=StubMonitor(outcome))

    assert result.clone_script_removed is True


def test_failed_transfer_continues_and_cleans_up(base_settings, fake_ssh, tmp_path):
    fake_ssh.copy_ok = False
    fake_ssh.respond("condor_submit", (True, SUBMIT_OUTPUT, ""))
    (tmp_path / "keep.txt").write_text("user file")

    submit_job(CondorBoxConfig(**base_settings), ssh=fake_ssh, monitor=StubMonitor(), staging_dir=tmp_path)

    assert len(fake_ssh.copied) == 4
    assert [p.name for p in tmp_path.iterdir()] == ["keep.txt"]


def test_local_cleanup_when_remote_raises(base_settings, fake_ssh, tmp_path):
    def broken_make_dir(path):
        raise RuntimeError("network down")

    fake_ssh.make_dir = broken_make_dir

    with pytest.raises(RuntimeError):
        submit_job(CondorBoxConfig(**base_settings), ssh=fake_ssh, monitor=StubMonitor(), staging_dir=tmp_path)

    assert list(tmp_path.iterdir()) == []


def test_registry_login_sends_token_on_stdin(base_settings, fake_ssh):
    fake_ssh.respond("condor_submit", (True, SUBMIT_OUTPUT, ""))
    config = make_config(base_settings, registry_login=True)

    submit_job(config, ssh=fake_ssh, monitor=StubMonitor())

    login = [c for c in fake_ssh.commands if "docker login" in c]
    assert len(login) == 1
    assert "DOCKER_CONFIG=/tmp/docker_config" in login[0]
    assert "--password-stdin" in login[0]
    assert "ghp_secrettoken123" not in " ".join(fake_ssh.commands)
    assert "ghp_secrettoken123\n" in fake_ssh.inputs
