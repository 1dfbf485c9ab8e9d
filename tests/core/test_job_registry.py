import pytest

from src.deskrelay.core.job_registry import JobConfig, JobRegistry


def _config(profile) -> JobConfig:
    return JobConfig(subject="Hello", description="Body", profile=profile, delay_sec=2)


def test_create_and_get(profile):
    registry = JobRegistry()
    job = registry.create("sess_a_1", session_id="sess_a", items=["a@x.com", "b@x.com"], config=_config(profile))

    assert registry.get("sess_a_1") is job
    assert registry.status_of("sess_a_1") == "running"
    assert job.to_dict()["total"] == 2
    assert job.to_dict()["profileName"] == "Support EU"
    assert len(registry) == 1


def test_absent_job_reports_none(profile):
    registry = JobRegistry()
    assert registry.get("missing") is None
    assert registry.status_of("missing") is None
    assert registry.set_status("missing", "paused") is None
    assert registry.remove("missing") is None


def test_set_status_rejects_unknown_value(profile):
    registry = JobRegistry()
    registry.create("j1", session_id="s", items=[], config=_config(profile))
    with pytest.raises(ValueError, match="Unknown job status"):
        registry.set_status("j1", "finished")


def test_transition_only_from_allowed_statuses(profile):
    registry = JobRegistry()
    registry.create("j1", session_id="s", items=[], config=_config(profile))

    registry.transition("j1", from_statuses={"paused"}, to_status="running")
    assert registry.status_of("j1") == "running"

    registry.set_status("j1", "ended")
    registry.transition("j1", from_statuses={"running"}, to_status="paused")
    assert registry.status_of("j1") == "ended"


def test_advance_and_remove(profile):
    registry = JobRegistry()
    registry.create("j1", session_id="s", items=["a", "b"], config=_config(profile))
    registry.advance("j1", 1)
    assert registry.get("j1").cursor == 1

    removed = registry.remove("j1")
    assert removed is not None
    assert registry.status_of("j1") is None


def test_jobs_for_session_filters(profile):
    registry = JobRegistry()
    registry.create("j1", session_id="s1", items=[], config=_config(profile))
    registry.create("j2", session_id="s2", items=[], config=_config(profile))
    registry.create("j3", session_id="s1", items=[], config=_config(profile))

    assert sorted(job.job_id for job in registry.jobs_for_session("s1")) == ["j1", "j3"]
    assert [row["jobId"] for row in registry.list_jobs()] == ["j1", "j2", "j3"]


def test_create_refuses_registered_id_and_remove_if_checks_owner(profile):
    registry = JobRegistry()
    first = registry.create("j1", session_id="s", items=["a"], config=_config(profile))
    with pytest.raises(KeyError):
        registry.create("j1", session_id="s", items=["b"], config=_config(profile))
    assert registry.get("j1") is first

    registry.remove("j1")
    second = registry.create("j1", session_id="s", items=["b"], config=_config(profile))
    assert registry.remove_if("j1", first) is False
    assert registry.get("j1") is second
    assert registry.remove_if("j1", second) is True
    assert registry.get("j1") is None
