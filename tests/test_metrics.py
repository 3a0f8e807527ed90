import os

from fastapi.testclient import TestClient

from image_builder.config import get_settings

os.environ["IMAGE_BUILDER_DISABLE_WORKERS"] = "true"
get_settings.cache_clear()

from image_builder.main import app  # noqa: E402
from image_builder.metrics import BUILD_COUNTERS, Metrics, metrics  # noqa: E402
from image_builder.state_machine import BuildState  # noqa: E402


def test_counters_start_at_zero():
    snapshot = Metrics().snapshot()
    assert set(snapshot) == set(BUILD_COUNTERS)
    assert all(value == 0 for value in snapshot.values())


def test_metrics_endpoint_exposes_counters():
    metrics.inc("remote_deploy_failures_total", 2)
    with TestClient(app) as client:
        response = client.get("/metrics")
    assert response.status_code == 200
    body = response.json()
    assert body["remote_deploy_failures_total"] >= 2
    assert "builds_started_total" in body


def test_build_finished_counts_terminal_state():
    counters = Metrics()
    counters.build_finished(BuildState.SUCCEEDED)
    counters.build_finished(BuildState.CANCELLED)
    counters.build_finished(BuildState.CANCELLED)
    assert counters.get("builds_succeeded_total") == 1
    assert counters.get("builds_cancelled_total") == 2
    assert counters.get("builds_failed_total") == 0


def test_step_halted_tracks_total_and_per_step():
    counters = Metrics()
    counters.step_halted("StepCloneVM")
    counters.step_halted("StepCloneVM")
    counters.step_halted("StepWaitForIP")
    assert counters.get("steps_halted_total") == 3
    assert counters.halts_by_step() == {"StepCloneVM": 2, "StepWaitForIP": 1}
