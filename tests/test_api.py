import os

from fakes import FakeDriver
from fastapi.testclient import TestClient

from image_builder.config import get_settings
from image_builder.db import Base, SessionLocal, engine
from image_builder.models import Build


os.environ["IMAGE_BUILDER_DISABLE_WORKERS"] = "true"
get_settings.cache_clear()

from image_builder import api  # noqa: E402
from image_builder.main import app  # noqa: E402
from image_builder.schemas import BuildConfig  # noqa: E402
from image_builder.services.builds import BuildManager  # noqa: E402


BUILD_REQUEST = {
    "connect": {"vcenter_server": "vc.example.com", "username": "admin", "password": "pw"},
    "location": {"vm_name": "build-vm", "cluster": "cluster-a", "datastore": "ds1"},
    "clone": {"template": "template-1"},
    "communicator": "none",
}


def _manager() -> BuildManager:
    return BuildManager(driver_factory=lambda connect: FakeDriver())


def setup_function() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    app.dependency_overrides.clear()


def test_healthz():
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_invalid_config_is_rejected_with_all_errors():
    manager = _manager()
    app.dependency_overrides[api.get_build_manager] = lambda: manager
    client = TestClient(app)

    response = client.post("/v1/builds", json={"clone": {}})

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert "'vcenter_server' is required" in detail
    assert "either 'template' or 'remote_source' must be specified" in detail
    db = SessionLocal()
    assert db.query(Build).count() == 0
    db.close()


def test_create_list_and_get_build():
    manager = _manager()
    app.dependency_overrides[api.get_build_manager] = lambda: manager
    client = TestClient(app)

    created = client.post("/v1/builds", json=BUILD_REQUEST)
    assert created.status_code == 202
    body = created.json()
    assert body["state"] == "QUEUED"
    assert body["warnings"] == []
    build_id = body["build_id"]

    listed = client.get("/v1/builds", params={"state": "QUEUED"})
    assert [item["build_id"] for item in listed.json()] == [build_id]
    assert client.get("/v1/builds", params={"state": "FAILED"}).json() == []

    detail = client.get(f"/v1/builds/{build_id}").json()
    assert detail["vm_name"] == "build-vm"
    assert detail["source_kind"] == "template"
    assert detail["artifact"] is None

    events = client.get(f"/v1/builds/{build_id}/events").json()
    assert [event["event_type"] for event in events] == ["build.queued"]
    assert events[0]["payload"] == {"vm_name": "build-vm", "warnings": []}


def test_unknown_build_returns_404():
    manager = _manager()
    app.dependency_overrides[api.get_build_manager] = lambda: manager
    client = TestClient(app)
    assert client.get("/v1/builds/nope").status_code == 404
    assert client.get("/v1/builds/nope/events").status_code == 404
    assert client.post("/v1/builds/nope/cancel").status_code == 404


def test_cancel_queued_build():
    manager = _manager()
    app.dependency_overrides[api.get_build_manager] = lambda: manager
    client = TestClient(app)
    build_id = client.post("/v1/builds", json=BUILD_REQUEST).json()["build_id"]

    response = client.post(f"/v1/builds/{build_id}/cancel")

    assert response.json() == {"ok": True}
    assert client.get(f"/v1/builds/{build_id}").json()["state"] == "CANCELLED"
    assert manager.run_build(build_id, BuildConfig.model_validate(BUILD_REQUEST)) == "CANCELLED"
    events = client.get(f"/v1/builds/{build_id}/events").json()
    assert [event["event_type"] for event in events] == ["build.queued", "build.cancelled"]


def test_run_build_records_steps_and_artifact():
    manager = _manager()
    config = BuildConfig.model_validate(BUILD_REQUEST)
    build_id, _ = manager.submit(config)

    assert manager.run_build(build_id, config) == "SUCCEEDED"

    app.dependency_overrides[api.get_build_manager] = lambda: manager
    client = TestClient(app)
    detail = client.get(f"/v1/builds/{build_id}").json()
    assert detail["state"] == "SUCCEEDED"
    assert detail["artifact_id"] == "build-vm"
    assert detail["artifact"]["builder_id"] == "image-builder.vsphere"
    assert detail["artifact"]["metadata"]["labels"]["source_template"] == "template-1"

    event_types = [e["event_type"] for e in client.get(f"/v1/builds/{build_id}/events").json()]
    assert event_types[:3] == ["build.queued", "build.started", "step.started"]
    assert event_types[-1] == "build.succeeded"
    assert "step.cleanup" in event_types


def test_run_build_failure_is_recorded():
    manager = _manager()
    config = BuildConfig.model_validate({**BUILD_REQUEST, "clone": {"template": "missing"}})
    build_id, _ = manager.submit(config)

    assert manager.run_build(build_id, config) == "FAILED"

    db = SessionLocal()
    build = db.get(Build, build_id)
    assert build is not None
    assert build.state == "FAILED"
    assert build.last_error.startswith("error finding virtual machine to clone")
    db.close()
