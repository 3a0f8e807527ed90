import threading

import pytest
from fakes import FakeDriver, RecordingUi

from image_builder.builder import Builder, load_driver_factory
from image_builder.config import Settings
from image_builder.errors import BuildError
from image_builder.runner import StepAction
from image_builder.schemas import BuildConfig


def _config(**overrides) -> BuildConfig:
    values = {
        "connect": {"vcenter_server": "vc.example.com", "username": "admin", "password": "pw"},
        "location": {"vm_name": "build-vm", "cluster": "cluster-a", "datastore": "ds1"},
        "clone": {"template": "template-1"},
        "communicator": "none",
    }
    values.update(overrides)
    return BuildConfig.model_validate(values)


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def step_started(self, step: str) -> None:
        self.events.append(("started", step))

    def step_finished(self, step: str, action: StepAction) -> None:
        self.events.append((action.value, step))

    def step_cleaned(self, step: str, error: str | None) -> None:
        self.events.append(("cleaned", step))


def _builder(config: BuildConfig, driver: FakeDriver, **settings) -> Builder:
    values = {"remote_probe_enabled": False, "retry_sleep_sec": 0}
    values.update(settings)
    return Builder(config, lambda connect: driver, settings=Settings(**values))


def test_step_order_without_communicator():
    names = [step.name for step in _builder(_config(), FakeDriver()).steps()]
    assert names == [
        "StepConnect",
        "StepResolveDatastore",
        "StepCloneVM",
        "StepConfigureHardware",
        "StepAddCDRom",
        "StepConfigParams",
        "StepRemoveCDRom",
        "StepReattachCDRom",
        "StepCreateSnapshot",
        "StepConvertToTemplate",
    ]


def test_step_order_with_communicator_and_outputs():
    config = _config(
        communicator="ssh",
        customize={
            "linux_options": {"host_name": "web", "domain": "example.com"},
            "network_interface": [{}],
        },
        content_library_destination={"library": "lib"},
        export={},
    )
    names = [step.name for step in _builder(config, FakeDriver()).steps()]
    assert names[names.index("StepConfigParams") + 1 :] == [
        "StepCustomize",
        "StepAddFloppy",
        "StepRun",
        "StepWaitForIp",
        "StepShutdown",
        "StepRemoveFloppy",
        "StepRemoveCDRom",
        "StepReattachCDRom",
        "StepCreateSnapshot",
        "StepConvertToTemplate",
        "StepImportToContentLibrary",
        "StepExport",
    ]


def test_remote_source_gets_probe_step_when_enabled():
    config = _config(clone={"remote_source": {"url": "https://h/a.ova"}})
    enabled = [s.name for s in _builder(config, FakeDriver(), remote_probe_enabled=True).steps()]
    disabled = [s.name for s in _builder(config, FakeDriver()).steps()]
    assert enabled[2] == "StepProbeRemoteSource"
    assert "StepProbeRemoteSource" not in disabled


def test_successful_run_returns_artifact():
    driver = FakeDriver()
    observer = RecordingObserver()
    ui = RecordingUi()

    artifact = _builder(_config(), driver).run(ui=ui, observer=observer)

    assert artifact is not None
    assert artifact.id == "build-vm"
    assert artifact.datacenter == "dc1"
    assert artifact.state("source_template") == "template-1"
    assert artifact.state("metadata") == {"vm_name": "build-vm"}
    assert artifact.registry_metadata()["labels"]["cluster"] == "cluster-a"
    assert not artifact.vm.destroyed
    assert driver.closed
    assert observer.events[0] == ("started", "StepConnect")
    assert observer.events[-1] == ("cleaned", "StepConnect")
    assert "Closing sessions..." in ui.messages


def test_failed_run_raises_build_error_and_cleans_up():
    driver = FakeDriver()
    config = _config(clone={"template": "missing"})

    with pytest.raises(BuildError) as exc_info:
        _builder(config, driver).run(ui=RecordingUi())

    assert exc_info.value.cancelled is False
    assert exc_info.value.detail.startswith("error finding virtual machine to clone")
    assert driver.closed


def test_failed_run_never_leaks_connection_password():
    def factory(connect):
        raise ConnectionError(f"login rejected for {connect.password.get_secret_value()}")

    builder = Builder(_config(), factory, settings=Settings(remote_probe_enabled=False))
    with pytest.raises(BuildError) as exc_info:
        builder.run(ui=RecordingUi())
    assert "pw" not in exc_info.value.detail.replace("[credentials removed]", "")
    assert "[credentials removed]" in exc_info.value.detail


def test_cancelled_before_start():
    cancel = threading.Event()
    cancel.set()
    driver = FakeDriver()

    with pytest.raises(BuildError) as exc_info:
        _builder(_config(), driver).run(ui=RecordingUi(), cancel=cancel)

    assert exc_info.value.cancelled is True
    assert exc_info.value.detail == "build was cancelled"
    assert driver.calls == []


def test_load_driver_factory():
    assert load_driver_factory("fakes:FakeDriver") is FakeDriver
    with pytest.raises(ValueError):
        load_driver_factory("fakes")
