import importlib
import logging
import threading

from image_builder import state_bag as keys
from image_builder.artifact import Artifact
from image_builder.clients.http import RetryPolicy
from image_builder.clients.remote_source import RemoteSourceClient
from image_builder.config import Settings, get_settings
from image_builder.driver import DriverFactory
from image_builder.errors import BuildError
from image_builder.runner import RunObserver, Runner, Step
from image_builder.sanitize import sanitize_error
from image_builder.schemas import BuildConfig
from image_builder.state_bag import StateBag
from image_builder.steps.cdrom import StepAddCDRom, StepReattachCDRom, StepRemoveCDRom
from image_builder.steps.clone import StepCloneVM
from image_builder.steps.common import SECRETS
from image_builder.steps.connect import StepConnect
from image_builder.steps.content_library import StepImportToContentLibrary
from image_builder.steps.customize import StepCustomize
from image_builder.steps.datastore import StepResolveDatastore
from image_builder.steps.export import StepExport
from image_builder.steps.floppy import StepAddFloppy, StepRemoveFloppy
from image_builder.steps.hardware import StepConfigParams, StepConfigureHardware
from image_builder.steps.power import StepRun, StepShutdown, StepWaitForIp
from image_builder.steps.remote_source import StepProbeRemoteSource
from image_builder.steps.snapshot import StepConvertToTemplate, StepCreateSnapshot
from image_builder.ui import LoggingUi, Ui


logger = logging.getLogger(__name__)


def load_driver_factory(path: str) -> DriverFactory:
    """Resolve a ``module:callable`` import path."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"driver factory must look like 'module:callable', got {path!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    if not callable(factory):
        raise ValueError(f"driver factory {path!r} is not callable")
    return factory


class Builder:
    def __init__(
        self,
        config: BuildConfig,
        driver_factory: DriverFactory,
        settings: Settings | None = None,
        remote_client: RemoteSourceClient | None = None,
    ):
        self.config = config
        self.driver_factory = driver_factory
        self.settings = settings or get_settings()
        self.remote_client = remote_client or RemoteSourceClient(
            RetryPolicy(self.settings.retry_attempts, self.settings.retry_sleep_sec),
            timeout_sec=self.settings.remote_probe_timeout_sec,
        )
        self.runner: Runner | None = None

    def prepare(self) -> list[str]:
        warnings = self.config.prepare()
        for warning in warnings:
            logger.warning("config warning vm_name=%s %s", self.config.location.vm_name, warning)
        return warnings

    def steps(self) -> list[Step]:
        config = self.config
        settings = self.settings
        steps: list[Step] = [
            StepConnect(config.connect, self.driver_factory),
            StepResolveDatastore(config.location),
        ]
        remote = config.clone.remote_source
        if remote is not None and settings.remote_probe_enabled:
            steps.append(StepProbeRemoteSource(remote, self.remote_client))
        steps.extend(
            [
                StepCloneVM(config.clone, config.location, config.force, settings.ovf_locale),
                StepConfigureHardware(config.hardware),
                StepAddCDRom(config.cdrom),
                StepConfigParams(config.config_params),
            ]
        )
        if config.customize is not None:
            steps.append(StepCustomize(config.customize))

        if config.communicator != "none":
            steps.extend(
                [
                    StepAddFloppy(config.floppy, config.location),
                    StepRun(config.run),
                    StepWaitForIp(config.wait_ip, settings.ip_wait_timeout_sec),
                    StepShutdown(config.shutdown, settings.shutdown_timeout_sec),
                    StepRemoveFloppy(config.location),
                ]
            )

        steps.extend(
            [
                StepRemoveCDRom(config.remove_cdrom),
                StepReattachCDRom(config.reattach_cdrom, config.cdrom),
                StepCreateSnapshot(config.create_snapshot, config.snapshot_name),
                StepConvertToTemplate(config.convert_to_template),
            ]
        )
        if config.content_library_destination is not None:
            steps.append(StepImportToContentLibrary(config.content_library_destination))
        if config.export is not None:
            steps.append(StepExport(config.export))
        return steps

    def cancel(self) -> None:
        if self.runner is not None:
            self.runner.cancel()

    def run(
        self,
        ui: Ui | None = None,
        cancel: threading.Event | None = None,
        observer: RunObserver | None = None,
    ) -> Artifact | None:
        secrets = self.config.secrets()
        vm_name = self.config.location.vm_name
        state = StateBag()
        state.put(SECRETS, secrets)
        state.put(keys.UI, ui or LoggingUi(secrets=secrets))
        state.put(keys.GENERATED_DATA, {})

        self.runner = Runner(self.steps(), observer)
        self.runner.run(state, cancel)

        error = state.get(keys.ERROR)
        if error is not None:
            raise BuildError(
                vm_name=vm_name,
                detail=sanitize_error(error, secrets),
                cancelled=state.has(keys.CANCELLED) or self.runner.cancelled,
            )
        if state.has(keys.CANCELLED) or self.runner.cancelled:
            raise BuildError(vm_name=vm_name, detail="build was cancelled", cancelled=True)

        vm = state.get(keys.VM)
        if vm is None:
            return None
        return Artifact(
            name=vm_name,
            datacenter=vm.datacenter(),
            location=self.config.location,
            vm=vm,
            content_library=self.config.content_library_destination,
            output_dir=self.config.export.output_directory if self.config.export else None,
            state_data={
                "generated_data": state.get(keys.GENERATED_DATA),
                "metadata": state.get(keys.METADATA),
                "source_template": self.config.clone.template,
                "content_library_item_uuid": state.get(keys.CONTENT_LIBRARY_ITEM_UUID),
                "export_path": state.get(keys.EXPORT_PATH),
            },
        )
