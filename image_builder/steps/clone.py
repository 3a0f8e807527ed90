import logging
import threading

from image_builder import state_bag as keys
from image_builder.driver import CloneRequest, DeployRequest, Disk, OvfAuth, StorageSpec
from image_builder.errors import RemoteDeployError
from image_builder.metrics import metrics
from image_builder.runner import Step, StepAction, halt
from image_builder.sanitize import sanitize_url
from image_builder.schemas import CloneConfig, LocationConfig, RemoteSourceConfig
from image_builder.state_bag import StateBag
from image_builder.state_machine import ClonePhase, can_advance_clone
from image_builder.steps.cleanup import cleanup_vm
from image_builder.steps.common import clean, fail, get_ui, state_secrets


logger = logging.getLogger(__name__)

# (state key, UI message, release methods tried in order)
_REMOTE_DEPLOY_RESOURCES: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    (keys.OVF_TASK_REF, "Cleaning up OVF deployment task...", ("cancel",)),
    (keys.OVF_PROGRESS_MONITOR, "Stopping OVF progress monitoring...", ("stop", "cancel")),
    (keys.OVF_LEASE, "Cleaning up NFC lease...", ("abort",)),
)


class StepCloneVM(Step):
    """Produce the build VM, either by cloning a template or deploying a remote OVF/OVA."""

    def __init__(
        self,
        config: CloneConfig,
        location: LocationConfig,
        force: bool = False,
        locale: str = "US",
    ):
        self.config = config
        self.location = location
        self.force = force
        self.locale = locale
        self.phase = ClonePhase.NOT_STARTED

    def _advance(self, target: ClonePhase) -> None:
        if not can_advance_clone(self.phase, target):
            raise RuntimeError(f"invalid clone phase transition {self.phase.value} -> {target.value}")
        self.phase = target

    def _halt(self, state: StateBag, error: BaseException | str) -> StepAction:
        self.phase = ClonePhase.HALTED
        return halt(state, error)

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        ui = get_ui(state)
        driver = state.get(keys.DRIVER)
        template = self.config.template
        remote = self.config.remote_source

        if not template and remote is None:
            return self._halt(state, "either 'template' or 'remote_source' must be specified")
        if template and remote is not None:
            return self._halt(
                state,
                "cannot specify both 'template' and 'remote_source' - choose one source type",
            )

        self._advance(ClonePhase.PRE_CLEANING)
        try:
            driver.pre_clean_vm(
                ui,
                self.location.vm_path,
                self.force,
                self.location.cluster,
                self.location.host,
                self.location.resource_pool,
            )
        except Exception as exc:  # noqa: BLE001
            self.phase = ClonePhase.HALTED
            return fail(state, exc)

        datastore_name = self.location.datastore
        resolved = state.get(keys.DATASTORE)
        if resolved is not None:
            datastore_name = resolved.name()
        if not datastore_name and not self.location.datastore_cluster:
            return self._halt(
                state, "no datastore specified and no datastore resolved from cluster"
            )

        if remote is None:
            self._advance(ClonePhase.CLONING)
            action = self._clone_template(cancel, state, driver, datastore_name)
        else:
            self._advance(ClonePhase.REMOTE_DEPLOYING)
            action = self._deploy_remote(cancel, state, driver, datastore_name, remote)
        if action == StepAction.HALT:
            return action

        self._advance(ClonePhase.DONE)
        if self.config.destroy:
            state.put(keys.DESTROY_VM, True)
        return StepAction.CONTINUE

    def _storage(self) -> StorageSpec:
        return StorageSpec(
            disk_controller_types=list(self.config.storage.disk_controller_type),
            disks=[
                Disk(
                    disk_size=disk.disk_size,
                    thin_provisioned=disk.disk_thin_provisioned,
                    eagerly_scrub=disk.disk_eagerly_scrub,
                    controller_index=disk.disk_controller_index,
                )
                for disk in self.config.storage.storage
            ],
        )

    def _clone_template(
        self, cancel: threading.Event, state: StateBag, driver, datastore: str
    ) -> StepAction:
        ui = get_ui(state)
        ui.say("Finding virtual machine to clone...")
        try:
            source = driver.find_vm(self.config.template)
        except Exception as exc:  # noqa: BLE001
            self.phase = ClonePhase.HALTED
            return fail(state, exc, "error finding virtual machine to clone")

        ui.say("Cloning virtual machine...")
        request = CloneRequest(
            name=self.location.vm_name,
            folder=self.location.folder,
            cluster=self.location.cluster,
            host=self.location.host,
            resource_pool=self.location.resource_pool,
            datastore=datastore,
            linked_clone=self.config.linked_clone,
            network=self.config.network,
            mac_address=self.config.mac_address.lower(),
            annotation=self.config.notes,
            vapp_properties=dict(self.config.vapp.properties),
            primary_disk_size=self.config.disk_size,
            storage=self._storage(),
        )
        try:
            vm = source.clone(cancel, request)
        except Exception as exc:  # noqa: BLE001
            self.phase = ClonePhase.HALTED
            return fail(state, exc)
        if vm is None:
            # Clone returns nothing when it was interrupted by cancellation.
            self.phase = ClonePhase.HALTED
            return StepAction.HALT

        state.put(keys.VM, vm)
        logger.info(
            "cloned vm name=%s template=%s", self.location.vm_name, self.config.template
        )
        return StepAction.CONTINUE

    def _deploy_remote(
        self,
        cancel: threading.Event,
        state: StateBag,
        driver,
        datastore: str,
        remote: RemoteSourceConfig,
    ) -> StepAction:
        ui = get_ui(state)
        secrets = state_secrets(state) + (remote.password_value,)
        auth = (
            OvfAuth(username=remote.username, password=remote.password_value)
            if remote.has_credentials
            else None
        )

        option = self.config.vapp.deployment_option
        if option:
            try:
                available = driver.get_ovf_options(cancel, remote.url, auth, self.locale)
            except Exception as exc:  # noqa: BLE001
                return self._halt(
                    state,
                    RemoteDeployError(
                        url=remote.url,
                        cause=str(exc),
                        operation="failed to retrieve deployment options",
                        secrets=secrets,
                    ),
                )
            names = [item.option for item in available]
            if option not in names:
                return self._halt(
                    state,
                    f"deployment option '{option}' not found in OVF. "
                    f"Available options: {', '.join(names)}",
                )

        ui.say("Deploying virtual machine from remote OVF/OVA source...")
        logger.info(
            "deploying remote source url=%s name=%s",
            sanitize_url(remote.url),
            self.location.vm_name,
        )
        request = DeployRequest(
            url=remote.url,
            name=self.location.vm_name,
            folder=self.location.folder,
            cluster=self.location.cluster,
            host=self.location.host,
            resource_pool=self.location.resource_pool,
            datastore=datastore,
            auth=auth,
            skip_tls_verify=remote.skip_tls_verify,
            network=self.config.network,
            mac_address=self.config.mac_address.lower(),
            annotation=self.config.notes,
            vapp_properties=dict(self.config.vapp.properties),
            deployment_option=option,
            storage=self._storage(),
            locale=self.locale,
        )
        try:
            vm = driver.deploy_ovf(cancel, request, ui)
        except Exception as exc:  # noqa: BLE001
            metrics.inc("remote_deploy_failures_total")
            error = RemoteDeployError(url=remote.url, cause=str(exc), secrets=secrets)
            logger.warning(
                "remote deploy failed kind=%s error=%s", error.kind.value, error
            )
            return self._halt(state, error)
        if vm is None:
            self.phase = ClonePhase.HALTED
            return StepAction.HALT

        state.put(keys.VM, vm)
        ui.say("Successfully deployed virtual machine from remote OVF/OVA source")
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if self.config.remote_source is not None:
            self._cleanup_remote_deploy(state)
        cleanup_vm(state)

    def _cleanup_remote_deploy(self, state: StateBag) -> None:
        ui = get_ui(state)
        failures: list[str] = []
        for key, message, release_methods in _REMOTE_DEPLOY_RESOURCES:
            item, present = state.get_ok(key)
            if not present:
                continue
            ui.say(message)
            try:
                _release(item, release_methods)
            except Exception as exc:  # noqa: BLE001
                failures.append(f"{key}: {clean(state, str(exc))}")
            finally:
                state.remove(key)
        for failure in failures:
            metrics.inc("cleanup_errors_total")
            logger.warning("remote deploy cleanup failed %s", failure)


def _release(item: object, methods: tuple[str, ...]) -> None:
    for method in methods:
        release = getattr(item, method, None)
        if callable(release):
            release()
            return
