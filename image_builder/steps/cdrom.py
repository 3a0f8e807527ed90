import logging
import threading

from image_builder.errors import NoSataControllerError
from image_builder.runner import Step, StepAction, halt
from image_builder.schemas import CDRomConfig, ReattachCDRomConfig, RemoveCDRomConfig
from image_builder.state_bag import StateBag
from image_builder.steps.common import fail, get_ui, get_vm


logger = logging.getLogger(__name__)

ISO_REMOTE_PATH = "iso_remote_path"
CD_PATH = "cd_path"


def ensure_sata_controller(state: StateBag, vm) -> StepAction:
    try:
        vm.find_sata_controller()
        return StepAction.CONTINUE
    except NoSataControllerError:
        pass
    except Exception as exc:  # noqa: BLE001
        return fail(state, exc, "unexpected error finding SATA controller")

    get_ui(state).say("Adding SATA controller...")
    try:
        vm.add_sata_controller()
    except Exception as exc:  # noqa: BLE001
        return fail(state, exc, "error adding SATA controller")
    return StepAction.CONTINUE


class StepAddCDRom(Step):
    def __init__(self, config: CDRomConfig):
        self.config = config

    def iso_paths(self, state: StateBag) -> list[str]:
        paths = list(self.config.iso_paths)
        remote_path = state.get(ISO_REMOTE_PATH)
        if remote_path:
            paths.insert(0, remote_path)
        cd_path = state.get(CD_PATH)
        if cd_path:
            paths.append(cd_path)
        return paths

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        vm = get_vm(state)
        if self.config.cdrom_type == "sata":
            action = ensure_sata_controller(state, vm)
            if action == StepAction.HALT:
                return action

        get_ui(state).say("Mounting ISO images...")
        # Drives are added one at a time so each gets a predictable unit number.
        for path in self.iso_paths(state):
            if not path:
                return halt(state, "invalid path: empty string")
            try:
                vm.add_cdrom(self.config.cdrom_type, path)
            except Exception as exc:  # noqa: BLE001
                return fail(state, exc, f"error mounting an image '{path}'")
        return StepAction.CONTINUE


class StepRemoveCDRom(Step):
    def __init__(self, config: RemoveCDRomConfig):
        self.config = config

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        ui = get_ui(state)
        vm = get_vm(state)

        ui.say("Ejecting CD-ROM media...")
        try:
            vm.eject_cdroms()
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc, "error ejecting cdrom media")

        if self.config.remove_cdrom:
            ui.say("Removing CD-ROM devices...")
            try:
                vm.remove_cdroms()
            except Exception as exc:  # noqa: BLE001
                return fail(state, exc, "error removing cdrom")
        return StepAction.CONTINUE


class StepReattachCDRom(Step):
    """Leave `reattach_cdroms` empty drives on the image."""

    def __init__(self, config: ReattachCDRomConfig, cdrom: CDRomConfig):
        self.config = config
        self.cdrom = cdrom

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        count = self.config.reattach_cdroms
        if count == 0:
            return StepAction.CONTINUE
        if count < 1 or count > 4:
            return halt(
                state,
                "error reattach cdrom: 'reattach_cdroms' should be between 1 and 4. "
                "if set to 0, `reattach_cdroms` is ignored and the step is skipped",
            )
        if not self.cdrom.iso_paths:
            return halt(state, "'reattach_cdroms' requires at least one entry in 'iso_paths'")

        ui = get_ui(state)
        vm = get_vm(state)
        ui.say("Reattaching CD-ROM devices...")
        try:
            vm.remove_cdroms()
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc, "error removing cdrom prior to reattaching")

        if self.cdrom.cdrom_type == "sata":
            action = ensure_sata_controller(state, vm)
            if action == StepAction.HALT:
                return action

        ui.say("Adding CD-ROM device...")
        for index in range(count):
            try:
                vm.add_cdrom(self.cdrom.cdrom_type, self.cdrom.iso_paths[0])
            except Exception as exc:  # noqa: BLE001
                return fail(state, exc, f"error adding cdrom {index}")

        ui.say("Ejecting CD-ROM media...")
        try:
            vm.eject_cdroms()
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc, "error ejecting cdrom media")
        return StepAction.CONTINUE
