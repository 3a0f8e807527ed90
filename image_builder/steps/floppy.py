import logging
import random
import threading

from image_builder import state_bag as keys
from image_builder.runner import Step, StepAction
from image_builder.schemas import FloppyConfig, LocationConfig
from image_builder.state_bag import StateBag
from image_builder.steps.common import clean, fail, get_ui, get_vm, was_interrupted


logger = logging.getLogger(__name__)


def upload_name() -> str:
    return f"image-builder-{random.randint(1_000_000_000, 9_999_999_999)}.flp"


def find_datastore(state: StateBag, location: LocationConfig):
    resolved = state.get(keys.DATASTORE)
    if resolved is not None:
        return resolved
    return state.get(keys.DRIVER).find_datastore(location.datastore, location.host)


def delete_uploaded_floppy(state: StateBag, location: LocationConfig) -> None:
    """Delete the uploaded floppy image; raises on failure."""
    uploaded = state.get(keys.UPLOADED_FLOPPY_PATH)
    if not uploaded:
        return
    get_ui(state).say("Deleting floppy image...")
    find_datastore(state, location).delete(uploaded)
    state.remove(keys.UPLOADED_FLOPPY_PATH)


class StepAddFloppy(Step):
    def __init__(self, config: FloppyConfig, location: LocationConfig):
        self.config = config
        self.location = location

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        ui = get_ui(state)
        vm = get_vm(state)

        floppy_path = state.get(keys.FLOPPY_PATH)
        if floppy_path:
            ui.say("Uploading floppy image...")
            try:
                datastore = find_datastore(state, self.location)
                upload_path = f"{vm.get_dir()}/{upload_name()}"
                host = self.location.host if self.location.set_host_for_datastore_uploads else ""
                datastore.upload_file(floppy_path, upload_path, host)
            except Exception as exc:  # noqa: BLE001
                return fail(state, exc, "error uploading floppy image")
            state.put(keys.UPLOADED_FLOPPY_PATH, upload_path)

            ui.say("Adding generated floppy image...")
            try:
                vm.add_floppy(datastore.resolve_path(upload_path))
            except Exception as exc:  # noqa: BLE001
                return fail(state, exc)

        if self.config.floppy_img_path:
            ui.say("Adding floppy image...")
            try:
                vm.add_floppy(self.config.floppy_img_path)
            except Exception as exc:  # noqa: BLE001
                return fail(state, exc)
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if not was_interrupted(state):
            return
        try:
            delete_uploaded_floppy(state, self.location)
        except Exception as exc:  # noqa: BLE001
            logger.warning("floppy cleanup failed error=%s", clean(state, str(exc)))


class StepRemoveFloppy(Step):
    def __init__(self, location: LocationConfig):
        self.location = location

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        ui = get_ui(state)
        ui.say("Removing floppy drive...")
        try:
            get_vm(state).remove_floppy()
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc, "error removing floppy drive")
        try:
            delete_uploaded_floppy(state, self.location)
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc, "error deleting floppy image")
        return StepAction.CONTINUE
