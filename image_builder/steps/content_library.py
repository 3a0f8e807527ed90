import logging
import threading

from image_builder import state_bag as keys
from image_builder.driver import ContentLibraryImport
from image_builder.runner import Step, StepAction
from image_builder.schemas import ContentLibraryDestinationConfig
from image_builder.state_bag import StateBag
from image_builder.steps.common import clean, fail, get_ui, get_vm


logger = logging.getLogger(__name__)


class StepImportToContentLibrary(Step):
    """Publish the finished VM into a content library as a VM or OVF template."""

    def __init__(self, config: ContentLibraryDestinationConfig):
        self.config = config

    def import_request(self) -> ContentLibraryImport:
        config = self.config
        if config.ovf:
            return ContentLibraryImport(
                library=config.library,
                name=config.name,
                description=config.description,
                ovf=True,
                ovf_flags=list(config.ovf_flags),
            )
        return ContentLibraryImport(
            library=config.library,
            name=config.name,
            description=config.description,
            cluster=config.cluster,
            folder=config.folder,
            host=config.host,
            resource_pool=config.resource_pool,
            datastore=config.datastore,
        )

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        ui = get_ui(state)
        if self.config.skip_import:
            ui.say("Skipping import...")
            return StepAction.CONTINUE

        vm = get_vm(state)
        ui.say("Clearing boot order...")
        try:
            vm.set_boot_order(["-"])
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc)

        label = "VM OVF" if self.config.ovf else "VM"
        ui.say(
            f"Importing {label} template {self.config.name} to Content Library "
            f"'{self.config.library}' as the item '{self.config.name}' "
            f"with the description '{self.config.description}'..."
        )
        try:
            vm.import_to_content_library(self.import_request())
        except Exception as exc:  # noqa: BLE001
            ui.errorf("Failed to import template %s: %s", self.config.name, clean(state, str(exc)))
            return fail(state, exc)

        if self.config.destroy:
            state.put(keys.DESTROY_VM, True)

        try:
            item_uuid = vm.find_content_library_item_uuid(self.config.library, self.config.name)
        except Exception as exc:  # noqa: BLE001
            ui.errorf("Failed to get content library item uuid: %s", clean(state, str(exc)))
            return fail(state, exc)
        state.put(keys.CONTENT_LIBRARY_ITEM_UUID, item_uuid)
        logger.info(
            "imported to content library library=%s item=%s uuid=%s",
            self.config.library,
            self.config.name,
            item_uuid,
        )
        return StepAction.CONTINUE
