import logging
import threading
from pathlib import Path

from image_builder import state_bag as keys
from image_builder.driver import ExportRequest
from image_builder.runner import Step, StepAction, halt
from image_builder.schemas import ExportConfig
from image_builder.state_bag import StateBag
from image_builder.steps.common import fail, get_ui, get_vm


logger = logging.getLogger(__name__)


class StepExport(Step):
    def __init__(self, config: ExportConfig):
        self.config = config

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        output_dir = Path(self.config.output_directory)
        if output_dir.exists() and any(output_dir.iterdir()) and not self.config.force:
            return halt(
                state,
                f"output directory '{output_dir}' already exists and is not empty, "
                "set 'force' to overwrite",
            )

        get_ui(state).say("Exporting to Open Virtualization Format (OVF)...")
        request = ExportRequest(
            name=self.config.name,
            output_dir=str(output_dir),
            format=self.config.output_format,
            manifest=self.config.manifest,
            force=self.config.force,
            image_files=self.config.image_files,
            options=list(self.config.options),
        )
        try:
            export_path = get_vm(state).export(cancel, request)
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc, "error exporting virtual machine")
        if cancel.is_set():
            return StepAction.HALT

        state.put(keys.EXPORT_PATH, export_path)
        logger.info("exported vm path=%s format=%s", export_path, request.format)
        return StepAction.CONTINUE
