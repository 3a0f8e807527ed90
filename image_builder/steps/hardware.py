import logging
import threading

from image_builder.driver import HardwareSpec, ToolsConfig
from image_builder.runner import Step, StepAction
from image_builder.schemas import ConfigParamsConfig, HardwareConfig
from image_builder.state_bag import StateBag
from image_builder.steps.common import fail, get_ui, get_vm


logger = logging.getLogger(__name__)

TOOLS_UPGRADE_AT_POWER_CYCLE = "UpgradeAtPowerCycle"


def hardware_spec(config: HardwareConfig) -> HardwareSpec:
    return HardwareSpec(
        cpus=config.cpus,
        cpu_cores=config.cpu_cores,
        cpu_reservation=config.cpu_reservation,
        cpu_limit=config.cpu_limit,
        cpu_hot_add_enabled=config.cpu_hot_plug,
        ram=config.ram,
        ram_reservation=config.ram_reservation,
        ram_reserve_all=config.ram_reserve_all,
        memory_hot_add_enabled=config.ram_hot_plug,
        video_ram=config.video_ram,
        displays=config.displays,
        vgpu_profile=config.vgpu_profile,
        nested_hv=config.nested_hv,
        firmware=config.firmware,
        force_bios_setup=config.force_bios_setup,
        vtpm_enabled=config.vtpm,
    )


class StepConfigureHardware(Step):
    def __init__(self, config: HardwareConfig):
        self.config = config

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        if self.config.is_empty():
            return StepAction.CONTINUE
        get_ui(state).say("Customizing hardware...")
        try:
            get_vm(state).configure(hardware_spec(self.config))
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc)
        return StepAction.CONTINUE


class StepConfigParams(Step):
    def __init__(self, config: ConfigParamsConfig):
        self.config = config

    def tools_config(self) -> ToolsConfig | None:
        if not (self.config.tools_sync_time or self.config.tools_upgrade_policy):
            return None
        return ToolsConfig(
            sync_time_with_host=True if self.config.tools_sync_time else None,
            upgrade_policy=(
                TOOLS_UPGRADE_AT_POWER_CYCLE if self.config.tools_upgrade_policy else ""
            ),
        )

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        params = dict(self.config.configuration_parameters)
        get_ui(state).say("Adding configuration parameters...")
        for key, value in params.items():
            logger.info("adding config param key=%s value=%s", key, value)
        try:
            get_vm(state).add_config_params(params, self.tools_config())
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc, "error adding configuration parameters")
        return StepAction.CONTINUE
