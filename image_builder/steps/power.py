import logging
import threading

from image_builder import state_bag as keys
from image_builder.runner import Step, StepAction
from image_builder.schemas import RunConfig, ShutdownConfig, WaitIpConfig
from image_builder.state_bag import StateBag
from image_builder.steps.common import clean, fail, get_ui, get_vm, was_interrupted


logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT_SEC = 300
DEFAULT_IP_WAIT_TIMEOUT_SEC = 1800


class StepRun(Step):
    def __init__(self, config: RunConfig):
        self.config = config

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        ui = get_ui(state)
        vm = get_vm(state)
        if self.config.boot_order:
            ui.say("Set boot order...")
            order = [item.strip() for item in self.config.boot_order.split(",")]
            try:
                vm.set_boot_order(order)
            except Exception as exc:  # noqa: BLE001
                return fail(state, exc)

        ui.say("Power on VM...")
        try:
            vm.power_on()
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc)
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if not was_interrupted(state):
            return
        vm = get_vm(state)
        if vm is None:
            return
        ui = get_ui(state)
        ui.say("Power off VM...")
        try:
            vm.power_off()
        except Exception as exc:  # noqa: BLE001
            ui.error(clean(state, str(exc)))


class StepWaitForIp(Step):
    def __init__(self, config: WaitIpConfig, default_timeout_sec: int = DEFAULT_IP_WAIT_TIMEOUT_SEC):
        self.config = config
        self.default_timeout_sec = default_timeout_sec

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        timeout = self.config.ip_wait_timeout_sec or self.default_timeout_sec
        get_ui(state).say("Waiting for IP...")
        try:
            ip = get_vm(state).wait_for_ip(cancel, timeout, self.config.ip_wait_address)
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc, "error waiting for IP")
        if cancel.is_set():
            return StepAction.HALT
        if not ip:
            return fail(state, TimeoutError("no IP address was reported before the wait ended"))

        state.put(keys.INSTANCE_IP, ip)
        generated = state.get(keys.GENERATED_DATA)
        if generated is None:
            generated = {}
            state.put(keys.GENERATED_DATA, generated)
        generated["VMIP"] = ip
        get_ui(state).say(f"IP address: {ip}")
        return StepAction.CONTINUE


class StepShutdown(Step):
    def __init__(
        self, config: ShutdownConfig, default_timeout_sec: int = DEFAULT_SHUTDOWN_TIMEOUT_SEC
    ):
        self.config = config
        self.default_timeout_sec = default_timeout_sec

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        ui = get_ui(state)
        vm = get_vm(state)
        timeout = self.config.shutdown_timeout_sec or self.default_timeout_sec

        try:
            powered_off = vm.is_powered_off()
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc)
        if powered_off:
            ui.say("Virtual machine is already powered off.")
            return StepAction.CONTINUE

        if self.config.disable_shutdown:
            ui.say("Automatic shutdown disabled. Please shutdown virtual machine.")
        else:
            ui.say(f"Please shutdown virtual machine within {timeout}s.")
            try:
                vm.start_shutdown()
            except Exception as exc:  # noqa: BLE001
                return fail(state, exc, "error shutting down virtual machine")

        logger.info("waiting for shutdown timeout_sec=%s", timeout)
        try:
            vm.wait_for_shutdown(cancel, timeout)
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc)
        return StepAction.CONTINUE
