import logging
import threading

from image_builder import state_bag as keys
from image_builder.driver import DriverFactory
from image_builder.runner import Step, StepAction
from image_builder.schemas import ConnectConfig
from image_builder.state_bag import StateBag
from image_builder.steps.common import clean, fail, get_ui


logger = logging.getLogger(__name__)


class StepConnect(Step):
    def __init__(self, config: ConnectConfig, driver_factory: DriverFactory):
        self.config = config
        self.driver_factory = driver_factory

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        try:
            driver = self.driver_factory(self.config)
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc, "error connecting to the management endpoint")
        state.put(keys.DRIVER, driver)
        logger.info(
            "connected server=%s datacenter=%s",
            self.config.vcenter_server,
            self.config.datacenter or "-",
        )
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        driver, present = state.get_ok(keys.DRIVER)
        if not present:
            logger.info("no driver in state, nothing to close")
            return
        get_ui(state).say("Closing sessions...")
        try:
            driver.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "failed to close session, it may already be closed error=%s",
                clean(state, str(exc)),
            )
