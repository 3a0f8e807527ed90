import logging
import threading

from image_builder import state_bag as keys
from image_builder.runner import Step, StepAction
from image_builder.schemas import LocationConfig
from image_builder.state_bag import StateBag
from image_builder.steps.common import fail


logger = logging.getLogger(__name__)


class StepResolveDatastore(Step):
    def __init__(self, location: LocationConfig):
        self.location = location

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        if not self.location.datastore and not self.location.datastore_cluster:
            return StepAction.CONTINUE

        driver = state.get(keys.DRIVER)
        if self.location.datastore_cluster:
            try:
                datastore = driver.resolve_datastore(
                    self.location.cluster, self.location.datastore_cluster
                )
            except Exception as exc:  # noqa: BLE001
                return fail(
                    state,
                    exc,
                    f"error resolving datastore from cluster '{self.location.datastore_cluster}'",
                )
            logger.info(
                "selected datastore=%s datastore_cluster=%s",
                datastore.name(),
                self.location.datastore_cluster,
            )
        else:
            try:
                datastore = driver.find_datastore(self.location.datastore, "")
            except Exception as exc:  # noqa: BLE001
                return fail(
                    state, exc, f"error finding datastore '{self.location.datastore}'"
                )
            logger.info("using datastore=%s", self.location.datastore)

        state.put(keys.DATASTORE, datastore)
        return StepAction.CONTINUE
