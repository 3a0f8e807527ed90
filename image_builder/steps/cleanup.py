import logging

from image_builder import state_bag as keys
from image_builder.state_bag import StateBag
from image_builder.steps.common import clean, get_ui, was_interrupted


logger = logging.getLogger(__name__)


def cleanup_vm(state: StateBag) -> None:
    vm = state.get(keys.VM)
    if vm is None:
        return

    try:
        state.put(keys.METADATA, vm.metadata())
    except Exception as exc:  # noqa: BLE001
        logger.warning("vm metadata unavailable error=%s", clean(state, str(exc)))

    if not was_interrupted(state) and not state.has(keys.DESTROY_VM):
        return

    ui = get_ui(state)
    ui.say("Destroying VM...")
    try:
        vm.destroy()
    except Exception as exc:  # noqa: BLE001
        ui.error(clean(state, str(exc)))
