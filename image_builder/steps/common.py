from typing import Any

from image_builder import state_bag as keys
from image_builder.errors import StepError
from image_builder.runner import StepAction, halt
from image_builder.sanitize import sanitize_error, sanitize_error_message
from image_builder.state_bag import StateBag
from image_builder.ui import LoggingUi, Ui


SECRETS = "secrets"


def get_ui(state: StateBag) -> Ui:
    ui = state.get(keys.UI)
    if ui is None:
        ui = LoggingUi(secrets=state_secrets(state))
        state.put(keys.UI, ui)
    return ui


def get_vm(state: StateBag) -> Any:
    return state.get(keys.VM)


def state_secrets(state: StateBag) -> tuple[str, ...]:
    return tuple(state.get(SECRETS, ()))


def clean(state: StateBag, text: str) -> str:
    return sanitize_error_message(text, state_secrets(state))


def fail(state: StateBag, exc: BaseException, prefix: str | None = None) -> StepAction:
    detail = sanitize_error(exc, state_secrets(state))
    message = f"{prefix}: {detail}" if prefix else detail
    return halt(state, StepError(message))


def was_interrupted(state: StateBag) -> bool:
    return state.has(keys.CANCELLED) or state.has(keys.HALTED)
