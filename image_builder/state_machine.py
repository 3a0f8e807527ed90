from enum import Enum


class BuildState(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ClonePhase(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    PRE_CLEANING = "PRE_CLEANING"
    CLONING = "CLONING"
    REMOTE_DEPLOYING = "REMOTE_DEPLOYING"
    DONE = "DONE"
    HALTED = "HALTED"


ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    BuildState.QUEUED.value: {
        BuildState.RUNNING.value,
        BuildState.FAILED.value,
        BuildState.CANCELLED.value,
    },
    BuildState.RUNNING.value: {
        BuildState.SUCCEEDED.value,
        BuildState.FAILED.value,
        BuildState.CANCELLED.value,
    },
    BuildState.SUCCEEDED.value: set(),
    BuildState.FAILED.value: set(),
    BuildState.CANCELLED.value: set(),
}

CLONE_TRANSITIONS: dict[ClonePhase, set[ClonePhase]] = {
    ClonePhase.NOT_STARTED: {ClonePhase.PRE_CLEANING},
    ClonePhase.PRE_CLEANING: {ClonePhase.CLONING, ClonePhase.REMOTE_DEPLOYING},
    ClonePhase.CLONING: {ClonePhase.DONE},
    ClonePhase.REMOTE_DEPLOYING: {ClonePhase.DONE},
    ClonePhase.DONE: set(),
    ClonePhase.HALTED: set(),
}


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, set())


def can_advance_clone(current: ClonePhase, target: ClonePhase) -> bool:
    # HALTED is reachable from any phase and absorbs everything after it.
    if target == ClonePhase.HALTED:
        return current != ClonePhase.HALTED
    return target in CLONE_TRANSITIONS.get(current, set())
