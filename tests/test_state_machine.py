from image_builder.state_machine import (
    BuildState,
    ClonePhase,
    can_advance_clone,
    can_transition,
)


def test_valid_transitions():
    assert can_transition(BuildState.QUEUED.value, BuildState.RUNNING.value)
    assert can_transition(BuildState.QUEUED.value, BuildState.CANCELLED.value)
    assert can_transition(BuildState.RUNNING.value, BuildState.SUCCEEDED.value)
    assert can_transition(BuildState.RUNNING.value, BuildState.FAILED.value)


def test_terminal_states_are_final():
    assert not can_transition(BuildState.SUCCEEDED.value, BuildState.RUNNING.value)
    assert not can_transition(BuildState.CANCELLED.value, BuildState.QUEUED.value)


def test_idempotent_transition_allowed():
    assert can_transition(BuildState.RUNNING.value, BuildState.RUNNING.value)


def test_clone_phase_order():
    assert can_advance_clone(ClonePhase.NOT_STARTED, ClonePhase.PRE_CLEANING)
    assert can_advance_clone(ClonePhase.PRE_CLEANING, ClonePhase.CLONING)
    assert can_advance_clone(ClonePhase.PRE_CLEANING, ClonePhase.REMOTE_DEPLOYING)
    assert can_advance_clone(ClonePhase.REMOTE_DEPLOYING, ClonePhase.DONE)
    assert not can_advance_clone(ClonePhase.NOT_STARTED, ClonePhase.CLONING)
    assert not can_advance_clone(ClonePhase.CLONING, ClonePhase.REMOTE_DEPLOYING)


def test_halted_reachable_from_any_phase_once():
    for phase in ClonePhase:
        if phase != ClonePhase.HALTED:
            assert can_advance_clone(phase, ClonePhase.HALTED)
    assert not can_advance_clone(ClonePhase.HALTED, ClonePhase.HALTED)
    assert not can_advance_clone(ClonePhase.HALTED, ClonePhase.DONE)
