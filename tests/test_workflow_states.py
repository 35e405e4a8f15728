"""Test the estimate request state machine."""
import pytest

from patterns.workflow_states import EstimateState, WorkflowInstance

TERMINAL = {
    EstimateState.RATE_LIMITED,
    EstimateState.INVALID,
    EstimateState.FETCH_FAILED,
    EstimateState.MATCHED,
    EstimateState.SHOP_DEFAULT,
    EstimateState.GENERIC_FALLBACK,
    EstimateState.NO_RULES_FOUND,
    EstimateState.FAILED,
}


def test_happy_path_to_match():
    wf = WorkflowInstance(workflow_id="req-1")
    wf.transition(EstimateState.ADMITTED, actor="rate_limiter")
    wf.transition(EstimateState.VALIDATED, actor="validator")
    wf.transition(EstimateState.RULES_FETCHED, metadata={"count": 2})
    wf.transition(EstimateState.MATCHED)
    assert wf.is_terminal
    assert wf.path == ["received", "admitted", "validated", "rules_fetched", "matched"]
    assert wf.history[2].metadata == {"count": 2}


def test_fallback_path():
    wf = WorkflowInstance(workflow_id="req-2")
    for state in (
        EstimateState.ADMITTED,
        EstimateState.VALIDATED,
        EstimateState.RULES_FETCHED,
        EstimateState.DEFAULT_LOOKUP,
        EstimateState.GENERIC_FALLBACK,
    ):
        wf.transition(state)
    assert wf.current_state == EstimateState.GENERIC_FALLBACK


def test_invalid_transition_raises():
    wf = WorkflowInstance(workflow_id="req-3")
    with pytest.raises(ValueError, match="Cannot transition from received to matched"):
        wf.transition(EstimateState.MATCHED)


def test_terminal_states_have_no_exits():
    for state in TERMINAL:
        wf = WorkflowInstance(workflow_id="x", current_state=state)
        assert wf.is_terminal
        assert not wf.can_transition(EstimateState.FAILED)


def test_failed_reachable_from_every_non_terminal_state():
    for state in set(EstimateState) - TERMINAL:
        wf = WorkflowInstance(workflow_id="x", current_state=state)
        assert not wf.is_terminal
        assert wf.can_transition(EstimateState.FAILED)


def test_path_without_history():
    assert WorkflowInstance(workflow_id="x").path == ["received"]
