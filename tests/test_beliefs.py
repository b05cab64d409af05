import pytest

from epistemic_core.beliefs import (
    active_beliefs,
    create_belief,
    deactivate_belief,
    find_matching_belief,
    get_belief,
    update_belief,
)
from epistemic_core.errors import NotFoundError, ValidationError
from epistemic_core.models import BeliefSystem, BeliefType


def test_create_belief():
    bs = BeliefSystem()
    b = create_belief(bs, "u", "I need eight hours of sleep")

    assert b.version == 1
    assert b.active
    assert b.type == BeliefType.STATEMENT
    assert get_belief(bs, b.id) is b


def test_empty_content_rejected():
    with pytest.raises(ValidationError):
        create_belief(BeliefSystem(), "u", "   ")


def test_update_supersedes_without_deleting():
    bs = BeliefSystem()
    old = create_belief(bs, "u", "Coffee ruins my sleep")
    new = update_belief(bs, old.id, 1, "Coffee after noon ruins my sleep", BeliefType.CAUSAL)

    assert new.version == 2
    assert new.type == BeliefType.CAUSAL
    assert not old.active
    assert old.superseded_by == new.id
    assert len(bs.beliefs) == 2
    assert active_beliefs(bs) == [new]


def test_update_with_stale_version():
    bs = BeliefSystem()
    b = create_belief(bs, "u", "x")
    with pytest.raises(ValidationError):
        update_belief(bs, b.id, 2, "y")


def test_superseded_belief_cannot_be_updated():
    bs = BeliefSystem()
    b = create_belief(bs, "u", "x")
    update_belief(bs, b.id, 1, "y")
    with pytest.raises(ValidationError):
        update_belief(bs, b.id, 1, "z")


def test_unknown_belief():
    with pytest.raises(NotFoundError):
        get_belief(BeliefSystem(), "missing")


def test_active_beliefs_by_type():
    bs = BeliefSystem()
    create_belief(bs, "u", "a")
    causal = create_belief(bs, "u", "Sleep causes focus", BeliefType.CAUSAL)
    gone = create_belief(bs, "u", "c", BeliefType.CAUSAL)
    deactivate_belief(bs, gone.id)

    assert active_beliefs(bs, BeliefType.CAUSAL) == [causal]


def test_find_matching_belief():
    bs = BeliefSystem()
    b = create_belief(bs, "u", "I exercise three times a week")

    assert find_matching_belief(bs, "  i exercise THREE   times a week ") is b
    assert find_matching_belief(bs, "I swim") is None
    assert find_matching_belief(bs, "") is None
    assert find_matching_belief(bs, "I exercise three times a week", BeliefType.CAUSAL) is None
    deactivate_belief(bs, b.id)
    assert find_matching_belief(bs, "I exercise three times a week") is None


def test_contained_statement_is_not_a_match():
    bs = BeliefSystem()
    create_belief(bs, "u", "I do not think exercise helps my sleep")

    assert find_matching_belief(bs, "exercise helps my sleep") is None
    assert find_matching_belief(bs, "exercise") is None
