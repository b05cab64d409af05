"""Belief lifecycle inside a belief system. Beliefs are versioned, never deleted."""

from epistemic_core.errors import NotFoundError, ValidationError
from epistemic_core.models import Belief, BeliefSystem, BeliefType


def create_belief(
    belief_system: BeliefSystem,
    self_model_id: str,
    content: str | list[str],
    belief_type: BeliefType = BeliefType.STATEMENT,
) -> Belief:
    fragments = [content] if isinstance(content, str) else list(content)
    if not any(f.strip() for f in fragments):
        raise ValidationError("belief content cannot be empty")
    belief = Belief(self_model_id=self_model_id, type=belief_type, content=fragments)
    belief_system.beliefs.append(belief)
    return belief


def get_belief(belief_system: BeliefSystem, belief_id: str) -> Belief:
    for b in belief_system.beliefs:
        if b.id == belief_id:
            return b
    raise NotFoundError(f"belief {belief_id} not found")


def active_beliefs(belief_system: BeliefSystem, belief_type: BeliefType | None = None) -> list[Belief]:
    return [
        b for b in belief_system.beliefs
        if b.active and (belief_type is None or b.type == belief_type)
    ]


def update_belief(
    belief_system: BeliefSystem,
    belief_id: str,
    current_version: int,
    content: str | list[str],
    belief_type: BeliefType | None = None,
) -> Belief:
    """Supersede a belief with a new version under a fresh id.

    The old version stays in the system, inactive, pointing at its successor.
    """
    old = get_belief(belief_system, belief_id)
    if not old.active:
        raise ValidationError(f"belief {belief_id} is inactive (superseded by {old.superseded_by})")
    if old.version != current_version:
        raise ValidationError(
            f"belief {belief_id} is at version {old.version}, not {current_version}"
        )
    fragments = [content] if isinstance(content, str) else list(content)
    new = Belief(
        self_model_id=old.self_model_id,
        version=old.version + 1,
        type=belief_type or old.type,
        content=fragments,
    )
    old.active = False
    old.superseded_by = new.id
    belief_system.beliefs.append(new)
    return new


def deactivate_belief(belief_system: BeliefSystem, belief_id: str) -> Belief:
    belief = get_belief(belief_system, belief_id)
    belief.active = False
    return belief


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def find_matching_belief(
    belief_system: BeliefSystem,
    content: str,
    belief_type: BeliefType = BeliefType.STATEMENT,
) -> Belief | None:
    """An active belief of the same type whose text equals `content`, ignoring case and whitespace.

    Partial overlap is not a match: "exercise helps my sleep" and
    "I do not think exercise helps my sleep" are different beliefs.
    """
    needle = _normalize(content)
    if not needle:
        return None
    for b in belief_system.beliefs:
        if b.active and b.type == belief_type and _normalize(b.text) == needle:
            return b
    return None
