"""Predictive processing context: the graph of beliefs and the situations they predict.

ObservationContexts are the nodes a belief can make predictions about;
BeliefContexts are the typed belief -> context edges carrying confidence history
and a conditional distribution over the context's possible states.
The PPC owns both lists. Anything handed out for reading is a copy.
"""

import re
from threading import Lock

from epistemic_core.config import DEFAULT_CONFIDENCE, DEFAULT_EMOTION_INTENSITY
from epistemic_core.errors import ValidationError
from epistemic_core.models import (
    Belief,
    BeliefContext,
    BeliefSystem,
    BeliefSystemMetrics,
    BeliefType,
    ConfidenceRating,
    EpistemicContext,
    EpistemicEmotion,
    ObservationContext,
    PredictiveProcessingContext,
)

DEFAULT_STATES = ["Positive", "Negative", "Neutral"]
# Believed outcome first: the subject expects their belief to hold.
DEFAULT_DISTRIBUTION = {"Positive": 0.8, "Negative": 0.1, "Neutral": 0.1}


def ensure_context(belief_system: BeliefSystem) -> PredictiveProcessingContext:
    """Return the system's PPC, appending a new epistemic context if there is none.

    Reserved contexts are left where they are.
    """
    ppc = find_context(belief_system)
    if ppc is None:
        belief_system.epistemic_contexts.append(EpistemicContext(context=PredictiveProcessingContext()))
        ppc = belief_system.epistemic_contexts[-1].context
    return ppc


def find_context(belief_system: BeliefSystem) -> PredictiveProcessingContext | None:
    """The PPC if one exists, without creating it."""
    for ec in belief_system.epistemic_contexts:
        if isinstance(ec.context, PredictiveProcessingContext):
            return ec.context
    return None


def create_observation_context(
    ppc: PredictiveProcessingContext,
    question: str,
    answer: str,
) -> ObservationContext:
    oc = ObservationContext(
        name=f"Response to '{question}'",
        possible_states=list(DEFAULT_STATES),
    )
    ppc.observation_contexts.append(oc)
    return oc


def create_belief_context(
    ppc: PredictiveProcessingContext,
    belief_id: str,
    observation_context_id: str,
    confidence_score: float,
) -> BeliefContext:
    if ppc.observation_context(observation_context_id) is None:
        raise ValidationError(f"observation context {observation_context_id} is not in this context graph")
    if not 0.0 <= confidence_score <= 1.0:
        raise ValidationError(f"confidence score must be between 0 and 1, got {confidence_score}")

    bc = BeliefContext(
        belief_id=belief_id,
        observation_context_id=observation_context_id,
        confidence_ratings=[ConfidenceRating(score=confidence_score, is_default=True, source="default")],
        epistemic_emotion=EpistemicEmotion.CONFIRMATION,
        emotion_intensity=DEFAULT_EMOTION_INTENSITY,
    )
    ppc.belief_contexts.append(bc)
    return bc


def set_conditional_probabilities(
    ppc: PredictiveProcessingContext,
    belief_context: BeliefContext,
    probabilities: dict[str, float],
):
    """Replace a belief context's distribution, normalized to sum to 1.

    Every key must be one of the observation context's possible states.
    """
    oc = ppc.observation_context(belief_context.observation_context_id)
    if oc is None:
        raise ValidationError(f"observation context {belief_context.observation_context_id} is not in this context graph")
    unknown = set(probabilities) - set(oc.possible_states)
    if unknown:
        raise ValidationError(f"states {sorted(unknown)} are not possible states of '{oc.name}'")
    if any(p < 0 for p in probabilities.values()):
        raise ValidationError("probabilities cannot be negative")
    total = sum(probabilities.values())
    if total <= 0:
        raise ValidationError("probabilities must have a positive sum")
    belief_context.conditional_probabilities = {s: p / total for s, p in probabilities.items()}


def add_possible_state(observation_context: ObservationContext, state: str):
    """States are append-only; adding a known state is a no-op."""
    if state not in observation_context.possible_states:
        observation_context.possible_states.append(state)


def link_interaction_beliefs(
    belief_system: BeliefSystem,
    question: str,
    answer: str,
    extracted_beliefs: list[Belief],
    interaction_id: str | None = None,
) -> tuple[ObservationContext, list[BeliefContext]]:
    """One observation context for the turn, one belief context per extracted belief."""
    ppc = ensure_context(belief_system)
    oc = create_observation_context(ppc, question, answer)

    created = []
    for belief in extracted_beliefs:
        bc = create_belief_context(ppc, belief.id, oc.id, DEFAULT_CONFIDENCE)
        set_conditional_probabilities(ppc, bc, DEFAULT_DISTRIBUTION)
        bc.evidence.append(answer)
        if interaction_id:
            bc.related_interaction_ids.append(interaction_id)
        created.append(bc)
    return oc, created


def belief_contexts_for_belief(ppc: PredictiveProcessingContext, belief_id: str) -> list[BeliefContext]:
    return [bc for bc in ppc.belief_contexts if bc.belief_id == belief_id]


def observations_for_belief(ppc: PredictiveProcessingContext, belief_id: str) -> list[ObservationContext]:
    observations = []
    seen = set()
    for bc in ppc.belief_contexts:
        if bc.belief_id != belief_id or bc.observation_context_id in seen:
            continue
        oc = ppc.observation_context(bc.observation_context_id)
        if oc is not None:
            seen.add(oc.id)
            observations.append(oc.model_copy(deep=True))
    return observations


def beliefs_for_observation(
    belief_system: BeliefSystem,
    ppc: PredictiveProcessingContext,
    observation_context_id: str,
) -> list[Belief]:
    by_id = {b.id: b for b in belief_system.beliefs}
    beliefs = []
    seen = set()
    for bc in ppc.belief_contexts:
        if bc.observation_context_id == observation_context_id and bc.belief_id in by_id and bc.belief_id not in seen:
            seen.add(bc.belief_id)
            beliefs.append(by_id[bc.belief_id].model_copy(deep=True))
    return beliefs


def belief_metrics(belief_system: BeliefSystem) -> BeliefSystemMetrics:
    """Counts over active beliefs. Statements are beliefs of type STATEMENT."""
    beliefs = [b for b in belief_system.beliefs if b.active]
    ppc = find_context(belief_system)
    with_contexts = {bc.belief_id for bc in ppc.belief_contexts} if ppc else set()

    falsifiable = sum(1 for b in beliefs if b.id in with_contexts)
    return BeliefSystemMetrics(
        total_beliefs=len(beliefs),
        total_falsifiable_beliefs=falsifiable,
        total_causal_beliefs=sum(1 for b in beliefs if b.type == BeliefType.CAUSAL),
        total_belief_statements=sum(1 for b in beliefs if b.type == BeliefType.STATEMENT),
        clarification_score=falsifiable / len(beliefs) if beliefs else 0.0,
    )


# --- Context trees from structured text ---

_CONTEXT_MARKER = re.compile(r"\[\[C:([^\]]+)\]\]")
_STATE_MARKER = re.compile(r"\[\[S:([^\]]+)\]\]")
NARRATIVE_HEADING = "## Experiential Narrative"


def _narrative_section(text: str) -> str:
    start = text.find(NARRATIVE_HEADING)
    if start == -1:
        return text
    end = text.find("## ", start + len(NARRATIVE_HEADING))
    return text[start:] if end == -1 else text[start:end]


def extrapolate_context_tree(structured_text: str) -> list[ObservationContext]:
    """Build a parent-linked forest from `[[C: name]]` and `[[S: state]]` markers.

    Two leading spaces are one level of depth. A context at depth d gets the most
    recent context at depth d-1 as parent. A state attaches to the most recent
    context at its own depth, or the nearest shallower one when there is none.
    """
    contexts: list[ObservationContext] = []
    open_at: dict[int, ObservationContext] = {}

    for line in _narrative_section(structured_text).split("\n"):
        depth = (len(line) - len(line.lstrip(" "))) // 2

        for match in _CONTEXT_MARKER.finditer(line):
            parent = open_at.get(depth - 1) if depth > 0 else None
            ctx = ObservationContext(name=match.group(1).strip(), parent_id=parent.id if parent else "")
            contexts.append(ctx)
            open_at[depth] = ctx
            for d in [d for d in open_at if d > depth]:
                del open_at[d]

        for match in _STATE_MARKER.finditer(line):
            owners = [d for d in open_at if d <= depth]
            if owners:
                add_possible_state(open_at[max(owners)], match.group(1).strip())

    return contexts


class ExtrapolationCache:
    """Extrapolated context trees keyed by philosophy id."""

    def __init__(self):
        self._entries: dict[str, list[ObservationContext]] = {}
        self._lock = Lock()

    def get(self, philosophy_id: str) -> list[ObservationContext] | None:
        with self._lock:
            cached = self._entries.get(philosophy_id)
            return [oc.model_copy(deep=True) for oc in cached] if cached is not None else None

    def put(self, philosophy_id: str, contexts: list[ObservationContext]):
        with self._lock:
            self._entries[philosophy_id] = [oc.model_copy(deep=True) for oc in contexts]

    def invalidate(self, philosophy_id: str):
        with self._lock:
            self._entries.pop(philosophy_id, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __contains__(self, philosophy_id: str) -> bool:
        with self._lock:
            return philosophy_id in self._entries
