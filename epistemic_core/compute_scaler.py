"""Compute scaling: spend more context on the next question when the subject is less settled.

An ambiguity score in [0, 1] picks a level from an ordered ladder; the level bounds
how much of the belief ontology is handed to question generation.
"""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from epistemic_core.errors import ValidationError
from epistemic_core.models import (
    BeliefContext,
    BeliefSystem,
    DialecticalInteraction,
    ObservationContext,
    QuestionAnswerInteraction,
)
from epistemic_core.predictive_processing import find_context

SEMANTIC_WEIGHT = 0.4
CONTEXT_WEIGHT = 0.3
CONFIDENCE_WEIGHT = 0.3

_STOPWORDS = {
    "a", "an", "and", "are", "do", "does", "for", "how", "i", "in", "is", "it", "of",
    "on", "or", "response", "the", "to", "what", "when", "why", "you", "your",
}
_TOKEN = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")


class ComputeLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    max_context_depth: int = Field(ge=0)
    max_branches: int = Field(ge=0)
    max_beliefs: int = Field(ge=0)


DEFAULT_LEVELS = [
    ComputeLevel(name="minimal", max_context_depth=1, max_branches=2, max_beliefs=5),
    ComputeLevel(name="low", max_context_depth=2, max_branches=4, max_beliefs=10),
    ComputeLevel(name="medium", max_context_depth=3, max_branches=6, max_beliefs=20),
    ComputeLevel(name="high", max_context_depth=4, max_branches=8, max_beliefs=35),
    ComputeLevel(name="maximal", max_context_depth=5, max_branches=10, max_beliefs=50),
]


# --- Ambiguity ---

def _tokens(text: str) -> set[str]:
    return {t for t in _TOKEN.findall(text.lower()) if t not in _STOPWORDS}


def jaccard(a: str, b: str) -> float:
    ta, tb = _tokens(a), _tokens(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def _question_of(interaction: DialecticalInteraction) -> str:
    if isinstance(interaction.interaction, QuestionAnswerInteraction):
        return interaction.interaction.question.text
    return ""


def semantic_similarity(interaction: DialecticalInteraction, history: list[DialecticalInteraction]) -> float:
    question = _question_of(interaction)
    prior = [_question_of(i) for i in history if i.id != interaction.id]
    return max((jaccard(question, q) for q in prior if q), default=0.0)


def context_overlap(interaction: DialecticalInteraction, covered_contexts: list[ObservationContext]) -> float:
    question = _question_of(interaction)
    return max((jaccard(question, oc.name) for oc in covered_contexts), default=0.0)


def confidence_variance(touched: list[BeliefContext]) -> float:
    scores = [bc.latest_confidence for bc in touched]
    if len(scores) < 2:
        return 0.0
    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)
    # 0.25 is the largest variance values in [0, 1] can have
    return min(1.0, variance * 4)


def ambiguity_score(
    interaction: DialecticalInteraction,
    history: list[DialecticalInteraction],
    covered_contexts: list[ObservationContext] | None = None,
    touched: list[BeliefContext] | None = None,
) -> float:
    score = (
        SEMANTIC_WEIGHT * semantic_similarity(interaction, history)
        + CONTEXT_WEIGHT * context_overlap(interaction, covered_contexts or [])
        + CONFIDENCE_WEIGHT * confidence_variance(touched or [])
    )
    return min(1.0, max(0.0, score))


# --- Ontology ---

class OntologyNode(BaseModel):
    context: ObservationContext
    confidence: float = 0.0
    children: list["OntologyNode"] = Field(default_factory=list)


class OntologyBelief(BaseModel):
    belief_id: str
    text: str
    confidence: float = 0.0
    last_evidenced_at: datetime | None = None


def _rank(confidence: float, at: datetime | None) -> tuple[float, float]:
    return confidence, at.timestamp() if at else 0.0


class BeliefOntology(BaseModel):
    roots: list[OntologyNode] = Field(default_factory=list)
    beliefs: list[OntologyBelief] = Field(default_factory=list)

    @classmethod
    def from_belief_system(cls, belief_system: BeliefSystem) -> "BeliefOntology":
        ppc = find_context(belief_system)
        contexts = ppc.observation_contexts if ppc else []
        belief_contexts = ppc.belief_contexts if ppc else []

        context_confidence: dict[str, float] = {}
        belief_confidence: dict[str, float] = {}
        belief_evidenced: dict[str, datetime] = {}
        for bc in belief_contexts:
            c = bc.latest_confidence
            context_confidence[bc.observation_context_id] = max(context_confidence.get(bc.observation_context_id, 0.0), c)
            belief_confidence[bc.belief_id] = max(belief_confidence.get(bc.belief_id, 0.0), c)
            at = bc.last_assessed_at
            if at and (bc.belief_id not in belief_evidenced or at > belief_evidenced[bc.belief_id]):
                belief_evidenced[bc.belief_id] = at

        nodes = {
            oc.id: OntologyNode(context=oc.model_copy(deep=True), confidence=context_confidence.get(oc.id, 0.0))
            for oc in contexts
        }
        roots = []
        for oc in contexts:
            parent = nodes.get(oc.parent_id) if oc.parent_id else None
            if parent is None:
                roots.append(nodes[oc.id])
            else:
                parent.children.append(nodes[oc.id])

        beliefs = [
            OntologyBelief(
                belief_id=b.id,
                text=b.text,
                confidence=belief_confidence.get(b.id, 0.0),
                last_evidenced_at=belief_evidenced.get(b.id),
            )
            for b in belief_system.beliefs if b.active
        ]
        return cls(roots=roots, beliefs=beliefs)

    def prune_to_depth(self, max_depth: int):
        """Keep nodes at most `max_depth` levels from a root (roots are level 1)."""
        if max_depth < 0:
            raise ValidationError(f"max depth cannot be negative, got {max_depth}")

        def prune(nodes: list[OntologyNode], level: int) -> list[OntologyNode]:
            if level > max_depth:
                return []
            for n in nodes:
                n.children = prune(n.children, level + 1)
            return nodes

        self.roots = prune(self.roots, 1)

    def limit_branches(self, max_branches: int):
        """Keep the `max_branches` most confident children of every node, roots included."""
        if max_branches < 0:
            raise ValidationError(f"max branches cannot be negative, got {max_branches}")

        def limit(nodes: list[OntologyNode]) -> list[OntologyNode]:
            kept = sorted(nodes, key=lambda n: n.confidence, reverse=True)[:max_branches]
            for n in kept:
                n.children = limit(n.children)
            return kept

        self.roots = limit(self.roots)

    def limit_beliefs(self, max_beliefs: int):
        """Keep the most confident beliefs, most recently evidenced first on ties."""
        if max_beliefs < 0:
            raise ValidationError(f"max beliefs cannot be negative, got {max_beliefs}")
        self.beliefs = sorted(
            self.beliefs, key=lambda b: _rank(b.confidence, b.last_evidenced_at), reverse=True,
        )[:max_beliefs]

    def iter_nodes(self):
        stack = [(n, 1) for n in reversed(self.roots)]
        while stack:
            node, depth = stack.pop()
            yield node, depth
            stack.extend((c, depth + 1) for c in reversed(node.children))

    def depth(self) -> int:
        return max((d for _, d in self.iter_nodes()), default=0)

    def summary(self) -> str:
        lines = []
        for node, depth in self.iter_nodes():
            states = ", ".join(node.context.possible_states)
            lines.append(f"{'  ' * (depth - 1)}- {node.context.name} [{states}] (confidence={node.confidence:.2f})")
        for b in self.beliefs:
            lines.append(f"* \"{b.text}\" (confidence={b.confidence:.2f})")
        return "\n".join(lines)


class ComputeScaler:
    def __init__(self, levels: list[ComputeLevel] | None = None):
        self.levels = list(levels or DEFAULT_LEVELS)
        if not self.levels:
            raise ValidationError("compute scaler needs at least one level")

    def level_index(self, ambiguity: float) -> int:
        if not 0.0 <= ambiguity <= 1.0:
            raise ValidationError(f"ambiguity score must be between 0 and 1, got {ambiguity}")
        return int(ambiguity * (len(self.levels) - 1))

    def scale_compute(self, ambiguity: float) -> ComputeLevel:
        return self.levels[self.level_index(ambiguity)]

    def apply_constraints(self, level: ComputeLevel, ontology: BeliefOntology | None) -> BeliefOntology:
        if ontology is None:
            raise ValidationError("ontology cannot be None")
        ontology.prune_to_depth(level.max_context_depth)
        ontology.limit_branches(level.max_branches)
        ontology.limit_beliefs(level.max_beliefs)
        return ontology
