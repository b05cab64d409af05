"""
Compute scaler tests: ambiguity -> level -> bounded ontology.
"""

from datetime import timedelta

import pytest

from epistemic_core.beliefs import create_belief
from epistemic_core.compute_scaler import (
    DEFAULT_LEVELS,
    BeliefOntology,
    ComputeScaler,
    OntologyBelief,
    ambiguity_score,
    confidence_variance,
    jaccard,
    semantic_similarity,
)
from epistemic_core.errors import ValidationError
from epistemic_core.models import (
    BeliefContext,
    BeliefSystem,
    ConfidenceRating,
    DialecticalInteraction,
    ObservationContext,
    utcnow,
)
from epistemic_core.predictive_processing import create_belief_context, ensure_context


def bc_with(score):
    return BeliefContext(
        belief_id="b", observation_context_id="o",
        confidence_ratings=[ConfidenceRating(score=score)],
    )


class TestScaleCompute:

    def test_bounds(self):
        scaler = ComputeScaler()
        assert scaler.scale_compute(0) == DEFAULT_LEVELS[0]
        assert scaler.scale_compute(1) == DEFAULT_LEVELS[-1]

    @pytest.mark.parametrize("score", [1.5, -0.1])
    def test_out_of_range(self, score):
        with pytest.raises(ValidationError):
            ComputeScaler().scale_compute(score)

    def test_monotonic(self):
        scaler = ComputeScaler()
        scores = [i / 100 for i in range(101)]
        indices = [scaler.level_index(s) for s in scores]
        assert indices == sorted(indices)

    def test_ladder_shape(self):
        assert [lv.max_context_depth for lv in DEFAULT_LEVELS] == [1, 2, 3, 4, 5]
        assert DEFAULT_LEVELS[0].max_branches == 2 and DEFAULT_LEVELS[-1].max_branches == 10
        assert DEFAULT_LEVELS[0].max_beliefs == 5 and DEFAULT_LEVELS[-1].max_beliefs == 50


class TestAmbiguity:

    def test_jaccard(self):
        assert jaccard("sleep quality matters", "sleep quality") == pytest.approx(2 / 3)
        assert jaccard("", "sleep") == 0.0

    def test_repeated_question_is_similar(self):
        first = DialecticalInteraction.pending_question("How does sleep affect your energy?")
        again = DialecticalInteraction.pending_question("How does your sleep affect energy?")
        assert semantic_similarity(again, [first, again]) == pytest.approx(1.0)

    def test_confidence_variance_scaled(self):
        assert confidence_variance([bc_with(0.0), bc_with(1.0)]) == pytest.approx(1.0)
        assert confidence_variance([bc_with(0.6)]) == 0.0

    def test_fresh_question_is_unambiguous(self):
        q = DialecticalInteraction.pending_question("What do you eat?")
        assert ambiguity_score(q, [q]) == 0.0

    def test_score_clamped_to_unit_interval(self):
        q = DialecticalInteraction.pending_question("sleep energy")
        history = [DialecticalInteraction.pending_question("sleep energy"), q]
        covered = [ObservationContext(name="Response to 'sleep energy'")]
        touched = [bc_with(0.0), bc_with(1.0)]
        assert ambiguity_score(q, history, covered, touched) == pytest.approx(1.0)


def ontology_fixture():
    """Three root contexts; the first has a two-level chain below it; five beliefs."""
    bs = BeliefSystem()
    ppc = ensure_context(bs)
    roots = [ObservationContext(name=f"root {i}") for i in range(3)]
    child = ObservationContext(name="child", parent_id=roots[0].id)
    grandchild = ObservationContext(name="grandchild", parent_id=child.id)
    ppc.observation_contexts.extend(roots + [child, grandchild])

    for i in range(5):
        b = create_belief(bs, "u", f"belief {i}")
        create_belief_context(ppc, b.id, roots[i % 3].id, 0.1 + i * 0.2)
    return bs


class TestConstraints:

    def test_from_belief_system(self):
        ontology = BeliefOntology.from_belief_system(ontology_fixture())
        assert len(ontology.roots) == 3
        assert ontology.depth() == 3
        assert len(ontology.beliefs) == 5

    def test_minimal_level(self):
        scaler = ComputeScaler()
        ontology = scaler.apply_constraints(scaler.scale_compute(0), BeliefOntology.from_belief_system(ontology_fixture()))

        assert ontology.depth() == 1
        assert len(ontology.roots) == 2
        # the two most confident roots carry beliefs 3 and 4
        assert {n.context.name for n in ontology.roots} == {"root 0", "root 1"}

    def test_max_beliefs_keeps_most_confident(self):
        ontology = BeliefOntology.from_belief_system(ontology_fixture())
        ontology.limit_beliefs(2)
        assert [b.text for b in ontology.beliefs] == ["belief 4", "belief 3"]

    def test_ties_broken_by_recency(self):
        ontology = BeliefOntology.from_belief_system(BeliefSystem())
        now = utcnow()
        ontology.beliefs = [
            OntologyBelief(belief_id="old", text="old", confidence=0.5, last_evidenced_at=now - timedelta(days=1)),
            OntologyBelief(belief_id="new", text="new", confidence=0.5, last_evidenced_at=now),
        ]
        ontology.limit_beliefs(1)
        assert [b.belief_id for b in ontology.beliefs] == ["new"]

    def test_maximal_level_keeps_everything(self):
        scaler = ComputeScaler()
        ontology = scaler.apply_constraints(scaler.scale_compute(1), BeliefOntology.from_belief_system(ontology_fixture()))
        assert ontology.depth() == 3
        assert len(ontology.beliefs) == 5

    def test_none_ontology(self):
        scaler = ComputeScaler()
        with pytest.raises(ValidationError):
            scaler.apply_constraints(scaler.scale_compute(0.5), None)

    def test_summary_renders_tree_and_beliefs(self):
        summary = BeliefOntology.from_belief_system(ontology_fixture()).summary()
        assert "- root 0" in summary
        assert "    - grandchild" in summary
        assert '"belief 4"' in summary
