import pytest
from pydantic import ValidationError as PydanticValidationError

from epistemic_core.errors import InvalidStateError
from epistemic_core.models import (
    ActionOutcomeInteraction,
    Belief,
    BeliefSystem,
    Dialectic,
    DialecticalInteraction,
    EpistemicContext,
    InteractionStatus,
    PredictiveProcessingContext,
    ReservedContext,
)


class TestTaggedVariants:

    def test_context_variant_survives_json(self):
        bs = BeliefSystem(epistemic_contexts=[EpistemicContext()])
        restored = BeliefSystem.model_validate_json(bs.model_dump_json())

        assert isinstance(restored.epistemic_contexts[0].context, PredictiveProcessingContext)

    def test_reading_wrong_context_variant(self):
        ec = EpistemicContext(context=ReservedContext(kind="tree"))
        with pytest.raises(InvalidStateError):
            ec.predictive_processing

    def test_interaction_variant_survives_json(self):
        d = Dialectic(self_model_id="u", user_interactions=[
            DialecticalInteraction.pending_question("Why?"),
            DialecticalInteraction(interaction=ActionOutcomeInteraction(action="walk")),
        ])
        restored = Dialectic.model_validate_json(d.model_dump_json())

        assert restored.user_interactions[0].question == "Why?"
        assert isinstance(restored.user_interactions[1].interaction, ActionOutcomeInteraction)

    def test_question_of_non_question_interaction(self):
        i = DialecticalInteraction(interaction=ActionOutcomeInteraction(action="walk"))
        with pytest.raises(InvalidStateError):
            i.question


class TestInteractionStateMachine:

    def test_pending_to_answered(self):
        i = DialecticalInteraction.pending_question("How do you sleep?")
        i.mark_answered("Badly", [Belief(content=["I sleep badly"])])

        assert i.status == InteractionStatus.ANSWERED
        assert i.question_answer.answer.text == "Badly"
        assert i.question_answer.extracted_beliefs[0].text == "I sleep badly"

    def test_answered_cannot_be_answered_again(self):
        i = DialecticalInteraction.pending_question("How do you sleep?")
        i.mark_answered("Badly", [])
        with pytest.raises(InvalidStateError):
            i.mark_answered("Well", [])
        assert i.question_answer.answer.text == "Badly"

    def test_invalid_is_the_zero_value(self):
        i = DialecticalInteraction(interaction=ActionOutcomeInteraction(action="walk"))
        assert i.status == InteractionStatus.INVALID


def test_belief_ids_unique_within_system():
    b = Belief(content=["x"])
    with pytest.raises(PydanticValidationError):
        BeliefSystem(beliefs=[b, b.model_copy()])


def test_dialectic_helpers():
    d = Dialectic(self_model_id="u", user_interactions=[DialecticalInteraction.pending_question("Q1?")])
    d.user_interactions[0].mark_answered("A1", [])
    d.user_interactions.append(DialecticalInteraction.pending_question("Q2?"))

    assert d.answered_question_answers() == [("Q1?", "A1")]
    assert [i.question for i in d.pending_interactions()] == ["Q2?"]
    assert d.last_interaction.question == "Q2?"
