"""Dialectic service: the question/answer loop that elicits and revises beliefs.

One update is a single read-modify-write of a self model's BeliefSystem and one of
its Dialectics:
1. Load both documents under their per-key locks
2. Apply exactly one input (answer, question blob or answer blob)
3. For answers: extract beliefs, link them into the context graph, run discrepancies
4. Score ambiguity, pick a compute level, prune the ontology, ask the next question
5. Store both documents together, unless dry run
"""

import asyncio
import logging

from epistemic_core.beliefs import create_belief, find_matching_belief
from epistemic_core.compute_scaler import BeliefOntology, ComputeLevel, ComputeScaler, ambiguity_score
from epistemic_core.config import LLM_TIMEOUT_SECONDS
from epistemic_core.discrepancy import revise
from epistemic_core.errors import CollaboratorError, InvalidStateError, NotFoundError
from epistemic_core.kv_store import KeyValueStore, Write
from epistemic_core.language import NO_ANSWER, LanguageCollaborator
from epistemic_core.models import (
    Agent,
    BeliefAnalysis,
    BeliefSystem,
    Dialectic,
    DialecticalInteraction,
    DialecticType,
    InteractionStatus,
    Ontology,
)
from epistemic_core.predictive_processing import (
    belief_contexts_for_belief,
    belief_metrics,
    ensure_context,
    find_context,
    link_interaction_beliefs,
)

logger = logging.getLogger(__name__)

BELIEF_SYSTEM_KEY = "BeliefSystem"
# A dialogue turn confirms the beliefs the subject just stated.
OBSERVED_STATE = "Positive"


class DialecticService:
    def __init__(
        self,
        store: KeyValueStore,
        language: LanguageCollaborator,
        scaler: ComputeScaler | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ):
        self.store = store
        self.language = language
        self.scaler = scaler or ComputeScaler()
        self.timeout = timeout

    async def _call(self, coro, what: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise CollaboratorError(f"{what} timed out after {self.timeout}s") from None

    async def _load_belief_system(self, self_model_id: str) -> tuple[BeliefSystem, int]:
        try:
            return await self.store.retrieve_latest_versioned(self_model_id, BELIEF_SYSTEM_KEY)
        except NotFoundError:
            return BeliefSystem(), 0

    async def _load_dialectic(self, self_model_id: str, dialectic_id: str) -> tuple[Dialectic, int]:
        dialectic, version = await self.store.retrieve_latest_versioned(self_model_id, dialectic_id)
        if not isinstance(dialectic, Dialectic):
            raise NotFoundError(f"{dialectic_id} is not a dialectic")
        return dialectic, version

    # --- Queries ---

    async def get_dialectic(self, self_model_id: str, dialectic_id: str) -> Dialectic:
        dialectic, _ = await self._load_dialectic(self_model_id, dialectic_id)
        return dialectic

    async def list_dialectics(self, self_model_id: str) -> list[Dialectic]:
        return await self.store.list_by_type(self_model_id, Dialectic)

    # --- Commands ---

    async def create_dialectic(
        self,
        self_model_id: str,
        dialectic_type: DialecticType = DialecticType.DEFAULT,
    ) -> Dialectic:
        """New dialectic holding exactly one PendingAnswer question."""
        belief_system, _ = await self._load_belief_system(self_model_id)
        dialectic = Dialectic(self_model_id=self_model_id, agent=Agent(dialectic_type=dialectic_type))
        await self._ask_next_question(dialectic, belief_system, self.scaler.scale_compute(0.0))

        await self.store.store(self_model_id, dialectic.id, dialectic, 1, expected_version=0)
        logger.info("created dialectic %s for %s (%s)", dialectic.id, self_model_id, dialectic_type.value)
        return dialectic

    async def update_dialectic(
        self,
        self_model_id: str,
        dialectic_id: str,
        *,
        answer: str | None = None,
        question_blob: str | None = None,
        answer_blob: str | None = None,
        dry_run: bool = False,
    ) -> Dialectic:
        """Apply one input and return the resulting dialectic.

        With `dry_run` everything is computed but nothing is stored.
        """
        supplied = [x for x in (answer, question_blob, answer_blob) if x is not None]
        if len(supplied) > 1:
            raise InvalidStateError("supply only one of answer, question_blob or answer_blob")

        async with self.store.lock(self_model_id, dialectic_id), self.store.lock(self_model_id, BELIEF_SYSTEM_KEY):
            dialectic, dialectic_version = await self._load_dialectic(self_model_id, dialectic_id)
            belief_system, bs_version = await self._load_belief_system(self_model_id)

            if answer is not None:
                await self._update_with_answer(dialectic, belief_system, answer)
            elif question_blob is not None:
                await self._update_with_question_blob(dialectic, question_blob)
            elif answer_blob is not None:
                await self._update_with_answer_blob(dialectic, belief_system, answer_blob)

            dialectic.belief_system_snapshot = belief_system.model_copy(deep=True)

            if dry_run:
                logger.info("dry run of dialectic %s: %d interactions", dialectic.id, len(dialectic.user_interactions))
                return dialectic

            await self.store.store_many([
                Write(self_model_id, BELIEF_SYSTEM_KEY, belief_system, bs_version + 1, bs_version),
                Write(self_model_id, dialectic.id, dialectic, dialectic_version + 1, dialectic_version),
            ])
            logger.info(
                "updated dialectic %s: %d interactions, %d beliefs",
                dialectic.id, len(dialectic.user_interactions), len(belief_system.beliefs),
            )
            return dialectic

    async def update_with_answer(self, self_model_id: str, dialectic_id: str, answer: str, dry_run: bool = False) -> Dialectic:
        return await self.update_dialectic(self_model_id, dialectic_id, answer=answer, dry_run=dry_run)

    async def update_with_question_blob(self, self_model_id: str, dialectic_id: str, blob: str, dry_run: bool = False) -> Dialectic:
        return await self.update_dialectic(self_model_id, dialectic_id, question_blob=blob, dry_run=dry_run)

    async def update_with_answer_blob(self, self_model_id: str, dialectic_id: str, blob: str, dry_run: bool = False) -> Dialectic:
        return await self.update_dialectic(self_model_id, dialectic_id, answer_blob=blob, dry_run=dry_run)

    async def analyze_dialectic(self, self_model_id: str, dialectic_id: str, dry_run: bool = False) -> BeliefAnalysis:
        """Score the belief system against the latest answered interaction."""
        async with self.store.lock(self_model_id, dialectic_id):
            dialectic, version = await self._load_dialectic(self_model_id, dialectic_id)
            answered = dialectic.answered_question_answers()
            if not answered:
                raise InvalidStateError(f"dialectic {dialectic_id} has no answered interactions to analyze")
            belief_system, _ = await self._load_belief_system(self_model_id)

            question, answer = answered[-1]
            analysis = await self._call(
                self.language.analyze_belief_system(belief_system, question, answer), "belief system analysis",
            )
            dialectic.analysis = analysis
            if not dry_run:
                await self.store.store(self_model_id, dialectic.id, dialectic, version + 1, expected_version=version)
            logger.info("analyzed dialectic %s: overall %.2f", dialectic.id, analysis.overall_score)
            return analysis

    # --- Steps ---

    async def _update_with_answer(self, dialectic: Dialectic, belief_system: BeliefSystem, answer: str):
        last = dialectic.last_interaction
        if last is None or last.status != InteractionStatus.PENDING_ANSWER:
            state = last.status.value if last else "empty"
            raise InvalidStateError(f"dialectic {dialectic.id} has no pending question to answer (last interaction: {state})")

        level = await self._answer_interaction(dialectic, belief_system, last, answer)
        await self._ask_next_question(dialectic, belief_system, level)

    async def _update_with_question_blob(self, dialectic: Dialectic, blob: str):
        questions = await self._call(self.language.extract_questions_from_text(blob), "question extraction")
        for q in questions:
            dialectic.user_interactions.append(DialecticalInteraction.pending_question(q))
        logger.info("dialectic %s: added %d questions from blob", dialectic.id, len(questions))

    async def _update_with_answer_blob(self, dialectic: Dialectic, belief_system: BeliefSystem, blob: str):
        pending = dialectic.pending_interactions()
        if not pending:
            raise InvalidStateError(f"dialectic {dialectic.id} has no pending questions to answer")

        answers = await self._call(
            self.language.match_answers_to_questions(blob, [i.question for i in pending]), "answer matching",
        )
        if len(answers) != len(pending):
            raise CollaboratorError(f"expected {len(pending)} answers, got {len(answers)}")

        levels = []
        for interaction, text in zip(pending, answers):
            if text == NO_ANSWER:
                continue
            levels.append(await self._answer_interaction(dialectic, belief_system, interaction, text))

        logger.info("dialectic %s: answered %d of %d pending questions from blob", dialectic.id, len(levels), len(pending))
        if levels:
            # One follow-up for the batch, sized by its most ambiguous answer
            level = max(levels, key=lambda lv: self.scaler.levels.index(lv))
            await self._ask_next_question(dialectic, belief_system, level)

    async def _answer_interaction(
        self,
        dialectic: Dialectic,
        belief_system: BeliefSystem,
        interaction: DialecticalInteraction,
        answer: str,
    ) -> ComputeLevel:
        """Answer one pending interaction and return the compute level for the follow-up."""
        if interaction.status != InteractionStatus.PENDING_ANSWER:
            raise InvalidStateError(f"interaction {interaction.id} is {interaction.status.value}, not pending_answer")

        question = interaction.question
        statements = await self._call(self.language.extract_beliefs(question, answer), "belief extraction")

        ppc = ensure_context(belief_system)
        covered = list(ppc.observation_contexts)

        new_beliefs, reasserted = [], []
        seen = set()
        for statement in statements:
            existing = find_matching_belief(belief_system, statement)
            if existing is None:
                belief = create_belief(belief_system, dialectic.self_model_id, statement)
                new_beliefs.append(belief)
                seen.add(belief.id)
            elif existing.id not in seen:
                reasserted.append(existing)
                seen.add(existing.id)

        earlier = [bc for b in reasserted for bc in belief_contexts_for_belief(ppc, b.id)]
        _, created = link_interaction_beliefs(belief_system, question, answer, new_beliefs + reasserted, interaction.id)

        touched = created + earlier
        for bc in touched:
            revise(bc, OBSERVED_STATE, interaction.id, ppc)

        interaction.mark_answered(answer, new_beliefs + reasserted)
        belief_system.metrics = belief_metrics(belief_system)

        score = ambiguity_score(interaction, dialectic.user_interactions, covered, touched)
        level = self.scaler.scale_compute(score)
        logger.debug(
            "interaction %s: %d new, %d reasserted beliefs, ambiguity %.2f -> %s",
            interaction.id, len(new_beliefs), len(reasserted), score, level.name,
        )
        return level

    async def _ask_next_question(self, dialectic: Dialectic, belief_system: BeliefSystem, level: ComputeLevel):
        ontology = self.scaler.apply_constraints(level, BeliefOntology.from_belief_system(belief_system))
        summary = ontology.summary()
        if find_context(belief_system) is not None:
            belief_system.ontology = Ontology(
                raw_str=summary,
                belief_ids=[b.belief_id for b in ontology.beliefs],
                observation_context_ids=[n.context.id for n, _ in ontology.iter_nodes()],
            )

        question = await self._call(
            self.language.generate_question(
                summary, dialectic.answered_question_answers(), dialectic.agent.dialectic_type.value,
            ),
            "question generation",
        )
        dialectic.user_interactions.append(DialecticalInteraction.pending_question(question))
