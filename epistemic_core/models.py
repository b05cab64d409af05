from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, ClassVar, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from epistemic_core.errors import InvalidStateError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class StoredRecord(BaseModel):
    """Base for every document the storage collaborator accepts.

    `record_type` is the name the record is stored and listed under.
    """

    record_type: ClassVar[str] = ""


# --- Beliefs ---

class BeliefType(str, Enum):
    STATEMENT = "statement"
    FALSIFIABLE = "falsifiable"
    CAUSAL = "causal"
    CLARIFICATION = "clarification"


class Belief(BaseModel):
    id: str = Field(default_factory=new_id)
    self_model_id: str = ""
    version: int = 1
    type: BeliefType = BeliefType.STATEMENT
    content: list[str] = Field(default_factory=list)
    active: bool = True
    superseded_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def text(self) -> str:
        return " ".join(self.content)


# --- Predictive processing ---

class EpistemicEmotion(str, Enum):
    CONFIRMATION = "confirmation"
    SURPRISE = "surprise"
    CURIOSITY = "curiosity"
    CONFUSION = "confusion"


class ConfidenceRating(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0.0, le=1.0)
    is_default: bool = False
    assessed_at: datetime = Field(default_factory=utcnow)
    source: str = "system"


class ObservationContext(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    parent_id: str = ""
    possible_states: list[str] = Field(default_factory=list)


class Discrepancy(BaseModel):
    model_config = ConfigDict(frozen=True)

    interaction_id: str
    observed_state: str
    prior_probabilities: dict[str, float]
    posterior_probabilities: dict[str, float]
    discrepancy: float
    kl_divergence: float
    pointwise_kl_terms: dict[str, float]
    is_counterfactual: bool = False
    timestamp: datetime = Field(default_factory=utcnow)


class BeliefContext(BaseModel):
    belief_id: str
    observation_context_id: str
    confidence_ratings: list[ConfidenceRating] = Field(default_factory=list)
    conditional_probabilities: dict[str, float] = Field(default_factory=dict)
    epistemic_emotion: EpistemicEmotion = EpistemicEmotion.CONFIRMATION
    emotion_intensity: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: list[str] = Field(default_factory=list)
    related_interaction_ids: list[str] = Field(default_factory=list)
    discrepancies: list[Discrepancy] = Field(default_factory=list)

    @property
    def latest_confidence(self) -> float:
        return self.confidence_ratings[-1].score if self.confidence_ratings else 0.0

    @property
    def last_assessed_at(self) -> datetime | None:
        return self.confidence_ratings[-1].assessed_at if self.confidence_ratings else None


class PredictiveProcessingContext(BaseModel):
    kind: Literal["predictive_processing"] = "predictive_processing"
    observation_contexts: list[ObservationContext] = Field(default_factory=list)
    belief_contexts: list[BeliefContext] = Field(default_factory=list)

    def observation_context(self, observation_context_id: str) -> ObservationContext | None:
        for oc in self.observation_contexts:
            if oc.id == observation_context_id:
                return oc
        return None


class ReservedContext(BaseModel):
    """Tree-based and exploratory contexts. Accepted on read, never populated here."""

    kind: Literal["tree", "exploratory"]
    data: dict = Field(default_factory=dict)


ContextVariant = Annotated[
    Union[PredictiveProcessingContext, ReservedContext],
    Field(discriminator="kind"),
]


class EpistemicContext(BaseModel):
    context: ContextVariant = Field(default_factory=PredictiveProcessingContext)

    @property
    def predictive_processing(self) -> PredictiveProcessingContext:
        if not isinstance(self.context, PredictiveProcessingContext):
            raise InvalidStateError(f"epistemic context is of kind {self.context.kind!r}")
        return self.context


class BeliefSystemMetrics(BaseModel):
    clarification_score: float = 0.0
    total_beliefs: int = 0
    total_falsifiable_beliefs: int = 0
    total_causal_beliefs: int = 0
    total_belief_statements: int = 0


class Ontology(BaseModel):
    raw_str: str = ""
    generated_at: datetime = Field(default_factory=utcnow)
    belief_ids: list[str] = Field(default_factory=list)
    observation_context_ids: list[str] = Field(default_factory=list)


class BeliefSystem(StoredRecord):
    record_type: ClassVar[str] = "BeliefSystem"

    beliefs: list[Belief] = Field(default_factory=list)
    epistemic_contexts: list[EpistemicContext] = Field(default_factory=list)
    metrics: BeliefSystemMetrics | None = None
    ontology: Ontology | None = None

    @model_validator(mode="after")
    def _unique_belief_ids(self):
        seen = set()
        for b in self.beliefs:
            if b.id in seen:
                raise ValueError(f"duplicate belief id {b.id}")
            seen.add(b.id)
        return self


# --- Dialectic ---

class InteractionStatus(str, Enum):
    INVALID = "invalid"
    PENDING_ANSWER = "pending_answer"
    ANSWERED = "answered"


class InteractionType(str, Enum):
    QUESTION_ANSWER = "question_answer"
    HYPOTHESIS_EVIDENCE = "hypothesis_evidence"
    ACTION_OUTCOME = "action_outcome"


class DialecticType(str, Enum):
    DEFAULT = "default"
    SLEEP_DIET_EXERCISE = "sleep_diet_exercise"


class AgentType(str, Enum):
    CLAUDE_LATEST = "claude_latest"


class Question(BaseModel):
    text: str
    created_at: datetime = Field(default_factory=utcnow)


class UserAnswer(BaseModel):
    text: str
    created_at: datetime = Field(default_factory=utcnow)


class QuestionAnswerInteraction(BaseModel):
    kind: Literal["question_answer"] = "question_answer"
    question: Question
    answer: UserAnswer | None = None
    extracted_beliefs: list[Belief] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)


class HypothesisEvidenceInteraction(BaseModel):
    kind: Literal["hypothesis_evidence"] = "hypothesis_evidence"
    hypothesis: str
    evidence: str | None = None


class ActionOutcomeInteraction(BaseModel):
    kind: Literal["action_outcome"] = "action_outcome"
    action: str
    outcome: str | None = None


InteractionData = Annotated[
    Union[QuestionAnswerInteraction, HypothesisEvidenceInteraction, ActionOutcomeInteraction],
    Field(discriminator="kind"),
]


class Perspective(BaseModel):
    self_model_id: str
    response: str


class DialecticalInteraction(BaseModel):
    id: str = Field(default_factory=new_id)
    status: InteractionStatus = InteractionStatus.INVALID
    type: InteractionType = InteractionType.QUESTION_ANSWER
    interaction: InteractionData
    updated_at: datetime = Field(default_factory=utcnow)
    perspectives: list[Perspective] = Field(default_factory=list)

    @classmethod
    def pending_question(cls, question: str) -> "DialecticalInteraction":
        now = utcnow()
        return cls(
            status=InteractionStatus.PENDING_ANSWER,
            type=InteractionType.QUESTION_ANSWER,
            interaction=QuestionAnswerInteraction(
                question=Question(text=question, created_at=now),
                updated_at=now,
            ),
            updated_at=now,
        )

    @property
    def question_answer(self) -> QuestionAnswerInteraction:
        if not isinstance(self.interaction, QuestionAnswerInteraction):
            raise InvalidStateError(f"interaction {self.id} is a {self.interaction.kind} interaction")
        return self.interaction

    @property
    def question(self) -> str:
        return self.question_answer.question.text

    def mark_answered(self, answer: str, extracted_beliefs: list[Belief]):
        """PendingAnswer -> Answered. Any other starting status is rejected."""
        if self.status != InteractionStatus.PENDING_ANSWER:
            raise InvalidStateError(f"interaction {self.id} is {self.status.value}, not pending_answer")
        now = utcnow()
        qa = self.question_answer
        qa.answer = UserAnswer(text=answer, created_at=now)
        qa.extracted_beliefs = list(extracted_beliefs)
        qa.updated_at = now
        self.status = InteractionStatus.ANSWERED
        self.updated_at = now


class Agent(BaseModel):
    agent_type: AgentType = AgentType.CLAUDE_LATEST
    dialectic_type: DialecticType = DialecticType.DEFAULT


class BeliefAnalysis(BaseModel):
    coherence: float = 0.0
    consistency: float = 0.0
    falsifiability: float = 0.0
    overall_score: float = 0.0
    feedback: str = ""
    recommendations: list[str] = Field(default_factory=list)
    verified_beliefs: list[str] = Field(default_factory=list)


class Dialectic(StoredRecord):
    record_type: ClassVar[str] = "Dialectic"

    id: str = Field(default_factory=lambda: "di_" + new_id())
    self_model_id: str
    agent: Agent = Field(default_factory=Agent)
    user_interactions: list[DialecticalInteraction] = Field(default_factory=list)
    belief_system_snapshot: BeliefSystem | None = None
    analysis: BeliefAnalysis | None = None

    @property
    def last_interaction(self) -> DialecticalInteraction | None:
        return self.user_interactions[-1] if self.user_interactions else None

    def pending_interactions(self) -> list[DialecticalInteraction]:
        return [i for i in self.user_interactions if i.status == InteractionStatus.PENDING_ANSWER]

    def answered_question_answers(self) -> list[tuple[str, str]]:
        pairs = []
        for i in self.user_interactions:
            if i.status == InteractionStatus.ANSWERED and isinstance(i.interaction, QuestionAnswerInteraction):
                pairs.append((i.interaction.question.text, i.interaction.answer.text if i.interaction.answer else ""))
        return pairs


# --- Self model ---

class SelfModel(StoredRecord):
    record_type: ClassVar[str] = "SelfModel"

    id: str
    philosophies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class Philosophy(StoredRecord):
    record_type: ClassVar[str] = "Philosophy"

    id: str = Field(default_factory=new_id)
    description: str
    extrapolate_contexts: bool = False
