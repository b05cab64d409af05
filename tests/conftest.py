"""
Pytest configuration: a scripted language collaborator and an in-memory store.

No test touches the network or a database.
"""

from collections import deque

import pytest

from epistemic_core.dialectic import DialecticService
from epistemic_core.kv_store import InMemoryKeyValueStore
from epistemic_core.language import LanguageCollaborator, parse_answers, parse_questions
from epistemic_core.models import BeliefAnalysis
from epistemic_core.predictive_processing import ExtrapolationCache
from epistemic_core.self_model import SelfModelService


class FakeLanguageCollaborator(LanguageCollaborator):
    """Deterministic stand-in for Claude.

    - Questions come from `questions` in order, then "Question <n>?".
    - Each answer is extracted as the beliefs in `beliefs[answer]`, or as itself.
    - Question blobs are split one question per line; answer blobs use "A<n>: ..." lines.
    """

    def __init__(self):
        self.questions: deque[str] = deque()
        self.beliefs: dict[str, list[str]] = {}
        self.analysis = BeliefAnalysis(
            coherence=0.7, consistency=0.9, falsifiability=0.5, overall_score=0.7,
            feedback="Mostly coherent.", recommendations=["Say when exercise helps."],
        )
        self.summaries: list[str] = []
        self.calls: list[str] = []
        self.generated = 0

    async def generate_question(self, belief_system_summary, prior_qa, dialectic_type="default"):
        self.calls.append("generate_question")
        self.summaries.append(belief_system_summary)
        self.generated += 1
        if self.questions:
            return self.questions.popleft()
        return f"Question {self.generated}?"

    async def extract_beliefs(self, question, answer):
        self.calls.append("extract_beliefs")
        return list(self.beliefs.get(answer, [answer]))

    async def extract_questions_from_text(self, blob):
        self.calls.append("extract_questions_from_text")
        return parse_questions(blob)

    async def match_answers_to_questions(self, blob, questions):
        self.calls.append("match_answers_to_questions")
        return parse_answers(blob, len(questions))

    async def analyze_belief_system(self, belief_system, question, answer):
        self.calls.append("analyze_belief_system")
        return self.analysis


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def language():
    return FakeLanguageCollaborator()


@pytest.fixture
def dialectics(store, language):
    return DialecticService(store, language, timeout=5)


@pytest.fixture
def cache():
    return ExtrapolationCache()


@pytest.fixture
def self_models(store, cache):
    return SelfModelService(store, cache)
