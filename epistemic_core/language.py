"""Language collaborator: every natural-language capability the dialectic delegates."""

import re
from abc import ABC, abstractmethod

from epistemic_core.claude import call_analysis, call_claude, parse_json
from epistemic_core.errors import CollaboratorError
from epistemic_core.models import BeliefAnalysis, BeliefSystem
from epistemic_core.prompts import (
    analysis_prompt,
    answer_matching_prompt,
    belief_extraction_prompt,
    question_extraction_prompt,
    question_generation_prompt,
)

NO_ANSWER = "No answer provided"


class LanguageCollaborator(ABC):
    @abstractmethod
    async def generate_question(
        self,
        belief_system_summary: str,
        prior_qa: list[tuple[str, str]],
        dialectic_type: str = "default",
    ) -> str:
        ...

    @abstractmethod
    async def extract_beliefs(self, question: str, answer: str) -> list[str]:
        ...

    @abstractmethod
    async def extract_questions_from_text(self, blob: str) -> list[str]:
        ...

    @abstractmethod
    async def match_answers_to_questions(self, blob: str, questions: list[str]) -> list[str]:
        """One answer per question, same order. Unmatched questions get NO_ANSWER."""

    @abstractmethod
    async def analyze_belief_system(self, belief_system: BeliefSystem, question: str, answer: str) -> BeliefAnalysis:
        ...


# --- Response parsing ---

def parse_beliefs(raw) -> list[str]:
    if not isinstance(raw, dict) or not isinstance(raw.get("beliefs"), list):
        raise CollaboratorError("belief extraction response has no 'beliefs' array")
    return [b.strip() for b in raw["beliefs"] if isinstance(b, str) and b.strip()]


def parse_questions(text: str) -> list[str]:
    questions = []
    for line in text.strip().split("\n"):
        line = line.strip()
        # Only non-empty lines that end with a question mark
        if line and line.endswith("?"):
            questions.append(line)
    if not questions:
        raise CollaboratorError("no valid questions found in text")
    return questions


_ANSWER_LINE = re.compile(r"^A\d*\s*:\s*(.*)$")


def parse_answers(text: str, question_count: int) -> list[str]:
    answers = []
    for line in text.strip().split("\n"):
        m = _ANSWER_LINE.match(line.strip())
        if m:
            answers.append(m.group(1).strip().strip('"'))
    while len(answers) < question_count:
        answers.append(NO_ANSWER)
    return answers[:question_count]


def _score(raw: dict, key: str) -> float:
    try:
        return min(1.0, max(0.0, float(raw.get(key, 0.0))))
    except (TypeError, ValueError):
        return 0.0


def parse_analysis(raw: dict) -> BeliefAnalysis:
    return BeliefAnalysis(
        coherence=_score(raw, "coherence"),
        consistency=_score(raw, "consistency"),
        falsifiability=_score(raw, "falsifiability"),
        overall_score=_score(raw, "overall_score"),
        feedback=str(raw.get("feedback", "")),
        recommendations=[str(r) for r in raw.get("recommendations", []) if r],
        verified_beliefs=[str(b) for b in raw.get("verified_beliefs", []) if b],
    )


def format_beliefs_for_prompt(belief_system: BeliefSystem) -> str:
    return "\n".join(f"[{i}] \"{b.text}\" ({b.type.value})" for i, b in enumerate(belief_system.beliefs) if b.active)


class ClaudeLanguageCollaborator(LanguageCollaborator):
    async def generate_question(self, belief_system_summary, prior_qa, dialectic_type="default"):
        text = await call_claude(
            "You are a Socratic interviewer mapping a person's beliefs.",
            question_generation_prompt(belief_system_summary, prior_qa, dialectic_type),
        )
        question = text.strip()
        if not question:
            raise CollaboratorError("empty question from Claude")
        return question

    async def extract_beliefs(self, question, answer):
        text = await call_claude(
            "You are a precise belief extraction system. Respond only in valid JSON.",
            belief_extraction_prompt(question, answer),
        )
        return parse_beliefs(parse_json(text))

    async def extract_questions_from_text(self, blob):
        # Only the section after the last '---' marker holds new questions
        section = blob.split("---")[-1]
        text = await call_claude("You extract questions from text.", question_extraction_prompt(section))
        return parse_questions(text)

    async def match_answers_to_questions(self, blob, questions):
        if not questions:
            return []
        text = await call_claude(
            "You match answers in free text to a list of questions.",
            answer_matching_prompt(blob, questions),
        )
        return parse_answers(text, len(questions))

    async def analyze_belief_system(self, belief_system, question, answer):
        raw = await call_analysis(
            "You are a belief system analyst. Respond in valid JSON only.",
            analysis_prompt(format_beliefs_for_prompt(belief_system), question, answer),
        )
        return parse_analysis(raw)
