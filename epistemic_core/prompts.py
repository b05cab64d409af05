"""All LLM prompt templates for the dialectic."""

import json

DIALECTICAL_STRATEGY = """What is a Question?
A question creates a conceptual framework for learning. It acts as a container for prior beliefs, evidence collection, and answer verification. It is an inference about the world based on prior beliefs that guides evidence collection and observation. A good question provides the boundaries of an unambiguous explanation for a causal pattern.

What is an Answer?
An answer is an explanatory narrative that describes a causal pattern within a conceptual framework.

What is a Belief?
Prior beliefs are stated as an expectation for an observable causal change; each belief carries a level of certainty. For instance, "I believe that quality sleep is required for high energy the following day". When beliefs are evidenced and certain above a threshold, they create knowledge.

What is Evidence?
Evidence is anything that shows whether a belief is predictive: the subject's own experience, the experience of others, theory, or research. Ask where (in which observation context) a belief is predictive and how the evidence justifies it."""

STRATEGY_FOCUS = {
    "default": "Explore whichever part of the belief system is least settled.",
    "sleep_diet_exercise": "Focus on the subject's beliefs about sleep, diet and exercise and how they predict daily energy and health.",
}


def question_generation_prompt(belief_system_summary: str, prior_qa: list[tuple[str, str]], dialectic_type: str = "default") -> str:
    focus = STRATEGY_FOCUS.get(dialectic_type, STRATEGY_FOCUS["default"])
    prior = "\n".join(f"Q: {q}\nA: {a}" for q, a in prior_qa) or "(none yet)"
    return f"""{DIALECTICAL_STRATEGY}

## Strategy
{focus}

## Current Belief System (pruned to what matters for the next question)
{belief_system_summary or "(empty)"}

## Questions Already Asked
{prior}

## Task
Ask a single novel question that further inquires into the subject's belief system. Do not repeat a question already asked. Respond with the question only, no preamble."""


def belief_extraction_prompt(question: str, answer: str) -> str:
    event = json.dumps({"question": question, "answer": answer})
    return f"""{DIALECTICAL_STRATEGY}

## Interaction
{event}

## Task
Extract every belief the subject expresses in their answer. State each as a first-person belief statement.

Respond with a JSON object only, no other text:
{{"beliefs": ["I believe that quality sleep is essential for energy", "..."]}}

If the answer expresses no belief, return: {{"beliefs": []}}"""


def question_extraction_prompt(text: str) -> str:
    return f"""Extract all distinct questions from this text. Return only the questions, one per line, without any numbering or bullets:

Text: {text}"""


def answer_matching_prompt(answer_blob: str, questions: list[str]) -> str:
    numbered = "\n".join(f"Q{i + 1}: \"{q}\"" for i, q in enumerate(questions))
    return f"""Given this text containing answers:
"{answer_blob}"

And these questions:
{numbered}

## Task
Extract ONE DISTINCT answer for EACH question from the text.

Rules:
1. Each question MUST have its own separate answer
2. Do not combine answers for different questions
3. Look for answers across the ENTIRE text
4. If multiple answers exist, use the most specific one
5. Each answer should be self-contained
6. If no relevant answer exists, answer "No answer provided"

Output one line per answer, in question order, in exactly this format:
A1: "..."
A2: "..."
"""


def analysis_prompt(beliefs_summary: str, question: str, answer: str) -> str:
    return f"""You are reviewing the belief system of a subject after their latest dialectic interaction.

## Beliefs
{beliefs_summary or "(none)"}

## Latest Interaction
Q: {question}
A: {answer}

## Task
Score the belief system from 0.0 to 1.0 on:
1. coherence: do the beliefs fit together?
2. consistency: are any beliefs contradicting each other?
3. falsifiability: do the beliefs make predictions that could be checked?

Then give an overall score, short feedback, concrete recommendations, and list the beliefs (verbatim) that are well evidenced.

Respond in JSON only:
{{"coherence": 0.7, "consistency": 0.8, "falsifiability": 0.5, "overall_score": 0.67, "feedback": "...", "recommendations": ["..."], "verified_beliefs": ["..."]}}"""
