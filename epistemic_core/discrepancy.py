"""Discrepancy engine: compare a belief context's prediction with what was observed.

Each comparison scores the surprise of the observation, moves the predicted
distribution toward it, appends a new confidence rating and records an immutable
Discrepancy on the belief context. Past ratings are never rewritten.
"""

import math

from epistemic_core.config import POSTERIOR_LEARNING_RATE, SURPRISE_THRESHOLD
from epistemic_core.errors import ValidationError
from epistemic_core.models import (
    BeliefContext,
    ConfidenceRating,
    Discrepancy,
    EpistemicEmotion,
    PredictiveProcessingContext,
    utcnow,
)
from epistemic_core.predictive_processing import add_possible_state

# Floor for posterior probabilities inside the log, keeps the divergence finite.
POSTERIOR_FLOOR = 1e-9


def discrepancy(belief_context: BeliefContext, observed_state: str) -> float:
    p = belief_context.conditional_probabilities.get(observed_state, 0.0)
    return min(1.0, max(0.0, 1.0 - p))


def kl_divergence(prior: dict[str, float], posterior: dict[str, float]) -> tuple[float, dict[str, float]]:
    """KL(prior || posterior) and its pointwise terms. Zero-prior states contribute nothing."""
    terms = {}
    for state in set(prior) | set(posterior):
        p = prior.get(state, 0.0)
        if p <= 0:
            terms[state] = 0.0
            continue
        q = max(posterior.get(state, 0.0), POSTERIOR_FLOOR)
        terms[state] = p * math.log(p / q)
    return sum(terms.values()), terms


def assign_emotion(score: float, threshold: float = SURPRISE_THRESHOLD) -> tuple[EpistemicEmotion, float]:
    """Surprise above the threshold, Confirmation otherwise, with an intensity in [0, 1]."""
    if score > threshold:
        return EpistemicEmotion.SURPRISE, score
    return EpistemicEmotion.CONFIRMATION, 1.0 - score


def set_emotion(belief_context: BeliefContext, emotion: EpistemicEmotion, intensity: float):
    """Explicitly label a context, e.g. Curiosity or Confusion from multi-hypothesis evidence."""
    if not 0.0 <= intensity <= 1.0:
        raise ValidationError(f"emotion intensity must be between 0 and 1, got {intensity}")
    belief_context.epistemic_emotion = emotion
    belief_context.emotion_intensity = intensity


def posterior_toward(prior: dict[str, float], observed_state: str, rate: float = POSTERIOR_LEARNING_RATE) -> dict[str, float]:
    states = list(prior)
    if observed_state not in prior:
        states.append(observed_state)
    mixed = {
        s: (1.0 - rate) * prior.get(s, 0.0) + (rate if s == observed_state else 0.0)
        for s in states
    }
    total = sum(mixed.values())
    return {s: p / total for s, p in mixed.items()}


def revise(
    belief_context: BeliefContext,
    observed_state: str,
    interaction_id: str,
    ppc: PredictiveProcessingContext | None = None,
    is_counterfactual: bool = False,
) -> Discrepancy:
    """Apply one observation to a belief context and return the recorded Discrepancy."""
    score = discrepancy(belief_context, observed_state)
    prior = dict(belief_context.conditional_probabilities)
    posterior = posterior_toward(prior, observed_state)
    kl, terms = kl_divergence(prior, posterior)

    if ppc is not None and observed_state not in prior:
        oc = ppc.observation_context(belief_context.observation_context_id)
        if oc is not None:
            add_possible_state(oc, observed_state)

    record = Discrepancy(
        interaction_id=interaction_id,
        observed_state=observed_state,
        prior_probabilities=prior,
        posterior_probabilities=posterior,
        discrepancy=score,
        kl_divergence=kl,
        pointwise_kl_terms=terms,
        is_counterfactual=is_counterfactual,
        timestamp=utcnow(),
    )

    if not is_counterfactual:
        previous = belief_context.latest_confidence
        belief_context.confidence_ratings.append(ConfidenceRating(
            score=previous * (1.0 - score),
            is_default=False,
            assessed_at=record.timestamp,
            source="system",
        ))
        belief_context.conditional_probabilities = posterior
        emotion, intensity = assign_emotion(score)
        set_emotion(belief_context, emotion, intensity)

    belief_context.discrepancies.append(record)
    if interaction_id not in belief_context.related_interaction_ids:
        belief_context.related_interaction_ids.append(interaction_id)
    return record
