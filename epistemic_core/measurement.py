"""Measurement aggregation over several numeric dimensions.

Each dimension is an observation context whose states are numeric ranges, plus a
belief context holding the current distribution over those states (uniform until
the first measurement). Dimensions that have moved off uniform narrow a combined
range estimate.
"""

import math
from datetime import datetime

from pydantic import BaseModel, Field

from epistemic_core.config import HIGH_ENTROPY_THRESHOLD, UNIFORMITY_TOLERANCE
from epistemic_core.errors import ValidationError
from epistemic_core.models import (
    BeliefContext,
    ConfidenceRating,
    ObservationContext,
    PredictiveProcessingContext,
    utcnow,
)
from epistemic_core.predictive_processing import create_belief_context, set_conditional_probabilities
from epistemic_core.state_interpreter import RangeState, RangeStateInterpreter


class Measurement(BaseModel):
    dimension: str
    value: float
    timestamp: datetime | None = None


class RangeEstimate(BaseModel):
    min_value: float
    max_value: float
    confidence: float
    sources: list[str] = Field(default_factory=list)
    # Dimensions whose most likely range did not overlap the others
    conflicts: list[str] = Field(default_factory=list)


class _Dimension:
    def __init__(self, context: ObservationContext, states: list[RangeState], belief_context: BeliefContext):
        self.context = context
        self.states = {s.name: s for s in states}
        self.belief_context = belief_context

    @property
    def distribution(self) -> dict[str, float]:
        return self.belief_context.conditional_probabilities


class MeasurementAggregator:
    def __init__(
        self,
        ppc: PredictiveProcessingContext | None = None,
        interpreter: RangeStateInterpreter | None = None,
    ):
        # Pass a belief system's PPC to keep the dimensions in its context graph.
        self.ppc = ppc if ppc is not None else PredictiveProcessingContext()
        self.interpreter = interpreter or RangeStateInterpreter()
        self._dimensions: dict[str, _Dimension] = {}

    @property
    def dimensions(self) -> list[str]:
        return list(self._dimensions)

    def add_dimension(self, name: str, states: list[RangeState]) -> ObservationContext:
        if name in self._dimensions:
            raise ValidationError(f"dimension {name!r} already exists")
        if not states:
            raise ValidationError(f"dimension {name!r} needs at least one state")
        for s in states:
            self.interpreter.validate_state(s)

        oc = ObservationContext(name=name, possible_states=[s.name for s in states])
        self.ppc.observation_contexts.append(oc)
        uniform = 1.0 / len(states)
        bc = create_belief_context(self.ppc, f"measurement:{name}", oc.id, uniform)
        set_conditional_probabilities(self.ppc, bc, {s.name: uniform for s in states})
        self._dimensions[name] = _Dimension(oc, states, bc)
        return oc

    def distribution(self, name: str) -> dict[str, float]:
        return dict(self._get(name).distribution)

    def _get(self, name: str) -> _Dimension:
        try:
            return self._dimensions[name]
        except KeyError:
            raise ValidationError(f"no context found for measurement dimension {name!r}") from None

    def process_measurements(self, measurements: list[Measurement]):
        by_dimension: dict[str, list[Measurement]] = {}
        for m in measurements:
            self._get(m.dimension)
            by_dimension.setdefault(m.dimension, []).append(m)

        for name, batch in by_dimension.items():
            dim = self._dimensions[name]
            # Chronological where timestamps exist; untimed measurements keep their order, last.
            batch.sort(key=lambda m: (m.timestamp is None, m.timestamp.timestamp() if m.timestamp else 0.0))
            for m in batch:
                self._update(dim, m)

    def _update(self, dim: _Dimension, measurement: Measurement):
        prior = dim.distribution
        unnormalized = {
            state: prior.get(state, 0.0) * self.interpreter.calculate_likelihood(measurement.value, dim.states[state])
            for state in dim.context.possible_states
        }
        if sum(unnormalized.values()) <= 0:
            # Every state ruled out; keep the prior rather than divide by zero.
            return
        set_conditional_probabilities(self.ppc, dim.belief_context, unnormalized)
        top = min(1.0, max(dim.distribution.values()))
        dim.belief_context.confidence_ratings.append(
            ConfidenceRating(score=top, source="measurement", assessed_at=measurement.timestamp or utcnow())
        )
        dim.belief_context.evidence.append(f"{dim.context.name}={measurement.value}")

    def is_uniform(self, name: str) -> bool:
        dist = self._get(name).distribution
        uniform = 1.0 / len(dist)
        return max(abs(p - uniform) for p in dist.values()) <= UNIFORMITY_TOLERANCE

    def entropy(self, name: str) -> float:
        """Shannon entropy in bits."""
        return -sum(p * math.log2(p) for p in self._get(name).distribution.values() if p > 0)

    def estimate(self) -> RangeEstimate:
        if not self._dimensions:
            raise ValidationError("need measurements to make an estimate")

        lo, hi = -math.inf, math.inf
        total_confidence = 0.0
        sources, conflicts = [], []
        for name, dim in self._dimensions.items():
            if self.is_uniform(name):
                continue
            state_name = max(dim.context.possible_states, key=lambda s: dim.distribution.get(s, 0.0))
            state = dim.states[state_name]
            sources.append(name)
            total_confidence += dim.distribution[state_name]

            new_lo, new_hi = max(lo, state.min_value), min(hi, state.max_value)
            if new_lo > new_hi:
                conflicts.append(name)
                continue
            lo, hi = new_lo, new_hi

        if not sources:
            raise ValidationError("no dimensions with non-uniform distributions found")

        return RangeEstimate(
            min_value=lo,
            max_value=hi,
            confidence=total_confidence / len(sources),
            sources=sources,
            conflicts=conflicts,
        )

    def suggestions(self) -> list[str]:
        suggestions = []
        for name in self._dimensions:
            if self.is_uniform(name):
                suggestions.append(f"Need initial {name} measurement")
            elif self.entropy(name) > HIGH_ENTROPY_THRESHOLD:
                suggestions.append(f"Additional {name} measurement recommended")
        return suggestions

    def learning_progress(self) -> float:
        """Entropy reduction relative to the all-uniform starting point, in [0, 1]."""
        max_entropy = sum(math.log2(len(d.context.possible_states)) for d in self._dimensions.values())
        if max_entropy == 0:
            return 0.0
        current = sum(self.entropy(name) for name in self._dimensions)
        return 1.0 - current / max_entropy
