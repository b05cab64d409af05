"""Interpret a numeric measurement against a state's declared range."""

import math

from pydantic import BaseModel

from epistemic_core.errors import ValidationError


class RangeState(BaseModel):
    name: str
    min_value: float | None = None
    max_value: float | None = None


class RangeStateInterpreter:
    """Likelihood of a measurement under a range state.

    Inside the range the likelihood falls linearly from `peak` at the midpoint to
    `edge` at either bound. Outside it decays as `edge * exp(-decay * d / width)`,
    d being the distance to the nearest bound.
    """

    def __init__(self, peak: float = 1.0, edge: float = 0.5, decay: float = 2.0):
        if not 0.0 < edge <= peak:
            raise ValidationError("interpreter needs 0 < edge <= peak")
        if decay <= 0:
            raise ValidationError("decay must be positive")
        self.peak = peak
        self.edge = edge
        self.decay = decay

    def validate_state(self, state: RangeState):
        if state.min_value is None or state.max_value is None:
            raise ValidationError(f"range state '{state.name}' must declare min_value and max_value")
        if state.min_value >= state.max_value:
            raise ValidationError(f"range state '{state.name}': min_value must be less than max_value")

    def calculate_likelihood(self, measurement: float, state: RangeState) -> float:
        self.validate_state(state)
        lo, hi = state.min_value, state.max_value
        width = hi - lo

        if lo <= measurement <= hi:
            center = (lo + hi) / 2
            normalized = abs(measurement - center) / (width / 2)
            return self.peak - (self.peak - self.edge) * normalized

        distance = lo - measurement if measurement < lo else measurement - hi
        return self.edge * math.exp(-self.decay * distance / width)
