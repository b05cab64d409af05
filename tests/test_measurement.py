"""
State interpreter and measurement aggregation tests.

Likelihood shape:
1. Inside a range: maximal at the midpoint, falling to the edge value at the bounds
2. Outside: exponential decay with distance from the nearest bound

Aggregation:
1. Uniform dimensions do not contribute and ask for a first measurement
2. Non-uniform dimensions narrow the combined range
3. Entropy falls as evidence accumulates
"""

from datetime import datetime, timedelta, timezone

import pytest

from epistemic_core.errors import ValidationError
from epistemic_core.measurement import Measurement, MeasurementAggregator
from epistemic_core.models import BeliefSystem
from epistemic_core.predictive_processing import ensure_context
from epistemic_core.state_interpreter import RangeState, RangeStateInterpreter

YOUNG_GRIP = RangeState(name="young", min_value=20, max_value=40)
OLD_GRIP = RangeState(name="old", min_value=40, max_value=80)


class TestRangeStateInterpreter:

    def test_peak_at_midpoint_edge_at_bounds(self):
        interp = RangeStateInterpreter()
        assert interp.calculate_likelihood(30, YOUNG_GRIP) == pytest.approx(1.0)
        assert interp.calculate_likelihood(20, YOUNG_GRIP) == pytest.approx(0.5)
        assert interp.calculate_likelihood(40, YOUNG_GRIP) == pytest.approx(0.5)

    def test_decreases_toward_edges(self):
        interp = RangeStateInterpreter()
        inside = [interp.calculate_likelihood(v, YOUNG_GRIP) for v in (30, 33, 36, 39)]
        assert inside == sorted(inside, reverse=True)

    def test_exponential_decay_outside(self):
        interp = RangeStateInterpreter()
        assert interp.calculate_likelihood(50, YOUNG_GRIP) == pytest.approx(0.5 * 2.718281828 ** -1)
        outside = [interp.calculate_likelihood(v, YOUNG_GRIP) for v in (41, 50, 60, 100)]
        assert outside == sorted(outside, reverse=True)
        assert all(0 < x < 0.5 for x in outside)

    @pytest.mark.parametrize("state", [
        RangeState(name="open"),
        RangeState(name="half", min_value=1),
        RangeState(name="flat", min_value=5, max_value=5),
        RangeState(name="inverted", min_value=9, max_value=1),
    ])
    def test_invalid_states(self, state):
        with pytest.raises(ValidationError):
            RangeStateInterpreter().validate_state(state)


def aggregator():
    agg = MeasurementAggregator()
    agg.add_dimension("grip", [YOUNG_GRIP, OLD_GRIP])
    agg.add_dimension("vision", [
        RangeState(name="young", min_value=10, max_value=45),
        RangeState(name="old", min_value=45, max_value=90),
    ])
    return agg


class TestAggregation:

    def test_estimate_needs_dimensions(self):
        with pytest.raises(ValidationError):
            MeasurementAggregator().estimate()

    def test_estimate_needs_a_measurement(self):
        agg = aggregator()
        with pytest.raises(ValidationError):
            agg.estimate()
        assert agg.suggestions() == ["Need initial grip measurement", "Need initial vision measurement"]

    def test_single_dimension_estimate(self):
        agg = aggregator()
        agg.process_measurements([Measurement(dimension="grip", value=30)])

        estimate = agg.estimate()
        assert (estimate.min_value, estimate.max_value) == (20, 40)
        assert estimate.sources == ["grip"]
        assert estimate.confidence == pytest.approx(1.0 / (1.0 + 0.5 * 2.718281828 ** -0.5), abs=1e-6)
        assert agg.suggestions() == ["Need initial vision measurement"]

    def test_dimensions_narrow_the_range(self):
        agg = aggregator()
        agg.process_measurements([
            Measurement(dimension="grip", value=30),
            Measurement(dimension="vision", value=20),
        ])

        estimate = agg.estimate()
        assert (estimate.min_value, estimate.max_value) == (20, 40)
        assert estimate.sources == ["grip", "vision"]
        assert estimate.conflicts == []
        assert 0.5 < estimate.confidence <= 1.0

    def test_disjoint_dimension_reported_as_conflict(self):
        agg = aggregator()
        agg.process_measurements([
            Measurement(dimension="grip", value=30),
            Measurement(dimension="vision", value=80),
        ])

        estimate = agg.estimate()
        assert (estimate.min_value, estimate.max_value) == (20, 40)
        assert estimate.conflicts == ["vision"]

    def test_unknown_dimension_applies_nothing(self):
        agg = aggregator()
        with pytest.raises(ValidationError):
            agg.process_measurements([
                Measurement(dimension="grip", value=30),
                Measurement(dimension="hearing", value=1),
            ])
        assert agg.is_uniform("grip")

    def test_duplicate_dimension(self):
        agg = aggregator()
        with pytest.raises(ValidationError):
            agg.add_dimension("grip", [YOUNG_GRIP])

    def test_chronological_order(self):
        agg = aggregator()
        t0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
        agg.process_measurements([
            Measurement(dimension="grip", value=35, timestamp=t0 + timedelta(days=2)),
            Measurement(dimension="grip", value=25, timestamp=t0),
            Measurement(dimension="grip", value=30),
        ])

        bc = agg.ppc.belief_contexts[0]
        assert bc.evidence == ["grip=25.0", "grip=35.0", "grip=30.0"]
        assert [r.source for r in bc.confidence_ratings] == ["default", "measurement", "measurement", "measurement"]


class TestEntropy:

    def test_uniform_two_states_is_one_bit(self):
        assert aggregator().entropy("grip") == pytest.approx(1.0)

    def test_evidence_lowers_entropy(self):
        agg = aggregator()
        agg.process_measurements([Measurement(dimension="grip", value=30)])
        first = agg.entropy("grip")
        agg.process_measurements([Measurement(dimension="grip", value=30)])
        assert agg.entropy("grip") < first < 1.0

    def test_high_entropy_dimension_wants_more(self):
        agg = MeasurementAggregator()
        agg.add_dimension("rings", [
            RangeState(name=f"band {i}", min_value=i * 10, max_value=(i + 1) * 10) for i in range(4)
        ])
        agg.process_measurements([Measurement(dimension="rings", value=15)])

        assert agg.entropy("rings") > 1.0
        assert agg.suggestions() == ["Additional rings measurement recommended"]

    def test_learning_progress(self):
        agg = aggregator()
        assert agg.learning_progress() == pytest.approx(0.0)

        agg.process_measurements([Measurement(dimension="grip", value=30)])
        partial = agg.learning_progress()
        agg.process_measurements([Measurement(dimension="vision", value=20)] * 3)
        assert 0.0 < partial < agg.learning_progress() <= 1.0


def test_dimensions_join_a_belief_system_graph():
    bs = BeliefSystem()
    agg = MeasurementAggregator(ppc=ensure_context(bs))
    agg.add_dimension("grip", [YOUNG_GRIP, OLD_GRIP])

    ppc = ensure_context(bs)
    assert [oc.name for oc in ppc.observation_contexts] == ["grip"]
    assert ppc.observation_contexts[0].possible_states == ["young", "old"]
    assert ppc.belief_contexts[0].belief_id == "measurement:grip"
