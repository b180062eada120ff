"""
Tests for the confidence modifier pipeline
"""

import math

import numpy as np
import pytest

from confluence.intelligence.modifiers import (
    DEFAULT_MODIFIER_ORDER, ArchetypalResonanceModifier, BiorhythmLunarModifier, ConfidenceModifier, DynamicEquivalenceModifier,
    EmotionalContagionModifier, EntropyFlowModifier, FractalTimeModifier, InverseNoiseModifier, MorphicFieldModifier,
    ProbabilityCloudGenerator, QuantumCloudModifier, create_default_modifiers, regularize, validate_modifiers
)
from confluence.intelligence.modifiers.biorhythm_lunar import REFERENCE_NEW_MOON, lunar_state
from confluence.intelligence.modifiers.quantum_clouds import CloudCollapse
from confluence.shared.types import (
    Direction, DomainSignature, MarketFeatures, OutcomeFeedback, PredictionEnvelope, TickContext,
    UnifiedPrediction
)

NOW = 1_700_000_000.0


class WildModifier(ConfidenceModifier):
    name = "wild"

    def __init__(self, raw=5.0):
        super().__init__()
        self.raw = raw

    def update(self, ctx):
        pass

    def raw_modifier(self):
        return self.raw


def make_context(timestamp=NOW, prices=(), sentiment=0.0, volatility=0.05, domains=5, momentum=0.4):
    signatures = {
        f"d{i}": DomainSignature(domain=f"d{i}", momentum=momentum, phase_alignment=0.8, extracted_at=timestamp)
        for i in range(domains)
    }
    features = MarketFeatures(symbol='ES', timestamp=timestamp, momentum=momentum,
                              volatility=volatility, sentiment=sentiment)
    return TickContext.build(timestamp, signatures, features, prices=prices, volumes=[1000.0] * len(prices))


def make_feedback(direction=Direction.UP, magnitude=0.3, signal=0.5, fundamental=0.4, timestamp=NOW):
    prediction = UnifiedPrediction(
        direction=Direction.UP,
        confidence=0.6,
        magnitude=0.3,
        time_horizon=5.0,
        contributing_domains=('d0',),
        consensus_strength=1.0,
        harmonic_alignment=0.7,
        normalized_signal=signal
    )
    envelope = PredictionEnvelope(prediction=prediction, fundamental_signal=fundamental)
    return OutcomeFeedback(envelope, direction, magnitude, timestamp)


class TestRegularization:

    def test_regularize_clamps_and_shrinks(self):
        assert regularize(2.0, 0.85) == pytest.approx(1.17)
        assert regularize(0.5, 0.8) == pytest.approx(0.84)
        assert regularize(1.1, 0.9) == pytest.approx(1.09)

    def test_non_finite_raw_is_neutral(self):
        assert regularize(float('nan'), 0.85) == 1.0
        assert regularize(float('inf'), 0.85) == 1.0
        assert regularize(None, 0.85) == 1.0

    def test_stage_factor_uses_own_regularization(self):
        assert WildModifier(5.0).get_confidence_modifier() == pytest.approx(1.17)
        assert WildModifier(0.0).get_confidence_modifier() == pytest.approx(0.83)

    def test_regularization_out_of_range_rejected(self):
        class Loose(WildModifier):
            regularization = 0.5

        with pytest.raises(ValueError):
            Loose()


class TestPipeline:

    def test_default_order(self):
        modifiers = create_default_modifiers()
        assert tuple(m.name for m in modifiers) == DEFAULT_MODIFIER_ORDER
        assert DEFAULT_MODIFIER_ORDER == (
            'entropy_flow', 'archetypal_resonance', 'morphic_field', 'emotional_contagion',
            'fractal_time', 'inverse_noise', 'biorhythm_lunar', 'dynamic_equivalence', 'quantum_cloud'
        )

    def test_override_eligibility(self):
        eligible = {m.name for m in create_default_modifiers() if m.override_eligible}
        assert eligible == {'inverse_noise', 'emotional_contagion', 'fractal_time'}

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            validate_modifiers([WildModifier(), WildModifier()])

    def test_fresh_modifiers_are_neutral(self):
        for modifier in create_default_modifiers():
            assert modifier.get_confidence_modifier() == pytest.approx(1.0), modifier.name

    def test_factors_stay_bounded_over_random_walk(self):
        rng = np.random.default_rng(7)
        prices = list(100 * np.exp(np.cumsum(rng.normal(0, 0.01, 400))))
        modifiers = create_default_modifiers()

        for step in range(60):
            ctx = make_context(
                timestamp=NOW + step * 60,
                prices=prices[:200 + step * 3],
                sentiment=float(rng.uniform(-1, 1)),
                volatility=float(rng.uniform(0, 0.5)),
                momentum=float(rng.uniform(-1, 1))
            )
            for modifier in modifiers:
                modifier.update(ctx)
                factor = modifier.get_confidence_modifier()
                assert 0.8 <= factor <= 1.2, modifier.name
                hint = modifier.direction_hint()
                if hint is not None:
                    assert 0.0 <= hint.confidence <= 1.0


class TestEntropyFlow:

    def test_insufficient_returns_is_neutral(self):
        modifier = EntropyFlowModifier()
        modifier.update(make_context(prices=[100.0 + i for i in range(5)]))
        assert modifier.raw_modifier() == 1.0

    def test_one_sided_returns_have_zero_entropy(self):
        modifier = EntropyFlowModifier()
        modifier.update(make_context(prices=[100.0 + i for i in range(30)]))
        assert modifier.current_entropy == pytest.approx(0.0)
        assert modifier.raw_modifier() == pytest.approx(1.05)
        assert modifier.get_flow_state()['trend'] == 'steady'


class TestArchetypalResonance:

    def setup_method(self):
        self.modifier = ArchetypalResonanceModifier()
        self.flat = [100.0] * 30

    def record(self, archetype, implication, actual, count):
        for _ in range(count):
            self.modifier.record_outcome(make_feedback(direction=actual),
                                         {'archetype': archetype, 'price_implication': implication})

    def test_short_history_has_no_match(self):
        assert self.modifier.detect_archetype(self.flat[:19]) is None
        self.modifier.update(make_context(prices=self.flat[:19]))
        assert self.modifier.raw_modifier() == 1.0
        assert self.modifier.snapshot() == {}

    def test_quiet_market_is_sacred_marriage(self):
        self.modifier.update(make_context(prices=self.flat))
        match = self.modifier.current_match
        assert match.archetype == 'sacred_marriage'
        assert match.strength == pytest.approx(0.8)
        assert match.expected_next_phase == 'Union'
        assert match.price_implication == 'consolidating'
        assert self.modifier.raw_modifier() == pytest.approx(0.98)
        assert self.modifier.snapshot() == {'archetype': 'sacred_marriage',
                                            'price_implication': 'consolidating'}

    def test_strong_rally_is_apocalypse_renewal(self):
        match = self.modifier.detect_archetype(list(np.linspace(100.0, 140.0, 30)))
        assert match.archetype == 'apocalypse_renewal'
        assert match.strength == pytest.approx(0.4)
        assert match.price_implication == 'bullish'
        assert match.expected_next_phase == 'New Dawn'

    def test_repeating_wave_is_eternal_return(self):
        prices = [100.0 + 10.0 * math.sin(2 * math.pi * i / 20) for i in range(60)]
        match = self.modifier.detect_archetype(prices)
        assert match.archetype == 'eternal_return'
        assert 0.5 < match.strength <= 1.0

    def test_accuracy_needs_five_outcomes(self):
        self.record('apocalypse_renewal', 'bullish', Direction.UP, 4)
        assert self.modifier.get_archetype_accuracy('apocalypse_renewal') == 0.5
        self.record('apocalypse_renewal', 'bullish', Direction.DOWN, 1)
        assert self.modifier.get_archetype_accuracy('apocalypse_renewal') == pytest.approx(0.8)

        self.modifier.current_match = self.modifier.detect_archetype(list(np.linspace(100.0, 140.0, 30)))
        assert self.modifier.raw_modifier() == pytest.approx(0.9 + 0.4 * 0.8 * 0.2)

    def test_unknown_archetype_outcome_is_ignored(self):
        self.modifier.record_outcome(make_feedback(), {})
        self.modifier.record_outcome(make_feedback(), {'archetype': 'trickster'})
        assert dict(self.modifier.accuracy) == {}

    def test_track_record_reweights_candidates(self):
        assert self.modifier.detect_archetype(self.flat, sentiment=-0.5).archetype == 'sacred_marriage'

        self.record('sacred_marriage', 'consolidating', Direction.UP, 5)
        assert self.modifier.get_archetype_accuracy('sacred_marriage') == 0.0

        match = self.modifier.detect_archetype(self.flat, sentiment=-0.5)
        assert match.archetype == 'shadow_integration'
        assert match.strength == pytest.approx(0.65)


class TestEmotionalContagion:

    def test_needs_ten_observations(self):
        modifier = EmotionalContagionModifier()
        for i in range(5):
            modifier.update(make_context(timestamp=NOW + i, prices=[100.0] * 10, sentiment=0.6))
        assert modifier.direction_hint() is None
        assert modifier.raw_modifier() == 1.0

    def test_hopeful_crowd_leans_up(self):
        modifier = EmotionalContagionModifier()
        for i in range(12):
            modifier.update(make_context(timestamp=NOW + i, prices=[100.0] * 10, sentiment=0.6))
        hint = modifier.direction_hint()
        assert modifier.state.dominant_emotion == 'hope'
        assert hint.direction is Direction.UP
        assert hint.confidence == pytest.approx(0.85)
        assert modifier.get_confidence_modifier() > 1.0

    def test_outcomes_tracked_by_emotion(self):
        modifier = EmotionalContagionModifier()
        for i in range(12):
            modifier.update(make_context(timestamp=NOW + i, prices=[100.0] * 10, sentiment=0.6))
        snapshot = modifier.snapshot()
        for _ in range(6):
            modifier.record_outcome(make_feedback(Direction.UP), snapshot)
        assert modifier.get_accuracy_by_emotion()['hope'] == pytest.approx(1.0)
        assert modifier.get_accuracy_by_emotion()['fear'] == pytest.approx(0.5)


class TestFractalAndNoise:

    def test_fractal_short_history_has_no_hint(self):
        modifier = FractalTimeModifier()
        modifier.update(make_context(prices=[100.0, 101.0, 100.5]))
        assert modifier.direction_hint() is None
        assert modifier.raw_modifier() == 1.0

    def test_fractal_finds_repeating_shape(self):
        modifier = FractalTimeModifier()
        wave = [100 + 5 * math.sin(i / 3) for i in range(200)]
        modifier.update(make_context(prices=wave))
        minute = modifier.state.timescale_patterns[0]
        assert minute.timescale == 'minute'
        assert minute.patterns
        assert 0.8 <= modifier.get_confidence_modifier() <= 1.2

    def test_noise_without_prices_has_no_hint(self):
        modifier = InverseNoiseModifier()
        modifier.update(make_context(prices=()))
        assert modifier.direction_hint() is None
        assert modifier.raw_modifier() == 1.0

    def test_noise_profile_for_smooth_trend(self):
        modifier = InverseNoiseModifier()
        modifier.update(make_context(prices=[100.0 + i * 0.5 for i in range(60)]))
        assert modifier.profile is not None
        assert modifier.profile.level < 0.3
        assert modifier.direction_hint() is not None


class TestMorphicField:

    def test_pattern_forms_after_three_locations(self):
        modifier = MorphicFieldModifier()
        fingerprint = [0.5, 0.2, 0.1, 0.2, 0.3, 0.3, 0.4, 0.6, 0.7]
        assert modifier.record_observation('a', fingerprint, NOW) is None
        assert modifier.record_observation('a', fingerprint, NOW + 1) is None
        assert modifier.record_observation('b', fingerprint, NOW + 2) is None
        pattern = modifier.record_observation('c', fingerprint, NOW + 3)
        assert pattern is not None
        assert pattern.locations == ['a', 'b', 'c']

    def test_outcome_reinforces_matched_patterns(self):
        modifier = MorphicFieldModifier()
        modifier.update(make_context(domains=4))
        modifier.update(make_context(timestamp=NOW + 60, domains=4))
        snapshot = modifier.snapshot()
        assert snapshot['pattern_ids']
        pattern = modifier.patterns[snapshot['pattern_ids'][0]]
        before = pattern.strength
        modifier.record_outcome(make_feedback(Direction.DOWN), snapshot)
        assert pattern.strength == pytest.approx(before * 0.9)


class TestBiorhythmLunar:

    def test_reference_new_moon(self):
        state = lunar_state(REFERENCE_NEW_MOON + 3600)
        assert state.phase == 'new_moon'
        assert state.illumination < 0.01

    def test_phase_statistics_learned(self):
        modifier = BiorhythmLunarModifier()
        modifier.update(make_context(timestamp=REFERENCE_NEW_MOON + 3600))
        snapshot = modifier.snapshot()
        for _ in range(5):
            modifier.record_outcome(make_feedback(Direction.DOWN), snapshot)
        assert modifier.get_accuracy_by_phase()['new_moon'] == pytest.approx(0.0)
        correlation = next(c for c in modifier.get_phase_correlations() if c.phase == 'new_moon')
        assert correlation.historical_bias == 'bearish'


class TestDynamicEquivalence:

    def setup_method(self):
        self.modifier = DynamicEquivalenceModifier()

    def test_blend_follows_weights(self):
        self.modifier.pattern_weight, self.modifier.fundamental_weight = 0.0, 1.0
        assert self.modifier.blend_predictions(0.3, -0.4) == pytest.approx(-0.4)
        self.modifier.pattern_weight, self.modifier.fundamental_weight = 1.0, 0.0
        assert self.modifier.blend_predictions(0.3, -0.4) == pytest.approx(0.3)

    def test_no_state_until_enough_outcomes(self):
        for i in range(4):
            self.modifier.record_pattern_prediction(0.5, 0.5, NOW + i)
        assert self.modifier.current_state is None
        assert self.modifier.raw_modifier() == 1.0

    def test_accurate_patterns_gain_weight(self):
        for i in range(10):
            value = 0.1 + i * 0.05
            self.modifier.record_pattern_prediction(value, value, NOW + i)
            self.modifier.record_fundamental_prediction(value, -value, NOW + i)
        state = self.modifier.current_state
        assert state.relationship_phase == 'strong_equivalence'
        assert self.modifier.pattern_weight > 0.5
        assert self.modifier.optimal_strategy() == 'trust_patterns'
        assert self.modifier.get_confidence_modifier() > 1.0

    def test_weights_reset_when_uncorrelated(self):
        for i in range(10):
            self.modifier.record_pattern_prediction(0.5, 0.5 if i % 2 else -0.5, NOW + i)
        assert self.modifier.pattern_weight == 0.5
        assert self.modifier.fundamental_weight == 0.5

    def test_outcomes_stale_after_window(self):
        for i in range(5):
            self.modifier.record_outcome(make_feedback(timestamp=NOW + i), {})
        assert self.modifier.current_state is not None
        count = len(self.modifier.state_history)
        self.modifier.update_equivalence(NOW + 7200)
        assert len(self.modifier.state_history) == count


class TestQuantumClouds:

    def setup_method(self):
        self.generator = ProbabilityCloudGenerator()

    def test_empty_input_gives_uniform_cloud(self):
        cloud = self.generator.generate_cloud([])
        assert cloud.dominant_outcome == 'neutral'
        assert cloud.entropy == pytest.approx(1.0)
        zero = self.generator.generate_cloud([(0.5, 0.0, 'a')])
        assert zero.values.size == 21

    def test_cloud_shape(self):
        cloud = self.generator.generate_cloud([(0.2, 0.8, 'a'), (0.3, 0.9, 'b')])
        assert cloud.probabilities.sum() == pytest.approx(1.0)
        assert cloud.mean == pytest.approx((0.2 * 0.8 + 0.3 * 0.9) / 1.7)
        assert cloud.dominant_outcome == 'up'
        low, high = cloud.confidence_intervals[0.95]
        assert low < cloud.mean < high
        assert cloud.confidence_intervals[0.50][0] >= low

    def test_ci95_coverage(self):
        cloud = self.generator.generate_cloud([(0.2, 0.8, 'a'), (0.3, 0.9, 'b')])
        low, high = cloud.confidence_intervals[0.95]
        for outcome in np.linspace(low, high, 200):
            self.generator.record_collapse(cloud, float(outcome))
        stats = self.generator.get_calibration_stats()
        assert abs(stats['ci95_coverage'] * 100 - 95) <= 10
        assert stats['ci50_coverage'] < stats['ci95_coverage']

    def test_outcomes_at_the_centre_over_cover(self):
        cloud = self.generator.generate_cloud([(0.2, 0.8, 'a'), (0.3, 0.9, 'b')])
        for _ in range(20):
            self.generator.record_collapse(cloud, cloud.mean)
        stats = self.generator.get_calibration_stats()
        assert stats['ci50_coverage'] == pytest.approx(1.0)
        assert not stats['is_well_calibrated']

    def seed_coverage(self, covered):
        for i in range(20):
            within = {level: i < count for level, count in covered.items()}
            self.generator.collapse_history.append(CloudCollapse(cloud=None, actual_outcome=0.0, within=within))

    def test_coverage_at_tolerance_edge_is_calibrated(self):
        self.seed_coverage({0.50: 13, 0.75: 17, 0.95: 18})
        stats = self.generator.get_calibration_stats()
        assert stats['ci50_coverage'] == pytest.approx(0.65)
        assert stats['is_well_calibrated']

    def test_coverage_past_tolerance_is_not_calibrated(self):
        self.seed_coverage({0.50: 10, 0.75: 15, 0.95: 17})
        assert not self.generator.get_calibration_stats()['is_well_calibrated']

    def test_calibration_defaults_below_minimum(self):
        stats = self.generator.get_calibration_stats()
        assert stats['is_well_calibrated']
        assert stats['ci95_coverage'] == 0.95

    def test_modifier_records_collapse(self):
        modifier = QuantumCloudModifier()
        modifier.update(make_context())
        snapshot = modifier.snapshot()
        assert snapshot['cloud'] is modifier.cloud
        modifier.record_outcome(make_feedback(Direction.UP, magnitude=0.3), snapshot)
        collapse = modifier.generator.collapse_history[-1]
        assert collapse.actual_outcome == pytest.approx(0.3)
