"""
Tests for the signature registry and correlation matrix
"""

import numpy as np
import pytest

from confluence.intelligence.correlation import (
    CorrelationMatrixBuilder, compute_alignment, compute_lead_lag, history_confidence
)
from confluence.intelligence.registry import SignatureRegistry
from confluence.shared.types import DomainSignature, QuadrantProfile, TemporalFlow


def signature(domain, momentum=0.0, volatility=0.0, harmonic=0.5, aggressive=0.25, late=0.33):
    return DomainSignature(
        domain=domain,
        quadrant_profile=QuadrantProfile(aggressive, 0.25, 0.25, 0.25),
        temporal_flow=TemporalFlow(0.33, 0.34, late),
        momentum=momentum,
        volatility=volatility,
        harmonic_resonance=harmonic,
        extracted_at=1.0
    )


class TestSignatureRegistry:

    def setup_method(self):
        self.registry = SignatureRegistry()

    def test_latest_signature_wins(self):
        self.registry.ingest_signature('a', signature('a', momentum=0.1))
        self.registry.ingest_signature('a', signature('a', momentum=0.4))
        assert len(self.registry) == 1
        assert self.registry.get('a').momentum == pytest.approx(0.4)

    def test_rejects_non_signatures(self):
        self.registry.ingest_signature('a', {'momentum': 1})
        assert 'a' not in self.registry

    def test_signatures_view_is_read_only(self):
        self.registry.ingest_signature('b', signature('b'))
        self.registry.ingest_signature('a', signature('a'))
        assert self.registry.domains() == ['a', 'b']
        with pytest.raises(TypeError):
            self.registry.signatures()['c'] = signature('c')
        assert self.registry.remove('a')
        assert not self.registry.remove('a')


class TestAlignment:

    def test_alignment_is_symmetric(self):
        a = signature('a', momentum=0.7, volatility=0.2, harmonic=0.9, aggressive=0.6, late=0.5)
        b = signature('b', momentum=-0.3, volatility=0.1, harmonic=0.4)
        assert compute_alignment(a, b) == pytest.approx(compute_alignment(b, a))

    def test_identical_signatures_fully_align(self):
        a = signature('a', momentum=0.3)
        b = signature('b', momentum=0.3)
        assert compute_alignment(a, b) == pytest.approx(1.0)

    def test_alignment_stays_bounded(self):
        a = signature('a', momentum=5.0, volatility=4.0, harmonic=0.0)
        b = signature('b', momentum=-5.0, volatility=0.0, harmonic=1.0)
        assert -1.0 <= compute_alignment(a, b) <= 1.0

    def test_lead_lag_sign(self):
        leader = signature('a', momentum=0.6, late=0.6)
        follower = signature('b', momentum=0.0)
        assert compute_lead_lag(leader, follower) > 0
        assert compute_lead_lag(follower, leader) == pytest.approx(-compute_lead_lag(leader, follower))

    def test_history_confidence(self):
        assert history_confidence([]) == 0.0
        assert history_confidence([0.5] * 100) == pytest.approx(1.0)
        assert history_confidence([0.5] * 50) == pytest.approx(0.5)
        assert history_confidence([0.0, 1.0] * 50) == pytest.approx(0.5)


class TestCorrelationMatrixBuilder:

    def setup_method(self):
        self.registry = SignatureRegistry()
        self.builder = CorrelationMatrixBuilder({'correlation_window': 100})
        for name, momentum in (('a', 0.5), ('b', 0.4), ('c', -0.6)):
            self.registry.ingest_signature(name, signature(name, momentum=momentum))

    def test_all_pairs_updated(self):
        assert self.builder.update_correlations(self.registry, now=10.0) == 3
        assert len(self.builder) == 3

    def test_entry_lookup_is_order_independent(self):
        self.builder.update_correlations(self.registry, now=10.0)
        assert self.builder.get_entry('a', 'b') is self.builder.get_entry('b', 'a')
        assert self.builder.get_entry('b', 'a').domain_a == 'a'
        assert self.builder.get_correlation('a', 'zzz') == 0.0

    def test_rolling_window_is_bounded(self):
        builder = CorrelationMatrixBuilder({'correlation_window': 10})
        for i in range(25):
            builder.update_correlations(self.registry, now=float(i))
        assert builder.get_entry('a', 'c').sample_size == 10

    def test_top_correlations_sorted_by_magnitude(self):
        self.builder.update_correlations(self.registry, now=10.0)
        top = self.builder.get_top_correlations(limit=2)
        assert len(top) == 2
        assert abs(top[0].correlation) >= abs(top[1].correlation)
        assert {top[0].domain_a, top[0].domain_b} == {'a', 'b'}

    def test_matrix_is_symmetric(self):
        self.builder.update_correlations(self.registry, now=10.0)
        domains, matrix = self.builder.get_matrix()
        assert domains == ['a', 'b', 'c']
        assert np.allclose(matrix, matrix.T)
        assert np.allclose(np.diag(matrix), 1.0)
