"""
Tests for the multiple-model bank
=================================
pytest tests/test_bank.py -v
"""

import warnings

import numpy as np
import pytest
import sys, os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import kalman_temp.bank as bank_module
from kalman_temp.bank import (
    FAST, SLOW, ModelBank, fuse_estimates, markov_prior, persistence_matrix,
    update_model_probabilities,
)
from kalman_temp.errors import (
    ConfigError, DegenerateLikelihood, InvalidObservation, InvalidTimestep,
    SessionNotInitialized,
)
from kalman_temp.models import CWANModel, RandomWalkModel, ThermalRCModel


# ===== FIXTURES =====

@pytest.fixture
def slow_fast():
    bank = ModelBank.slow_fast(RandomWalkModel(r=0.2, q=0.0015), fast_q_factor=10.0)
    bank.initialize(20.0)
    return bank


# ===== MARKOV FUSION =====

class TestPersistenceMatrix:
    def test_two_models(self):
        Pi = persistence_matrix([0.995, 0.95])
        np.testing.assert_allclose(Pi, [[0.995, 0.005], [0.05, 0.95]])

    def test_three_models_rows_sum_to_one(self):
        Pi = persistence_matrix([0.9, 0.8, 0.7])
        np.testing.assert_allclose(Pi.sum(axis=1), np.ones(3))
        assert Pi[1, 0] == pytest.approx(0.1)
        assert Pi[1, 2] == pytest.approx(0.1)

    def test_single_model(self):
        np.testing.assert_array_equal(persistence_matrix([0.3]), [[1.0]])

    @pytest.mark.parametrize("p", [[1.5, 0.9], [-0.1, 0.9], [np.nan, 0.9], []])
    def test_invalid(self, p):
        with pytest.raises(ConfigError):
            persistence_matrix(p)

    def test_markov_prior(self):
        Pi = persistence_matrix([0.995, 0.95])
        np.testing.assert_allclose(markov_prior(Pi, np.array([0.0, 1.0])), [0.05, 0.95])


class TestProbabilityUpdate:
    Pi = persistence_matrix([0.995, 0.95])

    def test_sums_to_one(self):
        mu, degenerate = update_model_probabilities(np.array([0.5, 0.5]), [-1.0, -3.0], self.Pi)
        assert not degenerate
        assert mu.sum() == pytest.approx(1.0)
        assert np.all(mu >= 0.0)
        assert mu[0] > mu[1]

    def test_very_negative_log_likelihoods(self):
        mu, degenerate = update_model_probabilities(
            np.array([0.5, 0.5]), [-1e6, -1e6 - 10.0], self.Pi)
        assert not degenerate
        assert mu.sum() == pytest.approx(1.0)
        assert mu[0] > 0.99

    def test_all_nan_is_uniform(self):
        mu, degenerate = update_model_probabilities(
            np.array([0.9, 0.1]), [np.nan, np.nan], self.Pi)
        assert degenerate
        np.testing.assert_array_equal(mu, [0.5, 0.5])

    def test_single_nan_rules_model_out(self):
        mu, degenerate = update_model_probabilities(np.array([0.5, 0.5]), [np.nan, -2.0], self.Pi)
        assert not degenerate
        np.testing.assert_array_equal(mu, [0.0, 1.0])

    def test_zero_prior_mass_is_uniform(self):
        Pi = persistence_matrix([1.0, 1.0])
        mu, degenerate = update_model_probabilities(
            np.array([1.0, 0.0]), [-np.inf, 0.0], Pi)
        assert degenerate
        np.testing.assert_array_equal(mu, [0.5, 0.5])

    def test_wrong_length(self):
        with pytest.raises(ValueError):
            update_model_probabilities(np.array([0.5, 0.5]), [0.0], self.Pi)


class TestFuse:
    def test_mixture(self):
        fused, var = fuse_estimates(np.array([0.25, 0.75]), [0.0, 4.0], [1.0, 1.0])
        assert fused == pytest.approx(3.0)
        assert var == pytest.approx(0.25 * (1.0 + 9.0) + 0.75 * (1.0 + 1.0))


# ===== MODEL BANK =====

class TestModelBank:
    def test_construction(self):
        bank = ModelBank.slow_fast(CWANModel(q=0.002), fast_q_factor=5.0)
        assert bank.names == [SLOW, FAST]
        assert len(bank) == 2
        assert bank.model(FAST).q == pytest.approx(0.01)
        np.testing.assert_allclose(bank.probabilities, [0.5, 0.5])
        assert not bank.initialized

    def test_transition_matrix_read_only(self, slow_fast):
        with pytest.raises(ValueError):
            slow_fast.transition_matrix[0, 0] = 0.5

    def test_invalid_construction(self):
        m = RandomWalkModel()
        with pytest.raises(ConfigError):
            ModelBank([], [])
        with pytest.raises(ConfigError):
            ModelBank([("a", m), ("a", m)], [0.9, 0.9])
        with pytest.raises(ConfigError):
            ModelBank([("a", m), ("b", ThermalRCModel())], [0.9, 0.9])
        with pytest.raises(ConfigError):
            ModelBank([("a", m), ("b", m)], [0.9])
        with pytest.raises(ConfigError):
            ModelBank([("a", m), ("b", m)], [0.9, 0.9], initial_probabilities=[0.7, 0.7])
        with pytest.raises(ConfigError):
            ModelBank.slow_fast(m, fast_q_factor=0.0)

    def test_requires_initialize(self):
        bank = ModelBank.slow_fast(RandomWalkModel())
        with pytest.raises(SessionNotInitialized):
            bank.step(20.0, 60.0)
        with pytest.raises(SessionNotInitialized):
            bank.forecast(60.0)

    def test_initialize(self):
        bank = ModelBank.slow_fast(RandomWalkModel(), initial_probabilities=[0.8, 0.2])
        est = bank.initialize(21.0)
        assert est.value == 21.0
        assert est.index == 0
        assert est.probabilities == {SLOW: 0.8, FAST: 0.2}
        assert est.slow_confidence == pytest.approx(0.8)

    def test_step(self, slow_fast):
        est = slow_fast.step(20.3, 600.0)
        assert est.index == 1
        assert not est.is_forecast
        assert sum(est.probabilities.values()) == pytest.approx(1.0)
        assert est.std > 0.0
        for monitor in slow_fast.monitors.values():
            assert len(monitor) == 1

    def test_identical_models_fuse_to_either(self):
        bank = ModelBank.slow_fast(RandomWalkModel(r=0.2, q=0.0015), fast_q_factor=1.0)
        bank.initialize(20.0)
        rng = np.random.RandomState(3)
        for k in range(50):
            est = bank.step(20.0 + 0.01 * k + 0.2 * rng.randn(), 60.0)
            assert est.values[SLOW] == est.values[FAST]
            assert est.value == pytest.approx(est.values[SLOW], abs=1e-12)

    def test_forecast_does_not_mutate(self, slow_fast):
        slow_fast.step(20.2, 60.0)
        states = slow_fast.states
        mu = slow_fast.probabilities
        fc = slow_fast.forecast(3600.0)
        assert fc.is_forecast
        after = slow_fast.states
        for name in states:
            assert after[name] is states[name]
        np.testing.assert_array_equal(slow_fast.probabilities, mu)
        assert fc.probabilities == slow_fast.estimate().probabilities

    def test_forecast_zero_dt_equals_estimate(self, slow_fast):
        slow_fast.step(20.4, 300.0)
        assert slow_fast.forecast(0.0).value == pytest.approx(slow_fast.estimate().value)

    @pytest.mark.parametrize("value, dt, error", [
        (float("nan"), 60.0, InvalidObservation),
        (20.0, -1.0, InvalidTimestep),
    ])
    def test_rejected_step_is_atomic(self, slow_fast, value, dt, error):
        states = slow_fast.states
        mu = slow_fast.probabilities
        with pytest.raises(error):
            slow_fast.step(value, dt)
        after = slow_fast.states
        for name in states:
            assert after[name] is states[name]
        np.testing.assert_array_equal(slow_fast.probabilities, mu)

    def test_degenerate_update_warns(self, slow_fast, monkeypatch):
        monkeypatch.setattr(bank_module, "update_model_probabilities",
                            lambda mu, log_l, Pi: (np.array([0.5, 0.5]), True))
        with pytest.warns(DegenerateLikelihood):
            est = slow_fast.step(20.1, 60.0)
        assert slow_fast.degenerate_count == 1
        assert est.probabilities == {SLOW: 0.5, FAST: 0.5}

    def test_regular_update_does_not_warn(self, slow_fast):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DegenerateLikelihood)
            slow_fast.step(20.1, 60.0)
        assert slow_fast.degenerate_count == 0

    def test_fast_model_gains_after_step_change(self):
        bank = ModelBank.slow_fast(RandomWalkModel(r=0.2, q=0.0015), fast_q_factor=10.0)
        bank.initialize(20.0)
        for _ in range(300):
            bank.step(20.0, 60.0)
        before = bank.probabilities[1]

        fast_mu = []
        for _ in range(4):
            fast_mu.append(bank.step(20.4, 60.0).probabilities[FAST])

        assert fast_mu[0] > before
        assert all(b > a for a, b in zip(fast_mu, fast_mu[1:]))

    def test_release(self, slow_fast):
        slow_fast.release()
        assert not slow_fast.initialized
        with pytest.raises(SessionNotInitialized):
            slow_fast.estimate()
