"""
Tests for the Kalman engine
===========================
pytest tests/test_engine.py -v
"""

import math

import numpy as np
import pytest
import sys, os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from kalman_temp.diagnostics import LOG_2PI
from kalman_temp.engine import CorrectedState, KalmanEngine, PredictedState
from kalman_temp.errors import InvalidObservation, InvalidTimestep, SingularCovariance
from kalman_temp.models import CWANModel, RandomWalkModel, ThermalRCModel


def _assert_symmetric_psd(P):
    np.testing.assert_array_equal(P, P.T)
    assert np.linalg.eigvalsh(P).min() >= -1e-9 * max(1.0, np.abs(P).max())


# ===== FIXTURES =====

@pytest.fixture
def engine():
    return KalmanEngine(RandomWalkModel(r=0.2, q=0.0015))


@pytest.fixture
def initial(engine):
    return engine.initialize(20.0)


# ===== STATE VALUES =====

class TestStates:
    def test_initialize(self, initial):
        assert isinstance(initial, CorrectedState)
        assert initial.index == 0
        assert initial.diagnostics is None
        assert initial.value == 20.0
        np.testing.assert_allclose(initial.covariance, np.diag([100.0, 100.0]))

    def test_arrays_read_only(self, initial):
        with pytest.raises(ValueError):
            initial.mean[0] = 1.0
        with pytest.raises(ValueError):
            initial.covariance[0, 0] = 1.0

    def test_state_does_not_alias_input(self):
        mean = np.array([1.0, 0.0])
        state = PredictedState(mean, np.eye(2))
        mean[0] = 99.0
        assert state.value == 1.0

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            PredictedState(np.zeros(2), np.eye(3))


# ===== PREDICT =====

class TestPredict:
    def test_zero_dt_is_identity(self, engine, initial):
        pred = engine.predict(initial, 0.0)
        assert isinstance(pred, PredictedState)
        assert pred.index == initial.index
        np.testing.assert_array_equal(pred.mean, initial.mean)
        np.testing.assert_array_equal(pred.covariance, initial.covariance)

    def test_zero_rate_keeps_mean(self, engine, initial):
        pred = engine.predict(initial, 3600.0)
        assert pred.value == 20.0
        assert pred.variance > initial.variance

    def test_input_state_unchanged(self, engine, initial):
        before = initial.covariance.copy()
        engine.predict(initial, 600.0)
        np.testing.assert_array_equal(initial.covariance, before)

    @pytest.mark.parametrize("dt", [-1.0, float("nan")])
    def test_invalid_dt(self, engine, initial, dt):
        with pytest.raises(InvalidTimestep):
            engine.predict(initial, dt)

    def test_thermal_drive(self):
        engine = KalmanEngine(ThermalRCModel())
        state = engine.initialize(20.0)
        free = engine.predict(state, 60.0)
        heated = engine.predict(state, 60.0, u=(20.0, 5000.0))
        assert heated.value > free.value


# ===== CORRECT =====

class TestCorrect:
    def test_hour_gap_scenario(self, engine, initial):
        pred = engine.predict(initial, 3600.0)
        assert pred.value == 20.0
        corr = engine.correct(pred, 20.5)
        assert isinstance(corr, CorrectedState)
        assert 20.0 < corr.value < 20.5
        assert corr.index == 1
        assert corr.variance < 0.2 ** 2

    def test_double_correct_is_type_error(self, engine, initial):
        corr = engine.step(initial, 60.0, 20.1)
        with pytest.raises(TypeError):
            engine.correct(corr, 20.2)

    def test_correct_initial_state_is_type_error(self, engine, initial):
        with pytest.raises(TypeError):
            engine.correct(initial, 20.0)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), "abc", None])
    def test_invalid_observation(self, engine, initial, value):
        pred = engine.predict(initial, 60.0)
        with pytest.raises(InvalidObservation):
            engine.correct(pred, value)

    def test_non_finite_covariance_is_singular(self, engine):
        pred = PredictedState(np.array([20.0, 0.0]), np.array([[np.inf, 0.0], [0.0, 1.0]]))
        with pytest.raises(SingularCovariance):
            engine.correct(pred, 20.0)

    def test_diagnostics(self, engine, initial):
        pred = engine.predict(initial, 60.0)
        corr = engine.correct(pred, 21.0)
        d = corr.diagnostics
        S = pred.variance + 0.04
        assert d.innovation[0] == pytest.approx(1.0)
        assert d.innovation_covariance[0, 0] == pytest.approx(S)
        assert d.nis == pytest.approx(1.0 / S)
        assert d.log_likelihood == pytest.approx(-0.5 * (1.0 / S + LOG_2PI + math.log(S)))

    def test_small_r_follows_observation(self):
        engine = KalmanEngine(RandomWalkModel(r=1e-6, q=0.0015))
        corr = engine.step(engine.initialize(20.0), 60.0, 20.5)
        assert corr.value == pytest.approx(20.5, abs=1e-6)

    def test_large_r_keeps_prediction(self):
        engine = KalmanEngine(RandomWalkModel(r=1e6, q=0.0015))
        state = engine.initialize(20.0)
        pred = engine.predict(state, 60.0)
        corr = engine.correct(pred, 20.5)
        assert corr.value == pytest.approx(pred.value, abs=1e-6)

    def test_smaller_r_moves_closer(self):
        values = []
        for r in (1.0, 0.2, 0.01):
            engine = KalmanEngine(RandomWalkModel(r=r, q=0.0015))
            values.append(engine.step(engine.initialize(20.0), 3600.0, 20.5).value)
        assert values[0] < values[1] < values[2] < 20.5


# ===== COVARIANCE INVARIANTS =====

class TestCovarianceInvariants:
    @pytest.mark.parametrize("model", [
        RandomWalkModel(r=0.2, q=0.0015),
        RandomWalkModel(r=0.2, q=0.015, correlation=0.3),
        CWANModel(r=0.2, q=0.01),
        ThermalRCModel(),
    ])
    def test_symmetric_psd_sequence(self, model):
        rng = np.random.RandomState(7)
        engine = KalmanEngine(model)
        state = engine.initialize(20.0)
        for k in range(200):
            dt = float(rng.uniform(0.0, 600.0))
            pred = engine.predict(state, dt)
            _assert_symmetric_psd(pred.covariance)
            state = engine.correct(pred, 20.0 + 0.5 * math.sin(k / 10.0) + 0.2 * rng.randn())
            _assert_symmetric_psd(state.covariance)
        assert state.index == 200
