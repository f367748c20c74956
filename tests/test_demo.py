"""
Tests for the demo CLI
======================
pytest tests/test_demo.py -v
"""

import numpy as np
import pytest
import sys, os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from kalman_temp.config import SessionConfig
import kalman_temp.demo as demo
from kalman_temp.demo import DEFAULT_FAST_Q_FACTOR, generate_step_drift, main, run_scenario


class TestScenario:
    def test_generate_step_drift(self):
        t, truth, obs = generate_step_drift(n_samples=90, step=2.0, noise_std=0.0)
        assert t.shape == truth.shape == obs.shape == (90,)
        assert np.all(np.diff(t) > 0.0)
        assert truth[0] == 20.0
        assert truth[40] == pytest.approx(22.0)
        np.testing.assert_array_equal(obs, truth)

    def test_run_scenario(self):
        t, truth, obs = generate_step_drift(n_samples=120)
        result = run_scenario(SessionConfig(r=0.2, q=0.0015, fast_q_factor=10.0), t, truth, obs)
        assert result["samples"] == 120
        assert set(result["mae"]) == {"slow", "fast", "fused"}
        assert sum(result["probabilities"].values()) == pytest.approx(1.0)


class TestCli:
    def test_main(self, capsys):
        main(["--samples", "60", "--q", "0.002"])
        out = capsys.readouterr().out
        assert "MAE fused" in out
        assert "Final μ" in out

    def test_main_with_yaml(self, tmp_path, capsys):
        path = tmp_path / "demo.yaml"
        path.write_text("session:\n  r: 0.3\n  noise_model: cwan\n", encoding="utf-8")
        main(["--config", str(path), "--samples", "40"])
        assert "model=cwan" in capsys.readouterr().out

    @pytest.mark.parametrize("key", ["fast_q_factor", "fastQFactor"])
    def test_yaml_fast_q_factor_is_kept(self, tmp_path, monkeypatch, key):
        path = tmp_path / "demo.yaml"
        path.write_text(f"{key}: 3.0\n", encoding="utf-8")
        seen = []
        monkeypatch.setattr(demo, "run_demo", lambda config, **kw: seen.append(config))
        main(["--config", str(path)])
        assert seen[0].fast_q_factor == 3.0

    def test_fast_q_factor_flag_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "demo.yaml"
        path.write_text("fastQFactor: 3.0\n", encoding="utf-8")
        seen = []
        monkeypatch.setattr(demo, "run_demo", lambda config, **kw: seen.append(config))
        main(["--config", str(path), "--fast-q-factor", "20"])
        assert seen[0].fast_q_factor == 20.0

    def test_default_fast_q_factor(self, monkeypatch):
        seen = []
        monkeypatch.setattr(demo, "run_demo", lambda config, **kw: seen.append(config))
        main([])
        assert seen[0].fast_q_factor == DEFAULT_FAST_Q_FACTOR

    def test_main_rejects_bad_config(self):
        with pytest.raises(SystemExit):
            main(["--q", "-1"])
