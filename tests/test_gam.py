from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import yaml
from sklearn.base import clone

from src.model.gam import GamRegressor


@pytest.fixture
def curved_data():
    rng = np.random.default_rng(11)
    n = 200
    X = pd.DataFrame({
        "x1": rng.uniform(-2, 2, n),
        "x2": rng.uniform(-2, 2, n),
        "mode": rng.integers(0, 2, n),
    })
    y = 3.0 * X["x1"] ** 2 + 0.1 * X["x2"] + 2.0 * X["mode"] + rng.normal(0, 0.2, n)
    return X, y


def test_gam_fits_quadratic_signal(curved_data):
    X, y = curved_data
    gam = GamRegressor(linear_terms=["mode"], penalty_multiplier=0.0001).fit(X, y)
    pred = gam.predict(X)
    assert pred.shape == (len(y),)
    # noise sd is 0.2
    assert np.mean(np.abs(pred - y)) < 0.4
    assert gam.smooth_columns_ == ["x1", "x2"]
    assert gam.linear_columns_ == ["mode"]


def test_gam_two_coefficients_per_smooth(curved_data):
    X, y = curved_data
    gam = GamRegressor(linear_terms=["mode"], smooth_df=2).fit(X, y)
    # const + mode + 2 smooths * 2 coefficients
    assert len(gam.results_.params) == 2 + 2 * 2


def test_gam_term_importance_ranks_curved_term_first(curved_data):
    X, y = curved_data
    gam = GamRegressor(linear_terms=["mode"], penalty_multiplier=0.0001).fit(X, y)
    importance = gam.term_importance(X)
    assert importance.index[0] == "x1"
    assert importance["x1"] > importance["x2"]
    assert importance["mode"] == pytest.approx(2.0, abs=0.3)


def test_gam_predict_clips_outside_training_range(curved_data):
    X, y = curved_data
    gam = GamRegressor(linear_terms=["mode"]).fit(X, y)
    far = pd.DataFrame({"x1": [10.0, -10.0], "x2": [0.0, 0.0], "mode": [0, 0]})
    edge = far.assign(x1=[X["x1"].max(), X["x1"].min()])
    np.testing.assert_allclose(gam.predict(far), gam.predict(edge))


def test_gam_heavier_penalty_is_flatter(curved_data):
    X, y = curved_data
    wiggly = GamRegressor(linear_terms=["mode"], penalty_multiplier=0.0).fit(X, y)
    smooth = GamRegressor(linear_terms=["mode"], penalty_multiplier=1000.0).fit(X, y)
    assert smooth.term_importance(X)["x1"] < wiggly.term_importance(X)["x1"]


def test_gam_needs_a_smooth_column():
    X = pd.DataFrame({"mode": [0, 1, 0, 1]})
    with pytest.raises(ValueError, match="smooth terms"):
        GamRegressor(linear_terms=["mode"]).fit(X, [1.0, 2.0, 1.0, 2.0])


def test_gam_is_clonable():
    gam = GamRegressor(linear_terms=["mode"], penalty_multiplier=5.0)
    cloned = clone(gam)
    assert cloned.get_params() == gam.get_params()


def test_gam_effective_df_spans_configured_grid(curved_data):
    with open(Path(__file__).resolve().parents[1] / "config.yaml") as f:
        grid = yaml.safe_load(f)["model"]["gam"]["multiplier_grid"]
    X, y = curved_data
    loosest = GamRegressor(linear_terms=["mode"], penalty_multiplier=min(grid)).fit(X, y)
    tightest = GamRegressor(linear_terms=["mode"], penalty_multiplier=max(grid)).fit(X, y)

    assert loosest.smooth_effective_df()["x1"] > 1.8
    assert tightest.smooth_effective_df()["x1"] < 1.1
    assert list(loosest.smooth_effective_df().index) == ["x1", "x2"]


def test_gam_unpenalized_beats_near_linear_fit(curved_data):
    X, y = curved_data
    free = GamRegressor(linear_terms=["mode"], penalty_multiplier=0.0).fit(X, y)
    stiff = GamRegressor(linear_terms=["mode"], penalty_multiplier=1.0).fit(X, y)
    free_mae = np.mean(np.abs(free.predict(X) - y))
    stiff_mae = np.mean(np.abs(stiff.predict(X) - y))
    assert free_mae < 0.4
    assert stiff_mae > 2 * free_mae
