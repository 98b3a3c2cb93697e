from pathlib import Path

import io

import numpy as np
import pandas as pd
import pytest
import xarray as xr

from gpslice import GP, SampledModel, build_model, load_model, render_dimension
from gpslice.model import describe_model

TEST_DATA_DIR = Path(__file__).parent / "test-data"
TEST_CSV = TEST_DATA_DIR / "samples.csv"


def test_build_model(tmpdir):
    output = tmpdir/"output.nc"
    gp = build_model(
        TEST_CSV,
        target="y",
        output=output,
        exclude="trial_id",
    )
    assert output.exists()
    assert isinstance(gp, SampledModel)
    assert gp.dims() == 2
    assert gp.feature_names == ["a", "b"]

    # the row without a target is dropped
    X, y = gp.raw_data()
    assert X.shape == (9, 2)
    assert y.shape == (9,)


def test_load_model_roundtrip(tmpdir):
    output = tmpdir/"output.nc"
    gp = build_model(TEST_CSV, target="y", output=output, exclude=["trial_id"], quiet=True)
    loaded = load_model(Path(output))
    assert loaded.feature_names == gp.feature_names
    np.testing.assert_allclose(loaded.ell, gp.ell)
    assert loaded.eta == pytest.approx(gp.eta)
    X, y = loaded.raw_data()
    X0, y0 = gp.raw_data()
    np.testing.assert_allclose(X, X0)
    np.testing.assert_allclose(y, y0)

    x = np.array([0.3, 0.7])
    assert loaded.estimate(x) == pytest.approx(gp.estimate(x))


def test_estimate_interpolates_samples():
    x = np.linspace(0, 2.0, 20)
    df = pd.DataFrame({"x": x, "y": (x - 0.5)**2})
    gp = build_model(df, target="y", quiet=True)

    for xi, yi in zip(x, df["y"]):
        mean, variance = gp.estimate([xi])
        assert mean == pytest.approx(yi, abs=1e-3)
        assert variance < 1e-3

    # far from the data the variance grows back towards eta^2
    _, far_variance = gp.estimate([50.0])
    assert far_variance == pytest.approx(gp.eta**2 + gp.sigma**2, rel=1e-6)


def test_add_invalidates_factorization():
    gp = GP(ell=[1.0], eta=1.0, sigma=1e-3)
    gp.add([0.0], 1.0)
    mean_before, _ = gp.estimate([1.0])
    gp.add([1.0], 5.0)
    mean_after, _ = gp.estimate([1.0])
    assert len(gp) == 2
    assert mean_after == pytest.approx(5.0, abs=1e-3)
    assert mean_before != pytest.approx(mean_after)


def test_estimate_errors():
    gp = GP(ell=[1.0, 1.0])
    with pytest.raises(RuntimeError):
        gp.estimate([0.0, 0.0])
    gp.add([0.0, 0.0], 1.0)
    with pytest.raises(ValueError):
        gp.estimate([0.0])
    with pytest.raises(ValueError):
        gp.add([0.0, 0.0, 0.0], 1.0)
    with pytest.raises(ValueError):
        GP(ell=[0.0])


def test_empty_gp_raw_data():
    gp = GP(ell=[1.0, 2.0, 3.0])
    X, y = gp.raw_data()
    assert X.shape == (0, 3)
    assert y.shape == (0,)
    assert describe_model(gp)["samples"].tolist() == [0, 0, 0]


def test_build_model_errors(tmpdir):
    with pytest.raises(FileNotFoundError):
        build_model(tmpdir/"missing.csv", target="y")
    with pytest.raises(ValueError):
        build_model(TEST_CSV, target="loss")
    with pytest.raises(ValueError):
        build_model(pd.DataFrame({"label": ["a", "b"], "y": [1.0, 2.0]}), target="y")


def test_from_dataset():
    gp = GP(ell=[0.5, 2.0], eta=1.5, feature_names=["p", "q"])
    gp.add([0.0, 1.0], 0.0)
    gp.add([1.0, 0.0], 1.0)
    ds = gp.to_dataset(target="score")
    assert isinstance(ds, xr.Dataset)
    assert ds.attrs["target"] == "score"
    loaded = load_model(ds)
    assert loaded.feature_names == ["p", "q"]
    assert loaded.eta == 1.5


def test_render_real_gp():
    x = np.linspace(0, 2.0, 10)
    df = pd.DataFrame({"x": x, "z": np.sin(x), "y": np.cos(x)})
    gp = build_model(df, target="y", quiet=True)

    class NullSink:
        def render(self, chart, stream, image_format="svg"):
            stream.write(b"ok")

    chart = render_dimension(gp, io.BytesIO(), 1, sink=NullSink(), steps=32)
    upper = chart["+σ = 1"].y
    lower = chart["-σ = 1"].y
    assert np.all(upper >= lower)
    assert chart.title == "Gaussian Process: Dimension 1/2"
