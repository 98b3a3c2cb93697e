#!/usr/bin/env python
# -*- coding: utf-8 -*-
from pathlib import Path
from typing import Protocol, runtime_checkable

import numpy as np
import pandas as pd
import xarray as xr
from rich.console import Console

from .util import df_to_table

console = Console()

ARTIFACT_VERSION = "0.1.0"


@runtime_checkable
class SampledModel(Protocol):
    """
    Anything that can be sliced and drawn: a fixed number of input dimensions,
    the raw samples it was conditioned on and a mean/variance estimator.
    """
    def dims(self) -> int: ...

    def raw_data(self) -> tuple[np.ndarray, np.ndarray]: ...

    def estimate(self, x: np.ndarray) -> tuple[float, float]: ...


def kernel_diag_m52(XA: np.ndarray, eta: float) -> np.ndarray:
    return np.full(XA.shape[0], eta ** 2, dtype=float)


def kernel_m52_ard(XA: np.ndarray, XB: np.ndarray, ls: np.ndarray, eta: float) -> np.ndarray:
    XA = np.asarray(XA, float)
    XB = np.asarray(XB, float)
    ls = np.asarray(ls, float).reshape(1, 1, -1)
    diff = (XA[:, None, :] - XB[None, :, :]) / ls
    r2 = np.sum(diff * diff, axis=2)
    r = np.sqrt(np.maximum(r2, 0.0))
    sqrt5_r = np.sqrt(5.0) * r
    k = (eta ** 2) * (1.0 + sqrt5_r + (5.0 / 3.0) * r2) * np.exp(-sqrt5_r)
    return k


def add_jitter(K: np.ndarray, eps: float = 1e-8) -> np.ndarray:
    jitter = eps * float(np.mean(np.diag(K)) + 1.0)
    return K + jitter * np.eye(K.shape[0], dtype=K.dtype)


def solve_chol(L: np.ndarray, b: np.ndarray) -> np.ndarray:
    y = np.linalg.solve(L, b)
    return np.linalg.solve(L.T, y)


def solve_lower(L: np.ndarray, B: np.ndarray) -> np.ndarray:
    return np.linalg.solve(L, B)


class GP:
    """
    Gaussian process with a Matérn 5/2 ARD kernel, constant mean and Gaussian noise.

    Hyperparameters are fixed at construction; samples can be added one at a time.
    The Cholesky factor is rebuilt lazily on the first estimate after an ``add``.
    """
    def __init__(self, ell, eta: float = 1.0, sigma: float = 1e-3, mean_const: float = 0.0, feature_names=None):
        self.ell = np.atleast_1d(np.asarray(ell, float))    # (p,)
        if np.any(self.ell <= 0):
            raise ValueError("Lengthscales must be positive.")
        self.eta = float(eta)
        self.sigma = float(sigma)
        self.mean_const = float(mean_const)
        p = self.ell.size
        self.feature_names = [str(n) for n in feature_names] if feature_names is not None else [f"x{j}" for j in range(p)]
        if len(self.feature_names) != p:
            raise ValueError(f"Got {len(self.feature_names)} feature names for {p} dimensions.")
        self._X: list[np.ndarray] = []
        self._y: list[float] = []
        self._L = None
        self._alpha = None

    def dims(self) -> int:
        return self.ell.size

    def __len__(self) -> int:
        return len(self._y)

    def add(self, x, y: float) -> None:
        x = np.asarray(x, float).ravel()
        if x.size != self.dims():
            raise ValueError(f"Sample has {x.size} dimensions; model has {self.dims()}.")
        self._X.append(x)
        self._y.append(float(y))
        self._L = None
        self._alpha = None

    def raw_data(self) -> tuple[np.ndarray, np.ndarray]:
        if not self._y:
            return np.empty((0, self.dims())), np.empty(0)
        return np.vstack(self._X), np.asarray(self._y, float)

    def _factorize(self):
        X, y = self.raw_data()
        K = kernel_m52_ard(X, X, self.ell, self.eta)
        K[np.diag_indices_from(K)] += self.sigma ** 2
        self._L = np.linalg.cholesky(add_jitter(K))
        self._alpha = solve_chol(self._L, y - self.mean_const)

    def estimate(self, x) -> tuple[float, float]:
        """ Posterior mean and variance (observation noise included) at x. """
        if not self._y:
            raise RuntimeError("Cannot estimate: the Gaussian process has no samples.")
        x = np.asarray(x, float).reshape(1, -1)
        if x.shape[1] != self.dims():
            raise ValueError(f"Query has {x.shape[1]} dimensions; model has {self.dims()}.")
        if self._L is None:
            self._factorize()

        X, _ = self.raw_data()
        Ks = kernel_m52_ard(x, X, self.ell, self.eta)        # (1, N)
        mean = self.mean_const + float((Ks @ self._alpha)[0])
        v = solve_lower(self._L, Ks.T)                       # (N, 1)
        variance = float(kernel_diag_m52(x, self.eta)[0] - np.sum(v * v)) + self.sigma ** 2
        return mean, variance

    def to_dataset(self, target: str = "y") -> xr.Dataset:
        X, y = self.raw_data()
        return xr.Dataset(
            data_vars={
                "X_train": (("row", "feature"), X),
                "y_train": (("row",), y),
                "ell": (("feature",), self.ell),
            },
            coords={
                "feature": np.array(self.feature_names, dtype="U"),
            },
            attrs={
                "artifact_version": ARTIFACT_VERSION,
                "target": target,
                "eta": self.eta,
                "sigma": self.sigma,
                "mean_const": self.mean_const,
                "numpy_version": np.__version__,
            },
        )

    @classmethod
    def from_dataset(cls, ds: xr.Dataset) -> "GP":
        for name in ("X_train", "y_train", "ell"):
            if name not in ds:
                raise ValueError(f"Model artifact is missing '{name}'.")
        gp = cls(
            ell=ds["ell"].values.astype(float),
            eta=float(ds.attrs.get("eta", 1.0)),
            sigma=float(ds.attrs.get("sigma", 1e-3)),
            mean_const=float(ds.attrs.get("mean_const", 0.0)),
            feature_names=[str(f) for f in ds["feature"].values.tolist()],
        )
        X = ds["X_train"].values.astype(float)
        y = ds["y_train"].values.astype(float)
        for x_row, y_row in zip(X, y):
            gp.add(x_row, y_row)
        return gp


def build_model(
    input: pd.DataFrame | Path | str,
    target: str,
    output: Path | str | None = None,
    exclude: list[str] | str | None = None,
    sigma: float = 1e-3,
    compress: bool = True,
    quiet: bool = False,
) -> GP:
    """
    Condition a GP on the rows of a CSV (or DataFrame) and optionally save it as NetCDF.

    Every numeric column other than the target and the excluded ones becomes an input
    dimension. Hyperparameters come from the data scale; nothing is optimised.
    """
    if isinstance(input, pd.DataFrame):
        df = input
    else:
        input_path = Path(input)
        if not input_path.exists():
            raise FileNotFoundError(f"Input CSV not found: {input_path.resolve()}")
        df = pd.read_csv(input_path)

    if target not in df.columns:
        raise ValueError(f"Target column '{target}' not found in CSV.")

    exclude = [exclude] if isinstance(exclude, str) else (exclude or [])
    excluded = set(exclude) | {target}
    feature_names = [
        c for c in df.columns
        if c not in excluded and pd.api.types.is_numeric_dtype(df[c])
    ]
    if not feature_names:
        raise ValueError("No numeric feature columns found.")

    df = df.loc[~df[target].isna()]
    if df.empty:
        raise RuntimeError("No rows with a target value.")

    X = df[feature_names].to_numpy(dtype=float)
    y = df[target].to_numpy(dtype=float)

    ell = X.std(axis=0)
    ell = np.where(ell > 0.0, ell, 1.0)
    eta = float(y.std()) or 1.0

    gp = GP(ell=ell, eta=eta, sigma=sigma, mean_const=float(y.mean()), feature_names=feature_names)
    for x_row, y_row in zip(X, y):
        gp.add(x_row, y_row)

    if output:
        save_model(gp, output, target=target, compress=compress)

    if not quiet:
        console.print(df_to_table(describe_model(gp), title="Model dimensions", index_name="dimension"))

    return gp


def save_model(gp: GP, output: Path | str, target: str = "y", compress: bool = True) -> Path:
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    ds = gp.to_dataset(target=target)
    engine, encoding = _select_netcdf_engine_and_encoding(ds, compress=compress)
    ds.to_netcdf(output, engine=engine, encoding=encoding)
    return output


def load_model(model: xr.Dataset | Path | str) -> GP:
    if isinstance(model, GP):
        return model
    if isinstance(model, xr.Dataset):
        return GP.from_dataset(model)
    path = Path(model)
    if not path.exists():
        raise FileNotFoundError(f"Model artifact not found: {path.resolve()}")
    return GP.from_dataset(xr.load_dataset(path))


def describe_model(model: SampledModel) -> pd.DataFrame:
    """ Observed range per input dimension. """
    X, y = model.raw_data()
    names = getattr(model, "feature_names", None) or [f"x{j}" for j in range(model.dims())]
    empty = X.shape[0] == 0
    return pd.DataFrame({
        "feature": names,
        "min": np.full(model.dims(), np.nan) if empty else X.min(axis=0),
        "max": np.full(model.dims(), np.nan) if empty else X.max(axis=0),
        "samples": np.full(model.dims(), X.shape[0], dtype=int),
    })


# ---- choose engine + encoding safely across backends ----
def _select_netcdf_engine_and_encoding(ds: xr.Dataset, compress: bool):
    # Prefer netcdf4
    try:
        import netCDF4  # noqa: F401
        engine = "netcdf4"
        if not compress:
            return engine, None
        enc = {}
        for name, da in ds.data_vars.items():
            if np.issubdtype(da.dtype, np.number):
                enc[name] = {"zlib": True, "complevel": 4}
        return engine, enc
    except ImportError:
        pass

    # Then h5netcdf
    try:
        import h5netcdf  # noqa: F401
        engine = "h5netcdf"
        if not compress:
            return engine, None
        enc = {}
        for name, da in ds.data_vars.items():
            if np.issubdtype(da.dtype, np.number):
                enc[name] = {"compression": "gzip", "compression_opts": 4}
        return engine, enc
    except ImportError:
        pass

    # Finally scipy (no compression supported)
    engine = "scipy"
    return engine, None
