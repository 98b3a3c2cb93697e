# -*- coding: utf-8 -*-
from dataclasses import dataclass

import numpy as np

# default chart width in pixels; one grid point per pixel column
DEFAULT_STEPS = 1024


class DimensionOutOfRangeError(IndexError):
    """ Raised when a slice is requested for a dimension the model does not have. """
    def __init__(self, dim: int, dims: int):
        self.dim = dim
        self.dims = dims
        super().__init__(f"requested graph of dimension {dim}; only {dims} dimensions")


def check_dimension(dim: int, dims: int) -> None:
    if dim < 0 or dim >= dims:
        raise DimensionOutOfRangeError(dim, dims)


@dataclass
class SliceGrid:
    """
    Everything needed to draw one dimension of a model.

    Arrays of length ``steps`` stay zero past ``covered``: the scan stops as soon
    as no bracketing pair of samples remains, recording only the x where it stopped.
    """
    dim: int
    known_x: np.ndarray     # (N,) sorted by dim
    known_y: np.ndarray     # (N,)
    grid_x: np.ndarray      # (steps,)
    queries: np.ndarray     # (steps, D)
    fractions: np.ndarray   # (steps,) interpolation fraction t
    brackets: np.ndarray    # (steps, 2) indices into the sorted samples, -1 when unfilled
    covered: int

    @property
    def steps(self) -> int:
        return len(self.grid_x)


def sort_samples(inputs: np.ndarray, outputs: np.ndarray, dim: int) -> tuple[np.ndarray, np.ndarray]:
    """Order samples by coordinate ``dim``. Equal coordinates keep their insertion order."""
    order = np.argsort(inputs[:, dim], kind="stable")
    return inputs[order], outputs[order]


def grid_values(lo: float, hi: float, steps: int) -> np.ndarray:
    """``steps`` evenly spaced values; the first is exactly ``lo`` and the last exactly ``hi``."""
    return np.linspace(lo, hi, steps)


def _bracket(known_x: np.ndarray, start: int, xi: float) -> int | None:
    """
    Move forward from ``start`` to the first adjacent pair whose upper sample reaches ``xi``.
    Returns the lower index, or None once fewer than two samples remain.
    """
    i = start
    while i + 1 < len(known_x):
        if not known_x[i + 1] < xi:
            return i
        i += 1
    return None


def interpolation_fraction(xi: float, lo: float, hi: float) -> float:
    width = hi - lo
    if width == 0:
        # both samples sit on xi
        return 0.0
    return (xi - lo) / width


def build_grid(
    inputs,
    outputs,
    dim: int,
    steps: int = DEFAULT_STEPS,
    dims: int | None = None,
) -> SliceGrid:
    """
    Build the dense evaluation grid for one input dimension.

    Samples are sorted by their ``dim`` coordinate and a single forward pass over
    them brackets every grid value. Each query vector blends the full input vectors
    of the bracketing pair, so the off-target coordinates are interpolated too.
    """
    inputs = np.asarray(inputs, dtype=float)
    outputs = np.asarray(outputs, dtype=float).ravel()
    if inputs.size == 0 and inputs.ndim != 2:
        inputs = np.empty((0, dims or 0))
    dims = inputs.shape[1] if dims is None else int(dims)
    check_dimension(dim, dims)
    if steps < 1:
        raise ValueError(f"steps must be positive, not {steps}")
    if len(inputs) != len(outputs):
        raise ValueError(f"Got {len(inputs)} inputs but {len(outputs)} outputs.")

    samples, known_y = sort_samples(inputs, outputs, dim)
    known_x = samples[:, dim].copy()

    lo = float(known_x.min()) if known_x.size else 0.0
    hi = float(known_x.max()) if known_x.size else 0.0
    candidates = grid_values(lo, hi, steps)

    grid_x = np.zeros(steps, dtype=float)
    queries = np.zeros((steps, dims), dtype=float)
    fractions = np.zeros(steps, dtype=float)
    brackets = np.full((steps, 2), -1, dtype=int)

    covered = 0
    pair_i = 0
    for j in range(steps):
        xi = float(candidates[j])
        grid_x[j] = xi

        found = _bracket(known_x, pair_i, xi)
        if found is None:
            break
        pair_i = found

        lower, upper = samples[pair_i], samples[pair_i + 1]
        t = interpolation_fraction(xi, known_x[pair_i], known_x[pair_i + 1])
        queries[j] = (1.0 - t) * lower + t * upper
        fractions[j] = t
        brackets[j] = (pair_i, pair_i + 1)
        covered = j + 1

    return SliceGrid(
        dim=dim,
        known_x=known_x,
        known_y=known_y,
        grid_x=grid_x,
        queries=queries,
        fractions=fractions,
        brackets=brackets,
        covered=covered,
    )
