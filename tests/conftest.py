# tests/conftest.py
"""
Shared pytest fixtures for the SWNE test suite.

Everything is seeded explicitly (no process-wide random state) and plots
render headless.
"""

from __future__ import annotations

import os

os.environ.setdefault("MPLBACKEND", "Agg")

import numpy as np
import pandas as pd
import pytest
from scipy.spatial import ConvexHull

from swne import calc_snn


def inside_hull(points: np.ndarray, vertices: np.ndarray, tol: float = 1e-9) -> bool:
    hull = ConvexHull(np.asarray(vertices, dtype=float))
    eq = hull.equations
    return bool(np.all(np.asarray(points) @ eq[:, :2].T + eq[:, 2] <= tol))


@pytest.fixture
def in_hull():
    return inside_hull


@pytest.fixture
def square_anchors() -> pd.DataFrame:
    return pd.DataFrame(
        [[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]],
        index=["factor_1", "factor_2", "factor_3", "factor_4"],
        columns=["x", "y"],
    )


@pytest.fixture
def scores() -> pd.DataFrame:
    """5 factors x 60 samples; every sample has one dominant factor."""
    rng = np.random.RandomState(0)
    k, n = 5, 60
    H = rng.gamma(0.5, 1.0, size=(k, n))
    H[np.arange(n) % k, np.arange(n)] += 3.0
    return pd.DataFrame(
        H,
        index=[f"factor_{i + 1}" for i in range(k)],
        columns=[f"cell_{j}" for j in range(n)],
    )


@pytest.fixture
def snn(scores):
    return calc_snn(scores.T.values, k=8, prune=0.0)


@pytest.fixture
def toy_data() -> pd.DataFrame:
    """80 samples x 40 features drawn from a rank-4 nonnegative model."""
    rng = np.random.RandomState(1)
    n, m, k = 80, 40, 4
    W = rng.gamma(0.6, 1.0, size=(m, k))
    H = rng.gamma(0.6, 1.0, size=(k, n))
    X = (W @ H).T + rng.uniform(0.0, 0.05, size=(n, m))
    return pd.DataFrame(
        X,
        index=[f"s{i}" for i in range(n)],
        columns=[f"g{j}" for j in range(m)],
    )
