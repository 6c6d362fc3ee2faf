"""
SWNE v0.3.0 --- Similarity-Weighted Nonnegative Embedding
=========================================================

Shared 2D layout of NMF factors, samples and selected features.

Key Idea:
- Factors are placed as fixed anchors so that dissimilar factors sit far apart
- Samples (and features) are pulled toward the anchors they load onto
- Samples are then smoothed toward their neighbours in a shared nearest
  neighbour (SNN) graph, so the layout keeps both global and local structure

Out-of-sample data can be projected onto an existing layout: new samples are
pulled toward the fixed anchors and smoothed toward the finalized positions of
their training-set neighbours. The training layout never moves.

Sections:
  [A] Exceptions & Globals
  [B] Thread Control
  [C] Helpers (validation, sparse/dense math)
  [D] Factor Dissimilarity & Anchor Layout
  [E] Weighted Pull
  [F] Graph Smoothing
  [G] Embedding Assembly
  [H] Out-of-Sample Projection
  [I] Factorization & Graph Adapters
  [J] SWNE API
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields as dc_fields, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import warnings
import numpy as np
import pandas as pd
import scipy.sparse as sp
from scipy.optimize import nnls
from scipy.spatial.distance import cdist
from sklearn.decomposition import NMF, PCA
from sklearn.exceptions import ConvergenceWarning
from sklearn.manifold import smacof
from sklearn.metrics.pairwise import cosine_distances
from sklearn.neighbors import NearestNeighbors
from threadpoolctl import threadpool_limits
from joblib import Parallel, delayed, effective_n_jobs
from numba import jit

ArrayLike = Union[np.ndarray, pd.DataFrame]
GraphLike = Union[np.ndarray, pd.DataFrame, "sp.spmatrix"]


# ============================================================
# [A] Exceptions & Globals
# ============================================================
class SWNEError(Exception):
    pass


class ConfigurationError(SWNEError, ValueError):
    pass


class IsolatedSampleError(ConfigurationError):
    """
    Raised when projected samples have no edges into the training graph.

    The factor-pull-only positions of the offending samples are attached as
    ``coords`` so the caller can still use them.
    """

    def __init__(self, message: str, samples: List, coords: pd.DataFrame):
        super().__init__(message)
        self.samples = samples
        self.coords = coords


class DegenerateInputWarning(UserWarning):
    pass


COORD_COLUMNS = ["x", "y"]
DISTANCE_MODES = ("ic", "cosine", "pearson")
LAYOUT_METHODS = ("sammon", "mds", "pca")
NMF_LOSSES = ("mse", "kl")
NMF_INITS = ("random", "nnsvd")
MIN_FACTORS = 3


# ============================================================
# [B] Thread Control
# ============================================================
class _ThreadControl:
    def __init__(self, deterministic: bool = True):
        self.deterministic = deterministic
        self._ctx = None
        self.effective_limit = None

    def __enter__(self):
        if self.deterministic:
            self._ctx = threadpool_limits(limits=1)
            self.effective_limit = 1
        else:
            self._ctx = threadpool_limits(limits=None)
            self.effective_limit = None
        self._ctx.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._ctx is not None:
            self._ctx.__exit__(exc_type, exc, tb)


# ============================================================
# [C] Helpers (validation, sparse/dense math)
# ============================================================
def _factor_names(k: int) -> List[str]:
    return [f"factor_{i + 1}" for i in range(k)]


def _empty_coords() -> pd.DataFrame:
    return pd.DataFrame(np.zeros((0, 2)), columns=COORD_COLUMNS)


def _coords_frame(coords: np.ndarray, index: Iterable) -> pd.DataFrame:
    return pd.DataFrame(np.asarray(coords, dtype=np.float64), index=pd.Index(index), columns=COORD_COLUMNS)


def _as_float(values, what: str):
    """float64 copy of an array or DataFrame; non-numeric input is a ConfigurationError."""
    try:
        if isinstance(values, pd.DataFrame):
            return values.astype(np.float64)
        return np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{what} must be numeric: {exc}") from exc


def _check_nonnegative_finite(values: np.ndarray, what: str) -> None:
    if not np.all(np.isfinite(values)):
        raise ConfigurationError(f"{what} contains NaN or infinite values.")
    if values.size and values.min() < 0:
        raise ConfigurationError(f"{what} must be nonnegative (min={values.min():.4g}).")


def _as_score_frame(scores: ArrayLike) -> pd.DataFrame:
    """Factor-score matrix as a (k factors x n samples) float64 frame."""
    if isinstance(scores, pd.DataFrame):
        H = _as_float(scores, "Factor scores")
    else:
        arr = _as_float(scores, "Factor scores")
        if arr.ndim != 2:
            raise ConfigurationError(f"Factor scores must be 2D (k x n), got shape {arr.shape}.")
        H = pd.DataFrame(arr, index=_factor_names(arr.shape[0]))
    if H.ndim != 2 or H.shape[0] == 0 or H.shape[1] == 0:
        raise ConfigurationError(f"Factor scores must be a non-empty (k x n) matrix, got shape {H.shape}.")
    if H.columns.has_duplicates or H.index.has_duplicates:
        raise ConfigurationError("Factor and sample identifiers must be unique.")
    _check_nonnegative_finite(H.values, "Factor scores")
    return H


def _as_loading_frame(loadings: ArrayLike, factor_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Feature-loading matrix as an (m features x k factors) float64 frame.

    When ``factor_names`` is given the columns are aligned to it: by name if
    the frame carries the same factor names, by position otherwise.
    """
    if isinstance(loadings, pd.DataFrame):
        W = _as_float(loadings, "Feature loadings")
    else:
        arr = _as_float(loadings, "Feature loadings")
        if arr.ndim != 2:
            raise ConfigurationError(f"Feature loadings must be 2D (m x k), got shape {arr.shape}.")
        W = pd.DataFrame(arr, columns=_factor_names(arr.shape[1]))
    if W.index.has_duplicates:
        raise ConfigurationError("Feature identifiers must be unique.")
    _check_nonnegative_finite(W.values, "Feature loadings")

    if factor_names is not None:
        factor_names = list(factor_names)
        if W.shape[1] != len(factor_names):
            raise ConfigurationError(
                f"Feature loadings have {W.shape[1]} factors but the embedding has {len(factor_names)}."
            )
        if set(W.columns) == set(factor_names):
            W = W[factor_names]
        else:
            W = W.set_axis(factor_names, axis=1)
    return W


def _as_graph(
    graph: GraphLike,
    row_ids: pd.Index,
    col_ids: pd.Index,
    drop_diagonal: bool,
) -> "sp.csr_matrix":
    """Validate a similarity graph and return it as a float64 CSR matrix."""
    if isinstance(graph, pd.DataFrame):
        if set(graph.index) != set(row_ids) or set(graph.columns) != set(col_ids):
            raise ConfigurationError(
                "Similarity graph identifiers do not match the sample identifiers."
            )
        G = sp.csr_matrix(_as_float(graph.loc[row_ids, col_ids], "Similarity graph").to_numpy())
    elif sp.issparse(graph):
        G = sp.csr_matrix(graph, dtype=np.float64, copy=True)
    else:
        arr = _as_float(graph, "Similarity graph")
        if arr.ndim != 2:
            raise ConfigurationError(f"Similarity graph must be 2D, got shape {arr.shape}.")
        G = sp.csr_matrix(arr)

    expected = (len(row_ids), len(col_ids))
    if G.shape != expected:
        raise ConfigurationError(f"Similarity graph has shape {G.shape}, expected {expected}.")
    _check_nonnegative_finite(G.data, "Similarity graph")

    if drop_diagonal:
        G = sp.csr_matrix(G - sp.diags(G.diagonal(), format="csr"))
    G.eliminate_zeros()
    return G


def _resolve_n_pull(n_pull: Optional[int], k: int) -> int:
    if n_pull is None:
        n_pull = k
    if isinstance(n_pull, bool) or not isinstance(n_pull, (int, np.integer)):
        raise ConfigurationError(f"n_pull must be an integer, got {n_pull!r}.")
    n_pull = int(n_pull)
    if n_pull < MIN_FACTORS or n_pull > k:
        raise ConfigurationError(
            f"n_pull must satisfy {MIN_FACTORS} <= n_pull <= k (k={k}), got {n_pull}."
        )
    return n_pull


def _check_exponent(name: str, value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}.")
    if not np.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive finite number, got {value}.")
    return value


def _check_choice(name: str, value: str, choices: Sequence[str]) -> str:
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {tuple(choices)}, got '{value}'.")
    return value


# ============================================================
# [D] Factor Dissimilarity & Anchor Layout
# ============================================================
@jit(nopython=True, cache=True)
def _pairwise_mutual_info_jit(codes: np.ndarray, n_bins: int) -> np.ndarray:
    """
    JIT-compiled pairwise mutual information between binned factor rows.

    ``codes`` holds the bin index of every (factor, sample) entry.
    """
    k = codes.shape[0]
    n = codes.shape[1]

    marg = np.zeros((k, n_bins), dtype=np.float64)
    for a in range(k):
        for t in range(n):
            marg[a, codes[a, t]] += 1.0
    marg /= n

    mi = np.zeros((k, k), dtype=np.float64)
    joint = np.zeros((n_bins, n_bins), dtype=np.float64)
    for a in range(k):
        for b in range(a + 1, k):
            joint[:, :] = 0.0
            for t in range(n):
                joint[codes[a, t], codes[b, t]] += 1.0

            total = 0.0
            for u in range(n_bins):
                for v in range(n_bins):
                    if joint[u, v] > 0.0:
                        p = joint[u, v] / n
                        total += p * np.log(p / (marg[a, u] * marg[b, v]))
            mi[a, b] = total
            mi[b, a] = total
    return mi


def _bin_codes(H: np.ndarray, n_bins: int) -> np.ndarray:
    codes = np.zeros(H.shape, dtype=np.int64)
    for a in range(H.shape[0]):
        lo, hi = H[a].min(), H[a].max()
        if hi > lo:
            edges = np.linspace(lo, hi, n_bins + 1)
            codes[a] = np.clip(np.searchsorted(edges, H[a], side="right") - 1, 0, n_bins - 1)
    return codes


def _pearson(H: np.ndarray) -> np.ndarray:
    with np.errstate(invalid="ignore", divide="ignore"):
        r = np.corrcoef(H)
    return np.nan_to_num(np.atleast_2d(r), nan=0.0)


def factor_distances(
    scores: ArrayLike,
    distance: str = "ic",
    n_bins: Optional[int] = None,
) -> pd.DataFrame:
    """
    Pairwise dissimilarity between factors, computed on their score vectors.

    Parameters
    ----------
    scores : (k, n) DataFrame or array
        Factor scores (one row per factor).
    distance : str
        'ic'      : information-coefficient distance. Mutual information is
                    estimated on equal-width bins and converted to
                    IC = sign(r) * sqrt(1 - exp(-2 MI)); distance is
                    sqrt(2 * (1 - IC)).
        'cosine'  : cosine distance between score vectors.
        'pearson' : sqrt(2 * (1 - r)).
    n_bins : int, optional
        Bins per factor for the 'ic' estimate. Defaults to sqrt(n / 2),
        clipped to [3, 20].

    Returns
    -------
    D : (k, k) DataFrame
        Symmetric, nonnegative, zero diagonal.
    """
    _check_choice("distance", distance, DISTANCE_MODES)
    H_df = _as_score_frame(scores)
    H = H_df.values
    k, n = H.shape

    if distance == "cosine":
        D = cosine_distances(H)
    elif distance == "pearson":
        D = np.sqrt(2.0 * np.clip(1.0 - _pearson(H), 0.0, None))
    else:
        if n_bins is None:
            n_bins = int(np.clip(np.sqrt(n / 2.0), 3, 20))
        if n_bins < 2:
            raise ConfigurationError(f"n_bins must be >= 2, got {n_bins}.")
        mi = np.maximum(_pairwise_mutual_info_jit(_bin_codes(H, int(n_bins)), int(n_bins)), 0.0)
        ic = np.sign(_pearson(H)) * np.sqrt(1.0 - np.exp(-2.0 * mi))
        D = np.sqrt(2.0 * np.clip(1.0 - ic, 0.0, None))

    D = np.clip(0.5 * (D + D.T), 0.0, None)
    np.fill_diagonal(D, 0.0)
    return pd.DataFrame(D, index=H_df.index, columns=H_df.index)


def _floor_distances(D: np.ndarray) -> np.ndarray:
    # identical factors still need a positive target distance
    D = D.copy()
    off = ~np.eye(D.shape[0], dtype=bool)
    positive = D[off][D[off] > 0]
    floor = 1e-2 * positive.min() if positive.size else 1.0
    D[off] = np.maximum(D[off], floor)
    return D


def _min_pairwise(Y: np.ndarray) -> float:
    d = cdist(Y, Y)
    np.fill_diagonal(d, np.inf)
    return float(d.min())


def _sammon(
    D: np.ndarray,
    rng: np.random.RandomState,
    max_iter: int = 200,
    tol: float = 1e-9,
    max_halves: int = 20,
) -> np.ndarray:
    """
    Sammon non-linear mapping of a (k, k) dissimilarity matrix into 2D.

    PCA initialisation, diagonal Newton steps with step halving.
    """
    n = D.shape[0]
    off = ~np.eye(n, dtype=bool)
    scale = D[off].sum()
    Dinv = np.zeros_like(D)
    Dinv[off] = 1.0 / D[off]

    Y = PCA(n_components=2, svd_solver="full").fit_transform(D)
    spread = max(1.0, float(np.abs(Y).max()))
    if _min_pairwise(Y) <= 1e-9 * spread:
        Y = Y + rng.normal(scale=1e-3 * spread, size=Y.shape)

    def stress(Y_):
        d_ = cdist(Y_, Y_)
        return float(((D - d_)[off] ** 2 * Dinv[off]).sum() / scale), d_

    E, d = stress(Y)
    ones = np.ones((n, 2))
    for _ in range(max_iter):
        if E <= 0.0:
            break
        dinv = np.zeros_like(d)
        dinv[off] = 1.0 / np.maximum(d[off], 1e-12)
        delta = dinv - Dinv
        deltaone = delta @ ones
        g = delta @ Y - Y * deltaone
        dinv3 = dinv ** 3
        Y2 = Y ** 2
        hess = dinv3 @ Y2 - deltaone - 2.0 * Y * (dinv3 @ Y) + Y2 * (dinv3 @ ones)
        step = -g / np.maximum(np.abs(hess), 1e-12)

        Y_old = Y
        improved = False
        for _ in range(max_halves):
            Y = Y_old + step
            E_new, d_new = stress(Y)
            if E_new < E:
                improved = True
                break
            step = 0.5 * step
        if not improved:
            Y = Y_old
            break

        d = d_new
        converged = abs(E - E_new) / E < tol
        E = E_new
        if converged:
            break
    return Y


def _rescale_unit(coords: np.ndarray) -> np.ndarray:
    # one scale factor for both axes keeps the layout's shape
    coords = coords - coords.min(axis=0)
    extent = coords.max()
    if extent > 0:
        coords = coords / extent
    return coords


def _separate_coincident(coords: np.ndarray, rng: np.random.RandomState, tol: float = 1e-9) -> np.ndarray:
    coords = coords.copy()
    moved = False
    for _ in range(100):
        d = cdist(coords, coords)
        i_idx, j_idx = np.where(np.triu(d <= tol, k=1))
        if i_idx.size == 0:
            break
        moved = True
        for j in np.unique(j_idx):
            coords[j] = np.clip(coords[j] + rng.uniform(-1e-2, 1e-2, size=2), 0.0, 1.0)
    if moved:
        warnings.warn(
            "Coincident factor anchors were separated by a small seeded perturbation.",
            DegenerateInputWarning,
            stacklevel=3,
        )
    return coords


def layout_factors(
    scores: ArrayLike,
    distance: str = "ic",
    method: str = "sammon",
    random_state: int = 42,
    n_bins: Optional[int] = None,
    max_iter: int = 200,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Place the k factors at distinct 2D anchor coordinates.

    Dissimilar factors end up far apart, similar ones close together. The
    result is deterministic for a given input and ``random_state``.

    Parameters
    ----------
    scores : (k, n) DataFrame or array
        Factor scores.
    distance : str
        Dissimilarity mode, see ``factor_distances``.
    method : str
        'sammon' (default), 'mds' (SMACOF) or 'pca'.
    random_state : int
        Seed for every stochastic step of the layout.

    Returns
    -------
    anchors : (k, 2) DataFrame
        Columns 'x', 'y' in [0, 1], indexed by factor name.

    Raises
    ------
    ConfigurationError
        If fewer than 3 factors are supplied or an option is unknown.
    """
    _check_choice("method", method, LAYOUT_METHODS)
    H = _as_score_frame(scores)
    k = H.shape[0]
    if k < MIN_FACTORS:
        raise ConfigurationError(f"Anchor layout needs at least {MIN_FACTORS} factors, got {k}.")

    rng = np.random.RandomState(random_state)
    D = _floor_distances(factor_distances(H, distance, n_bins).values)

    if verbose:
        print(f"Laying out {k} factor anchors ({distance} distance, {method})")

    if method == "sammon":
        coords = _sammon(D, rng, max_iter=max_iter)
    elif method == "mds":
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=FutureWarning)
            coords, _ = smacof(
                D, n_components=2, n_init=4, max_iter=max(300, max_iter), random_state=random_state
            )
    else:
        coords = PCA(n_components=2, svd_solver="full").fit_transform(D)

    coords = _separate_coincident(_rescale_unit(np.asarray(coords, dtype=np.float64)), rng)
    return _coords_frame(coords, H.index)


# ============================================================
# [E] Weighted Pull
# ============================================================
def pull_weights(
    loadings: np.ndarray,
    n_pull: int,
    alpha_exp: float = 1.0,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Select the ``n_pull`` top-loading factors of each entity and weight them.

    Ties are broken by factor index (ascending). Selected loadings are raised
    to ``alpha_exp`` and renormalised to sum to 1; an entity whose selected
    loadings are all zero gets uniform weights instead.

    Returns
    -------
    order : (n_entities, n_pull) int array
        Selected factor indices, strongest first.
    weights : (n_entities, n_pull) float array
        Convex-combination weights (each row sums to 1).
    degenerate : (n_entities,) bool array
        Rows that fell back to uniform weights.
    """
    L = np.atleast_2d(np.asarray(loadings, dtype=np.float64))
    order = np.argsort(-L, axis=1, kind="stable")[:, :n_pull]
    powered = np.take_along_axis(L, order, axis=1) ** alpha_exp
    totals = powered.sum(axis=1)

    degenerate = ~(totals > 0)
    weights = np.full(powered.shape, 1.0 / n_pull)
    ok = ~degenerate
    weights[ok] = powered[ok] / totals[ok, None]
    return order, weights, degenerate


def _pull_chunk(L: np.ndarray, anchors: np.ndarray, n_pull: int, alpha_exp: float):
    order, weights, degenerate = pull_weights(L, n_pull, alpha_exp)
    coords = (weights[:, :, None] * anchors[order]).sum(axis=1)
    return coords, degenerate


def pull_coordinates(
    loadings: ArrayLike,
    anchors: ArrayLike,
    n_pull: Optional[int] = None,
    alpha_exp: float = 1.0,
    n_jobs: int = 1,
) -> np.ndarray:
    """
    Provisional 2D position of every entity (sample or feature).

    Parameters
    ----------
    loadings : (n_entities, k) array or DataFrame
        Nonnegative loading of each entity on each factor.
    anchors : (k, 2) array or DataFrame
        Factor anchor coordinates.
    n_pull : int, optional
        Number of top anchors pulling each entity (3 <= n_pull <= k).
        Defaults to k.
    alpha_exp : float
        Sharpness exponent (> 0). 1 is a proportional pull; larger values
        pull entities closer to their dominant factor.
    n_jobs : int
        Worker threads. Output is identical for any value.

    Returns
    -------
    coords : (n_entities, 2) array
    """
    L = _as_float(loadings, "Loadings")
    A = np.asarray(anchors, dtype=np.float64)
    if L.ndim == 1:
        L = L[None, :]
    if A.ndim != 2 or A.shape[1] != 2:
        raise ConfigurationError(f"Anchors must have shape (k, 2), got {A.shape}.")
    if L.ndim != 2 or L.shape[1] != A.shape[0]:
        raise ConfigurationError(
            f"Loadings have shape {L.shape} but there are {A.shape[0]} anchors."
        )
    _check_nonnegative_finite(L, "Loadings")
    n_pull = _resolve_n_pull(n_pull, A.shape[0])
    alpha_exp = _check_exponent("alpha_exp", alpha_exp)

    n = L.shape[0]
    if n == 0:
        return np.zeros((0, 2))

    n_chunks = min(n, effective_n_jobs(n_jobs))
    if n_chunks <= 1:
        coords, degenerate = _pull_chunk(L, A, n_pull, alpha_exp)
    else:
        parts = Parallel(n_jobs=n_jobs, backend="threading")(
            delayed(_pull_chunk)(L[idx], A, n_pull, alpha_exp)
            for idx in np.array_split(np.arange(n), n_chunks)
        )
        coords = np.vstack([c for c, _ in parts])
        degenerate = np.concatenate([d for _, d in parts])

    if degenerate.any():
        warnings.warn(
            f"{int(degenerate.sum())} of {n} entities have all-zero loadings on their "
            f"top {n_pull} factors; using uniform weights.",
            DegenerateInputWarning,
            stacklevel=2,
        )
    return coords


# ============================================================
# [F] Graph Smoothing
# ============================================================
def smoothing_weights(
    graph: GraphLike,
    snn_exp: float = 1.0,
    self_weight: float = 1.0,
) -> Tuple[np.ndarray, "sp.csr_matrix", np.ndarray]:
    """
    Normalised self and neighbour weights for graph smoothing.

    Neighbour weights are ``g_ij ** snn_exp`` and the self weight is
    ``self_weight ** snn_exp``; each row (self + neighbours) is rescaled to
    sum to 1. With SNN overlaps in [0, 1] and ``self_weight=1``, lowering
    ``snn_exp`` lifts the neighbour weights toward the self weight, so
    samples move further toward their neighbours.

    Parameters
    ----------
    graph : (n, n_neighbors) sparse matrix, array or DataFrame
        Row i holds the edge weights of sample i. Diagonal entries of a
        square graph are expected to be removed by the caller.
    snn_exp : float
        Smoothing exponent (> 0).
    self_weight : float
        Base weight of a sample's own position (>= 0).

    Returns
    -------
    w_self : (n,) array
    w_neighbors : (n, n_neighbors) CSR matrix
    isolated : (n,) bool array
        Rows with no edges; their self weight is 1.
    """
    snn_exp = _check_exponent("snn_exp", snn_exp)
    if not np.isfinite(self_weight) or self_weight < 0:
        raise ConfigurationError(f"self_weight must be >= 0, got {self_weight}.")

    if not sp.issparse(graph):
        graph = _as_float(graph, "Similarity graph")
    G = sp.csr_matrix(graph, dtype=np.float64, copy=True)
    G.data = G.data ** snn_exp
    # tiny weights can underflow to 0 once powered
    G.eliminate_zeros()

    n = G.shape[0]
    w_self = np.full(n, float(self_weight) ** snn_exp)
    totals = w_self + np.asarray(G.sum(axis=1)).ravel()
    isolated = G.getnnz(axis=1) == 0

    safe = np.where(totals > 0, totals, 1.0)
    w_neighbors = sp.csr_matrix(sp.diags(1.0 / safe) @ G)
    w_self = w_self / safe
    w_self[isolated] = 1.0
    return w_self, w_neighbors, isolated


def smooth_coordinates(
    provisional: np.ndarray,
    graph: GraphLike,
    snn_exp: float = 1.0,
    neighbor_coords: Optional[np.ndarray] = None,
    self_weight: float = 1.0,
    warn_isolated: bool = True,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Final positions as a convex combination of own and neighbour positions.

    A single pass: neighbours contribute the positions in ``neighbor_coords``
    (the provisional positions themselves when omitted), never positions
    smoothed in the same pass.

    Returns
    -------
    coords : (n, 2) array
    isolated : (n,) bool array
        Samples with no neighbours, left at their provisional position.
    """
    P = np.asarray(provisional, dtype=np.float64)
    N = P if neighbor_coords is None else np.asarray(neighbor_coords, dtype=np.float64)
    w_self, w_neighbors, isolated = smoothing_weights(graph, snn_exp, self_weight)
    if w_neighbors.shape != (P.shape[0], N.shape[0]):
        raise ConfigurationError(
            f"Graph has shape {w_neighbors.shape}, expected {(P.shape[0], N.shape[0])}."
        )

    coords = w_self[:, None] * P + w_neighbors @ N
    coords[isolated] = P[isolated]

    if warn_isolated and isolated.any():
        warnings.warn(
            f"{int(isolated.sum())} samples have no graph neighbours and keep their "
            f"factor-pulled position.",
            DegenerateInputWarning,
            stacklevel=2,
        )
    return coords, isolated


# ============================================================
# [G] Embedding Assembly
# ============================================================
@dataclass(frozen=True, eq=False)
class SWNEEmbedding:
    """
    Factor anchors plus sample and feature coordinates of one SWNE layout.

    Instances are never modified in place: ``with_features`` and
    ``project_swne`` return new objects.
    """

    factor_coords: pd.DataFrame
    sample_coords: pd.DataFrame
    feature_coords: pd.DataFrame = field(default_factory=_empty_coords)
    params: Dict = field(default_factory=dict)

    @property
    def n_factors(self) -> int:
        return int(self.factor_coords.shape[0])

    @property
    def factor_names(self) -> List:
        return list(self.factor_coords.index)

    def with_features(self, feature_coords: pd.DataFrame, **params) -> "SWNEEmbedding":
        return replace(
            self,
            feature_coords=feature_coords.copy(),
            params={**self.params, **params},
        )

    def to_frame(self) -> pd.DataFrame:
        """All coordinates in one long frame with a 'kind' column."""
        parts = []
        for kind, coords in (
            ("factor", self.factor_coords),
            ("sample", self.sample_coords),
            ("feature", self.feature_coords),
        ):
            part = coords.copy()
            part.insert(0, "kind", kind)
            part.index.name = "name"
            parts.append(part.reset_index())
        return pd.concat(parts, ignore_index=True)

    def to_dict(self) -> Dict:
        def pack(coords: pd.DataFrame) -> Dict:
            return {
                "names": coords.index.tolist(),
                "x": coords["x"].tolist(),
                "y": coords["y"].tolist(),
            }

        return {
            "factors": pack(self.factor_coords),
            "samples": pack(self.sample_coords),
            "features": pack(self.feature_coords),
            "params": dict(self.params),
            "version": "0.3",
        }

    @classmethod
    def from_dict(cls, payload: Dict) -> "SWNEEmbedding":
        def unpack(block: Dict) -> pd.DataFrame:
            return _coords_frame(np.column_stack([block["x"], block["y"]]).reshape(-1, 2), block["names"])

        try:
            return cls(
                factor_coords=unpack(payload["factors"]),
                sample_coords=unpack(payload["samples"]),
                feature_coords=unpack(payload.get("features", {"names": [], "x": [], "y": []})),
                params=dict(payload.get("params", {})),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid embedding payload: {e}")


def embed_swne(
    scores: ArrayLike,
    graph: Optional[GraphLike] = None,
    alpha_exp: float = 1.0,
    snn_exp: float = 1.0,
    n_pull: Optional[int] = None,
    distance: str = "ic",
    layout: str = "sammon",
    random_state: int = 42,
    n_jobs: int = 1,
    verbose: bool = False,
) -> SWNEEmbedding:
    """
    Compute a full SWNE embedding from factor scores and a similarity graph.

    Parameters
    ----------
    scores : (k, n) DataFrame or array
        Nonnegative factor scores; column j is sample j.
    graph : (n, n) sparse matrix, array or DataFrame, optional
        Sample similarity graph (e.g. SNN). Diagonal entries are ignored.
        When omitted, samples keep their factor-pulled positions.
    alpha_exp : float
        Pull sharpness exponent (> 0).
    snn_exp : float
        Smoothing exponent (> 0); lower values smooth more.
    n_pull : int, optional
        Anchors pulling each sample, 3 <= n_pull <= k. Defaults to k.
    distance : str
        Factor dissimilarity: 'ic', 'cosine' or 'pearson'.
    layout : str
        Anchor layout method: 'sammon', 'mds' or 'pca'.
    random_state : int
        Seed for the anchor layout.
    n_jobs : int
        Worker threads for the per-sample pull.

    Returns
    -------
    embedding : SWNEEmbedding

    Raises
    ------
    ConfigurationError
        Invalid n_pull, fewer than 3 factors, malformed inputs or mismatched
        graph identifiers. Raised before any coordinates are computed.

    Examples
    --------
    >>> emb = embed_swne(H, snn, alpha_exp=1.5, snn_exp=0.5, n_pull=4)
    >>> emb.sample_coords.head()
    """
    H = _as_score_frame(scores)
    k, n = H.shape
    if k < MIN_FACTORS:
        raise ConfigurationError(f"SWNE needs at least {MIN_FACTORS} factors, got {k}.")
    n_pull = _resolve_n_pull(n_pull, k)
    alpha_exp = _check_exponent("alpha_exp", alpha_exp)
    snn_exp = _check_exponent("snn_exp", snn_exp)
    _check_choice("distance", distance, DISTANCE_MODES)
    _check_choice("layout", layout, LAYOUT_METHODS)
    G = None if graph is None else _as_graph(graph, H.columns, H.columns, drop_diagonal=True)

    anchors = layout_factors(H, distance=distance, method=layout, random_state=random_state, verbose=verbose)

    if verbose:
        print(f"Pulling {n} samples toward their top {n_pull} of {k} factors (alpha_exp={alpha_exp})")
    coords = pull_coordinates(H.values.T, anchors.values, n_pull, alpha_exp, n_jobs=n_jobs)

    if G is not None:
        if verbose:
            print(f"Smoothing over {G.nnz} graph edges (snn_exp={snn_exp})")
        coords, _ = smooth_coordinates(coords, G, snn_exp)

    params = {
        "alpha_exp": alpha_exp,
        "snn_exp": snn_exp,
        "n_pull": n_pull,
        "distance": distance,
        "layout": layout,
        "random_state": random_state,
        "smoothed": G is not None,
    }
    return SWNEEmbedding(
        factor_coords=anchors,
        sample_coords=_coords_frame(coords, H.columns),
        params=params,
    )


def embed_features(
    embedding: SWNEEmbedding,
    loadings: ArrayLike,
    features: Optional[Sequence] = None,
    n_pull: Optional[int] = None,
    alpha_exp: float = 1.0,
    n_jobs: int = 1,
) -> SWNEEmbedding:
    """
    Place features on an existing embedding by pulling them toward its anchors.

    Features have no similarity graph, so no smoothing is applied. Anchor and
    sample coordinates are carried over unchanged; existing feature
    coordinates are replaced.

    Parameters
    ----------
    embedding : SWNEEmbedding
    loadings : (m, k) DataFrame or array
        Feature loadings. DataFrame columns carrying the embedding's factor
        names are aligned by name, otherwise by position.
    features : sequence, optional
        Features to embed (default: all rows of ``loadings``).

    Raises
    ------
    ConfigurationError
        A requested feature is absent, or the factor counts differ.
    """
    W = _as_loading_frame(loadings, embedding.factor_names)
    if features is None:
        features = list(W.index)
    else:
        features = list(pd.Index(features).unique())
        missing = [f for f in features if f not in W.index]
        if missing:
            shown = ", ".join(map(str, missing[:10]))
            raise ConfigurationError(f"{len(missing)} requested features not in loadings: {shown}")

    n_pull = _resolve_n_pull(n_pull, embedding.n_factors)
    coords = pull_coordinates(
        W.loc[features].values, embedding.factor_coords.values, n_pull, alpha_exp, n_jobs=n_jobs
    )
    return embedding.with_features(
        _coords_frame(coords, features),
        feature_n_pull=n_pull,
        feature_alpha_exp=float(alpha_exp),
    )


def summarize_assoc_features(loadings: ArrayLike, features_per_factor: int = 10) -> pd.DataFrame:
    """
    Top features of every factor, ranked by loading.

    Returns
    -------
    summary : DataFrame
        Columns 'factor', 'rank' (1 = strongest), 'feature', 'loading'.
        Ties keep the loading matrix's feature order.
    """
    if int(features_per_factor) < 1:
        raise ConfigurationError(f"features_per_factor must be >= 1, got {features_per_factor}.")
    W = _as_loading_frame(loadings)

    rows = []
    for factor in W.columns:
        top = W[factor].sort_values(ascending=False, kind="mergesort").head(int(features_per_factor))
        for rank, (feature, value) in enumerate(top.items(), start=1):
            rows.append({"factor": factor, "rank": rank, "feature": feature, "loading": float(value)})
    return pd.DataFrame(rows, columns=["factor", "rank", "feature", "loading"])


# ============================================================
# [H] Out-of-Sample Projection
# ============================================================
def project_swne(
    embedding: SWNEEmbedding,
    scores: ArrayLike,
    graph: Optional[GraphLike] = None,
    alpha_exp: float = 1.0,
    snn_exp: float = 1.0,
    n_pull: Optional[int] = None,
    self_weight: float = 0.0,
    on_isolated: str = "raise",
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Place new samples on an existing embedding without moving anything in it.

    New samples are pulled toward the fixed anchors, then smoothed toward the
    finalized coordinates of the training samples they share edges with.

    Parameters
    ----------
    embedding : SWNEEmbedding
        Training embedding. Not modified.
    scores : (k, n_new) DataFrame or array
        Factor scores of the new samples.
    graph : (n_new, n_train) sparse matrix, array or DataFrame, optional
        Edge weights from each new sample to the training samples. When
        omitted, every new sample has no edges and is handled by
        ``on_isolated``.
    alpha_exp, snn_exp, n_pull
        Pull and smoothing parameters; may differ from the training ones.
    self_weight : float
        Base weight of a new sample's own factor-pulled position during
        smoothing. 0 makes the training layout fully authoritative.
    on_isolated : str
        'raise' : raise IsolatedSampleError for samples with no edges
                  (the error carries their factor-pulled coordinates).
        'warn'  : keep their factor-pulled position and warn.

    Returns
    -------
    coords : (n_new, 2) DataFrame
        Indexed by the new sample identifiers.
    """
    _check_choice("on_isolated", on_isolated, ("raise", "warn"))
    H = _as_score_frame(scores)
    if H.shape[0] != embedding.n_factors:
        raise ConfigurationError(
            f"New scores have {H.shape[0]} factors but the embedding has {embedding.n_factors}."
        )
    n_pull = _resolve_n_pull(n_pull, embedding.n_factors)
    snn_exp = _check_exponent("snn_exp", snn_exp)
    train = embedding.sample_coords
    if graph is None:
        # no edges at all: every new sample is isolated
        G = sp.csr_matrix((H.shape[1], train.shape[0]), dtype=np.float64)
    else:
        G = _as_graph(graph, H.columns, train.index, drop_diagonal=False)

    provisional = pull_coordinates(
        H.values.T, embedding.factor_coords.values, n_pull, alpha_exp, n_jobs=n_jobs
    )
    coords, isolated = smooth_coordinates(
        provisional,
        G,
        snn_exp,
        neighbor_coords=train.values,
        self_weight=self_weight,
        warn_isolated=False,
    )
    result = _coords_frame(coords, H.columns)

    if isolated.any():
        samples = list(H.columns[isolated])
        shown = ", ".join(map(str, samples[:10]))
        message = f"{len(samples)} projected samples have no edges into the training graph: {shown}"
        if on_isolated == "raise":
            raise IsolatedSampleError(message, samples, result.loc[samples])
        warnings.warn(message + "; keeping their factor-pulled position.", DegenerateInputWarning, stacklevel=2)
    return result


# ============================================================
# [I] Factorization & Graph Adapters
# ============================================================
def _as_data_frame(X: ArrayLike, what: str = "Data") -> pd.DataFrame:
    df = X if isinstance(X, pd.DataFrame) else pd.DataFrame(_as_float(X, what))
    if df.ndim != 2 or df.shape[0] == 0 or df.shape[1] == 0:
        raise ConfigurationError(f"{what} must be a non-empty 2D (samples x features) matrix.")
    df = _as_float(df, what)
    _check_nonnegative_finite(df.values, what)
    return df


def run_nmf(
    X: ArrayLike,
    k: int,
    loss: str = "mse",
    init: str = "random",
    max_iter: int = 500,
    tol: float = 1e-4,
    random_state: int = 42,
    verbose: bool = False,
) -> Tuple[pd.DataFrame, pd.DataFrame, NMF]:
    """
    Nonnegative matrix factorization of a (samples x features) matrix.

    Parameters
    ----------
    loss : str
        'mse' (squared error, coordinate descent) or 'kl'
        (Kullback-Leibler, multiplicative updates).
    init : str
        'random' (seeded) or 'nnsvd' (SVD-based, deterministic).

    Returns
    -------
    W : (m, k) DataFrame
        Feature loadings (features x factors).
    H : (k, n) DataFrame
        Factor scores (factors x samples).
    model : sklearn NMF
    """
    _check_choice("loss", loss, NMF_LOSSES)
    _check_choice("init", init, NMF_INITS)
    df = _as_data_frame(X)
    n, m = df.shape
    k = int(k)
    if k < 1:
        raise ConfigurationError(f"k must be >= 1, got {k}.")
    if init == "nnsvd" and k > min(n, m):
        raise ConfigurationError(f"init='nnsvd' needs k <= min(n_samples, n_features) = {min(n, m)}.")

    if loss == "mse":
        solver, beta_loss = "cd", "frobenius"
        sk_init = "nndsvd" if init == "nnsvd" else "random"
    else:
        solver, beta_loss = "mu", "kullback-leibler"
        # multiplicative updates cannot move entries that start at zero
        sk_init = "nndsvda" if init == "nnsvd" else "random"

    if verbose:
        print(f"Running NMF (k={k}, loss={loss}, init={init}) on {n} samples x {m} features")

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=ConvergenceWarning)
        model = NMF(
            n_components=k,
            init=sk_init,
            solver=solver,
            beta_loss=beta_loss,
            max_iter=max_iter,
            tol=tol,
            random_state=random_state,
        )
        sample_scores = model.fit_transform(df.values)

    names = _factor_names(k)
    W = pd.DataFrame(model.components_.T, index=df.columns, columns=names)
    H = pd.DataFrame(sample_scores.T, index=names, columns=df.index)
    return W, H, model


def find_num_factors(
    X: ArrayLike,
    k_range: Iterable[int] = range(2, 13),
    loss: str = "mse",
    init: str = "random",
    max_iter: int = 500,
    random_state: int = 42,
    n_jobs: int = 1,
    verbose: bool = False,
) -> pd.DataFrame:
    """
    Reconstruction error of NMF fits over a range of factor counts.

    Returns
    -------
    scan : DataFrame
        Indexed by k with columns 'reconstruction_error' and 'rel_decrease'
        (relative drop in error from the previous k; NaN for the first).
    """
    df = _as_data_frame(X)
    ks = sorted({int(k) for k in k_range})
    if not ks:
        raise ConfigurationError("k_range is empty.")

    def _error(k):
        if verbose:
            print(f"  k={k}")
        _, _, model = run_nmf(df, k, loss=loss, init=init, max_iter=max_iter, random_state=random_state)
        return float(model.reconstruction_err_)

    errors = Parallel(n_jobs=n_jobs, backend="threading")(delayed(_error)(k) for k in ks)
    scan = pd.DataFrame({"reconstruction_error": errors}, index=pd.Index(ks, name="k"))
    previous = scan["reconstruction_error"].shift(1)
    scan["rel_decrease"] = (previous - scan["reconstruction_error"]) / previous
    return scan


def project_samples(X_new: ArrayLike, loadings: pd.DataFrame, n_jobs: int = 1) -> pd.DataFrame:
    """
    Factor scores of new samples by nonnegative least squares on fixed loadings.

    Parameters
    ----------
    X_new : (n_new, m) DataFrame or array
        New samples, normalized like the training data. DataFrame columns
        are aligned to the loading matrix's features.
    loadings : (m, k) DataFrame
        Trained feature loadings.

    Returns
    -------
    H_new : (k, n_new) DataFrame
    """
    W = _as_loading_frame(loadings)
    df = _as_data_frame(X_new, "New data")
    if isinstance(X_new, pd.DataFrame):
        missing = W.index.difference(df.columns)
        if len(missing):
            raise ConfigurationError(f"New data is missing {len(missing)} trained features.")
        df = df[W.index]
    elif df.shape[1] != W.shape[0]:
        raise ConfigurationError(f"New data has {df.shape[1]} features, loadings have {W.shape[0]}.")

    A = W.values
    rows = Parallel(n_jobs=n_jobs, backend="threading")(
        delayed(nnls)(A, x) for x in df.values
    )
    H = np.column_stack([h for h, _ in rows]) if rows else np.zeros((W.shape[1], 0))
    return pd.DataFrame(H, index=W.columns, columns=df.index)


def reduce_dimensions(
    X: ArrayLike, n_components: int = 20, random_state: int = 42
) -> Tuple[np.ndarray, PCA]:
    """PCA scores of (samples x features) data, for graph construction."""
    data = np.asarray(X, dtype=np.float64)
    n_components = int(min(n_components, data.shape[0], data.shape[1]))
    if n_components < 1:
        raise ConfigurationError("Need at least one principal component.")
    pca = PCA(n_components=n_components, svd_solver="full", random_state=random_state)
    return pca.fit_transform(data), pca


def _neighborhoods(X: np.ndarray, k: int) -> "sp.csr_matrix":
    # row i marks sample i itself plus its k - 1 nearest other samples
    n = X.shape[0]
    nn = NearestNeighbors(n_neighbors=k - 1).fit(X)
    idx = nn.kneighbors(return_distance=False)
    idx = np.column_stack([np.arange(n), idx])
    return _indicator(idx, n)


def _indicator(idx: np.ndarray, n_cols: int) -> "sp.csr_matrix":
    n, k = idx.shape
    return sp.csr_matrix(
        (np.ones(n * k), (np.repeat(np.arange(n), k), idx.ravel())), shape=(n, n_cols)
    )


def _jaccard(shared: "sp.spmatrix", k: int, prune: float) -> "sp.csr_matrix":
    S = sp.csr_matrix(shared, dtype=np.float64)
    S.data = S.data / (2.0 * k - S.data)
    S.data[S.data < prune] = 0.0
    S.eliminate_zeros()
    return S


def _check_snn_params(k: int, prune: float, n: int) -> int:
    if not 0.0 <= prune < 1.0:
        raise ConfigurationError(f"prune must lie in [0, 1), got {prune}.")
    k_eff = min(int(k), n)
    if k_eff < 2:
        raise ConfigurationError(f"SNN graph needs k >= 2 and at least 2 samples (k={k}, n={n}).")
    return k_eff


def calc_snn(X_red: ArrayLike, k: int = 10, prune: float = 1.0 / 15) -> "sp.csr_matrix":
    """
    Shared nearest neighbour graph (Jaccard overlap of k-neighbourhoods).

    Each neighbourhood contains the sample itself plus its k - 1 nearest
    samples. Overlaps below ``prune`` are dropped.

    Returns
    -------
    snn : (n, n) CSR matrix
        Symmetric, weights in (0, 1], zero diagonal.
    """
    X = np.asarray(X_red, dtype=np.float64)
    k = _check_snn_params(k, prune, X.shape[0])
    A = _neighborhoods(X, k)
    S = _jaccard(A @ A.T, k, prune)
    S = sp.csr_matrix(S - sp.diags(S.diagonal(), format="csr"))
    S.eliminate_zeros()
    return S


def project_snn(
    X_new_red: ArrayLike, X_train_red: ArrayLike, k: int = 10, prune: float = 1.0 / 15
) -> "sp.csr_matrix":
    """
    Bipartite SNN graph from new samples to training samples.

    A new sample's neighbourhood is its k nearest training samples; it is
    compared with the training neighbourhoods used by ``calc_snn``.

    Returns
    -------
    snn : (n_new, n_train) CSR matrix
    """
    X_new = np.asarray(X_new_red, dtype=np.float64)
    X_train = np.asarray(X_train_red, dtype=np.float64)
    if X_new.ndim != 2 or X_new.shape[1] != X_train.shape[1]:
        raise ConfigurationError(
            f"New data has shape {X_new.shape}, expected (*, {X_train.shape[1]})."
        )
    n_train = X_train.shape[0]
    k = _check_snn_params(k, prune, n_train)

    A_train = _neighborhoods(X_train, k)
    nn = NearestNeighbors(n_neighbors=k).fit(X_train)
    A_new = _indicator(nn.kneighbors(X_new, return_distance=False), n_train)
    return _jaccard(A_new @ A_train.T, k, prune)


# ============================================================
# [J] SWNE API
# ============================================================
@dataclass
class SWNE:
    # ---- Factorization ----
    n_factors: int = 12
    nmf_loss: str = "mse"
    nmf_init: str = "random"
    max_iter_nmf: int = 500
    tol_nmf: float = 1e-4

    # ---- Similarity Graph ----
    n_pcs: int = 20
    snn_k: int = 10
    snn_prune: float = 1.0 / 15

    # ---- Embedding ----
    alpha_exp: float = 1.0
    snn_exp: float = 1.0
    n_pull: Optional[int] = None
    distance: str = "ic"
    layout: str = "sammon"

    # ---- Runtime ----
    random_state: int = 42
    n_jobs: int = -1
    deterministic: bool = True
    verbose: bool = False

    # ---- Artifacts ----
    W_: Optional[pd.DataFrame] = field(default=None, init=False)
    H_: Optional[pd.DataFrame] = field(default=None, init=False)
    nmf_model_: Optional[NMF] = field(default=None, init=False)
    reconstruction_error_: Optional[float] = field(default=None, init=False)
    pca_model_: Optional[PCA] = field(default=None, init=False)
    X_pcs_: Optional[np.ndarray] = field(default=None, init=False)
    snn_: Optional["sp.csr_matrix"] = field(default=None, init=False)
    embedding_: Optional[SWNEEmbedding] = field(default=None, init=False)
    settings_: Dict = field(default_factory=dict, init=False)

    # --------------------------
    # Fit / Embed
    # --------------------------
    def fit(self, X: ArrayLike, graph: Optional[GraphLike] = None):
        """
        Factorize ``X`` and compute the SWNE embedding of its samples.

        Parameters
        ----------
        X : (n_samples, n_features) DataFrame or array
            Nonnegative, already normalized data.
        graph : (n, n) similarity graph, optional
            Used instead of building an SNN graph from PCA scores.

        Returns
        -------
        self : SWNE

        Examples
        --------
        >>> model = SWNE(n_factors=8, snn_exp=0.5).fit(counts)
        >>> model.embed_features(["CD3E", "MS4A1"])
        >>> model.embedding_.to_frame()
        """
        self._validate_config()
        df = _as_data_frame(X)

        with _ThreadControl(self.deterministic) as tc:
            self.W_, self.H_, self.nmf_model_ = run_nmf(
                df,
                self.n_factors,
                loss=self.nmf_loss,
                init=self.nmf_init,
                max_iter=self.max_iter_nmf,
                tol=self.tol_nmf,
                random_state=self.random_state,
                verbose=self.verbose,
            )
            self.reconstruction_error_ = float(self.nmf_model_.reconstruction_err_)

            if graph is None:
                if self.verbose:
                    print(f"Building SNN graph (k={self.snn_k}, prune={self.snn_prune:.3f})")
                self.X_pcs_, self.pca_model_ = reduce_dimensions(df.values, self.n_pcs, self.random_state)
                graph = calc_snn(self.X_pcs_, self.snn_k, self.snn_prune)
            else:
                self.X_pcs_, self.pca_model_ = None, None

            self.embedding_ = embed_swne(
                self.H_,
                graph,
                alpha_exp=self.alpha_exp,
                snn_exp=self.snn_exp,
                n_pull=self.n_pull,
                distance=self.distance,
                layout=self.layout,
                random_state=self.random_state,
                n_jobs=self.n_jobs,
                verbose=self.verbose,
            )
            self.snn_ = _as_graph(graph, self.H_.columns, self.H_.columns, drop_diagonal=True)
            self._record_settings(tc)
        return self

    def fit_transform(self, X: ArrayLike, graph: Optional[GraphLike] = None) -> pd.DataFrame:
        return self.fit(X, graph).embedding_.sample_coords.copy()

    def embed_features(
        self,
        features: Optional[Sequence] = None,
        n_pull: Optional[int] = None,
        alpha_exp: Optional[float] = None,
    ) -> pd.DataFrame:
        """Add (or replace) feature coordinates on the fitted embedding."""
        self._check_fitted()
        self.embedding_ = embed_features(
            self.embedding_,
            self.W_,
            features,
            n_pull=self.n_pull if n_pull is None else n_pull,
            alpha_exp=self.alpha_exp if alpha_exp is None else alpha_exp,
            n_jobs=self.n_jobs,
        )
        return self.embedding_.feature_coords.copy()

    def summarize_assoc_features(self, features_per_factor: int = 10) -> pd.DataFrame:
        self._check_fitted()
        return summarize_assoc_features(self.W_, features_per_factor)

    def project(
        self,
        X_new: ArrayLike,
        graph: Optional[GraphLike] = None,
        alpha_exp: Optional[float] = None,
        snn_exp: Optional[float] = None,
        n_pull: Optional[int] = None,
        self_weight: float = 0.0,
        on_isolated: str = "raise",
    ) -> pd.DataFrame:
        """
        Project new samples onto the fitted embedding.

        Scores come from NNLS on the fitted loadings. Unless ``graph`` is
        given, the bipartite SNN graph is built in the fitted PCA space. A
        model fitted with a caller-supplied graph has no PCA space, so every
        new sample is isolated and handled by ``on_isolated``.
        """
        self._check_fitted()
        df = _as_data_frame(X_new, "New data")
        if isinstance(X_new, pd.DataFrame):
            missing = self.W_.index.difference(df.columns)
            if len(missing):
                raise ConfigurationError(f"New data is missing {len(missing)} trained features.")
            df = df[self.W_.index]
        elif df.shape[1] != self.W_.shape[0]:
            raise ConfigurationError(f"New data has {df.shape[1]} features, model has {self.W_.shape[0]}.")
        else:
            df.columns = self.W_.index

        with _ThreadControl(self.deterministic):
            scores = project_samples(df, self.W_, n_jobs=self.n_jobs)
            if graph is None and self.pca_model_ is not None:
                X_new_pcs = self.pca_model_.transform(df.values)
                graph = project_snn(X_new_pcs, self.X_pcs_, self.snn_k, self.snn_prune)
            elif graph is None and self.verbose:
                print("No projection graph available; new samples have no edges")

            return project_swne(
                self.embedding_,
                scores,
                graph,
                alpha_exp=self.alpha_exp if alpha_exp is None else alpha_exp,
                snn_exp=self.snn_exp if snn_exp is None else snn_exp,
                n_pull=self.n_pull if n_pull is None else n_pull,
                self_weight=self_weight,
                on_isolated=on_isolated,
                n_jobs=self.n_jobs,
            )

    # --------------------------
    # Config / sklearn interop
    # --------------------------
    def to_config(self) -> Dict:
        cfg = self.get_params()
        cfg["version"] = "0.3"
        return cfg

    @classmethod
    def from_config(cls, cfg: Dict) -> "SWNE":
        try:
            model = cls(**{k: v for k, v in cfg.items() if k in {f.name for f in dc_fields(cls) if f.init}})
        except TypeError as e:
            raise ConfigurationError(str(e))
        model._validate_config()
        return model

    def get_params(self, deep: bool = True) -> Dict:
        return {f.name: getattr(self, f.name) for f in dc_fields(self) if f.init}

    def set_params(self, **params):
        valid = {f.name for f in dc_fields(self) if f.init}
        for k, v in params.items():
            if k not in valid:
                raise ConfigurationError(f"Unknown parameter {k}")
            setattr(self, k, v)
        return self

    # --------------------------
    # Internals
    # --------------------------
    def _validate_config(self) -> None:
        _check_choice("nmf_loss", self.nmf_loss, NMF_LOSSES)
        _check_choice("nmf_init", self.nmf_init, NMF_INITS)
        _check_choice("distance", self.distance, DISTANCE_MODES)
        _check_choice("layout", self.layout, LAYOUT_METHODS)
        if isinstance(self.n_factors, bool) or not isinstance(self.n_factors, (int, np.integer)):
            raise ConfigurationError(f"n_factors must be an integer, got {self.n_factors!r}.")
        if self.n_factors < MIN_FACTORS:
            raise ConfigurationError(f"n_factors must be >= {MIN_FACTORS}, got {self.n_factors}.")
        _resolve_n_pull(self.n_pull, int(self.n_factors))
        _check_exponent("alpha_exp", self.alpha_exp)
        _check_exponent("snn_exp", self.snn_exp)

    def _check_fitted(self) -> None:
        if self.embedding_ is None:
            raise RuntimeError("Model not fitted. Call fit() first.")

    def _record_settings(self, tc: _ThreadControl):
        self.settings_ = {
            "deterministic": bool(self.deterministic),
            "thread_limit": tc.effective_limit,
            "random_state": int(self.random_state),
            "n_samples": int(self.H_.shape[1]),
            "n_features": int(self.W_.shape[0]),
            "graph_edges": int(self.snn_.nnz),
        }


__all__ = [
    "SWNE",
    "SWNEEmbedding",
    "SWNEError",
    "ConfigurationError",
    "IsolatedSampleError",
    "DegenerateInputWarning",
    "factor_distances",
    "layout_factors",
    "pull_weights",
    "pull_coordinates",
    "smoothing_weights",
    "smooth_coordinates",
    "embed_swne",
    "embed_features",
    "summarize_assoc_features",
    "project_swne",
    "run_nmf",
    "find_num_factors",
    "project_samples",
    "reduce_dimensions",
    "calc_snn",
    "project_snn",
]
