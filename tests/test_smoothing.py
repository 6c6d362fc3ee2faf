import numpy as np
import pytest
import scipy.sparse as sp

from swne import (
    ConfigurationError,
    DegenerateInputWarning,
    smooth_coordinates,
    smoothing_weights,
)


def test_mutual_pair_meets_at_midpoint():
    P = np.array([[0.0, 0.0], [1.0, 0.5]])
    G = sp.csr_matrix(np.array([[0.0, 1.0], [1.0, 0.0]]))
    coords, isolated = smooth_coordinates(P, G, snn_exp=1.0)
    np.testing.assert_allclose(coords, [[0.5, 0.25], [0.5, 0.25]])
    assert not isolated.any()


def test_isolated_sample_keeps_provisional_position():
    P = np.array([[0.1, 0.2], [0.8, 0.9], [0.4, 0.4]])
    G = sp.csr_matrix(np.array([[0.0, 0.5, 0.0], [0.5, 0.0, 0.0], [0.0, 0.0, 0.0]]))
    with pytest.warns(DegenerateInputWarning):
        coords, isolated = smooth_coordinates(P, G)
    assert isolated.tolist() == [False, False, True]
    assert np.array_equal(coords[2], P[2])


def test_weights_sum_to_one():
    rng = np.random.RandomState(2)
    dense = rng.uniform(size=(30, 30)) * (rng.uniform(size=(30, 30)) < 0.2)
    dense = np.triu(dense, 1)
    dense = dense + dense.T
    for snn_exp in (0.25, 1.0, 2.0):
        w_self, w_nb, _ = smoothing_weights(sp.csr_matrix(dense), snn_exp)
        totals = w_self + np.asarray(w_nb.sum(axis=1)).ravel()
        np.testing.assert_allclose(totals, 1.0, rtol=0, atol=1e-12)
        assert (w_self >= 0).all() and (w_nb.data >= 0).all()


def test_lower_snn_exp_pulls_harder_toward_neighbors():
    G = sp.csr_matrix(np.array([[0.0, 0.25], [0.25, 0.0]]))
    w_self_hi, _, _ = smoothing_weights(G, snn_exp=1.0)
    w_self_lo, _, _ = smoothing_weights(G, snn_exp=0.5)
    np.testing.assert_allclose(w_self_hi, [0.8, 0.8])
    np.testing.assert_allclose(w_self_lo, [2.0 / 3.0, 2.0 / 3.0])
    assert (w_self_lo < w_self_hi).all()


def test_neighbors_contribute_provisional_positions():
    # chain 0 - 1 - 2: sample 0 must see sample 1's provisional position
    P = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0]])
    G = sp.csr_matrix(np.array([[0.0, 1.0, 0.0], [1.0, 0.0, 1.0], [0.0, 1.0, 0.0]]))
    coords, _ = smooth_coordinates(P, G)
    np.testing.assert_allclose(coords[0], [0.5, 0.0])
    np.testing.assert_allclose(coords[1], [2.0 / 3.0, 1.0 / 3.0])
    np.testing.assert_allclose(coords[2], [1.0, 0.5])


def test_zero_self_weight_lands_on_neighbor():
    P = np.array([[0.3, 0.3]])
    N = np.array([[0.9, 0.1], [0.2, 0.7]])
    G = sp.csr_matrix(np.array([[0.0, 1.0]]))
    coords, _ = smooth_coordinates(P, G, neighbor_coords=N, self_weight=0.0)
    assert np.array_equal(coords[0], N[1])


def test_dense_graph_accepted():
    P = np.array([[0.0, 0.0], [1.0, 1.0]])
    coords, _ = smooth_coordinates(P, np.array([[0.0, 1.0], [1.0, 0.0]]))
    np.testing.assert_allclose(coords, [[0.5, 0.5], [0.5, 0.5]])


def test_graph_shape_mismatch_raises():
    P = np.zeros((3, 2))
    with pytest.raises(ConfigurationError):
        smooth_coordinates(P, sp.csr_matrix((2, 2)))


@pytest.mark.parametrize("snn_exp", [0.0, -0.5])
def test_invalid_snn_exp_raises(snn_exp):
    with pytest.raises(ConfigurationError):
        smoothing_weights(sp.csr_matrix((2, 2)), snn_exp)


def test_edge_underflowing_to_zero_counts_as_isolated():
    P = np.array([[0.4, 0.6]])
    N = np.array([[0.0, 0.0], [1.0, 1.0]])
    G = sp.csr_matrix(np.array([[1e-200, 0.0]]))

    w_self, w_nb, isolated = smoothing_weights(G, snn_exp=2.0, self_weight=0.0)
    assert isolated.tolist() == [True]
    assert w_nb.nnz == 0
    np.testing.assert_allclose(w_self + np.asarray(w_nb.sum(axis=1)).ravel(), 1.0)

    with pytest.warns(DegenerateInputWarning):
        coords, _ = smooth_coordinates(P, G, snn_exp=2.0, neighbor_coords=N, self_weight=0.0)
    assert np.array_equal(coords[0], P[0])


def test_non_numeric_graph_raises():
    with pytest.raises(ConfigurationError):
        smoothing_weights(np.array([["a", "b"], ["c", "d"]], dtype=object), 1.0)
