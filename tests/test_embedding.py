import json

import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from swne import (
    ConfigurationError,
    SWNEEmbedding,
    embed_features,
    embed_swne,
    pull_coordinates,
    summarize_assoc_features,
)


@pytest.fixture
def embedding(scores, snn):
    return embed_swne(scores, snn, alpha_exp=1.0, snn_exp=1.0, n_pull=3)


@pytest.fixture
def loadings(scores):
    rng = np.random.RandomState(9)
    return pd.DataFrame(
        rng.gamma(0.5, 1.0, size=(30, scores.shape[0])),
        index=[f"gene_{i}" for i in range(30)],
        columns=scores.index,
    )


def test_embedding_layout(embedding, scores):
    assert isinstance(embedding, SWNEEmbedding)
    assert list(embedding.factor_coords.index) == list(scores.index)
    assert list(embedding.sample_coords.index) == list(scores.columns)
    assert list(embedding.sample_coords.columns) == ["x", "y"]
    assert embedding.feature_coords.empty
    assert embedding.params["n_pull"] == 3
    assert embedding.params["smoothed"] is True


def test_rerun_is_bit_identical(scores, snn):
    first = embed_swne(scores, snn, alpha_exp=1.5, snn_exp=0.7, n_pull=4, random_state=3)
    second = embed_swne(scores, snn, alpha_exp=1.5, snn_exp=0.7, n_pull=4, random_state=3, n_jobs=2)
    assert np.array_equal(first.factor_coords.values, second.factor_coords.values)
    assert np.array_equal(first.sample_coords.values, second.sample_coords.values)


def test_samples_inside_anchor_hull(embedding, in_hull):
    assert in_hull(embedding.sample_coords.values, embedding.factor_coords.values)


def test_without_graph_samples_keep_pulled_position(scores):
    emb = embed_swne(scores, None, n_pull=3)
    expected = pull_coordinates(scores.values.T, emb.factor_coords.values, n_pull=3)
    assert np.array_equal(emb.sample_coords.values, expected)
    assert emb.params["smoothed"] is False


def test_smoothing_changes_positions(scores, snn):
    plain = embed_swne(scores, None, n_pull=3)
    smoothed = embed_swne(scores, snn, n_pull=3)
    assert np.array_equal(plain.factor_coords.values, smoothed.factor_coords.values)
    assert not np.allclose(plain.sample_coords.values, smoothed.sample_coords.values)


def test_array_inputs_get_default_identifiers(scores, snn):
    emb = embed_swne(scores.values, snn.toarray(), n_pull=3)
    assert list(emb.factor_coords.index) == [f"factor_{i + 1}" for i in range(5)]
    assert list(emb.sample_coords.index) == list(range(scores.shape[1]))


@pytest.mark.parametrize("n_pull", [2, 6])
def test_invalid_n_pull_raises(scores, snn, n_pull):
    with pytest.raises(ConfigurationError):
        embed_swne(scores, snn, n_pull=n_pull)


def test_too_few_factors_raises(scores):
    with pytest.raises(ConfigurationError):
        embed_swne(scores.iloc[:2], None)


def test_graph_shape_mismatch_raises(scores):
    with pytest.raises(ConfigurationError):
        embed_swne(scores, sp.csr_matrix((10, 10)), n_pull=3)


def test_graph_identifier_mismatch_raises(scores, snn):
    graph = pd.DataFrame(snn.toarray(), index=scores.columns, columns=scores.columns)
    graph = graph.rename(index={"cell_0": "stranger"})
    with pytest.raises(ConfigurationError):
        embed_swne(scores, graph, n_pull=3)


def test_graph_frame_aligned_by_identifier(scores, snn):
    graph = pd.DataFrame(snn.toarray(), index=scores.columns, columns=scores.columns)
    shuffled = graph.iloc[::-1, ::-1]
    a = embed_swne(scores, graph, n_pull=3)
    b = embed_swne(scores, shuffled, n_pull=3)
    np.testing.assert_allclose(a.sample_coords.values, b.sample_coords.values, rtol=0, atol=1e-12)


def test_negative_scores_raise(scores):
    bad = scores.copy()
    bad.iloc[0, 0] = -1.0
    with pytest.raises(ConfigurationError):
        embed_swne(bad, None, n_pull=3)


def test_embed_features_leaves_layout_untouched(embedding, loadings, in_hull):
    genes = ["gene_3", "gene_7", "gene_11"]
    updated = embed_features(embedding, loadings, genes, n_pull=3, alpha_exp=2.0)

    assert list(updated.feature_coords.index) == genes
    assert np.array_equal(updated.factor_coords.values, embedding.factor_coords.values)
    assert np.array_equal(updated.sample_coords.values, embedding.sample_coords.values)
    assert embedding.feature_coords.empty
    assert updated.params["feature_alpha_exp"] == 2.0
    assert in_hull(updated.feature_coords.values, updated.factor_coords.values)

    expected = pull_coordinates(loadings.loc[genes].values, embedding.factor_coords.values, 3, 2.0)
    assert np.array_equal(updated.feature_coords.values, expected)


def test_embed_features_replaces_previous_features(embedding, loadings):
    first = embed_features(embedding, loadings, ["gene_1", "gene_2"], n_pull=3)
    second = embed_features(first, loadings, ["gene_5"], n_pull=3)
    assert list(second.feature_coords.index) == ["gene_5"]


def test_embed_features_aligns_factor_columns_by_name(embedding, loadings):
    a = embed_features(embedding, loadings, ["gene_4"], n_pull=3)
    b = embed_features(embedding, loadings[loadings.columns[::-1]], ["gene_4"], n_pull=3)
    assert np.array_equal(a.feature_coords.values, b.feature_coords.values)


def test_embed_features_missing_feature_raises(embedding, loadings):
    with pytest.raises(ConfigurationError, match="not in loadings"):
        embed_features(embedding, loadings, ["gene_1", "gene_999"], n_pull=3)


def test_embed_features_factor_count_mismatch_raises(embedding, loadings):
    with pytest.raises(ConfigurationError):
        embed_features(embedding, loadings.iloc[:, :4], n_pull=3)


def test_summarize_assoc_features(loadings):
    summary = summarize_assoc_features(loadings, features_per_factor=3)
    assert list(summary.columns) == ["factor", "rank", "feature", "loading"]
    assert len(summary) == 3 * loadings.shape[1]
    for factor, group in summary.groupby("factor"):
        expected = loadings[factor].sort_values(ascending=False).head(3)
        assert group["feature"].tolist() == expected.index.tolist()
        assert group["rank"].tolist() == [1, 2, 3]


def test_summarize_assoc_features_rejects_zero():
    with pytest.raises(ConfigurationError):
        summarize_assoc_features(np.ones((4, 3)), features_per_factor=0)


def test_dict_round_trip_through_json(embedding, loadings):
    emb = embed_features(embedding, loadings, ["gene_0", "gene_1"], n_pull=3)
    restored = SWNEEmbedding.from_dict(json.loads(json.dumps(emb.to_dict())))
    pd.testing.assert_frame_equal(restored.factor_coords, emb.factor_coords)
    pd.testing.assert_frame_equal(restored.sample_coords, emb.sample_coords)
    pd.testing.assert_frame_equal(restored.feature_coords, emb.feature_coords)
    assert restored.params == emb.params


def test_from_dict_rejects_garbage():
    with pytest.raises(ConfigurationError):
        SWNEEmbedding.from_dict({"samples": {}})


def test_to_frame(embedding, loadings):
    emb = embed_features(embedding, loadings, ["gene_0"], n_pull=3)
    frame = emb.to_frame()
    assert list(frame.columns) == ["name", "kind", "x", "y"]
    assert frame["kind"].value_counts().to_dict() == {"sample": 60, "factor": 5, "feature": 1}
