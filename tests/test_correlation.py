import numpy as np
import pytest

from scnull import correlation


def test_pseudo_obs_averages_ties():
    u = correlation.pseudo_obs(np.array([[1.0], [1.0], [2.0]]))
    np.testing.assert_allclose(u[:, 0], [1.5 / 4, 1.5 / 4, 3 / 4])


def test_pseudo_obs_strictly_inside_unit_interval():
    rng = np.random.default_rng(0)
    u = correlation.pseudo_obs(rng.poisson(0.5, size=(100, 4)))
    assert np.all(u > 0)
    assert np.all(u < 1)
    assert np.all(np.isfinite(correlation.normal_scores(u)))


def test_estimate_correlation_adds_ridge():
    rng = np.random.default_rng(1)
    X = rng.poisson(5, size=(50, 3))
    corr = correlation.estimate_correlation(X)
    np.testing.assert_allclose(np.diag(corr), 1 + correlation.RIDGE)
    np.testing.assert_allclose(corr, corr.T)
    corr = correlation.estimate_correlation(X, ridge=0)
    np.testing.assert_allclose(np.diag(corr), 1)


def test_estimate_correlation_recovers_dependence():
    rng = np.random.default_rng(2)
    shared = rng.standard_normal(2000)
    X = np.column_stack([
        rng.poisson(np.exp(1 + 0.5 * shared)),
        rng.poisson(np.exp(1 + 0.5 * shared)),
        rng.poisson(3, 2000),
    ])
    corr = correlation.estimate_correlation(X)
    assert corr[0, 1] > 0.2
    assert abs(corr[0, 2]) < 0.1


def test_constant_gene_correlation_is_zero():
    X = np.column_stack([np.arange(10.0), np.ones(10), np.arange(10.0)[::-1]])
    with pytest.warns(UserWarning, match="undefined correlations"):
        corr = correlation.pearson_corr(X)
    assert corr[0, 1] == 0
    assert corr[1, 1] == 1
    assert corr[0, 2] == pytest.approx(-1)


@pytest.mark.parametrize("operator, expected", [
    ('hard', [0, 0.5, -0.9]),
    ('soft', [0, 0.3, -0.7]),
    ('scad', [0, (2.7 * 0.5 - 3.7 * 0.2) / 1.7, -0.9]),
    ('al', [0, 0.5 - 0.2 ** 5 / 0.5 ** 4, -(0.9 - 0.2 ** 5 / 0.9 ** 4)]),
])
def test_threshold_operators(operator, expected):
    out = correlation.threshold(np.array([0.1, 0.5, -0.9]), 0.2, operator)
    np.testing.assert_allclose(out, expected)


def test_threshold_rejects_unknown_operator():
    with pytest.raises(ValueError, match="thresholding operator"):
        correlation.threshold(np.ones(3), 0.1, 'lasso')


@pytest.mark.parametrize("method", correlation.METHODS)
def test_sparse_corr_zeroes_weak_entries(method):
    rng = np.random.default_rng(3)
    Z = rng.standard_normal((200, 30))
    Z[:, 1] = Z[:, 0] + 0.3 * rng.standard_normal(200)
    corr = correlation.sparse_corr(Z, method=method)
    np.testing.assert_allclose(np.diag(corr), 1)
    np.testing.assert_allclose(corr, corr.T)
    assert corr[0, 1] > 0.8
    off = corr[2:, 2:][~np.eye(28, dtype=bool)]
    assert np.mean(off == 0) > 0.9


def test_sparse_corr_rejects_unknown_method():
    with pytest.raises(ValueError, match="sparse covariance method"):
        correlation.sparse_corr(np.ones((5, 2)), method='glasso')
