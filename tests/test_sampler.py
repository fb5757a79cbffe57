import numpy as np
import pytest

from scnull import factorization
from scnull import families
from scnull import marginal
from scnull import sampler


@pytest.fixture
def fitted(counts):
    X = counts.to_numpy()
    genes = marginal.partition_genes(X, counts.index)
    rows = [list(counts.index).index(g) for g in genes.fitted]
    params = marginal.fit_marginals(X[rows], genes.fitted, 'nb')
    return genes, params


def test_cell_names():
    assert sampler.cell_names(3) == ['Cell1', 'Cell2', 'Cell3']
    assert sampler.cell_names(0) == []


def test_filtered_genes_are_zero(fitted):
    genes, params = fitted
    X = sampler.sample_replicate(params, genes, None, 300, seed=0)
    assert X.shape == (5, 300)
    assert np.all(X[4] == 0)
    assert np.all(X >= 0)
    np.testing.assert_array_equal(X, np.rint(X))


def test_correlated_genes_follow_factor(fitted):
    genes, params = fitted
    factor = factorization.cholesky_factor(np.array([[1, 0.9, 0.9],
                                                     [0.9, 1, 0.9],
                                                     [0.9, 0.9, 1]]))
    X = sampler.sample_replicate(params, genes, factor, 2000, seed=1)
    corr = np.corrcoef(X[:3])
    assert corr[0, 1] > 0.6
    assert corr[1, 2] > 0.6
    independent = sampler.sample_replicate(params, genes, None, 2000, seed=1)
    assert abs(np.corrcoef(independent[:3])[0, 1]) < 0.1


def test_seeded_sampling_independent_of_workers(fitted):
    genes, params = fitted
    factor = factorization.cholesky_factor(np.eye(3))
    sequential = sampler.sample_replicate(params, genes, factor, 100,
                                          seed=2)
    threaded = sampler.sample_replicate(params, genes, factor, 100, seed=2,
                                        n_jobs=2, backend='threading')
    np.testing.assert_array_equal(sequential, threaded)
    other = sampler.sample_replicate(params, genes, factor, 100, seed=3)
    assert not np.array_equal(sequential, other)


def test_factor_dimension_must_match_important_genes(fitted):
    genes, params = fitted
    factor = factorization.cholesky_factor(np.eye(2))
    with pytest.raises(ValueError, match="does not match"):
        sampler.sample_replicate(params, genes, factor, 10, seed=0)


def test_missing_values_replaced_with_zero(fitted, monkeypatch):
    genes, params = fitted
    monkeypatch.setattr(families.CountFamily, 'sample',
                        lambda self, result, n, rng: np.full(n, np.nan))
    factor = factorization.cholesky_factor(np.eye(3))
    with pytest.warns(UserWarning, match="missing values"):
        X = sampler.sample_replicate(params, genes, factor, 50, seed=0)
    assert np.all(X[3] == 0)
    assert not np.isnan(X).any()
    assert X[0].sum() > 0
