import numpy as np
import pytest

from scnull import families
from scnull import marginal


def test_partition_genes(counts):
    genes = marginal.partition_genes(counts.to_numpy(), counts.index,
                                     corr_cut=0.1)
    assert genes.names == ('Gene1', 'Gene2', 'Gene3', 'Gene4', 'Gene5')
    assert genes.filtered == ('Gene5',)
    assert genes.important == ('Gene1', 'Gene2', 'Gene3')
    assert genes.unimportant == ('Gene4',)
    assert genes.fitted == ('Gene1', 'Gene2', 'Gene3', 'Gene4')
    assert genes.corr_prop == 0.6


def test_partition_filters_values_below_tolerance():
    X = np.array([[1e-6, 1e-6, 1e-6, 1e-6],
                  [0, 1, 1, 0],
                  [1, 1, 1, 0]])
    genes = marginal.partition_genes(X, ['a', 'b', 'c'], corr_cut=0.5)
    assert genes.filtered == ('a', 'b')
    assert genes.important == ('c',)
    assert genes.unimportant == ()


def test_partition_rejects_mismatched_names():
    with pytest.raises(ValueError):
        marginal.partition_genes(np.ones((2, 5)), ['a'])


def test_fit_marginals_to_frame(counts):
    genes = marginal.partition_genes(counts.to_numpy(), counts.index)
    X = counts.loc[list(genes.fitted)].to_numpy()
    params = marginal.fit_marginals(X, genes.fitted, 'nb')
    assert params.family == 'nb'
    assert len(params) == 4
    assert list(params) == list(genes.fitted)
    df = params.to_frame()
    assert list(df.columns) == ['size', 'mu', 'fallback']
    assert list(df.index) == list(genes.fitted)
    assert df.loc['Gene1', 'mu'] == pytest.approx(counts.loc['Gene1'].mean(),
                                                  rel=0.05)
    assert df['fallback'].dtype == bool


def test_fallback_genes_tabulated_with_missing_size(monkeypatch):
    def fail(self, x):
        raise families.FitError("forced failure")

    monkeypatch.setattr(families.NegativeBinomial, 'mle', fail)
    X = np.array([[0, 1, 2, 3, 4, 5], [2, 2, 3, 1, 0, 4]], dtype=float)
    params = marginal.fit_marginals(X, ['a', 'b'], 'nb')
    assert params.n_fallback == 2
    df = params.to_frame()
    assert df['size'].isna().all()
    assert df.loc['a', 'mu'] == pytest.approx(2.5)
    assert df['fallback'].all()


def test_missing_mean_replaced_with_zero(monkeypatch):
    monkeypatch.setattr(families.Poisson, 'mle',
                        lambda self, x: {'mu': np.nan})
    X = np.array([[0, 1, 2, 3]], dtype=float)
    with pytest.warns(UserWarning, match="NA produces"):
        params = marginal.fit_marginals(X, ['a'], 'poisson')
    assert params['a'].mu == 0
    assert not params['a'].fallback


def test_fit_marginals_parallel_matches_sequential(counts):
    X = counts.iloc[:4].to_numpy()
    genes = list(counts.index[:4])
    sequential = marginal.fit_marginals(X, genes, 'nb', n_jobs=1)
    threaded = marginal.fit_marginals(X, genes, 'nb', n_jobs=2,
                                      backend='threading')
    for gene in genes:
        assert sequential[gene] == threaded[gene]
