import numpy as np
import pandas as pd
import pytest
from scipy import stats


def correlated_nb(n_cells, n_genes, rho, size, mu, rng):
    """Gene x cell negative binomial counts with equicorrelated copula."""
    shared = rng.standard_normal((n_cells, 1))
    z = np.sqrt(rho) * shared \
      + np.sqrt(1 - rho) * rng.standard_normal((n_cells, n_genes))
    return stats.nbinom.ppf(stats.norm.cdf(z), size, size / (size + mu)).T


def make_counts(n_cells=200, seed=2024, rho=0.9):
    """
    Five genes: Gene1-3 correlated NB counts, Gene4 sparse Poisson counts in
    12 cells, Gene5 a single non-zero value.
    """
    rng = np.random.default_rng(seed)
    X = np.zeros((5, n_cells))
    X[:3] = correlated_nb(n_cells, 3, rho, size=2, mu=10, rng=rng)
    cells = rng.choice(n_cells, 12, replace=False)
    X[3, cells] = rng.poisson(3, 12) + 1
    X[4, 0] = 4
    return pd.DataFrame(X,
                        index=['Gene{}'.format(i + 1) for i in range(5)],
                        columns=['obs_{}'.format(i) for i in range(n_cells)])


@pytest.fixture
def counts():
    return make_counts()


@pytest.fixture
def large_counts():
    return make_counts(n_cells=1000, seed=7)
