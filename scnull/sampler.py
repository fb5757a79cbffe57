"""
Sample synthetic count matrices from fitted marginals and a copula factor.
"""
import logging
import warnings

import numpy as np
from scipy import stats

from . import families
from . import utils

logger = logging.getLogger(__name__)

# upper bound for copula uniforms; the ppf of 1 is infinite
MAX_UNIFORM = np.nextafter(1, 0)


def cell_names(n):
    """Canonical names for `n` synthetic cells."""
    return ['Cell{}'.format(i + 1) for i in range(n)]


def _draw_gene(family, result, n, seed):
    return family.sample(result, n, np.random.default_rng(seed))


def _invert_gene(family, result, p):
    return family.quantile(result, p)


def sample_replicate(params, genes, factor, n_cells, seed=None, n_jobs=1,
                     backend='loky', verbose=False):
    """
    Simulate one gene x cell count matrix.

    Parameters
    ----------
    params : marginal.MarginalParameters
        Fitted marginals for every gene in `genes.fitted`.
    genes : marginal.GeneFilterResult
        Partition of genes into filtered, important and unimportant sets.
    factor : factorization.CholeskyFactor | factorization.BlockFactor | None
        Sampling factor over `genes.important`. If None, every fitted gene is
        sampled independently.
    n_cells : int
        Number of cells to simulate.
    seed : int | numpy.random.SeedSequence, optional
        Seed for this replicate. Each gene draws from its own child sequence,
        so results do not depend on `n_jobs` or `backend`.
    n_jobs : int, optional
        Number of parallel workers, by default 1.
    backend : str, optional
        joblib backend, by default 'loky'.
    verbose : bool, optional
        Whether to display progress bars, by default False.

    Returns
    -------
    numpy.ndarray
        Gene x cell matrix with rows ordered as `genes.names`.
    """
    family = families.get_family(params.family)
    if factor is None:
        independent = genes.fitted
        correlated = ()
    else:
        independent = genes.unimportant
        correlated = genes.important
        if factor.dim != len(correlated):
            raise ValueError("Sampling factor dimension {} does not match {} "
                             "important genes.".format(factor.dim,
                                                       len(correlated)))
    mvn_seed, *gene_seeds = utils.spawn_seeds(seed, 1 + len(independent))
    row = {g: i for i, g in enumerate(genes.names)}
    X = np.zeros((len(genes.names), n_cells))

    if len(independent) > 0:
        draws = utils.parallel_map(
            _draw_gene,
            ((family, params[g], n_cells, s)
             for g, s in zip(independent, gene_seeds)),
            n_jobs=n_jobs, backend=backend, verbose=verbose,
            desc='Sampling independent genes')
        for gene, values in zip(independent, draws):
            X[row[gene], :] = values

    if len(correlated) > 0:
        mvn = factor.draw(n_cells, np.random.default_rng(mvn_seed))
        uniform = np.clip(stats.norm.cdf(mvn), 0, MAX_UNIFORM)
        counts = utils.parallel_map(
            _invert_gene,
            ((family, params[g], uniform[:, j])
             for j, g in enumerate(correlated)),
            n_jobs=n_jobs, backend=backend, verbose=verbose,
            desc='Inverting copula scores')
        for gene, values in zip(correlated, counts):
            X[row[gene], :] = values

    missing = np.isnan(X)
    if missing.any():
        warnings.warn("{} missing values in simulated counts; using 0 "
                      "instead.".format(missing.sum()))
        X[missing] = 0
    return X
