"""
Partition genes and fit per-gene marginal distributions.
"""
import logging
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, replace

import numpy as np
import pandas as pd

from . import families
from . import utils

logger = logging.getLogger(__name__)

# values below TOL count as zeros when screening genes
TOL = 1e-5
MIN_NONZERO = 3


@dataclass(frozen=True)
class GeneFilterResult:
    """
    Partition of genes by how they are simulated.

    Attributes
    ----------
    names : tuple
        All gene names in input order.
    filtered : tuple
        Genes with at most two non-zero values. Always simulated as zeros.
    important : tuple
        Fitted genes whose non-zero fraction exceeds the correlation cutoff.
    unimportant : tuple
        Fitted genes sampled independently of all other genes.
    """
    names: tuple
    filtered: tuple
    important: tuple
    unimportant: tuple

    @property
    def fitted(self):
        """Genes with a fitted marginal, in input order."""
        keep = set(self.important).union(self.unimportant)
        return tuple(x for x in self.names if x in keep)

    @property
    def corr_prop(self):
        """Fraction of all genes used to model correlation."""
        return round(len(self.important) / len(self.names), 3)


def low_count_mask(X, tol=TOL, min_nonzero=MIN_NONZERO):
    """Flag rows of a gene x cell matrix with fewer than `min_nonzero` values."""
    return (X >= tol).sum(axis=1) < min_nonzero


def partition_genes(X, gene_names, corr_cut=0.1):
    """
    Split genes into filtered, important and unimportant sets.

    Parameters
    ----------
    X : numpy.ndarray
        Gene x cell count matrix.
    gene_names : list-like
        Gene names matching the rows of `X`.
    corr_cut : float, optional
        Genes with a proportion of non-zero values greater than `corr_cut`
        are used to model gene-gene correlation. Default is 0.1.

    Returns
    -------
    GeneFilterResult
    """
    names = tuple(gene_names)
    if len(names) != X.shape[0]:
        raise ValueError("Expected {} gene names, received {}.".format(
                         X.shape[0], len(names)))
    low = low_count_mask(X)
    if low.any():
        logger.info("%d genes have no more than 2 non-zero values; ignore "
                    "fitting and return all 0s.", low.sum())
    nonzero = (X != 0).mean(axis=1)
    important = ~low & (nonzero > corr_cut)
    unimportant = ~low & ~important
    return GeneFilterResult(
        names=names,
        filtered=tuple(np.asarray(names, dtype=object)[low]),
        important=tuple(np.asarray(names, dtype=object)[important]),
        unimportant=tuple(np.asarray(names, dtype=object)[unimportant]),
    )


class MarginalParameters(Mapping):
    """
    Read-only mapping of gene name to fitted marginal.

    Parameters
    ----------
    family : str
        Name of the count family the genes were fit with.
    results : dict
        Gene name to `families.Fitted` or `families.Fallback`.
    """

    def __init__(self, family, results):
        self._family = family
        self._results = dict(results)

    @property
    def family(self):
        return self._family

    def __getitem__(self, gene):
        return self._results[gene]

    def __iter__(self):
        return iter(self._results)

    def __len__(self):
        return len(self._results)

    def __repr__(self):
        return "MarginalParameters(family='{}', genes={}, fallback={})".format(
               self.family, len(self), self.n_fallback)

    @property
    def n_fallback(self):
        """Number of genes fit with the Poisson fallback."""
        return sum(1 for x in self._results.values() if x.fallback)

    def to_frame(self):
        """
        Tabulate fitted parameters.

        Returns
        -------
        pandas.DataFrame
            One row per gene, one column per family parameter plus a boolean
            `fallback` column. Parameters a fallback fit does not estimate
            are NaN.
        """
        columns = families.FAMILIES[self.family].param_names
        df = pd.DataFrame(np.nan, index=list(self._results),
                          columns=list(columns))
        for gene, result in self._results.items():
            for key, value in result.params:
                df.at[gene, key] = value
        df['fallback'] = [x.fallback for x in self._results.values()]
        return df


def fit_marginals(X, gene_names, family, n_jobs=1, backend='loky',
                  verbose=False):
    """
    Fit a count distribution to every row of a gene x cell matrix.

    Parameters
    ----------
    X : numpy.ndarray
        Gene x cell count matrix of genes to fit.
    gene_names : list-like
        Gene names matching rows in `X`.
    family : str
        One of 'nb', 'poisson' or 'zip'.
    n_jobs : int, optional
        Number of parallel workers, by default 1.
    backend : str, optional
        joblib backend, by default 'loky'.
    verbose : bool, optional
        Whether to display a progress bar, by default False.

    Returns
    -------
    MarginalParameters
    """
    model = families.get_family(family)
    results = utils.parallel_map(model.fit, ((x,) for x in X), n_jobs=n_jobs,
                                 backend=backend, verbose=verbose,
                                 desc='Fitting marginals')
    results = dict(zip(gene_names, results))
    for gene, result in results.items():
        if result.fallback:
            logger.info("%s is problematic with %s MLE; using Poisson MME "
                        "instead. (%s)", gene, family, result.reason)
    missing = [g for g, x in results.items() if not np.isfinite(x.mu)]
    if len(missing) > 0:
        warnings.warn("NA produces in mean estimate; using 0 instead.")
        for gene in missing:
            params = results[gene].as_dict()
            params['mu'] = 0.0
            results[gene] = replace(results[gene], params=params)
    return MarginalParameters(family, results)
