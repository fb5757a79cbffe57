"""
Construct synthetic null datasets from single-cell count matrices.

Example:

.. code-block::python
    import pandas as pd
    from scnull import construct_null
    counts = pd.read_csv('counts.csv', index_col=0)  # genes x cells
    null_counts = construct_null(counts, family='nb', n_cores=4)
    replicates = construct_null(counts, n_rep=5, approximation=True)
"""
import logging
import time
from collections import namedtuple

import numpy as np
import pandas as pd
import scanpy as sc
from scipy import sparse

from . import correlation
from . import factorization
from . import families
from . import marginal
from . import sampler
from . import scdesign
from . import utils

logger = logging.getLogger(__name__)

Storage = namedtuple('Storage', ['carrier', 'sparse'])


def read_matrix(mat):
    """
    Extract counts and identifiers from an expression matrix.

    Parameters
    ----------
    mat : pandas.DataFrame, sc.AnnData
        Gene x cell data frame, or an AnnData object with cells as
        observations and genes as variables.

    Returns
    -------
    (numpy.ndarray, list, list, Storage)
        Dense gene x cell counts, gene names, cell names and the storage of
        the input.
    """
    if isinstance(mat, sc.AnnData):
        genes = utils.check_names(mat.var_names, 'row (gene)')
        cells = utils.check_names(mat.obs_names, 'column (cell)')
        is_sparse = sparse.issparse(mat.X)
        X = mat.X.toarray() if is_sparse else np.asarray(mat.X)
        X = X.T
        storage = Storage('anndata', is_sparse)
    elif isinstance(mat, pd.DataFrame):
        genes = utils.check_names(mat.index, 'row (gene)')
        cells = utils.check_names(mat.columns, 'column (cell)')
        is_sparse = mat.shape[1] > 0 and all(
            isinstance(x, pd.SparseDtype) for x in mat.dtypes)
        if is_sparse:
            X = mat.sparse.to_coo().toarray()
        else:
            X = mat.to_numpy()
        storage = Storage('frame', is_sparse)
    elif isinstance(mat, np.ndarray) or sparse.issparse(mat):
        raise ValueError("The matrix must have both row names and column "
                         "names! Wrap counts in a pandas.DataFrame (genes x "
                         "cells) or an AnnData object.")
    else:
        raise ValueError("Unsupported expression matrix type {}.".format(
                         type(mat)))
    try:
        X = np.asarray(X, dtype=float)
    except (TypeError, ValueError):
        raise ValueError("Expected numeric values in expression matrix.")
    if np.isnan(X).any() or (X < 0).any():
        raise ValueError("Expected non-negative values in expression matrix.")
    return X, genes, cells, storage


def to_storage(X, genes, cells, storage, integer=True):
    """
    Wrap a gene x cell array in the same storage as the input matrix.

    Values are rounded to integers unless `integer` is False.
    """
    if integer:
        X = np.rint(X).astype(np.int64)
    if storage.carrier == 'anndata':
        data = sparse.csr_matrix(X.T) if storage.sparse else X.T
        return sc.AnnData(X=data, obs=pd.DataFrame(index=cells),
                          var=pd.DataFrame(index=genes))
    if storage.sparse:
        return pd.DataFrame.sparse.from_spmatrix(sparse.csr_matrix(X),
                                                 index=genes, columns=cells)
    return pd.DataFrame(X, index=genes, columns=cells)


class NullConstructor():
    """
    Model to simulate synthetic null datasets.

    Marginals and gene-gene correlation are fit once by `fit()`; every call
    to `sample()` draws new, independent replicates from the fitted model.

    Parameters
    ----------
    family : str, optional
        Marginal distribution of the data. One of 'nb', 'binomial',
        'poisson', 'zip', 'zinb' or 'gaussian'. Only 'nb', 'poisson' and
        'zip' are supported when `fast_version=True`. Default is 'nb'.
    formula : str, optional
        Mean formula relating expression to covariates in `extra_info`,
        for example "s(X, Y, bs = 'gp', k = 4)" for spatial coordinates.
        Only used when `fast_version=False`. Default is None.
    extra_info : pd.DataFrame, optional
        Cell covariates referenced by `formula`, one row per cell. Only used
        when `fast_version=False`. Default is None.
    n_cores : int, optional
        Number of parallel workers for gene-level fitting and sampling.
        Default is 1.
    n_rep : int, optional
        Number of synthetic datasets to sample. Default is 1.
    parallelization : str, optional
        joblib backend used by worker pools. One of 'loky', 'threading',
        'multiprocessing' or 'sequential'. Default is 'loky'.
    fast_version : bool, optional
        Whether to use the fast copula simulation. Otherwise simulation is
        delegated to scDesign3 in R. Default is True.
    corr_cut : float, optional
        Genes with a proportion of non-zero values above `corr_cut` are used
        to model correlation. Default is 0.1.
    if_sparse : bool, optional
        Whether to estimate a sparse correlation matrix. Useful when the
        number of genes is much larger than the number of cells. Default is
        False.
    approximation : bool, optional
        Whether to sample from a block-approximate factor of the correlation
        matrix. Only has an effect when `fast_version=True`. Default is
        False.
    sparse_kws : dict, optional
        Keyword arguments for the sparse correlation estimator. See
        `correlation.sparse_corr` for more information.
    factor_kws : dict, optional
        Keyword arguments for block approximation. See
        `factorization.BlockFactorizer` for more information.
    random_state : int, numpy.random.SeedSequence, optional
        Seed for reproducible simulation. Default is None.
    verbose : bool, optional
        Whether to show progress bars and log memory usage. Default is False.

    Attributes
    ----------
    genes_ : marginal.GeneFilterResult
        Partition of genes into filtered, important and unimportant sets.
    params_ : marginal.MarginalParameters
        Fitted marginal for every non-filtered gene.
    corr_ : pd.DataFrame | None
        Correlation between important genes, None without correlation
        structure.
    factor_ : factorization.CholeskyFactor | factorization.BlockFactor | None
        Sampling factor for important genes.
    """

    def __init__(self, family='nb', formula=None, extra_info=None, n_cores=1,
                 n_rep=1, parallelization='loky', fast_version=True,
                 corr_cut=0.1, if_sparse=False, approximation=False,
                 sparse_kws=None, factor_kws=None, random_state=None,
                 verbose=False):
        self.family = family
        self.formula = formula
        self.extra_info = extra_info
        self.n_cores = n_cores
        self.n_rep = n_rep
        self.parallelization = parallelization
        self.fast_version = fast_version
        self.corr_cut = corr_cut
        self.if_sparse = if_sparse
        self.approximation = approximation
        self.sparse_kws = sparse_kws
        self.factor_kws = factor_kws
        self.random_state = random_state
        self.verbose = verbose

    @property
    def family(self):
        """Marginal distribution family."""
        return self._family

    @family.setter
    def family(self, value):
        if value not in families.ALL_FAMILIES:
            raise ValueError("Unsupported family {}. Expected one of {}."
                             .format(value, families.ALL_FAMILIES))
        self._family = value

    @property
    def formula(self):
        """Mean formula for the scDesign3 path."""
        return self._formula

    @formula.setter
    def formula(self, value):
        if value is not None and not isinstance(value, str):
            raise ValueError("Expected string for `formula`. Received "
                             "{}.".format(type(value)))
        self._formula = value

    @property
    def extra_info(self):
        """Cell covariates for the scDesign3 path."""
        return self._extra_info

    @extra_info.setter
    def extra_info(self, value):
        if value is not None and not isinstance(value, pd.DataFrame):
            raise ValueError("Expected pandas.DataFrame for `extra_info`. "
                             "Received {}.".format(type(value)))
        self._extra_info = value

    @property
    def n_cores(self):
        """Number of parallel workers."""
        return self._n_cores

    @n_cores.setter
    def n_cores(self, value):
        if not isinstance(value, (int, np.integer)) or value < 1:
            raise ValueError("Expected positive integer for `n_cores`. "
                             "Received {}.".format(value))
        self._n_cores = int(value)

    @property
    def n_rep(self):
        """Number of synthetic datasets to sample."""
        return self._n_rep

    @n_rep.setter
    def n_rep(self, value):
        if not isinstance(value, (int, np.integer)) or value < 1:
            raise ValueError("Expected positive integer for `n_rep`. "
                             "Received {}.".format(value))
        self._n_rep = int(value)

    @property
    def parallelization(self):
        """joblib backend for worker pools."""
        return self._parallelization

    @parallelization.setter
    def parallelization(self, value):
        if value not in utils.BACKENDS:
            raise ValueError("Unsupported parallelization {}. Expected one "
                             "of {}.".format(value, utils.BACKENDS))
        self._parallelization = value

    @property
    def fast_version(self):
        """Whether to use the fast copula simulation."""
        return self._fast_version

    @fast_version.setter
    def fast_version(self, value):
        if not isinstance(value, bool):
            raise ValueError("Expected bool for `fast_version`.")
        self._fast_version = value

    @property
    def corr_cut(self):
        """Non-zero proportion cutoff for genes used in correlation."""
        return self._corr_cut

    @corr_cut.setter
    def corr_cut(self, value):
        if not 0 <= value <= 1:
            raise ValueError("Expected value between 0 and 1 for `corr_cut`."
                             " Received {}.".format(value))
        self._corr_cut = value

    @property
    def if_sparse(self):
        """Whether to estimate a sparse correlation matrix."""
        return self._if_sparse

    @if_sparse.setter
    def if_sparse(self, value):
        if not isinstance(value, bool):
            raise ValueError("Expected bool for `if_sparse`.")
        self._if_sparse = value

    @property
    def approximation(self):
        """Whether to use block approximate sampling."""
        return self._approximation

    @approximation.setter
    def approximation(self, value):
        if not isinstance(value, bool):
            raise ValueError("Expected bool for `approximation`.")
        self._approximation = value

    @property
    def sparse_kws(self):
        """Keyword arguments for the sparse correlation estimator."""
        return self._sparse_kws

    @sparse_kws.setter
    def sparse_kws(self, value):
        default_kws = utils.get_default_kwargs(correlation.sparse_corr, ['Z'])
        if value is not None:
            value = utils.check_kws(default_kws, value, 'sparse_kws')
        else:
            value = default_kws
        self._sparse_kws = value

    @property
    def factor_kws(self):
        """Keyword arguments for block approximation."""
        return self._factor_kws

    @factor_kws.setter
    def factor_kws(self, value):
        default_kws = utils.get_default_kwargs(factorization.BlockFactorizer,
                                               ['self'])
        if value is not None:
            value = utils.check_kws(default_kws, value, 'factor_kws')
        else:
            value = default_kws
        self._factor_kws = value

    def __repr__(self):
        header = "Synthetic Null Constructor\n"
        out = ["{}: {}".format(k, v) for k, v in self.get_params().items()
               if k != 'extra_info']
        return header + '\n'.join(out)

    def get_params(self):
        """Get parameters used to construct null datasets."""
        return {'family': self.family,
                'formula': self.formula,
                'extra_info': self.extra_info,
                'n_cores': self.n_cores,
                'n_rep': self.n_rep,
                'parallelization': self.parallelization,
                'fast_version': self.fast_version,
                'corr_cut': self.corr_cut,
                'if_sparse': self.if_sparse,
                'approximation': self.approximation,
                'sparse_kws': self.sparse_kws,
                'factor_kws': self.factor_kws,
                'random_state': self.random_state,
                'verbose': self.verbose}

    def _check_config(self, cells):
        if self.fast_version:
            # raises for families without a fast path
            families.get_family(self.family)
            if self.formula is not None or self.extra_info is not None:
                raise ValueError("`formula` and `extra_info` are only used "
                                 "when `fast_version=False`.")
            return
        if (self.formula is None) != (self.extra_info is None):
            raise ValueError("`formula` and `extra_info` must be provided "
                             "together.")
        if self.extra_info is not None:
            if self.extra_info.shape[0] != len(cells):
                raise ValueError("Expected one row in `extra_info` per cell. "
                                 "Received {} rows for {} cells.".format(
                                 self.extra_info.shape[0], len(cells)))
        if self.approximation:
            logger.debug("`approximation` has no effect when "
                         "`fast_version=False`.")

    def fit(self, mat):
        """
        Fit marginals and the copula correlation to an expression matrix.

        Parameters
        ----------
        mat : pd.DataFrame, sc.AnnData
            Gene x cell data frame, or AnnData with genes as variables. Row
            and column names are required.

        Returns
        -------
        NullConstructor
            The fitted model.
        """
        X, genes, cells, storage = read_matrix(mat)
        self._check_config(cells)
        self.storage_ = storage
        self.gene_names_ = genes
        self.n_cells_ = len(cells)
        if isinstance(self.random_state, np.random.SeedSequence):
            # copy so spawning leaves the caller's sequence untouched
            rs = self.random_state
            self._seed_seq = np.random.SeedSequence(rs.entropy,
                                                    spawn_key=rs.spawn_key,
                                                    pool_size=rs.pool_size)
        else:
            self._seed_seq = np.random.SeedSequence(self.random_state)
        if not self.fast_version:
            self.counts_ = pd.DataFrame(X, index=genes, columns=cells)
            self.extra_info_ = None
            if self.extra_info is not None:
                self.extra_info_ = self.extra_info.set_axis(cells, axis=0)
            return self

        start = time.time()
        self.genes_ = marginal.partition_genes(X, genes, self.corr_cut)
        row = {g: i for i, g in enumerate(genes)}
        fitted = [row[g] for g in self.genes_.fitted]
        self.params_ = marginal.fit_marginals(X[fitted, :],
                                              self.genes_.fitted,
                                              self.family,
                                              n_jobs=self.n_cores,
                                              backend=self.parallelization,
                                              verbose=self.verbose)
        if self.verbose:
            utils.log_system_usage("Marginals fit in {}.".format(
                                   utils.ftime(time.time() - start)))

        important = list(self.genes_.important)
        if len(important) > 1:
            logger.info("%s%% of genes are used in correlation modelling.",
                        round(self.genes_.corr_prop * 100, 1))
            idx = [row[g] for g in important]
            corr = correlation.estimate_correlation(
                X[idx, :].T,
                if_sparse=self.if_sparse,
                sparse_kws=self.sparse_kws,
            )
            self.corr_ = pd.DataFrame(corr, index=important,
                                      columns=important)
            self.factor_ = factorization.build_factor(
                corr,
                approximation=self.approximation,
                factor_kws=self.factor_kws,
            )
        else:
            logger.info("No correlation structure. All features are "
                        "independent.")
            self.corr_ = None
            self.factor_ = None
        if self.verbose:
            utils.log_system_usage("Copula fit in {}.".format(
                                   utils.ftime(time.time() - start)))
        return self

    def sample(self, n_rep=None):
        """
        Sample synthetic null datasets from the fitted model.

        Parameters
        ----------
        n_rep : int, optional
            Number of datasets to sample. Default is None and `self.n_rep`
            is used.

        Returns
        -------
        list
            Synthetic matrices stored like the fitted input, with cells
            renamed to "Cell1", ..., "CellN".
        """
        if not hasattr(self, 'storage_'):
            raise ValueError("Model must be fit with `fit()` before "
                             "sampling.")
        if n_rep is None:
            n_rep = self.n_rep
        elif not isinstance(n_rep, (int, np.integer)) or n_rep < 1:
            raise ValueError("Expected positive integer for `n_rep`. "
                             "Received {}.".format(n_rep))
        cells = sampler.cell_names(self.n_cells_)
        seeds = self._seed_seq.spawn(n_rep)
        if not self.fast_version:
            return self._sample_scdesign(n_rep, seeds[0], cells)
        out = []
        for i, seed in enumerate(seeds):
            X = sampler.sample_replicate(self.params_, self.genes_,
                                         self.factor_, self.n_cells_,
                                         seed=seed,
                                         n_jobs=self.n_cores,
                                         backend=self.parallelization,
                                         verbose=self.verbose)
            out.append(to_storage(X, self.gene_names_, cells, self.storage_))
            logger.debug("Sampled replicate %d of %d.", i + 1, n_rep)
        return out

    def _sample_scdesign(self, n_rep, seed, cells):
        bridge = scdesign.ScDesign3Bridge()
        results = bridge.simulate(self.counts_,
                                  family=self.family,
                                  formula=self.formula,
                                  extra_info=self.extra_info_,
                                  n_cores=self.n_cores,
                                  n_rep=n_rep,
                                  corr_cut=self.corr_cut,
                                  if_sparse=self.if_sparse,
                                  seed=int(seed.generate_state(1)[0] >> 1))
        integer = self.family not in families.CONTINUOUS_FAMILIES
        out = []
        for df in results:
            X = df.reindex(index=self.gene_names_).fillna(0).to_numpy()
            out.append(to_storage(X, self.gene_names_, cells, self.storage_,
                                  integer=integer))
        return out

    def construct(self, mat):
        """
        Fit the model to `mat` and sample `n_rep` null datasets.

        Returns
        -------
        pd.DataFrame | sc.AnnData | list
            A single matrix if `n_rep == 1`, otherwise a list of matrices.
        """
        out = self.fit(mat).sample()
        if len(out) == 1:
            return out[0]
        return out


def construct_null(mat, family='nb', formula=None, extra_info=None,
                   n_cores=1, n_rep=1, parallelization='loky',
                   fast_version=True, corr_cut=0.1, if_sparse=False,
                   approximation=False, sparse_kws=None, factor_kws=None,
                   random_state=None, verbose=False):
    """
    Construct synthetic null data from a real expression matrix.

    The synthetic data keep each gene's marginal distribution and the
    gene-gene correlation of `mat`, but come from a single homogeneous
    population. See `NullConstructor` for a description of every parameter.

    Parameters
    ----------
    mat : pd.DataFrame, sc.AnnData
        Gene x cell count data frame with gene and cell names, or AnnData with
        cells as observations. Dense and sparse storage are both supported.

    Returns
    -------
    pd.DataFrame | sc.AnnData | list
        Synthetic null data stored like `mat`. A list of `n_rep` datasets is
        returned when `n_rep > 1`.
    """
    model = NullConstructor(family=family, formula=formula,
                            extra_info=extra_info, n_cores=n_cores,
                            n_rep=n_rep, parallelization=parallelization,
                            fast_version=fast_version, corr_cut=corr_cut,
                            if_sparse=if_sparse, approximation=approximation,
                            sparse_kws=sparse_kws, factor_kws=factor_kws,
                            random_state=random_state, verbose=verbose)
    return model.construct(mat)
