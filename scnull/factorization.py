"""
Sampling factors for correlated standard normal draws.

Two factorizations are supported:

`CholeskyFactor`
    Exact upper-triangular Cholesky factor `R` with `corr = R.T @ R`.

`BlockFactor`
    Approximate factor for large gene sets. The correlation matrix is split
    into two contiguous blocks. Their coupling is kept as a low-rank term
    from a truncated SVD of the off-diagonal block, and each diagonal block,
    minus its share of the low-rank term, is factored on its own. Sub-blocks
    are factored through an eigen-decomposition with floored eigenvalues, so
    blocks that are not numerically positive definite still yield a valid
    factor.
"""
import logging

import numpy as np
from scipy import linalg

logger = logging.getLogger(__name__)


class FactorizationError(np.linalg.LinAlgError):
    """Correlation matrix could not be factored."""


def _freeze(*arrays):
    for arr in arrays:
        arr.setflags(write=False)


class CholeskyFactor(object):
    """
    Exact Cholesky factor of a correlation matrix.

    Parameters
    ----------
    upper : numpy.ndarray
        Upper-triangular matrix `R` such that `R.T @ R` is the correlation
        matrix.
    """

    def __init__(self, upper):
        self.upper = np.array(upper, dtype=float)
        _freeze(self.upper)

    @property
    def dim(self):
        return self.upper.shape[0]

    def draw(self, n, rng):
        """Draw an `n` x `dim` matrix of correlated standard normals."""
        return rng.standard_normal((n, self.dim)) @ self.upper


class BlockFactor(object):
    """
    Block-approximate factor of a correlation matrix.

    Parameters
    ----------
    factor_11 : numpy.ndarray
        `k` x `k` factor `L` of the corrected leading block, `L @ L.T`.
    factor_22 : numpy.ndarray
        `(d - k)` x `(d - k)` factor of the corrected trailing block.
    u_t : numpy.ndarray
        `r` x `k` low-rank loading of the leading block.
    v_t : numpy.ndarray
        `r` x `(d - k)` low-rank loading of the trailing block.
    """

    def __init__(self, factor_11, factor_22, u_t, v_t):
        self.factor_11 = np.array(factor_11, dtype=float)
        self.factor_22 = np.array(factor_22, dtype=float)
        self.u_t = np.array(u_t, dtype=float)
        self.v_t = np.array(v_t, dtype=float)
        _freeze(self.factor_11, self.factor_22, self.u_t, self.v_t)

    @property
    def k(self):
        return self.factor_11.shape[0]

    @property
    def dim(self):
        return self.factor_11.shape[0] + self.factor_22.shape[0]

    @property
    def rank(self):
        return self.u_t.shape[0]

    def draw(self, n, rng):
        """
        Draw an `n` x `dim` matrix of correlated standard normals.

        Both blocks are sampled independently, then a shared `n` x `rank`
        standard normal matrix adds the cross-block correlation.
        """
        k = self.k
        X = np.empty((n, self.dim))
        X[:, :k] = rng.standard_normal((n, k)) @ self.factor_11.T
        X[:, k:] = rng.standard_normal((n, self.dim - k)) @ self.factor_22.T
        if self.rank > 0:
            Z = rng.standard_normal((n, self.rank))
            X[:, :k] += Z @ self.u_t
            X[:, k:] += Z @ self.v_t
        return X


def cholesky_factor(corr):
    """
    Exact Cholesky factorization of a correlation matrix.

    Raises
    ------
    FactorizationError
        If `corr` is not positive definite.
    """
    try:
        upper = linalg.cholesky(np.asarray(corr, dtype=float), lower=False)
    except linalg.LinAlgError as err:
        raise FactorizationError("Correlation matrix is not positive "
                                 "definite: {}".format(err)) from err
    return CholeskyFactor(upper)


def eigen_factor(mat, eig_floor=1e-6):
    """
    Factor a symmetric matrix through its eigen-decomposition.

    Eigenvalues below `eig_floor` are raised to `eig_floor`, so the returned
    `L` satisfies `L @ L.T ~ mat` even when `mat` is not positive definite.

    Returns
    -------
    (numpy.ndarray, bool)
        The factor, and whether any eigenvalue was floored.
    """
    values, vectors = linalg.eigh(mat)
    corrected = bool(np.any(values < eig_floor))
    values = np.maximum(values, eig_floor)
    return vectors * np.sqrt(values), corrected


class BlockFactorizer(object):
    """
    Build `BlockFactor` objects.

    Parameters
    ----------
    n_blocks : int, optional
        Number of contiguous sub-blocks each corrected diagonal block is
        split into before eigen-factoring. Correlation between sub-blocks is
        dropped. Default is 4.
    rank_tol : float, optional
        Singular values of the off-diagonal block above `rank_tol` are kept
        in the low-rank term. Default is 1e-3.
    eig_floor : float, optional
        Eigenvalue floor used when factoring sub-blocks. Default is 1e-6.
    """

    def __init__(self, n_blocks=4, rank_tol=1e-3, eig_floor=1e-6):
        self.n_blocks = n_blocks
        self.rank_tol = rank_tol
        self.eig_floor = eig_floor

    @property
    def n_blocks(self):
        return self._n_blocks

    @n_blocks.setter
    def n_blocks(self, value):
        if not isinstance(value, (int, np.integer)) or value < 1:
            raise ValueError("Expected positive integer for `n_blocks`. "
                             "Received {}.".format(value))
        self._n_blocks = int(value)

    @property
    def rank_tol(self):
        return self._rank_tol

    @rank_tol.setter
    def rank_tol(self, value):
        if not value >= 0:
            raise ValueError("Expected non-negative value for `rank_tol`.")
        self._rank_tol = float(value)

    @property
    def eig_floor(self):
        return self._eig_floor

    @eig_floor.setter
    def eig_floor(self, value):
        if not value > 0:
            raise ValueError("Expected positive value for `eig_floor`.")
        self._eig_floor = float(value)

    def factor_block(self, mat):
        """Block-diagonal factor of `mat` from `n_blocks` eigen-factors."""
        idx = [x for x in np.array_split(np.arange(mat.shape[0]),
                                         self.n_blocks) if x.size > 0]
        factors = []
        corrected = False
        for i in idx:
            L, floored = eigen_factor(mat[np.ix_(i, i)], self.eig_floor)
            factors.append(L)
            corrected |= floored
        if corrected:
            logger.info("Eigenvalue correction applied.")
        return linalg.block_diag(*factors)

    def factorize(self, corr):
        """
        Approximate factorization of a `d` x `d` correlation matrix.

        Parameters
        ----------
        corr : numpy.ndarray
            Correlation matrix with `d >= 2`.

        Returns
        -------
        BlockFactor
        """
        corr = np.asarray(corr, dtype=float)
        d = corr.shape[0]
        if d < 2:
            raise ValueError("Block factorization requires at least two "
                             "genes. Received {}.".format(d))
        k = int(np.ceil(d / 2))
        U, s, Vt = linalg.svd(corr[:k, k:], full_matrices=False)
        r = int(np.sum(s > self.rank_tol))
        root = np.sqrt(s[:r])
        u_t = (U[:, :r] * root).T
        v_t = (Vt[:r, :].T * root).T
        logger.debug("Retained rank %d of %d for cross-block correlation.",
                     r, s.size)
        factor_11 = self.factor_block(corr[:k, :k] - u_t.T @ u_t)
        factor_22 = self.factor_block(corr[k:, k:] - v_t.T @ v_t)
        return BlockFactor(factor_11, factor_22, u_t, v_t)


def build_factor(corr, approximation=False, factor_kws=None):
    """
    Factor a correlation matrix for sampling.

    Parameters
    ----------
    corr : numpy.ndarray
        Ridge-stabilized correlation matrix.
    approximation : bool, optional
        Whether to use block approximation, by default False.
    factor_kws : dict, optional
        Keyword arguments for `BlockFactorizer`. Ignored unless
        `approximation` is True.

    Returns
    -------
    CholeskyFactor | BlockFactor
    """
    if approximation:
        return BlockFactorizer(**(factor_kws or {})).factorize(corr)
    return cholesky_factor(corr)
