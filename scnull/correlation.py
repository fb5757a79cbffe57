"""
Gaussian copula correlation estimation for important genes.
"""
import logging
import warnings

import numpy as np
from scipy import stats
from sklearn.covariance import empirical_covariance

logger = logging.getLogger(__name__)

RIDGE = 1e-5
METHODS = ('qiu', 'cai')
OPERATORS = ('hard', 'soft', 'scad', 'al')


def pseudo_obs(X):
    """
    Rank-based pseudo-observations of each column of `X`.

    Ties receive their average rank, and ranks are scaled by `n + 1` so every
    value lies strictly inside (0, 1).
    """
    X = np.asarray(X, dtype=float)
    return stats.rankdata(X, method='average', axis=0) / (X.shape[0] + 1)


def normal_scores(X):
    """Map each column of a cell x gene matrix onto standard normal scores."""
    return stats.norm.ppf(pseudo_obs(X))


def cov_to_corr(cov):
    sd = np.sqrt(np.diag(cov))
    with np.errstate(divide='ignore', invalid='ignore'):
        corr = cov / np.outer(sd, sd)
    return corr


def _clean(corr):
    corr = np.array(corr, dtype=float)
    undefined = ~np.isfinite(corr)
    if undefined.any():
        warnings.warn("{} undefined correlations from constant genes; using "
                      "0 instead.".format(int(undefined.sum() / 2)))
        corr[undefined] = 0
    corr = np.clip(corr, -1, 1)
    np.fill_diagonal(corr, 1)
    return corr


def pearson_corr(Z):
    """Pearson correlation between columns of `Z`."""
    with np.errstate(divide='ignore', invalid='ignore'):
        corr = np.corrcoef(Z, rowvar=False)
    return _clean(np.atleast_2d(corr))


def threshold(values, lam, operator='hard', a=3.7, eta=4):
    r"""
    Apply a generalized thresholding operator elementwise.

    Parameters
    ----------
    values : numpy.ndarray
        Values to shrink.
    lam : float, numpy.ndarray
        Threshold level, scalar or the same shape as `values`.
    operator : str, optional
        One of 'hard', 'soft', 'scad' or 'al' (adaptive lasso). Default is
        'hard'.
    a : float, optional
        SCAD shape parameter, by default 3.7.
    eta : float, optional
        Adaptive lasso exponent, by default 4.

    Returns
    -------
    numpy.ndarray

    Notes
    -----
    Following Rothman, Levina and Zhu (2009):

    .. math::
        s_{hard}(z) = z 1(|z| > \lambda) \\
        s_{soft}(z) = sign(z)(|z| - \lambda)_+ \\
        s_{al}(z) = sign(z)(|z| - \lambda^{\eta + 1}|z|^{-\eta})_+
    """
    if operator not in OPERATORS:
        raise ValueError("Unsupported thresholding operator {}. Expected one "
                         "of {}.".format(operator, OPERATORS))
    z = np.asarray(values, dtype=float)
    lam = np.broadcast_to(lam, z.shape)
    absz = np.abs(z)
    soft = np.sign(z) * np.clip(absz - lam, 0, None)
    if operator == 'hard':
        return np.where(absz > lam, z, 0)
    if operator == 'soft':
        return soft
    if operator == 'scad':
        mid = ((a - 1) * z - np.sign(z) * a * lam) / (a - 2)
        return np.where(absz <= 2 * lam, soft,
                        np.where(absz <= a * lam, mid, z))
    with np.errstate(divide='ignore', invalid='ignore'):
        shrink = lam ** (eta + 1) * absz ** (-eta)
    return np.where(absz > 0, np.sign(z) * np.clip(absz - shrink, 0, None), 0)


def sparse_corr(Z, method='qiu', operator='hard', delta=2.0):
    r"""
    Thresholded covariance estimate, returned as a correlation matrix.

    Parameters
    ----------
    Z : numpy.ndarray
        Cell x gene matrix of normal scores.
    method : str, optional
        'qiu' applies a universal threshold to standardized entries,
        :math:`\lambda_{ij} = \delta \sqrt{\log p / n} \sqrt{s_{ii} s_{jj}}`.
        'cai' applies the entry-adaptive threshold of Cai and Liu (2011),
        :math:`\lambda_{ij} = \delta \sqrt{\theta_{ij} \log p / n}`, where
        :math:`\theta_{ij}` is the variance of the centered cross products.
        Default is 'qiu'.
    operator : str, optional
        Thresholding operator, see `threshold()`. Default is 'hard'.
    delta : float, optional
        Threshold scale, by default 2.

    Returns
    -------
    numpy.ndarray
        Correlation matrix with thresholded off-diagonal entries.
    """
    if method not in METHODS:
        raise ValueError("Unsupported sparse covariance method {}. Expected "
                         "one of {}.".format(method, METHODS))
    Z = np.asarray(Z, dtype=float)
    n, p = Z.shape
    S = empirical_covariance(Z)
    rate = np.log(p) / n
    if method == 'qiu':
        sd = np.sqrt(np.diag(S))
        lam = delta * np.sqrt(rate) * np.outer(sd, sd)
    else:
        Zc = Z - Z.mean(axis=0)
        theta = (Zc ** 2).T @ (Zc ** 2) / n - S ** 2
        lam = delta * np.sqrt(np.clip(theta, 0, None) * rate)
    cov = threshold(S, lam, operator)
    np.fill_diagonal(cov, np.diag(S))
    return _clean(cov_to_corr(cov))


def estimate_correlation(X, if_sparse=False, sparse_kws=None, ridge=RIDGE):
    """
    Estimate the Gaussian copula correlation between genes.

    Parameters
    ----------
    X : numpy.ndarray
        Cell x gene count matrix of important genes.
    if_sparse : bool, optional
        Whether to use a sparse, thresholded estimator. Intended for data with
        many more genes than cells. Default is False and the Pearson
        correlation of normal scores is used.
    sparse_kws : dict, optional
        Keyword arguments passed to `sparse_corr()`.
    ridge : float, optional
        Value added to the diagonal for numerical stability, by default 1e-5.

    Returns
    -------
    numpy.ndarray
        Gene x gene correlation matrix with `ridge` added to its diagonal.
    """
    Z = normal_scores(X)
    if if_sparse:
        corr = sparse_corr(Z, **(sparse_kws or {}))
    else:
        corr = pearson_corr(Z)
    corr[np.diag_indices_from(corr)] += ridge
    return corr
