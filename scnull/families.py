"""
Count distributions used to model per-gene marginals.

Each family exposes the same three operations so that fitting and sampling
code never branches on the family name:

    fit(x) -> Fitted | Fallback
    sample(result, n, rng) -> numpy.ndarray
    quantile(result, p) -> numpy.ndarray

When maximum likelihood estimation fails for a gene, the family returns a
`Fallback` holding a method-of-moments Poisson mean. Sampling and quantile
inversion of a `Fallback` always use a plain Poisson distribution.
"""
from dataclasses import dataclass

import numpy as np
from scipy import optimize, special, stats

# every family accepted by `construct_null`; only FAMILIES has a fast path
ALL_FAMILIES = ('nb', 'binomial', 'poisson', 'zip', 'zinb', 'gaussian')
# families whose simulated values are not counts
CONTINUOUS_FAMILIES = ('gaussian',)


class FitError(RuntimeError):
    """Maximum likelihood estimation failed for a single gene."""


class _Result(object):
    """Shared accessors for fit results; `params` is a tuple of pairs."""

    def __post_init__(self):
        if isinstance(self.params, dict):
            object.__setattr__(self, 'params', tuple(self.params.items()))

    def __getitem__(self, key):
        return dict(self.params)[key]

    def as_dict(self):
        return dict(self.params)

    @property
    def mu(self):
        return self['mu']


@dataclass(frozen=True)
class Fitted(_Result):
    """Marginal parameters estimated by maximum likelihood."""
    family: str
    params: tuple = ()
    fallback = False


@dataclass(frozen=True)
class Fallback(_Result):
    """Poisson method-of-moments parameters used after a failed MLE."""
    family: str
    params: tuple = ()
    reason: str = ''
    fallback = True


def poisson_mme(x):
    """Method-of-moments estimate of a Poisson mean."""
    return float(np.mean(x))


def _count_table(x):
    # log-likelihoods only need each distinct count once
    values, counts = np.unique(np.asarray(x, dtype=float), return_counts=True)
    return values, counts


def _minimize(nll, start, name, maxiter, bounds=None, fatol=1e-4):
    with np.errstate(all='ignore'):
        res = optimize.minimize(nll, start, method='Nelder-Mead',
                                bounds=bounds,
                                options={'maxiter': maxiter,
                                         'fatol': fatol})
    # a flat ridge converges in likelihood before the simplex collapses
    flat = np.ptp(res.final_simplex[1]) <= fatol
    if not res.success and not flat:
        raise FitError("{} MLE did not converge: {}".format(name, res.message))
    if not np.all(np.isfinite(res.x)) or not np.isfinite(res.fun):
        raise FitError("{} MLE produced non-finite estimates.".format(name))
    return res.x


class CountFamily(object):
    """
    Base class for count families.

    Subclasses implement `mle()`, `_sample()` and `_quantile()` for
    successfully fitted parameters.
    """
    name = None
    param_names = ()

    def __repr__(self):
        return "{}()".format(type(self).__name__)

    def fit(self, x):
        """
        Fit the family to a vector of observed counts.

        Parameters
        ----------
        x : numpy.ndarray
            Observed counts for a single gene.

        Returns
        -------
        Fitted | Fallback
            `Fallback` if maximum likelihood estimation failed.
        """
        x = np.asarray(x, dtype=float)
        try:
            params = self.mle(x)
        except (FitError, ValueError, FloatingPointError) as err:
            return Fallback(self.name, {'mu': poisson_mme(x)}, str(err))
        return Fitted(self.name, params)

    def mle(self, x):
        raise NotImplementedError

    def sample(self, result, n, rng):
        """Draw `n` independent counts from a fitted marginal."""
        if result.fallback:
            return rng.poisson(result.mu, size=n).astype(float)
        return self._sample(result.as_dict(), n, rng)

    def quantile(self, result, p):
        """Invert the fitted marginal's CDF at probabilities `p`."""
        p = np.asarray(p, dtype=float)
        if result.fallback:
            q = stats.poisson.ppf(p, result.mu)
        else:
            q = self._quantile(result.as_dict(), p)
        # discrete ppf at p == 0 is the lower support bound minus one
        return np.maximum(q, 0)

    def _sample(self, params, n, rng):
        raise NotImplementedError

    def _quantile(self, params, p):
        raise NotImplementedError


class NegativeBinomial(CountFamily):
    """Negative binomial parameterized by `size` (dispersion) and `mu`."""
    name = 'nb'
    param_names = ('size', 'mu')

    def __init__(self, maxiter=500, max_size=1e6):
        self.maxiter = maxiter
        self.max_size = max_size

    @staticmethod
    def _prob(size, mu):
        return size / (size + mu)

    def mle(self, x):
        m = np.mean(x)
        if not m > 0:
            raise FitError("NB MLE requires a positive sample mean.")
        if np.var(x) <= m:
            # without overdispersion the likelihood peaks in the Poisson limit
            return {'size': float(self.max_size), 'mu': float(m)}
        v = np.var(x, ddof=1)
        size0 = min(m ** 2 / (v - m), self.max_size)
        bounds = optimize.Bounds([-np.inf, -np.inf],
                                 [np.log(self.max_size), np.inf])
        values, counts = _count_table(x)

        def nll(theta):
            size, mu = np.exp(theta)
            ll = special.gammaln(values + size) - special.gammaln(size) \
               - special.gammaln(values + 1) \
               + size * np.log(size / (size + mu)) \
               + values * np.log(mu / (size + mu))
            return -np.sum(counts * ll)

        size, mu = np.exp(_minimize(nll, np.log([size0, m]), 'NB',
                                    self.maxiter, bounds=bounds))
        return {'size': float(size), 'mu': float(mu)}

    def _sample(self, params, n, rng):
        size, mu = params['size'], params['mu']
        return rng.negative_binomial(size, self._prob(size, mu),
                                     size=n).astype(float)

    def _quantile(self, params, p):
        size, mu = params['size'], params['mu']
        return stats.nbinom.ppf(p, size, self._prob(size, mu))


class Poisson(CountFamily):
    """Poisson parameterized by its mean `mu`."""
    name = 'poisson'
    param_names = ('mu',)

    def mle(self, x):
        mu = np.mean(x)
        if not np.isfinite(mu):
            raise FitError("Poisson MLE produced a non-finite mean.")
        return {'mu': float(mu)}

    def _sample(self, params, n, rng):
        return rng.poisson(params['mu'], size=n).astype(float)

    def _quantile(self, params, p):
        return stats.poisson.ppf(p, params['mu'])


class ZeroInflatedPoisson(CountFamily):
    """
    Zero-inflated Poisson with Poisson mean `mu` and inflation probability
    `sigma`.

    P(Y = 0) = sigma + (1 - sigma) * exp(-mu)
    P(Y = y) = (1 - sigma) * Poisson(y; mu),  y > 0
    """
    name = 'zip'
    param_names = ('mu', 'sigma')

    def __init__(self, maxiter=500, sigma_start=0.1):
        self.maxiter = maxiter
        self.sigma_start = sigma_start

    def mle(self, x):
        m = np.mean(x)
        if not m > 0:
            raise FitError("ZIP MLE requires a positive sample mean.")
        values, counts = _count_table(x)
        zero = values == 0

        def nll(theta):
            mu = np.exp(theta[0])
            sigma = special.expit(theta[1])
            ll = np.log1p(-sigma) + stats.poisson.logpmf(values, mu)
            ll[zero] = np.log(sigma + (1 - sigma) * np.exp(-mu))
            return -np.sum(counts * ll)

        start = [np.log(m), special.logit(self.sigma_start)]
        theta = _minimize(nll, start, 'ZIP', self.maxiter)
        return {'mu': float(np.exp(theta[0])),
                'sigma': float(special.expit(theta[1]))}

    def _sample(self, params, n, rng):
        inflated = rng.random(n) < params['sigma']
        x = rng.poisson(params['mu'], size=n).astype(float)
        x[inflated] = 0
        return x

    def _quantile(self, params, p):
        sigma = params['sigma']
        p_count = np.clip((p - sigma) / (1 - sigma), 0, None)
        return stats.poisson.ppf(p_count, params['mu'])


FAMILIES = {
    'nb': NegativeBinomial,
    'poisson': Poisson,
    'zip': ZeroInflatedPoisson,
}


def get_family(name):
    """Instantiate the fast-path family registered under `name`."""
    if name not in ALL_FAMILIES:
        raise ValueError("Unsupported family {}. Expected one of {}.".format(
                         name, ALL_FAMILIES))
    try:
        return FAMILIES[name]()
    except KeyError:
        raise NotImplementedError("The fast version only supports {}. Use "
                                  "`fast_version=False` for family "
                                  "{}.".format(tuple(FAMILIES), name))
