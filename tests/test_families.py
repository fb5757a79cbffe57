import numpy as np
import pytest
from scipy import stats

from scnull import families


def test_nb_mle_recovers_parameters():
    rng = np.random.default_rng(0)
    size, mu = 2.0, 8.0
    x = rng.negative_binomial(size, size / (size + mu), size=5000)
    result = families.NegativeBinomial().fit(x)
    assert isinstance(result, families.Fitted)
    assert result.fallback is False
    assert result['mu'] == pytest.approx(mu, rel=0.05)
    assert result['size'] == pytest.approx(size, rel=0.2)


def test_nb_failed_mle_falls_back_to_poisson_moments():
    x = np.array([0, 3, 5, 2, 8, 1, 0, 4], dtype=float)
    result = families.NegativeBinomial(maxiter=1).fit(x)
    assert isinstance(result, families.Fallback)
    assert result.fallback is True
    assert result.mu == pytest.approx(x.mean())
    assert dict(result.params) == {'mu': pytest.approx(x.mean())}
    assert "did not converge" in result.reason


def test_fallback_samples_and_inverts_as_poisson():
    fallback = families.Fallback('nb', {'mu': 3.0}, 'test')
    model = families.NegativeBinomial()
    p = np.linspace(0.01, 0.99, 25)
    np.testing.assert_array_equal(model.quantile(fallback, p),
                                  stats.poisson.ppf(p, 3.0))
    draws = model.sample(fallback, 20000, np.random.default_rng(1))
    assert draws.mean() == pytest.approx(3.0, rel=0.05)
    assert draws.var() == pytest.approx(3.0, rel=0.1)


def test_nb_sample_and_quantile_match_theoretical_moments():
    size, mu = 3.0, 5.0
    result = families.Fitted('nb', {'size': size, 'mu': mu})
    model = families.NegativeBinomial()
    rng = np.random.default_rng(2)
    variance = mu + mu ** 2 / size
    for draws in (model.sample(result, 20000, rng),
                  model.quantile(result, rng.random(20000))):
        assert draws.mean() == pytest.approx(mu, rel=0.05)
        assert draws.var() == pytest.approx(variance, rel=0.1)
        assert np.all(draws >= 0)


def test_quantile_never_negative_at_zero_probability():
    result = families.Fitted('poisson', {'mu': 2.0})
    q = families.Poisson().quantile(result, np.array([0.0, 0.5]))
    assert q[0] == 0
    assert np.all(q >= 0)


def test_poisson_mle_is_sample_mean():
    x = np.array([1, 2, 3, 0, 4], dtype=float)
    result = families.Poisson().fit(x)
    assert isinstance(result, families.Fitted)
    assert result.mu == pytest.approx(2.0)


def test_zip_mle_recovers_parameters():
    rng = np.random.default_rng(3)
    mu, sigma = 4.0, 0.3
    x = rng.poisson(mu, 5000)
    x[rng.random(5000) < sigma] = 0
    result = families.ZeroInflatedPoisson().fit(x)
    assert isinstance(result, families.Fitted)
    assert result['mu'] == pytest.approx(mu, rel=0.05)
    assert result['sigma'] == pytest.approx(sigma, abs=0.03)


def test_zip_quantile_is_zero_below_inflation():
    result = families.Fitted('zip', {'mu': 5.0, 'sigma': 0.4})
    model = families.ZeroInflatedPoisson()
    q = model.quantile(result, np.array([0.1, 0.39, 0.9]))
    assert q[0] == 0
    assert q[1] == 0
    assert q[2] > 0
    draws = model.sample(result, 20000, np.random.default_rng(4))
    expected_zero = 0.4 + 0.6 * np.exp(-5.0)
    assert np.mean(draws == 0) == pytest.approx(expected_zero, abs=0.02)


def test_fit_results_are_immutable():
    result = families.Fitted('poisson', {'mu': 1.0})
    with pytest.raises(AttributeError):
        result.params = ()
    assert isinstance(result.params, tuple)


def test_get_family_dispatch():
    assert isinstance(families.get_family('nb'), families.NegativeBinomial)
    assert isinstance(families.get_family('zip'),
                      families.ZeroInflatedPoisson)
    with pytest.raises(NotImplementedError):
        families.get_family('zinb')
    with pytest.raises(ValueError, match="Unsupported family"):
        families.get_family('lognormal')


def test_nb_fit_on_equidispersed_genes_reaches_poisson_limit():
    rng = np.random.default_rng(6)
    model = families.NegativeBinomial()
    for x in rng.poisson(5, size=(20, 200)):
        result = model.fit(x)
        assert isinstance(result, families.Fitted)
        assert result['mu'] == pytest.approx(x.mean(), rel=0.01)
        assert 5 < result['size'] <= model.max_size


def test_nb_fit_on_underdispersed_gene_uses_size_bound():
    x = np.array([4, 5, 5, 6, 5, 4, 6, 5], dtype=float)
    result = families.NegativeBinomial(max_size=1e5).fit(x)
    assert isinstance(result, families.Fitted)
    assert result['size'] == 1e5
    assert result['mu'] == pytest.approx(5.0)
