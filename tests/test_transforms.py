"""
Tests for the constrained <-> unconstrained parameter maps.

Run with: pytest tests/test_transforms.py -v
"""

import numpy as np
import jax
import jax.numpy as jnp
import pytest

from bestmcmc.transforms import (
    NU_UPPER,
    ParamLayout,
    to_constrained,
    to_unconstrained,
    log_jacobian,
    flatten_constrained,
    check_constrained,
)


# ============================================================================
# LAYOUT
# ============================================================================

class TestParamLayout:

    def test_slices_for_two_groups(self):
        layout = ParamLayout(2)
        assert layout.dim == 5
        assert layout.alpha == slice(0, 2)
        assert layout.gamma == slice(2, 4)
        assert layout.nu == 4

    def test_from_dim(self):
        assert ParamLayout.from_dim(7).num_groups == 3

    @pytest.mark.parametrize("dim", [3, 4, 6])
    def test_from_dim_rejects_bad_dimension(self, dim):
        with pytest.raises(ValueError):
            ParamLayout.from_dim(dim)


# ============================================================================
# MAPS
# ============================================================================

class TestTransforms:

    def test_round_trip(self):
        alpha = np.array([0.3, -1.2, 4.0])
        gamma = np.array([0.5, 2.0, 0.01])
        nu = 12.5
        z = to_unconstrained(alpha, gamma, nu)
        assert z.shape == (7,)

        params = to_constrained(z, 3)
        np.testing.assert_allclose(params['alpha'], alpha, rtol=1e-12)
        np.testing.assert_allclose(params['gamma'], gamma, rtol=1e-12)
        np.testing.assert_allclose(float(params['nu']), nu, rtol=1e-10)

    def test_constrained_support_for_extreme_values(self):
        """Any real z lands inside the support, even far in the tails."""
        for value in (-50.0, -5.0, 0.0, 5.0, 50.0):
            z = jnp.full(5, value)
            params = to_constrained(z, 2)
            assert np.all(np.asarray(params['gamma']) > 0)
            nu = float(params['nu'])
            assert 0.0 < nu <= NU_UPPER

    def test_zero_maps_to_unit_scale_and_half_upper(self):
        params = to_constrained(jnp.zeros(5), 2)
        np.testing.assert_allclose(params['gamma'], [1.0, 1.0])
        assert float(params['nu']) == pytest.approx(NU_UPPER / 2)

    def test_batched_leading_axes(self):
        z = jnp.asarray(np.random.default_rng(0).normal(size=(6, 3, 5)))
        params = to_constrained(z, 2)
        assert params['alpha'].shape == (6, 3, 2)
        assert params['gamma'].shape == (6, 3, 2)
        assert params['nu'].shape == (6, 3)
        assert log_jacobian(z, 2).shape == (6, 3)
        assert flatten_constrained(params).shape == (6, 3, 5)

    def test_log_jacobian_matches_autodiff(self):
        """log|det J| of z -> (alpha, gamma, nu) agrees with the autodiff Jacobian."""
        z = jnp.array([0.4, -1.0, 0.3, -0.7, 1.5, 0.2, -2.0])

        def _forward(x):
            return flatten_constrained(to_constrained(x, 3))

        jac = jax.jacfwd(_forward)(z)
        sign, logdet = np.linalg.slogdet(np.asarray(jac))
        assert sign > 0
        np.testing.assert_allclose(float(log_jacobian(z, 3)), logdet, rtol=1e-10)

    def test_log_jacobian_finite_in_tails(self):
        z = jnp.array([0.0, 0.0, 0.0, 0.0, 40.0])
        assert np.isfinite(float(log_jacobian(z, 2)))
        z = jnp.array([0.0, 0.0, 0.0, 0.0, -40.0])
        assert np.isfinite(float(log_jacobian(z, 2)))


# ============================================================================
# SUPPORT CHECKS
# ============================================================================

class TestCheckConstrained:

    def test_valid_point_passes(self):
        check_constrained([0.0, 1.0], [1.0, 2.0], 10.0)

    @pytest.mark.parametrize("gamma", [[0.0, 1.0], [-1.0, 1.0], [np.inf, 1.0]])
    def test_bad_gamma(self, gamma):
        with pytest.raises(ValueError, match="gamma"):
            check_constrained([0.0, 1.0], gamma, 10.0)

    @pytest.mark.parametrize("nu", [0.0, -3.0, NU_UPPER, 250.0])
    def test_bad_nu(self, nu):
        with pytest.raises(ValueError, match="nu"):
            check_constrained([0.0, 1.0], [1.0, 1.0], nu)

    def test_non_finite_alpha(self):
        with pytest.raises(ValueError, match="alpha"):
            check_constrained([np.nan, 1.0], [1.0, 1.0], 5.0)
