"""
Transform Layer - constrained <-> unconstrained parameter maps.

The sampler works on an unconstrained real vector laid out as

    z = [alpha (G), log(gamma) (G), logit(nu / NU_UPPER)]

so that the positivity of the group scales and the (0, NU_UPPER] bound on
the degrees of freedom never have to be handled by the proposal. The
log-absolute-Jacobian of z -> (alpha, gamma, nu) is added to the target
density so that sampling z is equivalent to sampling the constrained
posterior:

    gamma = exp(z_g)                 log|J| = z_g
    nu    = NU_UPPER * sigmoid(z_nu) log|J| = log(NU_UPPER) + log s + log(1 - s)

All functions accept arbitrary leading (draw/chain) axes.
"""

from dataclasses import dataclass
from typing import Dict

import jax
import jax.numpy as jnp
import numpy as np

# Upper bound on the shared degrees of freedom
NU_UPPER = 100.0


@dataclass(frozen=True)
class ParamLayout:
    """Index bookkeeping for the unconstrained vector of a G-group model."""
    num_groups: int

    @classmethod
    def from_dim(cls, dim: int) -> "ParamLayout":
        if dim < 5 or (dim - 1) % 2 != 0:
            raise ValueError(f"Unconstrained dimension must be 2G + 1 with G >= 2, got {dim}")
        return cls((dim - 1) // 2)

    @property
    def dim(self) -> int:
        return 2 * self.num_groups + 1

    @property
    def alpha(self) -> slice:
        return slice(0, self.num_groups)

    @property
    def gamma(self) -> slice:
        return slice(self.num_groups, 2 * self.num_groups)

    @property
    def nu(self) -> int:
        return 2 * self.num_groups


def to_constrained(z, num_groups: int) -> Dict[str, jnp.ndarray]:
    """
    Map unconstrained vectors to model parameters.

    Args:
        z: Array of shape (..., 2G + 1)
        num_groups: G

    Returns:
        Dict with 'alpha' (..., G), 'gamma' (..., G) and 'nu' (...)
    """
    layout = ParamLayout(num_groups)
    z = jnp.asarray(z)
    return {
        'alpha': z[..., layout.alpha],
        'gamma': jnp.exp(z[..., layout.gamma]),
        'nu': NU_UPPER * jax.nn.sigmoid(z[..., layout.nu]),
    }


def to_unconstrained(alpha, gamma, nu) -> jnp.ndarray:
    """
    Inverse of to_constrained.

    Args:
        alpha: (..., G) group locations
        gamma: (..., G) positive group scales
        nu: (...) degrees of freedom in (0, NU_UPPER]

    Returns:
        Array of shape (..., 2G + 1)
    """
    alpha = jnp.asarray(alpha)
    gamma = jnp.asarray(gamma)
    nu = jnp.asarray(nu)
    z_nu = jnp.log(nu) - jnp.log(NU_UPPER - nu)
    return jnp.concatenate([alpha, jnp.log(gamma), z_nu[..., None]], axis=-1)


def log_jacobian(z, num_groups: int) -> jnp.ndarray:
    """
    log |det d(alpha, gamma, nu) / dz| for the maps above.

    The Jacobian is diagonal: 1 for alpha, gamma for each scale, and
    NU_UPPER * s * (1 - s) for nu with s = sigmoid(z_nu).
    """
    layout = ParamLayout(num_groups)
    z = jnp.asarray(z)
    z_nu = z[..., layout.nu]
    log_jac_gamma = jnp.sum(z[..., layout.gamma], axis=-1)
    log_jac_nu = jnp.log(NU_UPPER) + jax.nn.log_sigmoid(z_nu) + jax.nn.log_sigmoid(-z_nu)
    return log_jac_gamma + log_jac_nu


def flatten_constrained(params: Dict[str, jnp.ndarray]) -> jnp.ndarray:
    """Stack a constrained parameter dict into [alpha, gamma, nu] along the last axis."""
    nu = jnp.asarray(params['nu'])
    return jnp.concatenate(
        [jnp.asarray(params['alpha']), jnp.asarray(params['gamma']), nu[..., None]], axis=-1
    )


def check_constrained(alpha, gamma, nu) -> None:
    """
    Raise ValueError if a constrained point lies outside the support.

    Used when callers hand in explicit starting values.
    """
    gamma = np.asarray(gamma, dtype=np.float64)
    nu = np.asarray(nu, dtype=np.float64)
    alpha = np.asarray(alpha, dtype=np.float64)
    if not np.all(np.isfinite(alpha)):
        raise ValueError("alpha must be finite")
    if not np.all(gamma > 0) or not np.all(np.isfinite(gamma)):
        raise ValueError("gamma must be finite and > 0")
    if not np.all((nu > 0) & (nu < NU_UPPER)):
        # nu == NU_UPPER maps to an infinite unconstrained value
        raise ValueError(f"nu must lie in (0, {NU_UPPER}) for a finite starting point")
