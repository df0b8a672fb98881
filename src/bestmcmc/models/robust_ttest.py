"""
Robust t-test Posterior (BEST with a shared degrees-of-freedom parameter).

Model:
    alpha[g] ~ Normal(mean(y), sd(y))              [group locations]
    gamma[g] ~ HalfCauchy(0, 1)                    [group scales]
    nu       ~ Exponential(rate = 1/29)            [shared tail weight, nu <= 100]
    y[n]     ~ StudentT(nu, alpha[g[n]], gamma[g[n]])

Generated quantities:
    mu_diff    = alpha[1] - alpha[2]
    sigma_diff = gamma[1] - gamma[2]

The sampler only ever sees log_density(), the log posterior of the
unconstrained vector (see transforms.py) including the Jacobian term.
"""

from typing import NamedTuple

import numpy as np
import jax.numpy as jnp
import jax.random as random
import jax.scipy.stats as stats

from ..data import Dataset
from ..registry import register_posterior, list_posteriors
from ..transforms import (
    NU_UPPER,
    ParamLayout,
    to_constrained,
    to_unconstrained,
    log_jacobian,
    check_constrained,
)

POSTERIOR_ID = 'robust_ttest'

# Prior mean of nu is 1 / rate
NU_PRIOR_MEAN = 29.0
LOG_2 = float(np.log(2.0))


class ModelData(NamedTuple):
    """Traced model inputs. A NamedTuple so it passes through jit as a pytree."""
    outcome: jnp.ndarray       # (N,)
    group_idx: jnp.ndarray     # (N,) 0-based group index
    prior_mean: jnp.ndarray    # scalar
    prior_sd: jnp.ndarray      # scalar
    group_counts: jnp.ndarray  # (G,) observations per group


def make_model_data(dataset: Dataset) -> ModelData:
    """
    Convert a validated Dataset into JAX arrays.

    The alpha prior uses the sample mean and sample standard deviation
    (ddof=1) of the pooled outcome. With a single observation or no spread
    the prior scale falls back to 1.0 so the prior stays proper.
    """
    outcome = np.asarray(dataset.outcome, dtype=np.float64)
    prior_mean = float(np.mean(outcome))
    prior_sd = float(np.std(outcome, ddof=1)) if outcome.shape[0] > 1 else 0.0
    if not np.isfinite(prior_sd) or prior_sd <= 0.0:
        prior_sd = 1.0

    return ModelData(
        outcome=jnp.asarray(outcome),
        group_idx=jnp.asarray(dataset.group_index, dtype=jnp.int32),
        prior_mean=jnp.asarray(prior_mean),
        prior_sd=jnp.asarray(prior_sd),
        group_counts=jnp.asarray(dataset.group_counts()),
    )


# =============================================================================
# DENSITIES (constrained space)
# =============================================================================

def log_prior(alpha, gamma, nu, data: ModelData):
    """Sum of the prior log densities of alpha, gamma and nu."""
    lp_alpha = jnp.sum(stats.norm.logpdf(alpha, data.prior_mean, data.prior_sd))
    # Half-Cauchy = Cauchy folded at zero
    lp_gamma = jnp.sum(stats.cauchy.logpdf(gamma, 0.0, 1.0) + LOG_2)
    lp_nu = stats.expon.logpdf(nu, scale=NU_PRIOR_MEAN)
    return lp_alpha + lp_gamma + lp_nu


def log_likelihood(alpha, gamma, nu, data: ModelData):
    """Student-t log likelihood of every observation under its group's location and scale."""
    loc = alpha[data.group_idx]
    scale = gamma[data.group_idx]
    return jnp.sum(stats.t.logpdf(data.outcome, nu, loc, scale))


def log_posterior(alpha, gamma, nu, data: ModelData):
    """
    Unnormalized log posterior in constrained space.

    Returns -inf instead of raising for points outside the support
    (nonpositive scale, nu outside (0, NU_UPPER], non-finite values).
    """
    alpha = jnp.asarray(alpha)
    gamma = jnp.asarray(gamma)
    nu = jnp.asarray(nu)
    valid = (
        jnp.all(jnp.isfinite(alpha))
        & jnp.all(jnp.isfinite(gamma))
        & jnp.all(gamma > 0)
        & (nu > 0)
        & (nu <= NU_UPPER)
    )
    # Evaluate at a safe point when invalid so the masked branch cannot leak NaN gradients
    safe_gamma = jnp.where(valid, gamma, 1.0)
    safe_nu = jnp.where(valid, nu, 1.0)
    safe_alpha = jnp.where(valid, alpha, 0.0)
    lp = log_prior(safe_alpha, safe_gamma, safe_nu, data) + log_likelihood(safe_alpha, safe_gamma, safe_nu, data)
    return jnp.where(valid & jnp.isfinite(lp), lp, -jnp.inf)


def log_density(z, data: ModelData):
    """
    Log posterior of the unconstrained vector z (dim 2G + 1), Jacobian included.

    This is the function the samplers differentiate.
    """
    num_groups = data.group_counts.shape[0]
    params = to_constrained(z, num_groups)
    lp = (
        log_prior(params['alpha'], params['gamma'], params['nu'], data)
        + log_likelihood(params['alpha'], params['gamma'], params['nu'], data)
        + log_jacobian(z, num_groups)
    )
    return jnp.where(jnp.isfinite(lp), lp, -jnp.inf)


# =============================================================================
# GENERATED QUANTITIES AND OUTPUT LAYOUT
# =============================================================================

def generated_quantities(alpha, gamma):
    """Group 1 minus group 2 differences of location and scale."""
    alpha = jnp.asarray(alpha)
    gamma = jnp.asarray(gamma)
    return {
        'mu_diff': alpha[..., 0] - alpha[..., 1],
        'sigma_diff': gamma[..., 0] - gamma[..., 1],
    }


def constrain(z, data=None):
    """
    Map unconstrained draws (..., 2G + 1) to the reported vector
    [alpha (G), gamma (G), nu, mu_diff, sigma_diff] of shape (..., 2G + 3).
    """
    z = jnp.asarray(z)
    layout = ParamLayout.from_dim(z.shape[-1])
    params = to_constrained(z, layout.num_groups)
    gq = generated_quantities(params['alpha'], params['gamma'])
    return jnp.concatenate([
        params['alpha'],
        params['gamma'],
        params['nu'][..., None],
        gq['mu_diff'][..., None],
        gq['sigma_diff'][..., None],
    ], axis=-1)


def param_spec(dim):
    """Names and sizes of constrain()'s output blocks, in order."""
    num_groups = ParamLayout.from_dim(dim).num_groups
    return (
        ('alpha', num_groups),
        ('gamma', num_groups),
        ('nu', None),
        ('mu_diff', None),
        ('sigma_diff', None),
    )


def unconstrain(params, data=None):
    """
    Map a constrained point {'alpha', 'gamma', 'nu'} to the unconstrained vector.

    Raises:
        ValueError: If the point lies outside the support
    """
    alpha = np.asarray(params['alpha'], dtype=np.float64)
    gamma = np.asarray(params['gamma'], dtype=np.float64)
    nu = np.asarray(params['nu'], dtype=np.float64)
    check_constrained(alpha, gamma, nu)
    if data is not None:
        num_groups = data.group_counts.shape[0]
        if alpha.shape[-1] != num_groups or gamma.shape[-1] != num_groups:
            raise ValueError(
                f"alpha and gamma need {num_groups} entries, got {alpha.shape[-1]} and {gamma.shape[-1]}"
            )
    return to_unconstrained(alpha, gamma, nu)


# =============================================================================
# INITIALIZATION
# =============================================================================

def initial_vector(key, num_chains, data: ModelData, user_config):
    """
    Draw one unconstrained starting point per chain.

    'uniform' (default): uniform(-r, r) around the prior centre. alpha is
    offset in prior-sd units from the pooled mean, log(gamma) from log(sd);
    the nu coordinate is uniform(-r, r) on the logit scale.
    'prior': alpha, gamma and nu drawn from their priors, with the heavy
    tails clipped so the starting point stays finite.

    Returns:
        Array of shape (num_chains, 2G + 1)
    """
    num_groups = data.group_counts.shape[0]
    radius = user_config.get('init_radius', 2.0)
    strategy = user_config.get('init_strategy', 'uniform')
    dtype = data.outcome.dtype
    k_alpha, k_gamma, k_nu = random.split(key, 3)
    shape = (num_chains, num_groups)

    if strategy == 'prior':
        alpha = data.prior_mean + data.prior_sd * random.normal(k_alpha, shape, dtype=dtype)
        gamma = jnp.clip(jnp.abs(random.cauchy(k_gamma, shape, dtype=dtype)), 1e-3, 1e3)
        nu = jnp.clip(NU_PRIOR_MEAN * random.exponential(k_nu, (num_chains,), dtype=dtype), 1e-2, 99.0)
        return to_unconstrained(alpha, gamma, nu)

    alpha = data.prior_mean + data.prior_sd * random.uniform(
        k_alpha, shape, dtype=dtype, minval=-radius, maxval=radius)
    log_gamma = jnp.log(data.prior_sd) + random.uniform(
        k_gamma, shape, dtype=dtype, minval=-radius, maxval=radius)
    z_nu = random.uniform(k_nu, (num_chains, 1), dtype=dtype, minval=-radius, maxval=radius)
    return jnp.concatenate([alpha, log_gamma, z_nu], axis=-1)


def register():
    """Register the model under POSTERIOR_ID (idempotent)."""
    if POSTERIOR_ID in list_posteriors():
        return
    register_posterior(POSTERIOR_ID, {
        'log_density': log_density,
        'model_data': make_model_data,
        'initial_vector': initial_vector,
        'constrain': constrain,
        'param_spec': param_spec,
        'unconstrain': unconstrain,
    })
