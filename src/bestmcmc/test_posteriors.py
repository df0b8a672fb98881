"""
Test Posteriors - Models with Analytical Solutions

This module contains simple posteriors used for testing the MCMC backend.
Their moments are known exactly, allowing us to verify sampler correctness
independently of the robust t-test model.

DO NOT import this module in production sampling code.
These models are for testing/validation only.
"""

from typing import NamedTuple

import numpy as np
import jax.numpy as jnp
import jax.random as random
import jax.scipy.stats as stats

from .registry import register_posterior, unregister_posterior


# ============================================================================
# DIAGONAL GAUSSIAN - Badly scaled, tests mass matrix adaptation
# ============================================================================

GAUSSIAN_MEAN = np.array([1.0, -2.0, 0.5])
GAUSSIAN_SD = np.array([1.0, 3.0, 0.2])


class GaussianData(NamedTuple):
    mean: jnp.ndarray
    sd: jnp.ndarray


def gaussian_model_data(dataset):
    """The dataset is ignored; the target is fixed."""
    del dataset
    return GaussianData(jnp.asarray(GAUSSIAN_MEAN), jnp.asarray(GAUSSIAN_SD))


def gaussian_log_density(z, data):
    """
    Independent normals.

    Model:
        z[i] ~ Normal(mean[i], sd[i])
    """
    return jnp.sum(stats.norm.logpdf(z, data.mean, data.sd))


def gaussian_initial_vector(key, num_chains, data, user_config):
    radius = user_config.get('init_radius', 2.0)
    return random.uniform(key, (num_chains, data.mean.shape[0]), dtype=data.mean.dtype,
                          minval=-radius, maxval=radius)


def gaussian_constrain(z, data=None):
    return jnp.asarray(z)


def gaussian_param_spec(dim):
    return (('x', dim),)


# ============================================================================
# STUDENT-T - Heavy tails
# ============================================================================

STUDENT_DF = 5.0


def student_log_density(z, data):
    """Two independent Student-t(5) coordinates centred at data.mean[:2]."""
    return jnp.sum(stats.t.logpdf(z, STUDENT_DF, data.mean[:2], 1.0))


def student_initial_vector(key, num_chains, data, user_config):
    return random.uniform(key, (num_chains, 2), dtype=data.mean.dtype, minval=-1.0, maxval=1.0)


# ============================================================================
# REGISTRATION
# ============================================================================

TEST_POSTERIORS = {
    'test_gaussian': {
        'log_density': gaussian_log_density,
        'model_data': gaussian_model_data,
        'initial_vector': gaussian_initial_vector,
        'constrain': gaussian_constrain,
        'param_spec': gaussian_param_spec,
    },
    'test_student': {
        'log_density': student_log_density,
        'model_data': gaussian_model_data,
        'initial_vector': student_initial_vector,
        'constrain': gaussian_constrain,
        'param_spec': gaussian_param_spec,
    },
}


def register_test_posteriors():
    for name, config in TEST_POSTERIORS.items():
        unregister_posterior(name)
        register_posterior(name, config)


def unregister_test_posteriors():
    for name in TEST_POSTERIORS:
        unregister_posterior(name)
