"""
Pytest configuration and shared fixtures for bestmcmc tests.
"""

# bestmcmc must be imported before jax so double precision is enabled
import bestmcmc  # noqa: F401

import pytest
import numpy as np
import jax.numpy as jnp

from bestmcmc.data import Dataset
from bestmcmc.registry import register_posterior, _REGISTRY
from bestmcmc.mcmc.types import PosteriorSamples, SAMPLE_STATS, flat_param_names
from bestmcmc import test_posteriors


def generate_two_group_data(n_per_group=100, mu=(0.0, 0.0), sd=(1.0, 1.0), seed=42, df=None):
    """
    Synthetic outcomes for len(mu) groups.

    Args:
        n_per_group: Observations per group
        mu: Group means
        sd: Group standard deviations
        seed: numpy seed
        df: If given, draw Student-t noise with this many degrees of freedom

    Returns:
        (outcome, group_id) with 1-based group labels
    """
    rng = np.random.default_rng(seed)
    outcome = []
    group_id = []
    for g, (m, s) in enumerate(zip(mu, sd)):
        if df is None:
            noise = rng.standard_normal(n_per_group)
        else:
            noise = rng.standard_t(df, n_per_group)
        outcome.append(m + s * noise)
        group_id.append(np.full(n_per_group, g + 1))
    return np.concatenate(outcome), np.concatenate(group_id)


@pytest.fixture
def rng_seed():
    """Default RNG seed for reproducible tests."""
    return 42


@pytest.fixture
def fast_mcmc_config():
    """Short run used by most sampling tests."""
    return {
        'num_chains': 2,
        'num_draws': 400,
        'num_warmup': 200,
        'rng_seed': 7,
    }


@pytest.fixture
def small_dataset():
    """Two groups of 30 observations with a clear location difference."""
    outcome, group_id = generate_two_group_data(30, mu=(0.0, 2.0), sd=(1.0, 1.5), seed=3)
    return Dataset.from_arrays(outcome, group_id)


@pytest.fixture
def three_group_dataset():
    outcome, group_id = generate_two_group_data(40, mu=(0.0, 1.0, -1.0), sd=(1.0, 1.0, 2.0), seed=11)
    return Dataset.from_arrays(outcome, group_id)


@pytest.fixture
def register_test_posteriors():
    """
    Fixture to register test posteriors and clean up after test.

    Usage:
        def test_something(register_test_posteriors):
            # Test posteriors are now registered
            ...
    """
    # Save any existing registrations
    original_registrations = {}
    for name, config in test_posteriors.TEST_POSTERIORS.items():
        if name in _REGISTRY:
            original_registrations[name] = _REGISTRY.pop(name)
        register_posterior(name, config)

    yield  # Run the test

    # Restore original registry state
    for name in test_posteriors.TEST_POSTERIORS.keys():
        _REGISTRY.pop(name, None)
        if name in original_registrations:
            _REGISTRY[name] = original_registrations[name]


@pytest.fixture
def make_samples():
    """
    Factory building PosteriorSamples from a (n_draws, n_chains, n_params) array.

    Usage:
        samples = make_samples(history, (('x', 2), ('y', None)), diverging=mask)
    """
    def _make(history, param_spec, diverging=None, energy=None, tree_depth=None,
              algorithm='nuts', cancelled=False):
        history = np.asarray(history, dtype=np.float64)
        n_draws, n_chains, n_params = history.shape
        if diverging is None:
            diverging = np.zeros((n_draws, n_chains), dtype=bool)
        if energy is None:
            energy = np.random.default_rng(0).standard_normal((n_draws, n_chains))
        if tree_depth is None:
            tree_depth = np.full((n_draws, n_chains), 3)

        stats = []
        for c in range(n_chains):
            chain_stats = {
                'accept_stat': np.full(n_draws, 0.8),
                'step_size': np.full(n_draws, 0.5),
                'tree_depth': np.asarray(tree_depth[:, c]),
                'num_steps': 2 ** np.asarray(tree_depth[:, c]),
                'diverging': np.asarray(diverging[:, c], dtype=bool),
                'nonfinite': np.zeros(n_draws, dtype=bool),
                'energy': np.asarray(energy[:, c], dtype=np.float64),
            }
            assert tuple(chain_stats) == SAMPLE_STATS
            stats.append(chain_stats)

        return PosteriorSamples(
            chain_draws=tuple(history[:, c, :] for c in range(n_chains)),
            unconstrained=tuple(history[:, c, :] for c in range(n_chains)),
            sample_stats=tuple(stats),
            step_sizes=np.full(n_chains, 0.5),
            inv_mass=np.ones((n_chains, n_params)),
            param_names=flat_param_names(param_spec),
            param_spec=tuple(param_spec),
            num_warmup=0,
            algorithm=algorithm,
            cancelled=cancelled,
        )

    return _make


@pytest.fixture
def gaussian_data():
    """GaussianData for calling the test posterior's density directly."""
    return test_posteriors.GaussianData(
        jnp.asarray(test_posteriors.GAUSSIAN_MEAN), jnp.asarray(test_posteriors.GAUSSIAN_SD)
    )
