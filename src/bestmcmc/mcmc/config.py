"""
MCMC Configuration and Initialization.

This module handles setting up and validating MCMC configurations:
- configure_mcmc_system: Main configuration entry point
- initialize_chains: Finite unconstrained starting point for every chain
- gen_rng_keys: Generate JAX random keys

Configuration is split into three parts:
- user_config: Plain dict of validated user values (no JAX objects)
- runtime_ctx: JAX-dependent objects that exist only during execution
- model_ctx: Functions looked up from the posterior registry

All config keys use lowercase with underscores (e.g., 'num_chains', 'posterior_id').
"""

from typing import Any, Dict, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp
import jax.random as random
import numpy as np

from ..error_handling import (
    ConfigurationError,
    InvalidInput,
    NumericalInstability,
    validate_mcmc_config,
)
from ..registry import get_posterior
from .nuts import init_hmc_state
from .types import RunParams
from .utils import clean_config

import logging
logger = logging.getLogger('bestmcmc')

MAX_INIT_ATTEMPTS = 100


def gen_rng_keys(rng_seed: int, num_chains: int) -> Tuple[Any, Any]:
    """Generate JAX random keys from seed.

    Returns:
        (init_key, chain_keys): init_key for starting points, chain_keys of
        shape (num_chains, 2), one independent stream per chain
    """
    mkey = jax.random.PRNGKey(rng_seed)
    init_key, chain_master = random.split(mkey, 2)
    chain_keys = random.split(chain_master, num_chains)
    return init_key, chain_keys


def configure_mcmc_system(
    mcmc_config: Optional[Dict[str, Any]],
    dataset,
) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
    """
    Configure the MCMC system from config and data.

    Args:
        mcmc_config: Input configuration dict (missing keys get defaults)
        dataset: Validated Dataset

    Returns:
        user_config: Clean, validated config dict
        runtime_ctx: Dict with JAX keys, dtype, model data and run_params
        model_ctx: Dict with the posterior's functions

    Raises:
        ConfigurationError: If the configuration is invalid or names an
            unknown posterior
    """
    user_config = clean_config(mcmc_config)
    validate_mcmc_config(user_config)

    try:
        posterior = get_posterior(user_config['posterior_id'])
    except KeyError as e:
        raise ConfigurationError(str(e)) from e

    # Configure JAX precision
    use_double = user_config['use_double']
    jax.config.update("jax_enable_x64", use_double)
    jnp_float_dtype = jnp.float64 if use_double else jnp.float32

    num_warmup = user_config['num_warmup']
    if 0 < num_warmup < 20:
        logger.warning(f"num_warmup={num_warmup} is too short for mass matrix adaptation; "
                       f"only the step size will be adapted")
    elif num_warmup == 0:
        logger.warning("num_warmup=0: no adaptation, draws start at the initial point")

    algorithm = user_config['algorithm']
    if algorithm == 'rwm':
        logger.warning("Using random-walk Metropolis fallback: expect much lower "
                       "effective sample sizes than with NUTS")

    run_params = RunParams(
        NUM_CHAINS=user_config['num_chains'],
        NUM_DRAWS=user_config['num_draws'],
        NUM_WARMUP=num_warmup,
        MAX_TREE_DEPTH=user_config['max_tree_depth'],
        MAX_DELTA_ENERGY=float(user_config['max_delta_energy']),
        TARGET_ACCEPT=float(user_config['target_accept']),
        ALGORITHM=algorithm,
        ADAPT_MASS_MATRIX=user_config['adapt_mass_matrix'],
        INIT_STEP_SIZE=user_config['step_size'],
    )

    init_key, chain_keys = gen_rng_keys(user_config['rng_seed'], run_params.NUM_CHAINS)
    data = posterior['model_data'](dataset)

    runtime_ctx = {
        'init_key': init_key,
        'chain_keys': chain_keys,
        'jnp_float_dtype': jnp_float_dtype,
        'data': data,
        'run_params': run_params,
    }

    model_ctx = {
        'log_density_fn': posterior['log_density'],
        'initial_vector_fn': posterior['initial_vector'],
        'constrain_fn': posterior['constrain'],
        'param_spec_fn': posterior['param_spec'],
        'unconstrain_fn': posterior.get('unconstrain'),
    }

    return user_config, runtime_ctx, model_ctx


def _init_params_to_vectors(init_params, num_chains, model_ctx, data) -> np.ndarray:
    """Convert caller starting values (one dict, or one per chain) to unconstrained vectors."""
    unconstrain_fn = model_ctx['unconstrain_fn']
    if unconstrain_fn is None:
        raise ConfigurationError("This posterior does not support init_params")

    if isinstance(init_params, dict):
        init_params = [init_params] * num_chains
    if len(init_params) != num_chains:
        raise InvalidInput(
            f"init_params needs one entry per chain ({num_chains}), got {len(init_params)}"
        )

    vectors = []
    for i, params in enumerate(init_params):
        try:
            vectors.append(np.asarray(unconstrain_fn(params, data), dtype=np.float64))
        except (KeyError, ValueError) as e:
            raise InvalidInput(f"init_params for chain {i} is invalid: {e}") from e
    return np.stack(vectors)


def _is_finite_start(position, data, log_density_fn) -> bool:
    state = init_hmc_state(position, data, log_density_fn=log_density_fn)
    return bool(jnp.isfinite(state.potential_energy)) and bool(jnp.all(jnp.isfinite(state.potential_grad)))


def initialize_chains(
    user_config: Dict[str, Any],
    runtime_ctx: Dict[str, Any],
    model_ctx: Dict[str, Any],
    init_params: Optional[Union[Dict[str, Any], Sequence[Dict[str, Any]]]] = None,
) -> np.ndarray:
    """
    Starting point for every chain, with finite log density and gradient.

    Chains whose starting point is not finite are redrawn from the
    posterior's initial_vector function (up to 100 attempts each).

    Returns:
        Array of shape (num_chains, dim)

    Raises:
        InvalidInput: If init_params are malformed or outside the support
        NumericalInstability: If no finite starting point is found
    """
    num_chains = runtime_ctx['run_params'].NUM_CHAINS
    data = runtime_ctx['data']
    dtype = runtime_ctx['jnp_float_dtype']
    log_density_fn = model_ctx['log_density_fn']
    init_fn = model_ctx['initial_vector_fn']
    key = runtime_ctx['init_key']

    if init_params is not None:
        positions = _init_params_to_vectors(init_params, num_chains, model_ctx, data)
    else:
        key, subkey = random.split(key)
        positions = np.asarray(init_fn(subkey, num_chains, data, user_config), dtype=np.float64)

    positions = positions.copy()
    for chain in range(num_chains):
        attempts = 0
        while not _is_finite_start(jnp.asarray(positions[chain], dtype=dtype), data, log_density_fn):
            attempts += 1
            if attempts > MAX_INIT_ATTEMPTS:
                raise NumericalInstability(
                    f"Could not find a finite starting point for chain {chain} "
                    f"after {MAX_INIT_ATTEMPTS} attempts"
                )
            if attempts == 1:
                logger.warning(f"Chain {chain}: non-finite log density at the starting point, redrawing")
            key, subkey = random.split(key)
            positions[chain] = np.asarray(init_fn(subkey, 1, data, user_config), dtype=np.float64)[0]

    return positions
