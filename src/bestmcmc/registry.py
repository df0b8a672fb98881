"""
Posterior Registration System

This module provides a registry for posterior models that can be used with the MCMC backend.
Models register themselves via register_posterior(), and the backend retrieves them via get_posterior().

Example usage:
    from bestmcmc import register_posterior

    register_posterior('my_model', {
        'log_density': my_log_density,        # fn(z, data) -> scalar
        'model_data': my_model_data,          # fn(dataset) -> pytree of arrays
        'initial_vector': my_init_fn,         # fn(key, num_chains, data, user_config) -> (C, dim)
        'constrain': my_constrain,            # fn(z, data) -> (..., n_params)
        'param_spec': my_param_spec,          # fn(dim) -> ((name, size or None), ...)
        # optional:
        'unconstrain': my_unconstrain,        # fn(params_dict, data) -> (dim,)
    })
"""

_REGISTRY = {}

REQUIRED_KEYS = ['log_density', 'model_data', 'initial_vector', 'constrain', 'param_spec']


def register_posterior(name, config):
    """
    Register a posterior model with the MCMC system.

    Args:
        name: Unique model identifier string (e.g., 'robust_ttest')
        config: Dict containing model functions with keys:

            Required:
                log_density: fn(z, data) -> scalar
                    Unnormalized log density on the unconstrained space,
                    Jacobian correction included. Must be a module-level
                    function: it is a static argument of the jitted kernels.

                model_data: fn(dataset) -> pytree
                    Converts the caller's dataset into JAX arrays.

                initial_vector: fn(key, num_chains, data, user_config) -> array
                    Returns unconstrained starting points, shape (num_chains, dim).

                constrain: fn(z, data) -> array
                    Maps unconstrained draws (..., dim) to the reported
                    parameter vector (..., n_params), derived quantities included.

                param_spec: fn(dim) -> tuple
                    Ordered (name, size) pairs describing constrain()'s output;
                    size None marks a scalar.

            Optional:
                unconstrain: fn(params, data) -> array
                    Maps a dict of constrained values to an unconstrained vector
                    (used for caller-supplied starting points).

    Raises:
        ValueError: If required keys are missing or name is already registered.
    """
    if name in _REGISTRY:
        raise ValueError(f"Posterior '{name}' is already registered")

    missing = [k for k in REQUIRED_KEYS if k not in config]
    if missing:
        raise ValueError(f"Missing required keys for posterior '{name}': {missing}")

    _REGISTRY[name] = config


def get_posterior(name):
    """
    Get a registered posterior configuration by name.

    Raises:
        KeyError: If the posterior is not registered
    """
    if name not in _REGISTRY:
        available = list(_REGISTRY.keys())
        raise KeyError(f"Unknown posterior '{name}'. Available: {available}")
    return _REGISTRY[name]


def list_posteriors():
    """List all registered posterior names."""
    return list(_REGISTRY.keys())


def unregister_posterior(name):
    """Remove a registered posterior. Primarily for testing."""
    _REGISTRY.pop(name, None)
