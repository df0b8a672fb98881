"""
MCMC Backend - Main Entry Point.

This module provides the main rmcmc() function for running MCMC sampling.
The implementation is split across several modules for maintainability:

- types: Data structures (RunParams, PosteriorSamples, ...)
- config: Configuration and initialization
- nuts / rand_walk: Transition kernels
- adaptation: Warm-up step size and mass matrix adaptation
- single_run: Per-chain sampling loop
- diagnostics: Convergence diagnostics
"""

import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp
import numpy as np

from ..data import Dataset
from ..error_handling import InvalidInput
from .config import configure_mcmc_system, initialize_chains
from .diagnostics import DiagnosticsReport, timed_diagnostics
from .single_run import run_chain
from .types import ChainResult, PosteriorSamples, flat_param_names

import logging
logger = logging.getLogger('bestmcmc')

__all__ = [
    'rmcmc',
]


# =============================================================================
# RMCMC HELPER FUNCTIONS
# =============================================================================

class _StopSignal:
    """Set when the caller cancels or when any chain fails."""

    def __init__(self, external: Optional[threading.Event]):
        self.external = external
        self.internal = threading.Event()

    def is_set(self) -> bool:
        return self.internal.is_set() or (self.external is not None and self.external.is_set())


def _num_workers(user_config: Dict[str, Any]) -> int:
    requested = user_config.get('num_workers') or os.cpu_count() or 1
    return max(1, min(user_config['num_chains'], requested))


def _run_chains(
    positions: np.ndarray,
    runtime_ctx: Dict[str, Any],
    model_ctx: Dict[str, Any],
    num_workers: int,
    stop: _StopSignal,
) -> List[ChainResult]:
    """
    Run every chain on a thread pool and wait for all of them.

    Results are ordered by chain index regardless of completion order. The
    first chain error stops the remaining chains and is re-raised.
    """
    run_params = runtime_ctx['run_params']
    chain_keys = runtime_ctx['chain_keys']

    def _worker(chain_id):
        try:
            return run_chain(
                chain_id,
                chain_keys[chain_id],
                positions[chain_id],
                runtime_ctx['data'],
                run_params,
                model_ctx['log_density_fn'],
                dtype=runtime_ctx['jnp_float_dtype'],
                cancel_event=stop,
            )
        except Exception:
            stop.internal.set()
            raise

    with ThreadPoolExecutor(max_workers=num_workers, thread_name_prefix='bestmcmc-chain') as pool:
        futures = [pool.submit(_worker, c) for c in range(run_params.NUM_CHAINS)]
        # Barrier: every chain finishes before diagnostics
        return [f.result() for f in futures]


def _build_samples(
    results: List[ChainResult],
    runtime_ctx: Dict[str, Any],
    model_ctx: Dict[str, Any],
    cancelled: bool,
) -> PosteriorSamples:
    """Constrain the unconstrained draws and package every chain's output."""
    data = runtime_ctx['data']
    run_params = runtime_ctx['run_params']
    dim = results[0].inv_mass.shape[0]
    param_spec = tuple(model_ctx['param_spec_fn'](dim))

    constrain_fn = model_ctx['constrain_fn']
    chain_draws = tuple(
        np.asarray(jax.device_get(constrain_fn(jnp.asarray(r.draws), data)), dtype=np.float64)
        for r in results
    )

    return PosteriorSamples(
        chain_draws=chain_draws,
        unconstrained=tuple(r.draws for r in results),
        sample_stats=tuple(r.stats for r in results),
        step_sizes=np.array([r.step_size for r in results]),
        inv_mass=np.stack([r.inv_mass for r in results]),
        param_names=flat_param_names(param_spec),
        param_spec=param_spec,
        num_warmup=run_params.NUM_WARMUP,
        algorithm=run_params.ALGORITHM,
        cancelled=cancelled or any(r.cancelled for r in results),
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def rmcmc(
    mcmc_config: Optional[Dict[str, Any]],
    dataset: Dataset,
    cancel_event: Optional[threading.Event] = None,
    init_params: Optional[Union[Dict[str, Any], Sequence[Dict[str, Any]]]] = None,
) -> Tuple[PosteriorSamples, DiagnosticsReport]:
    """
    Run MCMC sampling for a registered posterior.

    Args:
        mcmc_config: Configuration dict (see clean_config for keys and defaults)
        dataset: Validated Dataset
        cancel_event: Optional threading.Event; setting it stops every chain
            before its next draw and returns the partial draws
        init_params: Optional constrained starting point, one dict shared by
            all chains or one dict per chain

    Returns:
        samples: PosteriorSamples with the post-warm-up draws of every chain
        diagnostics: DiagnosticsReport (warnings are logged, never raised)

    Raises:
        InvalidInput: If the dataset or init_params are invalid
        ConfigurationError: If the configuration is invalid
        NumericalInstability: If no finite starting point is found
    """
    if not isinstance(dataset, Dataset):
        raise InvalidInput(f"dataset must be a Dataset, got {type(dataset).__name__}")

    logger.info("Validating MCMC configuration...")
    user_config, runtime_ctx, model_ctx = configure_mcmc_system(mcmc_config, dataset)
    run_params = runtime_ctx['run_params']

    logger.info(
        f"Starting {run_params.ALGORITHM.upper()} sampling for {user_config['posterior_id']}: "
        f"{run_params.NUM_CHAINS} chain(s) x {run_params.NUM_DRAWS} draws "
        f"({run_params.NUM_WARMUP} warm-up)"
    )
    logger.info(f"JAX backend: {jax.default_backend()}")

    positions = initialize_chains(user_config, runtime_ctx, model_ctx, init_params=init_params)

    num_workers = _num_workers(user_config)
    stop = _StopSignal(cancel_event)
    start_time = time.perf_counter()
    results = _run_chains(positions, runtime_ctx, model_ctx, num_workers, stop)
    wall_time = time.perf_counter() - start_time

    logger.info("--- MCMC Run Summary ---")
    logger.info(f"  Total Wall Time: {timedelta(seconds=int(wall_time))} ({wall_time:.2f}s)")
    logger.info(f"  Workers: {num_workers}")

    cancelled = cancel_event is not None and cancel_event.is_set()
    samples = _build_samples(results, runtime_ctx, model_ctx, cancelled)
    diagnostics = timed_diagnostics(samples, max_tree_depth=run_params.MAX_TREE_DEPTH)

    return samples, diagnostics
