"""
Single-Chain Engine.

This module runs one chain from its starting point to the last draw:
- run_chain: Warm-up with adaptation, then retained draws
- get_kernel: Transition function and acceptance target for an algorithm

Each draw consumes its own key split from the chain's key, so the draws of
a chain depend only on (chain key, starting point, data, configuration).
Cancellation is checked before every draw; a cancelled chain returns the
retained draws produced so far.
"""

import threading
import time
from typing import Optional

import jax.numpy as jnp
import jax.random as random
import numpy as np

from .adaptation import WindowedAdaptation, find_reasonable_step_size
from .nuts import init_hmc_state, nuts_transition
from .rand_walk import RWM_TARGET_ACCEPT, rwm_initial_step_size, rwm_transition
from .types import ChainResult, RunParams

import logging
logger = logging.getLogger('bestmcmc')

# Progress is logged this many times per chain
NUM_PROGRESS_REPORTS = 10


def get_kernel(run_params: RunParams):
    """
    Returns:
        (transition_fn, target_accept) for run_params.ALGORITHM
    """
    if run_params.ALGORITHM == 'rwm':
        return rwm_transition, RWM_TARGET_ACCEPT
    return nuts_transition, run_params.TARGET_ACCEPT


def _initial_step_size(key, state, data, dim, run_params, log_density_fn) -> float:
    if run_params.INIT_STEP_SIZE is not None:
        return float(run_params.INIT_STEP_SIZE)
    if run_params.ALGORITHM == 'rwm':
        return rwm_initial_step_size(dim)
    return find_reasonable_step_size(key, state, data, np.ones(dim), 1.0, log_density_fn)


def run_chain(
    chain_id: int,
    key,
    position,
    data,
    run_params: RunParams,
    log_density_fn,
    dtype=jnp.float64,
    cancel_event: Optional[threading.Event] = None,
) -> ChainResult:
    """
    Run one chain for run_params.NUM_DRAWS iterations.

    Args:
        chain_id: Index used in log messages and the result
        key: This chain's PRNG key
        position: Unconstrained starting point (dim,) with finite log density
        data: Model data pytree
        run_params: Frozen run parameters
        log_density_fn: fn(z, data) -> scalar, registered with the posterior
        dtype: Float dtype of the chain state
        cancel_event: Optional event; when set, the chain stops before its next draw

    Returns:
        ChainResult with the post-warm-up unconstrained draws and statistics
    """
    transition, target_accept = get_kernel(run_params)
    num_draws = run_params.NUM_DRAWS
    num_warmup = run_params.NUM_WARMUP
    max_tree_depth = run_params.MAX_TREE_DEPTH
    max_delta_energy = run_params.MAX_DELTA_ENERGY

    state = init_hmc_state(jnp.asarray(position, dtype=dtype), data, log_density_fn=log_density_fn)
    dim = int(state.position.shape[0])

    key, heuristic_key = random.split(key)
    step_size = _initial_step_size(heuristic_key, state, data, dim, run_params, log_density_fn)
    adapter = WindowedAdaptation(num_warmup, dim, step_size, target_accept,
                                 adapt_mass_matrix=run_params.ADAPT_MASS_MATRIX)
    inv_mass = adapter.inv_mass

    num_samples = run_params.NUM_SAMPLES
    draws = np.empty((num_samples, dim))
    stats = {
        'accept_stat': np.empty(num_samples),
        'step_size': np.empty(num_samples),
        'tree_depth': np.empty(num_samples, dtype=np.int64),
        'num_steps': np.empty(num_samples, dtype=np.int64),
        'diverging': np.empty(num_samples, dtype=bool),
        'nonfinite': np.empty(num_samples, dtype=bool),
        'energy': np.empty(num_samples),
    }

    report_every = max(1, num_draws // NUM_PROGRESS_REPORTS)
    warmup_divergences = 0
    n_kept = 0
    iteration = 0
    cancelled = False
    start_time = time.perf_counter()

    for iteration in range(num_draws):
        if cancel_event is not None and cancel_event.is_set():
            cancelled = True
            logger.info(f"Chain {chain_id}: cancelled at iteration {iteration}/{num_draws}")
            break

        key, draw_key = random.split(key)
        state, info = transition(
            draw_key, state, data, step_size, inv_mass, max_delta_energy,
            log_density_fn=log_density_fn, max_tree_depth=max_tree_depth,
        )

        if iteration < num_warmup:
            warmup_divergences += int(bool(info.diverging))
            mass_updated = adapter.update(iteration, np.asarray(state.position), float(info.accept_stat))
            if mass_updated:
                if run_params.ALGORITHM == 'nuts':
                    key, heuristic_key = random.split(key)
                    adapter.restart(find_reasonable_step_size(
                        heuristic_key, state, data, adapter.inv_mass, adapter.step_size, log_density_fn))
                else:
                    adapter.restart(adapter.step_size)
            step_size = adapter.step_size
            inv_mass = adapter.inv_mass
            if iteration == num_warmup - 1:
                step_size, inv_mass = adapter.finalize()
                logger.debug(
                    f"Chain {chain_id}: warm-up done, step size {step_size:.4g}, "
                    f"{adapter.num_mass_updates} mass matrix update(s), "
                    f"{warmup_divergences} warm-up divergence(s)"
                )
        else:
            draws[n_kept] = np.asarray(state.position)
            stats['accept_stat'][n_kept] = float(info.accept_stat)
            stats['step_size'][n_kept] = step_size
            stats['tree_depth'][n_kept] = int(info.tree_depth)
            stats['num_steps'][n_kept] = int(info.num_steps)
            stats['diverging'][n_kept] = bool(info.diverging)
            stats['nonfinite'][n_kept] = bool(info.nonfinite)
            stats['energy'][n_kept] = float(info.energy)
            n_kept += 1

        if (iteration + 1) % report_every == 0:
            phase = 'warm-up' if iteration < num_warmup else 'sampling'
            logger.debug(f"Chain {chain_id}: iteration {iteration + 1}/{num_draws} ({phase})")

    elapsed = time.perf_counter() - start_time
    num_warmup_done = min(num_warmup, iteration if cancelled else num_draws)
    logger.info(f"Chain {chain_id}: {n_kept} draws kept in {elapsed:.2f}s")

    return ChainResult(
        chain_id=chain_id,
        draws=draws[:n_kept],
        stats={name: values[:n_kept] for name, values in stats.items()},
        step_size=float(step_size),
        inv_mass=np.asarray(inv_mass, dtype=np.float64),
        num_warmup_done=num_warmup_done,
        cancelled=cancelled,
        warmup_divergences=warmup_divergences,
    )
