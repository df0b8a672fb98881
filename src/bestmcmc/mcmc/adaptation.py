"""
Warm-up Adaptation.

Stan-style windowed adaptation of the step size and diagonal mass matrix:
- dual_averaging_init / dual_averaging_update: Nesterov dual averaging of log step size
- WelfordVariance: Streaming per-coordinate variance
- build_adaptation_schedule: Slow (mass matrix) windows inside the warm-up
- find_reasonable_step_size: Doubling/halving heuristic for a starting step size
- WindowedAdaptation: Per-chain controller driven by the chain runner

Warm-up layout (W iterations):

    | init buffer (75) | slow windows 25, 50, 100, ... | term buffer (50) |

The step size adapts at every warm-up iteration. The inverse mass matrix
is set to the regularized sample variance of each slow window at its end,
after which the step size search and dual averaging restart. When W is
too short for the default buffers the split becomes 15% / 75% / 10%;
below 20 iterations only the step size adapts.
"""

from functools import partial
from typing import List, NamedTuple, Tuple

import jax
import jax.numpy as jnp
import jax.random as random
import numpy as np

from .integrator import kinetic_energy, leapfrog
from .types import HMCState, IntegratorState

import logging
logger = logging.getLogger('bestmcmc')

# Dual averaging constants (Hoffman & Gelman 2014, Stan defaults)
DA_GAMMA = 0.05
DA_T0 = 10.0
DA_KAPPA = 0.75

INIT_BUFFER = 75
TERM_BUFFER = 50
BASE_WINDOW = 25
MIN_ADAPT_WARMUP = 20

# Stan's step size heuristic targets this acceptance for a single leapfrog step
HEURISTIC_ACCEPT = 0.8
MIN_STEP_SIZE = 1e-10
MAX_STEP_SIZE = 1e7


# =============================================================================
# DUAL AVERAGING
# =============================================================================

class DualAveragingState(NamedTuple):
    log_step_size: float
    log_step_size_avg: float
    h_bar: float
    mu: float
    count: int


def dual_averaging_init(step_size: float) -> DualAveragingState:
    """Start dual averaging around mu = log(10 * step_size)."""
    return DualAveragingState(
        log_step_size=float(np.log(step_size)),
        log_step_size_avg=0.0,
        h_bar=0.0,
        mu=float(np.log(10.0 * step_size)),
        count=0,
    )


def dual_averaging_update(state: DualAveragingState, accept_stat: float,
                          target_accept: float) -> DualAveragingState:
    """
    One dual averaging step.

    A non-finite accept_stat counts as zero acceptance.
    """
    if not np.isfinite(accept_stat):
        accept_stat = 0.0
    t = state.count + 1
    eta = 1.0 / (t + DA_T0)
    h_bar = (1.0 - eta) * state.h_bar + eta * (target_accept - accept_stat)
    log_step_size = state.mu - np.sqrt(t) / DA_GAMMA * h_bar
    weight = t ** (-DA_KAPPA)
    log_step_size_avg = weight * log_step_size + (1.0 - weight) * state.log_step_size_avg
    return DualAveragingState(
        log_step_size=float(log_step_size),
        log_step_size_avg=float(log_step_size_avg),
        h_bar=float(h_bar),
        mu=state.mu,
        count=t,
    )


# =============================================================================
# MASS MATRIX
# =============================================================================

class WelfordVariance:
    """Streaming mean/variance per coordinate (Welford's algorithm)."""

    def __init__(self, dim: int):
        self.dim = dim
        self.reset()

    def reset(self):
        self.n = 0
        self.mean = np.zeros(self.dim)
        self.m2 = np.zeros(self.dim)

    def update(self, x):
        x = np.asarray(x, dtype=np.float64)
        self.n += 1
        delta = x - self.mean
        self.mean = self.mean + delta / self.n
        self.m2 = self.m2 + delta * (x - self.mean)

    def variance(self, regularize: bool = True) -> np.ndarray:
        """
        Sample variance, shrunk towards 1e-3 as in Stan:
        (n / (n + 5)) * var + 1e-3 * 5 / (n + 5)
        """
        if self.n < 2:
            raise ValueError("Need at least two samples for a variance estimate")
        var = self.m2 / (self.n - 1)
        if regularize:
            n = self.n
            var = (n / (n + 5.0)) * var + 1e-3 * (5.0 / (n + 5.0))
        return var


def build_adaptation_schedule(num_warmup: int,
                              init_buffer: int = INIT_BUFFER,
                              term_buffer: int = TERM_BUFFER,
                              base_window: int = BASE_WINDOW) -> List[Tuple[int, int]]:
    """
    Slow adaptation windows as (start, end) iteration ranges, end exclusive.

    Windows double in size; the last one is stretched to the start of the
    terminal buffer when the next doubling would not fit.

    Returns:
        List of windows, empty when num_warmup < 20
    """
    if num_warmup < MIN_ADAPT_WARMUP:
        return []

    if init_buffer + base_window + term_buffer > num_warmup:
        init_buffer = int(0.15 * num_warmup)
        term_buffer = int(0.1 * num_warmup)
        base_window = num_warmup - (init_buffer + term_buffer)

    end_slow = num_warmup - term_buffer
    windows = []
    start = init_buffer
    size = base_window
    while start < end_slow:
        end = start + size
        if end + 2 * size > end_slow:
            end = end_slow
        windows.append((start, end))
        start = end
        size *= 2
    return windows


# =============================================================================
# STEP SIZE HEURISTIC
# =============================================================================

@partial(jax.jit, static_argnames=('log_density_fn',))
def _one_step_log_accept(key, state: HMCState, data, step_size, inv_mass, *, log_density_fn):
    """H(start) - H(after one leapfrog step) with freshly drawn momentum."""
    dtype = state.position.dtype
    momentum = random.normal(key, state.position.shape, dtype=dtype) / jnp.sqrt(inv_mass)
    start = IntegratorState(state.position, momentum, state.potential_energy, state.potential_grad)
    end = leapfrog(start, step_size, inv_mass, data, log_density_fn)
    h0 = state.potential_energy + kinetic_energy(inv_mass, momentum)
    h1 = end.potential_energy + kinetic_energy(inv_mass, end.momentum)
    return h0 - h1


def find_reasonable_step_size(key, state: HMCState, data, inv_mass, step_size: float,
                              log_density_fn, max_iter: int = 100) -> float:
    """
    Double or halve step_size until the one-step acceptance crosses 0.8.

    Follows Stan's init_stepsize: the search direction is fixed by the
    first evaluation and momentum is resampled every trial.

    Returns:
        Step size clipped to [1e-10, 1e7]
    """
    log_target = np.log(HEURISTIC_ACCEPT)
    inv_mass = jnp.asarray(inv_mass, dtype=state.position.dtype)

    def _log_accept(k, eps):
        value = float(_one_step_log_accept(k, state, data, eps, inv_mass, log_density_fn=log_density_fn))
        return value if np.isfinite(value) else -np.inf

    key, subkey = random.split(key)
    direction = 1 if _log_accept(subkey, step_size) > log_target else -1

    for _ in range(max_iter):
        key, subkey = random.split(key)
        log_accept = _log_accept(subkey, step_size)
        if direction == 1 and not log_accept > log_target:
            break
        if direction == -1 and not log_accept < log_target:
            break
        step_size = step_size * 2.0 if direction == 1 else step_size * 0.5
        if step_size > MAX_STEP_SIZE or step_size < MIN_STEP_SIZE:
            logger.warning(f"Step size search left [{MIN_STEP_SIZE}, {MAX_STEP_SIZE}]; posterior may be improper")
            break

    return float(np.clip(step_size, MIN_STEP_SIZE, MAX_STEP_SIZE))


# =============================================================================
# WARM-UP CONTROLLER
# =============================================================================

class WindowedAdaptation:
    """
    Warm-up state of one chain.

    The chain runner calls update() after every warm-up draw; a True return
    means the mass matrix just changed and the caller should re-run the
    step size heuristic and pass the result to restart().
    """

    def __init__(self, num_warmup: int, dim: int, step_size: float, target_accept: float,
                 adapt_mass_matrix: bool = True):
        self.num_warmup = num_warmup
        self.target_accept = target_accept
        self.windows = build_adaptation_schedule(num_warmup) if adapt_mass_matrix else []
        self.inv_mass = np.ones(dim)
        self.step_size = float(step_size)
        self.da_state = dual_averaging_init(self.step_size)
        self.welford = WelfordVariance(dim)
        self.num_mass_updates = 0

    def _window_end(self, iteration: int):
        for start, end in self.windows:
            if start <= iteration < end:
                return end
        return None

    def update(self, iteration: int, position, accept_stat: float) -> bool:
        self.da_state = dual_averaging_update(self.da_state, accept_stat, self.target_accept)
        self.step_size = float(np.exp(self.da_state.log_step_size))

        window_end = self._window_end(iteration)
        if window_end is None:
            return False

        self.welford.update(position)
        if iteration == window_end - 1 and self.welford.n >= 2:
            self.inv_mass = self.welford.variance(regularize=True)
            self.welford.reset()
            self.num_mass_updates += 1
            return True
        return False

    def restart(self, step_size: float):
        """Reset dual averaging around a new starting step size."""
        self.step_size = float(step_size)
        self.da_state = dual_averaging_init(self.step_size)

    def finalize(self) -> Tuple[float, np.ndarray]:
        """Freeze the step size at the dual averaging iterate average."""
        if self.da_state.count > 0:
            self.step_size = float(np.exp(self.da_state.log_step_size_avg))
        return self.step_size, self.inv_mass
