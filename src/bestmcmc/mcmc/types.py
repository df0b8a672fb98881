"""
MCMC Data Structures and Type Definitions.

This module contains the core data structures used by the MCMC backend:
- IntegratorState: Position/momentum pair with cached potential and gradient
- HMCState: Per-chain state carried between transitions
- TreeState: Carry of the iterative NUTS tree builder
- NUTSInfo: Per-draw sampler statistics
- RunParams: Immutable run parameters for JAX static arguments
- ChainResult: Output of one chain worker
- PosteriorSamples: Retained draws of every chain plus sampler statistics
"""

from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Tuple

import jax.numpy as jnp
import numpy as np


# Per-draw statistics recorded for every chain, in this order
SAMPLE_STATS = (
    'accept_stat',
    'step_size',
    'tree_depth',
    'num_steps',
    'diverging',
    'nonfinite',
    'energy',
)


class IntegratorState(NamedTuple):
    """Leapfrog state. potential_energy is -log_density(position)."""
    position: jnp.ndarray
    momentum: jnp.ndarray
    potential_energy: jnp.ndarray
    potential_grad: jnp.ndarray


class HMCState(NamedTuple):
    """Chain state between transitions (momentum is resampled each draw)."""
    position: jnp.ndarray
    potential_energy: jnp.ndarray
    potential_grad: jnp.ndarray


class TreeState(NamedTuple):
    """
    Carry of the iterative tree builder.

    z/r/grad _left and _right are the trajectory endpoints; the _proposal
    fields hold the multinomially selected point. log_weight is the log of
    the summed leaf weights exp(-delta_energy), r_sum the summed momenta
    used by the generalized U-turn criterion.
    """
    z_left: jnp.ndarray
    r_left: jnp.ndarray
    grad_left: jnp.ndarray
    z_right: jnp.ndarray
    r_right: jnp.ndarray
    grad_right: jnp.ndarray
    z_proposal: jnp.ndarray
    potential_proposal: jnp.ndarray
    grad_proposal: jnp.ndarray
    energy_proposal: jnp.ndarray
    depth: jnp.ndarray
    log_weight: jnp.ndarray
    r_sum: jnp.ndarray
    turning: jnp.ndarray
    diverging: jnp.ndarray
    nonfinite: jnp.ndarray
    sum_accept_probs: jnp.ndarray
    num_proposals: jnp.ndarray


class NUTSInfo(NamedTuple):
    """Statistics of a single transition (shared by the NUTS and RWM kernels)."""
    accept_stat: jnp.ndarray
    tree_depth: jnp.ndarray
    num_steps: jnp.ndarray
    diverging: jnp.ndarray
    nonfinite: jnp.ndarray
    energy: jnp.ndarray


@dataclass(frozen=True)
class RunParams:
    """
    Immutable run parameters.

    Frozen so the values that shape the compiled kernels (tree depth) can be
    handed to jax.jit as static arguments.
    """
    NUM_CHAINS: int
    NUM_DRAWS: int
    NUM_WARMUP: int
    MAX_TREE_DEPTH: int
    MAX_DELTA_ENERGY: float
    TARGET_ACCEPT: float
    ALGORITHM: str = 'nuts'
    ADAPT_MASS_MATRIX: bool = True
    INIT_STEP_SIZE: Optional[float] = None

    @property
    def NUM_SAMPLES(self) -> int:
        """Retained draws per chain."""
        return self.NUM_DRAWS - self.NUM_WARMUP


@dataclass
class ChainResult:
    """Everything one chain worker hands back to the orchestrator."""
    chain_id: int
    draws: np.ndarray                 # (n, dim) unconstrained, post-warm-up
    stats: Dict[str, np.ndarray]      # SAMPLE_STATS -> (n,)
    step_size: float
    inv_mass: np.ndarray              # (dim,)
    num_warmup_done: int
    cancelled: bool = False
    warmup_divergences: int = 0


@dataclass(frozen=True)
class PosteriorSamples:
    """
    Retained draws of every chain.

    Chains normally share the same length. After a cancelled run they may
    differ; chain_draws keeps every chain as returned, history truncates to
    the shortest one.

    Attributes:
        chain_draws: Per chain, constrained draws (n_c, n_params) laid out as
            param_names
        unconstrained: Per chain, unconstrained draws (n_c, dim)
        sample_stats: Per chain, dict of per-draw statistics (see SAMPLE_STATS)
        step_sizes: Adapted step size per chain
        inv_mass: Adapted diagonal inverse mass matrix per chain (n_chains, dim)
        param_names: Flat names, e.g. ('alpha[1]', 'alpha[2]', 'gamma[1]', ...)
        param_spec: Ordered (name, size) pairs, size None for scalars
        num_warmup: Warm-up iterations discarded per chain
        algorithm: 'nuts' or 'rwm'
        cancelled: True if the run was stopped early
    """
    chain_draws: Tuple[np.ndarray, ...]
    unconstrained: Tuple[np.ndarray, ...]
    sample_stats: Tuple[Dict[str, np.ndarray], ...]
    step_sizes: np.ndarray
    inv_mass: np.ndarray
    param_names: Tuple[str, ...]
    param_spec: Tuple[Tuple[str, Optional[int]], ...]
    num_warmup: int
    algorithm: str = 'nuts'
    cancelled: bool = False

    @property
    def num_chains(self) -> int:
        return len(self.chain_draws)

    @property
    def draws_per_chain(self) -> List[int]:
        return [int(d.shape[0]) for d in self.chain_draws]

    @property
    def history(self) -> np.ndarray:
        """Constrained draws as (n_draws, n_chains, n_params), truncated to the shortest chain."""
        n = min(self.draws_per_chain) if self.chain_draws else 0
        return np.stack([d[:n] for d in self.chain_draws], axis=1)

    def _slices(self) -> Dict[str, Tuple[int, Optional[int]]]:
        out = {}
        offset = 0
        for name, size in self.param_spec:
            out[name] = (offset, size)
            offset += 1 if size is None else size
        return out

    def get(self, name: str) -> np.ndarray:
        """
        Draws of one named parameter block.

        Returns:
            (n_draws, n_chains) for scalars, (n_draws, n_chains, size) for vectors
        """
        slices = self._slices()
        if name not in slices:
            raise KeyError(f"Unknown parameter '{name}'. Available: {list(slices)}")
        offset, size = slices[name]
        history = self.history
        if size is None:
            return history[:, :, offset]
        return history[:, :, offset:offset + size]

    def stat(self, name: str) -> np.ndarray:
        """Per-draw sampler statistic as (n_draws, n_chains), truncated like history."""
        if name not in SAMPLE_STATS:
            raise KeyError(f"Unknown sampler statistic '{name}'. Available: {list(SAMPLE_STATS)}")
        n = min(self.draws_per_chain) if self.chain_draws else 0
        return np.stack([s[name][:n] for s in self.sample_stats], axis=1)

    def num_divergent(self) -> int:
        return int(sum(np.sum(s['diverging']) for s in self.sample_stats))


def flat_param_names(param_spec) -> Tuple[str, ...]:
    """Expand (name, size) pairs into 1-based component names."""
    names = []
    for name, size in param_spec:
        if size is None:
            names.append(name)
        else:
            names.extend(f"{name}[{i + 1}]" for i in range(size))
    return tuple(names)
