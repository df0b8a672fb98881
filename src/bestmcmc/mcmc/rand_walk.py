"""
Random Walk Metropolis Transition (fallback sampler)

Gaussian random walk on the unconstrained space, preconditioned by the
adapted diagonal variance:

Proposal: z' ~ N(z, step_size^2 * diag(inv_mass))

Hastings ratio: 0 (symmetric proposal, q(z'|z) = q(z|z'))

The kernel shares the NUTS interface (HMCState in, (HMCState, NUTSInfo)
out) so the chain runner, warm-up and diagnostics treat both samplers the
same way. Its step size is tuned by the same dual averaging, towards the
0.234 acceptance rate that is optimal for random-walk proposals. It mixes
far more slowly than NUTS and is only meant as a robustness fallback.
"""

from functools import partial

import jax
import jax.numpy as jnp
import jax.random as random
import numpy as np

from .integrator import potential_and_grad
from .types import HMCState, NUTSInfo

# Optimal acceptance rate for random-walk proposals in moderate dimension
RWM_TARGET_ACCEPT = 0.234


def rwm_initial_step_size(dim):
    """Roberts-Gelman-Gilks scaling 2.38 / sqrt(d)."""
    return float(2.38 / np.sqrt(dim))


@partial(jax.jit, static_argnames=('log_density_fn', 'max_tree_depth'))
def rwm_transition(key, state: HMCState, data, step_size, inv_mass, max_delta_energy, *,
                   log_density_fn, max_tree_depth=None):
    """
    One random-walk Metropolis draw.

    max_delta_energy flags a proposal as divergent when its log-density drop
    exceeds the threshold; max_tree_depth is unused and only kept so the
    kernel can be swapped for nuts_transition.

    Returns:
        (new_state, info) with tree_depth 0 and num_steps 1
    """
    del max_tree_depth  # Unused
    proposal_key, accept_key = random.split(key)
    dtype = state.position.dtype

    noise = random.normal(proposal_key, shape=state.position.shape, dtype=dtype)
    proposal = state.position + step_size * jnp.sqrt(inv_mass) * noise

    potential, grad = potential_and_grad(log_density_fn, proposal, data)
    nonfinite = ~jnp.isfinite(potential) | ~jnp.all(jnp.isfinite(grad))
    delta = potential - state.potential_energy
    delta = jnp.where(jnp.isnan(delta) | nonfinite, jnp.inf, delta)

    accept_prob = jnp.minimum(1.0, jnp.exp(-delta))
    accepted = random.uniform(accept_key, dtype=dtype) < accept_prob

    new_state = HMCState(
        position=jnp.where(accepted, proposal, state.position),
        potential_energy=jnp.where(accepted, potential, state.potential_energy),
        potential_grad=jnp.where(accepted, grad, state.potential_grad),
    )
    info = NUTSInfo(
        accept_stat=accept_prob.astype(dtype),
        tree_depth=jnp.zeros((), dtype=jnp.int32),
        num_steps=jnp.ones((), dtype=jnp.int32),
        diverging=delta > max_delta_energy,
        nonfinite=nonfinite,
        energy=new_state.potential_energy,
    )
    return new_state, info
