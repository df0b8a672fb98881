"""
No-U-Turn Sampler transition kernel.

Multinomial NUTS with the generalized U-turn criterion:
- build_tree: Repeated trajectory doubling in a random direction
- nuts_transition: One jitted draw (momentum refresh + tree + selection)
- init_hmc_state: Potential energy and gradient at a starting point

Trees are built iteratively inside lax.while_loop. Each doubling builds a
new subtree leaf by leaf; momentum checkpoints at even leaves let every
sub-subtree be checked for a U-turn when its last (odd) leaf is added, so
the U-turn criterion is applied at every level of the binary tree without
recursion.

Leaf weights are exp(-delta_energy) with delta_energy = H(leaf) - H(start).
Inside a subtree the proposal is selected in proportion to subtree weight;
at the top level the new subtree wins with probability
min(1, w_new / w_old) (biased progressive sampling), which favours points
far from the start.

A leaf whose energy error exceeds max_delta_energy, or whose energy,
potential or gradient is non-finite, is divergent: it gets weight zero and
ends the trajectory.
"""

from functools import partial

import jax
import jax.numpy as jnp
import jax.random as random
from jax import lax

from .integrator import kinetic_energy, leapfrog, potential_and_grad
from .types import HMCState, IntegratorState, NUTSInfo, TreeState


def _select(pred, on_true, on_false):
    """Elementwise pytree select on a scalar predicate."""
    return jax.tree_util.tree_map(lambda a, b: jnp.where(pred, a, b), on_true, on_false)


def _is_turning(inv_mass, r_left, r_right, r_sum):
    """
    Generalized U-turn check between two momenta.

    r_sum includes both endpoints; half of each is removed so the criterion
    is symmetric in the two ends (Betancourt 2017, Appendix A.4.2).
    """
    v_left = inv_mass * r_left
    v_right = inv_mass * r_right
    r_sum = r_sum - 0.5 * (r_left + r_right)
    return (jnp.dot(v_left, r_sum) <= 0) | (jnp.dot(v_right, r_sum) <= 0)


def _leaf_idx_to_ckpt_idxs(n):
    """
    Checkpoint range to test when leaf n (0-based) is added to a subtree.

    idx_max: number of set bits of n >> 1, the slot of the latest checkpoint.
    num_subtrees: trailing ones of n, the number of sub-subtrees leaf n closes.
    """
    idx_max = lax.population_count(n >> 1)

    def _cond(carry):
        return (carry[0] & 1) != 0

    def _body(carry):
        return carry[0] >> 1, carry[1] + 1

    _, num_subtrees = lax.while_loop(_cond, _body, (n, jnp.zeros((), dtype=n.dtype)))
    idx_min = idx_max - num_subtrees + 1
    return idx_min, idx_max


def _is_iterative_turning(inv_mass, r, r_sum, r_ckpts, r_sum_ckpts, idx_min, idx_max):
    """Test the sub-subtrees closed by the current leaf, newest checkpoint first."""

    def _cond(carry):
        i, turning = carry
        return (i >= idx_min) & ~turning

    def _body(carry):
        i, _ = carry
        subtree_r_sum = r_sum - r_sum_ckpts[i] + r_ckpts[i]
        return i - 1, _is_turning(inv_mass, r_ckpts[i], r, subtree_r_sum)

    _, turning = lax.while_loop(_cond, _body, (idx_max, jnp.zeros((), dtype=bool)))
    return turning


def _build_basetree(z, r, grad, step_size, going_right, inv_mass,
                    energy_current, max_delta_energy, data, log_density_fn) -> TreeState:
    """A single leapfrog step as a depth-0 tree."""
    step_size = jnp.where(going_right, step_size, -step_size)
    # leapfrog never reads the starting potential
    start = IntegratorState(z, r, jnp.zeros((), dtype=z.dtype), grad)
    state = leapfrog(start, step_size, inv_mass, data, log_density_fn)

    energy_new = state.potential_energy + kinetic_energy(inv_mass, state.momentum)
    nonfinite = ~jnp.isfinite(state.potential_energy) | ~jnp.all(jnp.isfinite(state.potential_grad))
    delta_energy = energy_new - energy_current
    delta_energy = jnp.where(jnp.isnan(delta_energy) | nonfinite, jnp.inf, delta_energy)
    diverging = delta_energy > max_delta_energy
    accept_prob = jnp.minimum(1.0, jnp.exp(-delta_energy))

    dtype = z.dtype
    return TreeState(
        z_left=state.position, r_left=state.momentum, grad_left=state.potential_grad,
        z_right=state.position, r_right=state.momentum, grad_right=state.potential_grad,
        z_proposal=state.position,
        potential_proposal=state.potential_energy.astype(dtype),
        grad_proposal=state.potential_grad,
        energy_proposal=energy_new.astype(dtype),
        depth=jnp.zeros((), dtype=jnp.int32),
        log_weight=(-delta_energy).astype(dtype),
        r_sum=state.momentum,
        turning=jnp.zeros((), dtype=bool),
        diverging=diverging,
        nonfinite=nonfinite,
        sum_accept_probs=accept_prob.astype(dtype),
        num_proposals=jnp.ones((), dtype=jnp.int32),
    )


def _get_leaf(tree: TreeState, going_right):
    """Endpoint of the trajectory in the direction of travel."""
    return _select(
        going_right,
        (tree.z_right, tree.r_right, tree.grad_right),
        (tree.z_left, tree.r_left, tree.grad_left),
    )


def _combine_tree(current: TreeState, new: TreeState, inv_mass, going_right, key,
                  biased_transition) -> TreeState:
    """Merge a freshly built tree into the current one and pick the proposal."""
    z_left, r_left, grad_left = _select(
        going_right,
        (current.z_left, current.r_left, current.grad_left),
        (new.z_left, new.r_left, new.grad_left),
    )
    z_right, r_right, grad_right = _select(
        going_right,
        (new.z_right, new.r_right, new.grad_right),
        (current.z_right, current.r_right, current.grad_right),
    )

    r_sum = current.r_sum + new.r_sum
    log_weight = jnp.logaddexp(current.log_weight, new.log_weight)

    if biased_transition:
        transition_prob = jnp.minimum(1.0, jnp.exp(new.log_weight - current.log_weight))
        transition_prob = jnp.where(new.turning | new.diverging, 0.0, transition_prob)
    else:
        transition_prob = jax.nn.sigmoid(new.log_weight - current.log_weight)
    transition_prob = jnp.where(jnp.isnan(transition_prob), 0.0, transition_prob)
    transition = random.bernoulli(key, transition_prob)

    z_proposal, potential_proposal, grad_proposal, energy_proposal = _select(
        transition,
        (new.z_proposal, new.potential_proposal, new.grad_proposal, new.energy_proposal),
        (current.z_proposal, current.potential_proposal, current.grad_proposal,
         current.energy_proposal),
    )

    turning = new.turning | _is_turning(inv_mass, r_left, r_right, r_sum)

    return TreeState(
        z_left=z_left, r_left=r_left, grad_left=grad_left,
        z_right=z_right, r_right=r_right, grad_right=grad_right,
        z_proposal=z_proposal,
        potential_proposal=potential_proposal,
        grad_proposal=grad_proposal,
        energy_proposal=energy_proposal,
        depth=current.depth + 1,
        log_weight=log_weight,
        r_sum=r_sum,
        turning=turning,
        diverging=new.diverging,
        nonfinite=current.nonfinite | new.nonfinite,
        sum_accept_probs=current.sum_accept_probs + new.sum_accept_probs,
        num_proposals=current.num_proposals + new.num_proposals,
    )


def _iterative_build_subtree(prototype: TreeState, step_size, going_right, key, inv_mass,
                             energy_current, max_delta_energy, r_ckpts, r_sum_ckpts,
                             data, log_density_fn) -> TreeState:
    """
    Build a subtree with as many leaves as the current tree has (2 ** depth),
    extending from the current tree's endpoint in the chosen direction.

    Stops early on a U-turn of any sub-subtree or on a divergent leaf.
    """
    max_num_proposals = 2 ** prototype.depth

    def _cond(carry):
        tree, turning, _, _, _ = carry
        return (tree.num_proposals < max_num_proposals) & ~turning & ~tree.diverging

    def _body(carry):
        tree, _, r_ckpts, r_sum_ckpts, key = carry
        key, transition_key = random.split(key)
        z, r, grad = _get_leaf(tree, going_right)
        new_leaf = _build_basetree(z, r, grad, step_size, going_right, inv_mass,
                                   energy_current, max_delta_energy, data, log_density_fn)
        new_tree = lax.cond(
            tree.num_proposals == 0,
            lambda _: new_leaf,
            lambda _: _combine_tree(tree, new_leaf, inv_mass, going_right, transition_key, False),
            None,
        )

        leaf_idx = tree.num_proposals
        ckpt_idx_min, ckpt_idx_max = _leaf_idx_to_ckpt_idxs(leaf_idx)
        r_leaf = new_leaf.r_right
        is_even = (leaf_idx % 2) == 0
        r_ckpts = jnp.where(is_even, r_ckpts.at[ckpt_idx_max].set(r_leaf), r_ckpts)
        r_sum_ckpts = jnp.where(is_even, r_sum_ckpts.at[ckpt_idx_max].set(new_tree.r_sum), r_sum_ckpts)
        turning = _is_iterative_turning(inv_mass, r_leaf, new_tree.r_sum, r_ckpts, r_sum_ckpts,
                                        ckpt_idx_min, ckpt_idx_max)
        return new_tree, turning, r_ckpts, r_sum_ckpts, key

    basetree = prototype._replace(num_proposals=jnp.zeros((), dtype=jnp.int32))
    init = (basetree, jnp.zeros((), dtype=bool), r_ckpts, r_sum_ckpts, key)
    tree, turning, _, _, _ = lax.while_loop(_cond, _body, init)

    return tree._replace(depth=prototype.depth, turning=turning)


def build_tree(state: IntegratorState, step_size, inv_mass, key, data, max_delta_energy,
               log_density_fn, max_tree_depth) -> TreeState:
    """
    Run trajectory doubling from state until a U-turn, a divergence or
    max_tree_depth doublings.
    """
    dtype = state.position.dtype
    energy_current = state.potential_energy + kinetic_energy(inv_mass, state.momentum)
    dim = state.position.shape[0]
    r_ckpts = jnp.zeros((max_tree_depth, dim), dtype=dtype)
    r_sum_ckpts = jnp.zeros((max_tree_depth, dim), dtype=dtype)

    tree = TreeState(
        z_left=state.position, r_left=state.momentum, grad_left=state.potential_grad,
        z_right=state.position, r_right=state.momentum, grad_right=state.potential_grad,
        z_proposal=state.position,
        potential_proposal=jnp.asarray(state.potential_energy, dtype=dtype),
        grad_proposal=state.potential_grad,
        energy_proposal=jnp.asarray(energy_current, dtype=dtype),
        depth=jnp.zeros((), dtype=jnp.int32),
        log_weight=jnp.zeros((), dtype=dtype),
        r_sum=state.momentum,
        turning=jnp.zeros((), dtype=bool),
        diverging=jnp.zeros((), dtype=bool),
        nonfinite=jnp.zeros((), dtype=bool),
        sum_accept_probs=jnp.zeros((), dtype=dtype),
        num_proposals=jnp.zeros((), dtype=jnp.int32),
    )

    def _cond(carry):
        tree, _ = carry
        return (tree.depth < max_tree_depth) & ~tree.turning & ~tree.diverging

    def _body(carry):
        tree, key = carry
        key, direction_key, subtree_key, transition_key = random.split(key, 4)
        going_right = random.bernoulli(direction_key)
        new_tree = _iterative_build_subtree(
            tree, step_size, going_right, subtree_key, inv_mass, energy_current,
            max_delta_energy, r_ckpts, r_sum_ckpts, data, log_density_fn,
        )
        tree = _combine_tree(tree, new_tree, inv_mass, going_right, transition_key, True)
        return tree, key

    tree, _ = lax.while_loop(_cond, _body, (tree, key))
    return tree


@partial(jax.jit, static_argnames=('log_density_fn',))
def init_hmc_state(position, data, *, log_density_fn) -> HMCState:
    """Evaluate potential energy and gradient at a starting point."""
    potential, grad = potential_and_grad(log_density_fn, position, data)
    return HMCState(position, potential, grad)


@partial(jax.jit, static_argnames=('log_density_fn', 'max_tree_depth'))
def nuts_transition(key, state: HMCState, data, step_size, inv_mass, max_delta_energy, *,
                    log_density_fn, max_tree_depth):
    """
    One NUTS draw.

    Args:
        key: PRNG key for this draw
        state: Current chain state
        data: Model data pytree (traced)
        step_size: Leapfrog step size
        inv_mass: Diagonal inverse mass matrix (dim,)
        max_delta_energy: Divergence threshold on the energy error
        log_density_fn: fn(z, data) -> scalar (static)
        max_tree_depth: Maximum number of doublings (static)

    Returns:
        (new_state, info): info.accept_stat is the mean Metropolis acceptance
        probability over all leaves, used by dual averaging.
    """
    momentum_key, tree_key = random.split(key)
    dtype = state.position.dtype
    step_size = jnp.asarray(step_size, dtype=dtype)
    inv_mass = jnp.asarray(inv_mass, dtype=dtype)
    momentum = random.normal(momentum_key, state.position.shape, dtype=dtype) / jnp.sqrt(inv_mass)

    integrator_state = IntegratorState(state.position, momentum, state.potential_energy,
                                       state.potential_grad)
    tree = build_tree(integrator_state, step_size, inv_mass, tree_key, data,
                      max_delta_energy, log_density_fn, max_tree_depth)

    new_state = HMCState(tree.z_proposal, tree.potential_proposal, tree.grad_proposal)
    info = NUTSInfo(
        accept_stat=tree.sum_accept_probs / tree.num_proposals,
        tree_depth=tree.depth,
        num_steps=tree.num_proposals,
        diverging=tree.diverging,
        nonfinite=tree.nonfinite,
        energy=tree.energy_proposal,
    )
    return new_state, info
