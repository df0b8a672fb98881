"""
Leapfrog integrator for Hamiltonian dynamics with a diagonal mass matrix.

H(z, r) = U(z) + K(r),  U = -log_density(z),  K = 0.5 * r' M^-1 r
"""

import jax
import jax.numpy as jnp

from .types import IntegratorState


def kinetic_energy(inv_mass, momentum):
    """0.5 * r' diag(inv_mass) r"""
    return 0.5 * jnp.sum(inv_mass * momentum ** 2)


def potential_and_grad(log_density_fn, z, data):
    """
    Potential energy -log_density(z) and its gradient.

    Returns:
        (potential, grad): grad has the shape of z
    """
    log_p, grad = jax.value_and_grad(log_density_fn)(z, data)
    return -log_p, -grad


def leapfrog(state: IntegratorState, step_size, inv_mass, data, log_density_fn) -> IntegratorState:
    """
    One velocity-Verlet step. A negative step_size integrates backward in time.

    Args:
        state: Current position, momentum, potential and gradient
        step_size: Signed step size
        inv_mass: Diagonal inverse mass matrix (dim,)
        data: Model data pytree passed through to log_density_fn
        log_density_fn: fn(z, data) -> scalar

    Returns:
        IntegratorState after the step
    """
    r_half = state.momentum - 0.5 * step_size * state.potential_grad
    z_new = state.position + step_size * inv_mass * r_half
    potential, grad = potential_and_grad(log_density_fn, z_new, data)
    r_new = r_half - 0.5 * step_size * grad
    return IntegratorState(z_new, r_new, potential, grad)
