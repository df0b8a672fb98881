"""
MCMC Diagnostics.

Convergence and sampler-health diagnostics for the retained draws:
- compute_split_rhat: Split potential scale reduction factor (Gelman et al., BDA3)
- compute_ess: Effective sample size (Geyer initial monotone sequence)
- compute_ebfmi: Energy Bayesian fraction of missing information per chain
- compute_diagnostics: All of the above collected into a DiagnosticsReport
- log_diagnostics: Log a DiagnosticsReport

Problems never abort a run: they become warnings/issues on the report.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from ..error_handling import diagnose_sampler_issues, print_diagnostics
from .types import PosteriorSamples

import logging
logger = logging.getLogger('bestmcmc')

RHAT_THRESHOLD = 1.01
# Stan's rule of thumb: at least 100 effective draws per chain
MIN_ESS_PER_CHAIN = 100
EBFMI_THRESHOLD = 0.3


@jax.jit
def compute_split_rhat(history: jnp.ndarray) -> jnp.ndarray:
    """
    Split R-hat.

    Each chain is cut into a first and second half (the middle draw is
    dropped for odd lengths) and the halves are treated as separate chains
    in the Gelman-Rubin formula:

        V_hat = (n - 1) / n * W + B / n,   R_hat = sqrt(V_hat / W)

    Args:
        history: Draw array (n_draws, n_chains, n_params), n_draws >= 4

    Returns:
        rhat: (n_params,) array of R-hat values.
    """
    n_draws = history.shape[0]
    half = n_draws // 2
    split = jnp.concatenate([history[:half], history[n_draws - half:]], axis=1)

    n = half
    chain_means = jnp.mean(split, axis=0)                 # (2C, P)
    B = n * jnp.var(chain_means, axis=0, ddof=1)          # between-chain
    W = jnp.mean(jnp.var(split, axis=0, ddof=1), axis=0)  # within-chain

    V_hat = ((n - 1) / n) * W + B / n

    # No special handling for zero variance - stuck parameters show as NaN/inf
    return jnp.sqrt(V_hat / W)


def _autocovariance(x: np.ndarray) -> np.ndarray:
    """Biased autocovariance of each row via FFT, shape (m, n)."""
    n = x.shape[-1]
    size = 2 ** int(np.ceil(np.log2(2 * n)))
    centered = x - np.mean(x, axis=-1, keepdims=True)
    freq = np.fft.rfft(centered, n=size, axis=-1)
    acov = np.fft.irfft(freq * np.conjugate(freq), n=size, axis=-1)[..., :n]
    return acov / n


def _ess_single(draws: np.ndarray) -> float:
    """ESS of one parameter; draws is (n_draws, n_chains)."""
    n_draws = draws.shape[0]
    if n_draws < 4 or not np.all(np.isfinite(draws)):
        return np.nan

    half = n_draws // 2
    x = np.concatenate([draws[:half].T, draws[n_draws - half:].T], axis=0)  # (2C, half)
    m, n = x.shape

    acov = _autocovariance(x)
    chain_mean = np.mean(x, axis=1)
    mean_var = np.mean(acov[:, 0]) * n / (n - 1.0)
    var_plus = mean_var * (n - 1.0) / n
    if m > 1:
        var_plus += np.var(chain_mean, ddof=1)
    if not var_plus > 0:
        return np.nan

    rho_hat_t = np.zeros(n)
    rho_hat_even = 1.0
    rho_hat_t[0] = rho_hat_even
    rho_hat_odd = 1.0 - (mean_var - np.mean(acov[:, 1])) / var_plus
    rho_hat_t[1] = rho_hat_odd

    # Geyer's initial positive sequence
    t = 1
    while t < n - 3 and (rho_hat_even + rho_hat_odd) > 0.0:
        rho_hat_even = 1.0 - (mean_var - np.mean(acov[:, t + 1])) / var_plus
        rho_hat_odd = 1.0 - (mean_var - np.mean(acov[:, t + 2])) / var_plus
        if (rho_hat_even + rho_hat_odd) >= 0:
            rho_hat_t[t + 1] = rho_hat_even
            rho_hat_t[t + 2] = rho_hat_odd
        t += 2

    max_t = t - 2
    if rho_hat_even > 0:
        rho_hat_t[max_t + 1] = rho_hat_even

    # Geyer's initial monotone sequence
    t = 1
    while t <= max_t - 2:
        if (rho_hat_t[t + 1] + rho_hat_t[t + 2]) > (rho_hat_t[t - 1] + rho_hat_t[t]):
            rho_hat_t[t + 1] = (rho_hat_t[t - 1] + rho_hat_t[t]) / 2.0
            rho_hat_t[t + 2] = rho_hat_t[t + 1]
        t += 2

    ess = m * n
    tau_hat = -1.0 + 2.0 * np.sum(rho_hat_t[:max_t + 1]) + np.sum(rho_hat_t[max_t + 1:max_t + 2])
    tau_hat = max(tau_hat, 1.0 / np.log10(ess))
    return float(ess / tau_hat)


def compute_ess(history: np.ndarray) -> np.ndarray:
    """
    Effective sample size per parameter, pooled over split chains.

    Args:
        history: Draw array (n_draws, n_chains, n_params)

    Returns:
        (n_params,) ESS values; NaN for constant or non-finite draws and
        for fewer than 4 draws
    """
    history = np.asarray(history, dtype=np.float64)
    return np.array([_ess_single(history[:, :, p]) for p in range(history.shape[2])])


def compute_ebfmi(energy: np.ndarray) -> float:
    """
    E-BFMI of one chain: mean squared energy jump over energy variance.

    Values below 0.3 suggest the momentum resampling explores the energy
    distribution poorly (heavy tails, poor adaptation).
    """
    energy = np.asarray(energy, dtype=np.float64)
    if energy.shape[0] < 2:
        return np.nan
    denom = np.sum((energy - np.mean(energy)) ** 2)
    if not denom > 0:
        return np.nan
    return float(np.sum(np.diff(energy) ** 2) / denom)


@dataclass
class DiagnosticsReport:
    """
    Convergence and sampler-health summary of a run.

    converged is True when every parameter's split R-hat is finite and below
    rhat_threshold. Everything else (divergences, low ESS, low E-BFMI,
    saturated trees) is reported in warnings without affecting converged.
    """
    param_names: Tuple[str, ...]
    rhat: np.ndarray
    ess: np.ndarray
    num_divergent: int
    divergent_per_chain: np.ndarray
    nonfinite_per_chain: np.ndarray
    mean_accept_per_chain: np.ndarray
    max_depth_hits_per_chain: np.ndarray
    ebfmi_per_chain: np.ndarray
    draws_per_chain: List[int]
    converged: bool
    rhat_threshold: float = RHAT_THRESHOLD
    cancelled: bool = False
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    info: List[str] = field(default_factory=list)

    def rhat_of(self, name: str) -> float:
        return float(self.rhat[self.param_names.index(name)])

    def ess_of(self, name: str) -> float:
        return float(self.ess[self.param_names.index(name)])

    def as_dict(self) -> Dict[str, Any]:
        return {
            'rhat': dict(zip(self.param_names, self.rhat.tolist())),
            'ess': dict(zip(self.param_names, self.ess.tolist())),
            'num_divergent': self.num_divergent,
            'converged': self.converged,
            'cancelled': self.cancelled,
            'issues': list(self.issues),
            'warnings': list(self.warnings),
            'info': list(self.info),
        }


def compute_diagnostics(samples: PosteriorSamples, max_tree_depth: Optional[int] = None,
                        rhat_threshold: float = RHAT_THRESHOLD) -> DiagnosticsReport:
    """
    Compute every diagnostic for a finished run. Pure: logs nothing.

    Args:
        samples: Retained draws of all chains
        max_tree_depth: Tree depth limit used by NUTS, to count saturated draws
        rhat_threshold: Convergence threshold on split R-hat

    Returns:
        DiagnosticsReport
    """
    history = samples.history
    n_draws, n_chains, n_params = history.shape

    if n_draws >= 4:
        rhat = np.asarray(jax.device_get(compute_split_rhat(jnp.asarray(history))), dtype=np.float64)
    else:
        rhat = np.full(n_params, np.nan)
    ess = compute_ess(history)

    divergent = np.array([int(np.sum(s['diverging'])) for s in samples.sample_stats])
    nonfinite = np.array([int(np.sum(s['nonfinite'])) for s in samples.sample_stats])
    mean_accept = np.array([
        float(np.mean(s['accept_stat'])) if s['accept_stat'].size else np.nan
        for s in samples.sample_stats
    ])
    if max_tree_depth is not None and samples.algorithm == 'nuts':
        depth_hits = np.array([int(np.sum(s['tree_depth'] >= max_tree_depth)) for s in samples.sample_stats])
    else:
        depth_hits = np.zeros(n_chains, dtype=int)
    ebfmi = np.array([compute_ebfmi(s['energy']) for s in samples.sample_stats])

    # NaN R-hat counts as not converged
    converged = bool(n_draws >= 4 and np.all(rhat < rhat_threshold))

    report = DiagnosticsReport(
        param_names=samples.param_names,
        rhat=rhat,
        ess=ess,
        num_divergent=int(np.sum(divergent)),
        divergent_per_chain=divergent,
        nonfinite_per_chain=nonfinite,
        mean_accept_per_chain=mean_accept,
        max_depth_hits_per_chain=depth_hits,
        ebfmi_per_chain=ebfmi,
        draws_per_chain=samples.draws_per_chain,
        converged=converged,
        rhat_threshold=rhat_threshold,
        cancelled=samples.cancelled,
    )

    if samples.cancelled:
        report.warnings.append(f"Run was cancelled; draws per chain: {samples.draws_per_chain}")
    if n_draws < 4:
        report.warnings.append(f"Only {n_draws} common draws per chain; R-hat needs at least 4")
    else:
        bad = [name for name, r in zip(samples.param_names, rhat) if not r < rhat_threshold]
        if bad:
            report.warnings.append(
                f"Chains have not converged: split R-hat >= {rhat_threshold} (or undefined) for {bad}"
            )
        low_ess = [name for name, e in zip(samples.param_names, ess)
                   if not e >= MIN_ESS_PER_CHAIN * n_chains]
        if low_ess:
            report.warnings.append(
                f"Effective sample size below {MIN_ESS_PER_CHAIN * n_chains} for {low_ess}"
            )

    if report.num_divergent > 0:
        total = n_draws * n_chains if n_draws else 1
        report.warnings.append(
            f"{report.num_divergent} divergent transition(s) after warm-up "
            f"({100.0 * report.num_divergent / total:.1f}%); per chain: {divergent.tolist()}"
        )
    if np.any(nonfinite > 0):
        report.warnings.append(
            f"Non-finite log density or gradient encountered; per chain: {nonfinite.tolist()}"
        )
    if np.any(depth_hits > 0):
        report.warnings.append(
            f"Trajectories hit max_tree_depth={max_tree_depth}; per chain: {depth_hits.tolist()}"
        )
    low_bfmi = [c for c, e in enumerate(ebfmi) if np.isfinite(e) and e < EBFMI_THRESHOLD]
    if low_bfmi:
        report.warnings.append(f"E-BFMI below {EBFMI_THRESHOLD} for chain(s) {low_bfmi}")

    health = diagnose_sampler_issues(history, {})
    report.issues.extend(health['issues'])
    report.warnings.extend(health['warnings'])
    report.info.extend(health['info'])
    report.info.append(f"Mean acceptance statistic per chain: {np.round(mean_accept, 3).tolist()}")

    return report


def log_diagnostics(report: DiagnosticsReport) -> None:
    """Log R-hat/ESS summary and every warning on the report."""
    logger.info("--- Diagnostics ---")
    finite_rhat = report.rhat[np.isfinite(report.rhat)]
    if finite_rhat.size:
        logger.info(f"  Split R-hat: max {np.max(finite_rhat):.4f}, "
                    f"median {np.median(finite_rhat):.4f}")
    finite_ess = report.ess[np.isfinite(report.ess)]
    if finite_ess.size:
        logger.info(f"  ESS: min {np.min(finite_ess):.0f}, median {np.median(finite_ess):.0f}")

    if report.converged:
        logger.info(f"  [OK] All split R-hat < {report.rhat_threshold}")
    else:
        logger.warning(f"  [WARN] Chains not converged (split R-hat threshold {report.rhat_threshold})")

    print_diagnostics({'issues': report.issues, 'warnings': report.warnings, 'info': report.info})


def timed_diagnostics(samples: PosteriorSamples, max_tree_depth: Optional[int] = None) -> DiagnosticsReport:
    """compute_diagnostics + log_diagnostics with wall time, as run by the backend."""
    start = time.perf_counter()
    report = compute_diagnostics(samples, max_tree_depth=max_tree_depth)
    logger.info(f"Diagnostics complete in {time.perf_counter() - start:.4f}s")
    log_diagnostics(report)
    return report
