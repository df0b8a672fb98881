"""
MCMC Subpackage - Core MCMC sampling implementation.

This package contains the core MCMC sampling logic:
- backend: Multi-chain orchestrator (rmcmc)
- single_run: Single-chain engine (run_chain)
- nuts: No-U-Turn transition kernel
- rand_walk: Random-walk Metropolis fallback kernel
- integrator: Leapfrog integrator
- adaptation: Warm-up step size and mass matrix adaptation
- config: Configuration and initialization
- diagnostics: Convergence diagnostics (split R-hat, ESS, E-BFMI)
- types: Core data structures (RunParams, PosteriorSamples, ...)
- utils: Config defaults
"""

# Import types first (needed by other modules)
from .types import (
    HMCState,
    NUTSInfo,
    RunParams,
    ChainResult,
    PosteriorSamples,
    SAMPLE_STATS,
)

# Import main entry points
from .backend import rmcmc
from .single_run import run_chain

# Import commonly used functions
from .config import (
    configure_mcmc_system,
    initialize_chains,
    gen_rng_keys,
)
from .diagnostics import (
    DiagnosticsReport,
    compute_split_rhat,
    compute_ess,
    compute_ebfmi,
    compute_diagnostics,
    log_diagnostics,
)
from .nuts import nuts_transition, init_hmc_state
from .rand_walk import rwm_transition
from .utils import clean_config

__all__ = [
    # Main entry points
    'rmcmc',
    'run_chain',
    # Types
    'HMCState',
    'NUTSInfo',
    'RunParams',
    'ChainResult',
    'PosteriorSamples',
    'SAMPLE_STATS',
    # Config
    'clean_config',
    'configure_mcmc_system',
    'initialize_chains',
    'gen_rng_keys',
    # Kernels
    'nuts_transition',
    'init_hmc_state',
    'rwm_transition',
    # Diagnostics
    'DiagnosticsReport',
    'compute_split_rhat',
    'compute_ess',
    'compute_ebfmi',
    'compute_diagnostics',
    'log_diagnostics',
]
