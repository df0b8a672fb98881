"""
bestmcmc - Robust Bayesian estimation of group differences (BEST)

Public API:
    Entry points:
        run_best - Sample, diagnose and summarize in one call
        rmcmc - Lower-level sampler returning (samples, diagnostics)

    Data:
        Dataset - Immutable, validated outcome/group input

    Results:
        BestResults - Samples, diagnostics, summary and config of a run
        PosteriorSamples - Retained draws of every chain
        DiagnosticsReport - Split R-hat, ESS, divergences, E-BFMI
        SummaryRow - Mean, sd, median, HDI, R-hat and ESS of one quantity

    Summaries:
        Contrast - Weighted sum of alpha or gamma
        pairwise_contrasts - All group-pair differences
        summarize, hdi, format_summary

    Registration:
        register_posterior - Register a posterior model
        get_posterior - Retrieve a registered posterior
        list_posteriors - List all registered posteriors

    Errors:
        InvalidInput, ConfigurationError, NumericalInstability

Example:
    from bestmcmc import Dataset, run_best

    dataset = Dataset.from_arrays(outcome, group_id)
    results = run_best(dataset, {'num_chains': 4, 'num_draws': 2000, 'rng_seed': 1})
    print(results.row('mu_diff'))
"""
# CRITICAL: Import jax_config FIRST to set environment variables before JAX loads
from . import jax_config  # noqa: F401

from .error_handling import (
    BestError,
    InvalidInput,
    ConfigurationError,
    NumericalInstability,
)
from .registry import register_posterior, get_posterior, list_posteriors
from .data import Dataset
from .transforms import to_constrained, to_unconstrained, log_jacobian, NU_UPPER

# Importing models registers the built-in posteriors
from . import models  # noqa: F401

from .mcmc import (
    rmcmc,
    PosteriorSamples,
    DiagnosticsReport,
    compute_split_rhat,
    compute_ess,
)
from .summary import (
    Contrast,
    SummaryRow,
    pairwise_contrasts,
    summarize,
    hdi,
    format_summary,
)
from .best import run_best, BestResults

__all__ = [
    'run_best',
    'rmcmc',
    'Dataset',
    'BestResults',
    'PosteriorSamples',
    'DiagnosticsReport',
    'SummaryRow',
    'Contrast',
    'pairwise_contrasts',
    'summarize',
    'hdi',
    'format_summary',
    'compute_split_rhat',
    'compute_ess',
    'to_constrained',
    'to_unconstrained',
    'log_jacobian',
    'NU_UPPER',
    'register_posterior',
    'get_posterior',
    'list_posteriors',
    'BestError',
    'InvalidInput',
    'ConfigurationError',
    'NumericalInstability',
]
