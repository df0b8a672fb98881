"""
Error Handling and Validation Utilities for the BEST sampler.

This module provides the exception types raised by the package, the
configuration validator, and post-run diagnostic helpers.

Exceptions:
    BestError - Base class for every error raised by bestmcmc
    InvalidInput - Dataset fails shape/range checks (raised before sampling)
    ConfigurationError - Malformed MCMC configuration (raised before sampling)
    NumericalInstability - No finite starting point could be found
"""

from typing import Any, Dict

import numpy as np

import logging
logger = logging.getLogger('bestmcmc')


class BestError(Exception):
    """Base class for bestmcmc errors."""


class InvalidInput(BestError, ValueError):
    """Dataset violates shape or range invariants."""


class ConfigurationError(BestError, ValueError):
    """MCMC configuration is malformed."""


class NumericalInstability(BestError, RuntimeError):
    """Log density or gradient is non-finite where a finite value is required."""


# Every key clean_config() knows about, with the types it accepts
CONFIG_KEYS = {
    'posterior_id': (str,),
    'num_chains': (int,),
    'num_draws': (int,),
    'num_warmup': (int,),
    'target_accept': (int, float),
    'rng_seed': (int,),
    'hdi_prob': (int, float),
    'max_tree_depth': (int,),
    'max_delta_energy': (int, float),
    'algorithm': (str,),
    'init_strategy': (str,),
    'init_radius': (int, float),
    'step_size': (int, float, type(None)),
    'adapt_mass_matrix': (bool,),
    'num_workers': (int, type(None)),
    'use_double': (bool,),
}

ALGORITHMS = ('nuts', 'rwm')
INIT_STRATEGIES = ('uniform', 'prior')


def _is_type(value, types) -> bool:
    # bool is a subclass of int; only accept it where bool is listed explicitly
    if isinstance(value, bool) and bool not in types:
        return False
    return isinstance(value, types)


def validate_mcmc_config(mcmc_config: Dict[str, Any]) -> None:
    """
    Validates that MCMC configuration is sensible.

    All problems are collected and reported together.

    Args:
        mcmc_config: Configuration dictionary (after clean_config)

    Raises:
        ConfigurationError: If configuration is invalid
    """
    errors = []

    unknown = sorted(set(mcmc_config) - set(CONFIG_KEYS))
    if unknown:
        errors.append(f"Unknown config keys: {unknown}")

    for key, types in CONFIG_KEYS.items():
        if key in mcmc_config and not _is_type(mcmc_config[key], types):
            names = ', '.join(t.__name__ for t in types)
            errors.append(f"'{key}' must be of type {names}, got {mcmc_config[key]!r}")

    if errors:
        raise ConfigurationError("Invalid MCMC configuration:\n  " + "\n  ".join(errors))

    if 'num_chains' in mcmc_config and mcmc_config['num_chains'] < 1:
        errors.append("num_chains must be >= 1")

    if 'num_draws' in mcmc_config and mcmc_config['num_draws'] < 1:
        errors.append("num_draws must be >= 1")

    if 'num_warmup' in mcmc_config:
        num_warmup = mcmc_config['num_warmup']
        if num_warmup < 0:
            errors.append("num_warmup must be >= 0")
        num_draws = mcmc_config.get('num_draws')
        if num_draws is not None and num_warmup >= num_draws:
            errors.append(
                f"num_warmup ({num_warmup}) must be smaller than num_draws ({num_draws}); "
                f"num_draws counts warm-up and retained draws together"
            )

    if 'target_accept' in mcmc_config:
        target = mcmc_config['target_accept']
        if not 0 < target < 1:
            errors.append(f"target_accept must be in (0, 1), got {target}")

    if 'hdi_prob' in mcmc_config:
        prob = mcmc_config['hdi_prob']
        if not 0 < prob < 1:
            errors.append(f"hdi_prob must be in (0, 1), got {prob}")

    if 'max_tree_depth' in mcmc_config:
        depth = mcmc_config['max_tree_depth']
        if not 1 <= depth <= 30:
            errors.append(f"max_tree_depth must be in [1, 30], got {depth}")

    if 'max_delta_energy' in mcmc_config and mcmc_config['max_delta_energy'] <= 0:
        errors.append("max_delta_energy must be > 0")

    if 'algorithm' in mcmc_config and mcmc_config['algorithm'] not in ALGORITHMS:
        errors.append(f"algorithm must be one of {ALGORITHMS}, got '{mcmc_config['algorithm']}'")

    if 'init_strategy' in mcmc_config and mcmc_config['init_strategy'] not in INIT_STRATEGIES:
        errors.append(
            f"init_strategy must be one of {INIT_STRATEGIES}, got '{mcmc_config['init_strategy']}'"
        )

    if 'init_radius' in mcmc_config and mcmc_config['init_radius'] <= 0:
        errors.append("init_radius must be > 0")

    if mcmc_config.get('step_size') is not None and mcmc_config['step_size'] <= 0:
        errors.append("step_size must be > 0 when given")

    if mcmc_config.get('num_workers') is not None and mcmc_config['num_workers'] < 1:
        errors.append("num_workers must be >= 1 when given")

    if errors:
        raise ConfigurationError("Invalid MCMC configuration:\n  " + "\n  ".join(errors))


def diagnose_sampler_issues(history: np.ndarray, diagnostics: Dict[str, Any]) -> Dict[str, Any]:
    """
    Analyzes MCMC history to identify common issues.

    Args:
        history: Constrained draw array (n_draws, n_chains, n_params)
        diagnostics: Existing diagnostics dict to extend

    Returns:
        diagnostics: Dictionary with issues, warnings, and info
    """
    diagnostics = diagnostics | {
        'issues': list(diagnostics.get('issues', [])),
        'warnings': list(diagnostics.get('warnings', [])),
        'info': list(diagnostics.get('info', [])),
    }

    if history.shape[0] == 0:
        diagnostics['issues'].append("No retained draws - nothing to diagnose")
        return diagnostics

    # Check for NaN/Inf in history
    if not np.all(np.isfinite(history)):
        diagnostics['issues'].append(
            "History contains NaN or Inf values - sampler became unstable"
        )

    # Check for stuck chains (variance near zero)
    if history.shape[0] > 1:
        chain_vars = np.var(history, axis=0)
        stuck_chains = int(np.sum(np.all(chain_vars < 1e-12, axis=1)))
        if stuck_chains > 0:
            diagnostics['warnings'].append(
                f"{stuck_chains} chain(s) appear stuck (near-zero variance)"
            )

    # Summary info
    diagnostics['info'].append(f"Total draws: {history.shape[0] * history.shape[1]}")
    diagnostics['info'].append(f"Number of chains: {history.shape[1]}")
    diagnostics['info'].append(f"Number of parameters: {history.shape[2]}")

    return diagnostics


def print_diagnostics(diagnostics: Dict[str, Any]) -> None:
    """Log diagnostics produced by diagnose_sampler_issues / compute_diagnostics."""
    if diagnostics['issues']:
        logger.error("[ERROR] ISSUES:")
        for issue in diagnostics['issues']:
            logger.error(f"  - {issue}")

    if diagnostics['warnings']:
        logger.warning("[WARN] WARNINGS:")
        for warning in diagnostics['warnings']:
            logger.warning(f"  - {warning}")

    if diagnostics['info']:
        logger.info("[INFO] INFO:")
        for info in diagnostics['info']:
            logger.info(f"  - {info}")

    if not diagnostics['issues'] and not diagnostics['warnings']:
        logger.info("[OK] No issues detected")
