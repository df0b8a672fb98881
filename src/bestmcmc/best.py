"""
Bayesian estimation of group differences (BEST).

run_best() is the top-level entry point: it samples the robust t-test
posterior, runs diagnostics and summarizes mu_diff, sigma_diff and any
extra contrasts.

Example:
    dataset = Dataset.from_arrays(outcome, group_id)
    results = run_best(dataset, {'num_chains': 4, 'num_draws': 2000})
    mu_diff = results.row('mu_diff')
    print(mu_diff.mean, mu_diff.hdi_low, mu_diff.hdi_high)
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from .data import Dataset
from .error_handling import InvalidInput
from .mcmc.backend import rmcmc
from .mcmc.diagnostics import DiagnosticsReport
from .mcmc.types import PosteriorSamples
from .mcmc.utils import clean_config
from .summary import Contrast, SummaryRow, format_summary, summarize, validate_contrasts

import logging
logger = logging.getLogger('bestmcmc')


@dataclass(frozen=True)
class BestResults:
    samples: PosteriorSamples
    diagnostics: DiagnosticsReport
    summary: List[SummaryRow]
    config: Dict[str, Any]

    def row(self, name: str) -> SummaryRow:
        """Summary row of one quantity, e.g. 'mu_diff' or 'alpha[2]'."""
        for r in self.summary:
            if r.name == name:
                return r
        raise KeyError(f"No summary row named '{name}'")

    @property
    def converged(self) -> bool:
        return self.diagnostics.converged


def run_best(
    dataset: Dataset,
    mcmc_config: Optional[Dict[str, Any]] = None,
    contrasts: Sequence[Contrast] = (),
    cancel_event: Optional[threading.Event] = None,
    init_params: Optional[Union[Dict[str, Any], Sequence[Dict[str, Any]]]] = None,
    exclude_divergent: bool = False,
) -> BestResults:
    """
    Sample the robust t-test posterior and summarize group differences.

    Args:
        dataset: Outcomes and 1-based group labels
        mcmc_config: Configuration dict; missing keys take their defaults
        contrasts: Extra contrasts of alpha or gamma to summarize
        cancel_event: Optional threading.Event to stop sampling early
        init_params: Optional constrained starting point(s)
        exclude_divergent: Drop divergent draws from the point summaries

    Returns:
        BestResults(samples, diagnostics, summary, config)

    Raises:
        InvalidInput: Bad dataset, contrasts or init_params
        ConfigurationError: Bad configuration
        NumericalInstability: No finite starting point
    """
    if not isinstance(dataset, Dataset):
        raise InvalidInput(f"dataset must be a Dataset, got {type(dataset).__name__}")
    contrasts = tuple(contrasts)
    validate_contrasts(contrasts, dataset.num_groups)

    config = clean_config(mcmc_config)
    samples, diagnostics = rmcmc(config, dataset, cancel_event=cancel_event, init_params=init_params)

    summary = summarize(samples, hdi_prob=config['hdi_prob'], contrasts=contrasts,
                        exclude_divergent=exclude_divergent)
    logger.info("--- Posterior Summary ---\n" + format_summary(summary))

    return BestResults(samples=samples, diagnostics=diagnostics, summary=summary, config=config)
