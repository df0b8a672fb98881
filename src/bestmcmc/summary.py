"""
Posterior Summarizer.

Turns retained draws into per-quantity summaries:
- hdi: Highest-density interval of a sample
- Contrast / pairwise_contrasts: Linear combinations of group parameters
- summarize: Mean, sd, median, HDI, split R-hat and ESS per quantity
- format_summary: Plain-text table for logging

mu_diff and sigma_diff (group 1 minus group 2) are part of every sample set;
other contrasts are only computed when the caller asks for them.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np

from .error_handling import InvalidInput
from .mcmc.diagnostics import compute_ess, compute_split_rhat
from .mcmc.types import PosteriorSamples

CONTRAST_PARAMS = ('alpha', 'gamma')


@dataclass(frozen=True)
class Contrast:
    """
    A weighted sum of one group-level parameter.

    Example:
        Contrast('g1_vs_g23', 'alpha', (1.0, -0.5, -0.5))
    """
    name: str
    param: str
    weights: Tuple[float, ...]

    def __post_init__(self):
        if self.param not in CONTRAST_PARAMS:
            raise InvalidInput(f"Contrast '{self.name}': param must be one of {CONTRAST_PARAMS}, got '{self.param}'")
        weights = tuple(float(w) for w in self.weights)
        if not all(np.isfinite(weights)):
            raise InvalidInput(f"Contrast '{self.name}': weights must be finite")
        object.__setattr__(self, 'weights', weights)


def pairwise_contrasts(num_groups: int, params: Sequence[str] = CONTRAST_PARAMS) -> Tuple[Contrast, ...]:
    """Every group pair (i < j) difference, e.g. 'alpha[1]-alpha[3]'."""
    contrasts = []
    for param in params:
        for i in range(num_groups):
            for j in range(i + 1, num_groups):
                weights = np.zeros(num_groups)
                weights[i] = 1.0
                weights[j] = -1.0
                contrasts.append(Contrast(f"{param}[{i + 1}]-{param}[{j + 1}]", param, tuple(weights)))
    return tuple(contrasts)


def validate_contrasts(contrasts: Sequence[Contrast], num_groups: int) -> None:
    """
    Check contrasts against the group count before any sampling is done.

    Raises:
        InvalidInput: On a non-Contrast entry, a weight count other than
            num_groups, or a duplicate name
    """
    seen = set()
    for contrast in contrasts:
        if not isinstance(contrast, Contrast):
            raise InvalidInput(f"contrasts must be Contrast objects, got {type(contrast).__name__}")
        if len(contrast.weights) != num_groups:
            raise InvalidInput(
                f"Contrast '{contrast.name}' has {len(contrast.weights)} weights "
                f"but the model has {num_groups} groups"
            )
        if contrast.name in seen:
            raise InvalidInput(f"Duplicate contrast name '{contrast.name}'")
        seen.add(contrast.name)


def hdi(values, prob: float = 0.95) -> Tuple[float, float]:
    """
    Narrowest interval containing a fraction prob of the sorted values.

    Returns:
        (low, high); (nan, nan) for an empty sample
    """
    x = np.sort(np.asarray(values, dtype=np.float64).ravel())
    n = x.shape[0]
    if n == 0:
        return np.nan, np.nan
    interval_idx_inc = int(np.floor(prob * n))
    n_intervals = n - interval_idx_inc
    widths = x[interval_idx_inc:] - x[:n_intervals]
    min_idx = int(np.argmin(widths))
    return float(x[min_idx]), float(x[min_idx + interval_idx_inc])


@dataclass(frozen=True)
class SummaryRow:
    name: str
    mean: float
    sd: float
    median: float
    hdi_low: float
    hdi_high: float
    rhat: float
    ess: float
    hdi_prob: float = 0.95

    def hdi_contains(self, value: float) -> bool:
        return self.hdi_low <= value <= self.hdi_high


def _chain_diagnostics(values: np.ndarray) -> Tuple[float, float]:
    """Split R-hat and ESS of one quantity, values (n_draws, n_chains)."""
    history = values[:, :, None]
    if history.shape[0] < 4:
        return np.nan, np.nan
    rhat = float(np.asarray(compute_split_rhat(jnp.asarray(history)))[0])
    ess = float(compute_ess(history)[0])
    return rhat, ess


def _summarize_quantity(name, values, keep_mask, hdi_prob) -> SummaryRow:
    pooled = values[keep_mask] if keep_mask is not None else values.ravel()
    rhat, ess = _chain_diagnostics(values)
    if pooled.size == 0:
        return SummaryRow(name, np.nan, np.nan, np.nan, np.nan, np.nan, rhat, ess, hdi_prob)
    low, high = hdi(pooled, hdi_prob)
    return SummaryRow(
        name=name,
        mean=float(np.mean(pooled)),
        sd=float(np.std(pooled, ddof=1)) if pooled.size > 1 else np.nan,
        median=float(np.median(pooled)),
        hdi_low=low,
        hdi_high=high,
        rhat=rhat,
        ess=ess,
        hdi_prob=hdi_prob,
    )


def summarize(
    samples: PosteriorSamples,
    hdi_prob: float = 0.95,
    contrasts: Sequence[Contrast] = (),
    exclude_divergent: bool = False,
) -> List[SummaryRow]:
    """
    Summarize every parameter component, derived quantity and contrast.

    Args:
        samples: Retained draws
        hdi_prob: Probability mass of the highest-density interval
        contrasts: Extra linear contrasts of alpha or gamma
        exclude_divergent: Drop divergent draws from mean/sd/median/HDI
            (R-hat and ESS always use every draw)

    Returns:
        One SummaryRow per quantity, parameters first, then contrasts

    Raises:
        InvalidInput: If a contrast does not match the number of groups or
            reuses an existing name
    """
    if not 0 < hdi_prob < 1:
        raise InvalidInput(f"hdi_prob must be in (0, 1), got {hdi_prob}")

    history = samples.history
    keep_mask: Optional[np.ndarray] = None
    if exclude_divergent:
        keep_mask = ~samples.stat('diverging').astype(bool)

    rows = [
        _summarize_quantity(name, history[:, :, p], keep_mask, hdi_prob)
        for p, name in enumerate(samples.param_names)
    ]

    used_names = set(samples.param_names)
    for contrast in contrasts:
        if contrast.name in used_names:
            raise InvalidInput(f"Contrast name '{contrast.name}' is already in use")
        used_names.add(contrast.name)
        block = samples.get(contrast.param)  # (n, C, G)
        if block.shape[-1] != len(contrast.weights):
            raise InvalidInput(
                f"Contrast '{contrast.name}' has {len(contrast.weights)} weights "
                f"but the model has {block.shape[-1]} groups"
            )
        values = block @ np.asarray(contrast.weights)
        rows.append(_summarize_quantity(contrast.name, values, keep_mask, hdi_prob))

    return rows


def format_summary(rows: Sequence[SummaryRow]) -> str:
    """Render summary rows as a fixed-width text table."""
    if not rows:
        return ""
    pct = int(round(100 * rows[0].hdi_prob))
    name_width = max(12, max(len(r.name) for r in rows))
    header = (f"{'':<{name_width}} {'mean':>10} {'sd':>10} {'median':>10} "
              f"{f'hdi_{pct}_low':>12} {f'hdi_{pct}_high':>12} {'r_hat':>7} {'ess':>8}")
    lines = [header]
    for r in rows:
        lines.append(
            f"{r.name:<{name_width}} {r.mean:>10.4f} {r.sd:>10.4f} {r.median:>10.4f} "
            f"{r.hdi_low:>12.4f} {r.hdi_high:>12.4f} {r.rhat:>7.3f} {r.ess:>8.0f}"
        )
    return "\n".join(lines)
