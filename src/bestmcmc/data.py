"""
Dataset container for the robust two-group comparison.

A Dataset is the immutable input to the sampler: an outcome vector and a
1-based group label per observation. Validation happens at construction so
that bad input fails before any sampling work starts.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .error_handling import InvalidInput

import logging
logger = logging.getLogger('bestmcmc')


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class Dataset:
    """
    Outcome values partitioned into groups.

    Attributes:
        outcome: Real-valued observations, shape (N,)
        group_id: Group label of each observation, integers in [1, num_groups]
        num_groups: Number of groups G (>= 2)
    """
    outcome: np.ndarray
    group_id: np.ndarray
    num_groups: int

    def __post_init__(self):
        errors = []

        outcome = np.asarray(self.outcome)
        group_id = np.asarray(self.group_id)

        if outcome.ndim != 1:
            errors.append(f"outcome must be one-dimensional, got shape {outcome.shape}")
        if group_id.ndim != 1:
            errors.append(f"group_id must be one-dimensional, got shape {group_id.shape}")
        if outcome.ndim == 1 and outcome.shape[0] < 1:
            errors.append("outcome must contain at least one observation")
        if outcome.ndim == 1 and group_id.ndim == 1 and outcome.shape[0] != group_id.shape[0]:
            errors.append(
                f"outcome and group_id lengths differ ({outcome.shape[0]} vs {group_id.shape[0]})"
            )
        if isinstance(self.num_groups, bool) or not isinstance(self.num_groups, (int, np.integer)):
            errors.append(f"num_groups must be an integer, got {self.num_groups!r}")
        elif self.num_groups < 2:
            errors.append(f"num_groups must be >= 2, got {self.num_groups}")

        if errors:
            raise InvalidInput("Invalid dataset:\n  " + "\n  ".join(errors))

        if not np.issubdtype(outcome.dtype, np.number) or np.issubdtype(outcome.dtype, np.complexfloating):
            raise InvalidInput(f"outcome must be real-valued, got dtype {outcome.dtype}")
        outcome = outcome.astype(np.float64)
        if not np.all(np.isfinite(outcome)):
            raise InvalidInput("outcome contains NaN or Inf values")

        if group_id.dtype == np.bool_ or not np.issubdtype(group_id.dtype, np.number):
            raise InvalidInput(f"group_id must be integers, got dtype {group_id.dtype}")
        if not np.issubdtype(group_id.dtype, np.integer):
            if not np.all(np.isfinite(group_id)) or np.any(group_id != np.round(group_id)):
                raise InvalidInput("group_id must contain whole numbers only")
        group_id = group_id.astype(np.int64)

        out_of_range = (group_id < 1) | (group_id > self.num_groups)
        if np.any(out_of_range):
            bad = np.unique(group_id[out_of_range])
            raise InvalidInput(
                f"group_id values must lie in [1, {self.num_groups}], found {bad.tolist()}"
            )

        # frozen dataclass: bypass __setattr__ to store the normalized arrays
        object.__setattr__(self, 'outcome', _readonly(outcome))
        object.__setattr__(self, 'group_id', _readonly(group_id))
        object.__setattr__(self, 'num_groups', int(self.num_groups))

        empty = self.empty_groups()
        if empty:
            logger.warning(
                f"Groups {empty} have no observations; their posteriors will be prior-only"
            )

    @classmethod
    def from_arrays(cls, outcome, group_id, num_groups: Optional[int] = None) -> "Dataset":
        """
        Build a Dataset, inferring the group count from the labels when omitted.

        Raises:
            InvalidInput: If the arrays fail validation
        """
        group_arr = np.asarray(group_id)
        if num_groups is None:
            if (group_arr.size == 0 or group_arr.dtype == np.bool_
                    or not np.issubdtype(group_arr.dtype, np.number)
                    or not np.all(np.isfinite(group_arr))):
                # let __post_init__ report the real problem
                num_groups = 2
            else:
                num_groups = int(np.max(group_arr))
        return cls(outcome=np.asarray(outcome), group_id=group_arr, num_groups=num_groups)

    @property
    def num_obs(self) -> int:
        return int(self.outcome.shape[0])

    @property
    def group_index(self) -> np.ndarray:
        """0-based group index of each observation."""
        return self.group_id - 1

    def group_counts(self) -> np.ndarray:
        """Number of observations per group, shape (num_groups,)."""
        return np.bincount(self.group_index, minlength=self.num_groups)

    def empty_groups(self) -> List[int]:
        """1-based labels of groups without observations."""
        return [int(g) + 1 for g in np.flatnonzero(self.group_counts() == 0)]
