"""
Tests for Dataset construction and validation.

Run with: pytest tests/test_data.py -v
"""

import dataclasses
import logging

import numpy as np
import pytest

from bestmcmc.data import Dataset
from bestmcmc.error_handling import InvalidInput, BestError


class TestDatasetConstruction:

    def test_infers_num_groups(self):
        ds = Dataset.from_arrays([1.0, 2.0, 3.0, 4.0], [1, 2, 2, 1])
        assert ds.num_groups == 2
        assert ds.num_obs == 4
        np.testing.assert_array_equal(ds.group_counts(), [2, 2])

    def test_explicit_num_groups_allows_empty_group(self, caplog):
        with caplog.at_level(logging.WARNING, logger='bestmcmc'):
            ds = Dataset.from_arrays([1.0, 2.0, 3.0], [1, 2, 1], num_groups=3)
        assert ds.empty_groups() == [3]
        assert "no observations" in caplog.text

    def test_group_index_is_zero_based(self):
        ds = Dataset.from_arrays([0.5, 1.5], [2, 1])
        np.testing.assert_array_equal(ds.group_index, [1, 0])

    def test_float_group_ids_with_whole_values_accepted(self):
        ds = Dataset.from_arrays([0.5, 1.5], np.array([1.0, 2.0]))
        assert ds.group_id.dtype == np.int64

    def test_arrays_are_read_only(self):
        ds = Dataset.from_arrays([1.0, 2.0], [1, 2])
        with pytest.raises(ValueError):
            ds.outcome[0] = 10.0
        with pytest.raises(dataclasses.FrozenInstanceError):
            ds.num_groups = 5

    def test_input_arrays_are_copied(self):
        outcome = np.array([1.0, 2.0])
        ds = Dataset.from_arrays(outcome, [1, 2])
        outcome[0] = 99.0
        assert ds.outcome[0] == 1.0


class TestDatasetValidation:

    def test_invalid_input_is_value_error(self):
        assert issubclass(InvalidInput, ValueError)
        assert issubclass(InvalidInput, BestError)

    def test_length_mismatch(self):
        with pytest.raises(InvalidInput, match="lengths differ"):
            Dataset.from_arrays([1.0, 2.0, 3.0], [1, 2])

    def test_empty_outcome(self):
        with pytest.raises(InvalidInput):
            Dataset.from_arrays([], [])

    def test_single_group_rejected(self):
        with pytest.raises(InvalidInput, match="num_groups"):
            Dataset.from_arrays([1.0, 2.0], [1, 1])

    def test_group_id_zero_out_of_range(self):
        with pytest.raises(InvalidInput, match=r"\[1, 2\]"):
            Dataset.from_arrays([1.0, 2.0, 3.0], [0, 1, 2], num_groups=2)

    def test_group_id_above_num_groups(self):
        with pytest.raises(InvalidInput):
            Dataset.from_arrays([1.0, 2.0, 3.0], [1, 2, 3], num_groups=2)

    def test_non_integer_group_id(self):
        with pytest.raises(InvalidInput, match="whole numbers"):
            Dataset.from_arrays([1.0, 2.0], [1.0, 1.5], num_groups=2)

    def test_bool_group_id(self):
        with pytest.raises(InvalidInput):
            Dataset.from_arrays([1.0, 2.0], [True, False], num_groups=2)

    def test_nan_outcome(self):
        with pytest.raises(InvalidInput, match="NaN or Inf"):
            Dataset.from_arrays([1.0, np.nan], [1, 2])

    def test_inf_outcome(self):
        with pytest.raises(InvalidInput):
            Dataset.from_arrays([np.inf, 1.0], [1, 2])

    def test_two_dimensional_outcome(self):
        with pytest.raises(InvalidInput, match="one-dimensional"):
            Dataset.from_arrays(np.ones((2, 2)), [1, 2], num_groups=2)

    def test_non_numeric_outcome(self):
        with pytest.raises(InvalidInput, match="real-valued"):
            Dataset.from_arrays(np.array(['a', 'b']), [1, 2])

    def test_num_groups_must_be_integer(self):
        with pytest.raises(InvalidInput):
            Dataset(outcome=np.array([1.0, 2.0]), group_id=np.array([1, 2]), num_groups=2.5)
