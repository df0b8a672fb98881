"""
Integration Tests for the robust two-group comparison

Runs the full pipeline (validation, NUTS sampling, diagnostics, summary)
on synthetic data with known group differences.

Run with: pytest tests/test_integration.py -v
Skip the long calibration run with: pytest tests/test_integration.py -m "not slow"
"""

import threading

import numpy as np
import pytest

from bestmcmc import Dataset, run_best, pairwise_contrasts
from bestmcmc.transforms import NU_UPPER

from .conftest import generate_two_group_data


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(scope='module')
def separated_results():
    """Groups centred at 0 and 5: the posterior of mu_diff is far from zero."""
    outcome, group_id = generate_two_group_data(500, mu=(0.0, 5.0), sd=(1.0, 1.0), seed=42)
    dataset = Dataset.from_arrays(outcome, group_id)
    return run_best(dataset, {
        'num_chains': 4,
        'num_draws': 1000,
        'num_warmup': 500,
        'rng_seed': 42,
    })


# ============================================================================
# PARAMETER RECOVERY
# ============================================================================

class TestParameterRecovery:

    def test_mu_diff_recovered(self, separated_results):
        row = separated_results.row('mu_diff')
        assert row.mean == pytest.approx(-5.0, abs=0.3)
        assert not row.hdi_contains(0.0)
        assert row.hdi_low < row.mean < row.hdi_high

    def test_group_scales_recovered(self, separated_results):
        for name in ('gamma[1]', 'gamma[2]'):
            assert separated_results.row(name).mean == pytest.approx(1.0, abs=0.15)
        assert abs(separated_results.row('sigma_diff').mean) < 0.3

    def test_constraints_hold_on_every_draw(self, separated_results):
        samples = separated_results.samples
        assert np.all(samples.get('gamma') > 0)
        nu = samples.get('nu')
        assert np.all(nu > 0)
        assert np.all(nu <= NU_UPPER)

    def test_generated_quantities_consistent(self, separated_results):
        samples = separated_results.samples
        alpha = samples.get('alpha')
        gamma = samples.get('gamma')
        np.testing.assert_allclose(samples.get('mu_diff'), alpha[..., 0] - alpha[..., 1], atol=1e-12)
        np.testing.assert_allclose(samples.get('sigma_diff'), gamma[..., 0] - gamma[..., 1], atol=1e-12)

    def test_draw_counts(self, separated_results):
        samples = separated_results.samples
        assert samples.draws_per_chain == [500] * 4
        assert samples.history.shape == (500, 4, 7)
        assert samples.num_warmup == 500
        assert not samples.cancelled

    def test_converged(self, separated_results):
        diagnostics = separated_results.diagnostics
        assert separated_results.converged
        assert np.all(diagnostics.rhat < 1.01)
        assert diagnostics.ess_of('mu_diff') > 400

    def test_summary_rows(self, separated_results):
        names = [r.name for r in separated_results.summary]
        assert names[:7] == ['alpha[1]', 'alpha[2]', 'gamma[1]', 'gamma[2]', 'nu', 'mu_diff', 'sigma_diff']
        with pytest.raises(KeyError):
            separated_results.row('no_such_row')

    def test_config_recorded(self, separated_results):
        assert separated_results.config['num_chains'] == 4
        assert separated_results.config['posterior_id'] == 'robust_ttest'


class TestRobustness:

    def test_outliers_do_not_drag_location(self):
        """A handful of gross outliers barely move the robust location estimate."""
        outcome, group_id = generate_two_group_data(100, mu=(0.0, 1.0), sd=(1.0, 1.0), seed=7)
        outcome = np.concatenate([outcome, np.full(5, 30.0)])
        group_id = np.concatenate([group_id, np.ones(5, dtype=int)])
        dataset = Dataset.from_arrays(outcome, group_id)

        raw_mean = np.mean(outcome[group_id == 1])
        assert raw_mean > 1.0

        results = run_best(dataset, {'num_chains': 2, 'num_draws': 1000, 'num_warmup': 500, 'rng_seed': 3})
        assert abs(results.row('alpha[1]').mean) < 0.4
        assert results.row('nu').mean < 10.0

    def test_normal_data_gives_large_nu(self):
        outcome, group_id = generate_two_group_data(400, mu=(0.0, 0.5), sd=(1.0, 1.0), seed=8)
        results = run_best(Dataset.from_arrays(outcome, group_id),
                           {'num_chains': 2, 'num_draws': 1000, 'num_warmup': 500, 'rng_seed': 4})
        assert results.row('nu').mean > 20.0


# ============================================================================
# REPRODUCIBILITY
# ============================================================================

class TestDeterminism:

    CONFIG = {'num_chains': 2, 'num_draws': 200, 'num_warmup': 100, 'rng_seed': 123}

    def test_same_seed_same_draws(self, small_dataset):
        a = run_best(small_dataset, dict(self.CONFIG))
        b = run_best(small_dataset, dict(self.CONFIG))
        for draws_a, draws_b in zip(a.samples.chain_draws, b.samples.chain_draws):
            np.testing.assert_array_equal(draws_a, draws_b)
        np.testing.assert_array_equal(a.samples.step_sizes, b.samples.step_sizes)

    def test_independent_of_worker_count(self, small_dataset):
        serial = run_best(small_dataset, dict(self.CONFIG, num_workers=1))
        parallel = run_best(small_dataset, dict(self.CONFIG, num_workers=2))
        np.testing.assert_array_equal(serial.samples.history, parallel.samples.history)

    def test_different_seed_different_draws(self, small_dataset):
        a = run_best(small_dataset, dict(self.CONFIG))
        b = run_best(small_dataset, dict(self.CONFIG, rng_seed=124))
        assert not np.array_equal(a.samples.history, b.samples.history)


# ============================================================================
# CANCELLATION
# ============================================================================

class TestCancellation:

    def test_cancelled_before_start(self, small_dataset):
        event = threading.Event()
        event.set()
        results = run_best(small_dataset, {'num_chains': 2, 'num_draws': 200}, cancel_event=event)
        assert results.samples.cancelled
        assert results.diagnostics.cancelled
        assert results.samples.draws_per_chain == [0, 0]
        assert not results.converged
        assert np.isnan(results.row('mu_diff').mean)

    def test_cancelled_mid_run(self, small_dataset):
        event = threading.Event()
        timer = threading.Timer(3.0, event.set)
        timer.start()
        try:
            results = run_best(small_dataset, {'num_chains': 2, 'num_draws': 100_000, 'num_warmup': 1000},
                               cancel_event=event)
        finally:
            timer.cancel()
        samples = results.samples
        assert samples.cancelled
        assert all(n < 99_000 for n in samples.draws_per_chain)
        assert any("cancelled" in w for w in results.diagnostics.warnings)


# ============================================================================
# OPTIONS
# ============================================================================

class TestOptions:

    def test_three_groups_with_contrasts(self, three_group_dataset):
        results = run_best(three_group_dataset,
                           {'num_chains': 2, 'num_draws': 600, 'num_warmup': 300, 'rng_seed': 5},
                           contrasts=pairwise_contrasts(3))
        assert results.samples.history.shape == (300, 2, 9)
        assert results.row('alpha[1]-alpha[2]').mean == pytest.approx(results.row('mu_diff').mean, rel=1e-10)
        assert results.row('alpha[3]').mean == pytest.approx(-1.0, abs=1.0)
        assert results.row('gamma[2]-gamma[3]').mean < 0.0

    def test_rwm_fallback(self, small_dataset):
        results = run_best(small_dataset, {
            'num_chains': 2, 'num_draws': 6000, 'num_warmup': 2000, 'algorithm': 'rwm', 'rng_seed': 6,
        })
        assert results.samples.algorithm == 'rwm'
        assert np.all(results.samples.stat('tree_depth') == 0)
        assert np.all(results.samples.get('gamma') > 0)
        # groups were generated 2.0 apart
        assert results.row('mu_diff').mean == pytest.approx(-2.0, abs=1.0)

    def test_init_params_and_prior_init(self, small_dataset):
        init = {'alpha': [0.0, 2.0], 'gamma': [1.0, 1.5], 'nu': 10.0}
        results = run_best(small_dataset, {'num_chains': 2, 'num_draws': 200, 'rng_seed': 7},
                           init_params=init)
        assert results.samples.draws_per_chain == [100, 100]

        results = run_best(small_dataset, {'num_chains': 2, 'num_draws': 200, 'rng_seed': 7,
                                           'init_strategy': 'prior'})
        assert np.all(np.isfinite(results.samples.history))

    def test_exclude_divergent_flag(self, small_dataset):
        results = run_best(small_dataset, {'num_chains': 2, 'num_draws': 200, 'rng_seed': 8},
                           exclude_divergent=True)
        assert np.isfinite(results.row('mu_diff').mean)

    def test_hdi_prob_option(self, small_dataset):
        results = run_best(small_dataset, {'num_chains': 2, 'num_draws': 400, 'rng_seed': 9, 'hdi_prob': 0.5})
        row = results.row('mu_diff')
        assert row.hdi_prob == 0.5


# ============================================================================
# CALIBRATION
# ============================================================================

@pytest.mark.slow
class TestCalibration:

    def test_hdi_coverage_under_null(self):
        """With no true difference, the 95% HDI of mu_diff should cover zero in most replications."""
        covered = 0
        n_trials = 40
        for trial in range(n_trials):
            outcome, group_id = generate_two_group_data(30, mu=(0.0, 0.0), sd=(1.0, 1.0), seed=1000 + trial)
            results = run_best(Dataset.from_arrays(outcome, group_id),
                               {'num_chains': 2, 'num_draws': 600, 'num_warmup': 300, 'rng_seed': trial})
            covered += int(results.row('mu_diff').hdi_contains(0.0))
        assert covered >= 34
