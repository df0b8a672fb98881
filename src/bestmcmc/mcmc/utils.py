import os

# Suppress XLA C++ warnings; must be set before JAX import
os.environ.setdefault('TF_CPP_MIN_LOG_LEVEL', '2')

DEFAULT_NUM_DRAWS = 2000
DEFAULT_NUM_WARMUP = 1000


def clean_config(mcmc_config):
    """
    Returns a copy of the config with defaults filled in.
    All config keys use lowercase with underscores.

    num_draws counts warm-up plus retained draws. When num_warmup is not
    given it defaults to 1000, or to half of num_draws for shorter runs.
    """
    mcmc_config = dict(mcmc_config or {})

    mcmc_config.setdefault('posterior_id', 'robust_ttest')
    mcmc_config.setdefault('use_double', True)
    mcmc_config.setdefault('rng_seed', 42)
    mcmc_config.setdefault('num_chains', 4)
    mcmc_config.setdefault('num_draws', DEFAULT_NUM_DRAWS)
    num_draws = mcmc_config['num_draws']
    if isinstance(num_draws, int) and not isinstance(num_draws, bool):
        mcmc_config.setdefault('num_warmup', min(DEFAULT_NUM_WARMUP, num_draws // 2))
    else:
        # validate_mcmc_config reports the bad num_draws
        mcmc_config.setdefault('num_warmup', DEFAULT_NUM_WARMUP)
    mcmc_config.setdefault('target_accept', 0.8)
    mcmc_config.setdefault('hdi_prob', 0.95)
    mcmc_config.setdefault('max_tree_depth', 10)
    mcmc_config.setdefault('max_delta_energy', 1000.0)
    mcmc_config.setdefault('algorithm', 'nuts')
    mcmc_config.setdefault('init_strategy', 'uniform')
    mcmc_config.setdefault('init_radius', 2.0)
    mcmc_config.setdefault('step_size', None)
    mcmc_config.setdefault('adapt_mass_matrix', True)
    mcmc_config.setdefault('num_workers', None)

    return mcmc_config
