"""
Built-in posterior models.

Importing this package registers every model with the posterior registry.
"""

from .robust_ttest import (
    ModelData,
    make_model_data,
    log_prior,
    log_likelihood,
    log_posterior,
    log_density,
    generated_quantities,
    register,
    POSTERIOR_ID,
)

register()

__all__ = [
    'ModelData',
    'make_model_data',
    'log_prior',
    'log_likelihood',
    'log_posterior',
    'log_density',
    'generated_quantities',
    'POSTERIOR_ID',
]
