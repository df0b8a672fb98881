"""
JAX Configuration - MUST be imported before any JAX imports.

This module sets environment variables for JAX configuration including:
- Double precision by default (the sampler adapts step sizes in float64)
- Persistent compilation cache directory
- Minimum compile time threshold for caching
"""
import os
from pathlib import Path

# --- PRECISION ---
# configure_mcmc_system() can still switch back to float32 via 'use_double'
os.environ.setdefault("JAX_ENABLE_X64", "True")

# --- PERSISTENT COMPILATION CACHE ---
# Enables cross-session caching of the compiled NUTS transition
_JAX_CACHE_DIR = Path.home() / ".cache" / "jax" / "bestmcmc_cache"
_JAX_CACHE_DIR.mkdir(parents=True, exist_ok=True)
os.environ.setdefault("JAX_COMPILATION_CACHE_DIR", str(_JAX_CACHE_DIR))
os.environ.setdefault("JAX_PERSISTENT_CACHE_MIN_COMPILE_TIME_SECS", "1.0")
