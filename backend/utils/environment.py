"""
Environment Configuration Utility

Provides environment detection and the storage backend policy.

ENVIRONMENT values:
- production: MongoDB store only
- development: In-memory store allowed for local runs
- test: In-memory store allowed for automated testing
"""
import os
import logging

# Valid environment values
VALID_ENVIRONMENTS = {"production", "development", "test"}

# Valid credit store backends
VALID_STORES = {"mongo", "memory"}

# Get current environment (default to development for safety)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development").lower()

# Validate environment value
if ENVIRONMENT not in VALID_ENVIRONMENTS:
    logging.warning(f"Invalid ENVIRONMENT '{ENVIRONMENT}', defaulting to 'development'")
    ENVIRONMENT = "development"


def is_production() -> bool:
    """Check if running in production environment."""
    return ENVIRONMENT == "production"


def allow_memory_store() -> bool:
    """
    Check if the in-memory credit store is allowed.

    Returns True only in development or test environments.
    Production quotas must survive restarts and be shared across workers.
    """
    return not is_production()


def get_store_backend() -> str:
    """
    Resolve the credit store backend from CREDITS_STORE.

    Raises:
        ValueError: unknown backend, or memory store requested in production
    """
    backend = os.environ.get("CREDITS_STORE", "mongo").lower()
    if backend not in VALID_STORES:
        raise ValueError(f"Invalid CREDITS_STORE '{backend}'. Must be one of: {sorted(VALID_STORES)}")
    if backend == "memory" and not allow_memory_store():
        raise ValueError(
            f"CREDITS_STORE=memory is not allowed in {ENVIRONMENT}. "
            "Use the MongoDB store."
        )
    return backend
