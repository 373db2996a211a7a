"""
Database Connection Module

Provides the fuel data store backed by PostgreSQL (or any SQLAlchemy URL).
"""

import logging
import os
from functools import lru_cache

from fuel_import.store import SqlFuelStore, create_store_engine

logger = logging.getLogger(__name__)

# Database URL from environment
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('POSTGRES_USER', 'fleet')}:"
    f"{os.getenv('POSTGRES_PASSWORD', 'password')}@"
    f"{os.getenv('POSTGRES_HOST', 'localhost')}:"
    f"{os.getenv('POSTGRES_PORT', '5432')}/"
    f"{os.getenv('POSTGRES_DB', 'fleet_management')}"
)


@lru_cache
def get_engine():
    """Create the shared engine on first use."""
    if DATABASE_URL.startswith("sqlite"):
        return create_store_engine(DATABASE_URL)

    return create_store_engine(
        DATABASE_URL,
        pool_size=5,
        max_overflow=10,
    )


def get_store() -> SqlFuelStore:
    """Get the fuel data store for FastAPI dependency injection.

    Returns:
        SqlFuelStore bound to the shared engine
    """
    return SqlFuelStore(get_engine())
