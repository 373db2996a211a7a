"""
API Routes Package

Contains the route modules for the fuel import API.
"""

from .fuel_statements import router as fuel_statements_router

__all__ = [
    "fuel_statements_router",
]
