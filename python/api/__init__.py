"""
FastAPI Backend for Fuel Statement Import

Provides REST API endpoints for the fuel upload and verification screens.
"""

from .main import app

__all__ = ["app"]
