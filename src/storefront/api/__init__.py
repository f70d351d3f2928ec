"""
Backend API client and the local sandbox backend.
"""

from .backend_client import BackendClient

__all__ = ["BackendClient"]
