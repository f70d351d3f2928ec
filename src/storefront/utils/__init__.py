"""
Utils module initialization.
"""

from .health_utils import check_database, check_backend, health_check
from .session_utils import (
    StorefrontSession,
    build_session,
    remember_checkout_owner,
    forget_checkout_owner,
    resume_checkout_session,
)

__all__ = [
    # Health checks
    "check_database",
    "check_backend",
    "health_check",
    # Session wiring
    "StorefrontSession",
    "build_session",
    "remember_checkout_owner",
    "forget_checkout_owner",
    "resume_checkout_session",
]
