# backend/app/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_actor, require_admin, require_tutor
from ...database import get_db
from .services import (
    get_availability_service,
    get_cache_service_dep,
    get_credit_service,
    get_lesson_policy,
    get_lesson_policy_service,
    get_meeting_provider,
)

__all__ = [
    # Auth
    "get_current_actor",
    "require_admin",
    "require_tutor",
    # Database
    "get_db",
    # Services
    "get_availability_service",
    "get_cache_service_dep",
    "get_credit_service",
    "get_lesson_policy",
    "get_lesson_policy_service",
    "get_meeting_provider",
]
