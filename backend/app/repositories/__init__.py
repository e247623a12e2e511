# backend/app/repositories/__init__.py
"""
Repository Pattern Implementation for the TutorDesk scheduling engine.

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- RepositoryFactory: Factory for creating repository instances
- AvailabilityRepository: Tutor rules and blocks
- LessonRepository: Lesson bookings, commitments and change logs
- CreditRepository: Wallet, course ledger and tutor earnings
- UserRepository / CourseRepository: Users, courses and enrollments

Usage:
    from app.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_lesson_repository(db)
    conflicts = repository.find_conflicts(start, end, tutor_id=tutor_id)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository, IRepository
from .credit_repository import CreditRepository
from .factory import RepositoryFactory
from .lesson_repository import LessonRepository
from .user_repository import CourseRepository, UserRepository

__all__ = [
    "IRepository",
    "BaseRepository",
    "RepositoryFactory",
    "AvailabilityRepository",
    "LessonRepository",
    "CreditRepository",
    "UserRepository",
    "CourseRepository",
]
