"""
Repository Layer Package.

Provides data-access abstractions over the three Supabase profile stores.
Services never touch ``db.supabase`` tables directly.

Usage:
    from portal.repositories import ProfileStores
"""

from portal.repositories.base_repository import BaseRepository
from portal.repositories.profile_repository import (
    AdminRepository,
    EmployerRepository,
    JobseekerRepository,
    ProfileRepository,
    ProfileStores,
)

__all__ = [
    "AdminRepository",
    "BaseRepository",
    "EmployerRepository",
    "JobseekerRepository",
    "ProfileRepository",
    "ProfileStores",
]
