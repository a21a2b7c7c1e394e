"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .directory import IdentityDirectory, PropertyDirectory
from .locking import LockManager, booking_lock_key, property_lock_key

__all__ = [
    'IdentityDirectory', 'PropertyDirectory',
    'LockManager', 'booking_lock_key', 'property_lock_key',
]
