"""
Collaborator lookups consumed by the reservation engine.
Property listings and user accounts are owned by other services.
"""

from abc import ABC, abstractmethod

from rental_booking.domain.validation import PropertyConstraints


class PropertyDirectory(ABC):
    """Capacity and pricing snapshot lookup."""

    @abstractmethod
    async def get(self, property_id: int) -> PropertyConstraints:
        """
        Raises:
            NotFoundError: unknown property
            TransientError: the property service could not be reached
        """

    async def close(self) -> None:
        pass


class IdentityDirectory(ABC):
    """User existence check for guests and hosts."""

    @abstractmethod
    async def exists(self, user_id: int) -> bool:
        """
        Raises:
            TransientError: the identity service could not be reached
        """

    async def close(self) -> None:
        pass
