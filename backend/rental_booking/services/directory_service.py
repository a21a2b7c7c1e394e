"""
Property and identity directory implementations.

The HTTP-backed directories call the owning services with httpx; the
in-memory ones are used when no service URL is configured (local
development and tests).
"""

from decimal import Decimal
from typing import Iterable, Optional

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from rental_booking.core.config import Settings
from rental_booking.core.exceptions import NotFoundError, TransientError
from rental_booking.core.logging import get_logger
from rental_booking.domain.validation import PropertyConstraints
from rental_booking.services.interfaces.directory import IdentityDirectory, PropertyDirectory

logger = get_logger(__name__)


class PropertySnapshot(BaseModel):
    """Wire shape of the property service's constraints endpoint."""

    id: int
    max_guests: int
    min_nights: int = 1
    max_nights: int = 365
    nightly_rate: Decimal
    cleaning_fee: Optional[Decimal] = None
    service_fee: Optional[Decimal] = None
    security_deposit: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    instant_book: bool = False
    currency: str = "USD"

    def to_constraints(self) -> PropertyConstraints:
        return PropertyConstraints(
            property_id=self.id,
            max_guests=self.max_guests,
            min_nights=self.min_nights,
            max_nights=self.max_nights,
            nightly_rate=self.nightly_rate,
            cleaning_fee=self.cleaning_fee,
            service_fee=self.service_fee,
            security_deposit=self.security_deposit,
            tax=self.tax,
            instant_book=self.instant_book,
            currency=self.currency,
        )


class InMemoryPropertyDirectory(PropertyDirectory):
    def __init__(self, properties: Iterable[PropertyConstraints] = ()):
        self._properties = {p.property_id: p for p in properties}

    def add(self, constraints: PropertyConstraints) -> None:
        self._properties[constraints.property_id] = constraints

    async def get(self, property_id: int) -> PropertyConstraints:
        try:
            return self._properties[property_id]
        except KeyError:
            raise NotFoundError("Property", property_id)


class InMemoryIdentityDirectory(IdentityDirectory):
    """
    Known user ids. With `allow_all` every id exists, which is how a
    deployment without an identity service behaves.
    """

    def __init__(self, user_ids: Iterable[int] = (), allow_all: bool = False):
        self._user_ids = set(user_ids)
        self.allow_all = allow_all

    def add(self, user_id: int) -> None:
        self._user_ids.add(user_id)

    async def exists(self, user_id: int) -> bool:
        return self.allow_all or user_id in self._user_ids


class HttpPropertyDirectory(PropertyDirectory):
    def __init__(self, base_url: str, timeout: float = 3.0, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def get(self, property_id: int) -> PropertyConstraints:
        try:
            response = await self.client.get(f"/properties/{property_id}/constraints")
        except httpx.HTTPError as e:
            logger.error("property_lookup_failed", property_id=property_id, error=str(e))
            raise TransientError("Property service unavailable", property_id=property_id)

        if response.status_code == 404:
            raise NotFoundError("Property", property_id)
        if response.status_code >= 400:
            logger.error(
                "property_lookup_failed",
                property_id=property_id,
                status_code=response.status_code,
            )
            raise TransientError("Property service unavailable", property_id=property_id)

        try:
            return PropertySnapshot.model_validate(response.json()).to_constraints()
        except (ValueError, PydanticValidationError) as e:
            logger.error("property_lookup_invalid_payload", property_id=property_id, error=str(e))
            raise TransientError("Property service returned an invalid payload", property_id=property_id)

    async def close(self) -> None:
        await self.client.aclose()


class HttpIdentityDirectory(IdentityDirectory):
    def __init__(self, base_url: str, timeout: float = 3.0, client: Optional[httpx.AsyncClient] = None):
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def exists(self, user_id: int) -> bool:
        try:
            response = await self.client.get(f"/users/{user_id}")
        except httpx.HTTPError as e:
            logger.error("identity_lookup_failed", user_id=user_id, error=str(e))
            raise TransientError("Identity service unavailable", user_id=user_id)

        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            logger.error("identity_lookup_failed", user_id=user_id, status_code=response.status_code)
            raise TransientError("Identity service unavailable", user_id=user_id)
        return True

    async def close(self) -> None:
        await self.client.aclose()


def build_directories(settings: Settings) -> tuple[PropertyDirectory, IdentityDirectory]:
    timeout = settings.COLLABORATOR_TIMEOUT_SECONDS

    if settings.PROPERTY_SERVICE_URL:
        properties: PropertyDirectory = HttpPropertyDirectory(settings.PROPERTY_SERVICE_URL, timeout)
    else:
        logger.warning("property_directory_in_memory")
        properties = InMemoryPropertyDirectory()

    if settings.IDENTITY_SERVICE_URL:
        identities: IdentityDirectory = HttpIdentityDirectory(settings.IDENTITY_SERVICE_URL, timeout)
    else:
        identities = InMemoryIdentityDirectory(allow_all=True)

    return properties, identities
