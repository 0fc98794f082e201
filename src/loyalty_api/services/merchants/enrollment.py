"""Customer identities and their enrollment in merchant programs."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from loyalty_api.models.customer import Customer, CustomerMerchant
from loyalty_api.services.ledger.errors import (
    EnrollmentNotFoundError,
    LedgerValidationError,
    MerchantAccessError,
)


@dataclass(frozen=True)
class Enrollment:
    customer_id: UUID
    customer_merchant_id: UUID
    external_id: str
    phone: str | None

    def as_dict(self) -> dict[str, object]:
        return {
            "id": str(self.customer_id),
            "customerMerchantId": str(self.customer_merchant_id),
            "externalId": self.external_id,
            "phone": self.phone,
        }


class EnrollmentService:
    """Find-or-create for customers and customer-merchant links.

    Creation runs in the caller's transaction so a new enrollment and the first
    ledger entry against it commit together.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def ensure_customer_merchant(
        self,
        merchant_id: UUID,
        external_id: str,
        phone: str | None = None,
    ) -> Enrollment:
        external_id = (external_id or "").strip()
        if not external_id:
            raise LedgerValidationError("externalCustomerId is required")

        customer = await self._ensure_customer(external_id, phone)
        enrollment = await self._ensure_link(customer.id, merchant_id)
        return Enrollment(
            customer_id=customer.id,
            customer_merchant_id=enrollment.id,
            external_id=customer.external_id,
            phone=customer.phone,
        )

    async def find(self, merchant_id: UUID, external_id: str) -> Enrollment:
        """Existing enrollment for an external identity; never creates one."""

        stmt = (
            select(CustomerMerchant)
            .join(Customer, Customer.id == CustomerMerchant.customer_id)
            .options(selectinload(CustomerMerchant.customer))
            .where(CustomerMerchant.merchant_id == merchant_id, Customer.external_id == external_id)
        )
        link = (await self._db.execute(stmt)).scalar_one_or_none()
        if link is None:
            raise EnrollmentNotFoundError()
        return Enrollment(
            customer_id=link.customer.id,
            customer_merchant_id=link.id,
            external_id=link.customer.external_id,
            phone=link.customer.phone,
        )

    async def get_owned(self, merchant_id: UUID, customer_merchant_id: UUID) -> CustomerMerchant:
        """Enrollment by id, provided it belongs to ``merchant_id``."""

        link = await self._db.get(CustomerMerchant, customer_merchant_id)
        if link is None:
            raise EnrollmentNotFoundError("Customer enrollment not found")
        if link.merchant_id != merchant_id:
            raise MerchantAccessError()
        return link

    async def _ensure_customer(self, external_id: str, phone: str | None) -> Customer:
        stmt = select(Customer).where(Customer.external_id == external_id)
        customer = (await self._db.execute(stmt)).scalar_one_or_none()
        if customer is not None:
            if phone and not customer.phone:
                customer.phone = phone
                await self._db.flush()
            return customer

        customer = Customer(external_id=external_id, phone=phone or None)
        try:
            async with self._db.begin_nested():
                self._db.add(customer)
        except IntegrityError:
            logger.warning("Detected race when creating customer", external_id=external_id)
            return (await self._db.execute(stmt)).scalar_one()

        logger.info("Created customer", customer_id=str(customer.id))
        return customer

    async def _ensure_link(self, customer_id: UUID, merchant_id: UUID) -> CustomerMerchant:
        stmt = select(CustomerMerchant).where(
            CustomerMerchant.customer_id == customer_id,
            CustomerMerchant.merchant_id == merchant_id,
        )
        link = (await self._db.execute(stmt)).scalar_one_or_none()
        if link is not None:
            return link

        link = CustomerMerchant(customer_id=customer_id, merchant_id=merchant_id)
        try:
            async with self._db.begin_nested():
                self._db.add(link)
        except IntegrityError:
            logger.warning(
                "Detected race when creating enrollment",
                customer_id=str(customer_id),
                merchant_id=str(merchant_id),
            )
            return (await self._db.execute(stmt)).scalar_one()

        logger.info(
            "Enrolled customer",
            customer_id=str(customer_id),
            merchant_id=str(merchant_id),
            customer_merchant_id=str(link.id),
        )
        return link


__all__ = ["Enrollment", "EnrollmentService"]
