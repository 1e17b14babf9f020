from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.vendor import VendorAccount
from .base import refresh_columns


class VendorAccountRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_vendor_id(self, vendor_id: int) -> Optional[VendorAccount]:
        query = (
            select(VendorAccount)
            .where(VendorAccount.vendor_id == vendor_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def get_or_create(
        self, vendor_id: int, default_commission_rate: Decimal
    ) -> VendorAccount:
        account = await self.get_by_vendor_id(vendor_id)
        if account:
            return account

        account = VendorAccount(
            vendor_id=vendor_id,
            commission_rate=default_commission_rate,
            payout_sequence=0,
        )
        self.session.add(account)
        await self.session.flush()
        return account

    async def upsert(self, vendor_id: int, data: Dict[str, Any]) -> VendorAccount:
        """Create or update a vendor account with the given fields"""
        account = await self.get_by_vendor_id(vendor_id)
        if account is None:
            account = VendorAccount(vendor_id=vendor_id, payout_sequence=0, **data)
            self.session.add(account)
        else:
            for field, value in data.items():
                setattr(account, field, value)
        await self.session.flush()
        await refresh_columns(self.session, account)
        return account

    async def advance_payout_sequence(self, vendor_id: int, observed: int) -> bool:
        """
        Compare-and-set bump of the vendor's payout sequence. Serializes
        pending payout insertions: a racing request observing the same
        sequence loses and gets False.
        """
        stmt = (
            update(VendorAccount)
            .where(
                VendorAccount.vendor_id == vendor_id,
                VendorAccount.payout_sequence == observed,
            )
            .values(payout_sequence=observed + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
