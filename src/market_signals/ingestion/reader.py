"""Read access to raw observation rows.

The snapshot aggregator is the only consumer of this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import select

from market_signals.ingestion.models import (
    RawPortalListingModel,
    RawRegistryTransactionModel,
    RawRentalContractModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class RawSale:
    external_id: str
    transaction_date: date
    geo_type: str
    geo_id: str
    geo_name: str | None
    segment: str
    sale_price: float
    area_sqm: float | None

    @classmethod
    def from_model(cls, model: RawRegistryTransactionModel) -> RawSale:
        return cls(
            external_id=model.external_id,
            transaction_date=model.transaction_date,
            geo_type=model.geo_type,
            geo_id=model.geo_id,
            geo_name=model.geo_name,
            segment=model.segment,
            sale_price=model.sale_price,
            area_sqm=model.area_sqm,
        )


@dataclass(frozen=True)
class RawRental:
    external_id: str
    contract_start: date
    geo_type: str
    geo_id: str
    geo_name: str | None
    segment: str
    annual_rent: float

    @classmethod
    def from_model(cls, model: RawRentalContractModel) -> RawRental:
        return cls(
            external_id=model.external_id,
            contract_start=model.contract_start,
            geo_type=model.geo_type,
            geo_id=model.geo_id,
            geo_name=model.geo_name,
            segment=model.segment,
            annual_rent=model.annual_rent,
        )


@dataclass(frozen=True)
class RawPortalRow:
    portal: str
    listing_id: str
    as_of_date: date
    geo_type: str
    geo_id: str
    geo_name: str | None
    segment: str
    is_active: bool
    had_price_cut: bool
    days_on_market: int | None
    price: float | None = None

    @classmethod
    def from_model(cls, model: RawPortalListingModel) -> RawPortalRow:
        return cls(
            portal=model.portal,
            listing_id=model.listing_id,
            as_of_date=model.as_of_date,
            geo_type=model.geo_type,
            geo_id=model.geo_id,
            geo_name=model.geo_name,
            segment=model.segment,
            is_active=model.is_active,
            had_price_cut=model.had_price_cut,
            days_on_market=model.days_on_market,
            price=model.price,
        )


class RawObservationReader(Protocol):
    """Query interface over raw ingestion rows, filtered by org and date range."""

    async def list_sales(self, org_id: str, *, since: date, until: date) -> list[RawSale]: ...

    async def list_rentals(self, org_id: str, *, since: date, until: date) -> list[RawRental]: ...

    async def list_portal_rows(
        self, org_id: str, *, since: date, until: date
    ) -> list[RawPortalRow]: ...


class SqlRawObservationReader:
    """RawObservationReader backed by the raw ingestion tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_sales(self, org_id: str, *, since: date, until: date) -> list[RawSale]:
        result = await self.session.execute(
            select(RawRegistryTransactionModel)
            .where(
                RawRegistryTransactionModel.org_id == org_id,
                RawRegistryTransactionModel.transaction_date >= since,
                RawRegistryTransactionModel.transaction_date <= until,
            )
            .order_by(RawRegistryTransactionModel.transaction_date)
        )
        return [RawSale.from_model(m) for m in result.scalars().all()]

    async def list_rentals(self, org_id: str, *, since: date, until: date) -> list[RawRental]:
        result = await self.session.execute(
            select(RawRentalContractModel)
            .where(
                RawRentalContractModel.org_id == org_id,
                RawRentalContractModel.contract_start >= since,
                RawRentalContractModel.contract_start <= until,
            )
            .order_by(RawRentalContractModel.contract_start)
        )
        return [RawRental.from_model(m) for m in result.scalars().all()]

    async def list_portal_rows(self, org_id: str, *, since: date, until: date) -> list[RawPortalRow]:
        result = await self.session.execute(
            select(RawPortalListingModel)
            .where(
                RawPortalListingModel.org_id == org_id,
                RawPortalListingModel.as_of_date >= since,
                RawPortalListingModel.as_of_date <= until,
            )
            .order_by(RawPortalListingModel.as_of_date)
        )
        return [RawPortalRow.from_model(m) for m in result.scalars().all()]
