"""Raw ingestion layer - tables owned by the ingestion collaborators."""

from market_signals.ingestion.models import (
    RawPortalListingModel,
    RawRegistryTransactionModel,
    RawRentalContractModel,
)
from market_signals.ingestion.reader import (
    RawObservationReader,
    RawPortalRow,
    RawRental,
    RawSale,
    SqlRawObservationReader,
)

__all__ = [
    "RawObservationReader",
    "RawPortalListingModel",
    "RawPortalRow",
    "RawRegistryTransactionModel",
    "RawRental",
    "RawRentalContractModel",
    "RawSale",
    "SqlRawObservationReader",
]
