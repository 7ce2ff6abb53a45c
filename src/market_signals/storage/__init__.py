"""Storage layer - Database schemas, repositories and read interfaces."""

from market_signals.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from market_signals.storage.models import (
    Base,
    MarketMetricSnapshotModel,
    MarketSignalModel,
    MarketSignalTargetModel,
    NotificationModel,
    PortalListingSnapshotModel,
)
from market_signals.storage.repos import (
    MetricSnapshotDTO,
    MetricSnapshotRepository,
    NotificationDTO,
    NotificationRepository,
    PortalSnapshotDTO,
    PortalSnapshotRepository,
    SignalDTO,
    SignalRepository,
    SignalTargetDTO,
    SignalTargetRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "MarketMetricSnapshotModel",
    "MarketSignalModel",
    "MarketSignalTargetModel",
    "MetricSnapshotDTO",
    "MetricSnapshotRepository",
    "NotificationDTO",
    "NotificationModel",
    "NotificationRepository",
    "PortalListingSnapshotModel",
    "PortalSnapshotDTO",
    "PortalSnapshotRepository",
    "SignalDTO",
    "SignalRepository",
    "SignalTargetDTO",
    "SignalTargetRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
