"""Notification publishing for newly mapped signals."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from market_signals.alerter.formatter import (
    build_notification_key,
    format_body,
    format_title,
)
from market_signals.storage.repos import NotificationDTO

if TYPE_CHECKING:
    from market_signals.storage.readers import InvestorDirectory, RecipientDirectory
    from market_signals.storage.repos import (
        NotificationRepository,
        SignalRepository,
        SignalTargetRepository,
    )

logger = logging.getLogger(__name__)

ENTITY_TYPE = "market_signal"
NEW_STATUS = "new"


@dataclass
class PublishSummary:
    sent: int = 0
    skipped: int = 0


class NotificationPublisher:
    """Writes one notification per (recipient, signal, investor) for new targets.

    Notifications are insert-if-absent on ``notification_key``, so publishing
    the same targets again writes nothing. Target status is left untouched;
    the key alone guarantees delivery happens once.
    """

    def __init__(
        self,
        signal_repo: SignalRepository,
        target_repo: SignalTargetRepository,
        notification_repo: NotificationRepository,
        investors: InvestorDirectory,
        recipients: RecipientDirectory,
        *,
        batch_size: int = 100,
    ) -> None:
        self._signal_repo = signal_repo
        self._target_repo = target_repo
        self._notification_repo = notification_repo
        self._investors = investors
        self._recipients = recipients
        self._batch_size = batch_size

    async def build_notifications(self, org_id: str) -> tuple[list[NotificationDTO], int]:
        """Return the candidate notification rows and the count of skipped targets."""
        targets = await self._target_repo.list_by_status(org_id, NEW_STATUS)
        if not targets:
            return [], 0

        signals = await self._signal_repo.get_many(org_id, sorted({t.signal_id for t in targets}))
        investors = await self._investors.get_investors(org_id, sorted({t.investor_id for t in targets}))

        rows: list[NotificationDTO] = []
        skipped = 0
        for target in targets:
            signal = signals.get(target.signal_id)
            if signal is None:
                logger.warning(
                    "Signal %s not found; skipping target %s", target.signal_id, target.id
                )
                skipped += 1
                continue

            recipients = await self._recipients.recipients_for(org_id, investors.get(target.investor_id))
            if not recipients:
                logger.warning(
                    "No recipients for investor %s; skipping target %s",
                    target.investor_id,
                    target.id,
                )
                skipped += 1
                continue

            title = format_title(signal)
            body = format_body(signal, target.relevance_score)
            for recipient in recipients:
                rows.append(
                    NotificationDTO(
                        org_id=org_id,
                        recipient_user_id=recipient,
                        notification_key=build_notification_key(
                            org_id, recipient, target.signal_id, target.investor_id
                        ),
                        entity_type=ENTITY_TYPE,
                        entity_id=str(target.signal_id),
                        title=title,
                        body=body,
                        metadata={
                            "signal_id": target.signal_id,
                            "investor_id": target.investor_id,
                            "target_id": target.id,
                            "relevance_score": target.relevance_score,
                        },
                    )
                )
        return rows, skipped

    async def publish(self, org_id: str) -> PublishSummary:
        rows, skipped_targets = await self.build_notifications(org_id)
        summary = PublishSummary(skipped=skipped_targets)
        if rows:
            inserted = await self._notification_repo.insert_if_absent(rows, batch_size=self._batch_size)
            summary.sent = inserted
            summary.skipped += len(rows) - inserted
        logger.info("Notifications: org=%s sent=%d skipped=%d", org_id, summary.sent, summary.skipped)
        return summary
