"""Notification Outbox — Notifier backed by the notifications table.

Invariants:
    - One row per addressed user, one per addressed role
    - send_to_all_admins without explicit users/roles writes a single "admins" row
    - No recipients => nothing written, returns 0 (the action reports it, no error)
    - All rows of one request commit together or not at all

Design Decisions:
    - Delivery (push, e-mail digests) belongs to the notifications module; this side
      only records who should be told what
"""

import logging

from smartwms_automation.core.repository_protocols import NotificationRequest
from smartwms_automation.infrastructure.database import session_scope
from smartwms_automation.models.notification import Notification

logger = logging.getLogger(__name__)


class SqlNotificationSender:
    def __init__(self, scope=session_scope):
        self._scope = scope

    async def send_notification(self, request: NotificationRequest) -> int:
        rows = [
            self._row(request, audience="user", user_id=user_id)
            for user_id in request.user_ids
        ] + [
            self._row(request, audience="role", role_id=role_id)
            for role_id in request.role_ids
        ]
        if not rows and request.send_to_all_admins:
            rows.append(self._row(request, audience="admins"))
        if not rows:
            return 0

        async with self._scope() as db:
            db.add_all(rows)
            await db.commit()
        logger.info(
            f"Queued {len(rows)} notification(s): {request.title}",
            extra={"tenant_id": str(request.tenant_id)},
        )
        return len(rows)

    @staticmethod
    def _row(request: NotificationRequest, audience: str, **recipient) -> Notification:
        return Notification(
            tenant_id=request.tenant_id,
            audience=audience,
            notification_type=request.notification_type,
            priority=request.priority,
            title=request.title[:200],
            message=request.message,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            action_url=request.action_url,
            action_label=request.action_label,
            **recipient,
        )
