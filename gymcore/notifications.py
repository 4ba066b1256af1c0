from __future__ import annotations

"""
Notification sinks: rows in the ``notifications`` table (default) or a JSON
POST to a webhook that fans out to email/push.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from .config import get_settings
from .models import Notification


logger = logging.getLogger(__name__)

MEMBERSHIP_APPROVED = "membership_approved"
MEMBERSHIP_REJECTED = "membership_rejected"
MEMBERSHIP_EXPIRING = "membership_expiring"
GRACE_PERIOD_STARTED = "grace_period_started"
GRACE_PERIOD_REMINDER = "grace_period_reminder"
MEMBERSHIP_EXPIRED = "membership_expired"
TRAINER_ASSIGNED = "trainer_assigned"
TRAINER_RENEWAL_APPROVED = "trainer_renewal_approved"
TRAINER_RENEWAL_REJECTED = "trainer_renewal_rejected"
TRAINER_GRACE_PERIOD_STARTED = "trainer_grace_period_started"
TRAINER_ACCESS_EXPIRED = "trainer_access_expired"


class NotificationSink:
    def notify(
        self, recipient_id: Optional[str], type: str, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class DatabaseNotificationSink(NotificationSink):
    def __init__(self, db: Session) -> None:
        self.db = db

    def notify(
        self, recipient_id: Optional[str], type: str, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        self.db.add(Notification(recipient_id=recipient_id, type=type, content=content, meta=metadata or {}))
        self.db.commit()


class WebhookNotificationSink(NotificationSink):
    def __init__(self, url: str, token: Optional[str] = None, timeout: float = 10.0) -> None:
        self.url = url
        self.token = token
        self.timeout = timeout

    def notify(
        self, recipient_id: Optional[str], type: str, content: str, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        payload = {"recipient_id": recipient_id, "type": type, "content": content, "metadata": metadata or {}}
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(self.url, headers=headers, json=payload)
            resp.raise_for_status()


def get_notification_sink(db: Session) -> NotificationSink:
    settings = get_settings()
    if settings.notification_provider == "webhook":
        if not settings.notification_webhook_url:
            raise RuntimeError("Notification webhook URL not configured")
        return WebhookNotificationSink(
            settings.notification_webhook_url, token=settings.api_token, timeout=settings.webhook_timeout_seconds
        )
    return DatabaseNotificationSink(db)
