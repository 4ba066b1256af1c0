from __future__ import annotations

"""
Structured audit trail for lifecycle operations.

Entries have a fixed shape; renewal provenance and payment classification
source are recorded so inferred decisions stay distinguishable from explicit
ones. Recording is best effort: a failing sink logs and carries on.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import AuditEvent
from .periods import utcnow


APPROVED = "approved"
REJECTED = "rejected"
PAYMENT_VERIFIED = "payment_verified"
PAYMENTS_SUPERSEDED = "payments_superseded"
TRAINER_ASSIGNED = "trainer_assigned"
TRAINER_ASSIGNMENT_NEEDED = "trainer_assignment_needed"
APPROVAL_CONFLICT = "approval_conflict"
TRAINER_RENEWAL_APPROVED = "trainer_renewal_approved"
TRAINER_RENEWAL_REJECTED = "trainer_renewal_rejected"
GRACE_PERIOD_STARTED = "grace_period_started"
MEMBERSHIP_EXPIRED = "membership_expired"
TRAINER_GRACE_PERIOD_STARTED = "trainer_grace_period_started"
TRAINER_GRACE_PERIOD_EXPIRED = "trainer_grace_period_expired"

audit_logger = logging.getLogger("audit")


@dataclass
class AuditEntry:
    action: str
    membership_id: Optional[int] = None
    actor: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    provenance: Optional[str] = None
    details: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=utcnow)


class AuditSink:
    def record(self, entry: AuditEntry) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class MemoryAuditSink(AuditSink):
    """Keeps entries in a list; used by scripts and tests that do not need rows."""

    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions(self) -> List[str]:
        return [e.action for e in self.entries]


class DatabaseAuditSink(AuditSink):
    def __init__(self, db: Session) -> None:
        self.db = db

    def record(self, entry: AuditEntry) -> None:
        audit_logger.info(
            "action=%s membership_id=%s actor=%s previous=%s new=%s provenance=%s meta=%s",
            entry.action,
            entry.membership_id,
            entry.actor,
            entry.previous_status,
            entry.new_status,
            entry.provenance,
            json.dumps(entry.metadata, default=str, sort_keys=True),
        )
        try:
            self.db.add(
                AuditEvent(
                    ts=entry.ts,
                    membership_id=entry.membership_id,
                    action=entry.action,
                    actor=entry.actor,
                    previous_status=entry.previous_status,
                    new_status=entry.new_status,
                    provenance=entry.provenance,
                    details=entry.details,
                    meta=json.loads(json.dumps(entry.metadata, default=str)),
                )
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            audit_logger.exception("audit_write_failed action=%s membership_id=%s", entry.action, entry.membership_id)
