from __future__ import annotations

"""
Outbound side effects of lifecycle operations.

Operations return a list of tasks next to their primary result instead of
firing notifications or invoices themselves. Routers hand the list to
``BackgroundTasks``; ``dispatch_tasks`` runs them on a fresh session and only
ever logs failures.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Union

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .invoices import InvoiceGenerator, get_invoice_generator
from .notifications import NotificationSink, get_notification_sink


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationTask:
    recipient_id: Optional[str]
    type: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InvoiceTask:
    payment_id: int
    membership_id: int
    purpose: str
    approver: Optional[str] = None


OutboundTask = Union[NotificationTask, InvoiceTask]


def run_task(task: OutboundTask, notifier: NotificationSink, invoicer: InvoiceGenerator) -> None:
    if isinstance(task, NotificationTask):
        notifier.notify(task.recipient_id, task.type, task.content, task.metadata)
    elif isinstance(task, InvoiceTask):
        invoicer.generate_invoice(task.payment_id, task.membership_id, task.purpose, task.approver)
    else:
        raise TypeError(f"Unsupported task: {task!r}")


def dispatch_tasks(
    tasks: Iterable[OutboundTask],
    bind: Engine,
    notifier_factory: Callable[[Session], NotificationSink] = get_notification_sink,
    invoicer_factory: Callable[[Session], InvoiceGenerator] = get_invoice_generator,
) -> int:
    """Run every task; returns how many succeeded."""
    db = Session(bind=bind, autoflush=False, expire_on_commit=False)
    done = 0
    try:
        notifier = notifier_factory(db)
        invoicer = invoicer_factory(db)
        for task in tasks:
            try:
                run_task(task, notifier, invoicer)
                done += 1
            except Exception:
                db.rollback()
                logger.exception("outbound_task_failed task=%s", type(task).__name__)
    except Exception:
        logger.exception("outbound_dispatch_failed")
    finally:
        db.close()
    return done
