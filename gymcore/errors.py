from __future__ import annotations

"""
Lifecycle error taxonomy. Each error carries the HTTP status the API layer
answers with and a stable ``code`` that clients branch on.

Inferred payment purposes are not errors; they are marked with
``PurposeSource.INFERRED`` in ``gymcore.classifier``.
"""

from typing import Any, Dict, Optional


class LifecycleError(Exception):
    status_code = 400
    code = "lifecycle_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotApprovable(LifecycleError):
    code = "not_approvable"


class ApprovalConflict(LifecycleError):
    status_code = 409
    code = "approval_conflict"


class NotEligible(LifecycleError):
    code = "not_eligible"

    def __init__(self, reason: str, constraint: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(reason, {"constraint": constraint, **(details or {})})
        self.constraint = constraint


class MissingEndDate(LifecycleError):
    code = "missing_end_date"


class MissingReference(LifecycleError):
    status_code = 404
    code = "missing_reference"


class InvalidRequest(LifecycleError):
    code = "invalid_request"


class StatusWriteError(LifecycleError):
    status_code = 500
    code = "status_write_failed"
