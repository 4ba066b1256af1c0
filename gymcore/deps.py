from __future__ import annotations

import hmac
from typing import Iterator, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from .approval import AdminIdentity
from .config import get_settings
from .database import get_db_session
from .rate_limit import rate_limit_check
from .store import MembershipStore


def get_db() -> Iterator[Session]:
    yield from get_db_session()


def get_store(db: Session = Depends(get_db)) -> MembershipStore:
    return MembershipStore(db)


def validate_admin_session(token: Optional[str]) -> Optional[AdminIdentity]:
    """Resolve a bearer token to the admin it belongs to, or None."""
    if not token:
        return None
    settings = get_settings()
    if not hmac.compare_digest(token.encode("utf-8"), settings.api_token.encode("utf-8")):
        return None
    return AdminIdentity(email=settings.admin_email)


def require_admin(request: Request, authorization: Optional[str] = Header(default=None)) -> AdminIdentity:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    admin = validate_admin_session(authorization.split(" ", 1)[1].strip())
    if admin is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired admin session")
    rate_limit_check(request, admin.email)
    return admin
