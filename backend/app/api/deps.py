# backend/app/api/deps.py
from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db import get_db
from backend.app.domain.contracts import SessionPrincipal
from backend.app.models import User
from backend.app.services.case_access_service import AccessPolicy, AccessScopeResolver


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """
    Header auth for the case API.

    Reads identity from headers:
      - X-User-Id    (preferred)
      - X-User-Email (fallback)

    Accounts are provisioned elsewhere; an unknown or banned user is rejected.
    db must be injected via Depends(get_db) so FastAPI doesn't treat Session
    as a Pydantic field.
    """
    user_id = (request.headers.get("X-User-Id") or "").strip()
    email = (request.headers.get("X-User-Email") or "").strip().lower()
    if not user_id and not email:
        raise HTTPException(status_code=401, detail="Missing X-User-Id or X-User-Email header")

    if user_id:
        user = db.get(User, user_id)
        if not user:
            raise HTTPException(status_code=401, detail="Unknown X-User-Id")
    else:
        user = db.execute(select(User).where(User.email == email)).scalars().first()
        if not user:
            raise HTTPException(status_code=401, detail="Unknown X-User-Email")

    if user.banned:
        raise HTTPException(status_code=401, detail="account disabled")
    return user


def get_current_principal(user: User = Depends(get_current_user)) -> SessionPrincipal:
    return SessionPrincipal(
        id=user.id,
        role=user.role,
        department=user.department,
        supervisor_id=user.supervisor_id,
        name=user.name or user.email,
    )


def get_case_access_resolver(request: Request) -> AccessScopeResolver:
    """Resolver built at startup; falls back to the default policy when the app state has none."""
    resolver = getattr(request.app.state, "case_access_resolver", None)
    if resolver is None:
        resolver = AccessScopeResolver(AccessPolicy.default())
    return resolver
