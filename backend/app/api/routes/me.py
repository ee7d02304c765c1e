from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.app.api.deps import get_case_access_resolver, get_current_user
from backend.app.models import User
from backend.app.services.case_access_service import AccessScopeResolver, Role


router = APIRouter(prefix="/api", tags=["users"])


class MeOut(BaseModel):
    id: str
    email: str
    name: Optional[str]
    role: Optional[str]
    department: Optional[str]
    supervisor_id: Optional[str]
    case_actions: List[str]


@router.get("/me", response_model=MeOut)
def get_me(
    user: User = Depends(get_current_user),
    resolver: AccessScopeResolver = Depends(get_case_access_resolver),
):
    return MeOut(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        department=user.department,
        supervisor_id=user.supervisor_id,
        case_actions=resolver.policy.actions_for(Role.parse(user.role)),
    )
