from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from backend.app.api.deps import get_case_access_resolver, get_current_principal
from backend.app.db import get_db
from backend.app.domain.contracts import (
    CasePayload,
    ChangeLogOut,
    SessionPrincipal,
    normalize_update_body,
    validation_messages,
)
from backend.app.services import case_service
from backend.app.services.case_access_service import AccessScopeResolver
from backend.app.services.case_errors import BadRequestError

router = APIRouter(prefix="/api/cases", tags=["cases"])


class PaginationOut(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class CaseListOut(BaseModel):
    data: List[Dict[str, Any]]
    pagination: PaginationOut


@router.get("", response_model=CaseListOut)
def list_cases(
    department: Optional[str] = Query(default=None),
    case_status: Optional[str] = Query(default=None),
    case_type: Optional[str] = Query(default=None),
    case_level: Optional[str] = Query(default=None),
    assigned_lawyer_id: Optional[str] = Query(default=None),
    assigned_sale_id: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=case_service.DEFAULT_PAGE_SIZE, ge=1),
    order_by: str = Query(default="updated_at"),
    order_direction: str = Query(default="desc"),
    db: Session = Depends(get_db),
    principal: SessionPrincipal = Depends(get_current_principal),
    resolver: AccessScopeResolver = Depends(get_case_access_resolver),
):
    return case_service.list_cases(
        db,
        resolver,
        principal,
        filters={
            "department": department,
            "case_status": case_status,
            "case_type": case_type,
            "case_level": case_level,
            "assigned_lawyer_id": assigned_lawyer_id,
            "assigned_sale_id": assigned_sale_id,
        },
        search=search,
        page=page,
        page_size=page_size,
        order_by=order_by,
        order_direction=order_direction,
    )


@router.get("/{case_id}")
def get_case(
    case_id: str,
    db: Session = Depends(get_db),
    principal: SessionPrincipal = Depends(get_current_principal),
    resolver: AccessScopeResolver = Depends(get_case_access_resolver),
):
    return case_service.get_case(db, resolver, principal, case_id)


@router.post("", status_code=201)
def create_case(
    body: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    principal: SessionPrincipal = Depends(get_current_principal),
    resolver: AccessScopeResolver = Depends(get_case_access_resolver),
):
    try:
        payload = CasePayload.model_validate(body)
    except ValidationError as exc:
        raise BadRequestError("invalid case payload", validation_messages(exc)) from exc
    result = case_service.create_case(db, resolver, principal, payload)
    db.commit()
    return result


@router.put("/{case_id}")
def update_case(
    case_id: str,
    body: Any = Body(...),
    db: Session = Depends(get_db),
    principal: SessionPrincipal = Depends(get_current_principal),
    resolver: AccessScopeResolver = Depends(get_case_access_resolver),
):
    try:
        request = normalize_update_body(body)
    except ValidationError as exc:
        raise BadRequestError("invalid case update", validation_messages(exc)) from exc
    result = case_service.update_case(db, resolver, principal, case_id, request)
    db.commit()
    return result


@router.delete("/{case_id}", status_code=204)
def delete_case(
    case_id: str,
    db: Session = Depends(get_db),
    principal: SessionPrincipal = Depends(get_current_principal),
    resolver: AccessScopeResolver = Depends(get_case_access_resolver),
):
    case_service.delete_case(db, resolver, principal, case_id)
    db.commit()
    return Response(status_code=204)


@router.get("/{case_id}/change-logs", response_model=List[ChangeLogOut])
def list_change_logs(
    case_id: str,
    db: Session = Depends(get_db),
    principal: SessionPrincipal = Depends(get_current_principal),
    resolver: AccessScopeResolver = Depends(get_case_access_resolver),
):
    return case_service.list_case_change_logs(db, resolver, principal, case_id)
