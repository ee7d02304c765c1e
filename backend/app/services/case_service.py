from __future__ import annotations

import logging
import math
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from backend.app.domain.case_fields import DISPLAY_NAME_FIELDS, MERGEABLE_FIELDS
from backend.app.domain.contracts import CasePayload, CaseUpdateRequest, SessionPrincipal
from backend.app.models import (
    Case,
    CaseCollection,
    CaseHearing,
    CaseParticipant,
    CaseTimeline,
    CaseTimeNode,
    User,
)
from backend.app.services import case_change_log_service, case_conflict_service
from backend.app.services.case_access_service import AccessScopeResolver, Role
from backend.app.services.case_errors import (
    AuthorizationError,
    BadRequestError,
    CaseInvariantError,
    CaseUpdateConflictError,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
FILTER_FIELDS = (
    "department",
    "case_status",
    "case_type",
    "case_level",
    "assigned_lawyer_id",
    "assigned_sale_id",
)
SORTABLE_COLUMNS = {
    "updated_at": Case.updated_at,
    "created_at": Case.created_at,
    "target_amount": Case.target_amount,
    "case_level": Case.case_level,
}
NON_NULLABLE_FIELDS = ("case_type", "case_level", "case_category", "case_status")
COLLECTION_MODELS = {
    "participants": CaseParticipant,
    "collections": CaseCollection,
    "timeline": CaseTimeline,
    "time_nodes": CaseTimeNode,
    "hearings": CaseHearing,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


# -------------------------
# Snapshots + serialization
# -------------------------


def _display_name(user: Optional[User]) -> Optional[str]:
    if user is None:
        return None
    return user.name or user.email


def _user_directory(db: Session, ids: Iterable[Optional[str]]) -> Dict[str, User]:
    wanted = sorted({user_id for user_id in ids if user_id})
    if not wanted:
        return {}
    rows = db.execute(select(User).where(User.id.in_(wanted))).scalars().all()
    return {row.id: row for row in rows}


def _case_user_ids(case: Case) -> List[Optional[str]]:
    return [getattr(case, name) for name in DISPLAY_NAME_FIELDS] + [case.updater_id, case.creator_id]


def snapshot_case(case: Case, users: Mapping[str, User]) -> Dict[str, Any]:
    """Scalar view of a case with display names resolved; the unit compared by conflict analysis and the change log."""
    snapshot: Dict[str, Any] = {"id": case.id, "version": case.version}
    for name in MERGEABLE_FIELDS:
        snapshot[name] = getattr(case, name)
    for ref_field, display_field in DISPLAY_NAME_FIELDS.items():
        snapshot[display_field] = _display_name(users.get(getattr(case, ref_field)))
    updater = users.get(case.updater_id) if case.updater_id else None
    snapshot.update(
        creator_id=case.creator_id,
        updater_id=case.updater_id,
        updater_name=_display_name(updater),
        updater_role=updater.role if updater else None,
        created_at=case.created_at,
        updated_at=case.updated_at,
    )
    return snapshot


def load_snapshot(db: Session, case: Case) -> Dict[str, Any]:
    return snapshot_case(case, _user_directory(db, _case_user_ids(case)))


def serialize_case(db: Session, case: Case) -> Dict[str, Any]:
    user_ids = _case_user_ids(case)
    user_ids += [row.follower_id for row in case.timeline]
    user_ids += [row.trial_lawyer_id for row in case.hearings]
    users = _user_directory(db, user_ids)

    record = {key: _jsonable(value) for key, value in snapshot_case(case, users).items()}
    record["participants"] = {
        "claimants": [_participant_out(row) for row in case.participants if row.role == "claimant"],
        "respondents": [_participant_out(row) for row in case.participants if row.role == "respondent"],
    }
    record["collections"] = [
        {"id": row.id, "amount": _jsonable(row.amount), "received_at": _jsonable(row.received_at)}
        for row in sorted(case.collections, key=lambda row: (row.received_at, row.created_at))
    ]
    record["timeline"] = [
        {
            "id": row.id,
            "occurred_on": _jsonable(row.occurred_on),
            "note": row.note,
            "follower_id": row.follower_id,
            "follower_name": _display_name(users.get(row.follower_id)) if row.follower_id else None,
        }
        for row in sorted(case.timeline, key=lambda row: (row.occurred_on, row.created_at), reverse=True)
    ]
    record["time_nodes"] = [
        {"id": row.id, "node_type": row.node_type, "occurred_on": _jsonable(row.occurred_on)}
        for row in sorted(case.time_nodes, key=lambda row: row.occurred_on)
    ]
    record["hearings"] = [
        {
            "id": row.id,
            "trial_lawyer_id": row.trial_lawyer_id,
            "trial_lawyer_name": _display_name(users.get(row.trial_lawyer_id)) if row.trial_lawyer_id else None,
            "hearing_time": _jsonable(row.hearing_time),
            "hearing_location": row.hearing_location,
            "tribunal": row.tribunal,
            "judge": row.judge,
            "case_number": row.case_number,
            "contact_phone": row.contact_phone,
            "trial_stage": row.trial_stage,
            "hearing_result": row.hearing_result,
        }
        for row in case.hearings
    ]
    return record


def _participant_out(row: CaseParticipant) -> Dict[str, Any]:
    return {
        "id": row.id,
        "entity_type": row.entity_type,
        "name": row.name,
        "id_number": row.id_number,
        "phone": row.phone,
        "address": row.address,
        "is_dishonest": row.is_dishonest,
        "sort_order": row.sort_order,
    }


# -------------------------
# Loading + validation
# -------------------------


def _load_case(db: Session, case_id: str, *, fresh: bool = False, with_children: bool = False) -> Optional[Case]:
    stmt = select(Case).where(Case.id == case_id)
    if with_children:
        stmt = stmt.options(*(selectinload(getattr(Case, name)) for name in COLLECTION_MODELS))
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    return db.execute(stmt).scalars().first()


def _require_visible_case(
    db: Session,
    resolver: AccessScopeResolver,
    context,
    case_id: str,
    *,
    with_children: bool = False,
) -> Case:
    case = _load_case(db, case_id, fresh=True, with_children=with_children)
    if case is None:
        raise AuthorizationError("case not found", status_code=404)
    resolver.ensure_visible(context, case)
    return case


def _check_required(touched: Mapping[str, Any]) -> None:
    cleared = [name for name in NON_NULLABLE_FIELDS if name in touched and touched[name] is None]
    if cleared:
        raise BadRequestError("fields may not be cleared", [f"{name}: may not be null" for name in cleared])


def _referenced_user_ids(payload: CasePayload) -> List[str]:
    ids = [getattr(payload, name) for name in DISPLAY_NAME_FIELDS]
    ids += [entry.follower_id for entry in payload.timeline or []]
    ids += [entry.trial_lawyer_id for entry in payload.hearings or []]
    return [user_id for user_id in ids if user_id]


def _validate_user_refs(db: Session, payload: CasePayload) -> None:
    wanted = set(_referenced_user_ids(payload))
    if not wanted:
        return
    found = set(db.execute(select(User.id).where(User.id.in_(sorted(wanted)))).scalars())
    missing = sorted(wanted - found)
    if missing:
        raise BadRequestError("unknown user reference", [f"user {user_id} does not exist" for user_id in missing])


def _scalar_values(touched: Mapping[str, Any]) -> Dict[str, Any]:
    return {name: value for name, value in touched.items() if name in MERGEABLE_FIELDS}


# -------------------------
# Sub-collections (delete all, insert provided)
# -------------------------


def _collection_rows(case_id: str, name: str, value: Any) -> List[Any]:
    if value is None:
        return []
    if name == "participants":
        rows = []
        for role, entries in (("claimant", value.claimants), ("respondent", value.respondents)):
            for index, entry in enumerate(entries):
                rows.append(
                    CaseParticipant(
                        case_id=case_id,
                        role=role,
                        entity_type=entry.entity_type,
                        name=entry.name,
                        id_number=entry.id_number,
                        phone=entry.phone,
                        address=entry.address,
                        is_dishonest=bool(entry.is_dishonest),
                        sort_order=entry.sort_order if entry.sort_order is not None else index,
                    )
                )
        return rows
    if name == "collections":
        return [
            CaseCollection(case_id=case_id, amount=entry.amount, received_at=entry.received_at or _now().date())
            for entry in value
        ]
    if name == "timeline":
        return [
            CaseTimeline(case_id=case_id, occurred_on=entry.occurred_on, note=entry.note, follower_id=entry.follower_id)
            for entry in value
        ]
    if name == "time_nodes":
        return [CaseTimeNode(case_id=case_id, node_type=entry.node_type, occurred_on=entry.occurred_on) for entry in value]
    if name == "hearings":
        return [CaseHearing(case_id=case_id, **entry.model_dump()) for entry in value]
    raise ValueError(f"unknown case collection: {name}")


def _replace_collections(db: Session, case_id: str, touched: Mapping[str, Any]) -> List[str]:
    replaced = []
    for name, model in COLLECTION_MODELS.items():
        if name not in touched:
            continue
        db.execute(delete(model).where(model.case_id == case_id))
        db.add_all(_collection_rows(case_id, name, touched[name]))
        replaced.append(name)
    return replaced


# -------------------------
# Optimistic write
# -------------------------


def _compare_and_swap(db: Session, case_id: str, expected_version: int, values: Dict[str, Any]) -> bool:
    """Single guarded UPDATE; False means another writer moved the version first."""
    result = db.execute(
        update(Case)
        .where(Case.id == case_id, Case.version == expected_version)
        .values(version=expected_version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _raise_if_blocked(
    case_id: str,
    result: case_conflict_service.ConflictResult,
    stored: Mapping[str, Any],
    base_version: Optional[int],
    merge: bool,
) -> None:
    if result.status == case_conflict_service.STATUS_HARD or (
        result.status == case_conflict_service.STATUS_MERGEABLE and not merge
    ):
        logger.info(
            "Case %s update rejected: %s conflict (base %s, latest %s, fields %s)",
            case_id,
            result.status,
            base_version,
            stored["version"],
            result.conflicting_fields,
        )
        raise CaseUpdateConflictError(
            case_conflict_service.build_conflict_details(case_id, result, stored, base_version)
        )


def _merged_values(values: Dict[str, Any], result: case_conflict_service.ConflictResult) -> Dict[str, Any]:
    # Remote-only changes win; echoing the client's stale base value back would undo them.
    remote_only = {change["field"] for change in result.remote_changes} - {
        change["field"] for change in result.client_changes
    }
    return {name: value for name, value in values.items() if name not in remote_only}


def update_case(
    db: Session,
    resolver: AccessScopeResolver,
    principal: SessionPrincipal,
    case_id: str,
    request: CaseUpdateRequest,
) -> Dict[str, Any]:
    """
    Version-guarded update of one case.

    Access is checked first, then the request is classified against the
    stored row. The write is a compare-and-swap on ``version``; if it loses a
    race the fresh row is analyzed once more and the write retried once.
    Sub-collections in the payload are replaced and a change log entry is
    appended in the same transaction. The caller owns commit/rollback.
    """
    context = resolver.resolve(db, principal)
    resolver.ensure_action(context, "update")
    case = _require_visible_case(db, resolver, context, case_id)

    payload = request.payload
    meta = request.meta
    touched = payload.touched()
    _check_required(touched)
    _validate_user_refs(db, payload)

    merge = meta is not None and meta.resolve_mode == "merge"
    base_version = meta.base_version if meta else None
    scalar_values = _scalar_values(touched)

    stored = load_snapshot(db, case)
    result = case_conflict_service.analyze(stored, meta, touched)
    _raise_if_blocked(case_id, result, stored, base_version, merge)

    written = False
    for attempt in range(2):
        values = _merged_values(scalar_values, result)
        values.update(updater_id=principal.id, updated_at=_now())
        if _compare_and_swap(db, case_id, stored["version"], values):
            written = True
            break

        fresh = _load_case(db, case_id, fresh=True)
        if fresh is None:
            raise AuthorizationError("case not found", status_code=404)
        resolver.ensure_visible(context, fresh)
        stored = load_snapshot(db, fresh)
        if attempt == 0:
            logger.warning("Case %s write raced at version %s; re-analyzing", case_id, stored["version"])
            result = case_conflict_service.analyze(stored, meta, touched)
            _raise_if_blocked(case_id, result, stored, base_version, merge)

    if not written:
        logger.warning("Case %s write raced twice; reporting hard conflict", case_id)
        raise CaseUpdateConflictError(
            case_conflict_service.race_conflict(case_id, stored, base_version, touched)
        )

    replaced = _replace_collections(db, case_id, touched)
    db.flush()

    updated = _load_case(db, case_id, fresh=True, with_children=True)
    if updated is None or updated.version != stored["version"] + 1:
        raise CaseInvariantError(f"case {case_id} missing or out of step after write")

    after = load_snapshot(db, updated)
    case_change_log_service.append_change_log(
        db,
        case_id=case_id,
        actor=principal,
        action=case_change_log_service.ACTION_UPDATED,
        changes=case_change_log_service.diff(stored, after),
        replaced_collections=replaced,
    )
    return serialize_case(db, updated)


# -------------------------
# Queries + create/delete
# -------------------------


def list_cases(
    db: Session,
    resolver: AccessScopeResolver,
    principal: SessionPrincipal,
    *,
    filters: Optional[Mapping[str, Optional[str]]] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    order_by: str = "updated_at",
    order_direction: str = "desc",
) -> Dict[str, Any]:
    page = max(int(page or 1), 1)
    page_size = min(max(int(page_size or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    empty = {"data": [], "pagination": {"page": page, "page_size": page_size, "total": 0, "total_pages": 0}}

    context = resolver.resolve(db, principal)
    if context.role is None:
        return empty
    resolver.ensure_action(context, "list")

    sort_column = SORTABLE_COLUMNS.get(order_by)
    if sort_column is None:
        raise BadRequestError(f"unsupported order_by: {order_by}")
    if order_direction not in {"asc", "desc"}:
        raise BadRequestError(f"unsupported order_direction: {order_direction}")

    query = select(Case)
    predicate = resolver.to_query_predicate(context)
    if predicate is not None:
        query = query.where(predicate)
    for name in FILTER_FIELDS:
        value = (filters or {}).get(name)
        if value:
            query = query.where(getattr(Case, name) == value)
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        hearing_matches = select(CaseHearing.case_id).where(
            or_(
                CaseHearing.case_number.ilike(pattern),
                CaseHearing.tribunal.ilike(pattern),
                CaseHearing.judge.ilike(pattern),
            )
        )
        query = query.where(
            or_(
                Case.province.ilike(pattern),
                Case.city.ilike(pattern),
                Case.remark.ilike(pattern),
                Case.id.in_(hearing_matches),
            )
        )

    total = int(db.execute(select(func.count()).select_from(query.subquery())).scalar_one())
    ordering = sort_column.asc() if order_direction == "asc" else sort_column.desc()
    rows = (
        db.execute(query.order_by(ordering, Case.id).offset((page - 1) * page_size).limit(page_size))
        .scalars()
        .all()
    )

    users = _user_directory(db, [user_id for row in rows for user_id in _case_user_ids(row)])
    data = [{key: _jsonable(value) for key, value in snapshot_case(row, users).items()} for row in rows]
    return {
        "data": data,
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": math.ceil(total / page_size) if total else 0,
        },
    }


def get_case(db: Session, resolver: AccessScopeResolver, principal: SessionPrincipal, case_id: str) -> Dict[str, Any]:
    context = resolver.resolve(db, principal)
    if context.role is not None:
        resolver.ensure_action(context, "list")
    case = _require_visible_case(db, resolver, context, case_id, with_children=True)
    return serialize_case(db, case)


def create_case(
    db: Session,
    resolver: AccessScopeResolver,
    principal: SessionPrincipal,
    payload: CasePayload,
) -> Dict[str, Any]:
    context = resolver.resolve(db, principal)
    resolver.ensure_action(context, "create")

    touched = payload.touched()
    _check_required(touched)
    missing = [name for name in ("case_type", "case_level") if touched.get(name) is None]
    if missing:
        raise BadRequestError("missing required fields", [f"{name}: field required" for name in missing])

    values = _scalar_values(touched)
    if context.role is Role.SUPER_ADMIN:
        if not values.get("department"):
            raise BadRequestError("department is required")
    else:
        if not principal.department:
            raise BadRequestError("your account has no department; cases cannot be created")
        values["department"] = principal.department
    if context.role is Role.SALE and not values.get("assigned_sale_id"):
        values["assigned_sale_id"] = principal.id
    _validate_user_refs(db, payload.model_copy(update={"assigned_sale_id": values.get("assigned_sale_id")}))

    now = _now()
    case = Case(
        **values,
        version=1,
        creator_id=principal.id,
        updater_id=principal.id,
        created_at=now,
        updated_at=now,
    )
    db.add(case)
    db.flush()
    _replace_collections(db, case.id, touched)
    db.flush()

    created = _load_case(db, case.id, fresh=True, with_children=True)
    if created is None:
        raise CaseInvariantError(f"case {case.id} missing after insert")
    case_change_log_service.append_change_log(
        db,
        case_id=created.id,
        actor=principal,
        action=case_change_log_service.ACTION_CREATED,
        changes=case_change_log_service.diff({}, load_snapshot(db, created)),
        description="Case created",
    )
    logger.info("Case %s created by %s", created.id, principal.id)
    return serialize_case(db, created)


def delete_case(db: Session, resolver: AccessScopeResolver, principal: SessionPrincipal, case_id: str) -> None:
    context = resolver.resolve(db, principal)
    resolver.ensure_action(context, "delete")
    case = _require_visible_case(db, resolver, context, case_id)
    db.delete(case)
    db.flush()
    logger.info("Case %s deleted by %s", case_id, principal.id)


def list_case_change_logs(
    db: Session,
    resolver: AccessScopeResolver,
    principal: SessionPrincipal,
    case_id: str,
) -> List[Dict[str, Any]]:
    context = resolver.resolve(db, principal)
    if context.role is not None:
        resolver.ensure_action(context, "list")
    _require_visible_case(db, resolver, context, case_id)
    return case_change_log_service.list_change_logs(db, case_id)
