from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.domain.case_fields import (
    COMPLEX_FIELDS,
    DISPLAY_NAME_FIELDS,
    MERGEABLE_FIELDS,
    field_label,
    normalize_value,
)
from backend.app.domain.contracts import SessionPrincipal
from backend.app.models import CaseChangeLog

ACTION_CREATED = "case_created"
ACTION_UPDATED = "case_updated"

EMPTY_VALUE = "(empty)"
SUMMARY_LABEL_LIMIT = 3


def _shown(snapshot: Mapping[str, Any], name: str) -> Optional[str]:
    display_key = DISPLAY_NAME_FIELDS.get(name)
    if display_key:
        display = normalize_value(display_key, snapshot.get(display_key))
        if display is not None:
            return display
    return normalize_value(name, snapshot.get(name))


def diff(before: Mapping[str, Any], after: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Field-level changes between two case snapshots, user references shown by name."""
    changes: List[Dict[str, Any]] = []
    for name in MERGEABLE_FIELDS:
        if normalize_value(name, before.get(name)) == normalize_value(name, after.get(name)):
            continue
        changes.append(
            {
                "field": name,
                "label": field_label(name),
                "previous_value": _shown(before, name),
                "current_value": _shown(after, name),
            }
        )
    return changes


def describe(changes: List[Dict[str, Any]], replaced_collections: Iterable[str] = ()) -> str:
    replaced_names = set(replaced_collections)
    replaced = [COMPLEX_FIELDS[name] for name in COMPLEX_FIELDS if name in replaced_names]
    if len(changes) == 1:
        change = changes[0]
        before = change.get("previous_value") or EMPTY_VALUE
        after = change.get("current_value") or EMPTY_VALUE
        summary = f"{change['label']}: {before} -> {after}"
    elif changes:
        labels = [change["label"] for change in changes[:SUMMARY_LABEL_LIMIT]]
        suffix = "..." if len(changes) > SUMMARY_LABEL_LIMIT else ""
        summary = f"Changed {', '.join(labels)}{suffix}"
    elif replaced:
        return f"Replaced {', '.join(replaced)}"
    else:
        return "No field changes"
    if replaced:
        summary += f"; replaced {', '.join(replaced)}"
    return summary


def append_change_log(
    db: Session,
    *,
    case_id: str,
    actor: SessionPrincipal,
    action: str,
    changes: List[Dict[str, Any]],
    replaced_collections: Iterable[str] = (),
    description: Optional[str] = None,
) -> CaseChangeLog:
    row = CaseChangeLog(
        case_id=case_id,
        actor_id=actor.id,
        actor_name=actor.name,
        actor_role=actor.role,
        action=action,
        description=description or describe(changes, replaced_collections),
        changes=changes,
    )
    db.add(row)
    db.flush()
    return row


def list_change_logs(db: Session, case_id: str) -> List[Dict[str, Any]]:
    rows = (
        db.execute(
            select(CaseChangeLog)
            .where(CaseChangeLog.case_id == case_id)
            .order_by(CaseChangeLog.created_at.desc(), CaseChangeLog.id.desc())
        )
        .scalars()
        .all()
    )
    return [
        {
            "id": row.id,
            "action": row.action,
            "description": row.description,
            "actor_id": row.actor_id,
            "actor_name": row.actor_name,
            "actor_role": row.actor_role,
            "created_at": row.created_at,
            "changes": list(row.changes or []),
        }
        for row in rows
    ]
