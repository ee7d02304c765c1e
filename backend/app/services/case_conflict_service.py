from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from backend.app.domain.case_fields import (
    COMPLEX_FIELDS,
    MERGEABLE_FIELDS,
    field_label,
    normalize_value,
)
from backend.app.domain.contracts import CaseUpdateMeta, ConflictDetailsOut

STATUS_OK = "ok"
STATUS_MERGEABLE = "mergeable"
STATUS_HARD = "hard"

CONFLICT_MESSAGES = {
    STATUS_HARD: "The case was changed by someone else and your edits overlap with theirs. Reload the case and apply your changes again.",
    STATUS_MERGEABLE: "The case was changed by someone else. Your edits do not overlap and can be merged.",
}


@dataclass(frozen=True)
class ConflictResult:
    status: str
    remote_changes: List[Dict[str, Any]] = field(default_factory=list)
    client_changes: List[Dict[str, Any]] = field(default_factory=list)
    conflicting_fields: List[str] = field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return self.status == STATUS_OK


def _touched_complex_fields(payload: Mapping[str, Any], dirty_fields: List[str]) -> List[str]:
    return [name for name in COMPLEX_FIELDS if name in payload or name in dirty_fields]


def _inspected_fields(
    payload: Mapping[str, Any],
    snapshot: Mapping[str, Any],
    dirty_fields: List[str],
) -> List[str]:
    # Submitted keys are inspected too, so a change without a snapshot entry can never slip past.
    candidates = set(dirty_fields) | set(snapshot) | set(payload)
    # Allowlist order keeps reports stable; unknown or retired keys drop out here.
    return [name for name in MERGEABLE_FIELDS if name in candidates]


def analyze(
    stored: Mapping[str, Any],
    meta: Optional[CaseUpdateMeta],
    payload: Mapping[str, Any],
) -> ConflictResult:
    """
    Classify an incoming update against the stored record.

    ``stored`` is the current scalar snapshot (including ``version``),
    ``payload`` maps only the keys the client sent to their values.

    A client working from the current version is always ``ok``. On a stale
    base, touching any sub-collection is ``hard``; otherwise each inspected
    scalar is compared three ways (base, remote, client) after normalization.
    """
    base_version = meta.base_version if meta else None
    if base_version is None or base_version == stored.get("version"):
        return ConflictResult(status=STATUS_OK)

    snapshot: Mapping[str, Any] = (meta.base_snapshot if meta else None) or {}
    dirty_fields: List[str] = list((meta.dirty_fields if meta else None) or [])

    remote_changes: List[Dict[str, Any]] = []
    client_changes: List[Dict[str, Any]] = []
    conflicting: List[str] = []

    for name in _inspected_fields(payload, snapshot, dirty_fields):
        has_base = name in snapshot
        base_value = normalize_value(name, snapshot[name] if has_base else stored.get(name))
        remote_value = normalize_value(name, stored.get(name))
        remote_changed = base_value != remote_value

        client_changed = False
        client_value = None
        if name in payload:
            client_value = normalize_value(name, payload[name])
            client_changed = client_value != base_value

        label = field_label(name)
        if remote_changed:
            remote_changes.append(
                {"field": name, "label": label, "base_value": base_value, "remote_value": remote_value}
            )
        if client_changed:
            client_changes.append(
                {"field": name, "label": label, "base_value": base_value, "client_value": client_value}
            )
        if client_changed and (remote_changed or not has_base):
            conflicting.append(name)

    complex_touched = _touched_complex_fields(payload, dirty_fields)
    if complex_touched:
        return ConflictResult(
            status=STATUS_HARD,
            remote_changes=remote_changes,
            client_changes=client_changes,
            conflicting_fields=complex_touched + conflicting,
        )

    if conflicting:
        status = STATUS_HARD
    elif remote_changes:
        status = STATUS_MERGEABLE
    else:
        status = STATUS_OK
    return ConflictResult(
        status=status,
        remote_changes=remote_changes,
        client_changes=client_changes,
        conflicting_fields=conflicting,
    )


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def build_conflict_details(
    case_id: str,
    result: ConflictResult,
    stored: Mapping[str, Any],
    base_version: Optional[int],
) -> Dict[str, Any]:
    """The 409 body handed back to the client so it can merge, reload or give up."""
    if result.is_ok:
        raise ValueError("no conflict to report")
    details = ConflictDetailsOut(
        type=result.status,
        message=CONFLICT_MESSAGES[result.status],
        case_id=case_id,
        base_version=base_version,
        latest_version=int(stored["version"]),
        remote_changes=result.remote_changes,
        client_changes=result.client_changes,
        conflicting_fields=result.conflicting_fields,
        updated_at=_iso(stored.get("updated_at")),
        updated_by_id=stored.get("updater_id"),
        updated_by_name=stored.get("updater_name"),
        updated_by_role=stored.get("updater_role"),
    )
    return details.model_dump()


def race_conflict(
    case_id: str,
    stored: Mapping[str, Any],
    base_version: Optional[int],
    payload: Mapping[str, Any],
) -> Dict[str, Any]:
    """Hard conflict reported when a retried write loses the race again."""
    client_fields = [name for name in MERGEABLE_FIELDS if name in payload]
    client_fields += [name for name in COMPLEX_FIELDS if name in payload]
    result = ConflictResult(
        status=STATUS_HARD,
        client_changes=[
            {
                "field": name,
                "label": field_label(name),
                "base_value": normalize_value(name, stored.get(name)),
                "client_value": normalize_value(name, payload[name]),
            }
            for name in MERGEABLE_FIELDS
            if name in payload
        ],
        conflicting_fields=client_fields,
    )
    return build_conflict_details(case_id, result, stored, base_version)
