from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional


@dataclass(frozen=True)
class FieldSpec:
    label: str
    kind: str  # text | decimal | date | bool | enum | json | user_ref


# Curated set of scalar case fields that may be merged against concurrent edits.
# Anything not listed here is never inspected by conflict analysis.
MERGEABLE_FIELDS: Dict[str, FieldSpec] = {
    "case_type": FieldSpec("Case type", "enum"),
    "case_level": FieldSpec("Case level", "enum"),
    "case_category": FieldSpec("Case category", "enum"),
    "province": FieldSpec("Province", "text"),
    "city": FieldSpec("City", "text"),
    "target_amount": FieldSpec("Target amount", "decimal"),
    "agency_fee_estimate": FieldSpec("Agency fee estimate", "decimal"),
    "estimated_collection": FieldSpec("Estimated collection", "decimal"),
    "data_source": FieldSpec("Data source", "text"),
    "has_contract": FieldSpec("Has contract", "bool"),
    "contract_date": FieldSpec("Contract date", "date"),
    "clue_date": FieldSpec("Clue date", "date"),
    "has_social_security": FieldSpec("Has social security", "bool"),
    "entry_date": FieldSpec("Entry date", "date"),
    "injury_location": FieldSpec("Injury location", "text"),
    "injury_severity": FieldSpec("Injury severity", "text"),
    "injury_cause": FieldSpec("Injury cause", "text"),
    "work_injury_certified": FieldSpec("Work injury certified", "bool"),
    "monthly_salary": FieldSpec("Monthly salary", "decimal"),
    "appraisal_level": FieldSpec("Appraisal level", "text"),
    "appraisal_estimate": FieldSpec("Appraisal estimate", "text"),
    "existing_evidence": FieldSpec("Existing evidence", "text"),
    "customer_cooperative": FieldSpec("Customer cooperative", "bool"),
    "witness_cooperative": FieldSpec("Witness cooperative", "bool"),
    "remark": FieldSpec("Remark", "text"),
    "contract_form": FieldSpec("Contract form", "enum"),
    "insurance_types": FieldSpec("Insurance types", "json"),
    "department": FieldSpec("Department", "enum"),
    "assigned_sale_id": FieldSpec("Sales owner", "user_ref"),
    "assigned_lawyer_id": FieldSpec("Handling lawyer", "user_ref"),
    "assigned_assistant_id": FieldSpec("Assistant", "user_ref"),
    "case_status": FieldSpec("Case status", "enum"),
    "closed_reason": FieldSpec("Closed reason", "text"),
    "void_reason": FieldSpec("Void reason", "text"),
    "sales_commission": FieldSpec("Sales commission", "decimal"),
    "handling_fee": FieldSpec("Handling fee", "decimal"),
}

# Sub-collections replaced wholesale on write; touching one on a stale base is always a hard conflict.
COMPLEX_FIELDS: Dict[str, str] = {
    "participants": "Participants",
    "collections": "Collections",
    "timeline": "Follow-up timeline",
    "time_nodes": "Time nodes",
    "hearings": "Hearings",
}

# user_ref field -> display-name key present in case snapshots.
DISPLAY_NAME_FIELDS: Dict[str, str] = {
    "assigned_sale_id": "assigned_sale_name",
    "assigned_lawyer_id": "assigned_lawyer_name",
    "assigned_assistant_id": "assigned_assistant_name",
}

# Assignment columns compared against a principal's identities for access scoping.
ASSIGNMENT_FIELDS = ("assigned_sale_id", "assigned_lawyer_id", "assigned_assistant_id")


def field_label(field: str) -> str:
    spec = MERGEABLE_FIELDS.get(field)
    if spec:
        return spec.label
    return COMPLEX_FIELDS.get(field, field)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return _decimal(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, dict)):
        return _json(value)
    trimmed = str(value).strip()
    return trimmed or None


def _decimal(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return _text(value) if isinstance(value, bool) else None
    raw = str(value).strip().replace(",", "")
    if not raw:
        return None
    try:
        parsed = Decimal(raw)
    except InvalidOperation:
        return raw
    if not parsed.is_finite():
        return raw
    return format(parsed.normalize(), "f")


def _bool(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    lowered = str(value).strip().lower()
    if lowered in {"true", "1", "yes"}:
        return "true"
    if lowered in {"false", "0", "no"}:
        return "false"
    return lowered or None


def _date(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    raw = str(value).strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10]).isoformat()
    except ValueError:
        return raw


def _json(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            return raw
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


_NORMALIZERS: Dict[str, Callable[[Any], Optional[str]]] = {
    "text": _text,
    "enum": _text,
    "user_ref": _text,
    "decimal": _decimal,
    "bool": _bool,
    "date": _date,
    "json": _json,
}


def normalize_value(field: str, value: Any) -> Optional[str]:
    """
    Canonical comparable form of a field value.

    ``"3"``, ``3`` and ``Decimal("3.00")`` all become ``"3"``; blank strings
    collapse to ``None`` so that clearing a value and never setting it compare equal.
    """
    spec = MERGEABLE_FIELDS.get(field)
    normalizer = _NORMALIZERS.get(spec.kind if spec else "text", _text)
    return normalizer(value)