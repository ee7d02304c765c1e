from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


CaseType = Literal["work_injury", "personal_injury", "other"]
CaseLevel = Literal["A", "B", "C"]
CaseCategory = Literal["work_injury", "insurance"]
CaseStatus = Literal["open", "closed", "void"]
ContractForm = Literal["electronic", "paper"]
Department = Literal["work_injury", "insurance"]
TrialStage = Literal["first_instance", "second_instance", "retrial"]
ParticipantEntity = Literal["personal", "organization"]
TimeNodeType = Literal[
    "apply_employment_confirmation",
    "labor_arbitration_decision",
    "submit_injury_certification",
    "receive_injury_certification",
    "submit_disability_assessment",
    "receive_disability_assessment",
    "apply_insurance_arbitration",
    "insurance_arbitration_decision",
    "file_lawsuit",
    "lawsuit_review_approved",
    "final_judgement",
]

Amount = Optional[Decimal]


@dataclass(frozen=True)
class SessionPrincipal:
    """Authenticated caller as handed over by the auth layer."""

    id: str
    role: Optional[str]
    department: Optional[str] = None
    supervisor_id: Optional[str] = None
    name: Optional[str] = None


# -------------------------
# Sub-collections (replaced wholesale on write)
# -------------------------


class ParticipantIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entity_type: Optional[ParticipantEntity] = None
    name: str = Field(..., min_length=1, max_length=200)
    id_number: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    is_dishonest: Optional[bool] = None
    sort_order: Optional[int] = None


class ParticipantsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    claimants: List[ParticipantIn] = Field(default_factory=list)
    respondents: List[ParticipantIn] = Field(default_factory=list)


class CollectionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(..., ge=0, max_digits=14, decimal_places=2)
    received_at: Optional[date] = None


class TimelineIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    occurred_on: date
    note: str = Field(..., min_length=1, max_length=4000)
    follower_id: Optional[str] = None


class TimeNodeIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    node_type: TimeNodeType
    occurred_on: date


class HearingIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    trial_lawyer_id: Optional[str] = None
    hearing_time: Optional[datetime] = None
    hearing_location: Optional[str] = None
    tribunal: Optional[str] = None
    judge: Optional[str] = None
    case_number: Optional[str] = None
    contact_phone: Optional[str] = None
    trial_stage: Optional[TrialStage] = None
    hearing_result: Optional[str] = None


# -------------------------
# Case payload + update envelope
# -------------------------


class CasePayload(BaseModel):
    """
    Client-submitted case fields. Every key is optional: an omitted key leaves
    the stored value unchanged, an explicit null clears it.
    """

    model_config = ConfigDict(extra="forbid")

    case_type: Optional[CaseType] = None
    case_level: Optional[CaseLevel] = None
    case_category: Optional[CaseCategory] = None
    province: Optional[str] = None
    city: Optional[str] = None
    target_amount: Amount = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    agency_fee_estimate: Amount = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    estimated_collection: Amount = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    data_source: Optional[str] = None
    has_contract: Optional[bool] = None
    contract_date: Optional[date] = None
    clue_date: Optional[date] = None
    has_social_security: Optional[bool] = None
    entry_date: Optional[date] = None
    injury_location: Optional[str] = None
    injury_severity: Optional[str] = None
    injury_cause: Optional[str] = None
    work_injury_certified: Optional[bool] = None
    monthly_salary: Amount = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    appraisal_level: Optional[str] = None
    appraisal_estimate: Optional[str] = None
    existing_evidence: Optional[str] = None
    customer_cooperative: Optional[bool] = None
    witness_cooperative: Optional[bool] = None
    remark: Optional[str] = None
    contract_form: Optional[ContractForm] = None
    insurance_types: Optional[List[str]] = None
    department: Optional[Department] = None
    assigned_sale_id: Optional[str] = None
    assigned_lawyer_id: Optional[str] = None
    assigned_assistant_id: Optional[str] = None
    case_status: Optional[CaseStatus] = None
    closed_reason: Optional[str] = None
    void_reason: Optional[str] = None
    sales_commission: Amount = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    handling_fee: Amount = Field(default=None, ge=0, max_digits=14, decimal_places=2)

    participants: Optional[ParticipantsIn] = None
    collections: Optional[List[CollectionIn]] = None
    timeline: Optional[List[TimelineIn]] = None
    time_nodes: Optional[List[TimeNodeIn]] = None
    hearings: Optional[List[HearingIn]] = None

    def touched(self) -> Dict[str, Any]:
        """Keys the client actually sent, with their parsed values."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class CaseUpdateMeta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_version: Optional[int] = Field(default=None, ge=0)
    base_snapshot: Optional[Dict[str, Any]] = None
    dirty_fields: Optional[List[str]] = None
    resolve_mode: Optional[Literal["merge"]] = None


class CaseUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    payload: CasePayload
    meta: Optional[CaseUpdateMeta] = None


def normalize_update_body(body: Any) -> CaseUpdateRequest:
    """
    Accept either a bare payload or a ``{payload, meta}`` envelope and return
    the single internal representation. Raises pydantic ``ValidationError``.
    """
    if isinstance(body, dict) and isinstance(body.get("payload"), dict):
        return CaseUpdateRequest.model_validate(body)
    if isinstance(body, dict) and "payload" not in body:
        return CaseUpdateRequest(payload=CasePayload.model_validate(body), meta=None)
    # Let pydantic produce the error for anything else (lists, null payload, ...).
    return CaseUpdateRequest.model_validate(body)


def validation_messages(exc: ValidationError) -> List[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "payload")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return messages


# -------------------------
# Conflict + audit outputs
# -------------------------


class RemoteChangeOut(BaseModel):
    field: str
    label: str
    base_value: Optional[str] = None
    remote_value: Optional[str] = None


class ClientChangeOut(BaseModel):
    field: str
    label: str
    base_value: Optional[str] = None
    client_value: Optional[str] = None


class ConflictDetailsOut(BaseModel):
    type: Literal["hard", "mergeable"]
    message: str
    case_id: str
    base_version: Optional[int] = None
    latest_version: int
    remote_changes: List[RemoteChangeOut]
    client_changes: List[ClientChangeOut]
    conflicting_fields: List[str]
    updated_at: Optional[str] = None
    updated_by_id: Optional[str] = None
    updated_by_name: Optional[str] = None
    updated_by_role: Optional[str] = None


class ChangeDetailOut(BaseModel):
    field: str
    label: str
    previous_value: Optional[str] = None
    current_value: Optional[str] = None


class ChangeLogOut(BaseModel):
    id: str
    action: str
    description: Optional[str] = None
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    actor_role: Optional[str] = None
    created_at: datetime
    changes: List[ChangeDetailOut]
