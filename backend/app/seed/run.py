from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.models import Case, CaseHearing, CaseParticipant, User

logger = logging.getLogger(__name__)

# email, name, role, department, supervisor email
DEMO_STAFF = [
    ("root@casedesk.local", "Root Admin", "super_admin", None, None),
    ("admin.injury@casedesk.local", "Guo Min", "admin", "work_injury", None),
    ("clerk.injury@casedesk.local", "He Yan", "administration", "work_injury", None),
    ("lawyer.chen@casedesk.local", "Chen Jing", "lawyer", "work_injury", None),
    ("assistant.liu@casedesk.local", "Liu Yang", "assistant", "work_injury", "lawyer.chen@casedesk.local"),
    ("sale.zhao@casedesk.local", "Zhao Lei", "sale", "insurance", None),
]


def seed_demo_staff(db: Session) -> Dict[str, User]:
    existing = {user.email: user for user in db.execute(select(User)).scalars()}
    for email, name, role, department, _ in DEMO_STAFF:
        if email in existing:
            continue
        user = User(email=email, name=name, role=role, department=department)
        db.add(user)
        existing[email] = user
    db.flush()
    for email, _, _, _, supervisor_email in DEMO_STAFF:
        if supervisor_email:
            existing[email].supervisor_id = existing[supervisor_email].id
    db.flush()
    return existing


def seed_demo_cases(db: Session, staff: Dict[str, User]) -> int:
    if db.execute(select(Case.id).limit(1)).first():
        logger.info("Cases already present; skipping demo cases")
        return 0

    lawyer = staff["lawyer.chen@casedesk.local"]
    assistant = staff["assistant.liu@casedesk.local"]
    sale = staff["sale.zhao@casedesk.local"]

    injury = Case(
        case_type="work_injury",
        case_level="A",
        department="work_injury",
        province="Guangdong",
        city="Shenzhen",
        target_amount=Decimal("180000.00"),
        entry_date=date(2023, 4, 1),
        injury_location="Warehouse B",
        remark="Forklift accident, client cooperative",
        assigned_lawyer_id=lawyer.id,
        assigned_assistant_id=assistant.id,
        assigned_sale_id=sale.id,
        creator_id=sale.id,
        updater_id=sale.id,
    )
    insurance = Case(
        case_type="personal_injury",
        case_level="B",
        case_category="insurance",
        department="insurance",
        city="Dongguan",
        insurance_types=["pension", "medical"],
        assigned_sale_id=sale.id,
        creator_id=sale.id,
        updater_id=sale.id,
    )
    db.add_all([injury, insurance])
    db.flush()
    db.add_all(
        [
            CaseParticipant(case_id=injury.id, role="claimant", entity_type="personal", name="Wang Qiang"),
            CaseParticipant(case_id=injury.id, role="respondent", entity_type="organization", name="Shenzhen Logistics Ltd"),
            CaseHearing(case_id=insurance.id, trial_lawyer_id=lawyer.id, tribunal="Dongguan Labour Tribunal"),
        ]
    )
    db.flush()
    return 2


def seed_demo_data(db: Session) -> None:
    staff = seed_demo_staff(db)
    created = seed_demo_cases(db, staff)
    db.commit()
    logger.info("Seeded %s staff accounts and %s cases", len(staff), created)
