from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from backend.app.domain.contracts import CasePayload, CaseUpdateRequest, SessionPrincipal, normalize_update_body
from backend.app.models import Case, CaseChangeLog, CaseHearing, CaseParticipant, CaseTimeline, User
from backend.app.services import case_change_log_service, case_service
from backend.app.services.case_errors import AuthorizationError, BadRequestError, CaseUpdateConflictError


def _create_user(session, role, department="work_injury", supervisor_id=None, name=None):
    user = User(
        email=f"{role}-{uuid4().hex[:8]}@firm.test",
        name=name or f"{role} {uuid4().hex[:4]}",
        role=role,
        department=department,
        supervisor_id=supervisor_id,
    )
    session.add(user)
    session.flush()
    return user


def _principal(user):
    return SessionPrincipal(
        id=user.id,
        role=user.role,
        department=user.department,
        supervisor_id=user.supervisor_id,
        name=user.name,
    )


def _create_case(session, lawyer, version=1, **fields):
    values = {
        "case_type": "work_injury",
        "case_level": "A",
        "department": "work_injury",
        "remark": "B",
        "city": "Shenzhen",
        "assigned_lawyer_id": lawyer.id,
    }
    values.update(fields)
    case = Case(version=version, **values)
    session.add(case)
    session.flush()
    return case


def _update(body):
    return normalize_update_body(body)


def _stored_row(session, case_id):
    return session.execute(
        select(Case.version, Case.remark, Case.city).where(Case.id == case_id)
    ).one()


def test_matching_base_version_writes_and_bumps_version(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=5)

    result = case_service.update_case(
        sqlite_session,
        resolver,
        _principal(lawyer),
        case.id,
        _update({"payload": {"remark": "fresh note"}, "meta": {"base_version": 5}}),
    )

    assert result["version"] == 6
    assert result["remark"] == "fresh note"
    assert result["updater_id"] == lawyer.id
    assert _stored_row(sqlite_session, case.id).version == 6

    logs = case_change_log_service.list_change_logs(sqlite_session, case.id)
    assert len(logs) == 1
    assert logs[0]["action"] == "case_updated"
    assert logs[0]["actor_role"] == "lawyer"
    assert logs[0]["changes"] == [
        {"field": "remark", "label": "Remark", "previous_value": "B", "current_value": "fresh note"}
    ]
    assert logs[0]["description"] == "Remark: B -> fresh note"


def test_bare_payload_without_meta_is_last_writer_wins(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=3)

    result = case_service.update_case(
        sqlite_session, resolver, _principal(lawyer), case.id, _update({"city": "Guangzhou"})
    )

    assert result["version"] == 4
    assert result["city"] == "Guangzhou"


def test_sequential_writes_increase_version_by_one(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer)

    versions = []
    for index in range(3):
        result = case_service.update_case(
            sqlite_session,
            resolver,
            _principal(lawyer),
            case.id,
            _update({"payload": {"remark": f"note {index}"}, "meta": {"base_version": 1 + index}}),
        )
        versions.append(result["version"])

    assert versions == [2, 3, 4]


def test_remote_drift_without_merge_mode_is_rejected(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=7)

    with pytest.raises(CaseUpdateConflictError) as excinfo:
        case_service.update_case(
            sqlite_session,
            resolver,
            _principal(lawyer),
            case.id,
            _update(
                {
                    "payload": {"remark": "A", "city": "Guangzhou"},
                    "meta": {
                        "base_version": 6,
                        "base_snapshot": {"remark": "A", "city": "Shenzhen"},
                        "dirty_fields": ["city"],
                    },
                }
            ),
        )

    assert excinfo.value.status_code == 409
    details = excinfo.value.details
    assert details["type"] == "mergeable"
    assert details["latest_version"] == 7
    assert [change["field"] for change in details["remote_changes"]] == ["remark"]
    assert _stored_row(sqlite_session, case.id) == (7, "B", "Shenzhen")


def test_merge_mode_keeps_remote_changes(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=7)

    result = case_service.update_case(
        sqlite_session,
        resolver,
        _principal(lawyer),
        case.id,
        _update(
            {
                "payload": {"remark": "A", "city": "Guangzhou"},
                "meta": {
                    "base_version": 6,
                    "base_snapshot": {"remark": "A", "city": "Shenzhen"},
                    "dirty_fields": ["city"],
                    "resolve_mode": "merge",
                },
            }
        ),
    )

    assert result["version"] == 8
    assert result["remark"] == "B"
    assert result["city"] == "Guangzhou"


def test_overlapping_edit_is_a_hard_conflict_even_in_merge_mode(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer", name="Lin Wei")
    case = _create_case(sqlite_session, lawyer, version=7, updater_id=lawyer.id)

    with pytest.raises(CaseUpdateConflictError) as excinfo:
        case_service.update_case(
            sqlite_session,
            resolver,
            _principal(lawyer),
            case.id,
            _update(
                {
                    "payload": {"remark": "C"},
                    "meta": {
                        "base_version": 6,
                        "base_snapshot": {"remark": "A"},
                        "dirty_fields": ["remark"],
                        "resolve_mode": "merge",
                    },
                }
            ),
        )

    details = excinfo.value.details
    assert details["type"] == "hard"
    assert details["conflicting_fields"] == ["remark"]
    assert details["updated_by_name"] == "Lin Wei"
    assert details["updated_by_role"] == "lawyer"
    assert _stored_row(sqlite_session, case.id).version == 7


def test_sub_collection_on_stale_base_is_hard(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=4)

    with pytest.raises(CaseUpdateConflictError) as excinfo:
        case_service.update_case(
            sqlite_session,
            resolver,
            _principal(lawyer),
            case.id,
            _update(
                {
                    "payload": {"hearings": [{"tribunal": "Futian court", "trial_lawyer_id": lawyer.id}]},
                    "meta": {"base_version": 3, "base_snapshot": {"remark": "B"}, "resolve_mode": "merge"},
                }
            ),
        )

    assert excinfo.value.details["type"] == "hard"
    assert excinfo.value.details["conflicting_fields"] == ["hearings"]


def _competing_write(session, case_id, **values):
    session.execute(
        update(Case)
        .where(Case.id == case_id)
        .values(version=Case.version + 1, **values)
        .execution_options(synchronize_session=False)
    )


def test_stale_compare_and_swap_writes_nothing(sqlite_session):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=2)
    _competing_write(sqlite_session, case.id)

    swapped = case_service._compare_and_swap(sqlite_session, case.id, 2, {"remark": "X", "city": "Zhuhai"})

    assert swapped is False
    assert _stored_row(sqlite_session, case.id) == (3, "B", "Shenzhen")


def test_current_compare_and_swap_bumps_version_once(sqlite_session):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=2)

    assert case_service._compare_and_swap(sqlite_session, case.id, 2, {"remark": "X"}) is True
    assert _stored_row(sqlite_session, case.id) == (3, "X", "Shenzhen")
    assert case_service._compare_and_swap(sqlite_session, case.id, 2, {"remark": "Y"}) is False
    assert _stored_row(sqlite_session, case.id) == (3, "X", "Shenzhen")


def test_competing_write_before_guarded_update_is_retried(sqlite_session, resolver, monkeypatch):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=3)
    real_cas = case_service._compare_and_swap
    outcomes = []

    def cas_after_competing_write(db, case_id, expected_version, values):
        if not outcomes:
            _competing_write(db, case_id, remark="remote edit")
        outcomes.append(real_cas(db, case_id, expected_version, values))
        return outcomes[-1]

    monkeypatch.setattr(case_service, "_compare_and_swap", cas_after_competing_write)

    result = case_service.update_case(
        sqlite_session,
        resolver,
        _principal(lawyer),
        case.id,
        _update(
            {
                "payload": {"city": "Guangzhou"},
                "meta": {"base_version": 3, "base_snapshot": {"city": "Shenzhen"}, "dirty_fields": ["city"]},
            }
        ),
    )

    assert outcomes == [False, True]
    assert result["version"] == 5
    assert _stored_row(sqlite_session, case.id) == (5, "remote edit", "Guangzhou")


def test_competing_overlapping_write_before_guarded_update_is_hard(sqlite_session, resolver, monkeypatch):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=3)
    real_cas = case_service._compare_and_swap
    outcomes = []

    def cas_after_competing_write(db, case_id, expected_version, values):
        _competing_write(db, case_id, city="Zhuhai")
        outcomes.append(real_cas(db, case_id, expected_version, values))
        return outcomes[-1]

    monkeypatch.setattr(case_service, "_compare_and_swap", cas_after_competing_write)

    with pytest.raises(CaseUpdateConflictError) as excinfo:
        case_service.update_case(
            sqlite_session,
            resolver,
            _principal(lawyer),
            case.id,
            _update(
                {
                    "payload": {"city": "Guangzhou"},
                    "meta": {"base_version": 3, "base_snapshot": {"city": "Shenzhen"}, "dirty_fields": ["city"]},
                }
            ),
        )

    assert outcomes == [False]
    assert excinfo.value.details["type"] == "hard"
    assert _stored_row(sqlite_session, case.id) == (4, "B", "Zhuhai")
    assert sqlite_session.execute(select(func.count()).select_from(CaseChangeLog)).scalar_one() == 0


def test_lost_race_is_reanalyzed_and_retried(sqlite_session, resolver, monkeypatch):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=3)
    real_cas = case_service._compare_and_swap
    calls = []

    def racing_cas(db, case_id, expected_version, values):
        calls.append(expected_version)
        if len(calls) == 1:
            db.execute(
                update(Case)
                .where(Case.id == case_id)
                .values(version=expected_version + 1, remark="remote edit")
                .execution_options(synchronize_session=False)
            )
            return False
        return real_cas(db, case_id, expected_version, values)

    monkeypatch.setattr(case_service, "_compare_and_swap", racing_cas)

    result = case_service.update_case(
        sqlite_session,
        resolver,
        _principal(lawyer),
        case.id,
        _update(
            {
                "payload": {"city": "Guangzhou"},
                "meta": {"base_version": 3, "base_snapshot": {"city": "Shenzhen"}, "dirty_fields": ["city"]},
            }
        ),
    )

    assert calls == [3, 4]
    assert result["version"] == 5
    assert result["remark"] == "remote edit"
    assert result["city"] == "Guangzhou"


def test_lost_race_against_overlapping_edit_is_hard(sqlite_session, resolver, monkeypatch):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=3)

    def racing_cas(db, case_id, expected_version, values):
        db.execute(
            update(Case)
            .where(Case.id == case_id)
            .values(version=expected_version + 1, city="Zhuhai")
            .execution_options(synchronize_session=False)
        )
        return False

    monkeypatch.setattr(case_service, "_compare_and_swap", racing_cas)

    with pytest.raises(CaseUpdateConflictError) as excinfo:
        case_service.update_case(
            sqlite_session,
            resolver,
            _principal(lawyer),
            case.id,
            _update(
                {
                    "payload": {"city": "Guangzhou"},
                    "meta": {"base_version": 3, "base_snapshot": {"city": "Shenzhen"}, "dirty_fields": ["city"]},
                }
            ),
        )

    assert excinfo.value.details["type"] == "hard"
    assert excinfo.value.details["conflicting_fields"] == ["city"]
    assert excinfo.value.details["latest_version"] == 4
    assert _stored_row(sqlite_session, case.id) == (4, "B", "Zhuhai")


def test_second_lost_race_surfaces_as_hard_conflict(sqlite_session, resolver, monkeypatch):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer, version=2)
    calls = []

    def always_losing_cas(db, case_id, expected_version, values):
        calls.append(expected_version)
        return False

    monkeypatch.setattr(case_service, "_compare_and_swap", always_losing_cas)

    with pytest.raises(CaseUpdateConflictError) as excinfo:
        case_service.update_case(
            sqlite_session,
            resolver,
            _principal(lawyer),
            case.id,
            _update({"payload": {"remark": "mine"}, "meta": {"base_version": 2}}),
        )

    assert len(calls) == 2
    assert excinfo.value.details["type"] == "hard"
    assert excinfo.value.details["conflicting_fields"] == ["remark"]
    assert sqlite_session.execute(select(func.count()).select_from(CaseChangeLog)).scalar_one() == 0


def test_provided_collections_are_replaced_wholesale(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer)
    sqlite_session.add_all(
        [
            CaseHearing(case_id=case.id, tribunal="Old court 1"),
            CaseHearing(case_id=case.id, tribunal="Old court 2"),
            CaseParticipant(case_id=case.id, role="claimant", name="Zhang San"),
            CaseTimeline(case_id=case.id, occurred_on=date(2024, 1, 5), note="first call"),
        ]
    )
    sqlite_session.flush()

    result = case_service.update_case(
        sqlite_session,
        resolver,
        _principal(lawyer),
        case.id,
        _update(
            {
                "payload": {
                    "hearings": [{"tribunal": "New court", "trial_lawyer_id": lawyer.id, "case_number": "(2024) 17"}],
                    "timeline": None,
                },
                "meta": {"base_version": 1},
            }
        ),
    )

    assert [hearing["tribunal"] for hearing in result["hearings"]] == ["New court"]
    assert result["hearings"][0]["trial_lawyer_name"] == lawyer.name
    assert result["timeline"] == []
    assert [row["name"] for row in result["participants"]["claimants"]] == ["Zhang San"]
    hearing_count = sqlite_session.execute(
        select(func.count()).select_from(CaseHearing).where(CaseHearing.case_id == case.id)
    ).scalar_one()
    assert hearing_count == 1

    logs = case_change_log_service.list_change_logs(sqlite_session, case.id)
    assert logs[0]["changes"] == []
    assert logs[0]["description"] == "Replaced Follow-up timeline, Hearings"


def test_change_log_shows_assignees_by_name(sqlite_session, resolver):
    first = _create_user(sqlite_session, "lawyer", name="Chen Jing")
    second = _create_user(sqlite_session, "lawyer", name="Wang Fang")
    admin = _create_user(sqlite_session, "admin")
    case = _create_case(sqlite_session, first)

    case_service.update_case(
        sqlite_session,
        resolver,
        _principal(admin),
        case.id,
        _update({"payload": {"assigned_lawyer_id": second.id}, "meta": {"base_version": 1}}),
    )

    change = case_change_log_service.list_change_logs(sqlite_session, case.id)[0]["changes"][0]
    assert change == {
        "field": "assigned_lawyer_id",
        "label": "Handling lawyer",
        "previous_value": "Chen Jing",
        "current_value": "Wang Fang",
    }


def test_invisible_case_reports_not_found_without_writing(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    outsider = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer)

    with pytest.raises(AuthorizationError) as excinfo:
        case_service.update_case(
            sqlite_session, resolver, _principal(outsider), case.id, _update({"remark": "sneaky"})
        )

    assert excinfo.value.status_code == 404
    assert _stored_row(sqlite_session, case.id) == (1, "B", "Shenzhen")


def test_missing_case_reports_not_found(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    with pytest.raises(AuthorizationError) as excinfo:
        case_service.update_case(sqlite_session, resolver, _principal(lawyer), "no-such-case", _update({"remark": "x"}))
    assert excinfo.value.status_code == 404


def test_role_without_update_permission_is_forbidden(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    clerk = _create_user(sqlite_session, "administration")
    case = _create_case(sqlite_session, lawyer)

    with pytest.raises(AuthorizationError) as excinfo:
        case_service.update_case(sqlite_session, resolver, _principal(clerk), case.id, _update({"remark": "x"}))

    assert excinfo.value.status_code == 403


def test_unknown_user_reference_is_rejected(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer)

    with pytest.raises(BadRequestError) as excinfo:
        case_service.update_case(
            sqlite_session, resolver, _principal(lawyer), case.id, _update({"assigned_assistant_id": "ghost"})
        )

    assert excinfo.value.status_code == 400
    assert _stored_row(sqlite_session, case.id).version == 1


def test_required_fields_cannot_be_cleared(sqlite_session, resolver):
    lawyer = _create_user(sqlite_session, "lawyer")
    case = _create_case(sqlite_session, lawyer)

    with pytest.raises(BadRequestError):
        case_service.update_case(
            sqlite_session, resolver, _principal(lawyer), case.id, CaseUpdateRequest(payload=CasePayload(case_type=None))
        )
