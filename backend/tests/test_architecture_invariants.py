from __future__ import annotations

import inspect
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from backend.app.api.routes import cases as cases_routes
from backend.app.main import app
from backend.app.services import case_access_service, case_conflict_service, case_service


def _case_routes() -> set[tuple[str, str]]:
    return {
        (method.upper(), path)
        for path, operations in app.openapi()["paths"].items()
        if path.startswith("/api/cases")
        for method in operations
    }


def test_case_routes_are_exactly_the_published_surface() -> None:
    assert _case_routes() == {
        ("GET", "/api/cases"),
        ("POST", "/api/cases"),
        ("GET", "/api/cases/{case_id}"),
        ("PUT", "/api/cases/{case_id}"),
        ("DELETE", "/api/cases/{case_id}"),
        ("GET", "/api/cases/{case_id}/change-logs"),
    }


def test_update_route_delegates_to_the_transaction_service() -> None:
    source = inspect.getsource(cases_routes.update_case)
    assert "normalize_update_body" in source
    assert "case_service.update_case" in source
    assert "db.commit()" in source


def test_case_writes_go_through_the_version_guard() -> None:
    service_source = inspect.getsource(case_service)
    assert service_source.count("update(Case)") == 1
    assert "Case.version == expected_version" in inspect.getsource(case_service._compare_and_swap)


def test_conflict_analysis_does_not_touch_the_database() -> None:
    source = inspect.getsource(case_conflict_service)
    assert "Session" not in source
    assert "backend.app.models" not in source


def test_role_dispatch_has_no_string_role_checks() -> None:
    source = inspect.getsource(case_access_service.AccessScopeResolver)
    for role in case_access_service.Role:
        assert f'"{role.value}"' not in source
