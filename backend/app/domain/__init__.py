"""Case contracts and the field table shared by services."""

from backend.app.domain.contracts import (  # noqa: F401
    CasePayload,
    CaseUpdateMeta,
    CaseUpdateRequest,
    SessionPrincipal,
    normalize_update_body,
)
