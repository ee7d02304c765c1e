from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import HTTPException


class BadRequestError(HTTPException):
    """Malformed payload; raised before any write is attempted."""

    def __init__(self, message: str = "invalid request payload", details: Optional[List[str]] = None):
        detail: Any = message if not details else {"message": message, "errors": details}
        super().__init__(status_code=400, detail=detail)
        self.message = message


class AuthorizationError(HTTPException):
    """
    Principal may not perform the action, or may not see the record.

    Visibility failures use 404 so the response never confirms that an
    inaccessible case exists.
    """

    def __init__(self, message: str = "forbidden", status_code: int = 403):
        super().__init__(status_code=status_code, detail=message)
        self.message = message


class CaseUpdateConflictError(HTTPException):
    """Carries the full conflict payload so the caller can merge, refresh or abort."""

    def __init__(self, details: Dict[str, Any]):
        super().__init__(status_code=409, detail=details)
        self.details = details


class CaseInvariantError(RuntimeError):
    """A row that must exist after a committed write is missing."""
