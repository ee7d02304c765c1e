from __future__ import annotations

import json
import os
from typing import Dict, List, Optional

DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def cors_allow_origins() -> List[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw is None:
        return list(DEFAULT_CORS_ORIGINS)
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not be empty.")
    return origins


def case_role_permissions_override() -> Optional[Dict[str, List[str]]]:
    """
    Optional CASE_ROLE_PERMISSIONS JSON, e.g. {"admin": ["list", "update"]}.
    Roles not named keep their defaults.
    """
    raw = os.getenv("CASE_ROLE_PERMISSIONS")
    if raw is None or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RuntimeError("CASE_ROLE_PERMISSIONS must be valid JSON.") from exc
    if not isinstance(parsed, dict) or not all(
        isinstance(actions, list) and all(isinstance(action, str) for action in actions)
        for actions in parsed.values()
    ):
        raise RuntimeError("CASE_ROLE_PERMISSIONS must map role names to lists of actions.")
    return parsed
