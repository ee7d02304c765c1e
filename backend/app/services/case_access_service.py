from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import false, or_, select
from sqlalchemy.orm import Session

from backend.app.api.config import case_role_permissions_override
from backend.app.domain.case_fields import ASSIGNMENT_FIELDS
from backend.app.domain.contracts import SessionPrincipal
from backend.app.models import Case, CaseHearing, User
from backend.app.services.case_errors import AuthorizationError

logger = logging.getLogger(__name__)

CASE_ACTIONS = ("list", "create", "update", "delete")


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    ADMINISTRATION = "administration"
    LAWYER = "lawyer"
    ASSISTANT = "assistant"
    SALE = "sale"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["Role"]:
        if not raw:
            return None
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


class Scope(str, Enum):
    ALL = "all"
    DEPARTMENT = "department"
    ASSIGNMENT = "assignment"
    SUBORDINATES = "subordinates"
    HEARING = "hearing"


# Every role must appear here; a missing entry fails at import, not at request time.
ROLE_SCOPES: Mapping[Role, Tuple[Scope, ...]] = MappingProxyType(
    {
        Role.SUPER_ADMIN: (Scope.ALL,),
        Role.ADMIN: (Scope.DEPARTMENT, Scope.ASSIGNMENT, Scope.HEARING),
        Role.ADMINISTRATION: (Scope.DEPARTMENT, Scope.ASSIGNMENT, Scope.HEARING),
        Role.LAWYER: (Scope.ASSIGNMENT, Scope.SUBORDINATES, Scope.HEARING),
        Role.ASSISTANT: (Scope.ASSIGNMENT, Scope.HEARING),
        Role.SALE: (Scope.ASSIGNMENT, Scope.HEARING),
    }
)

if set(ROLE_SCOPES) != set(Role):
    missing = sorted(role.value for role in set(Role) - set(ROLE_SCOPES))
    raise RuntimeError(f"access scopes missing for roles: {missing}")


DEFAULT_CASE_PERMISSIONS: Mapping[Role, FrozenSet[str]] = MappingProxyType(
    {
        Role.SUPER_ADMIN: frozenset({"list", "create", "update", "delete"}),
        Role.ADMIN: frozenset({"list", "create", "update"}),
        Role.ADMINISTRATION: frozenset({"list"}),
        Role.LAWYER: frozenset({"list", "create", "update", "delete"}),
        Role.ASSISTANT: frozenset({"list", "create", "update"}),
        Role.SALE: frozenset({"list", "create", "update"}),
    }
)


@dataclass(frozen=True)
class AccessPolicy:
    """Role -> allowed case actions. Built once at startup and never mutated."""

    permissions: Mapping[Role, FrozenSet[str]]

    @classmethod
    def default(cls) -> "AccessPolicy":
        return cls(permissions=DEFAULT_CASE_PERMISSIONS)

    @classmethod
    def from_overrides(cls, overrides: Optional[Mapping[str, Iterable[str]]]) -> "AccessPolicy":
        permissions: Dict[Role, FrozenSet[str]] = dict(DEFAULT_CASE_PERMISSIONS)
        for raw_role, actions in (overrides or {}).items():
            role = Role.parse(raw_role)
            if role is None:
                raise RuntimeError(f"unknown role in case permissions: {raw_role}")
            action_set = frozenset(actions)
            unknown = sorted(action_set - set(CASE_ACTIONS))
            if unknown:
                raise RuntimeError(f"unknown case actions for {role.value}: {unknown}")
            permissions[role] = action_set
        return cls(permissions=MappingProxyType(permissions))

    @classmethod
    def from_env(cls) -> "AccessPolicy":
        return cls.from_overrides(case_role_permissions_override())

    def allows(self, role: Optional[Role], action: str) -> bool:
        if role is None:
            return False
        return action in self.permissions.get(role, frozenset())

    def actions_for(self, role: Optional[Role]) -> List[str]:
        if role is None:
            return []
        allowed = self.permissions.get(role, frozenset())
        return [action for action in CASE_ACTIONS if action in allowed]


@dataclass(frozen=True)
class AccessContext:
    principal: SessionPrincipal
    role: Optional[Role]
    sees_everything: bool = False
    department: Optional[str] = None
    assignment_ids: FrozenSet[str] = field(default_factory=frozenset)
    subordinate_assistant_ids: FrozenSet[str] = field(default_factory=frozenset)
    hearing_case_ids: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def scopes(self) -> Tuple[Scope, ...]:
        if self.role is None:
            return ()
        return ROLE_SCOPES[self.role]


def _read(projection: Any, name: str) -> Any:
    if isinstance(projection, Mapping):
        return projection.get(name)
    return getattr(projection, name, None)


class AccessScopeResolver:
    """
    Decides which cases a principal may see.

    ``can_access`` (one record) and ``to_query_predicate`` (list queries) are
    both driven by ``ROLE_SCOPES`` so they enforce the same rule.
    """

    def __init__(self, policy: AccessPolicy):
        self.policy = policy

    def resolve(self, db: Session, principal: SessionPrincipal) -> AccessContext:
        role = Role.parse(principal.role)
        if role is None:
            if principal.role:
                logger.warning("Unknown role %s for user %s; no case access granted", principal.role, principal.id)
            return AccessContext(principal=principal, role=None)

        if Scope.ALL in ROLE_SCOPES[role]:
            return AccessContext(principal=principal, role=role, sees_everything=True, department=principal.department)

        assignment_ids = {principal.id}
        if role is Role.ASSISTANT and principal.supervisor_id:
            supervisor = db.get(User, principal.supervisor_id)
            if supervisor is not None and Role.parse(supervisor.role) is Role.LAWYER:
                assignment_ids.add(supervisor.id)

        subordinate_ids: FrozenSet[str] = frozenset()
        if Scope.SUBORDINATES in ROLE_SCOPES[role]:
            subordinates = db.execute(
                select(User.id, User.role).where(User.supervisor_id == principal.id)
            ).all()
            subordinate_ids = frozenset(
                user_id for user_id, user_role in subordinates if Role.parse(user_role) is Role.ASSISTANT
            )

        hearing_case_ids = frozenset(
            db.execute(
                select(CaseHearing.case_id)
                .where(CaseHearing.trial_lawyer_id.in_(sorted(assignment_ids)))
                .distinct()
            ).scalars()
        )

        return AccessContext(
            principal=principal,
            role=role,
            department=principal.department if Scope.DEPARTMENT in ROLE_SCOPES[role] else None,
            assignment_ids=frozenset(assignment_ids),
            subordinate_assistant_ids=subordinate_ids,
            hearing_case_ids=hearing_case_ids,
        )

    def can_access(self, context: AccessContext, case: Any) -> bool:
        if context.sees_everything:
            return True
        for scope in context.scopes:
            if scope is Scope.DEPARTMENT:
                if context.department is not None and _read(case, "department") == context.department:
                    return True
            elif scope is Scope.ASSIGNMENT:
                if any(_read(case, name) in context.assignment_ids for name in ASSIGNMENT_FIELDS):
                    return True
            elif scope is Scope.SUBORDINATES:
                if _read(case, "assigned_assistant_id") in context.subordinate_assistant_ids:
                    return True
            elif scope is Scope.HEARING:
                if _read(case, "id") in context.hearing_case_ids:
                    return True
        return False

    def to_query_predicate(self, context: AccessContext):
        """SQL filter over ``Case``; ``None`` means unrestricted."""
        if context.sees_everything:
            return None
        clauses = []
        for scope in context.scopes:
            if scope is Scope.DEPARTMENT:
                if context.department is not None:
                    clauses.append(Case.department == context.department)
            elif scope is Scope.ASSIGNMENT:
                if context.assignment_ids:
                    ids = sorted(context.assignment_ids)
                    clauses.extend(getattr(Case, name).in_(ids) for name in ASSIGNMENT_FIELDS)
            elif scope is Scope.SUBORDINATES:
                if context.subordinate_assistant_ids:
                    clauses.append(Case.assigned_assistant_id.in_(sorted(context.subordinate_assistant_ids)))
            elif scope is Scope.HEARING:
                if context.hearing_case_ids:
                    clauses.append(Case.id.in_(sorted(context.hearing_case_ids)))
        if not clauses:
            return false()
        return or_(*clauses)

    def ensure_action(self, context: AccessContext, action: str) -> None:
        if not self.policy.allows(context.role, action):
            role = context.role.value if context.role else (context.principal.role or "none")
            raise AuthorizationError(f"role {role} may not {action} cases", status_code=403)

    def ensure_visible(self, context: AccessContext, case: Any) -> None:
        if not self.can_access(context, case):
            raise AuthorizationError("case not found", status_code=404)
