from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

from .logging_utils import get_logger
from .models import UserRole
from .settings import ROLE_ASSIGNMENTS, ROLE_ASSIGNMENTS_FILE

logger = get_logger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class RoleAssignments:
    """Explicit e-mail to role mapping applied when a user is first created."""

    assignments: Mapping[str, UserRole] = field(default_factory=dict)
    default_role: UserRole = UserRole.CUSTOMER

    def role_for(self, email: str) -> UserRole:
        return self.assignments.get(normalize_email(email), self.default_role)


def sanitize_assignments(raw: Optional[Mapping[str, str]]) -> Dict[str, UserRole]:
    if not raw:
        return {}
    sanitized: Dict[str, UserRole] = {}
    for email, role in raw.items():
        key = normalize_email(email)
        if not key:
            continue
        try:
            sanitized[key] = UserRole(str(role).strip().lower())
        except ValueError:
            logger.warning("Ignoring unknown role %r for %s", role, key)
    return sanitized


def load_role_assignments(
    inline: str = ROLE_ASSIGNMENTS,
    path: str = ROLE_ASSIGNMENTS_FILE,
) -> RoleAssignments:
    merged: Dict[str, UserRole] = {}
    if path:
        try:
            merged.update(sanitize_assignments(json.loads(Path(path).read_text(encoding="utf-8"))))
        except (OSError, json.JSONDecodeError) as exc:
            raise RuntimeError(f"Cannot read role assignments from {path}") from exc
    if inline:
        try:
            merged.update(sanitize_assignments(json.loads(inline)))
        except json.JSONDecodeError as exc:
            raise RuntimeError("ROLE_ASSIGNMENTS must be a JSON object") from exc
    return RoleAssignments(assignments=merged)
