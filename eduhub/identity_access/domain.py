"""
Identity domain: roles, profiles and demo personas.

Why:
- Centralize allowed roles to avoid drift between use cases, adapters and the
  web layer.
- Keep the profile shape (AccountRef) in one place so adapters map external
  documents onto the same fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict, replace
from typing import Any, Mapping, Optional

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "teacher", "school"})

DEMO_USER_ID = "demo-user"
DEMO_EMAIL = "demo@example.com"
_DEMO_NAMES = {
    "student": "Demo Student",
    "teacher": "Demo Teacher",
    "school": "Demo School",
}


def is_allowed_role(role: Any) -> bool:
    return isinstance(role, str) and role in ALLOWED_ROLES


@dataclass(frozen=True)
class Profile:
    """Per-account profile attributes (role plus role-specific fields).

    Students carry `school_name`, `age` and `grade`; teachers carry
    `school_name` and `teaching_grades`; schools carry `ceo`.
    """

    id: str
    email: Optional[str]
    role: str
    name: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    school_name: Optional[str] = None
    grade: Optional[str] = None
    age: Optional[int] = None
    teaching_grades: tuple[str, ...] = field(default_factory=tuple)
    ceo: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["teaching_grades"] = list(self.teaching_grades)
        return data

    def with_changes(self, **changes: Any) -> "Profile":
        return replace(self, **changes)

    @classmethod
    def from_document(cls, uid: str, doc: Mapping[str, Any]) -> "Profile":
        """Map a stored profile document onto a Profile.

        Accepts both snake_case keys and the camelCase keys written by the
        browser client (`schoolName`, `teachingGrades`).
        """
        role = doc.get("role")
        if not is_allowed_role(role):
            raise ValueError("invalid_role")
        grades = doc.get("teaching_grades", doc.get("teachingGrades")) or ()
        if isinstance(grades, str):
            grades = [g.strip() for g in grades.split(",") if g.strip()]
        age = doc.get("age")
        return cls(
            id=uid,
            email=doc.get("email"),
            role=role,
            name=doc.get("name"),
            phone=doc.get("phone"),
            location=doc.get("location"),
            school_name=doc.get("school_name", doc.get("schoolName")),
            grade=doc.get("grade"),
            age=int(age) if age not in (None, "") else None,
            teaching_grades=tuple(str(g) for g in grades),
            ceo=doc.get("ceo"),
        )


def demo_persona(role: str) -> Profile:
    """Return the synthetic profile used for a demo session of `role`."""
    if not is_allowed_role(role):
        raise ValueError(f"unknown role: {role!r}")
    return Profile(id=DEMO_USER_ID, email=DEMO_EMAIL, role=role, name=_DEMO_NAMES[role])


__all__ = ["ALLOWED_ROLES", "DEMO_USER_ID", "DEMO_EMAIL", "Profile", "demo_persona", "is_allowed_role"]
