"""
Input checks shared by services. Each raises ValidationError with a message
suitable for the client and returns the normalized value.
"""
from config import DEPARTMENTS
from errors import ValidationError
from models import Permission, Role


def department(value: str | None) -> str:
    dept = (value or "").strip().upper()
    if dept not in DEPARTMENTS:
        raise ValidationError("Invalid department", allowed=list(DEPARTMENTS))
    return dept


def semester(value) -> int:
    try:
        sem = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Semester must be a number between 1 and 8")
    if not 1 <= sem <= 8:
        raise ValidationError("Semester must be between 1 and 8")
    return sem


def subject(value: str | None) -> str:
    subj = (value or "").strip()
    if not 3 <= len(subj) <= 100:
        raise ValidationError("Subject name must be between 3 and 100 characters")
    return subj


def description(value: str | None) -> str:
    desc = value or ""
    if len(desc) > 500:
        raise ValidationError("Description must not exceed 500 characters")
    return desc


def permission(value: str | None) -> str:
    try:
        return Permission(value or Permission.VIEW.value).value
    except ValueError:
        raise ValidationError("Invalid permission type", allowed=[p.value for p in Permission])


def role(value: str | None) -> str:
    try:
        return Role(value).value
    except ValueError:
        raise ValidationError("Invalid role", allowed=[r.value for r in Role])


def name(value: str | None) -> str:
    n = (value or "").strip()
    if not 2 <= len(n) <= 100:
        raise ValidationError("Name must be between 2 and 100 characters")
    return n


def department_code(value: str | None) -> str:
    code = (value or "").strip()
    if not 6 <= len(code) <= 20:
        raise ValidationError("Department code must be between 6 and 20 characters")
    return code
