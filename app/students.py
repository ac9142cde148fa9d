"""
Students router: unlock a department with its code, browse materials, and open
a folder (counts a view and returns the Drive link).
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from auth import get_current_user, require_role
from deps import get_access_gate
from models import Role, User
from services.access_service import AccessGate
from services.audit_service import Origin

router = APIRouter(prefix="/students")

student_only = require_role(Role.STUDENT)


class VerifyCodeBody(BaseModel):
    department_code: str = Field(..., min_length=6, max_length=20)
    department: str = Field(..., min_length=1, max_length=20)


@router.post("/verify-code")
def verify_code(
    body: VerifyCodeBody,
    user: User = Depends(student_only),
    gate: AccessGate = Depends(get_access_gate),
):
    """
    404 NoFacultyForDepartmentError when the department has nobody to check
    against, 401 InvalidDepartmentCodeError when the code does not match.
    """
    department = gate.unlock_department(user, body.department_code, body.department)
    return {"ok": True, "department": department}


@router.get("/materials")
def materials(
    department: str | None = None,
    semester: int | None = None,
    faculty: str | None = None,
    search: str | None = None,
    user: User = Depends(get_current_user),
    gate: AccessGate = Depends(get_access_gate),
):
    items = [f.to_dict() for f in gate.list_materials(department, semester, faculty, search)]
    return {"count": len(items), "folders": items}


@router.post("/access/{folder_id}")
def access_folder(
    folder_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    gate: AccessGate = Depends(get_access_gate),
):
    grant = gate.access(folder_id, user, Origin.from_request(request))
    return {"link": grant.link, "subject": grant.subject, "faculty_name": grant.faculty_name}


@router.get("/departments")
def departments(
    user: User = Depends(get_current_user),
    gate: AccessGate = Depends(get_access_gate),
):
    return {"departments": gate.departments()}


@router.get("/faculty")
def faculty(
    department: str | None = None,
    user: User = Depends(get_current_user),
    gate: AccessGate = Depends(get_access_gate),
):
    items = gate.faculty_for(department)
    return {"count": len(items), "faculty": items}


@router.get("/semesters/{department}")
def semesters(
    department: str,
    user: User = Depends(get_current_user),
    gate: AccessGate = Depends(get_access_gate),
):
    return {"department": department.upper(), "semesters": gate.semester_breakdown(department)}
