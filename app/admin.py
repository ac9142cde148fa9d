"""
Admin router: dashboard, user management, department codes, folder
inspection (including soft-deleted folders) and audit log queries.
"""
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth import require_role
from config import MAX_PAGE_SIZE
from database import get_db
from deps import get_audit_log, get_folder_manager, get_user_service
from errors import ValidationError
from models import AuditAction, Role, User, as_utc, utcnow
from services import dashboard_service
from services.audit_service import AuditLog, Origin
from services.folder_service import FolderLifecycleManager
from services.user_service import UserService

router = APIRouter(prefix="/admin")

admin_only = require_role(Role.ADMIN)


class RoleBody(BaseModel):
    role: Role


class DepartmentCodeBody(BaseModel):
    department_code: str = Field(..., min_length=6, max_length=20)


def _date_range(start: datetime | None, end: datetime | None, default_days: int) -> tuple[datetime, datetime]:
    end = as_utc(end) or utcnow()
    start = as_utc(start) or end - timedelta(days=default_days)
    if start > end:
        raise ValidationError("start must not be after end")
    return start, end


def _page(total: int, page: int, limit: int) -> dict:
    return {"total": total, "page": page, "pages": (total + limit - 1) // limit}


@router.get("/stats")
def dashboard(
    user: User = Depends(admin_only),
    db: Session = Depends(get_db),
    audit: AuditLog = Depends(get_audit_log),
):
    start, end = _date_range(None, None, 7)
    return {
        "overview": dashboard_service.overview(db),
        "popular_subjects": dashboard_service.popular_subjects(db),
        "active_faculty": dashboard_service.active_faculty(db),
        "daily_active_users": audit.daily_active_users(start, end),
        "recent_activities": audit.recent(limit=20),
        "department_distribution": dashboard_service.department_distribution(db),
    }


@router.get("/users")
def list_users(
    role: str | None = None,
    department: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(admin_only),
    users: UserService = Depends(get_user_service),
):
    items, total = users.list_users(role, department, is_active, search, page, limit)
    return {"users": [u.to_public() for u in items], **_page(total, page, limit)}


@router.put("/users/{user_id}/role")
def change_role(
    user_id: str,
    body: RoleBody,
    request: Request,
    user: User = Depends(admin_only),
    users: UserService = Depends(get_user_service),
):
    return users.change_role(user, user_id, body.role.value, Origin.from_request(request)).to_public()


@router.put("/users/{user_id}/deactivate")
def deactivate_user(
    user_id: str,
    request: Request,
    user: User = Depends(admin_only),
    users: UserService = Depends(get_user_service),
):
    users.set_active(user, user_id, False, Origin.from_request(request))
    return {"ok": True}


@router.put("/users/{user_id}/activate")
def activate_user(
    user_id: str,
    request: Request,
    user: User = Depends(admin_only),
    users: UserService = Depends(get_user_service),
):
    users.set_active(user, user_id, True, Origin.from_request(request))
    return {"ok": True}


@router.put("/faculty/{user_id}/department-code")
def set_department_code(
    user_id: str,
    body: DepartmentCodeBody,
    request: Request,
    user: User = Depends(admin_only),
    users: UserService = Depends(get_user_service),
):
    users.set_department_code(user, user_id, body.department_code, Origin.from_request(request))
    return {"ok": True}


@router.get("/folders")
def list_folders(
    department: str | None = None,
    semester: int | None = Query(None, ge=1, le=8),
    is_active: bool | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(admin_only),
    folders: FolderLifecycleManager = Depends(get_folder_manager),
):
    items, total = folders.list_all(department, semester, is_active, page, limit)
    return {"folders": [f.to_dict() for f in items], **_page(total, page, limit)}


@router.get("/folders/{folder_id}")
def get_folder(
    folder_id: int,
    user: User = Depends(admin_only),
    folders: FolderLifecycleManager = Depends(get_folder_manager),
):
    """Any folder by id, soft-deleted ones included."""
    return folders.get(folder_id).to_dict()


@router.get("/login-history")
def login_history(
    user_id: str | None = None,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(admin_only),
    audit: AuditLog = Depends(get_audit_log),
):
    history = audit.login_history(user_id, limit)
    return {"count": len(history), "history": history}


@router.get("/logs")
def logs(
    user_id: str | None = None,
    action: AuditAction | None = None,
    limit: int = Query(100, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(admin_only),
    audit: AuditLog = Depends(get_audit_log),
):
    events = audit.recent(actor_id=user_id, action=action, limit=limit)
    return {"count": len(events), "events": events}


@router.get("/analytics")
def analytics(
    start: datetime | None = None,
    end: datetime | None = None,
    user: User = Depends(admin_only),
    audit: AuditLog = Depends(get_audit_log),
):
    start, end = _date_range(start, end, 30)
    return {
        "action_stats": audit.action_statistics(start, end),
        "daily_active_users": audit.daily_active_users(start, end),
        "date_range": {"start": start, "end": end},
    }
