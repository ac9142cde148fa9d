"""
Folders router: faculty endpoints to create, list, update and delete their
material folders.

Delegates to services.folder_service.FolderLifecycleManager, which obtains
fresh Google tokens before every Drive call and retries once after a 401.
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from auth import require_role
from deps import get_folder_manager
from models import Permission, Role, User
from services.audit_service import Origin
from services.folder_service import FolderLifecycleManager

router = APIRouter(prefix="/folders")

faculty_only = require_role(Role.FACULTY)


# --- Request models ---


class CreateFolderBody(BaseModel):
    """Request body for creating a Drive-backed material folder."""
    department: str = Field(..., min_length=1, max_length=20)
    semester: int = Field(..., ge=1, le=8)
    subject: str = Field(..., min_length=3, max_length=100)
    permission: Permission = Permission.VIEW
    description: str = Field("", max_length=500)


class UpdateFolderBody(BaseModel):
    subject: str | None = Field(None, min_length=3, max_length=100)
    description: str | None = Field(None, max_length=500)
    permission: Permission | None = None


class ReconcileBody(BaseModel):
    """Drive folder ids to check for a matching local record."""
    drive_folder_ids: list[str] = Field(default_factory=list, max_length=100)


# --- Endpoints ---


@router.post("", status_code=201)
def create_folder(
    body: CreateFolderBody,
    request: Request,
    user: User = Depends(faculty_only),
    folders: FolderLifecycleManager = Depends(get_folder_manager),
):
    folder = folders.create(
        user,
        body.department,
        body.semester,
        body.subject,
        body.permission.value,
        body.description,
        Origin.from_request(request),
    )
    return folder.to_dict()


@router.get("/mine")
def my_folders(
    user: User = Depends(faculty_only),
    folders: FolderLifecycleManager = Depends(get_folder_manager),
):
    """Active folders of the current faculty member, newest first."""
    items = [f.to_dict() for f in folders.list_owned_by(user)]
    return {"count": len(items), "folders": items}


@router.get("/stats")
def folder_stats(
    user: User = Depends(faculty_only),
    folders: FolderLifecycleManager = Depends(get_folder_manager),
):
    return folders.stats_for(user)


@router.put("/{folder_id}")
def update_folder(
    folder_id: int,
    body: UpdateFolderBody,
    user: User = Depends(faculty_only),
    folders: FolderLifecycleManager = Depends(get_folder_manager),
):
    """Edit subject/description; a permission change is applied on Drive first."""
    folder = folders.update(
        folder_id,
        user,
        subject=body.subject,
        description=body.description,
        permission=body.permission.value if body.permission else None,
    )
    return folder.to_dict()


@router.delete("/{folder_id}")
def delete_folder(
    folder_id: int,
    request: Request,
    user: User = Depends(faculty_only),
    folders: FolderLifecycleManager = Depends(get_folder_manager),
):
    """
    Soft-delete the folder. Drive deletion is best effort; `outcome` reports
    local_deleted_provider_failed when the Drive folder could not be removed.
    """
    outcome = folders.soft_delete(folder_id, user, Origin.from_request(request))
    return {"ok": True, "outcome": outcome.value}


@router.post("/reconcile")
def reconcile(
    body: ReconcileBody,
    user: User = Depends(faculty_only),
    folders: FolderLifecycleManager = Depends(get_folder_manager),
):
    report = folders.reconcile(user, body.drive_folder_ids)
    return {"orphaned": report.orphaned, "missing": report.missing}
