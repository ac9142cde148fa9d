"""
Folder lifecycle: keeps material_folders rows and the faculty member's Drive
folders consistent.

- create: Drive folder, then sharing permission, then the local row. If the
  local write (or the permission call) fails after Drive created the folder,
  the Drive folder is deleted again; if that also fails it is logged as an
  orphan for reconcile().
- update: a permission change is applied on Drive first and stored locally
  only if Drive accepted it.
- soft_delete: Drive deletion is best effort; the local row is always marked
  inactive and the outcome says whether Drive cleanup failed.

All Drive calls go through TokenLifecycleManager.call_with_credentials.
"""
import enum
import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import validation
from errors import AppError, AuthorizationError, FolderInactiveError, NotFoundError
from models import AuditAction, MaterialFolder, Role, User
from services.audit_service import AuditLog, Origin
from services.drive_service import DriveGateway
from services.token_service import TokenLifecycleManager

logger = logging.getLogger(__name__)


class DeleteOutcome(str, enum.Enum):
    LOCAL_DELETED = "local_deleted"
    LOCAL_DELETED_PROVIDER_FAILED = "local_deleted_provider_failed"


@dataclass
class ReconciliationReport:
    # Drive folders that exist but have no local row
    orphaned: list[str] = field(default_factory=list)
    # Active local rows whose Drive folder is gone
    missing: list[int] = field(default_factory=list)


def folder_name(department: str, semester: int, subject: str) -> str:
    """Canonical Drive folder name, e.g. CSE_SEM3_Data Structures."""
    return f"{department}_SEM{semester}_{subject}"


class FolderLifecycleManager:
    def __init__(
        self,
        db: Session,
        gateway: DriveGateway,
        tokens: TokenLifecycleManager,
        audit: AuditLog,
    ):
        self.db = db
        self.gateway = gateway
        self.tokens = tokens
        self.audit = audit

    def get(self, folder_id: int) -> MaterialFolder:
        """Fetch by id, including soft-deleted folders."""
        folder = self.db.get(MaterialFolder, folder_id)
        if folder is None:
            raise NotFoundError("Folder not found", folder_id=folder_id)
        return folder

    def _owned(self, folder_id: int, requester: User) -> MaterialFolder:
        folder = self.get(folder_id)
        if folder.owner_id != requester.id:
            raise AuthorizationError("Not authorized to modify this folder", folder_id=folder_id)
        return folder

    def create(
        self,
        owner: User,
        department: str,
        semester: int,
        subject: str,
        permission: str = "view",
        description: str = "",
        origin: Origin | None = None,
    ) -> MaterialFolder:
        if owner.role != Role.FACULTY.value or not owner.is_active:
            raise AuthorizationError("Only active faculty can create folders")
        department = validation.department(department)
        semester = validation.semester(semester)
        subject = validation.subject(subject)
        permission = validation.permission(permission)
        description = validation.description(description)

        name = folder_name(department, semester, subject)
        created = self.tokens.call_with_credentials(
            owner.id, lambda creds: self.gateway.create_folder(name, creds)
        )
        drive_id = created["id"]

        try:
            self.tokens.call_with_credentials(
                owner.id, lambda creds: self.gateway.set_permission(drive_id, permission, creds)
            )
            folder = MaterialFolder(
                owner_id=owner.id,
                department=department,
                semester=semester,
                subject=subject,
                description=description,
                drive_folder_id=drive_id,
                drive_folder_link=created["link"],
                permission=permission,
            )
            self.db.add(folder)
            self.db.commit()
        except (AppError, SQLAlchemyError):
            self.db.rollback()
            self._discard_drive_folder(owner, drive_id)
            raise

        self.audit.append(
            owner,
            AuditAction.CREATE_FOLDER,
            {
                "folder_id": folder.id,
                "department": department,
                "semester": semester,
                "subject": subject,
            },
            origin,
        )
        return folder

    def _discard_drive_folder(self, owner: User, drive_id: str) -> None:
        try:
            self.tokens.call_with_credentials(
                owner.id, lambda creds: self.gateway.delete_folder(drive_id, creds)
            )
            logger.warning("Rolled back Drive folder %s after failed create", drive_id)
        except AppError:
            logger.error(
                "Orphaned Drive folder %s (owner %s): created on Drive but not stored locally",
                drive_id,
                owner.id,
                exc_info=True,
            )

    def update(
        self,
        folder_id: int,
        requester: User,
        subject: str | None = None,
        description: str | None = None,
        permission: str | None = None,
    ) -> MaterialFolder:
        folder = self._owned(folder_id, requester)
        if not folder.is_active:
            raise FolderInactiveError("This folder has been deleted", folder_id=folder_id)
        new_subject = validation.subject(subject) if subject is not None else None
        new_description = validation.description(description) if description is not None else None
        new_permission = validation.permission(permission) if permission else None

        if new_permission and new_permission != folder.permission:
            drive_id = folder.drive_folder_id
            self.tokens.call_with_credentials(
                requester.id,
                lambda creds: self.gateway.set_permission(drive_id, new_permission, creds),
            )
            folder.permission = new_permission
        if new_subject is not None:
            folder.subject = new_subject
        if new_description is not None:
            folder.description = new_description
        self.db.commit()
        return folder

    def soft_delete(self, folder_id: int, requester: User, origin: Origin | None = None) -> DeleteOutcome:
        folder = self._owned(folder_id, requester)
        if not folder.is_active:
            raise FolderInactiveError("This folder has already been deleted", folder_id=folder_id)

        outcome = DeleteOutcome.LOCAL_DELETED
        drive_id = folder.drive_folder_id
        try:
            self.tokens.call_with_credentials(
                requester.id, lambda creds: self.gateway.delete_folder(drive_id, creds)
            )
        except AppError as e:
            # Local state is authoritative; the Drive folder is left for reconcile()
            logger.warning("Failed to delete Drive folder %s: %s", drive_id, e)
            outcome = DeleteOutcome.LOCAL_DELETED_PROVIDER_FAILED

        folder.is_active = False
        self.db.commit()
        self.audit.append(
            requester,
            AuditAction.DELETE_FOLDER,
            {"folder_id": folder.id, "subject": folder.subject, "outcome": outcome.value},
            origin,
        )
        return outcome

    def list_owned_by(self, owner: User) -> list[MaterialFolder]:
        """Owner's active folders, newest first."""
        stmt = (
            select(MaterialFolder)
            .where(MaterialFolder.owner_id == owner.id, MaterialFolder.is_active.is_(True))
            .order_by(MaterialFolder.created_at.desc(), MaterialFolder.id.desc())
        )
        return list(self.db.scalars(stmt))

    def stats_for(self, owner: User) -> dict:
        active = (MaterialFolder.owner_id == owner.id, MaterialFolder.is_active.is_(True))
        total, views = self.db.execute(
            select(func.count(MaterialFolder.id), func.coalesce(func.sum(MaterialFolder.view_count), 0))
            .where(*active)
        ).one()
        departments = self.db.scalars(
            select(MaterialFolder.department).where(*active).distinct().order_by(MaterialFolder.department)
        ).all()
        recent = self.db.scalars(
            select(MaterialFolder)
            .where(*active, MaterialFolder.last_accessed.is_not(None))
            .order_by(MaterialFolder.last_accessed.desc())
            .limit(10)
        ).all()
        return {
            "overview": {"total_folders": total, "total_views": views, "departments": list(departments)},
            "recent_views": [
                {
                    "id": f.id,
                    "subject": f.subject,
                    "department": f.department,
                    "semester": f.semester,
                    "view_count": f.view_count,
                    "last_accessed": f.last_accessed,
                }
                for f in recent
            ],
        }

    def reconcile(self, owner: User, provider_folder_ids: list[str] | tuple = ()) -> ReconciliationReport:
        """
        Compare the owner's Drive with local rows.

        provider_folder_ids are candidate Drive ids (e.g. taken from orphan log
        lines); those that still exist on Drive but have no local row are
        reported as orphaned. Every active local folder is also checked on Drive.
        """
        report = ReconciliationReport()
        known = set(
            self.db.scalars(
                select(MaterialFolder.drive_folder_id).where(
                    MaterialFolder.drive_folder_id.in_(list(provider_folder_ids))
                )
            )
        ) if provider_folder_ids else set()

        for drive_id in provider_folder_ids:
            if drive_id in known:
                continue
            if self.tokens.call_with_credentials(
                owner.id, lambda creds, d=drive_id: self.gateway.check_exists(d, creds)
            ):
                report.orphaned.append(drive_id)

        for folder in self.list_owned_by(owner):
            if not self.tokens.call_with_credentials(
                owner.id, lambda creds, d=folder.drive_folder_id: self.gateway.check_exists(d, creds)
            ):
                report.missing.append(folder.id)
        if report.orphaned or report.missing:
            logger.warning(
                "Reconcile for %s: %d orphaned Drive folders, %d missing on Drive",
                owner.id,
                len(report.orphaned),
                len(report.missing),
            )
        return report

    def list_all(
        self,
        department: str | None = None,
        semester: int | None = None,
        active: bool | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[MaterialFolder], int]:
        """Admin listing including inactive folders, newest first."""
        stmt = select(MaterialFolder)
        if department:
            stmt = stmt.where(MaterialFolder.department == department.upper())
        if semester:
            stmt = stmt.where(MaterialFolder.semester == semester)
        if active is not None:
            stmt = stmt.where(MaterialFolder.is_active.is_(active))
        total = self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        items = self.db.scalars(
            stmt.order_by(MaterialFolder.created_at.desc(), MaterialFolder.id.desc())
            .offset((max(page, 1) - 1) * limit)
            .limit(limit)
        ).all()
        return list(items), total


def increment_view(db: Session, folder_id: int, now) -> bool:
    """
    Atomically add one view and stamp last_accessed, in the database.
    Returns False if no active folder matched.
    """
    result = db.execute(
        update(MaterialFolder)
        .where(MaterialFolder.id == folder_id, MaterialFolder.is_active.is_(True))
        .values(view_count=MaterialFolder.view_count + 1, last_accessed=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
