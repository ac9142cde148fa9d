"""
Access gate: department-code checks and student access to material folders.

Department codes are Fernet tokens with a random IV, so they cannot be matched
by an indexed lookup. verify_department_code decrypts the code of every active
faculty member in the department and compares each in constant time; cost grows
linearly with the number of faculty in one department. That is the scaling
limit of this design, bounded in practice by department size.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

import crypto
import validation
from config import DEPARTMENT_CODE_KEY
from errors import (
    CryptoError,
    FolderInactiveError,
    InvalidDepartmentCodeError,
    NoFacultyForDepartmentError,
    NotFoundError,
)
from models import AuditAction, MaterialFolder, Role, User, utcnow
from services.audit_service import AuditLog, Origin
from services.folder_service import increment_view

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessGrant:
    link: str
    subject: str
    faculty_name: str


class AccessGate:
    def __init__(
        self,
        db: Session,
        audit: AuditLog,
        key: str | bytes | None = DEPARTMENT_CODE_KEY,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.audit = audit
        self._key = key
        self._clock = clock

    def verify_department_code(self, candidate: str, department: str) -> bool:
        """
        True if any active faculty member of `department` has exactly this code.
        Raises NoFacultyForDepartmentError when the department has no active
        faculty; faculty without a code yet simply never match.
        """
        stored_codes = self.db.execute(
            select(User.id, User.encrypted_department_code).where(
                User.role == Role.FACULTY.value,
                User.department == department,
                User.is_active.is_(True),
            )
        ).all()
        if not stored_codes:
            raise NoFacultyForDepartmentError(
                "No faculty found for this department", department=department
            )
        for faculty_id, ciphertext in stored_codes:
            if not ciphertext:
                continue
            try:
                if crypto.verify(candidate, ciphertext, self._key):
                    return True
            except CryptoError:
                logger.warning("Department code for faculty %s could not be decrypted", faculty_id)
        return False

    def unlock_department(self, student: User, candidate: str, department: str) -> str:
        """
        Check a code a student presents; on success record the department on a
        student that has none yet. Raises InvalidDepartmentCodeError on mismatch.
        """
        department = validation.department(department)
        candidate = validation.department_code(candidate)
        if not self.verify_department_code(candidate, department):
            raise InvalidDepartmentCodeError("Invalid department code", department=department)
        if not student.department:
            student.department = department
            self.db.commit()
        return department

    def access(self, folder_id: int, requester: User, origin: Origin | None = None) -> AccessGrant:
        """Count a view on an active folder and hand out its Drive link."""
        folder = self.db.get(MaterialFolder, folder_id)
        if folder is None:
            raise NotFoundError("Folder not found", folder_id=folder_id)
        if not folder.is_active:
            raise FolderInactiveError("This folder is no longer available", folder_id=folder_id)

        if not increment_view(self.db, folder_id, self._clock()):
            self.db.rollback()
            raise FolderInactiveError("This folder is no longer available", folder_id=folder_id)
        self.db.commit()

        self.audit.append(
            requester,
            AuditAction.VIEW_FOLDER,
            {
                "folder_id": folder.id,
                "subject": folder.subject,
                "department": folder.department,
                "semester": folder.semester,
            },
            origin,
        )
        return AccessGrant(
            link=folder.drive_folder_link,
            subject=folder.subject,
            faculty_name=folder.owner.name if folder.owner else "",
        )

    # --- Browsing (active folders only) ---

    def list_materials(
        self,
        department: str | None = None,
        semester: int | None = None,
        faculty: str | None = None,
        search: str | None = None,
    ) -> list[MaterialFolder]:
        stmt = (
            select(MaterialFolder)
            .join(User, User.id == MaterialFolder.owner_id)
            .where(MaterialFolder.is_active.is_(True))
        )
        if department:
            stmt = stmt.where(MaterialFolder.department == department.upper())
        if semester:
            stmt = stmt.where(MaterialFolder.semester == semester)
        if faculty:
            stmt = stmt.where(User.name.ilike(f"%{faculty}%"))
        if search:
            stmt = stmt.where(
                or_(
                    MaterialFolder.subject.ilike(f"%{search}%"),
                    MaterialFolder.description.ilike(f"%{search}%"),
                )
            )
        stmt = stmt.order_by(MaterialFolder.created_at.desc(), MaterialFolder.id.desc())
        return list(self.db.scalars(stmt))

    def departments(self) -> list[str]:
        stmt = (
            select(MaterialFolder.department)
            .where(MaterialFolder.is_active.is_(True))
            .distinct()
            .order_by(MaterialFolder.department)
        )
        return list(self.db.scalars(stmt))

    def faculty_for(self, department: str | None = None) -> list[dict]:
        """Faculty with active folders, with their folder counts, by name."""
        stmt = (
            select(User.id, User.name, User.email, User.department, func.count(MaterialFolder.id))
            .join(MaterialFolder, MaterialFolder.owner_id == User.id)
            .where(MaterialFolder.is_active.is_(True))
            .group_by(User.id, User.name, User.email, User.department)
            .order_by(User.name)
        )
        if department:
            stmt = stmt.where(MaterialFolder.department == department.upper())
        return [
            {"id": uid, "name": name, "email": email, "department": dept, "total_folders": n}
            for uid, name, email, dept, n in self.db.execute(stmt)
        ]

    def semester_breakdown(self, department: str) -> list[dict]:
        """Active folders of one department grouped by semester, lowest first."""
        folders = self.db.scalars(
            select(MaterialFolder)
            .where(MaterialFolder.department == department.upper(), MaterialFolder.is_active.is_(True))
            .order_by(MaterialFolder.semester, MaterialFolder.subject)
        ).all()
        groups: dict[int, list[dict]] = {}
        for f in folders:
            groups.setdefault(f.semester, []).append(
                {
                    "id": f.id,
                    "subject": f.subject,
                    "faculty_name": f.owner.name if f.owner else "",
                    "view_count": f.view_count,
                }
            )
        return [
            {"semester": sem, "count": len(items), "subjects": items}
            for sem, items in groups.items()
        ]
