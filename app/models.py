"""
Data models for the course materials backend.

"""
import enum
from datetime import datetime, UTC

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on DateTime(timezone=True); treat naive values as UTC
    and convert aware ones, so comparisons against stored values line up."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Role(str, enum.Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"


class Permission(str, enum.Enum):
    VIEW = "view"
    COMMENT = "comment"
    EDIT = "edit"


class AuditAction(str, enum.Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    CREATE_FOLDER = "create_folder"
    DELETE_FOLDER = "delete_folder"
    VIEW_FOLDER = "view_folder"
    UPDATE_PROFILE = "update_profile"
    CHANGE_ROLE = "change_role"
    DEACTIVATE_USER = "deactivate_user"
    ACTIVATE_USER = "activate_user"
    UPDATE_DEPARTMENT_CODE = "update_department_code"


class User(Base):
    """
    A principal: identity, role and Google OAuth state.

    - id: Google subject id (string), primary key; one row per Google identity.
    - role: student | faculty | admin. Admins need no department.
    - encrypted_department_code: Fernet-encrypted with DEPARTMENT_CODE_KEY;
      faculty only. Never stored in plaintext.
    - encrypted_access_token / encrypted_refresh_token: Fernet-encrypted with
      TOKEN_ENCRYPTION_KEY; decrypted only when calling Google APIs.
    - access_token_expires_at: UTC instant the access token expires; always
      written together with the access token.
    """
    __tablename__ = "users"

    id = Column(String(255), primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=False, default="")
    picture = Column(String(1024), nullable=False, default="")

    role = Column(String(20), nullable=False, default=Role.STUDENT.value)
    department = Column(String(20), nullable=True)
    encrypted_department_code = Column(String(512), nullable=True)

    # OAuth tokens encrypted at rest (crypto.encrypt_token / crypto.decrypt_token)
    encrypted_access_token = Column(String(2048), nullable=True)
    encrypted_refresh_token = Column(String(2048), nullable=True)
    access_token_expires_at = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    folders = relationship("MaterialFolder", back_populates="owner")

    __table_args__ = (Index("ix_users_department_role", "department", "role"),)

    def to_public(self) -> dict:
        """Profile fields safe to return to clients (no tokens, no codes)."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "picture": self.picture,
            "role": self.role,
            "department": self.department,
            "is_active": self.is_active,
            "last_login": self.last_login,
            "created_at": self.created_at,
        }


class MaterialFolder(Base):
    """
    A faculty-owned Drive folder shared with students.

    drive_folder_id is assigned once at creation and is unique. is_active=False
    is a soft delete: the row stays for admin/audit views but is hidden from
    student browsing and the owner's listing. view_count only ever increments.
    """
    __tablename__ = "material_folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(255), ForeignKey("users.id"), nullable=False, index=True)
    department = Column(String(20), nullable=False)
    semester = Column(Integer, nullable=False)
    subject = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False, default="")

    drive_folder_id = Column(String(255), unique=True, nullable=False)
    drive_folder_link = Column(String(1024), nullable=False)
    permission = Column(String(20), nullable=False, default=Permission.VIEW.value)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    view_count = Column(Integer, nullable=False, default=0)
    last_accessed = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    owner = relationship("User", back_populates="folders")

    __table_args__ = (Index("ix_material_folders_department_semester", "department", "semester"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "faculty_name": self.owner.name if self.owner else None,
            "department": self.department,
            "semester": self.semester,
            "subject": self.subject,
            "description": self.description,
            "drive_folder_id": self.drive_folder_id,
            "drive_folder_link": self.drive_folder_link,
            "permission": self.permission,
            "is_active": self.is_active,
            "view_count": self.view_count,
            "last_accessed": self.last_accessed,
            "created_at": self.created_at,
        }


class AuditEvent(Base):
    """
    Append-only audit record. Actor name/email are copied at event time so the
    history survives later profile edits. Rows are never updated or deleted.
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(255), nullable=False)
    actor_name = Column(String(255), nullable=False, default="")
    actor_email = Column(String(255), nullable=False, default="")
    action = Column(String(40), nullable=False)
    detail = Column(JSON, nullable=False, default=dict)
    ip_address = Column(String(64), nullable=False, default="")
    user_agent = Column(String(512), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_audit_events_actor_created", "actor_id", "created_at"),
        Index("ix_audit_events_action_created", "action", "created_at"),
        Index("ix_audit_events_created", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "actor_email": self.actor_email,
            "action": self.action,
            "detail": self.detail,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at,
        }
