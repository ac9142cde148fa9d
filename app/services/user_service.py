"""
Principal lifecycle: Google login, profile edits, and admin actions on users.

Every state change is committed before its audit event is appended.
"""
import logging

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

import crypto
import validation
from config import ADMIN_EMAIL, DEPARTMENT_CODE_KEY
from errors import AuthorizationError, CredentialError, NotFoundError, ValidationError
from models import AuditAction, Role, User, utcnow
from services.audit_service import AuditLog, Origin
from services.token_service import CredentialBundle, TokenLifecycleManager

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, db: Session, tokens: TokenLifecycleManager, audit: AuditLog):
        self.db = db
        self.tokens = tokens
        self.audit = audit

    def get(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", user_id=user_id)
        return user

    def login_with_google(self, code: str, origin: Origin | None = None) -> User:
        """
        Exchange the OAuth code, create or update the principal, store its
        credential bundle and record a login event.
        """
        issued = self.tokens.issuer.exchange_code(code)
        identity = self.tokens.issuer.fetch_identity(issued.access_token)
        if not identity.get("external_id") or not identity.get("email"):
            raise CredentialError("Google userinfo missing sub or email")

        user = self.db.get(User, identity["external_id"])
        if user is None:
            user = User(
                id=identity["external_id"],
                email=identity["email"],
                name=identity["name"],
                picture=identity["picture"],
                role=Role.ADMIN.value if ADMIN_EMAIL and identity["email"] == ADMIN_EMAIL else Role.STUDENT.value,
            )
            self.db.add(user)
            logger.info("New user %s (%s) as %s", user.id, user.email, user.role)
            refresh_token = issued.refresh_token
        else:
            if not user.is_active:
                raise AuthorizationError("This account has been deactivated")
            user.picture = identity["picture"] or user.picture
            # Google only sends a refresh token on consent; keep the stored one otherwise
            refresh_token = issued.refresh_token or self._stored_refresh_token(user)
        user.last_login = utcnow()
        self.db.commit()

        self.tokens.set_initial(
            user.id,
            CredentialBundle(issued.access_token, refresh_token, issued.expires_at),
        )
        self.audit.append(user, AuditAction.LOGIN, {"method": "google_oauth"}, origin)
        return user

    def _stored_refresh_token(self, user: User) -> str | None:
        return crypto.decrypt_token(user.encrypted_refresh_token)

    def logout(self, user: User, origin: Origin | None = None) -> None:
        self.audit.append(user, AuditAction.LOGOUT, {}, origin)

    def update_profile(
        self,
        user: User,
        name: str | None = None,
        department: str | None = None,
        origin: Origin | None = None,
    ) -> User:
        updated = []
        if name is not None:
            user.name = validation.name(name)
            updated.append("name")
        if department is not None:
            user.department = validation.department(department)
            updated.append("department")
        if not updated:
            raise ValidationError("Nothing to update")
        self.db.commit()
        self.audit.append(user, AuditAction.UPDATE_PROFILE, {"updated_fields": updated}, origin)
        return user

    def change_role(self, admin: User, target_id: str, role: str, origin: Origin | None = None) -> User:
        role = validation.role(role)
        target = self.get(target_id)
        if target.id == admin.id:
            raise ValidationError("Cannot change your own role")
        if role == Role.FACULTY.value and not target.department:
            raise ValidationError("Set the user's department before making them faculty")
        old_role = target.role
        target.role = role
        self.db.commit()
        self.audit.append(
            admin,
            AuditAction.CHANGE_ROLE,
            {
                "target_user_id": target.id,
                "target_user_name": target.name,
                "old_role": old_role,
                "new_role": role,
            },
            origin,
        )
        return target

    def set_active(self, admin: User, target_id: str, active: bool, origin: Origin | None = None) -> User:
        target = self.get(target_id)
        if not active and target.id == admin.id:
            raise ValidationError("Cannot deactivate your own account")
        target.is_active = active
        self.db.commit()
        self.audit.append(
            admin,
            AuditAction.ACTIVATE_USER if active else AuditAction.DEACTIVATE_USER,
            {
                "target_user_id": target.id,
                "target_user_name": target.name,
                "target_user_email": target.email,
            },
            origin,
        )
        return target

    def set_department_code(
        self,
        admin: User,
        faculty_id: str,
        code: str,
        origin: Origin | None = None,
    ) -> User:
        """Store a faculty member's department code encrypted; the plaintext is never logged."""
        code = validation.department_code(code)
        faculty = self.get(faculty_id)
        if faculty.role != Role.FACULTY.value:
            raise ValidationError("User is not a faculty member", user_id=faculty_id)
        faculty.encrypted_department_code = crypto.encrypt(code, DEPARTMENT_CODE_KEY)
        self.db.commit()
        self.audit.append(
            admin,
            AuditAction.UPDATE_DEPARTMENT_CODE,
            {"faculty_id": faculty.id, "faculty_name": faculty.name},
            origin,
        )
        return faculty

    def list_users(
        self,
        role: str | None = None,
        department: str | None = None,
        active: bool | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[User], int]:
        stmt = select(User)
        if role:
            stmt = stmt.where(User.role == validation.role(role))
        if department:
            stmt = stmt.where(User.department == department.upper())
        if active is not None:
            stmt = stmt.where(User.is_active.is_(active))
        if search:
            stmt = stmt.where(or_(User.name.ilike(f"%{search}%"), User.email.ilike(f"%{search}%")))
        total = self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        users = self.db.scalars(
            stmt.order_by(User.created_at.desc())
            .offset((max(page, 1) - 1) * limit)
            .limit(limit)
        ).all()
        return list(users), total
