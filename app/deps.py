"""
Process-wide collaborators and FastAPI dependencies that build services.

The token manager must be a single instance: its per-user refresh locks only
serialize refreshes that go through the same object. Tests override the
get_* providers with app.dependency_overrides.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from database import SessionLocal, get_db
from services.access_service import AccessGate
from services.audit_service import AuditLog
from services.drive_service import DriveGateway
from services.folder_service import FolderLifecycleManager
from services.token_service import GoogleTokenIssuer, TokenLifecycleManager
from services.user_service import UserService

_audit_log = AuditLog(SessionLocal)
_token_manager = TokenLifecycleManager(GoogleTokenIssuer(), SessionLocal)
_drive_gateway = DriveGateway()


def get_audit_log() -> AuditLog:
    return _audit_log


def get_token_manager() -> TokenLifecycleManager:
    return _token_manager


def get_drive_gateway() -> DriveGateway:
    return _drive_gateway


def get_user_service(
    db: Session = Depends(get_db),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
    audit: AuditLog = Depends(get_audit_log),
) -> UserService:
    return UserService(db, tokens, audit)


def get_folder_manager(
    db: Session = Depends(get_db),
    gateway: DriveGateway = Depends(get_drive_gateway),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
    audit: AuditLog = Depends(get_audit_log),
) -> FolderLifecycleManager:
    return FolderLifecycleManager(db, gateway, tokens, audit)


def get_access_gate(
    db: Session = Depends(get_db),
    audit: AuditLog = Depends(get_audit_log),
) -> AccessGate:
    return AccessGate(db, audit)
