"""
Shared test setup.

config validates required env vars at import, so they are set here before any
app module is imported. The database is a temporary SQLite file (not :memory:)
so concurrent tests can use one connection per thread. Google is replaced by
FakeIssuer and FakeDrive, which record every call.
"""
import os
import tempfile
import threading
import time
from datetime import timedelta

from cryptography.fernet import Fernet

_DB_DIR = tempfile.mkdtemp(prefix="materials-test-")
os.environ.update(
    {
        "ENV": "test",
        "SKIP_DB_INIT": "true",
        "DATABASE_URL": f"sqlite:///{_DB_DIR}/test.db",
        "GOOGLE_CLIENT_ID": "test-client-id",
        "GOOGLE_CLIENT_SECRET": "test-client-secret",
        "GOOGLE_REDIRECT_URI": "http://testserver/auth/google/callback",
        "JWT_SECRET": "test-jwt-secret",
        "DEPARTMENT_CODE_KEY": Fernet.generate_key().decode(),
        "TOKEN_ENCRYPTION_KEY": Fernet.generate_key().decode(),
        "ADMIN_EMAIL": "admin@college.edu",
    }
)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import crypto  # noqa: E402
from config import DEPARTMENT_CODE_KEY, JWT_COOKIE_NAME  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from errors import ExternalProviderError, ProviderAuthError, TokenRefreshError  # noqa: E402
from models import User, utcnow  # noqa: E402
from security import create_jwt  # noqa: E402
from services.audit_service import AuditLog  # noqa: E402
from services.drive_service import role_for_permission  # noqa: E402
from services.token_service import CredentialBundle, TokenLifecycleManager  # noqa: E402


class FakeIssuer:
    """Stands in for Google's token endpoints; counts refresh calls."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.refresh_calls = 0
        self.reject = False
        self.rotate_refresh_token = False
        self.identity = {
            "external_id": "google-sub-1",
            "name": "Asha Rao",
            "email": "asha@college.edu",
            "picture": "https://example.com/asha.png",
        }
        self.exchange_refresh_token = "refresh-from-consent"
        self._lock = threading.Lock()

    def exchange_code(self, code: str) -> CredentialBundle:
        return CredentialBundle(
            f"access-for-{code}", self.exchange_refresh_token, utcnow() + timedelta(hours=1)
        )

    def refresh(self, refresh_token: str) -> CredentialBundle:
        with self._lock:
            self.refresh_calls += 1
            n = self.refresh_calls
        if self.delay:
            time.sleep(self.delay)
        if self.reject:
            raise TokenRefreshError("Failed to refresh Google token; please log in again")
        return CredentialBundle(
            f"fresh-access-{n}",
            f"rotated-refresh-{n}" if self.rotate_refresh_token else None,
            utcnow() + timedelta(hours=1),
        )

    def fetch_identity(self, access_token: str) -> dict:
        return dict(self.identity)


class FakeDrive:
    """In-memory Drive: records calls and can be told to fail per method."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.folders: dict[str, dict] = {}
        self.fail: dict[str, Exception] = {}
        self.unauthorized_once: set[str] = set()
        self._next = 0

    def _record(self, method: str, *args):
        self.calls.append((method, *args))
        if method in self.unauthorized_once:
            self.unauthorized_once.discard(method)
            raise ProviderAuthError("Drive rejected the access token", status=401)
        if method in self.fail:
            raise self.fail[method]

    def create_folder(self, name, credentials):
        self._record("create_folder", name, credentials.access_token)
        self._next += 1
        folder_id = f"drive-{self._next}"
        self.folders[folder_id] = {"name": name, "role": None}
        return {"id": folder_id, "name": name, "link": f"https://drive.google.com/drive/folders/{folder_id}"}

    def set_permission(self, folder_id, level, credentials):
        self._record("set_permission", folder_id, role_for_permission(level), credentials.access_token)
        self.folders[folder_id]["role"] = role_for_permission(level)
        return True

    def delete_folder(self, folder_id, credentials):
        self._record("delete_folder", folder_id, credentials.access_token)
        self.folders.pop(folder_id, None)
        return True

    def check_exists(self, folder_id, credentials):
        self._record("check_exists", folder_id, credentials.access_token)
        return folder_id in self.folders

    def get_details(self, folder_id, credentials):
        self._record("get_details", folder_id, credentials.access_token)
        return {"id": folder_id, **self.folders[folder_id]}

    def methods_called(self) -> list[str]:
        return [c[0] for c in self.calls]


def provider_error(status: int = 500) -> ExternalProviderError:
    return ExternalProviderError("Drive request failed", status=status)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def issuer():
    return FakeIssuer()


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def tokens(issuer):
    return TokenLifecycleManager(issuer, SessionLocal)


@pytest.fixture
def audit():
    return AuditLog(SessionLocal)


@pytest.fixture
def make_user(db):
    """Create a user; faculty get a department code and valid Google tokens by default."""

    def _make(
        user_id: str,
        role: str = "student",
        department: str | None = "CSE",
        code: str | None = None,
        name: str | None = None,
        active: bool = True,
        expires_in: timedelta | None = timedelta(hours=1),
        refresh_token: str | None = "stored-refresh",
    ) -> User:
        user = User(
            id=user_id,
            email=f"{user_id}@college.edu",
            name=name or user_id.title(),
            role=role,
            department=department,
            is_active=active,
        )
        if code is not None:
            user.encrypted_department_code = crypto.encrypt(code, DEPARTMENT_CODE_KEY)
        if role == "faculty" and expires_in is not None:
            user.encrypted_access_token = crypto.encrypt_token(f"access-{user_id}")
            user.access_token_expires_at = utcnow() + expires_in
            if refresh_token:
                user.encrypted_refresh_token = crypto.encrypt_token(refresh_token)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def client(tokens, drive, audit):
    """HTTP client with Google replaced by the fakes."""
    from deps import get_audit_log, get_drive_gateway, get_token_manager
    from main import app

    app.dependency_overrides[get_token_manager] = lambda: tokens
    app.dependency_overrides[get_drive_gateway] = lambda: drive
    app.dependency_overrides[get_audit_log] = lambda: audit
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def login_as(client: TestClient, user: User) -> TestClient:
    client.cookies.set(JWT_COOKIE_NAME, create_jwt(user.id, user.role))
    return client
