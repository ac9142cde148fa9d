"""Login, profile edits and admin user actions."""
import pytest
from sqlalchemy import select

import crypto
from config import DEPARTMENT_CODE_KEY
from errors import AuthorizationError, NotFoundError, ValidationError
from models import AuditEvent, User
from services.user_service import UserService


@pytest.fixture
def users(db, tokens, audit):
    return UserService(db, tokens, audit)


def _actions(db):
    return [e.action for e in db.scalars(select(AuditEvent).order_by(AuditEvent.id))]


def test_first_login_creates_student_with_tokens(users, tokens, db):
    user = users.login_with_google("code-1")

    assert (user.id, user.email, user.role) == ("google-sub-1", "asha@college.edu", "student")
    bundle = tokens.load(user.id)
    assert (bundle.access_token, bundle.refresh_token) == ("access-for-code-1", "refresh-from-consent")
    assert _actions(db) == ["login"]
    db.expire_all()
    stored = db.get(User, user.id)
    assert stored.encrypted_access_token
    assert "access-for-code-1" not in stored.encrypted_access_token


def test_bootstrap_admin_email(users, issuer):
    issuer.identity["email"] = "admin@college.edu"
    assert users.login_with_google("code-1").role == "admin"


def test_repeat_login_keeps_refresh_token_when_google_omits_it(users, tokens, issuer):
    users.login_with_google("code-1")
    issuer.exchange_refresh_token = None
    users.login_with_google("code-2")

    bundle = tokens.load("google-sub-1")
    assert bundle.access_token == "access-for-code-2"
    assert bundle.refresh_token == "refresh-from-consent"


def test_deactivated_user_cannot_log_in(users, make_user, issuer):
    make_user("google-sub-1", active=False)
    with pytest.raises(AuthorizationError):
        users.login_with_google("code-1")


def test_update_profile(users, make_user, db):
    user = make_user("stu", department=None)
    users.update_profile(user, name="Ravi Kumar", department="ece")
    assert (user.name, user.department) == ("Ravi Kumar", "ECE")
    event = db.scalars(select(AuditEvent)).one()
    assert event.detail == {"updated_fields": ["name", "department"]}

    with pytest.raises(ValidationError):
        users.update_profile(user, department="ARTS")


def test_change_role(users, make_user, db):
    admin = make_user("root", role="admin", department=None)
    target = make_user("stu")
    users.change_role(admin, "stu", "faculty")
    assert target.role == "faculty"
    event = db.scalars(select(AuditEvent)).one()
    assert (event.action, event.actor_id) == ("change_role", "root")
    assert event.detail["old_role"] == "student" and event.detail["new_role"] == "faculty"

    with pytest.raises(ValidationError):
        users.change_role(admin, "root", "student")
    with pytest.raises(NotFoundError):
        users.change_role(admin, "nobody", "student")


def test_faculty_needs_department(users, make_user):
    admin = make_user("root", role="admin", department=None)
    make_user("stu", department=None)
    with pytest.raises(ValidationError):
        users.change_role(admin, "stu", "faculty")


def test_activate_and_deactivate(users, make_user, db):
    admin = make_user("root", role="admin", department=None)
    target = make_user("stu")
    users.set_active(admin, "stu", False)
    assert target.is_active is False
    users.set_active(admin, "stu", True)
    assert target.is_active is True
    assert _actions(db) == ["deactivate_user", "activate_user"]
    with pytest.raises(ValidationError):
        users.set_active(admin, "root", False)


def test_set_department_code_stores_ciphertext_only(users, make_user, db):
    admin = make_user("root", role="admin", department=None)
    prof = make_user("prof", role="faculty")
    users.set_department_code(admin, "prof", "CSE2024ABC")

    assert prof.encrypted_department_code != "CSE2024ABC"
    assert crypto.verify("CSE2024ABC", prof.encrypted_department_code, DEPARTMENT_CODE_KEY)
    event = db.scalars(select(AuditEvent)).one()
    assert event.action == "update_department_code"
    assert "CSE2024ABC" not in str(event.detail)

    make_user("stu")
    with pytest.raises(ValidationError):
        users.set_department_code(admin, "stu", "CSE2024ABC")


def test_list_users(users, make_user):
    make_user("a-prof", role="faculty", name="Anita")
    make_user("b-stu", name="Bala")
    make_user("c-stu", name="Chitra", active=False)

    items, total = users.list_users(role="student")
    assert total == 2
    items, total = users.list_users(active=True, search="ani")
    assert [u.id for u in items] == ["a-prof"]
    items, total = users.list_users(page=2, limit=2)
    assert total == 3 and len(items) == 1
