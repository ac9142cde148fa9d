"""Department-code verification, folder access counting and student browsing."""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, UTC

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import select

from database import SessionLocal
from errors import (
    FolderInactiveError,
    InvalidDepartmentCodeError,
    NoFacultyForDepartmentError,
    NotFoundError,
    ValidationError,
)
from models import AuditEvent, MaterialFolder, as_utc
from services.access_service import AccessGate
from services.folder_service import FolderLifecycleManager


@pytest.fixture
def gate(db, audit):
    return AccessGate(db, audit)


@pytest.fixture
def folders(db, drive, tokens, audit):
    return FolderLifecycleManager(db, drive, tokens, audit)


def test_code_matches_exactly(gate, make_user):
    make_user("prof", role="faculty", code="CSE2024ABC")
    assert gate.verify_department_code("CSE2024ABC", "CSE") is True
    assert gate.verify_department_code("cse2024abc", "CSE") is False


def test_code_of_any_faculty_in_department(gate, make_user):
    make_user("prof-a", role="faculty", code="FIRSTCODE")
    make_user("prof-b", role="faculty", code="SECONDCODE")
    make_user("prof-it", role="faculty", department="IT", code="ITCODE99")
    assert gate.verify_department_code("SECONDCODE", "CSE") is True
    assert gate.verify_department_code("ITCODE99", "CSE") is False


def test_inactive_faculty_are_ignored(gate, make_user):
    make_user("prof-a", role="faculty", code="FIRSTCODE")
    make_user("prof-b", role="faculty", code="RETIRED1", active=False)
    assert gate.verify_department_code("RETIRED1", "CSE") is False


def test_no_faculty_is_a_distinct_outcome(gate, make_user):
    make_user("prof-b", role="faculty", code="RETIRED1", active=False)
    make_user("stu", department="ECE", code="STUDENT1")
    with pytest.raises(NoFacultyForDepartmentError):
        gate.verify_department_code("RETIRED1", "CSE")
    with pytest.raises(NoFacultyForDepartmentError):
        gate.verify_department_code("STUDENT1", "ECE")


def test_faculty_without_a_code_is_a_mismatch(gate, make_user):
    make_user("prof", role="faculty")
    assert gate.verify_department_code("ANYCODE1", "CSE") is False


def test_undecryptable_code_is_skipped(gate, make_user, db):
    broken = make_user("prof-a", role="faculty", code="FIRSTCODE")
    broken.encrypted_department_code = Fernet(Fernet.generate_key()).encrypt(b"FIRSTCODE").decode()
    db.commit()
    make_user("prof-b", role="faculty", code="SECONDCODE")
    assert gate.verify_department_code("FIRSTCODE", "CSE") is False
    assert gate.verify_department_code("SECONDCODE", "CSE") is True


def test_unlock_sets_department_once(gate, make_user, db):
    make_user("prof", role="faculty", code="CSE2024ABC")
    student = make_user("stu", department=None)
    assert gate.unlock_department(student, "CSE2024ABC", "cse") == "CSE"
    assert student.department == "CSE"

    with pytest.raises(InvalidDepartmentCodeError):
        gate.unlock_department(student, "WRONGCODE", "CSE")
    with pytest.raises(ValidationError):
        gate.unlock_department(student, "short", "CSE")


def test_access_counts_view_and_audits(gate, folders, make_user, db):
    prof = make_user("prof", role="faculty", name="Dr Mehta")
    student = make_user("stu")
    folder = folders.create(prof, "CSE", 3, "Data Structures")
    at = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)

    grant = AccessGate(db, gate.audit, clock=lambda: at).access(folder.id, student)

    assert grant.link == folder.drive_folder_link
    assert (grant.subject, grant.faculty_name) == ("Data Structures", "Dr Mehta")
    db.expire_all()
    stored = db.get(MaterialFolder, folder.id)
    assert stored.view_count == 1
    assert as_utc(stored.last_accessed) == at
    view = db.scalars(select(AuditEvent).where(AuditEvent.action == "view_folder")).one()
    assert view.actor_id == "stu"
    assert view.detail["folder_id"] == folder.id


def test_last_accessed_tracks_latest_call(db, audit, folders, make_user):
    prof = make_user("prof", role="faculty")
    student = make_user("stu")
    folder = folders.create(prof, "CSE", 3, "Data Structures")
    first = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
    second = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)

    AccessGate(db, audit, clock=lambda: first).access(folder.id, student)
    AccessGate(db, audit, clock=lambda: second).access(folder.id, student)

    db.expire_all()
    stored = db.get(MaterialFolder, folder.id)
    assert stored.view_count == 2
    assert as_utc(stored.last_accessed) == second


def test_concurrent_access_counts_every_view(folders, make_user, audit, db):
    prof = make_user("prof", role="faculty")
    student = make_user("stu")
    folder = folders.create(prof, "CSE", 3, "Data Structures")
    n = 10

    def open_folder(_):
        session = SessionLocal()
        try:
            return AccessGate(session, audit).access(folder.id, student)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=n) as pool:
        grants = list(pool.map(open_folder, range(n)))

    assert len(grants) == n
    db.expire_all()
    stored = db.get(MaterialFolder, folder.id)
    assert stored.view_count == n
    assert stored.last_accessed is not None


def test_access_missing_folder(gate, make_user):
    student = make_user("stu")
    with pytest.raises(NotFoundError):
        gate.access(12345, student)


def test_access_soft_deleted_folder(gate, folders, make_user, db):
    prof = make_user("prof", role="faculty")
    student = make_user("stu")
    folder = folders.create(prof, "CSE", 3, "Data Structures")
    folders.soft_delete(folder.id, prof)

    with pytest.raises(FolderInactiveError):
        gate.access(folder.id, student)
    db.expire_all()
    assert db.get(MaterialFolder, folder.id).view_count == 0


def test_browsing_hides_inactive_folders(gate, folders, make_user):
    prof = make_user("prof", role="faculty", name="Dr Mehta")
    other = make_user("other", role="faculty", department="IT", name="Dr Iyer")
    ds = folders.create(prof, "CSE", 3, "Data Structures", description="trees and graphs")
    old = folders.create(prof, "CSE", 3, "Old Syllabus")
    net = folders.create(other, "IT", 5, "Networks")
    folders.soft_delete(old.id, prof)

    assert [f.id for f in gate.list_materials()] == [net.id, ds.id]
    assert [f.id for f in gate.list_materials(department="cse")] == [ds.id]
    assert [f.id for f in gate.list_materials(search="GRAPHS")] == [ds.id]
    assert [f.id for f in gate.list_materials(faculty="iyer")] == [net.id]
    assert [f.id for f in gate.list_materials(semester=5)] == [net.id]
    assert gate.departments() == ["CSE", "IT"]


def test_faculty_and_semester_breakdown(gate, folders, make_user):
    prof = make_user("prof", role="faculty", name="Dr Mehta")
    folders.create(prof, "CSE", 3, "Data Structures")
    folders.create(prof, "CSE", 3, "Algorithms")
    folders.create(prof, "CSE", 1, "Physics")

    faculty = gate.faculty_for("CSE")
    assert [(f["name"], f["total_folders"]) for f in faculty] == [("Dr Mehta", 3)]

    semesters = gate.semester_breakdown("CSE")
    assert [(s["semester"], s["count"]) for s in semesters] == [(1, 1), (3, 2)]
    assert [s["subject"] for s in semesters[1]["subjects"]] == ["Algorithms", "Data Structures"]
