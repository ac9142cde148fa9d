"""Read-only aggregates for the admin dashboard."""
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import MaterialFolder, Role, User


def overview(db: Session) -> dict:
    role_counts = dict(
        db.execute(
            select(User.role, func.count(User.id)).where(User.is_active.is_(True)).group_by(User.role)
        ).all()
    )
    active_folders = MaterialFolder.is_active.is_(True)
    return {
        "total_users": sum(role_counts.values()),
        "total_faculty": role_counts.get(Role.FACULTY.value, 0),
        "total_students": role_counts.get(Role.STUDENT.value, 0),
        "total_admins": role_counts.get(Role.ADMIN.value, 0),
        "total_departments": db.scalar(
            select(func.count(func.distinct(MaterialFolder.department))).where(active_folders)
        ),
        "total_materials": db.scalar(select(func.count(MaterialFolder.id)).where(active_folders)),
    }


def popular_subjects(db: Session, limit: int = 10) -> list[dict]:
    views = func.sum(MaterialFolder.view_count)
    stmt = (
        select(MaterialFolder.subject, views, func.count(MaterialFolder.id))
        .where(MaterialFolder.is_active.is_(True))
        .group_by(MaterialFolder.subject)
        .order_by(views.desc(), MaterialFolder.subject)
        .limit(limit)
    )
    return [
        {"subject": s, "total_views": v or 0, "folder_count": n}
        for s, v, n in db.execute(stmt)
    ]


def active_faculty(db: Session, limit: int = 10) -> list[dict]:
    views = func.sum(MaterialFolder.view_count)
    stmt = (
        select(User.id, User.name, func.count(MaterialFolder.id), views)
        .join(MaterialFolder, MaterialFolder.owner_id == User.id)
        .where(MaterialFolder.is_active.is_(True))
        .group_by(User.id, User.name)
        .order_by(views.desc(), User.name)
        .limit(limit)
    )
    return [
        {"faculty_id": uid, "faculty_name": name, "total_folders": n, "total_views": v or 0}
        for uid, name, n, v in db.execute(stmt)
    ]


def department_distribution(db: Session) -> list[dict]:
    count = func.count(MaterialFolder.id)
    stmt = (
        select(MaterialFolder.department, count, func.sum(MaterialFolder.view_count))
        .where(MaterialFolder.is_active.is_(True))
        .group_by(MaterialFolder.department)
        .order_by(count.desc(), MaterialFolder.department)
    )
    return [
        {"department": d, "total_folders": n, "total_views": v or 0}
        for d, n, v in db.execute(stmt)
    ]
