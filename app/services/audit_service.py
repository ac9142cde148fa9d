"""
Audit log: append-only event store and its aggregation queries.

append() writes in its own session and commits independently of the caller,
so it must be called after the triggering action has committed. It never
raises: failures are reported on the "audit.errors" logger and the triggering
action carries on.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from models import AuditAction, AuditEvent, User, utcnow

logger = logging.getLogger(__name__)
error_logger = logging.getLogger("audit.errors")


@dataclass(frozen=True)
class Origin:
    """Where a request came from, as recorded on audit events."""
    ip_address: str = ""
    user_agent: str = ""

    @classmethod
    def from_request(cls, request) -> "Origin":
        client = getattr(request, "client", None)
        return cls(
            ip_address=(client.host if client else "") or "",
            user_agent=request.headers.get("user-agent", "")[:512],
        )


class AuditLog:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def append(
        self,
        actor: User,
        action: AuditAction | str,
        detail: dict[str, Any] | None = None,
        origin: Origin | None = None,
    ) -> AuditEvent | None:
        """
        Record one event with a snapshot of the actor's name and email.
        Returns the stored event, or None if it could not be written.
        """
        origin = origin or Origin()
        db: Session = self._session_factory()
        try:
            event = AuditEvent(
                actor_id=actor.id,
                actor_name=actor.name or "",
                actor_email=actor.email or "",
                action=AuditAction(action).value,
                detail=detail or {},
                ip_address=origin.ip_address,
                user_agent=origin.user_agent,
                created_at=utcnow(),
            )
            db.add(event)
            db.commit()
            logger.debug("audit %s by %s", event.action, event.actor_id)
            return event
        except (SQLAlchemyError, ValueError):
            db.rollback()
            error_logger.exception(
                "Failed to record audit event %s for actor %s", action, getattr(actor, "id", None)
            )
            return None
        finally:
            db.close()

    def daily_active_users(
        self,
        start: datetime,
        end: datetime,
        action: AuditAction = AuditAction.LOGIN,
    ) -> list[dict]:
        """Distinct actors per calendar day for `action` in [start, end], oldest day first."""
        day = func.date(AuditEvent.created_at)
        stmt = (
            select(day.label("day"), func.count(func.distinct(AuditEvent.actor_id)))
            .where(
                AuditEvent.action == AuditAction(action).value,
                AuditEvent.created_at >= start,
                AuditEvent.created_at <= end,
            )
            .group_by(day)
            .order_by(day)
        )
        with self._session_factory() as db:
            return [{"date": str(d), "count": n} for d, n in db.execute(stmt)]

    def action_statistics(self, start: datetime, end: datetime) -> list[dict]:
        """Event count per action in [start, end], most frequent first."""
        count = func.count(AuditEvent.id)
        stmt = (
            select(AuditEvent.action, count)
            .where(AuditEvent.created_at >= start, AuditEvent.created_at <= end)
            .group_by(AuditEvent.action)
            .order_by(count.desc(), AuditEvent.action)
        )
        with self._session_factory() as db:
            return [{"action": a, "count": n} for a, n in db.execute(stmt)]

    def recent(
        self,
        actor_id: str | None = None,
        action: AuditAction | str | None = None,
        limit: int = 20,
    ) -> list[dict]:
        """
        Most recent events, newest first, optionally filtered by actor and/or
        action. Each row carries the actor's current role when the actor still exists.
        """
        stmt = (
            select(AuditEvent, User.role)
            .outerjoin(User, User.id == AuditEvent.actor_id)
            .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
            .limit(max(1, limit))
        )
        if actor_id:
            stmt = stmt.where(AuditEvent.actor_id == actor_id)
        if action:
            stmt = stmt.where(AuditEvent.action == AuditAction(action).value)
        with self._session_factory() as db:
            rows = []
            for event, role in db.execute(stmt):
                row = event.to_dict()
                row["actor_role"] = role
                rows.append(row)
            return rows

    def login_history(self, actor_id: str | None = None, limit: int = 50) -> list[dict]:
        return self.recent(actor_id=actor_id, action=AuditAction.LOGIN, limit=limit)
