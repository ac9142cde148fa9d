"""
Database engine and session. Supports SQLite (dev) and Postgres via DATABASE_URL.

get_db is the single dependency for DB access in routers. Services that must
commit independently of the request (audit log, token refresh) take
SessionLocal and open their own sessions.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from config import DATABASE_URL

# SQLite needs check_same_thread=False for FastAPI; Postgres does not.
# The timeout lets concurrent writers wait on SQLite's file lock.
_connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    _connect_args["check_same_thread"] = False
    _connect_args["timeout"] = 30

engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a DB session and closes it after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
