from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker, declarative_base
import os

from . import immutability

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./assetvault.db")

if DATABASE_URL.startswith("sqlite"):
    sqlite_args = {"check_same_thread": False, "timeout": 30}
else:
    sqlite_args = {}

engine = create_engine(DATABASE_URL, connect_args=sqlite_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

immutability.install_guards(Session)


def enable_sqlite_foreign_keys(target_engine) -> None:
    """Turn on FK enforcement for every pooled SQLite connection."""

    if target_engine.dialect.name != "sqlite":
        return

    @event.listens_for(target_engine, "connect")
    def _set_pragma(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


enable_sqlite_foreign_keys(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
