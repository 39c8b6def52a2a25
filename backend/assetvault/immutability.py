"""Application-layer guards keeping the audit ledger append-only."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import ORMExecuteState, Session

from .errors import ImmutableViolation

# purpose: intercept ORM updates and deletes against audit_logs before they reach the database
# inputs: SQLAlchemy Session class (or sessionmaker) to instrument
# outputs: ImmutableViolation raised for every mutation attempt, logged at CRITICAL
# status: active
# related: models.AUDIT_LOG_TRIGGERS (storage-layer backstop)

logger = logging.getLogger("assetvault.audit")

AUDIT_TABLE = "audit_logs"

_installed: set[int] = set()


def _is_audit_record(instance: Any) -> bool:
    return getattr(instance, "__tablename__", None) == AUDIT_TABLE


def _violation(operation: str, detail: dict[str, Any]) -> ImmutableViolation:
    logger.critical(
        "audit ledger %s attempt rejected",
        operation,
        extra={"audit_operation": operation, **detail},
    )
    if operation == "delete":
        return ImmutableViolation("Audit logs are immutable and cannot be deleted")
    return ImmutableViolation("Audit logs are immutable and cannot be updated")


def _reject_dirty_audit_records(session: Session, _flush_context, _instances) -> None:
    for instance in session.deleted:
        if _is_audit_record(instance):
            raise _violation("delete", {"audit_id": str(instance.id)})
    for instance in session.dirty:
        if _is_audit_record(instance):
            raise _violation("update", {"audit_id": str(instance.id)})


def _touches_audit_table(orm_execute_state: ORMExecuteState) -> bool:
    mappers = list(orm_execute_state.all_mappers or [])
    if orm_execute_state.bind_mapper is not None:
        mappers.append(orm_execute_state.bind_mapper)
    return any(mapper.local_table.name == AUDIT_TABLE for mapper in mappers)


def _reject_bulk_audit_statements(orm_execute_state: ORMExecuteState) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    if not _touches_audit_table(orm_execute_state):
        return
    operation = "delete" if orm_execute_state.is_delete else "update"
    raise _violation(operation, {"bulk": True})


def install_guards(target: Any = Session) -> None:
    """Attach the audit guards to a Session class or sessionmaker once."""

    key = id(target)
    if key in _installed:
        return
    event.listen(target, "before_flush", _reject_dirty_audit_records)
    event.listen(target, "do_orm_execute", _reject_bulk_audit_statements)
    _installed.add(key)


def upsert_audit_record(db: Session, record: Any) -> Any:
    """Insert ``record`` unless a row with its id already exists."""

    if not _is_audit_record(record):
        raise TypeError("upsert_audit_record only accepts audit log records")
    mapper = inspect(record).mapper
    if record.id is not None and db.get(mapper.class_, record.id) is not None:
        raise _violation("update", {"audit_id": str(record.id), "upsert": True})
    db.add(record)
    db.flush()
    return record
