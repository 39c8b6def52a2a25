"""CLI utilities for verifying the audit ledger's storage-level guarantees."""

# purpose: let operators confirm audit_logs still refuses UPDATE and DELETE after migrations or restores
# status: active
# depends_on: assetvault.database, assetvault.models, assetvault.audit

from __future__ import annotations

import json
from datetime import datetime

import typer
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError

from .. import models
from ..audit import AGGREGATE_DIMENSIONS, AuditFilters, AuditLedger
from ..database import SessionLocal, engine as default_engine
from ..errors import EngineError
from ..logs import configure_logging

app = typer.Typer(help="Audit ledger integrity commands")

_TRIGGER_QUERIES = {
    "sqlite": "SELECT name FROM sqlite_master WHERE type = 'trigger' AND tbl_name = 'audit_logs'",
    "postgresql": (
        "SELECT tgname FROM pg_trigger "
        "WHERE tgrelid = 'audit_logs'::regclass AND NOT tgisinternal"
    ),
}


def installed_triggers(target: Engine) -> set[str]:
    query = _TRIGGER_QUERIES.get(target.dialect.name)
    if query is None:
        raise ValueError(f"Unsupported dialect for trigger inspection: {target.dialect.name}")
    with target.connect() as conn:
        return {row[0] for row in conn.execute(text(query))}


def _snapshot(conn, record_id: str):
    return conn.execute(
        text("SELECT * FROM audit_logs WHERE id = :id"), {"id": record_id}
    ).first()


def _probe(target: Engine, statement: str, record_id: str) -> bool:
    """Return True when the database refuses ``statement`` for ``record_id``."""

    with target.connect() as conn:
        trans = conn.begin()
        try:
            conn.execute(text(statement), {"id": record_id})
        except DBAPIError:
            return True
        finally:
            trans.rollback()
    return False


def check_integrity(target: Engine | None = None) -> dict[str, object]:
    """Verify both triggers exist and that a probe update and delete are refused.

    Probes run inside transactions that are always rolled back, so the
    probed row is never changed even when a trigger is missing.
    """

    target = target or default_engine
    triggers = installed_triggers(target)
    missing = sorted(set(models.AUDIT_LOG_TRIGGER_NAMES) - triggers)
    summary: dict[str, object] = {
        "dialect": target.dialect.name,
        "missing_triggers": missing,
        "probe_record": None,
        "update_refused": None,
        "delete_refused": None,
        "record_unchanged": None,
    }

    with target.connect() as conn:
        row = conn.execute(
            text("SELECT id FROM audit_logs ORDER BY created_at DESC LIMIT 1")
        ).first()
    if row is not None:
        # keep the driver-native id so the probe binds exactly like the stored value
        record_id = row[0]
        with target.connect() as conn:
            before = _snapshot(conn, record_id)
        summary["probe_record"] = str(record_id)
        summary["update_refused"] = _probe(
            target, "UPDATE audit_logs SET action = action WHERE id = :id", record_id
        )
        summary["delete_refused"] = _probe(
            target, "DELETE FROM audit_logs WHERE id = :id", record_id
        )
        with target.connect() as conn:
            summary["record_unchanged"] = _snapshot(conn, record_id) == before

    summary["ok"] = not missing and all(
        summary[key] is not False
        for key in ("update_refused", "delete_refused", "record_unchanged")
    )
    return summary


@app.command("check")
def check_command() -> None:
    """Exit non-zero when the ledger is no longer append-only."""

    configure_logging()
    summary = check_integrity()
    typer.echo(json.dumps(summary))
    if not summary["ok"]:
        raise typer.Exit(code=1)


@app.command("report")
def report_command(
    dimension: str = typer.Option("action", help=f"One of: {', '.join(AGGREGATE_DIMENSIONS)}"),
    start_date: datetime = typer.Option(None, help="Only count records created at or after this time"),
    end_date: datetime = typer.Option(None, help="Only count records created at or before this time"),
) -> None:
    """Print aggregate counts over the audit ledger."""

    configure_logging()
    session = SessionLocal()
    try:
        buckets = AuditLedger(session).aggregate(
            dimension, AuditFilters(start_date=start_date, end_date=end_date)
        )
    except EngineError as exc:
        raise typer.BadParameter(exc.message)
    finally:
        session.close()
    typer.echo(json.dumps(buckets))


if __name__ == "__main__":
    app()
