"""Append-only audit ledger for sensitive asset actions."""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .errors import NotFound, ValidationError

# purpose: single write path for audit records plus paginated and aggregated reads
# inputs: caller-owned SQLAlchemy session (commit belongs to the caller's transaction)
# outputs: AuditLog rows, AuditPage pages, aggregate buckets
# status: active
# related: immutability.install_guards, models.AUDIT_LOG_TRIGGERS

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100

AGGREGATE_DIMENSIONS = ("action", "actor", "date", "platform", "campaign")


@dataclass
class AuditPage:
    records: list[models.AuditLog]
    total: int
    page: int
    limit: int
    total_pages: int


@dataclass
class AuditFilters:
    actor_id: UUID | None = None
    action: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return min(max(1, limit), MAX_LIMIT)


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value


class AuditLedger:
    """Records immutable facts; exposes no update or delete."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        actor_id: str | UUID,
        action: models.AuditAction | str,
        resource_type: models.ResourceType | str,
        resource_id: str | UUID,
        metadata: dict | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> models.AuditLog:
        entry = models.AuditLog(
            actor_id=UUID(str(actor_id)),
            action=_json_safe(action),
            resource_type=_json_safe(resource_type),
            resource_id=str(resource_id),
            details=_json_safe(metadata or {}),
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(entry)
        self.db.flush()
        logger.info(
            "audit %s %s/%s by %s",
            entry.action,
            entry.resource_type,
            entry.resource_id,
            entry.actor_id,
        )
        return entry

    def get(self, record_id: UUID) -> models.AuditLog:
        entry = self.db.get(models.AuditLog, record_id)
        if entry is None:
            raise NotFound("Audit log not found")
        return entry

    def _filtered(self, filters: AuditFilters):
        query = self.db.query(models.AuditLog)
        if filters.actor_id:
            query = query.filter(models.AuditLog.actor_id == filters.actor_id)
        if filters.action:
            query = query.filter(models.AuditLog.action == _json_safe(filters.action))
        if filters.resource_type:
            query = query.filter(models.AuditLog.resource_type == _json_safe(filters.resource_type))
        if filters.resource_id:
            query = query.filter(models.AuditLog.resource_id == str(filters.resource_id))
        if filters.start_date:
            query = query.filter(models.AuditLog.created_at >= filters.start_date)
        if filters.end_date:
            query = query.filter(models.AuditLog.created_at <= filters.end_date)
        return query

    def query(
        self,
        filters: AuditFilters | None = None,
        *,
        limit: int | None = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> AuditPage:
        filters = filters or AuditFilters()
        limit = clamp_limit(limit)
        if offset < 0:
            raise ValidationError("offset must be non-negative", field="offset")
        if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
            raise ValidationError("start_date must not be after end_date", field="start_date")

        query = self._filtered(filters)
        total = query.with_entities(func.count(models.AuditLog.id)).scalar() or 0
        records = (
            query.order_by(models.AuditLog.created_at.desc(), models.AuditLog.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return AuditPage(
            records=records,
            total=total,
            page=offset // limit + 1,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    def aggregate(self, dimension: str, filters: AuditFilters | None = None) -> list[dict[str, Any]]:
        """Count records per dimension value; computed on read, never stored."""

        if dimension not in AGGREGATE_DIMENSIONS:
            raise ValidationError(
                f"dimension must be one of: {', '.join(AGGREGATE_DIMENSIONS)}",
                field="dimension",
            )
        query = self._filtered(filters or AuditFilters())

        if dimension in ("action", "actor"):
            column = models.AuditLog.action if dimension == "action" else models.AuditLog.actor_id
            rows = (
                query.with_entities(column, func.count(models.AuditLog.id))
                .group_by(column)
                .all()
            )
            buckets = [{"key": str(key), "count": count} for key, count in rows]
            return sorted(buckets, key=lambda item: (-item["count"], item["key"]))

        counts: Counter[str] = Counter()
        for entry in query.all():
            for key in _dimension_keys(entry, dimension):
                counts[key] += 1
        return [
            {"key": key, "count": count}
            for key, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        ]


def _dimension_keys(entry: models.AuditLog, dimension: str) -> list[str]:
    details = entry.details or {}
    if dimension == "date":
        return [entry.created_at.date().isoformat()] if entry.created_at else []
    if dimension == "campaign":
        campaign = details.get("campaign")
        return [campaign] if campaign else []
    platforms = details.get("platforms")
    if platforms is None and details.get("platform"):
        platforms = [details["platform"]]
    return [str(p) for p in platforms or []]
