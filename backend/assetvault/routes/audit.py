from uuid import UUID
from datetime import datetime
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends
from ..database import get_db
from ..auth import get_current_user
from ..errors import PermissionDenied
from .. import models, schemas
from ..audit import AuditFilters, AuditLedger, DEFAULT_LIMIT

# Read-only by construction: the ledger exposes no update or delete routes.
router = APIRouter(prefix="/api/audit-logs", tags=["audit"])


def _require_admin(user: models.User) -> None:
    if not user.is_admin:
        raise PermissionDenied("Admin privileges required")


def _filters(
    actor_id: UUID | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> AuditFilters:
    return AuditFilters(
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("", response_model=schemas.AuditPageOut)
def list_logs(
    filters: AuditFilters = Depends(_filters),
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    _require_admin(current_user)
    page = AuditLedger(db).query(filters, limit=limit, offset=offset)
    return schemas.AuditPageOut.model_validate(page)


@router.get("/report", response_model=list[schemas.AuditReportItem])
def audit_report(
    dimension: str = "action",
    filters: AuditFilters = Depends(_filters),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    _require_admin(current_user)
    return AuditLedger(db).aggregate(dimension, filters)


@router.get("/{record_id}", response_model=schemas.AuditLogOut)
def get_log(
    record_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    _require_admin(current_user)
    return AuditLedger(db).get(record_id)
