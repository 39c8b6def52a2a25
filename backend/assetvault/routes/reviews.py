"""Review transitions for assets: submit, approve, reject, revise and re-scope."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from .. import models, schemas
from ..audit import AuditLedger
from ..auth import get_current_user
from ..database import get_db
from ..services.approvals import ApprovalWorkflow, RequestContext
from ..visibility import VisibilityEngine

router = APIRouter(prefix="/api/assets", tags=["reviews"])

# purpose: HTTP surface over ApprovalWorkflow; errors are rendered by the app-level handlers
# status: active
# depends_on: services.approvals


def _workflow(db: Session) -> ApprovalWorkflow:
    return ApprovalWorkflow(db, AuditLedger(db), VisibilityEngine(db))


@router.post("/{asset_id}/submit", response_model=schemas.AssetOut)
def submit_asset(
    asset_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _workflow(db).submit(user, asset_id, RequestContext.from_request(request))


@router.post("/{asset_id}/approve", response_model=schemas.AssetOut)
def approve_asset(
    asset_id: UUID,
    data: schemas.ApproveIn,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Publish a pending asset at the chosen visibility (admin only)."""

    return _workflow(db).approve(
        user,
        asset_id,
        data.visibility,
        data.allowed_role,
        RequestContext.from_request(request),
    )


@router.post("/{asset_id}/reject", response_model=schemas.AssetOut)
def reject_asset(
    asset_id: UUID,
    data: schemas.RejectIn,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _workflow(db).reject(user, asset_id, data.reason, RequestContext.from_request(request))


@router.post("/{asset_id}/revise", response_model=schemas.AssetOut)
def revise_asset(
    asset_id: UUID,
    data: schemas.ReviseIn,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    """Replace rejected content and return the asset to draft."""

    return _workflow(db).revise(
        user,
        asset_id,
        data.storage_locator,
        RequestContext.from_request(request),
        file_size=data.file_size,
    )


@router.get("/{asset_id}/versions", response_model=List[schemas.AssetVersionOut])
def list_asset_versions(
    asset_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _workflow(db).versions(user, asset_id)


@router.patch("/{asset_id}/visibility", response_model=schemas.AssetOut)
def change_asset_visibility(
    asset_id: UUID,
    data: schemas.VisibilityChangeIn,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _workflow(db).change_visibility(
        user,
        asset_id,
        data.visibility,
        data.allowed_role,
        RequestContext.from_request(request),
    )
