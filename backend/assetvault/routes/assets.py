from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..audit import AuditLedger
from ..auth import get_current_user
from ..database import get_db
from ..search import AssetFilterEngine, AssetSearchParams
from ..services.approvals import ApprovalWorkflow, RequestContext
from ..services.assets import AssetService
from ..visibility import VisibilityEngine

router = APIRouter(prefix="/api/assets", tags=["assets"])


def _assets(db: Session) -> AssetService:
    return AssetService(db, AuditLedger(db), VisibilityEngine(db))


def _filter(db: Session) -> AssetFilterEngine:
    return AssetFilterEngine(db, VisibilityEngine(db))


@router.post("", response_model=schemas.AssetOut, status_code=status.HTTP_201_CREATED)
def create_asset(
    data: schemas.AssetCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _assets(db).create(
        user,
        title=data.title,
        asset_type=data.asset_type,
        storage_locator=data.storage_locator,
        upload_channel=data.upload_channel,
        description=data.description,
        tags=data.tags,
        file_size=data.file_size,
        mime_type=data.mime_type,
        target_platforms=data.target_platforms,
        campaign_name=data.campaign_name,
        company_id=data.company_id,
        context=RequestContext.from_request(request),
    )


@router.get("", response_model=schemas.AssetPageOut)
def search_assets(
    q: str | None = None,
    asset_type: str | None = None,
    status_filter: str | None = Query(None, alias="status"),
    visibility: str | None = None,
    upload_channel: str | None = None,
    company_id: UUID | None = None,
    uploader_scope: str | None = None,
    assigned_to: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    params = AssetSearchParams(
        q=q,
        asset_type=asset_type,
        status=status_filter,
        visibility=visibility,
        upload_channel=upload_channel,
        company_id=company_id,
        uploader_scope=uploader_scope,
        assigned_to=assigned_to,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return schemas.AssetPageOut.model_validate(_filter(db).search(user, params))


@router.get("/pending", response_model=schemas.AssetPageOut)
def pending_assets(
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    workflow = ApprovalWorkflow(db, AuditLedger(db), VisibilityEngine(db))
    return schemas.AssetPageOut.model_validate(workflow.pending(user, page=page, limit=limit))


@router.get("/{asset_id}", response_model=schemas.AssetOut)
def get_asset(
    asset_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _filter(db).get_visible(user, asset_id)


@router.get("/{asset_id}/permissions", response_model=schemas.PermissionsOut)
def get_asset_permissions(
    asset_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    engine = VisibilityEngine(db)
    asset = AssetFilterEngine(db, engine).get_visible(user, asset_id)
    return schemas.PermissionsOut.model_validate(engine.check_all_permissions(user, asset))


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_asset(
    asset_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    _assets(db).delete(user, asset_id, context=RequestContext.from_request(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{asset_id}/downloads",
    response_model=schemas.DownloadOut,
    status_code=status.HTTP_201_CREATED,
)
def record_download(
    asset_id: UUID,
    data: schemas.DownloadCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _assets(db).record_download(
        user, asset_id, data.platforms, context=RequestContext.from_request(request)
    )


@router.post(
    "/{asset_id}/usage",
    response_model=schemas.UsageOut,
    status_code=status.HTTP_201_CREATED,
)
def log_platform_usage(
    asset_id: UUID,
    data: schemas.UsageCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _assets(db).log_platform_usage(
        user,
        asset_id,
        data.platform,
        data.campaign_name,
        data.post_url,
        context=RequestContext.from_request(request),
    )
