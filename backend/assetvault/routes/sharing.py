from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..audit import AuditLedger
from ..auth import get_current_user
from ..database import get_db
from ..services.approvals import RequestContext
from ..services.sharing import ShareService
from ..visibility import VisibilityEngine

router = APIRouter(prefix="/api/assets", tags=["sharing"])


def _shares(db: Session) -> ShareService:
    return ShareService(db, AuditLedger(db), VisibilityEngine(db))


@router.get("/{asset_id}/shares", response_model=List[schemas.ShareOut])
def list_shares(
    asset_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _shares(db).list(user, asset_id)


@router.post(
    "/{asset_id}/shares",
    response_model=List[schemas.ShareOut],
    status_code=status.HTTP_201_CREATED,
)
def grant_shares(
    asset_id: UUID,
    data: schemas.ShareCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _shares(db).grant(user, asset_id, data.user_ids, RequestContext.from_request(request))


@router.delete("/{asset_id}/shares/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_share(
    asset_id: UUID,
    user_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    _shares(db).revoke(user, asset_id, user_id, RequestContext.from_request(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
