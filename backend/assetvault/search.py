"""Role-aware asset listing with the visibility rule pushed into SQL."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session

from . import models
from .audit import clamp_limit
from .errors import NotFound, ValidationError
from .models import AssetStatus, UploadChannel, UserRole, VisibilityLevel
from .visibility import VisibilityEngine

# purpose: list assets a viewer may see with totals that match what the viewer receives
# inputs: viewer, AssetSearchParams
# outputs: AssetPage built from a single filtered, counted and paginated query
# status: active
# related: visibility.VisibilityEngine.can_view (the per-item rule this clause restates)

SORT_COLUMNS = {
    "created_at": models.Asset.created_at,
    "title": models.Asset.title,
    "approved_at": models.Asset.approved_at,
    "file_size": models.Asset.file_size,
}

UPLOADER_SCOPES = ("mine", "all_creators")


@dataclass
class AssetSearchParams:
    q: str | None = None
    asset_type: str | None = None
    status: str | None = None
    visibility: str | None = None
    upload_channel: str | None = None
    company_id: UUID | None = None
    uploader_scope: str | None = None
    assigned_to: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20


@dataclass
class AssetPage:
    items: list[models.Asset]
    total: int
    page: int
    limit: int
    total_pages: int


def _enum_value(enum_cls: type, value: Any, field: str) -> str | None:
    if value is None:
        return None
    raw = getattr(value, "value", value)
    allowed = [member.value for member in enum_cls]
    if raw not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}", field=field)
    return raw


def share_exists(viewer_id: UUID):
    return sa.exists().where(
        models.AssetShare.asset_id == models.Asset.id,
        models.AssetShare.shared_with_id == viewer_id,
    )


def visibility_clause(viewer: models.User):
    """SQL restatement of ``VisibilityEngine.can_view`` for ``viewer``.

    Returns ``None`` for administrators. Any change here must be mirrored in
    ``can_view`` and vice versa; the equivalence tests pin the two together.
    """

    if viewer.role == UserRole.ADMIN.value:
        return None

    Asset = models.Asset
    released = sa.or_(
        Asset.status == AssetStatus.APPROVED.value,
        Asset.upload_channel == UploadChannel.PRIVATE.value,
    )
    qualifiers = [
        Asset.visibility == VisibilityLevel.PUBLIC.value,
        sa.and_(
            Asset.visibility == VisibilityLevel.ROLE_SCOPED.value,
            Asset.allowed_role == viewer.role,
        ),
        sa.and_(
            Asset.visibility == VisibilityLevel.SELECTED_USERS.value,
            share_exists(viewer.id),
        ),
    ]
    if viewer.company_id is not None:
        qualifiers.append(
            sa.and_(
                Asset.visibility == VisibilityLevel.COMPANY_SCOPED.value,
                Asset.company_id == viewer.company_id,
            )
        )
    return sa.or_(Asset.owner_id == viewer.id, sa.and_(released, sa.or_(*qualifiers)))


def assigned_clause(viewer: models.User):
    """Assets someone else made available to the viewer specifically."""

    Asset = models.Asset
    return sa.and_(
        Asset.owner_id != viewer.id,
        sa.or_(
            Asset.visibility == VisibilityLevel.PUBLIC.value,
            sa.and_(
                Asset.visibility == VisibilityLevel.ROLE_SCOPED.value,
                Asset.allowed_role == viewer.role,
            ),
            sa.and_(
                Asset.visibility == VisibilityLevel.SELECTED_USERS.value,
                share_exists(viewer.id),
            ),
        ),
    )


class AssetFilterEngine:
    def __init__(self, db: Session, visibility: VisibilityEngine) -> None:
        self.db = db
        self.visibility = visibility

    def visible_query(self, viewer: models.User):
        query = self.db.query(models.Asset)
        clause = visibility_clause(viewer)
        if clause is not None:
            query = query.filter(clause)
        return query

    def search(self, viewer: models.User, params: AssetSearchParams | None = None) -> AssetPage:
        params = params or AssetSearchParams()
        Asset = models.Asset
        query = self.visible_query(viewer)

        if params.q and params.q.strip():
            term = f"%{params.q.strip()}%"
            query = query.filter(sa.or_(Asset.title.ilike(term), Asset.description.ilike(term)))

        asset_type = _enum_value(models.AssetType, params.asset_type, "asset_type")
        if asset_type:
            query = query.filter(Asset.asset_type == asset_type)
        status = _enum_value(AssetStatus, params.status, "status")
        if status:
            query = query.filter(Asset.status == status)
        visibility = _enum_value(VisibilityLevel, params.visibility, "visibility")
        if visibility:
            query = query.filter(Asset.visibility == visibility)
        channel = _enum_value(UploadChannel, params.upload_channel, "upload_channel")
        if channel:
            query = query.filter(Asset.upload_channel == channel)
        if params.company_id:
            query = query.filter(Asset.company_id == params.company_id)

        if params.uploader_scope:
            if params.uploader_scope not in UPLOADER_SCOPES:
                raise ValidationError(
                    f"uploader_scope must be one of: {', '.join(UPLOADER_SCOPES)}",
                    field="uploader_scope",
                )
            if params.uploader_scope == "mine":
                query = query.filter(Asset.owner_id == viewer.id)
            else:
                creators = sa.select(models.User.id).where(
                    models.User.role == UserRole.CONTENT_CREATOR.value
                )
                query = query.filter(Asset.owner_id.in_(creators))

        if params.assigned_to:
            if params.assigned_to != "me":
                raise ValidationError("assigned_to only supports 'me'", field="assigned_to")
            query = query.filter(assigned_clause(viewer))

        if params.date_from and params.date_to and params.date_from > params.date_to:
            raise ValidationError("date_from must not be after date_to", field="date_from")
        if params.date_from:
            query = query.filter(Asset.created_at >= params.date_from)
        if params.date_to:
            query = query.filter(Asset.created_at <= params.date_to)

        sort_column = SORT_COLUMNS.get(params.sort_by)
        if sort_column is None:
            raise ValidationError(
                f"sort_by must be one of: {', '.join(SORT_COLUMNS)}", field="sort_by"
            )
        if params.sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'", field="sort_order")
        if params.page < 1:
            raise ValidationError("page must be at least 1", field="page")
        limit = clamp_limit(params.limit)

        total = query.with_entities(sa.func.count(Asset.id)).scalar() or 0
        ordering = sort_column.asc() if params.sort_order == "asc" else sort_column.desc()
        items = (
            query.order_by(ordering, Asset.id)
            .offset((params.page - 1) * limit)
            .limit(limit)
            .all()
        )
        return AssetPage(
            items=items,
            total=total,
            page=params.page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    def get_visible(self, viewer: models.User, asset_id: UUID) -> models.Asset:
        """Fetch one asset; missing and invisible look the same to the caller."""

        asset = self.db.get(models.Asset, asset_id)
        if asset is None or not self.visibility.can_view(viewer, asset):
            raise NotFound("Asset not found")
        return asset
