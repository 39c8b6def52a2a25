"""Per-item visibility rules for assets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .models import AssetStatus, UploadChannel, UserRole, VisibilityLevel

# purpose: single entry point deciding whether a user may see or act on an asset
# inputs: authenticated user, asset row, session used only for share-grant lookups
# outputs: booleans and PermissionSummary; never raises for valid inputs
# status: active
# related: search.visibility_clause mirrors can_view as a SQL predicate

EDITABLE_STATUSES = frozenset({AssetStatus.DRAFT.value, AssetStatus.REJECTED.value})

# Levels whose qualifier never admits a non-owner, non-admin viewer.
CLOSED_LEVELS = frozenset(
    {
        VisibilityLevel.PRIVATE_OWNER_ONLY.value,
        VisibilityLevel.ADMIN_ONLY.value,
        VisibilityLevel.TEAM_SCOPED.value,
    }
)


@dataclass(frozen=True)
class PermissionSummary:
    can_view: bool
    can_edit: bool
    can_delete: bool
    can_approve: bool
    can_share: bool
    can_modify_visibility: bool
    reason: str | None = None


def is_released(asset: models.Asset) -> bool:
    """Whether non-owners may be considered at all."""

    return (
        asset.status == AssetStatus.APPROVED.value
        or asset.upload_channel == UploadChannel.PRIVATE.value
    )


class VisibilityEngine:
    def __init__(self, db: Session) -> None:
        self.db = db

    def has_share(self, asset_id: UUID, user_id: UUID) -> bool:
        return (
            self.db.query(models.AssetShare.id)
            .filter(
                models.AssetShare.asset_id == asset_id,
                models.AssetShare.shared_with_id == user_id,
            )
            .first()
            is not None
        )

    def can_view(
        self,
        user: models.User,
        asset: models.Asset,
        *,
        granted_asset_ids: set[UUID] | None = None,
    ) -> bool:
        """Evaluate the visibility rules in order; first match wins.

        Owner and admin bypasses come first so drafts and rejections stay
        visible to the people who must work on them. Everyone else needs the
        asset released (approved, or on the private channel) *and* a matching
        visibility qualifier. The share-grant lookup is the only rule that
        touches storage and runs last; ``granted_asset_ids`` lets batch callers
        supply the viewer's grants up front.
        """

        if asset.owner_id == user.id:
            return True
        if user.role == UserRole.ADMIN.value:
            return True
        if not is_released(asset):
            return False

        visibility = asset.visibility
        if visibility in CLOSED_LEVELS:
            return False
        if visibility == VisibilityLevel.PUBLIC.value:
            return True
        if visibility == VisibilityLevel.COMPANY_SCOPED.value:
            return (
                asset.company_id is not None
                and user.company_id is not None
                and asset.company_id == user.company_id
            )
        if visibility == VisibilityLevel.ROLE_SCOPED.value:
            return asset.allowed_role is not None and asset.allowed_role == user.role
        if visibility == VisibilityLevel.SELECTED_USERS.value:
            if granted_asset_ids is not None:
                return asset.id in granted_asset_ids
            return self.has_share(asset.id, user.id)
        return False

    def granted_asset_ids(self, user: models.User, asset_ids: Iterable[UUID] | None = None) -> set[UUID]:
        query = self.db.query(models.AssetShare.asset_id).filter(
            models.AssetShare.shared_with_id == user.id
        )
        if asset_ids is not None:
            ids = list(asset_ids)
            if not ids:
                return set()
            query = query.filter(models.AssetShare.asset_id.in_(ids))
        return {row[0] for row in query.all()}

    def filter_visible(self, user: models.User, assets: Iterable[models.Asset]) -> list[models.Asset]:
        assets = list(assets)
        granted = self.granted_asset_ids(user, [a.id for a in assets])
        return [a for a in assets if self.can_view(user, a, granted_asset_ids=granted)]

    def can_edit(self, user: models.User, asset: models.Asset) -> bool:
        if user.is_admin:
            return True
        return asset.owner_id == user.id and asset.status in EDITABLE_STATUSES

    def can_delete(self, user: models.User, asset: models.Asset) -> bool:
        return self.can_edit(user, asset)

    def can_approve(self, user: models.User, asset: models.Asset) -> bool:
        return (
            user.is_admin
            and asset.upload_channel == UploadChannel.REVIEWED.value
            and asset.status == AssetStatus.PENDING_REVIEW.value
        )

    def can_share(self, user: models.User, asset: models.Asset) -> bool:
        return user.is_admin or asset.owner_id == user.id

    def can_modify_visibility(self, user: models.User, asset: models.Asset) -> bool:
        return user.is_admin and asset.upload_channel == UploadChannel.REVIEWED.value

    def can_download(self, user: models.User, asset: models.Asset) -> bool:
        return self.can_view(user, asset)

    def can_log_platform_usage(self, user: models.User, asset: models.Asset) -> bool:
        if not self.can_view(user, asset):
            return False
        if asset.upload_channel == UploadChannel.REVIEWED.value:
            return asset.status == AssetStatus.APPROVED.value
        return True

    def check_all_permissions(self, user: models.User, asset: models.Asset) -> PermissionSummary:
        can_view = self.can_view(user, asset)
        summary = dict(
            can_view=can_view,
            can_edit=self.can_edit(user, asset),
            can_delete=self.can_delete(user, asset),
            can_approve=self.can_approve(user, asset),
            can_share=self.can_share(user, asset),
            can_modify_visibility=self.can_modify_visibility(user, asset),
        )
        reason = None
        if not can_view:
            reason = "User does not have permission to view this asset"
        elif not any(v for k, v in summary.items() if k != "can_view"):
            reason = "User has view-only access to this asset"
        return PermissionSummary(reason=reason, **summary)
