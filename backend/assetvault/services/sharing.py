from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import models
from ..audit import AuditLedger
from ..errors import NotFound, PermissionDenied, ValidationError
from ..models import AuditAction, ResourceType, UploadChannel, VisibilityLevel
from ..visibility import VisibilityEngine
from .approvals import RequestContext

# purpose: grant and revoke per-user visibility exceptions on assets
# inputs: acting user (owner or admin), asset id, recipient user ids
# outputs: AssetShare rows; SHARE/REVOKE_SHARE audit records in the same transaction
# status: active
# related: visibility.VisibilityEngine.has_share, search.share_exists

logger = logging.getLogger(__name__)


class ShareService:
    def __init__(self, db: Session, ledger: AuditLedger, visibility: VisibilityEngine) -> None:
        self.db = db
        self.ledger = ledger
        self.visibility = visibility

    def _load_shareable(self, actor: models.User, asset_id: UUID) -> models.Asset:
        asset = (
            self.db.query(models.Asset)
            .filter(models.Asset.id == asset_id)
            .with_for_update()
            .first()
        )
        if asset is None or not self.visibility.can_view(actor, asset):
            raise NotFound("Asset not found")
        if not self.visibility.can_share(actor, asset):
            logger.warning("user %s attempted to manage shares of asset %s", actor.id, asset.id)
            raise PermissionDenied()
        return asset

    def _set_visibility(
        self,
        actor: models.User,
        asset: models.Asset,
        new_visibility: VisibilityLevel,
        context: RequestContext,
        reason: str,
    ) -> None:
        previous = asset.visibility
        asset.visibility = new_visibility.value
        asset.updated_at = datetime.now(timezone.utc)
        self.ledger.record(
            actor.id,
            AuditAction.VISIBILITY_CHANGE,
            ResourceType.ASSET,
            asset.id,
            {
                "previous_visibility": previous,
                "new_visibility": new_visibility.value,
                "context": reason,
            },
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )

    def grant(
        self,
        actor: models.User,
        asset_id: UUID,
        user_ids: Iterable[UUID],
        context: RequestContext | None = None,
    ) -> list[models.AssetShare]:
        """Share an asset with each recipient; existing grants are kept as-is.

        Private-channel assets still at owner-only visibility move to
        SELECTED_USERS so the grant takes effect. Reviewed-channel visibility
        is decided by review alone and never changes here.
        """

        context = context or RequestContext()
        recipient_ids = list(dict.fromkeys(user_ids))
        if not recipient_ids:
            raise ValidationError("At least one recipient is required", field="user_ids")

        try:
            asset = self._load_shareable(actor, asset_id)
            recipients = (
                self.db.query(models.User).filter(models.User.id.in_(recipient_ids)).all()
            )
            found = {user.id for user in recipients}
            missing = [str(uid) for uid in recipient_ids if uid not in found]
            if missing:
                raise NotFound(f"User not found: {', '.join(missing)}")
            if asset.owner_id in found:
                raise ValidationError("Cannot share an asset with its owner", field="user_ids")

            existing = {
                share.shared_with_id: share
                for share in self.db.query(models.AssetShare).filter(
                    models.AssetShare.asset_id == asset.id,
                    models.AssetShare.shared_with_id.in_(recipient_ids),
                )
            }
            shares: list[models.AssetShare] = []
            created: list[str] = []
            for user_id in recipient_ids:
                share = existing.get(user_id)
                if share is None:
                    share = models.AssetShare(
                        asset_id=asset.id,
                        shared_by_id=actor.id,
                        shared_with_id=user_id,
                    )
                    self.db.add(share)
                    created.append(str(user_id))
                shares.append(share)
            self.db.flush()

            if (
                created
                and asset.upload_channel == UploadChannel.PRIVATE.value
                and asset.visibility == VisibilityLevel.PRIVATE_OWNER_ONLY.value
            ):
                self._set_visibility(actor, asset, VisibilityLevel.SELECTED_USERS, context, "share_granted")

            if created:
                self.ledger.record(
                    actor.id,
                    AuditAction.SHARE,
                    ResourceType.ASSET,
                    asset.id,
                    {"shared_with": created, "visibility": asset.visibility},
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        for share in shares:
            self.db.refresh(share)
        logger.info("asset %s shared with %d new recipient(s) by %s", asset_id, len(created), actor.id)
        return shares

    def revoke(
        self,
        actor: models.User,
        asset_id: UUID,
        user_id: UUID,
        context: RequestContext | None = None,
    ) -> None:
        context = context or RequestContext()
        try:
            asset = self._load_shareable(actor, asset_id)
            share = (
                self.db.query(models.AssetShare)
                .filter(
                    models.AssetShare.asset_id == asset.id,
                    models.AssetShare.shared_with_id == user_id,
                )
                .first()
            )
            if share is None:
                raise NotFound("Share not found")
            self.db.delete(share)
            self.db.flush()

            remaining = (
                self.db.query(sa.func.count(models.AssetShare.id))
                .filter(models.AssetShare.asset_id == asset.id)
                .scalar()
            )
            if (
                not remaining
                and asset.upload_channel == UploadChannel.PRIVATE.value
                and asset.visibility == VisibilityLevel.SELECTED_USERS.value
            ):
                self._set_visibility(actor, asset, VisibilityLevel.PRIVATE_OWNER_ONLY, context, "last_share_revoked")

            self.ledger.record(
                actor.id,
                AuditAction.REVOKE_SHARE,
                ResourceType.ASSET,
                asset.id,
                {"revoked_from": str(user_id), "remaining_shares": remaining},
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("share of asset %s revoked from %s by %s", asset_id, user_id, actor.id)

    def list(self, actor: models.User, asset_id: UUID) -> list[models.AssetShare]:
        asset = self.db.get(models.Asset, asset_id)
        if asset is None or not self.visibility.can_view(actor, asset):
            raise NotFound("Asset not found")
        if not self.visibility.can_share(actor, asset):
            raise PermissionDenied()
        return (
            self.db.query(models.AssetShare)
            .filter(models.AssetShare.asset_id == asset.id)
            .order_by(models.AssetShare.created_at, models.AssetShare.id)
            .all()
        )
