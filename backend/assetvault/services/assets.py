from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import models
from ..audit import AuditLedger
from ..errors import DeletionBlocked, NotFound, PermissionDenied, ValidationError
from ..models import AssetStatus, AuditAction, Platform, ResourceType, UploadChannel, VisibilityLevel
from ..visibility import VisibilityEngine
from .approvals import RequestContext

# purpose: asset lifecycle entry and exit points plus consumption logs (downloads, platform usage)
# inputs: authenticated user, asset metadata and an opaque storage locator
# outputs: Asset, AssetDownload and PlatformUsage rows with their audit records
# status: active
# related: services.approvals (all status changes after creation happen there)

logger = logging.getLogger(__name__)

# child tables whose rows keep an asset from being hard-deleted;
# shares, review history and versions are removed with it
BLOCKING_CHILDREN = (
    ("platform usage", models.PlatformUsage),
    ("download", models.AssetDownload),
)


def _platform_values(platforms: Iterable[Platform | str] | None, field: str) -> list[str]:
    allowed = [p.value for p in Platform]
    values: list[str] = []
    for platform in platforms or []:
        raw = getattr(platform, "value", platform)
        if raw not in allowed:
            raise ValidationError(f"{field} must be drawn from: {', '.join(allowed)}", field=field)
        if raw not in values:
            values.append(raw)
    return values


class AssetService:
    def __init__(self, db: Session, ledger: AuditLedger, visibility: VisibilityEngine) -> None:
        self.db = db
        self.ledger = ledger
        self.visibility = visibility

    def _get_visible(self, actor: models.User, asset_id: UUID) -> models.Asset:
        asset = self.db.get(models.Asset, asset_id)
        if asset is None or not self.visibility.can_view(actor, asset):
            raise NotFound("Asset not found")
        return asset

    def create(
        self,
        actor: models.User,
        *,
        title: str,
        asset_type: models.AssetType | str,
        storage_locator: str,
        upload_channel: UploadChannel | str = UploadChannel.REVIEWED,
        description: str | None = None,
        tags: list[str] | None = None,
        file_size: int | None = None,
        mime_type: str | None = None,
        target_platforms: Iterable[Platform | str] | None = None,
        campaign_name: str | None = None,
        company_id: UUID | None = None,
        context: RequestContext | None = None,
    ) -> models.Asset:
        """Register uploaded content as a private draft owned by ``actor``."""

        context = context or RequestContext()
        if not title or not title.strip():
            raise ValidationError("title is required", field="title")
        if not storage_locator or not storage_locator.strip():
            raise ValidationError("storage_locator is required", field="storage_locator")
        type_value = getattr(asset_type, "value", asset_type)
        if type_value not in [t.value for t in models.AssetType]:
            raise ValidationError("asset_type is not recognised", field="asset_type")
        channel = getattr(upload_channel, "value", upload_channel)
        if channel not in [c.value for c in UploadChannel]:
            raise ValidationError("upload_channel must be REVIEWED or PRIVATE", field="upload_channel")
        if file_size is not None and file_size < 0:
            raise ValidationError("file_size must be non-negative", field="file_size")
        platforms = _platform_values(target_platforms, "target_platforms")

        asset = models.Asset(
            title=title.strip(),
            description=description,
            tags=list(tags or []),
            asset_type=type_value,
            upload_channel=channel,
            status=AssetStatus.DRAFT.value,
            visibility=VisibilityLevel.PRIVATE_OWNER_ONLY.value,
            company_id=company_id or actor.company_id,
            owner_id=actor.id,
            storage_locator=storage_locator.strip(),
            file_size=file_size,
            mime_type=mime_type,
            target_platforms=platforms,
            campaign_name=campaign_name,
        )
        try:
            self.db.add(asset)
            self.db.flush()
            self.ledger.record(
                actor.id,
                AuditAction.CREATE,
                ResourceType.ASSET,
                asset.id,
                {
                    "title": asset.title,
                    "asset_type": asset.asset_type,
                    "upload_channel": asset.upload_channel,
                    "target_platforms": platforms,
                    "campaign_name": campaign_name,
                },
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(asset)
        logger.info("asset %s created by %s on %s channel", asset.id, actor.id, channel)
        return asset

    def delete(self, actor: models.User, asset_id: UUID, context: RequestContext | None = None) -> None:
        context = context or RequestContext()
        try:
            asset = (
                self.db.query(models.Asset)
                .filter(models.Asset.id == asset_id)
                .with_for_update()
                .first()
            )
            if asset is None or not self.visibility.can_view(actor, asset):
                raise NotFound("Asset not found")
            if not self.visibility.can_delete(actor, asset):
                logger.warning("user %s attempted to delete asset %s in %s", actor.id, asset.id, asset.status)
                raise PermissionDenied()

            blockers = []
            for label, child in BLOCKING_CHILDREN:
                count = (
                    self.db.query(sa.func.count(child.id))
                    .filter(child.asset_id == asset.id)
                    .scalar()
                )
                if count:
                    blockers.append(f"{count} {label} record(s)")
            if blockers:
                raise DeletionBlocked(
                    "Asset cannot be deleted while it has " + ", ".join(blockers)
                )

            snapshot = {
                "title": asset.title,
                "status": asset.status,
                "visibility": asset.visibility,
                "owner_id": asset.owner_id,
                "shares_removed": len(asset.shares),
                "reviews_removed": len(asset.approvals),
                "versions_removed": len(asset.versions),
            }
            self.db.delete(asset)
            self.ledger.record(
                actor.id,
                AuditAction.DELETE,
                ResourceType.ASSET,
                asset_id,
                snapshot,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("asset %s deleted by %s", asset_id, actor.id)

    def record_download(
        self,
        actor: models.User,
        asset_id: UUID,
        platforms: Iterable[Platform | str] | None = None,
        context: RequestContext | None = None,
    ) -> models.AssetDownload:
        context = context or RequestContext()
        asset = self._get_visible(actor, asset_id)
        if not self.visibility.can_download(actor, asset):
            raise PermissionDenied()
        values = _platform_values(platforms, "platforms")
        download = models.AssetDownload(
            asset_id=asset.id,
            downloaded_by_id=actor.id,
            platforms=values,
            downloaded_at=datetime.now(timezone.utc),
        )
        try:
            self.db.add(download)
            self.db.flush()
            self.ledger.record(
                actor.id,
                AuditAction.DOWNLOAD,
                ResourceType.ASSET,
                asset.id,
                {"platforms": values, "campaign": asset.campaign_name},
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(download)
        return download

    def log_platform_usage(
        self,
        actor: models.User,
        asset_id: UUID,
        platform: Platform | str,
        campaign_name: str,
        post_url: str | None = None,
        context: RequestContext | None = None,
    ) -> models.PlatformUsage:
        """Record that an asset went out on a platform as part of a campaign."""

        context = context or RequestContext()
        asset = self._get_visible(actor, asset_id)
        if not self.visibility.can_log_platform_usage(actor, asset):
            logger.warning("user %s attempted to log usage of unreleased asset %s", actor.id, asset.id)
            raise PermissionDenied()
        if platform is None:
            raise ValidationError("platform is required", field="platform")
        [platform_value] = _platform_values([platform], "platform")
        campaign = (campaign_name or "").strip()
        if not campaign:
            raise ValidationError("campaign_name is required", field="campaign_name")

        usage = models.PlatformUsage(
            asset_id=asset.id,
            logged_by_id=actor.id,
            platform=platform_value,
            campaign_name=campaign,
            post_url=post_url,
            used_at=datetime.now(timezone.utc),
        )
        try:
            self.db.add(usage)
            self.db.flush()
            self.ledger.record(
                actor.id,
                AuditAction.PLATFORM_USAGE,
                ResourceType.ASSET,
                asset.id,
                {"platform": platform_value, "campaign": campaign, "post_url": post_url},
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(usage)
        return usage
