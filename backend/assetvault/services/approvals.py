"""Asset review state machine: submit, approve, reject, revise, re-scope visibility."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import models
from ..audit import AuditLedger, clamp_limit
from ..errors import InvalidStateTransition, NotFound, PermissionDenied, ValidationError
from ..models import AssetStatus, AuditAction, ResourceType, UploadChannel, UserRole, VisibilityLevel
from ..search import AssetPage
from ..visibility import VisibilityEngine

# purpose: govern every status transition of an asset and audit it in the same transaction
# inputs: acting user, asset id, transition payload (visibility, allowed role, reason)
# outputs: refreshed Asset rows; AuditLog, AssetApproval and AssetVersion rows committed atomically
# status: active
# depends_on: audit.AuditLedger, visibility.VisibilityEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Caller metadata copied onto audit records."""

    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request) -> "RequestContext":
        client = getattr(request, "client", None)
        return cls(
            ip_address=client.host if client else None,
            user_agent=request.headers.get("user-agent"),
        )


def resolve_visibility(
    visibility: VisibilityLevel | str | None,
    allowed_role: UserRole | str | None,
) -> tuple[str, str | None]:
    """Validate a visibility choice and normalise its role qualifier."""

    if visibility is None or (isinstance(visibility, str) and not visibility.strip()):
        raise ValidationError("visibility is required", field="visibility")
    raw = getattr(visibility, "value", visibility)
    levels = [level.value for level in VisibilityLevel]
    if raw not in levels:
        raise ValidationError(f"visibility must be one of: {', '.join(levels)}", field="visibility")
    if raw != VisibilityLevel.ROLE_SCOPED.value:
        return raw, None
    role = getattr(allowed_role, "value", allowed_role)
    roles = [r.value for r in UserRole]
    if not role or role not in roles:
        raise ValidationError(
            f"allowed_role must be one of: {', '.join(roles)} when visibility is ROLE_SCOPED",
            field="allowed_role",
        )
    return raw, role


class ApprovalWorkflow:
    def __init__(self, db: Session, ledger: AuditLedger, visibility: VisibilityEngine) -> None:
        self.db = db
        self.ledger = ledger
        self.visibility = visibility

    # -- helpers -----------------------------------------------------------

    def _require_admin(self, actor: models.User, operation: str, asset_id: UUID) -> None:
        if not actor.is_admin:
            logger.warning(
                "non-admin %s attempted %s on asset %s", actor.id, operation, asset_id
            )
            raise PermissionDenied("Admin privileges required")

    def _load_locked(self, asset_id: UUID) -> models.Asset:
        asset = (
            self.db.query(models.Asset)
            .filter(models.Asset.id == asset_id)
            .with_for_update()
            .first()
        )
        if asset is None:
            raise NotFound("Asset not found")
        return asset

    def _current_status(self, asset_id: UUID) -> str | None:
        return (
            self.db.query(models.Asset.status)
            .filter(models.Asset.id == asset_id)
            .scalar()
        )

    def _expect_status(self, asset: models.Asset, expected: AssetStatus, operation: str) -> None:
        if asset.status != expected.value:
            raise InvalidStateTransition(
                f"Cannot {operation} an asset in {asset.status} status; expected {expected.value}",
                current_status=asset.status,
            )

    def _compare_and_set(
        self,
        asset: models.Asset,
        expected: AssetStatus,
        operation: str,
        values: dict[str, Any],
    ) -> None:
        """Apply ``values`` only if the row still holds ``expected``.

        A concurrent transition that committed first leaves zero matching rows;
        the loser reports the status it lost to.
        """

        values.setdefault("updated_at", datetime.now(timezone.utc))
        result = self.db.execute(
            sa.update(models.Asset)
            .where(models.Asset.id == asset.id, models.Asset.status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self._current_status(asset.id)
            raise InvalidStateTransition(
                f"Cannot {operation}: asset is now {current}",
                current_status=current,
            )

    def _transaction(self, operation: Callable[[], models.Asset]) -> models.Asset:
        try:
            asset = operation()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(asset)
        return asset

    # -- transitions -------------------------------------------------------

    def submit(
        self,
        actor: models.User,
        asset_id: UUID,
        context: RequestContext | None = None,
    ) -> models.Asset:
        """Owner sends a draft into the review queue."""

        context = context or RequestContext()

        def _submit() -> models.Asset:
            asset = self._load_locked(asset_id)
            if asset.owner_id != actor.id:
                logger.warning("user %s attempted to submit asset %s owned by %s", actor.id, asset.id, asset.owner_id)
                raise PermissionDenied("Only the owner can submit an asset for review")
            if asset.upload_channel != UploadChannel.REVIEWED.value:
                raise InvalidStateTransition(
                    "Private-channel assets never enter review",
                    current_status=asset.status,
                )
            self._expect_status(asset, AssetStatus.DRAFT, "submit")
            now = datetime.now(timezone.utc)
            self._compare_and_set(
                asset,
                AssetStatus.DRAFT,
                "submit",
                {"status": AssetStatus.PENDING_REVIEW.value, "submitted_at": now},
            )
            self.ledger.record(
                actor.id,
                AuditAction.SUBMIT,
                ResourceType.ASSET,
                asset.id,
                {
                    "previous_status": AssetStatus.DRAFT.value,
                    "new_status": AssetStatus.PENDING_REVIEW.value,
                },
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            return asset

        asset = self._transaction(_submit)
        logger.info("asset %s submitted for review by %s", asset.id, actor.id)
        return asset

    def approve(
        self,
        actor: models.User,
        asset_id: UUID,
        visibility: VisibilityLevel | str | None,
        allowed_role: UserRole | str | None = None,
        context: RequestContext | None = None,
    ) -> models.Asset:
        context = context or RequestContext()
        self._require_admin(actor, "approve", asset_id)
        new_visibility, new_role = resolve_visibility(visibility, allowed_role)

        def _approve() -> models.Asset:
            asset = self._load_locked(asset_id)
            self._expect_status(asset, AssetStatus.PENDING_REVIEW, "approve")
            previous_visibility = asset.visibility
            previous_role = asset.allowed_role
            now = datetime.now(timezone.utc)
            self._compare_and_set(
                asset,
                AssetStatus.PENDING_REVIEW,
                "approve",
                {
                    "status": AssetStatus.APPROVED.value,
                    "visibility": new_visibility,
                    "allowed_role": new_role,
                    "rejection_reason": None,
                    "rejected_at": None,
                    "rejected_by_id": None,
                    "approved_at": now,
                    "approved_by_id": actor.id,
                },
            )
            self.db.add(
                models.AssetApproval(
                    asset_id=asset.id,
                    reviewer_id=actor.id,
                    action=AuditAction.APPROVE.value,
                    visibility=new_visibility,
                    allowed_role=new_role,
                    created_at=now,
                )
            )
            self.ledger.record(
                actor.id,
                AuditAction.APPROVE,
                ResourceType.ASSET,
                asset.id,
                {
                    "previous_status": AssetStatus.PENDING_REVIEW.value,
                    "new_status": AssetStatus.APPROVED.value,
                    "visibility": new_visibility,
                    "allowed_role": new_role,
                    "approved_at": now,
                },
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            if (previous_visibility, previous_role) != (new_visibility, new_role):
                self.ledger.record(
                    actor.id,
                    AuditAction.VISIBILITY_CHANGE,
                    ResourceType.ASSET,
                    asset.id,
                    {
                        "previous_visibility": previous_visibility,
                        "new_visibility": new_visibility,
                        "previous_allowed_role": previous_role,
                        "new_allowed_role": new_role,
                        "context": "approval",
                    },
                    ip_address=context.ip_address,
                    user_agent=context.user_agent,
                )
            return asset

        asset = self._transaction(_approve)
        logger.info("asset %s approved by %s with visibility %s", asset.id, actor.id, asset.visibility)
        return asset

    def reject(
        self,
        actor: models.User,
        asset_id: UUID,
        reason: str | None,
        context: RequestContext | None = None,
    ) -> models.Asset:
        context = context or RequestContext()
        self._require_admin(actor, "reject", asset_id)
        cleaned = (reason or "").strip()
        if not cleaned:
            raise ValidationError("Rejection reason is required", field="reason")

        def _reject() -> models.Asset:
            asset = self._load_locked(asset_id)
            self._expect_status(asset, AssetStatus.PENDING_REVIEW, "reject")
            now = datetime.now(timezone.utc)
            self._compare_and_set(
                asset,
                AssetStatus.PENDING_REVIEW,
                "reject",
                {
                    "status": AssetStatus.REJECTED.value,
                    "rejection_reason": cleaned,
                    "rejected_at": now,
                    "rejected_by_id": actor.id,
                    "approved_at": None,
                    "approved_by_id": None,
                },
            )
            self.db.add(
                models.AssetApproval(
                    asset_id=asset.id,
                    reviewer_id=actor.id,
                    action=AuditAction.REJECT.value,
                    reason=cleaned,
                    created_at=now,
                )
            )
            self.ledger.record(
                actor.id,
                AuditAction.REJECT,
                ResourceType.ASSET,
                asset.id,
                {
                    "previous_status": AssetStatus.PENDING_REVIEW.value,
                    "new_status": AssetStatus.REJECTED.value,
                    "reason": cleaned,
                    "rejected_at": now,
                },
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            return asset

        asset = self._transaction(_reject)
        logger.info("asset %s rejected by %s", asset.id, actor.id)
        return asset

    def revise(
        self,
        actor: models.User,
        asset_id: UUID,
        storage_locator: str,
        context: RequestContext | None = None,
        *,
        file_size: int | None = None,
    ) -> models.Asset:
        """Owner replaces rejected content, starting a new cycle at DRAFT.

        The content being replaced is kept as the next numbered version.
        """

        context = context or RequestContext()
        locator = (storage_locator or "").strip()
        if not locator:
            raise ValidationError("storage_locator is required to revise an asset", field="storage_locator")
        if file_size is not None and file_size < 0:
            raise ValidationError("file_size must be non-negative", field="file_size")

        def _revise() -> models.Asset:
            asset = self._load_locked(asset_id)
            if asset.owner_id != actor.id:
                logger.warning("user %s attempted to revise asset %s", actor.id, asset.id)
                raise PermissionDenied("Only the owner can revise an asset")
            self._expect_status(asset, AssetStatus.REJECTED, "revise")
            if locator == asset.storage_locator:
                raise ValidationError(
                    "A revision must upload new content", field="storage_locator"
                )
            previous_reason = asset.rejection_reason
            previous_locator = asset.storage_locator
            version_number = (
                self.db.query(sa.func.coalesce(sa.func.max(models.AssetVersion.version_number), 0))
                .filter(models.AssetVersion.asset_id == asset.id)
                .scalar()
                + 1
            )
            self.db.add(
                models.AssetVersion(
                    asset_id=asset.id,
                    version_number=version_number,
                    storage_locator=previous_locator,
                    file_size=asset.file_size,
                    created_by_id=actor.id,
                    created_at=datetime.now(timezone.utc),
                )
            )
            self._compare_and_set(
                asset,
                AssetStatus.REJECTED,
                "revise",
                {
                    "status": AssetStatus.DRAFT.value,
                    "storage_locator": locator,
                    "file_size": file_size,
                    "rejection_reason": None,
                    "rejected_at": None,
                    "rejected_by_id": None,
                    "submitted_at": None,
                },
            )
            self.ledger.record(
                actor.id,
                AuditAction.UPDATE,
                ResourceType.ASSET,
                asset.id,
                {
                    "previous_status": AssetStatus.REJECTED.value,
                    "new_status": AssetStatus.DRAFT.value,
                    "previous_rejection_reason": previous_reason,
                    "previous_storage_locator": previous_locator,
                    "storage_locator": locator,
                    "version_number": version_number,
                },
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            return asset

        asset = self._transaction(_revise)
        logger.info("asset %s revised by %s; previous content kept as a version", asset.id, actor.id)
        return asset

    def versions(self, actor: models.User, asset_id: UUID) -> list[models.AssetVersion]:
        """Superseded content of an asset, oldest first, for anyone who can see it."""

        asset = self.db.get(models.Asset, asset_id)
        if asset is None or not self.visibility.can_view(actor, asset):
            raise NotFound("Asset not found")
        return list(asset.versions)

    def change_visibility(
        self,
        actor: models.User,
        asset_id: UUID,
        visibility: VisibilityLevel | str | None,
        allowed_role: UserRole | str | None = None,
        context: RequestContext | None = None,
    ) -> models.Asset:
        """Re-scope an approved asset; drafts and rejections must go back through review."""

        context = context or RequestContext()
        self._require_admin(actor, "change visibility", asset_id)
        new_visibility, new_role = resolve_visibility(visibility, allowed_role)

        def _change() -> models.Asset:
            asset = self._load_locked(asset_id)
            self._expect_status(asset, AssetStatus.APPROVED, "change visibility of")
            previous_visibility = asset.visibility
            previous_role = asset.allowed_role
            self._compare_and_set(
                asset,
                AssetStatus.APPROVED,
                "change visibility",
                {"visibility": new_visibility, "allowed_role": new_role},
            )
            self.ledger.record(
                actor.id,
                AuditAction.VISIBILITY_CHANGE,
                ResourceType.ASSET,
                asset.id,
                {
                    "previous_visibility": previous_visibility,
                    "new_visibility": new_visibility,
                    "previous_allowed_role": previous_role,
                    "new_allowed_role": new_role,
                },
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            return asset

        asset = self._transaction(_change)
        logger.info("asset %s visibility set to %s by %s", asset.id, asset.visibility, actor.id)
        return asset

    def pending(self, actor: models.User, *, page: int = 1, limit: int = 20) -> AssetPage:
        """Admin review queue, oldest submission first."""

        if not actor.is_admin:
            raise PermissionDenied("Admin privileges required")
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        limit = clamp_limit(limit)
        query = self.db.query(models.Asset).filter(
            models.Asset.status == AssetStatus.PENDING_REVIEW.value
        )
        total = query.count()
        items = (
            query.order_by(models.Asset.submitted_at.asc(), models.Asset.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return AssetPage(
            items=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=-(-total // limit) if total else 0,
        )
