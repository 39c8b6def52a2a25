import enum
import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import (
    DDL,
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    SEO_SPECIALIST = "SEO_SPECIALIST"
    CONTENT_CREATOR = "CONTENT_CREATOR"


class AssetType(str, enum.Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    DOCUMENT = "DOCUMENT"
    LINK = "LINK"
    CAROUSEL = "CAROUSEL"


class UploadChannel(str, enum.Enum):
    REVIEWED = "REVIEWED"
    PRIVATE = "PRIVATE"


class AssetStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class VisibilityLevel(str, enum.Enum):
    PRIVATE_OWNER_ONLY = "PRIVATE_OWNER_ONLY"
    ADMIN_ONLY = "ADMIN_ONLY"
    COMPANY_SCOPED = "COMPANY_SCOPED"
    TEAM_SCOPED = "TEAM_SCOPED"
    ROLE_SCOPED = "ROLE_SCOPED"
    SELECTED_USERS = "SELECTED_USERS"
    PUBLIC = "PUBLIC"


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    VISIBILITY_CHANGE = "VISIBILITY_CHANGE"
    SHARE = "SHARE"
    REVOKE_SHARE = "REVOKE_SHARE"
    DOWNLOAD = "DOWNLOAD"
    PLATFORM_USAGE = "PLATFORM_USAGE"


class ResourceType(str, enum.Enum):
    ASSET = "ASSET"
    USER = "USER"
    COMPANY = "COMPANY"
    SHARE = "SHARE"
    AUDIT_LOG = "AUDIT_LOG"


class Platform(str, enum.Enum):
    ADS = "ADS"
    INSTAGRAM = "INSTAGRAM"
    META = "META"
    LINKEDIN = "LINKEDIN"
    X = "X"
    SEO = "SEO"
    BLOGS = "BLOGS"
    YOUTUBE = "YOUTUBE"
    SNAPCHAT = "SNAPCHAT"


class Company(Base):
    __tablename__ = "companies"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    users = relationship("User", back_populates="company")


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String)
    role = Column(String, nullable=False, default=UserRole.CONTENT_CREATOR.value)
    company_id = Column(UUID(as_uuid=True), ForeignKey("companies.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=_utcnow)

    company = relationship("Company", back_populates="users")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


class Asset(Base):
    __tablename__ = "assets"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    description = Column(Text)
    tags = Column(JSON, default=list)
    asset_type = Column(String, nullable=False)
    upload_channel = Column(String, nullable=False, default=UploadChannel.REVIEWED.value)
    status = Column(String, nullable=False, default=AssetStatus.DRAFT.value)
    visibility = Column(String, nullable=False, default=VisibilityLevel.PRIVATE_OWNER_ONLY.value)
    allowed_role = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    company_id = Column(UUID(as_uuid=True), ForeignKey("companies.id"), nullable=True)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    storage_locator = Column(String, nullable=False)
    file_size = Column(Integer)
    mime_type = Column(String)
    target_platforms = Column(JSON, default=list)
    campaign_name = Column(String)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    submitted_at = Column(DateTime)
    approved_at = Column(DateTime)
    approved_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime)
    rejected_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    owner = relationship("User", foreign_keys=[owner_id])
    company = relationship("Company")
    shares = relationship(
        "AssetShare",
        back_populates="asset",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    approvals = relationship(
        "AssetApproval",
        back_populates="asset",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    versions = relationship(
        "AssetVersion",
        back_populates="asset",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AssetVersion.version_number",
    )

    __table_args__ = (
        sa.CheckConstraint(
            "(status = 'REJECTED' AND rejection_reason IS NOT NULL)"
            " OR (status <> 'REJECTED' AND rejection_reason IS NULL)",
            name="ck_assets_rejection_reason_status",
        ),
        sa.CheckConstraint(
            "allowed_role IS NULL OR visibility = 'ROLE_SCOPED'",
            name="ck_assets_allowed_role_visibility",
        ),
        sa.Index("ix_assets_owner_status", "owner_id", "status"),
        sa.Index("ix_assets_status_visibility", "status", "visibility"),
    )


class AssetShare(Base):
    __tablename__ = "asset_shares"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    asset_id = Column(
        UUID(as_uuid=True), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    shared_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    shared_with_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    asset = relationship("Asset", back_populates="shares")
    shared_with = relationship("User", foreign_keys=[shared_with_id])

    __table_args__ = (
        sa.UniqueConstraint("asset_id", "shared_with_id", name="uq_asset_share_recipient"),
    )


class AssetApproval(Base):
    """Review history row written alongside each approve or reject."""

    __tablename__ = "asset_approvals"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    asset_id = Column(
        UUID(as_uuid=True), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    reviewer_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    action = Column(String, nullable=False)
    reason = Column(Text)
    visibility = Column(String)
    allowed_role = Column(String)
    created_at = Column(DateTime, default=_utcnow)

    asset = relationship("Asset", back_populates="approvals")


class AssetVersion(Base):
    """Content an asset carried before an owner revision replaced it."""

    __tablename__ = "asset_versions"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    asset_id = Column(
        UUID(as_uuid=True), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    version_number = Column(Integer, nullable=False)
    storage_locator = Column(String, nullable=False)
    file_size = Column(Integer)
    created_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    asset = relationship("Asset", back_populates="versions")

    __table_args__ = (
        sa.UniqueConstraint("asset_id", "version_number", name="uq_asset_version_number"),
    )


class PlatformUsage(Base):
    __tablename__ = "platform_usages"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    asset_id = Column(UUID(as_uuid=True), ForeignKey("assets.id"), nullable=False)
    logged_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    platform = Column(String, nullable=False)
    campaign_name = Column(String, nullable=False)
    post_url = Column(String)
    used_at = Column(DateTime, default=_utcnow)


class AssetDownload(Base):
    __tablename__ = "asset_downloads"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    asset_id = Column(UUID(as_uuid=True), ForeignKey("assets.id"), nullable=False)
    downloaded_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    platforms = Column(JSON, default=list)
    downloaded_at = Column(DateTime, default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    action = Column(String, nullable=False)
    resource_type = Column(String, nullable=False)
    resource_id = Column(String, nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=False, default=dict)
    ip_address = Column(String)
    user_agent = Column(String)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        sa.Index("ix_audit_logs_actor_created", "actor_id", "created_at"),
        sa.Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        sa.Index("ix_audit_logs_action", "action"),
    )


# Storage-layer backstop: the database itself refuses UPDATE and DELETE on
# audit_logs regardless of which client issues them.
AUDIT_LOG_TRIGGERS: dict[str, list[str]] = {
    "sqlite": [
        """
        CREATE TRIGGER IF NOT EXISTS audit_logs_prevent_update
        BEFORE UPDATE ON audit_logs
        BEGIN
            SELECT RAISE(ABORT, 'Audit logs are immutable and cannot be updated');
        END
        """,
        """
        CREATE TRIGGER IF NOT EXISTS audit_logs_prevent_delete
        BEFORE DELETE ON audit_logs
        BEGIN
            SELECT RAISE(ABORT, 'Audit logs are immutable and cannot be deleted');
        END
        """,
    ],
    "postgresql": [
        """
        CREATE OR REPLACE FUNCTION prevent_audit_log_update() RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Audit logs are immutable and cannot be updated';
        END;
        $$ LANGUAGE plpgsql
        """,
        """
        CREATE OR REPLACE FUNCTION prevent_audit_log_delete() RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Audit logs are immutable and cannot be deleted';
        END;
        $$ LANGUAGE plpgsql
        """,
        """
        CREATE TRIGGER audit_logs_prevent_update
        BEFORE UPDATE ON audit_logs
        FOR EACH ROW EXECUTE FUNCTION prevent_audit_log_update()
        """,
        """
        CREATE TRIGGER audit_logs_prevent_delete
        BEFORE DELETE ON audit_logs
        FOR EACH ROW EXECUTE FUNCTION prevent_audit_log_delete()
        """,
    ],
}

AUDIT_LOG_TRIGGER_NAMES = ("audit_logs_prevent_update", "audit_logs_prevent_delete")

for _dialect, _statements in AUDIT_LOG_TRIGGERS.items():
    for _statement in _statements:
        sa.event.listen(
            AuditLog.__table__,
            "after_create",
            DDL(_statement).execute_if(dialect=_dialect),
        )
