"""Asset vault core schema: companies, users, assets, shares and review history."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as pg


# revision identifiers, used by Alembic.
revision = "20261019_01_asset_vault_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
    )

    op.create_table(
        "users",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("full_name", sa.String()),
        sa.Column("role", sa.String(), nullable=False, server_default="CONTENT_CREATOR"),
        sa.Column("company_id", pg.UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
    )

    op.create_table(
        "assets",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("tags", sa.JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("asset_type", sa.String(), nullable=False),
        sa.Column("upload_channel", sa.String(), nullable=False, server_default="REVIEWED"),
        sa.Column("status", sa.String(), nullable=False, server_default="DRAFT"),
        sa.Column("visibility", sa.String(), nullable=False, server_default="PRIVATE_OWNER_ONLY"),
        sa.Column("allowed_role", sa.String(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("company_id", pg.UUID(as_uuid=True), sa.ForeignKey("companies.id"), nullable=True),
        sa.Column("owner_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("storage_locator", sa.String(), nullable=False),
        sa.Column("file_size", sa.Integer()),
        sa.Column("mime_type", sa.String()),
        sa.Column("target_platforms", sa.JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("campaign_name", sa.String()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("submitted_at", sa.DateTime()),
        sa.Column("approved_at", sa.DateTime()),
        sa.Column("approved_by_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("rejected_at", sa.DateTime()),
        sa.Column("rejected_by_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.CheckConstraint(
            "(status = 'REJECTED' AND rejection_reason IS NOT NULL)"
            " OR (status <> 'REJECTED' AND rejection_reason IS NULL)",
            name="ck_assets_rejection_reason_status",
        ),
        sa.CheckConstraint(
            "allowed_role IS NULL OR visibility = 'ROLE_SCOPED'",
            name="ck_assets_allowed_role_visibility",
        ),
    )
    op.create_index("ix_assets_owner_status", "assets", ["owner_id", "status"])
    op.create_index("ix_assets_status_visibility", "assets", ["status", "visibility"])

    op.create_table(
        "asset_shares",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "asset_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("assets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("shared_by_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("shared_with_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.UniqueConstraint("asset_id", "shared_with_id", name="uq_asset_share_recipient"),
    )

    op.create_table(
        "asset_approvals",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column("asset_id", pg.UUID(as_uuid=True), sa.ForeignKey("assets.id"), nullable=False),
        sa.Column("reviewer_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("reason", sa.Text()),
        sa.Column("visibility", sa.String()),
        sa.Column("allowed_role", sa.String()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
    )

    op.create_table(
        "platform_usages",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column("asset_id", pg.UUID(as_uuid=True), sa.ForeignKey("assets.id"), nullable=False),
        sa.Column("logged_by_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("campaign_name", sa.String(), nullable=False),
        sa.Column("post_url", sa.String()),
        sa.Column("used_at", sa.DateTime(), server_default=sa.text("now()")),
    )

    op.create_table(
        "asset_downloads",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column("asset_id", pg.UUID(as_uuid=True), sa.ForeignKey("assets.id"), nullable=False),
        sa.Column("downloaded_by_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("platforms", sa.JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("downloaded_at", sa.DateTime(), server_default=sa.text("now()")),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column("actor_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column("ip_address", sa.String()),
        sa.Column("user_agent", sa.String()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_audit_logs_actor_created", "audit_logs", ["actor_id", "created_at"])
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_created", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("asset_downloads")
    op.drop_table("platform_usages")
    op.drop_table("asset_approvals")
    op.drop_table("asset_shares")
    op.drop_index("ix_assets_status_visibility", table_name="assets")
    op.drop_index("ix_assets_owner_status", table_name="assets")
    op.drop_table("assets")
    op.drop_table("users")
    op.drop_table("companies")
