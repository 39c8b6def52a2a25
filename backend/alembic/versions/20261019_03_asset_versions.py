"""Keep superseded asset content and let review history follow its asset."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as pg


# revision identifiers, used by Alembic.
revision = "20261019_03_asset_versions"
down_revision = "20261019_02_audit_log_immutability"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "asset_versions",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "asset_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("assets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("storage_locator", sa.String(), nullable=False),
        sa.Column("file_size", sa.Integer()),
        sa.Column("created_by_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.UniqueConstraint("asset_id", "version_number", name="uq_asset_version_number"),
    )

    op.drop_constraint("asset_approvals_asset_id_fkey", "asset_approvals", type_="foreignkey")
    op.create_foreign_key(
        "asset_approvals_asset_id_fkey",
        "asset_approvals",
        "assets",
        ["asset_id"],
        ["id"],
        ondelete="CASCADE",
    )


def downgrade() -> None:
    op.drop_constraint("asset_approvals_asset_id_fkey", "asset_approvals", type_="foreignkey")
    op.create_foreign_key(
        "asset_approvals_asset_id_fkey",
        "asset_approvals",
        "assets",
        ["asset_id"],
        ["id"],
    )
    op.drop_table("asset_versions")
