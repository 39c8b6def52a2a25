"""Refuse UPDATE and DELETE on audit_logs at the database level."""

from alembic import op


# revision identifiers, used by Alembic.
revision = "20261019_02_audit_log_immutability"
down_revision = "20261019_01_asset_vault_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_audit_log_update() RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Audit logs are immutable and cannot be updated';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_audit_log_delete() RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Audit logs are immutable and cannot be deleted';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_logs_prevent_update
        BEFORE UPDATE ON audit_logs
        FOR EACH ROW EXECUTE FUNCTION prevent_audit_log_update()
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_logs_prevent_delete
        BEFORE DELETE ON audit_logs
        FOR EACH ROW EXECUTE FUNCTION prevent_audit_log_delete()
        """
    )
    # TRUNCATE bypasses row triggers
    op.execute("REVOKE TRUNCATE ON audit_logs FROM PUBLIC")


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS audit_logs_prevent_delete ON audit_logs")
    op.execute("DROP TRIGGER IF EXISTS audit_logs_prevent_update ON audit_logs")
    op.execute("DROP FUNCTION IF EXISTS prevent_audit_log_delete()")
    op.execute("DROP FUNCTION IF EXISTS prevent_audit_log_update()")
