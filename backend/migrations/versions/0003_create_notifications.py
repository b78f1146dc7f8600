"""Create in-app notifications

Revision ID: 0003
Revises: 0002
Create Date: 2025-02-17 09:30:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0003"
down_revision = "0002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the notifications table; `year_month` is YYYY-MM."""
    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True,
                  autoincrement=True),
        sa.Column("uuid", sa.String(36), nullable=False, unique=True),
        sa.Column("family_uuid", sa.String(36), nullable=False),
        sa.Column("user_uuid", sa.String(36), nullable=True),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.String(1000), nullable=False),
        sa.Column("reference_uuid", sa.String(36), nullable=True),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("year_month", sa.String(7), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["family_uuid"], ["families.uuid"], name="fk_notifications_family"),
        mysql_engine="InnoDB",
        mysql_charset="utf8mb4",
        mysql_collate="utf8mb4_unicode_ci",
    )
    op.create_index("idx_notifications_family_type_month", "notifications",
                    ["family_uuid", "type", "year_month"])
    op.create_index("idx_notifications_user", "notifications", ["user_uuid"])


def downgrade() -> None:
    op.drop_table("notifications")
