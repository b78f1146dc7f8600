"""Allow one budget alert per member, type and month

Revision ID: 0004
Revises: 0003
Create Date: 2025-03-24 14:00:00.000000

"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "0004"
down_revision = "0003"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Family-wide notices have a NULL user_uuid and are not constrained."""
    op.create_index(
        "uk_notifications_member_type_month",
        "notifications",
        ["family_uuid", "user_uuid", "type", "year_month"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("uk_notifications_member_type_month", table_name="notifications")
