"""Let expenses and whole categories stay out of the monthly budget total

Revision ID: 0002
Revises: 0001
Create Date: 2025-02-03 10:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

TABLES = ("categories", "expenses")


def upgrade() -> None:
    """Add exclude_from_budget to categories and expenses."""
    for table in TABLES:
        op.add_column(
            table,
            sa.Column("exclude_from_budget", sa.Boolean(), nullable=False, server_default=sa.false()),
        )


def downgrade() -> None:
    # SQLite rebuilds the table to drop a column
    for table in TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.drop_column("exclude_from_budget")
