"""Initial account book schema

Revision ID: 0001
Revises:
Create Date: 2025-01-06 00:01:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

# ignored by SQLite
TABLE_OPTIONS = {
    "mysql_engine": "InnoDB",
    "mysql_charset": "utf8mb4",
    "mysql_collate": "utf8mb4_unicode_ci",
}


def _id() -> sa.Column:
    # SQLite only autoincrements an INTEGER primary key
    return sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True,
                     autoincrement=True)


def _uuid() -> sa.Column:
    return sa.Column("uuid", sa.String(36), nullable=False, unique=True)


def _status(default: str = "ACTIVE") -> sa.Column:
    """Enum columns hold member names (ACTIVE, DELETED, LEFT, OWNER, ...)."""
    return sa.Column("status", sa.String(20), nullable=False, server_default=default)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _ledger_table(name: str) -> None:
    """Expenses and incomes share one shape."""
    op.create_table(
        name,
        _id(),
        _uuid(),
        sa.Column("family_uuid", sa.String(36), nullable=False),
        sa.Column("category_uuid", sa.String(36), nullable=False),
        sa.Column("user_uuid", sa.String(36), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("date", sa.DateTime(), nullable=False),
        _status(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["family_uuid"], ["families.uuid"], name=f"fk_{name}_family"),
        sa.ForeignKeyConstraint(["category_uuid"], ["categories.uuid"], name=f"fk_{name}_category"),
        sa.ForeignKeyConstraint(["user_uuid"], ["users.uuid"], name=f"fk_{name}_user"),
        **TABLE_OPTIONS,
    )
    op.create_index(f"idx_{name}_family_date", name, ["family_uuid", "date"])
    op.create_index(f"idx_{name}_category", name, ["category_uuid"])


def upgrade() -> None:
    """Create users, families, memberships, categories, ledgers and invitations."""
    op.create_table(
        "users",
        _id(),
        _uuid(),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("email_verified", sa.DateTime(), nullable=True),
        sa.Column("image", sa.String(500), nullable=True),
        _status(),
        *_timestamps(),
        sa.UniqueConstraint("provider", "provider_id", name="uk_users_provider"),
        **TABLE_OPTIONS,
    )
    op.create_index("idx_users_email", "users", ["email"])

    op.create_table(
        "user_profiles",
        _id(),
        sa.Column("user_uuid", sa.String(36), nullable=False, unique=True),
        sa.Column("timezone", sa.String(50), nullable=False, server_default="Asia/Seoul"),
        sa.Column("language", sa.String(10), nullable=False, server_default="ko"),
        sa.Column("currency", sa.String(10), nullable=False, server_default="KRW"),
        sa.Column("default_family_uuid", sa.String(36), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_uuid"], ["users.uuid"], name="fk_user_profiles_user"),
        **TABLE_OPTIONS,
    )

    op.create_table(
        "families",
        _id(),
        _uuid(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("monthly_budget", sa.Numeric(15, 2), nullable=False, server_default="0"),
        _status(),
        *_timestamps(),
        **TABLE_OPTIONS,
    )

    op.create_table(
        "family_members",
        _id(),
        _uuid(),
        sa.Column("family_uuid", sa.String(36), nullable=False),
        sa.Column("user_uuid", sa.String(36), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="MEMBER"),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        _status(),
        sa.UniqueConstraint("family_uuid", "user_uuid", name="uk_family_members_family_user"),
        sa.ForeignKeyConstraint(["family_uuid"], ["families.uuid"], name="fk_family_members_family"),
        sa.ForeignKeyConstraint(["user_uuid"], ["users.uuid"], name="fk_family_members_user"),
        **TABLE_OPTIONS,
    )
    op.create_index("idx_family_members_user", "family_members", ["user_uuid"])

    op.create_table(
        "categories",
        _id(),
        _uuid(),
        sa.Column("family_uuid", sa.String(36), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("color", sa.String(7), nullable=False, server_default="#6366f1"),
        sa.Column("icon", sa.String(50), nullable=True),
        _status(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["family_uuid"], ["families.uuid"], name="fk_categories_family"),
        **TABLE_OPTIONS,
    )
    op.create_index("idx_categories_family", "categories", ["family_uuid"])

    _ledger_table("expenses")
    _ledger_table("incomes")

    op.create_table(
        "invitations",
        _id(),
        _uuid(),
        sa.Column("family_uuid", sa.String(36), nullable=False),
        sa.Column("inviter_user_uuid", sa.String(36), nullable=False),
        sa.Column("token", sa.String(32), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        _status("PENDING"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["family_uuid"], ["families.uuid"], name="fk_invitations_family"),
        sa.ForeignKeyConstraint(["inviter_user_uuid"], ["users.uuid"], name="fk_invitations_inviter"),
        **TABLE_OPTIONS,
    )
    op.create_index("idx_invitations_family", "invitations", ["family_uuid"])


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    for table in ("invitations", "incomes", "expenses", "categories", "family_members", "families",
                  "user_profiles", "users"):
        op.drop_table(table)
