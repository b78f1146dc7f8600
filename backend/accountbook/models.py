"""SQLModel data models.

This module defines the account book tables using SQLModel. Every
aggregate has an integer primary key for joins and a public UUID string
that is exposed through the API. Rows reference each other by UUID and
are never hard-deleted; a status column marks soft deletion.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, Index, UniqueConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in every table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> str:
    return str(uuid4())


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class FamilyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class FamilyMemberStatus(str, Enum):
    ACTIVE = "ACTIVE"
    LEFT = "LEFT"


class MemberRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"


class CategoryStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class ExpenseStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class IncomeStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class InvitationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"


class NotificationType(str, Enum):
    BUDGET_50_EXCEEDED = "BUDGET_50_EXCEEDED"
    BUDGET_80_EXCEEDED = "BUDGET_80_EXCEEDED"
    BUDGET_100_EXCEEDED = "BUDGET_100_EXCEEDED"

    @property
    def display_name(self) -> str:
        return _NOTIFICATION_TITLES[self]


_NOTIFICATION_TITLES = {
    NotificationType.BUDGET_50_EXCEEDED: "예산 50% 초과",
    NotificationType.BUDGET_80_EXCEEDED: "예산 80% 초과",
    NotificationType.BUDGET_100_EXCEEDED: "예산 100% 초과",
}


class User(SQLModel, table=True):
    """An account created through an external OAuth provider.

    `(provider, provider_id)` identifies the account; `email` is used for
    the email login shortcut.
    """
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("provider", "provider_id", name="uk_users_provider"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(default_factory=new_uuid, max_length=36, unique=True, index=True)
    provider: str = Field(max_length=50)
    provider_id: str = Field(max_length=255)
    name: Optional[str] = Field(default=None, max_length=100)
    email: str = Field(max_length=255, index=True)
    email_verified: Optional[datetime] = Field(default=None, sa_type=DateTime)
    image: Optional[str] = Field(default=None, max_length=500)
    status: UserStatus = Field(default=UserStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class UserProfile(SQLModel, table=True):
    """Per-user preferences, created lazily on first access."""
    __tablename__ = "user_profiles"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_uuid: str = Field(max_length=36, unique=True, foreign_key="users.uuid")
    timezone: str = Field(default="Asia/Seoul", max_length=50)
    language: str = Field(default="ko", max_length=10)
    currency: str = Field(default="KRW", max_length=10)
    default_family_uuid: Optional[str] = Field(default=None, max_length=36)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Family(SQLModel, table=True):
    """A shared ledger. A `monthly_budget` of zero means no budget is set."""
    __tablename__ = "families"

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(default_factory=new_uuid, max_length=36, unique=True, index=True)
    name: str = Field(max_length=100)
    monthly_budget: Decimal = Field(default=Decimal("0"), max_digits=15, decimal_places=2)
    status: FamilyStatus = Field(default=FamilyStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class FamilyMember(SQLModel, table=True):
    __tablename__ = "family_members"
    __table_args__ = (UniqueConstraint("family_uuid", "user_uuid", name="uk_family_members_family_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(default_factory=new_uuid, max_length=36, unique=True)
    family_uuid: str = Field(max_length=36, index=True, foreign_key="families.uuid")
    user_uuid: str = Field(max_length=36, index=True, foreign_key="users.uuid")
    role: MemberRole = Field(default=MemberRole.MEMBER)
    joined_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    status: FamilyMemberStatus = Field(default=FamilyMemberStatus.ACTIVE)


class Category(SQLModel, table=True):
    """An expense or income category scoped to one family."""
    __tablename__ = "categories"

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(default_factory=new_uuid, max_length=36, unique=True, index=True)
    family_uuid: str = Field(max_length=36, index=True, foreign_key="families.uuid")
    name: str = Field(max_length=50)
    color: str = Field(default="#6366f1", max_length=7)
    icon: Optional[str] = Field(default=None, max_length=50)
    exclude_from_budget: bool = Field(default=False)
    status: CategoryStatus = Field(default=CategoryStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Expense(SQLModel, table=True):
    __tablename__ = "expenses"
    __table_args__ = (
        Index("idx_expenses_family_date", "family_uuid", "date"),
        Index("idx_expenses_category", "category_uuid"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(default_factory=new_uuid, max_length=36, unique=True)
    family_uuid: str = Field(max_length=36, foreign_key="families.uuid")
    category_uuid: str = Field(max_length=36, foreign_key="categories.uuid")
    user_uuid: str = Field(max_length=36, foreign_key="users.uuid")
    amount: Decimal = Field(max_digits=15, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=1000)
    date: datetime = Field(sa_type=DateTime)
    exclude_from_budget: bool = Field(default=False)
    status: ExpenseStatus = Field(default=ExpenseStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Income(SQLModel, table=True):
    __tablename__ = "incomes"
    __table_args__ = (
        Index("idx_incomes_family_date", "family_uuid", "date"),
        Index("idx_incomes_category", "category_uuid"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(default_factory=new_uuid, max_length=36, unique=True)
    family_uuid: str = Field(max_length=36, foreign_key="families.uuid")
    category_uuid: str = Field(max_length=36, foreign_key="categories.uuid")
    user_uuid: str = Field(max_length=36, foreign_key="users.uuid")
    amount: Decimal = Field(max_digits=15, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=1000)
    date: datetime = Field(sa_type=DateTime)
    status: IncomeStatus = Field(default=IncomeStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Invitation(SQLModel, table=True):
    """A shareable token that lets another user join a family."""
    __tablename__ = "invitations"

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(default_factory=new_uuid, max_length=36, unique=True)
    family_uuid: str = Field(max_length=36, index=True, foreign_key="families.uuid")
    inviter_user_uuid: str = Field(max_length=36, foreign_key="users.uuid")
    token: str = Field(max_length=32, unique=True, index=True)
    expires_at: datetime = Field(sa_type=DateTime)
    status: InvitationStatus = Field(default=InvitationStatus.PENDING)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return self.status == InvitationStatus.PENDING and not self.is_expired(now)


class Notification(SQLModel, table=True):
    """An in-app message; `user_uuid` is empty for family-wide notices."""
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_family_type_month", "family_uuid", "type", "year_month"),
        Index("uk_notifications_member_type_month", "family_uuid", "user_uuid", "type", "year_month", unique=True),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(default_factory=new_uuid, max_length=36, unique=True)
    family_uuid: str = Field(max_length=36, foreign_key="families.uuid")
    user_uuid: Optional[str] = Field(default=None, max_length=36, index=True)
    type: NotificationType
    title: str = Field(max_length=200)
    message: str = Field(max_length=1000)
    reference_uuid: Optional[str] = Field(default=None, max_length=36)
    reference_type: Optional[str] = Field(default=None, max_length=50)
    year_month: str = Field(max_length=7)
    is_read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
