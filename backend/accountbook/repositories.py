"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
profiles, families, members, categories, expenses, incomes, invitations,
notifications) plus one read-only repository for dashboard aggregates.
Repositories return SQLModel objects and perform commits/refreshes where
appropriate. Queries are built with SQLModel `select()` expressions.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlmodel import Session, select

from . import models

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Normalise a numeric database value to a two-decimal `Decimal`."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


class _BaseRepository:
    def __init__(self, session: Session):
        self.session = session

    def save(self, obj):
        """Persist `obj` and return the refreshed instance."""
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj


class UserRepository(_BaseRepository):
    """Lookups for `User` rows."""

    def get_by_uuid(self, uuid: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.uuid == uuid)
        return self.session.exec(stmt).first()

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return the oldest active account registered with `email`."""
        stmt = select(models.User).where(
            models.User.email == email,
            models.User.status == models.UserStatus.ACTIVE,
        ).order_by(models.User.id)
        return self.session.exec(stmt).first()

    def get_by_provider(self, provider: str, provider_id: str) -> Optional[models.User]:
        stmt = select(models.User).where(
            models.User.provider == provider,
            models.User.provider_id == provider_id,
        )
        return self.session.exec(stmt).first()


class UserProfileRepository(_BaseRepository):
    def get_by_user(self, user_uuid: str) -> Optional[models.UserProfile]:
        stmt = select(models.UserProfile).where(models.UserProfile.user_uuid == user_uuid)
        return self.session.exec(stmt).first()


class FamilyRepository(_BaseRepository):
    """Queries over families; deleted families are never returned as active."""

    def get_active(self, uuid: str) -> Optional[models.Family]:
        stmt = select(models.Family).where(
            models.Family.uuid == uuid,
            models.Family.status == models.FamilyStatus.ACTIVE,
        )
        return self.session.exec(stmt).first()

    def list_active_for_user(self, user_uuid: str) -> List[models.Family]:
        """Active families in which `user_uuid` is an active member."""
        stmt = (
            select(models.Family)
            .join(models.FamilyMember, models.FamilyMember.family_uuid == models.Family.uuid)
            .where(
                models.FamilyMember.user_uuid == user_uuid,
                models.FamilyMember.status == models.FamilyMemberStatus.ACTIVE,
                models.Family.status == models.FamilyStatus.ACTIVE,
            )
            .order_by(models.Family.created_at, models.Family.id)
        )
        return self.session.exec(stmt).all()


class FamilyMemberRepository(_BaseRepository):
    def get(self, family_uuid: str, user_uuid: str) -> Optional[models.FamilyMember]:
        """Membership row regardless of its status."""
        stmt = select(models.FamilyMember).where(
            models.FamilyMember.family_uuid == family_uuid,
            models.FamilyMember.user_uuid == user_uuid,
        )
        return self.session.exec(stmt).first()

    def get_active(self, family_uuid: str, user_uuid: str) -> Optional[models.FamilyMember]:
        member = self.get(family_uuid, user_uuid)
        if member is None or member.status != models.FamilyMemberStatus.ACTIVE:
            return None
        return member

    def list_active(self, family_uuid: str) -> List[models.FamilyMember]:
        stmt = select(models.FamilyMember).where(
            models.FamilyMember.family_uuid == family_uuid,
            models.FamilyMember.status == models.FamilyMemberStatus.ACTIVE,
        ).order_by(models.FamilyMember.joined_at, models.FamilyMember.id)
        return self.session.exec(stmt).all()

    def count_active(self, family_uuid: str) -> int:
        stmt = select(func.count(models.FamilyMember.id)).where(
            models.FamilyMember.family_uuid == family_uuid,
            models.FamilyMember.status == models.FamilyMemberStatus.ACTIVE,
        )
        return int(self.session.exec(stmt).one())

    def count_active_for_user(self, user_uuid: str) -> int:
        stmt = select(func.count(models.FamilyMember.id)).where(
            models.FamilyMember.user_uuid == user_uuid,
            models.FamilyMember.status == models.FamilyMemberStatus.ACTIVE,
        )
        return int(self.session.exec(stmt).one())


class CategoryRepository(_BaseRepository):
    def get_active(self, uuid: str) -> Optional[models.Category]:
        stmt = select(models.Category).where(
            models.Category.uuid == uuid,
            models.Category.status == models.CategoryStatus.ACTIVE,
        )
        return self.session.exec(stmt).first()

    def list_active_by_family(self, family_uuid: str) -> List[models.Category]:
        stmt = select(models.Category).where(
            models.Category.family_uuid == family_uuid,
            models.Category.status == models.CategoryStatus.ACTIVE,
        ).order_by(models.Category.created_at, models.Category.id)
        return self.session.exec(stmt).all()

    def exists_active_name(self, family_uuid: str, name: str, exclude_uuid: Optional[str] = None) -> bool:
        stmt = select(models.Category.id).where(
            models.Category.family_uuid == family_uuid,
            models.Category.name == name,
            models.Category.status == models.CategoryStatus.ACTIVE,
        )
        if exclude_uuid is not None:
            stmt = stmt.where(models.Category.uuid != exclude_uuid)
        return self.session.exec(stmt).first() is not None

    def create_many(self, categories: Iterable[models.Category]) -> List[models.Category]:
        items = list(categories)
        self.session.add_all(items)
        self.session.commit()
        for c in items:
            self.session.refresh(c)
        return items


class _LedgerRepository(_BaseRepository):
    """Shared queries for expenses and incomes, which have the same shape."""
    model = None
    active_status = None

    def get_in_family(self, family_uuid: str, uuid: str):
        """Active record `uuid` of `family_uuid`, or None."""
        stmt = select(self.model).where(
            self.model.uuid == uuid,
            self.model.family_uuid == family_uuid,
            self.model.status == self.active_status,
        )
        return self.session.exec(stmt).first()

    def _filtered(self, stmt, family_uuid: str, category_uuid: Optional[str],
                  start: Optional[datetime], end: Optional[datetime]):
        stmt = stmt.where(self.model.family_uuid == family_uuid, self.model.status == self.active_status)
        if category_uuid:
            stmt = stmt.where(self.model.category_uuid == category_uuid)
        if start is not None:
            stmt = stmt.where(self.model.date >= start)
        if end is not None:
            stmt = stmt.where(self.model.date <= end)
        return stmt

    def search(self, family_uuid: str, category_uuid: Optional[str] = None,
               start: Optional[datetime] = None, end: Optional[datetime] = None,
               offset: int = 0, limit: int = 20) -> Tuple[list, int]:
        """Return one page of matching records (newest first) and the total count."""
        count_stmt = self._filtered(select(func.count(self.model.id)), family_uuid, category_uuid, start, end)
        total = int(self.session.exec(count_stmt).one())
        stmt = self._filtered(select(self.model), family_uuid, category_uuid, start, end)
        stmt = stmt.order_by(self.model.date.desc(), self.model.id.desc()).offset(offset).limit(limit)
        return self.session.exec(stmt).all(), total

    def sum_between(self, family_uuid: str, start: datetime, end: datetime) -> Decimal:
        stmt = self._filtered(select(func.sum(self.model.amount)), family_uuid, None, start, end)
        return to_money(self.session.exec(stmt).one())

    def amounts_between(self, family_uuid: str, start: datetime, end: datetime) -> Sequence[Tuple[datetime, Decimal]]:
        stmt = self._filtered(select(self.model.date, self.model.amount), family_uuid, None, start, end)
        return self.session.exec(stmt).all()


class ExpenseRepository(_LedgerRepository):
    model = models.Expense
    active_status = models.ExpenseStatus.ACTIVE

    def sum_budget_countable(self, family_uuid: str, start: datetime, end: datetime) -> Decimal:
        """Sum of active expenses that count against the family budget.

        An expense counts when neither it nor its category is excluded
        from the budget. Expenses whose category row is missing count.
        """
        stmt = (
            select(func.sum(models.Expense.amount))
            .select_from(models.Expense)
            .join(models.Category, models.Category.uuid == models.Expense.category_uuid, isouter=True)
            .where(
                models.Expense.family_uuid == family_uuid,
                models.Expense.status == models.ExpenseStatus.ACTIVE,
                models.Expense.exclude_from_budget == False,  # noqa: E712
                models.Expense.date >= start,
                models.Expense.date <= end,
                or_(models.Category.id.is_(None), models.Category.exclude_from_budget == False),  # noqa: E712
            )
        )
        return to_money(self.session.exec(stmt).one())


class IncomeRepository(_LedgerRepository):
    model = models.Income
    active_status = models.IncomeStatus.ACTIVE


class InvitationRepository(_BaseRepository):
    def get_by_uuid(self, uuid: str) -> Optional[models.Invitation]:
        stmt = select(models.Invitation).where(models.Invitation.uuid == uuid)
        return self.session.exec(stmt).first()

    def get_by_token(self, token: str) -> Optional[models.Invitation]:
        stmt = select(models.Invitation).where(models.Invitation.token == token)
        return self.session.exec(stmt).first()

    def token_exists(self, token: str) -> bool:
        return self.get_by_token(token) is not None

    def list_valid_for_family(self, family_uuid: str, now: datetime) -> List[models.Invitation]:
        stmt = select(models.Invitation).where(
            models.Invitation.family_uuid == family_uuid,
            models.Invitation.status == models.InvitationStatus.PENDING,
            models.Invitation.expires_at > now,
        ).order_by(models.Invitation.created_at.desc(), models.Invitation.id.desc())
        return self.session.exec(stmt).all()

    def delete(self, invitation: models.Invitation) -> None:
        self.session.delete(invitation)
        self.session.commit()


class NotificationRepository(_BaseRepository):
    """Notifications visible to a user are theirs plus family-wide ones."""

    def _visible(self, stmt, family_uuid: str, user_uuid: str):
        return stmt.where(
            models.Notification.family_uuid == family_uuid,
            or_(models.Notification.user_uuid == user_uuid, models.Notification.user_uuid.is_(None)),
        )

    def get_by_uuid(self, uuid: str) -> Optional[models.Notification]:
        stmt = select(models.Notification).where(models.Notification.uuid == uuid)
        return self.session.exec(stmt).first()

    def list_for_user(self, family_uuid: str, user_uuid: str) -> List[models.Notification]:
        stmt = self._visible(select(models.Notification), family_uuid, user_uuid)
        stmt = stmt.order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        return self.session.exec(stmt).all()

    def count_unread(self, family_uuid: str, user_uuid: str) -> int:
        stmt = self._visible(select(func.count(models.Notification.id)), family_uuid, user_uuid)
        stmt = stmt.where(models.Notification.is_read == False)  # noqa: E712
        return int(self.session.exec(stmt).one())

    def mark_all_read(self, family_uuid: str, user_uuid: str) -> int:
        stmt = self._visible(select(models.Notification), family_uuid, user_uuid)
        unread = self.session.exec(stmt.where(models.Notification.is_read == False)).all()  # noqa: E712
        for n in unread:
            n.is_read = True
            self.session.add(n)
        self.session.commit()
        return len(unread)

    def exists_for_member(self, family_uuid: str, user_uuid: str,
                          notification_type: models.NotificationType, year_month: str) -> bool:
        stmt = select(models.Notification.id).where(
            models.Notification.family_uuid == family_uuid,
            models.Notification.user_uuid == user_uuid,
            models.Notification.type == notification_type,
            models.Notification.year_month == year_month,
        )
        return self.session.exec(stmt).first() is not None


class DashboardRepository(_BaseRepository):
    """Read-only aggregates for the dashboard endpoints."""

    def expense_totals_by_category(self, family_uuid: str, start: Optional[datetime] = None,
                                   end: Optional[datetime] = None,
                                   category_uuid: Optional[str] = None) -> List[Tuple[str, Decimal, int]]:
        """(category_uuid, total, count) for active expenses, largest total first."""
        total = func.sum(models.Expense.amount)
        stmt = select(models.Expense.category_uuid, total, func.count(models.Expense.id)).where(
            models.Expense.family_uuid == family_uuid,
            models.Expense.status == models.ExpenseStatus.ACTIVE,
        )
        if category_uuid:
            stmt = stmt.where(models.Expense.category_uuid == category_uuid)
        if start is not None:
            stmt = stmt.where(models.Expense.date >= start)
        if end is not None:
            stmt = stmt.where(models.Expense.date <= end)
        stmt = stmt.group_by(models.Expense.category_uuid).order_by(total.desc())
        return [(row[0], to_money(row[1]), int(row[2])) for row in self.session.exec(stmt).all()]
