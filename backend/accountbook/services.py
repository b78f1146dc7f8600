"""Business logic services used by HTTP controllers.

This module holds the service classes that coordinate repositories,
the category cache and domain events. Services validate input, enforce
family membership rules, execute domain logic and persist aggregates via
repositories. They raise `BusinessException` for every failure a client
can observe and return the response schemas defined in `schemas`.

Family access rules are concentrated in `FamilyValidationService`; all
other services call it before touching family-scoped data.
"""

import calendar
import logging
import re
import secrets
import string
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories, schemas
from .auth import REFRESH, token_provider
from .config import settings
from .database import engine
from .errors import BusinessException, ErrorCode
from .utils.category_cache import CategoryCache, CategorySnapshot
from .utils.events import EventPublisher, ExpenseCreated, ExpenseUpdated
from .utils.ids import parse_uuid
from .utils.timeutils import format_year_month, month_range, to_naive_utc

logger = logging.getLogger("accountbook.services")

category_cache = CategoryCache(
    max_size=settings.CATEGORY_CACHE_MAX_SIZE,
    ttl_seconds=settings.CATEGORY_CACHE_TTL_SECONDS,
)
event_publisher = EventPublisher()

DEFAULT_CATEGORIES = (
    ("식비", "#ef4444", "🍚"),
    ("카페", "#f59e0b", "☕"),
    ("간식", "#ec4899", "🍰"),
    ("생활비", "#10b981", "🏠"),
    ("교통비", "#3b82f6", "🚗"),
    ("쇼핑", "#8b5cf6", "🛍️"),
    ("의료", "#06b6d4", "💊"),
    ("문화생활", "#f43f5e", "🎬"),
    ("교육", "#14b8a6", "📚"),
    ("기타", "#6b7280", "📦"),
)
DEFAULT_CATEGORY_COLOR = "#6366f1"
COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")

UNKNOWN_CATEGORY = ("UNKNOWN", "미분류", "❓", "#999999")

TOKEN_ALPHABET = string.ascii_letters + string.digits
TOKEN_LENGTH = 32

MAX_PAGE_SIZE = 100
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def _user_info(user: models.User) -> schemas.UserInfo:
    return schemas.UserInfo(id=str(user.id), uuid=user.uuid, email=user.email, name=user.name, image=user.image)


def _category_out(c: CategorySnapshot) -> schemas.CategoryOut:
    return schemas.CategoryOut(
        uuid=c.uuid, family_uuid=c.family_uuid, name=c.name, color=c.color, icon=c.icon,
        exclude_from_budget=c.exclude_from_budget, created_at=c.created_at, updated_at=c.updated_at,
    )


def _category_info(c: Optional[CategorySnapshot]) -> Optional[schemas.CategoryInfo]:
    if c is None:
        return None
    return schemas.CategoryInfo(uuid=c.uuid, name=c.name, color=c.color, icon=c.icon)


def _validate_color(color: str) -> str:
    if not COLOR_PATTERN.match(color or ""):
        raise BusinessException.invalid_input("color", color, "must match #RRGGBB")
    return color


def _validate_page(page: int, size: int) -> None:
    if page < 0:
        raise BusinessException.invalid_input("page", page, "must be 0 or greater")
    if size < 1 or size > MAX_PAGE_SIZE:
        raise BusinessException.invalid_input("size", size, f"must be between 1 and {MAX_PAGE_SIZE}")


class AuthService:
    """OAuth-backed registration, email login and token refresh."""

    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, provider: str, provider_id: str, email: str,
                 name: Optional[str] = None, image: Optional[str] = None) -> schemas.AuthOut:
        """Create the account, or log in when the provider account exists."""
        existing = self.user_repo.get_by_provider(provider, provider_id)
        if existing is not None:
            self._ensure_active(existing)
            return self._auth_response(existing)
        user = models.User(provider=provider, provider_id=provider_id, email=email, name=name, image=image)
        user = self.user_repo.save(user)
        logger.info("user registered uuid=%s provider=%s", user.uuid, provider)
        return self._auth_response(user)

    def login(self, email: str) -> schemas.AuthOut:
        user = self.user_repo.get_by_email(email)
        if user is None:
            raise BusinessException(ErrorCode.USER_NOT_FOUND).add_parameter("email", email)
        self._ensure_active(user)
        return self._auth_response(user)

    def refresh(self, refresh_token: str) -> schemas.AuthOut:
        try:
            claims = token_provider.decode(refresh_token, expected_type=REFRESH)
        except BusinessException as exc:
            raise BusinessException(ErrorCode.INVALID_TOKEN, "Invalid refresh token").with_cause(exc)
        user = UserService(self.session).get_user(claims["sub"])
        self._ensure_active(user)
        return self._auth_response(user)

    def current_user(self, user: models.User) -> schemas.UserInfo:
        return _user_info(user)

    @staticmethod
    def _ensure_active(user: models.User) -> None:
        if user.status != models.UserStatus.ACTIVE:
            raise BusinessException(ErrorCode.USER_NOT_FOUND, "User was deleted").add_parameter("userUuid", user.uuid)

    @staticmethod
    def _auth_response(user: models.User) -> schemas.AuthOut:
        return schemas.AuthOut(
            access_token=token_provider.generate_access_token(user.uuid, user.email),
            refresh_token=token_provider.generate_refresh_token(user.uuid),
            token_type="Bearer",
            expires_in=token_provider.access_ttl_seconds,
            user=_user_info(user),
        )


class UserService:
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def get_user(self, user_uuid: str) -> models.User:
        user = self.user_repo.get_by_uuid(user_uuid)
        if user is None:
            raise BusinessException(ErrorCode.USER_NOT_FOUND).add_parameter("userUuid", user_uuid)
        return user


class UserProfileService:
    """Per-user preferences including the default family."""

    def __init__(self, session: Session):
        self.session = session
        self.profile_repo = repositories.UserProfileRepository(session)

    def get_or_create_profile(self, user_uuid: str) -> models.UserProfile:
        profile = self.profile_repo.get_by_user(user_uuid)
        if profile is None:
            profile = self.profile_repo.save(models.UserProfile(user_uuid=user_uuid))
        return profile

    def get_profile(self, user_uuid: str) -> schemas.ProfileOut:
        return schemas.ProfileOut.model_validate(self.get_or_create_profile(user_uuid))

    def update_profile(self, user_uuid: str, timezone: Optional[str] = None,
                       language: Optional[str] = None, currency: Optional[str] = None) -> schemas.ProfileOut:
        """Change only the supplied fields; `timezone` must be an IANA zone name."""
        profile = self.get_or_create_profile(user_uuid)
        if timezone is not None:
            try:
                ZoneInfo(timezone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise BusinessException.invalid_input("timezone", timezone, "unknown time zone").with_cause(exc)
            profile.timezone = timezone
        if language is not None:
            profile.language = language
        if currency is not None:
            profile.currency = currency
        profile.updated_at = models.utcnow()
        profile = self.profile_repo.save(profile)
        return schemas.ProfileOut.model_validate(profile)

    def set_default_family(self, user_uuid: str, family_uuid: str) -> str:
        family_uuid = parse_uuid(family_uuid, "familyUuid")
        FamilyValidationService(self.session).validate_family_access(user_uuid, family_uuid)
        profile = self.get_or_create_profile(user_uuid)
        profile.default_family_uuid = family_uuid
        profile.updated_at = models.utcnow()
        self.profile_repo.save(profile)
        return family_uuid

    def get_default_family(self, user_uuid: str) -> str:
        profile = self.profile_repo.get_by_user(user_uuid)
        if profile is None or not profile.default_family_uuid:
            return ""
        return profile.default_family_uuid

    def clear_default_family(self, user_uuid: str, family_uuid: str) -> None:
        profile = self.profile_repo.get_by_user(user_uuid)
        if profile is not None and profile.default_family_uuid == family_uuid:
            profile.default_family_uuid = None
            profile.updated_at = models.utcnow()
            self.profile_repo.save(profile)


class FamilyValidationService:
    """Membership and ownership checks shared by every family-scoped service."""

    def __init__(self, session: Session):
        self.session = session
        self.family_repo = repositories.FamilyRepository(session)
        self.member_repo = repositories.FamilyMemberRepository(session)

    def validate_family_access(self, user_uuid: str, family_uuid: str) -> models.FamilyMember:
        member = self.member_repo.get_active(family_uuid, user_uuid)
        if member is None:
            raise (BusinessException(ErrorCode.NOT_FAMILY_MEMBER)
                   .add_parameter("userUuid", user_uuid)
                   .add_parameter("familyUuid", family_uuid))
        return member

    def validate_family_owner(self, user_uuid: str, family_uuid: str) -> models.FamilyMember:
        member = self.validate_family_access(user_uuid, family_uuid)
        if member.role != models.MemberRole.OWNER:
            raise (BusinessException(ErrorCode.FORBIDDEN, "Only the family owner can do this")
                   .add_parameter("userUuid", user_uuid)
                   .add_parameter("familyUuid", family_uuid)
                   .add_parameter("role", member.role.value))
        return member

    def validate_and_get_family(self, user_uuid: str, family_uuid: str) -> models.Family:
        family = self.family_repo.get_active(family_uuid)
        if family is None:
            raise BusinessException(ErrorCode.FAMILY_NOT_FOUND).add_parameter("familyUuid", family_uuid)
        self.validate_family_access(user_uuid, family_uuid)
        return family


class FamilyService:
    def __init__(self, session: Session):
        self.session = session
        self.family_repo = repositories.FamilyRepository(session)
        self.member_repo = repositories.FamilyMemberRepository(session)
        self.validation = FamilyValidationService(session)

    def to_response(self, family: models.Family, member_count: Optional[int] = None) -> schemas.FamilyOut:
        if member_count is None:
            member_count = self.member_repo.count_active(family.uuid)
        return schemas.FamilyOut(
            uuid=family.uuid, name=family.name, monthly_budget=repositories.to_money(family.monthly_budget),
            member_count=member_count, created_at=family.created_at, updated_at=family.updated_at,
        )

    def create_family(self, user_uuid: str, name: str, monthly_budget: Decimal = Decimal("0")) -> schemas.FamilyOut:
        """Create a family owned by the caller, seeded with the default categories.

        The new family becomes the caller's default family when it is
        their only active membership.
        """
        family = self.family_repo.save(models.Family(name=name.strip(), monthly_budget=monthly_budget))
        self.member_repo.save(models.FamilyMember(
            family_uuid=family.uuid, user_uuid=user_uuid, role=models.MemberRole.OWNER,
        ))
        CategoryService(self.session).create_default_categories(family.uuid)
        if self.member_repo.count_active_for_user(user_uuid) == 1:
            profile_service = UserProfileService(self.session)
            profile = profile_service.get_or_create_profile(user_uuid)
            if not profile.default_family_uuid:
                profile.default_family_uuid = family.uuid
                profile.updated_at = models.utcnow()
                profile_service.profile_repo.save(profile)
        logger.info("family created uuid=%s owner=%s", family.uuid, user_uuid)
        return self.to_response(family, member_count=1)

    def get_user_families(self, user_uuid: str) -> List[schemas.FamilyOut]:
        return [self.to_response(f) for f in self.family_repo.list_active_for_user(user_uuid)]

    def get_family(self, user_uuid: str, family_uuid: str) -> schemas.FamilyOut:
        family = self.validation.validate_and_get_family(user_uuid, family_uuid)
        return self.to_response(family)

    def update_family(self, user_uuid: str, family_uuid: str, name: str,
                      monthly_budget: Optional[Decimal] = None) -> schemas.FamilyOut:
        family = self.validation.validate_and_get_family(user_uuid, family_uuid)
        self.validation.validate_family_owner(user_uuid, family_uuid)
        family.name = name.strip()
        if monthly_budget is not None:
            family.monthly_budget = monthly_budget
        family.updated_at = models.utcnow()
        family = self.family_repo.save(family)
        return self.to_response(family)

    def delete_family(self, user_uuid: str, family_uuid: str) -> None:
        family = self.validation.validate_and_get_family(user_uuid, family_uuid)
        self.validation.validate_family_owner(user_uuid, family_uuid)
        family.status = models.FamilyStatus.DELETED
        family.updated_at = models.utcnow()
        self.family_repo.save(family)
        category_cache.evict(family_uuid)
        logger.info("family deleted uuid=%s by=%s", family_uuid, user_uuid)

    def leave_family(self, user_uuid: str, family_uuid: str) -> None:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        member = self.validation.validate_family_access(user_uuid, family_uuid)
        if member.role == models.MemberRole.OWNER:
            raise (BusinessException(ErrorCode.CANNOT_LEAVE_FAMILY_AS_OWNER)
                   .add_parameter("userUuid", user_uuid)
                   .add_parameter("familyUuid", family_uuid))
        member.status = models.FamilyMemberStatus.LEFT
        self.member_repo.save(member)
        UserProfileService(self.session).clear_default_family(user_uuid, family_uuid)
        logger.info("member left family=%s user=%s", family_uuid, user_uuid)


class CategoryService:
    """Category CRUD backed by the per-family category cache."""

    def __init__(self, session: Session):
        self.session = session
        self.category_repo = repositories.CategoryRepository(session)
        self.validation = FamilyValidationService(session)

    def create_default_categories(self, family_uuid: str) -> List[models.Category]:
        created = self.category_repo.create_many(
            models.Category(family_uuid=family_uuid, name=name, color=color, icon=icon)
            for name, color, icon in DEFAULT_CATEGORIES
        )
        category_cache.evict(family_uuid)
        return created

    def load_family_categories(self, family_uuid: str) -> Tuple[CategorySnapshot, ...]:
        """Active categories of a family, read through the cache."""
        cached = category_cache.get(family_uuid)
        if cached is not None:
            return cached
        rows = self.category_repo.list_active_by_family(family_uuid)
        return category_cache.put(family_uuid, (CategorySnapshot.from_model(c) for c in rows))

    def categories_by_uuid(self, family_uuid: str) -> Dict[str, CategorySnapshot]:
        return {c.uuid: c for c in self.load_family_categories(family_uuid)}

    def find_by_uuid_cached(self, family_uuid: str, category_uuid: str) -> CategorySnapshot:
        for c in self.load_family_categories(family_uuid):
            if c.uuid == category_uuid:
                return c
        raise (BusinessException(ErrorCode.CATEGORY_NOT_FOUND)
               .add_parameter("categoryUuid", category_uuid)
               .add_parameter("familyUuid", family_uuid))

    def create_category(self, user_uuid: str, family_uuid: str, name: str, color: Optional[str] = None,
                        icon: Optional[str] = None, exclude_from_budget: bool = False) -> schemas.CategoryOut:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        name = name.strip()
        color = _validate_color(color) if color is not None else DEFAULT_CATEGORY_COLOR
        if self.category_repo.exists_active_name(family_uuid, name):
            raise (BusinessException(ErrorCode.CATEGORY_ALREADY_EXISTS)
                   .add_parameter("familyUuid", family_uuid)
                   .add_parameter("name", name))
        category = self.category_repo.save(models.Category(
            family_uuid=family_uuid, name=name, color=color, icon=icon, exclude_from_budget=exclude_from_budget,
        ))
        category_cache.evict(family_uuid)
        return _category_out(CategorySnapshot.from_model(category))

    def get_family_categories(self, user_uuid: str, family_uuid: str) -> List[schemas.CategoryOut]:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        return [_category_out(c) for c in self.load_family_categories(family_uuid)]

    def _get_for_member(self, user_uuid: str, category_uuid: str) -> models.Category:
        category = self.category_repo.get_active(category_uuid)
        if category is None:
            raise BusinessException(ErrorCode.CATEGORY_NOT_FOUND).add_parameter("categoryUuid", category_uuid)
        self.validation.validate_family_access(user_uuid, category.family_uuid)
        return category

    def get_category(self, user_uuid: str, category_uuid: str) -> schemas.CategoryOut:
        return _category_out(CategorySnapshot.from_model(self._get_for_member(user_uuid, category_uuid)))

    def update_category(self, user_uuid: str, category_uuid: str, name: Optional[str] = None,
                        color: Optional[str] = None, icon: Optional[str] = None,
                        exclude_from_budget: Optional[bool] = None) -> schemas.CategoryOut:
        category = self._get_for_member(user_uuid, category_uuid)
        if name is not None and name.strip() != category.name:
            name = name.strip()
            if self.category_repo.exists_active_name(category.family_uuid, name, exclude_uuid=category.uuid):
                raise (BusinessException(ErrorCode.CATEGORY_ALREADY_EXISTS)
                       .add_parameter("familyUuid", category.family_uuid)
                       .add_parameter("name", name))
            category.name = name
        if color is not None:
            category.color = _validate_color(color)
        if icon is not None:
            category.icon = icon
        if exclude_from_budget is not None:
            category.exclude_from_budget = exclude_from_budget
        category.updated_at = models.utcnow()
        category = self.category_repo.save(category)
        category_cache.evict(category.family_uuid)
        return _category_out(CategorySnapshot.from_model(category))

    def delete_category(self, user_uuid: str, category_uuid: str) -> None:
        category = self._get_for_member(user_uuid, category_uuid)
        category.status = models.CategoryStatus.DELETED
        category.updated_at = models.utcnow()
        self.category_repo.save(category)
        category_cache.evict(category.family_uuid)
        logger.info("category deleted uuid=%s family=%s by=%s", category.uuid, category.family_uuid, user_uuid)


class _LedgerService:
    """Common flow for expenses and incomes: access, category, paging."""

    not_found = None
    invalid_amount = None
    entity_label = None

    def __init__(self, session: Session):
        self.session = session
        self.validation = FamilyValidationService(session)
        self.categories = CategoryService(session)

    def _check_amount(self, amount: Decimal) -> Decimal:
        if amount is None or amount <= 0:
            raise BusinessException(self.invalid_amount).add_parameter("amount", str(amount))
        return amount

    def _raise_not_found(self, family_uuid: str, uuid: str):
        raise (BusinessException(self.not_found)
               .add_parameter(f"{self.entity_label}Uuid", uuid)
               .add_parameter("familyUuid", family_uuid))

    def _get_active(self, family_uuid: str, uuid: str):
        record = self.repo.get_in_family(family_uuid, parse_uuid(uuid, f"{self.entity_label}Uuid"))
        if record is None:
            self._raise_not_found(family_uuid, uuid)
        return record

    def _search(self, user_uuid: str, family_uuid: str, page: int, size: int, category_uuid: Optional[str],
                start: Optional[datetime], end: Optional[datetime]) -> schemas.PageOut:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        _validate_page(page, size)
        if category_uuid:
            category_uuid = parse_uuid(category_uuid, "categoryUuid")
        rows, total = self.repo.search(family_uuid, category_uuid, start, end, offset=page * size, limit=size)
        lookup = self.categories.categories_by_uuid(family_uuid)
        return schemas.PageOut.build([self._out(r, lookup) for r in rows], total, page, size)


class ExpenseService(_LedgerService):
    not_found = ErrorCode.EXPENSE_NOT_FOUND
    invalid_amount = ErrorCode.INVALID_EXPENSE_AMOUNT
    entity_label = "expense"

    def __init__(self, session: Session, publisher: EventPublisher = None):
        super().__init__(session)
        self.repo = repositories.ExpenseRepository(session)
        self.publisher = publisher or event_publisher

    @staticmethod
    def _out(expense: models.Expense, lookup: Dict[str, CategorySnapshot]) -> schemas.ExpenseOut:
        return schemas.ExpenseOut(
            uuid=expense.uuid, family_uuid=expense.family_uuid, category_uuid=expense.category_uuid,
            category=_category_info(lookup.get(expense.category_uuid)), user_uuid=expense.user_uuid,
            amount=repositories.to_money(expense.amount), description=expense.description, date=expense.date,
            exclude_from_budget=expense.exclude_from_budget,
            created_at=expense.created_at, updated_at=expense.updated_at,
        )

    def create_expense(self, user_uuid: str, family_uuid: str, category_uuid: str, amount: Decimal,
                       description: Optional[str] = None, date: Optional[datetime] = None,
                       exclude_from_budget: bool = False) -> schemas.ExpenseOut:
        """Record an expense and notify budget listeners once it is committed."""
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        self._check_amount(amount)
        category = self.categories.find_by_uuid_cached(family_uuid, parse_uuid(category_uuid, "categoryUuid"))
        expense = self.repo.save(models.Expense(
            family_uuid=family_uuid, category_uuid=category.uuid, user_uuid=user_uuid, amount=amount,
            description=description, date=to_naive_utc(date) if date else models.utcnow(),
            exclude_from_budget=exclude_from_budget,
        ))
        self.publisher.publish(ExpenseCreated(
            expense_uuid=expense.uuid, family_uuid=family_uuid, user_uuid=user_uuid,
            amount=repositories.to_money(expense.amount), date=expense.date,
        ))
        return self._out(expense, {category.uuid: category})

    def get_family_expenses(self, user_uuid: str, family_uuid: str, page: int = 0, size: int = 20,
                            category_uuid: Optional[str] = None, start: Optional[datetime] = None,
                            end: Optional[datetime] = None) -> schemas.PageOut:
        return self._search(user_uuid, family_uuid, page, size, category_uuid, start, end)

    def get_expense(self, user_uuid: str, family_uuid: str, expense_uuid: str) -> schemas.ExpenseOut:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        expense = self._get_active(family_uuid, expense_uuid)
        return self._out(expense, self.categories.categories_by_uuid(family_uuid))

    def update_expense(self, user_uuid: str, family_uuid: str, expense_uuid: str,
                       category_uuid: Optional[str] = None, amount: Optional[Decimal] = None,
                       description: Optional[str] = None, date: Optional[datetime] = None,
                       exclude_from_budget: Optional[bool] = None) -> schemas.ExpenseOut:
        """Apply the supplied fields; a changed amount re-triggers budget checks."""
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        expense = self._get_active(family_uuid, expense_uuid)
        old_amount = repositories.to_money(expense.amount)
        if category_uuid is not None:
            expense.category_uuid = self.categories.find_by_uuid_cached(
                family_uuid, parse_uuid(category_uuid, "categoryUuid")).uuid
        if amount is not None:
            expense.amount = self._check_amount(amount)
        if description is not None:
            expense.description = description
        if date is not None:
            expense.date = to_naive_utc(date)
        if exclude_from_budget is not None:
            expense.exclude_from_budget = exclude_from_budget
        expense.updated_at = models.utcnow()
        expense = self.repo.save(expense)
        new_amount = repositories.to_money(expense.amount)
        if new_amount != old_amount:
            self.publisher.publish(ExpenseUpdated(
                expense_uuid=expense.uuid, family_uuid=family_uuid, user_uuid=user_uuid,
                old_amount=old_amount, new_amount=new_amount, date=expense.date,
            ))
        return self._out(expense, self.categories.categories_by_uuid(family_uuid))

    def delete_expense(self, user_uuid: str, family_uuid: str, expense_uuid: str) -> None:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        expense = self._get_active(family_uuid, expense_uuid)
        expense.status = models.ExpenseStatus.DELETED
        expense.updated_at = models.utcnow()
        self.repo.save(expense)


class IncomeService(_LedgerService):
    not_found = ErrorCode.INCOME_NOT_FOUND
    invalid_amount = ErrorCode.INVALID_INCOME_AMOUNT
    entity_label = "income"

    def __init__(self, session: Session):
        super().__init__(session)
        self.repo = repositories.IncomeRepository(session)

    @staticmethod
    def _out(income: models.Income, lookup: Dict[str, CategorySnapshot]) -> schemas.IncomeOut:
        return schemas.IncomeOut(
            uuid=income.uuid, family_uuid=income.family_uuid, category_uuid=income.category_uuid,
            category=_category_info(lookup.get(income.category_uuid)), user_uuid=income.user_uuid,
            amount=repositories.to_money(income.amount), description=income.description, date=income.date,
            created_at=income.created_at, updated_at=income.updated_at,
        )

    def create_income(self, user_uuid: str, family_uuid: str, category_uuid: str, amount: Decimal,
                      description: Optional[str] = None, date: Optional[datetime] = None) -> schemas.IncomeOut:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        self._check_amount(amount)
        category = self.categories.find_by_uuid_cached(family_uuid, parse_uuid(category_uuid, "categoryUuid"))
        income = self.repo.save(models.Income(
            family_uuid=family_uuid, category_uuid=category.uuid, user_uuid=user_uuid, amount=amount,
            description=description, date=to_naive_utc(date) if date else models.utcnow(),
        ))
        return self._out(income, {category.uuid: category})

    def get_family_incomes(self, user_uuid: str, family_uuid: str, page: int = 0, size: int = 20,
                           category_uuid: Optional[str] = None, start: Optional[datetime] = None,
                           end: Optional[datetime] = None) -> schemas.PageOut:
        return self._search(user_uuid, family_uuid, page, size, category_uuid, start, end)

    def get_income(self, user_uuid: str, family_uuid: str, income_uuid: str) -> schemas.IncomeOut:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        income = self._get_active(family_uuid, income_uuid)
        return self._out(income, self.categories.categories_by_uuid(family_uuid))

    def update_income(self, user_uuid: str, family_uuid: str, income_uuid: str,
                      category_uuid: Optional[str] = None, amount: Optional[Decimal] = None,
                      description: Optional[str] = None, date: Optional[datetime] = None) -> schemas.IncomeOut:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        income = self._get_active(family_uuid, income_uuid)
        if category_uuid is not None:
            income.category_uuid = self.categories.find_by_uuid_cached(
                family_uuid, parse_uuid(category_uuid, "categoryUuid")).uuid
        if amount is not None:
            income.amount = self._check_amount(amount)
        if description is not None:
            income.description = description
        if date is not None:
            income.date = to_naive_utc(date)
        income.updated_at = models.utcnow()
        income = self.repo.save(income)
        return self._out(income, self.categories.categories_by_uuid(family_uuid))

    def delete_income(self, user_uuid: str, family_uuid: str, income_uuid: str) -> None:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        income = self._get_active(family_uuid, income_uuid)
        income.status = models.IncomeStatus.DELETED
        income.updated_at = models.utcnow()
        self.repo.save(income)


class InvitationService:
    """Invitation tokens that let other users join a family."""

    def __init__(self, session: Session):
        self.session = session
        self.invitation_repo = repositories.InvitationRepository(session)
        self.family_repo = repositories.FamilyRepository(session)
        self.member_repo = repositories.FamilyMemberRepository(session)
        self.validation = FamilyValidationService(session)

    @staticmethod
    def _out(invitation: models.Invitation, family_name: Optional[str]) -> schemas.InvitationOut:
        return schemas.InvitationOut(
            uuid=invitation.uuid, family_uuid=invitation.family_uuid, family_name=family_name,
            token=invitation.token, status=invitation.status.value, expires_at=invitation.expires_at,
            created_at=invitation.created_at, is_expired=invitation.is_expired(),
            is_used=invitation.status == models.InvitationStatus.ACCEPTED,
        )

    def _generate_token(self) -> str:
        while True:
            token = "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(TOKEN_LENGTH))
            if not self.invitation_repo.token_exists(token):
                return token

    def _valid_by_token(self, token: str) -> models.Invitation:
        invitation = self.invitation_repo.get_by_token(token)
        if invitation is None or not invitation.is_valid():
            raise BusinessException(ErrorCode.INVALID_INVITATION_TOKEN).add_parameter("token", token)
        return invitation

    def create_invitation(self, user_uuid: str, family_uuid: str,
                          expiration_hours: Optional[int] = None) -> schemas.InvitationOut:
        family = self.validation.validate_and_get_family(user_uuid, family_uuid)
        hours = settings.INVITATION_DEFAULT_EXPIRATION_HOURS if expiration_hours is None else expiration_hours
        if hours < 1:
            raise BusinessException.invalid_input("expirationHours", hours, "must be at least 1")
        invitation = self.invitation_repo.save(models.Invitation(
            family_uuid=family_uuid, inviter_user_uuid=user_uuid, token=self._generate_token(),
            expires_at=models.utcnow() + timedelta(hours=hours),
        ))
        logger.info("invitation created uuid=%s family=%s by=%s", invitation.uuid, family_uuid, user_uuid)
        return self._out(invitation, family.name)

    def get_family_invitations(self, user_uuid: str, family_uuid: str) -> List[schemas.InvitationOut]:
        family = self.validation.validate_and_get_family(user_uuid, family_uuid)
        rows = self.invitation_repo.list_valid_for_family(family_uuid, models.utcnow())
        return [self._out(i, family.name) for i in rows]

    def get_invitation_by_token(self, token: str) -> schemas.InvitationOut:
        invitation = self._valid_by_token(token)
        family = self.family_repo.get_active(invitation.family_uuid)
        if family is None:
            raise BusinessException(ErrorCode.FAMILY_NOT_FOUND).add_parameter("familyUuid", invitation.family_uuid)
        return self._out(invitation, family.name)

    def accept_invitation(self, user_uuid: str, token: str) -> schemas.FamilyOut:
        """Join the invitation's family as a regular member."""
        invitation = self._valid_by_token(token)
        family = self.family_repo.get_active(invitation.family_uuid)
        if family is None:
            raise BusinessException(ErrorCode.FAMILY_NOT_FOUND).add_parameter("familyUuid", invitation.family_uuid)
        member = self.member_repo.get(family.uuid, user_uuid)
        if member is not None and member.status == models.FamilyMemberStatus.ACTIVE:
            raise (BusinessException(ErrorCode.ALREADY_FAMILY_MEMBER)
                   .add_parameter("userUuid", user_uuid)
                   .add_parameter("familyUuid", family.uuid))
        if member is None:
            member = models.FamilyMember(family_uuid=family.uuid, user_uuid=user_uuid, role=models.MemberRole.MEMBER)
        else:
            # a row for a member who left is reused; (family, user) is unique
            member.status = models.FamilyMemberStatus.ACTIVE
            member.role = models.MemberRole.MEMBER
            member.joined_at = models.utcnow()
        self.member_repo.save(member)
        invitation.status = models.InvitationStatus.ACCEPTED
        self.invitation_repo.save(invitation)

        profile_service = UserProfileService(self.session)
        profile = profile_service.get_or_create_profile(user_uuid)
        if not profile.default_family_uuid:
            profile.default_family_uuid = family.uuid
            profile.updated_at = models.utcnow()
            profile_service.profile_repo.save(profile)
        logger.info("invitation accepted uuid=%s family=%s user=%s", invitation.uuid, family.uuid, user_uuid)
        return FamilyService(self.session).to_response(family)

    def delete_invitation(self, user_uuid: str, invitation_uuid: str) -> None:
        invitation_uuid = parse_uuid(invitation_uuid, "invitationUuid")
        invitation = self.invitation_repo.get_by_uuid(invitation_uuid)
        if invitation is None:
            raise BusinessException(ErrorCode.INVITATION_NOT_FOUND).add_parameter("invitationUuid", invitation_uuid)
        if invitation.inviter_user_uuid != user_uuid:
            self.validation.validate_family_owner(user_uuid, invitation.family_uuid)
        self.invitation_repo.delete(invitation)
        logger.info("invitation deleted uuid=%s by=%s", invitation_uuid, user_uuid)


class NotificationService:
    def __init__(self, session: Session):
        self.session = session
        self.notification_repo = repositories.NotificationRepository(session)
        self.validation = FamilyValidationService(session)

    @staticmethod
    def _out(n: models.Notification) -> schemas.NotificationOut:
        return schemas.NotificationOut(
            uuid=n.uuid, family_uuid=n.family_uuid, user_uuid=n.user_uuid, type=n.type.value, title=n.title,
            message=n.message, reference_uuid=n.reference_uuid, reference_type=n.reference_type,
            year_month=n.year_month, is_read=n.is_read, created_at=n.created_at,
        )

    def get_family_notifications(self, user_uuid: str, family_uuid: str) -> schemas.NotificationListOut:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        rows = self.notification_repo.list_for_user(family_uuid, user_uuid)
        return schemas.NotificationListOut(
            notifications=[self._out(n) for n in rows],
            unread_count=sum(1 for n in rows if not n.is_read),
            total_count=len(rows),
        )

    def _get_visible(self, user_uuid: str, notification_uuid: str) -> models.Notification:
        notification_uuid = parse_uuid(notification_uuid, "notificationUuid")
        notification = self.notification_repo.get_by_uuid(notification_uuid)
        if notification is None or notification.user_uuid not in (None, user_uuid):
            raise BusinessException(ErrorCode.NOTIFICATION_NOT_FOUND).add_parameter("notificationUuid", notification_uuid)
        self.validation.validate_family_access(user_uuid, notification.family_uuid)
        return notification

    def get_notification(self, user_uuid: str, notification_uuid: str) -> schemas.NotificationOut:
        return self._out(self._get_visible(user_uuid, notification_uuid))

    def mark_as_read(self, user_uuid: str, notification_uuid: str) -> schemas.NotificationOut:
        notification = self._get_visible(user_uuid, notification_uuid)
        if not notification.is_read:
            notification.is_read = True
            notification = self.notification_repo.save(notification)
        return self._out(notification)

    def mark_all_as_read(self, user_uuid: str, family_uuid: str) -> int:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        return self.notification_repo.mark_all_read(family_uuid, user_uuid)

    def get_unread_count(self, user_uuid: str, family_uuid: str) -> int:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        return self.notification_repo.count_unread(family_uuid, user_uuid)


def budget_percentage(total: Decimal, budget: Decimal) -> Decimal:
    """Share of `budget` spent, in percent with two decimals."""
    if budget == 0:
        return Decimal("0.00")
    ratio = (total / budget).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
    return (ratio * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def alert_type_for(percentage: Decimal) -> Optional[models.NotificationType]:
    if percentage > 100:
        return models.NotificationType.BUDGET_100_EXCEEDED
    if percentage > 80:
        return models.NotificationType.BUDGET_80_EXCEEDED
    if percentage > 50:
        return models.NotificationType.BUDGET_50_EXCEEDED
    return None


def _won(amount: Decimal) -> str:
    return f"{int(amount):,}"


def budget_alert_message(family_name: str, alert_type: models.NotificationType,
                         budget: Decimal, spent: Decimal, percentage: Decimal) -> str:
    pct = percentage.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    if alert_type == models.NotificationType.BUDGET_50_EXCEEDED:
        return (f"{family_name}의 이번 달 예산이 50%를 초과했습니다. "
                f"현재 {_won(budget)}원 중 {_won(spent)}원({pct}%)을 사용했습니다.")
    if alert_type == models.NotificationType.BUDGET_80_EXCEEDED:
        return (f"{family_name}의 이번 달 예산이 80%를 초과했습니다. "
                f"현재 {_won(budget)}원 중 {_won(spent)}원({pct}%)을 사용했습니다. 예산 초과에 주의하세요!")
    return (f"{family_name}의 이번 달 예산을 초과했습니다! "
            f"예산 {_won(budget)}원 중 {_won(spent)}원({pct}%)을 사용했습니다.")


class BudgetAlertService:
    """Creates one budget notification per member, type and month."""

    def __init__(self, session: Session):
        self.session = session
        self.family_repo = repositories.FamilyRepository(session)
        self.expense_repo = repositories.ExpenseRepository(session)
        self.member_repo = repositories.FamilyMemberRepository(session)
        self.notification_repo = repositories.NotificationRepository(session)

    def check_and_create_budget_alert(self, family_uuid: str, when: datetime) -> List[models.Notification]:
        family = self.family_repo.get_active(family_uuid)
        if family is None:
            logger.debug("budget check skipped: family %s missing or inactive", family_uuid)
            return []
        budget = repositories.to_money(family.monthly_budget)
        if budget == 0:
            logger.debug("budget check skipped: no budget for family %s", family_uuid)
            return []

        start, end = month_range(when.year, when.month)
        total = self.expense_repo.sum_budget_countable(family_uuid, start, end)
        percentage = budget_percentage(total, budget)
        year_month = format_year_month(when)
        logger.info("budget check family=%s month=%s expense=%s budget=%s percentage=%s%%",
                    family_uuid, year_month, total, budget, percentage)

        alert_type = alert_type_for(percentage)
        if alert_type is None:
            return []

        created = []
        family_name = family.name
        member_uuids = [m.user_uuid for m in self.member_repo.list_active(family_uuid)]
        for user_uuid in member_uuids:
            if self.notification_repo.exists_for_member(family_uuid, user_uuid, alert_type, year_month):
                continue
            notification = models.Notification(
                family_uuid=family_uuid,
                user_uuid=user_uuid,
                type=alert_type,
                title=alert_type.display_name,
                message=budget_alert_message(family_name, alert_type, budget, total, percentage),
                reference_type="BUDGET",
                year_month=year_month,
                is_read=False,
            )
            try:
                created.append(self.notification_repo.save(notification))
            except IntegrityError:
                # a concurrent check for the same month inserted it first
                self.session.rollback()
                logger.info("budget alert already present user=%s family=%s type=%s month=%s",
                            user_uuid, family_uuid, alert_type.value, year_month)
                continue
            logger.info("budget alert created user=%s family=%s type=%s percentage=%s%%",
                        user_uuid, family_uuid, alert_type.value, percentage)
        return created


class DashboardService:
    """Read-only statistics for the family dashboard."""

    def __init__(self, session: Session):
        self.session = session
        self.validation = FamilyValidationService(session)
        self.categories = CategoryService(session)
        self.dashboard_repo = repositories.DashboardRepository(session)
        self.expense_repo = repositories.ExpenseRepository(session)
        self.income_repo = repositories.IncomeRepository(session)
        self.member_repo = repositories.FamilyMemberRepository(session)

    def get_category_expense_summary(self, user_uuid: str, family_uuid: str, start: Optional[datetime] = None,
                                     end: Optional[datetime] = None,
                                     category_uuid: Optional[str] = None) -> schemas.CategorySummaryOut:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        if category_uuid:
            category_uuid = parse_uuid(category_uuid, "categoryUuid")
        rows = self.dashboard_repo.expense_totals_by_category(family_uuid, start, end, category_uuid)
        total = sum((amount for _, amount, _ in rows), Decimal("0.00"))
        lookup = self.categories.categories_by_uuid(family_uuid)

        stats = []
        for cat_uuid, amount, count in rows:
            category = lookup.get(cat_uuid)
            if category is None:
                uuid_, name, icon, color = UNKNOWN_CATEGORY
            else:
                uuid_, name, icon, color = category.uuid, category.name, category.icon or "", category.color
            if total > 0:
                percentage = (amount * HUNDRED / total).quantize(CENT, rounding=ROUND_HALF_UP)
            else:
                percentage = Decimal("0.00")
            stats.append(schemas.CategoryExpenseStat(
                category_uuid=uuid_, category_name=name, category_icon=icon, category_color=color,
                total_amount=amount, count=count, percentage=percentage,
            ))
        return schemas.CategorySummaryOut(family_uuid=family_uuid, total_expense=total, category_stats=stats)

    def get_monthly_stats(self, user_uuid: str, family_uuid: str, year: int, month: int) -> schemas.MonthlyStatsOut:
        family = self.validation.validate_and_get_family(user_uuid, family_uuid)
        start, end = month_range(year, month)
        expense = self.expense_repo.sum_budget_countable(family_uuid, start, end)
        income = self.income_repo.sum_between(family_uuid, start, end)
        budget = repositories.to_money(family.monthly_budget)
        return schemas.MonthlyStatsOut(
            monthly_expense=expense,
            monthly_income=income,
            budget=budget,
            remaining_budget=budget - expense,
            family_members=self.member_repo.count_active(family_uuid),
            year=year,
            month=month,
        )

    def get_daily_stats(self, user_uuid: str, family_uuid: str, year: int, month: int) -> schemas.DailyStatsOut:
        self.validation.validate_and_get_family(user_uuid, family_uuid)
        start, end = month_range(year, month)
        days = calendar.monthrange(year, month)[1]
        expenses = {day: Decimal("0.00") for day in range(1, days + 1)}
        incomes = dict(expenses)
        for when, amount in self.expense_repo.amounts_between(family_uuid, start, end):
            expenses[when.day] += repositories.to_money(amount)
        for when, amount in self.income_repo.amounts_between(family_uuid, start, end):
            incomes[when.day] += repositories.to_money(amount)
        return schemas.DailyStatsOut(
            year=year,
            month=month,
            daily_stats=[
                schemas.DailyStat(date=date(year, month, day), income=incomes[day], expense=expenses[day])
                for day in range(1, days + 1)
            ],
            total_income=sum(incomes.values(), Decimal("0.00")),
            total_expense=sum(expenses.values(), Decimal("0.00")),
        )


def _on_expense_event(event) -> None:
    """Budget-alert listener; runs on a publisher thread with its own session."""
    with Session(engine) as session:
        BudgetAlertService(session).check_and_create_budget_alert(event.family_uuid, event.date)


def register_event_listeners(publisher: EventPublisher = None) -> None:
    publisher = publisher or event_publisher
    publisher.subscribe(ExpenseCreated, _on_expense_event)
    publisher.subscribe(ExpenseUpdated, _on_expense_event)
