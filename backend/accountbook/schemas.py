"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. JSON keys are camelCase; Python code uses
the snake_case attribute names. Monetary values are `Decimal` in Python
and plain numbers in JSON.
"""

from datetime import date as Date, datetime
from decimal import Decimal
from typing import Annotated, Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from .models import utcnow

JsonNumber = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
EmailStr = Annotated[str, Field(max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")]

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------- requests

class RegisterIn(CamelModel):
    """OAuth sign-in payload; an existing provider account is logged in."""
    provider: str = Field(min_length=1, max_length=50)
    provider_id: str = Field(min_length=1, max_length=255)
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=255)
    image: Optional[str] = Field(default=None, max_length=500)


class LoginIn(CamelModel):
    email: EmailStr


class RefreshIn(CamelModel):
    refresh_token: str = Field(min_length=1)


class DefaultFamilyIn(CamelModel):
    family_uuid: str


class ProfileUpdateIn(CamelModel):
    timezone: Optional[str] = Field(default=None, max_length=50)
    language: Optional[str] = Field(default=None, max_length=10)
    currency: Optional[str] = Field(default=None, max_length=10)


class FamilyCreateIn(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    monthly_budget: Decimal = Field(default=Decimal("0"), ge=0, max_digits=15, decimal_places=2)


class FamilyUpdateIn(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    monthly_budget: Optional[Decimal] = Field(default=None, ge=0, max_digits=15, decimal_places=2)


class CategoryCreateIn(CamelModel):
    name: str = Field(min_length=1, max_length=50)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    exclude_from_budget: bool = False


class CategoryUpdateIn(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    exclude_from_budget: Optional[bool] = None


class ExpenseCreateIn(CamelModel):
    category_uuid: str
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=1000)
    date: Optional[datetime] = None
    exclude_from_budget: bool = False


class ExpenseUpdateIn(CamelModel):
    category_uuid: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=1000)
    date: Optional[datetime] = None
    exclude_from_budget: Optional[bool] = None


class IncomeCreateIn(CamelModel):
    category_uuid: str
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=1000)
    date: Optional[datetime] = None


class IncomeUpdateIn(CamelModel):
    category_uuid: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=1000)
    date: Optional[datetime] = None


class InvitationCreateIn(CamelModel):
    expiration_hours: Optional[int] = Field(default=None, ge=1)


class AcceptInvitationIn(CamelModel):
    token: str = Field(min_length=1)


# --------------------------------------------------------------- responses

class UserInfo(CamelModel):
    id: str
    uuid: str
    email: str
    name: Optional[str] = None
    image: Optional[str] = None


class AuthOut(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserInfo


class ProfileOut(CamelModel):
    user_uuid: str
    timezone: str
    language: str
    currency: str
    default_family_uuid: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class FamilyOut(CamelModel):
    uuid: str
    name: str
    monthly_budget: JsonNumber
    member_count: int
    created_at: datetime
    updated_at: datetime


class CategoryOut(CamelModel):
    uuid: str
    family_uuid: str
    name: str
    color: str
    icon: Optional[str] = None
    exclude_from_budget: bool
    created_at: datetime
    updated_at: datetime


class CategoryInfo(CamelModel):
    uuid: str
    name: str
    color: str
    icon: Optional[str] = None


class ExpenseOut(CamelModel):
    uuid: str
    family_uuid: str
    category_uuid: str
    category: Optional[CategoryInfo] = None
    user_uuid: str
    amount: JsonNumber
    description: Optional[str] = None
    date: datetime
    exclude_from_budget: bool
    created_at: datetime
    updated_at: datetime


class IncomeOut(CamelModel):
    uuid: str
    family_uuid: str
    category_uuid: str
    category: Optional[CategoryInfo] = None
    user_uuid: str
    amount: JsonNumber
    description: Optional[str] = None
    date: datetime
    created_at: datetime
    updated_at: datetime


class PageOut(CamelModel, Generic[T]):
    items: List[T]
    total_elements: int
    total_pages: int
    current_page: int
    size: int
    has_next: bool
    has_previous: bool

    @classmethod
    def build(cls, items: List[Any], total: int, page: int, size: int) -> "PageOut":
        total_pages = (total + size - 1) // size if size > 0 else 0
        return cls(
            items=items,
            total_elements=total,
            total_pages=total_pages,
            current_page=page,
            size=size,
            has_next=page + 1 < total_pages,
            has_previous=page > 0,
        )


class InvitationOut(CamelModel):
    uuid: str
    family_uuid: str
    family_name: Optional[str] = None
    token: str
    status: str
    expires_at: datetime
    created_at: datetime
    is_expired: bool
    is_used: bool


class NotificationOut(CamelModel):
    uuid: str
    family_uuid: str
    user_uuid: Optional[str] = None
    type: str
    title: str
    message: str
    reference_uuid: Optional[str] = None
    reference_type: Optional[str] = None
    year_month: str
    is_read: bool
    created_at: datetime


class NotificationListOut(CamelModel):
    notifications: List[NotificationOut]
    unread_count: int
    total_count: int


class CategoryExpenseStat(CamelModel):
    category_uuid: str
    category_name: str
    category_icon: str
    category_color: str
    total_amount: JsonNumber
    count: int
    percentage: JsonNumber


class CategorySummaryOut(CamelModel):
    family_uuid: str
    total_expense: JsonNumber
    category_stats: List[CategoryExpenseStat]


class MonthlyStatsOut(CamelModel):
    monthly_expense: JsonNumber
    monthly_income: JsonNumber
    budget: JsonNumber
    remaining_budget: JsonNumber
    family_members: int
    year: int
    month: int


class DailyStat(CamelModel):
    date: Date
    income: JsonNumber
    expense: JsonNumber


class DailyStatsOut(CamelModel):
    year: int
    month: int
    daily_stats: List[DailyStat]
    total_income: JsonNumber
    total_expense: JsonNumber


# ---------------------------------------------------------------- envelope

def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


def success(data: Any = None, message: Optional[str] = None) -> dict:
    """Wrap `data` in the success envelope, omitting empty message/data."""
    body: dict = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = _dump(data)
    body["timestamp"] = utcnow().isoformat()
    return body
