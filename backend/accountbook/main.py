"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the family account book
backend. Controllers are intentionally thin: they accept requests,
validate path identifiers, delegate to services, and wrap results in the
success envelope. Failures are rendered by the exception handlers below
as the error envelope.

Every route except `/health` lives under `/api/v1`. Swagger UI is served
at `/docs` and the OpenAPI document at `/openapi.json`.
"""

import json
import logging
import time
import uuid
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models, schemas, services
from .auth import get_current_user
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import BusinessException, ErrorCode
from .utils.ids import parse_uuid
from .utils.timeutils import parse_filter_datetime

API = "/api/v1"

app = FastAPI(
    title="Family Account Book API",
    description="Shared household ledger: families, categories, expenses, incomes, invitations and budget alerts.",
    version="1.0.0",
)
logger = logging.getLogger("accountbook.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.CORS_ALLOWED_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOWED_ORIGINS,
        allow_credentials="*" not in settings.CORS_ALLOWED_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

create_db_and_tables()
services.register_event_listeners()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


# ------------------------------------------------------------------ errors

def _error_response(request: Request, status: int, code: str, message: str, parameters: Optional[dict] = None,
                    errors: Optional[list] = None, debug_info: Optional[dict] = None) -> JSONResponse:
    body = {
        "success": False,
        "status": status,
        "code": code,
        "message": message,
        "path": request.url.path,
        "timestamp": models.utcnow().isoformat(),
    }
    if parameters:
        body["parameters"] = parameters
    if errors:
        body["errors"] = errors
    if debug_info and settings.EXPOSE_ERROR_DEBUG:
        body["debugInfo"] = debug_info
    return JSONResponse(status_code=status, content=jsonable_encoder(body))


@app.exception_handler(BusinessException)
async def business_exception_handler(request: Request, exc: BusinessException):
    logger.info("business_error code=%s status=%s path=%s message=%s", exc.code, exc.status, request.url.path, exc.message)
    return _error_response(request, exc.status, exc.code, exc.message, exc.parameters, debug_info=exc.debug_info)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({
            "field": ".".join(loc),
            "code": err.get("type"),
            "message": err.get("msg"),
            "rejectedValue": err.get("input"),
        })
    code = ErrorCode.INVALID_INPUT_VALUE
    return _error_response(request, code.status, code.code, code.message, errors=errors)


_HTTP_STATUS_CODES = {
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.ENTITY_NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = _HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INVALID_INPUT_VALUE)
    message = exc.detail if isinstance(exc.detail, str) else code.message
    return _error_response(request, exc.status_code, code.code, message)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    error_id = uuid.uuid4().hex[:12]
    logger.error(
        "unhandled_exception [%s] %s %s: %s",
        error_id, request.method, request.url.path, exc,
        exc_info=exc,
    )
    code = ErrorCode.INTERNAL_SERVER_ERROR
    return _error_response(
        request, code.status, code.code, code.message,
        parameters={"errorId": error_id},
        debug_info={"exception": type(exc).__name__, "detail": str(exc)},
    )


# ----------------------------------------------------------------- helpers

def _family(family_uuid: str) -> str:
    return parse_uuid(family_uuid, "familyUuid")


def _year_month(year: Optional[int], month: Optional[int]):
    today = date.today()
    return (year if year is not None else today.year, month if month is not None else today.month)


# ------------------------------------------------------------------ health

@app.get("/health")
def health():
    """Liveness check."""
    return {"status": "UP"}


# -------------------------------------------------------------------- auth

@app.post(f"{API}/auth/register")
def register(payload: schemas.RegisterIn, db: Session = Depends(get_session)):
    """Register an OAuth account, or log it in when it already exists."""
    out = services.AuthService(db).register(
        payload.provider, payload.provider_id, payload.email, payload.name, payload.image,
    )
    return schemas.success(out)


@app.post(f"{API}/auth/login")
def login(payload: schemas.LoginIn, db: Session = Depends(get_session)):
    """Issue tokens for the account registered with `email`."""
    return schemas.success(services.AuthService(db).login(payload.email))


@app.post(f"{API}/auth/refresh")
def refresh(payload: schemas.RefreshIn, db: Session = Depends(get_session)):
    return schemas.success(services.AuthService(db).refresh(payload.refresh_token))


@app.get(f"{API}/auth/me")
def me(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return schemas.success(services.AuthService(db).current_user(user))


@app.post(f"{API}/auth/logout")
def logout(user: models.User = Depends(get_current_user)):
    """Tokens are stateless; clients discard them."""
    return schemas.success(message="Logged out")


# ------------------------------------------------------------------- users

@app.get(f"{API}/users/me/default-family")
def get_default_family(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    family_uuid = services.UserProfileService(db).get_default_family(user.uuid)
    return schemas.success({"familyUuid": family_uuid})


@app.put(f"{API}/users/me/default-family")
def set_default_family(payload: schemas.DefaultFamilyIn, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    family_uuid = services.UserProfileService(db).set_default_family(user.uuid, payload.family_uuid)
    return schemas.success({"familyUuid": family_uuid}, message="Default family updated")


@app.get(f"{API}/users/me/profile")
def get_profile(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return schemas.success(services.UserProfileService(db).get_profile(user.uuid))


@app.put(f"{API}/users/me/profile")
def update_profile(payload: schemas.ProfileUpdateIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    out = services.UserProfileService(db).update_profile(
        user.uuid, timezone=payload.timezone, language=payload.language, currency=payload.currency,
    )
    return schemas.success(out, message="Profile updated")


# ---------------------------------------------------------------- families

@app.post(f"{API}/families", status_code=201)
def create_family(payload: schemas.FamilyCreateIn, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    out = services.FamilyService(db).create_family(user.uuid, payload.name, payload.monthly_budget)
    return schemas.success(out, message="Family created")


@app.get(f"{API}/families")
def list_families(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return schemas.success(services.FamilyService(db).get_user_families(user.uuid))


@app.get(f"{API}/families/{{family_uuid}}")
def get_family(family_uuid: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return schemas.success(services.FamilyService(db).get_family(user.uuid, _family(family_uuid)))


@app.put(f"{API}/families/{{family_uuid}}")
def update_family(family_uuid: str, payload: schemas.FamilyUpdateIn, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    out = services.FamilyService(db).update_family(
        user.uuid, _family(family_uuid), payload.name, payload.monthly_budget,
    )
    return schemas.success(out, message="Family updated")


@app.delete(f"{API}/families/{{family_uuid}}")
def delete_family(family_uuid: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.FamilyService(db).delete_family(user.uuid, _family(family_uuid))
    return schemas.success(message="Family deleted")


@app.delete(f"{API}/families/{{family_uuid}}/members/me")
def leave_family(family_uuid: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.FamilyService(db).leave_family(user.uuid, _family(family_uuid))
    return schemas.success(message="Left family")


# -------------------------------------------------------------- categories

@app.post(f"{API}/families/{{family_uuid}}/categories", status_code=201)
def create_category(family_uuid: str, payload: schemas.CategoryCreateIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    out = services.CategoryService(db).create_category(
        user.uuid, _family(family_uuid), payload.name, payload.color, payload.icon, payload.exclude_from_budget,
    )
    return schemas.success(out, message="Category created")


@app.get(f"{API}/families/{{family_uuid}}/categories")
def list_categories(family_uuid: str, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    return schemas.success(services.CategoryService(db).get_family_categories(user.uuid, _family(family_uuid)))


@app.get(f"{API}/categories/{{category_uuid}}")
def get_category(category_uuid: str, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    out = services.CategoryService(db).get_category(user.uuid, parse_uuid(category_uuid, "categoryUuid"))
    return schemas.success(out)


@app.put(f"{API}/categories/{{category_uuid}}")
def update_category(category_uuid: str, payload: schemas.CategoryUpdateIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    out = services.CategoryService(db).update_category(
        user.uuid, parse_uuid(category_uuid, "categoryUuid"),
        name=payload.name, color=payload.color, icon=payload.icon, exclude_from_budget=payload.exclude_from_budget,
    )
    return schemas.success(out, message="Category updated")


@app.delete(f"{API}/categories/{{category_uuid}}")
def delete_category(category_uuid: str, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    services.CategoryService(db).delete_category(user.uuid, parse_uuid(category_uuid, "categoryUuid"))
    return schemas.success(message="Category deleted")


# ---------------------------------------------------------------- expenses

@app.post(f"{API}/families/{{family_uuid}}/expenses", status_code=201)
def create_expense(family_uuid: str, payload: schemas.ExpenseCreateIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    out = services.ExpenseService(db).create_expense(
        user.uuid, _family(family_uuid), payload.category_uuid, payload.amount,
        description=payload.description, date=payload.date, exclude_from_budget=payload.exclude_from_budget,
    )
    return schemas.success(out, message="Expense created")


@app.get(f"{API}/families/{{family_uuid}}/expenses")
def list_expenses(family_uuid: str, page: int = 0, size: int = 20,
                  category_uuid: Optional[str] = Query(None, alias="categoryUuid"),
                  start_date: Optional[str] = Query(None, alias="startDate"),
                  end_date: Optional[str] = Query(None, alias="endDate"),
                  db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Page through expenses, newest first, optionally filtered by category and date range."""
    out = services.ExpenseService(db).get_family_expenses(
        user.uuid, _family(family_uuid), page=page, size=size, category_uuid=category_uuid,
        start=parse_filter_datetime(start_date, "startDate"),
        end=parse_filter_datetime(end_date, "endDate", end_of_day=True),
    )
    return schemas.success(out)


@app.get(f"{API}/families/{{family_uuid}}/expenses/{{expense_uuid}}")
def get_expense(family_uuid: str, expense_uuid: str, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    return schemas.success(services.ExpenseService(db).get_expense(user.uuid, _family(family_uuid), expense_uuid))


@app.put(f"{API}/families/{{family_uuid}}/expenses/{{expense_uuid}}")
def update_expense(family_uuid: str, expense_uuid: str, payload: schemas.ExpenseUpdateIn,
                   db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    out = services.ExpenseService(db).update_expense(
        user.uuid, _family(family_uuid), expense_uuid,
        category_uuid=payload.category_uuid, amount=payload.amount, description=payload.description,
        date=payload.date, exclude_from_budget=payload.exclude_from_budget,
    )
    return schemas.success(out, message="Expense updated")


@app.delete(f"{API}/families/{{family_uuid}}/expenses/{{expense_uuid}}")
def delete_expense(family_uuid: str, expense_uuid: str, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    services.ExpenseService(db).delete_expense(user.uuid, _family(family_uuid), expense_uuid)
    return schemas.success(message="Expense deleted")


# ----------------------------------------------------------------- incomes

@app.post(f"{API}/families/{{family_uuid}}/incomes", status_code=201)
def create_income(family_uuid: str, payload: schemas.IncomeCreateIn, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    out = services.IncomeService(db).create_income(
        user.uuid, _family(family_uuid), payload.category_uuid, payload.amount,
        description=payload.description, date=payload.date,
    )
    return schemas.success(out, message="Income created")


@app.get(f"{API}/families/{{family_uuid}}/incomes")
def list_incomes(family_uuid: str, page: int = 0, size: int = 20,
                 category_uuid: Optional[str] = Query(None, alias="categoryUuid"),
                 start_date: Optional[str] = Query(None, alias="startDate"),
                 end_date: Optional[str] = Query(None, alias="endDate"),
                 db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    out = services.IncomeService(db).get_family_incomes(
        user.uuid, _family(family_uuid), page=page, size=size, category_uuid=category_uuid,
        start=parse_filter_datetime(start_date, "startDate"),
        end=parse_filter_datetime(end_date, "endDate", end_of_day=True),
    )
    return schemas.success(out)


@app.get(f"{API}/families/{{family_uuid}}/incomes/{{income_uuid}}")
def get_income(family_uuid: str, income_uuid: str, db: Session = Depends(get_session),
               user: models.User = Depends(get_current_user)):
    return schemas.success(services.IncomeService(db).get_income(user.uuid, _family(family_uuid), income_uuid))


@app.put(f"{API}/families/{{family_uuid}}/incomes/{{income_uuid}}")
def update_income(family_uuid: str, income_uuid: str, payload: schemas.IncomeUpdateIn,
                  db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    out = services.IncomeService(db).update_income(
        user.uuid, _family(family_uuid), income_uuid,
        category_uuid=payload.category_uuid, amount=payload.amount, description=payload.description,
        date=payload.date,
    )
    return schemas.success(out, message="Income updated")


@app.delete(f"{API}/families/{{family_uuid}}/incomes/{{income_uuid}}")
def delete_income(family_uuid: str, income_uuid: str, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    services.IncomeService(db).delete_income(user.uuid, _family(family_uuid), income_uuid)
    return schemas.success(message="Income deleted")


# ------------------------------------------------------------- invitations

@app.post(f"{API}/invitations/families/{{family_uuid}}", status_code=201)
def create_invitation(family_uuid: str, payload: Optional[schemas.InvitationCreateIn] = None,
                      db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    hours = payload.expiration_hours if payload is not None else None
    out = services.InvitationService(db).create_invitation(user.uuid, _family(family_uuid), hours)
    return schemas.success(out, message="Invitation created")


@app.get(f"{API}/invitations/families/{{family_uuid}}")
def list_invitations(family_uuid: str, db: Session = Depends(get_session),
                     user: models.User = Depends(get_current_user)):
    return schemas.success(services.InvitationService(db).get_family_invitations(user.uuid, _family(family_uuid)))


@app.get(f"{API}/invitations/token/{{token}}")
def get_invitation_by_token(token: str, db: Session = Depends(get_session)):
    """Public lookup so invitees can see which family they are joining."""
    return schemas.success(services.InvitationService(db).get_invitation_by_token(token))


@app.post(f"{API}/invitations/accept")
def accept_invitation(payload: schemas.AcceptInvitationIn, db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    out = services.InvitationService(db).accept_invitation(user.uuid, payload.token)
    return schemas.success(out, message="Invitation accepted")


@app.delete(f"{API}/invitations/{{invitation_uuid}}")
def delete_invitation(invitation_uuid: str, db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    services.InvitationService(db).delete_invitation(user.uuid, invitation_uuid)
    return schemas.success(message="Invitation deleted")


# ----------------------------------------------------------- notifications

@app.get(f"{API}/families/{{family_uuid}}/notifications")
def list_notifications(family_uuid: str, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    out = services.NotificationService(db).get_family_notifications(user.uuid, _family(family_uuid))
    return schemas.success(out)


@app.get(f"{API}/families/{{family_uuid}}/notifications/unread-count")
def unread_notification_count(family_uuid: str, db: Session = Depends(get_session),
                              user: models.User = Depends(get_current_user)):
    count = services.NotificationService(db).get_unread_count(user.uuid, _family(family_uuid))
    return schemas.success({"unreadCount": count})


@app.post(f"{API}/families/{{family_uuid}}/notifications/mark-all-read")
def mark_all_notifications_read(family_uuid: str, db: Session = Depends(get_session),
                                user: models.User = Depends(get_current_user)):
    updated = services.NotificationService(db).mark_all_as_read(user.uuid, _family(family_uuid))
    return schemas.success({"updatedCount": updated}, message="All notifications marked as read")


@app.get(f"{API}/notifications/{{notification_uuid}}")
def get_notification(notification_uuid: str, db: Session = Depends(get_session),
                     user: models.User = Depends(get_current_user)):
    return schemas.success(services.NotificationService(db).get_notification(user.uuid, notification_uuid))


@app.patch(f"{API}/notifications/{{notification_uuid}}/read")
def mark_notification_read(notification_uuid: str, db: Session = Depends(get_session),
                           user: models.User = Depends(get_current_user)):
    out = services.NotificationService(db).mark_as_read(user.uuid, notification_uuid)
    return schemas.success(out, message="Notification marked as read")


# --------------------------------------------------------------- dashboard

@app.get(f"{API}/families/{{family_uuid}}/dashboard/expenses/by-category")
def category_expense_summary(family_uuid: str,
                             start_date: Optional[str] = Query(None, alias="startDate"),
                             end_date: Optional[str] = Query(None, alias="endDate"),
                             category_uuid: Optional[str] = Query(None, alias="categoryUuid"),
                             db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Expense totals per category with each category's share of the total."""
    out = services.DashboardService(db).get_category_expense_summary(
        user.uuid, _family(family_uuid),
        start=parse_filter_datetime(start_date, "startDate"),
        end=parse_filter_datetime(end_date, "endDate", end_of_day=True),
        category_uuid=category_uuid,
    )
    return schemas.success(out)


@app.get(f"{API}/families/{{family_uuid}}/dashboard/stats/monthly")
def monthly_stats(family_uuid: str, year: Optional[int] = None, month: Optional[int] = None,
                  db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Budget-countable spending, income and remaining budget for one month (default: current)."""
    year, month = _year_month(year, month)
    out = services.DashboardService(db).get_monthly_stats(user.uuid, _family(family_uuid), year, month)
    return schemas.success(out)


@app.get(f"{API}/families/{{family_uuid}}/dashboard/daily-stats")
def daily_stats(family_uuid: str, year: Optional[int] = None, month: Optional[int] = None,
                db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    year, month = _year_month(year, month)
    out = services.DashboardService(db).get_daily_stats(user.uuid, _family(family_uuid), year, month)
    return schemas.success(out)
