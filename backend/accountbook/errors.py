"""Error codes and the business exception raised by services.

Every failure a client can observe is described by an `ErrorCode`: the
HTTP status to answer with, a short stable code string and a default
message. Services raise `BusinessException` with one of these codes and
optional parameters; the HTTP layer renders it as the standard error
envelope.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    # common
    INVALID_INPUT_VALUE = (400, "C001", "Invalid input value")
    INVALID_TYPE_VALUE = (400, "C002", "Invalid type value")
    ENTITY_NOT_FOUND = (404, "C003", "Entity not found")
    METHOD_NOT_ALLOWED = (405, "C004", "Method not allowed")
    ACCESS_DENIED = (403, "C005", "Access denied")
    INTERNAL_SERVER_ERROR = (500, "C006", "Internal server error")
    INVALID_UUID_FORMAT = (400, "C007", "Invalid UUID format")

    # users
    USER_NOT_FOUND = (404, "U001", "User not found")
    DUPLICATE_USER_EMAIL = (409, "U002", "Email already in use")
    USER_ALREADY_EXISTS = (409, "U003", "User already exists")

    # authentication / authorization
    UNAUTHORIZED = (401, "A001", "Authentication required")
    INVALID_TOKEN = (401, "A002", "Invalid token")
    EXPIRED_TOKEN = (401, "A003", "Token expired")
    INVALID_CREDENTIALS = (401, "A004", "Invalid credentials")
    FORBIDDEN = (403, "A005", "Forbidden")

    # families
    FAMILY_NOT_FOUND = (404, "F001", "Family not found")
    FAMILY_ALREADY_EXISTS = (409, "F002", "Family already exists")
    NOT_FAMILY_MEMBER = (403, "F003", "Not a member of this family")
    FAMILY_MEMBER_NOT_FOUND = (404, "F004", "Family member not found")
    CANNOT_LEAVE_FAMILY_AS_OWNER = (400, "F005", "The family owner cannot leave the family")

    # categories
    CATEGORY_NOT_FOUND = (404, "CT001", "Category not found")
    CATEGORY_ALREADY_EXISTS = (409, "CT002", "Category already exists")
    CANNOT_DELETE_CATEGORY_IN_USE = (400, "CT003", "Category is in use")

    # expenses
    EXPENSE_NOT_FOUND = (404, "E001", "Expense not found")
    INVALID_EXPENSE_AMOUNT = (400, "E002", "Invalid expense amount")
    INVALID_EXPENSE_DATE = (400, "E003", "Invalid expense date")
    EXPENSE_ALREADY_EXISTS = (409, "E004", "Expense already exists")

    # incomes
    INCOME_NOT_FOUND = (404, "IC001", "Income not found")
    INVALID_INCOME_AMOUNT = (400, "IC002", "Invalid income amount")
    INVALID_INCOME_DATE = (400, "IC003", "Invalid income date")
    INCOME_ALREADY_EXISTS = (409, "IC004", "Income already exists")

    # invitations
    INVITATION_NOT_FOUND = (404, "I001", "Invitation not found")
    INVITATION_EXPIRED = (400, "I002", "Invitation expired")
    INVITATION_ALREADY_USED = (400, "I003", "Invitation already used")
    INVALID_INVITATION_TOKEN = (400, "I004", "Invalid invitation token")
    ALREADY_FAMILY_MEMBER = (409, "I005", "Already a member of this family")

    # notifications
    NOTIFICATION_NOT_FOUND = (404, "N001", "Notification not found")

    def __init__(self, status: int, code: str, message: str):
        self.status = status
        self.code = code
        self.message = message


class BusinessException(Exception):
    """Domain failure carrying an `ErrorCode` and structured context.

    `parameters` are returned to the client; `debug_info` is only
    rendered when debug output is enabled.
    """

    def __init__(self, error_code: ErrorCode, message: Optional[str] = None,
                 parameters: Optional[Dict[str, Any]] = None):
        self.error_code = error_code
        self.message = message or error_code.message
        self.parameters: Dict[str, Any] = dict(parameters or {})
        self.debug_info: Dict[str, Any] = {}
        super().__init__(self.message)

    def add_parameter(self, key: str, value: Any) -> "BusinessException":
        self.parameters[key] = value
        return self

    def add_debug_info(self, key: str, value: Any) -> "BusinessException":
        self.debug_info[key] = value
        return self

    def with_cause(self, cause: BaseException) -> "BusinessException":
        """Attach `cause` both as the exception context and as debug info."""
        self.__cause__ = cause
        self.debug_info["cause"] = str(cause)
        self.debug_info["causeType"] = type(cause).__name__
        return self

    @property
    def status(self) -> int:
        return self.error_code.status

    @property
    def code(self) -> str:
        return self.error_code.code

    @classmethod
    def entity_not_found(cls, entity_name: str, entity_id: Any) -> "BusinessException":
        return (cls(ErrorCode.ENTITY_NOT_FOUND, f"{entity_name} not found")
                .add_parameter("entityName", entity_name)
                .add_parameter("id", entity_id))

    @classmethod
    def access_denied(cls, resource: str, user_uuid: str) -> "BusinessException":
        return (cls(ErrorCode.ACCESS_DENIED, f"No permission to access {resource}")
                .add_parameter("resource", resource)
                .add_parameter("userUuid", user_uuid))

    @classmethod
    def invalid_input(cls, field_name: str, value: Any, reason: str) -> "BusinessException":
        return (cls(ErrorCode.INVALID_INPUT_VALUE, f"Invalid value for {field_name}: {reason}")
                .add_parameter("fieldName", field_name)
                .add_parameter("value", value)
                .add_parameter("reason", reason))

    def __repr__(self) -> str:
        return f"BusinessException({self.code}, {self.message!r})"
