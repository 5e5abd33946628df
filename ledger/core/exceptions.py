"""
Custom Exception Hierarchy

Structured exceptions for the ledger. Everything raised from a money-moving
operation derives from AppException so the API layer can render it uniformly
and the caller can decide what a failed payout means for the order.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    FORBIDDEN = "ERR_1005"
    CONFIGURATION_ERROR = "ERR_1007"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    ORDER_INVALID_STATUS = "ERR_2005"
    ORDER_NOT_CASH = "ERR_2006"
    ORDER_ALREADY_SETTLED = "ERR_2007"
    ORDER_ALREADY_DISTRIBUTED = "ERR_2008"

    # User errors (3xxx)
    USER_NOT_FOUND = "ERR_3001"
    USER_BLOCKED = "ERR_3005"

    # Wallet errors (4xxx)
    INSUFFICIENT_BALANCE = "ERR_4002"
    INVALID_AMOUNT = "ERR_4003"
    WALLET_LOCKED = "ERR_4004"
    CASH_LIMIT_EXCEEDED = "ERR_4005"
    CASH_DEBT_OVERDUE = "ERR_4006"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails, before anything is mutated"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class RateConfigurationError(ValidationException):
    """Raised when stored or proposed commission rates are out of range or do not sum up"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            details=details,
            error_code=ErrorCode.CONFIGURATION_ERROR,
        )


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class UserNotFoundError(NotFoundException):
    """Raised when user is not found"""

    def __init__(self, user_id: int):
        super().__init__("User", user_id, error_code=ErrorCode.USER_NOT_FOUND)


class WalletException(AppException):
    """Base exception for wallet-related errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        user_id: int | None = None,
        details: dict[str, Any] | None = None,
        status_code: int = 400,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        if user_id:
            self.details["user_id"] = user_id


class InsufficientBalanceError(WalletException):
    """Raised when a debit would take the wallet below zero"""

    def __init__(self, user_id: int, current_balance: int, requested_amount: int):
        super().__init__(
            message=f"Insufficient balance for user {user_id}",
            error_code=ErrorCode.INSUFFICIENT_BALANCE,
            user_id=user_id,
            details={
                "current_balance": current_balance,
                "requested_amount": requested_amount,
                "shortfall": requested_amount - current_balance,
            }
        )


class LedgerConflictError(WalletException):
    """Raised when concurrent writers kept invalidating our read of the wallet row"""

    def __init__(self, user_id: int, attempts: int):
        super().__init__(
            message=f"Wallet for user {user_id} is busy, gave up after {attempts} attempts",
            error_code=ErrorCode.WALLET_LOCKED,
            user_id=user_id,
            details={"attempts": attempts},
            status_code=409,
        )
