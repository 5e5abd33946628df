"""
Rendering of business-rule refusals (SettlementResult, PayoutResult) in the
same error envelope AppException uses.
"""
from typing import Optional

from fastapi.responses import JSONResponse

from ledger.core.exceptions import ErrorCode
from ledger.core.logging import get_correlation_id

_STATUS_BY_CODE = {
    ErrorCode.ORDER_NOT_FOUND: 404,
    ErrorCode.USER_NOT_FOUND: 404,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.ORDER_ALREADY_SETTLED: 409,
    ErrorCode.ORDER_ALREADY_DISTRIBUTED: 409,
    ErrorCode.ORDER_INVALID_STATUS: 409,
    ErrorCode.WALLET_LOCKED: 409,
}


def refusal_response(
    message: str,
    error_code: Optional[ErrorCode],
    details: Optional[dict] = None,
) -> JSONResponse:
    code = error_code or ErrorCode.INTERNAL_ERROR
    return JSONResponse(
        status_code=_STATUS_BY_CODE.get(code, 400),
        content={
            "error": {
                "code": code.value,
                "message": message,
                "details": details or {},
            }
        },
        headers={"X-Correlation-ID": get_correlation_id()},
    )
