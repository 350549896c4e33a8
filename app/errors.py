from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class PeriodNotFoundError(ApiError):
    def __init__(self, message: str = "Timesheet period not found."):
        super().__init__(status_code=404, code="PERIOD_NOT_FOUND", message=message)


class InvalidPeriodKeyError(ApiError):
    def __init__(self, message: str):
        super().__init__(status_code=422, code="INVALID_PERIOD_KEY", message=message)


class InvalidRuleConfigurationError(ApiError):
    def __init__(self, message: str):
        super().__init__(status_code=422, code="INVALID_RULE_CONFIGURATION", message=message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
