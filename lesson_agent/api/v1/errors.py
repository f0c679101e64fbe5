from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


def _error_example(code: str, message: str, details: Any) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details}}


ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    422: {
        "description": "Unprocessable Entity",
        "content": {
            "application/json": {
                "example": _error_example(
                    "INVALID_REQUEST",
                    "Request validation failed",
                    [{"loc": ["body", "duration"], "msg": "Input should be a valid integer"}],
                )
            }
        },
    },
    500: {
        "description": "Internal Server Error",
        "content": {
            "application/json": {
                "example": _error_example("INTERNAL_ERROR", "Internal server error", None)
            }
        },
    },
}


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        super().__init__(message)
        self.status_code = int(status_code)
        self.code = code
        self.message = message
        self.details = details


async def api_error_exception_handler(_: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message, "details": exc.details}},
    )
