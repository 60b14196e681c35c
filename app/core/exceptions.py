# app/core/exceptions.py
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config.settings import Settings

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = {
    "health": "GET /health",
    "submitExpense": "POST /expenses/submit",
    "getSubmitted": "GET /expenses/submitted",
    "markProcessed": "POST /expenses/process/:id",
    "getExpense": "GET /expenses/:id",
    "deleteExpense": "DELETE /expenses/:id",
}


class AppError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ExpenseValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class ExpenseNotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, expense_id: Optional[str] = None):
        super().__init__("Expense not found")
        self.expense_id = expense_id


class StorageUnavailable(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(message: str, error: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    body.update(extra)
    return body


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Map domain and framework errors onto the JSON envelope"""

    def _detail(exc: Exception) -> Optional[str]:
        return None if settings.is_production else str(exc)

    @app.exception_handler(ExpenseValidationError)
    async def validation_error_handler(request: Request, exc: ExpenseValidationError):
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))

    @app.exception_handler(ExpenseNotFound)
    async def not_found_handler(request: Request, exc: ExpenseNotFound):
        logger.info(f"Expense not found: {exc.expense_id}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))

    @app.exception_handler(StorageUnavailable)
    async def storage_error_handler(request: Request, exc: StorageUnavailable):
        logger.error(f"Storage error on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body("Storage backend unavailable", _detail(exc)),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        logger.warning(f"Invalid request {request.method} {request.url.path}: {errors}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(f"Invalid request: {errors}"),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # a known path with the wrong method is still an unmatched route
        if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content=error_body("Route not found", availableEndpoints=AVAILABLE_ENDPOINTS),
            )
        return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail)))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("Something went wrong!", _detail(exc)),
        )
