# app/modules/expenses/router.py
import json
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Body, Depends, Request, status
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from app.core.dependencies import get_expense_repository, get_file_storage, get_settings
from app.config.settings import Settings
from app.core.exceptions import ExpenseValidationError
from app.shared.schemas.common import BaseResponse, ErrorResponse
from app.shared.services.file_storage import FileStorage
from .repository import ExpenseRepository
from .service import ExpensesService
from .schemas import (
    ExpenseListResponse,
    ExpenseProcessRequest,
    ExpenseResponse,
    ExpenseSubmitRequest,
    ExpenseSubmitResponse,
)


router = APIRouter()

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Expense not found"}}
SERVER_ERROR = {500: {"model": ErrorResponse, "description": "Storage backend unavailable"}}
FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


def get_expenses_service(
    repository: ExpenseRepository = Depends(get_expense_repository),
    file_storage: FileStorage = Depends(get_file_storage),
    app_settings: Settings = Depends(get_settings),
) -> ExpensesService:
    return ExpensesService(repository, file_storage, app_settings)


async def read_submission(request: Request) -> Tuple[ExpenseSubmitRequest, Optional[UploadFile]]:
    """
    Accept either a JSON body or a form with an optional `receipt` file.
    In forms the `expenses` line items arrive as a JSON string.
    """
    receipt = None
    content_type = request.headers.get("content-type", "")

    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        data: Dict[str, Any] = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key == "receipt":
                    receipt = value
                continue
            data[key] = value

        if "expenses" in data:
            try:
                data["expenses"] = json.loads(data["expenses"]) if data["expenses"].strip() else None
            except json.JSONDecodeError as e:
                raise ExpenseValidationError(f"Invalid JSON in expenses: {e}")
    else:
        raw = await request.body()
        try:
            data = json.loads(raw) if raw.strip() else {}
        except ValueError as e:
            raise ExpenseValidationError(f"Invalid JSON body: {e}")
        if not isinstance(data, dict):
            raise ExpenseValidationError("Request body must be a JSON object")

    try:
        payload = ExpenseSubmitRequest.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ExpenseValidationError(f"Invalid expense: {errors}")

    return payload, receipt


@router.post(
    "/submit",
    response_model=ExpenseSubmitResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Missing or invalid fields"}, **SERVER_ERROR},
)
async def submit_expense(
    request: Request,
    service: ExpensesService = Depends(get_expenses_service),
):
    """
    Submit an expense.

    **Body:** JSON, or multipart form data with an optional `receipt` file.
    The server assigns `id`, `status` and `submissionDate`.
    """
    payload, receipt = await read_submission(request)
    expense = await service.submit(payload, receipt)

    return ExpenseSubmitResponse(
        success=True,
        message="Expense submitted successfully",
        expenseId=expense.id,
        data=expense,
    )


@router.get(
    "/submitted",
    response_model=ExpenseListResponse,
    response_model_exclude_none=True,
    responses=SERVER_ERROR,
)
async def get_submitted_expenses(service: ExpensesService = Depends(get_expenses_service)):
    """All expenses, newest submission first"""
    expenses = await service.list_submitted()
    return ExpenseListResponse(success=True, count=len(expenses), data=expenses)


@router.get(
    "/{expense_id}",
    response_model=ExpenseResponse,
    response_model_exclude_none=True,
    responses={**NOT_FOUND, **SERVER_ERROR},
)
async def get_expense(expense_id: str, service: ExpensesService = Depends(get_expenses_service)):
    expense = await service.get_expense(expense_id)
    return ExpenseResponse(success=True, data=expense)


@router.post(
    "/process/{expense_id}",
    response_model=ExpenseResponse,
    response_model_exclude_none=True,
    responses={**NOT_FOUND, **SERVER_ERROR},
)
async def mark_expense_processed(
    expense_id: str,
    payload: Optional[ExpenseProcessRequest] = Body(None),
    service: ExpensesService = Depends(get_expenses_service),
):
    """
    Mark an expense as processed.

    Calling it again on a processed expense succeeds and re-stamps
    `processedDate`, `processedBy` and `accountingRef`.
    """
    payload = payload or ExpenseProcessRequest()
    expense = await service.mark_processed(
        expense_id,
        processed_by=payload.processed_by,
        accounting_ref=payload.accounting_ref,
    )
    return ExpenseResponse(
        success=True,
        message=f"Expense {expense_id} marked as processed",
        data=expense,
    )


@router.delete(
    "/{expense_id}",
    response_model=BaseResponse,
    response_model_exclude_none=True,
    responses={**NOT_FOUND, **SERVER_ERROR},
)
async def delete_expense(expense_id: str, service: ExpensesService = Depends(get_expenses_service)):
    await service.delete_expense(expense_id)
    return BaseResponse(success=True, message="Expense deleted successfully")
