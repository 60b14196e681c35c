from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from app.shared.schemas.common import BaseResponse


class ExpenseStatus(str, Enum):
    submitted = "submitted"
    processed = "processed"


class CamelModel(BaseModel):
    """camelCase on the wire and in stored documents, snake_case in Python"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        # NaN/Infinity would serialize back as null
        allow_inf_nan=False,
        coerce_numbers_to_str=True,
    )


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class ExpenseLineItem(CamelModel):
    date: Optional[str] = None
    description: Optional[str] = None
    vendor: Optional[str] = None
    category: Optional[str] = None
    amount: Optional[float] = None
    purchased_by: Optional[str] = None
    receipt_file: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def blank_amount_is_missing(cls, v):
        return _blank_to_none(v)


class ExpenseFields(CamelModel):
    organization: Optional[str] = None
    event: Optional[str] = None
    description: Optional[str] = None
    vendor: Optional[str] = None
    category: Optional[str] = None
    submitted_by: Optional[str] = None
    notes: Optional[str] = None
    cash_holder: Optional[str] = None
    purchased_by: Optional[str] = None
    missing_receipts_explanation: Optional[str] = None

    amount: Optional[float] = None
    total_advanced: Optional[float] = None
    total_expenses: Optional[float] = None
    cash_to_return: Optional[float] = None

    date: Optional[str] = None
    date_range: Optional[str] = None
    report_date: Optional[str] = None

    receipt_file: Optional[str] = None
    expenses: Optional[List[ExpenseLineItem]] = None

    @field_validator(
        "amount", "total_advanced", "total_expenses", "cash_to_return",
        mode="before",
    )
    @classmethod
    def blank_number_is_missing(cls, v):
        return _blank_to_none(v)


class ExpenseSubmitRequest(ExpenseFields):
    """Client input for a submission; server-owned fields are ignored"""


class ExpenseProcessRequest(CamelModel):
    processed_by: Optional[str] = None
    accounting_ref: Optional[str] = None


class Expense(ExpenseFields):
    id: str
    status: ExpenseStatus = ExpenseStatus.submitted
    submission_date: datetime
    processed_date: Optional[datetime] = None
    processed_by: Optional[str] = None
    accounting_ref: Optional[str] = None


class ExpenseSubmitResponse(BaseResponse):
    expenseId: str
    data: Expense


class ExpenseListResponse(BaseResponse):
    count: int
    data: List[Expense]


class ExpenseResponse(BaseResponse):
    data: Expense
