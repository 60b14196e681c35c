# app/modules/expenses/service.py
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from fastapi import UploadFile

from app.config.settings import Settings, settings as default_settings
from app.core.exceptions import ExpenseNotFound, ExpenseValidationError
from app.shared.services.file_storage import FileStorage
from .repository import ExpenseRepository
from .schemas import Expense, ExpenseStatus, ExpenseSubmitRequest

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Other"
DEFAULT_SUBMITTER = "Anonymous"
DEFAULT_PROCESSOR = "Admin"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ExpensesService:
    def __init__(
        self,
        repository: ExpenseRepository,
        file_storage: Optional[FileStorage] = None,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.file_storage = file_storage
        self.settings = settings
        self.clock = clock

    async def submit(
        self,
        request: ExpenseSubmitRequest,
        receipt: Optional[UploadFile] = None,
    ) -> Expense:
        """
        Register a new expense.

        - Reject when a required field of the configured form is missing
        - Fill category, date and submitter defaults
        - Store the receipt first; drop it again if the insert fails
        """
        missing = [
            name for name in self.settings.required_fields
            if _is_blank(getattr(request, name))
        ]
        if missing:
            raise ExpenseValidationError(f"Missing required fields: {', '.join(missing)}")

        now = self.clock()
        document = request.model_dump(by_alias=True, exclude_none=True)

        if _is_blank(document.get("category")):
            document["category"] = DEFAULT_CATEGORY
        if _is_blank(document.get("date")):
            document["date"] = now.date().isoformat()
        if _is_blank(document.get("submittedBy")):
            document["submittedBy"] = DEFAULT_SUBMITTER

        document["status"] = ExpenseStatus.submitted.value
        document["submissionDate"] = now

        receipt_ref = await self._upload_receipt(receipt)
        if receipt_ref:
            document["receiptFile"] = receipt_ref

        try:
            expense_id = await self.repository.insert(document)
        except Exception:
            if receipt_ref:
                await self._delete_receipt_safe(receipt_ref)
            raise

        logger.info(f"✅ Expense saved with ID: {expense_id}")
        return Expense.model_validate({**document, "id": expense_id})

    async def list_submitted(self) -> List[Expense]:
        documents = await self.repository.list_all()
        return [Expense.model_validate(d) for d in documents]

    async def get_expense(self, expense_id: str) -> Expense:
        document = await self.repository.get_by_id(expense_id)
        if document is None:
            raise ExpenseNotFound(expense_id)
        return Expense.model_validate(document)

    async def mark_processed(
        self,
        expense_id: str,
        processed_by: Optional[str] = None,
        accounting_ref: Optional[str] = None,
    ) -> Expense:
        """submitted -> processed. Repeating it re-stamps the processed fields."""
        fields = {
            "status": ExpenseStatus.processed.value,
            "processedDate": self.clock(),
            "processedBy": DEFAULT_PROCESSOR if _is_blank(processed_by) else processed_by,
            "accountingRef": accounting_ref or "",
        }

        document = await self.repository.update_by_id(expense_id, fields)
        if document is None:
            raise ExpenseNotFound(expense_id)

        logger.info(f"✅ Expense marked as processed: {expense_id}")
        return Expense.model_validate(document)

    async def delete_expense(self, expense_id: str) -> None:
        document = await self.repository.delete_by_id(expense_id)
        if document is None:
            raise ExpenseNotFound(expense_id)

        logger.info(f"🗑️ Expense deleted: {expense_id}")

        if document.get("receiptFile"):
            await self._delete_receipt_safe(document["receiptFile"])

    async def _upload_receipt(self, receipt: Optional[UploadFile]) -> Optional[str]:
        if not receipt or not receipt.filename:
            return None
        if self.file_storage is None:
            raise ExpenseValidationError("Receipt uploads are not enabled")

        logger.info(f"Uploading receipt: {receipt.filename}")
        return await self.file_storage.save(receipt)

    async def _delete_receipt_safe(self, reference: str) -> None:
        """Receipt cleanup never fails the request"""
        if self.file_storage is None:
            return
        try:
            await self.file_storage.delete(reference)
        except Exception as e:
            logger.warning(f"Error removing receipt {reference}: {e}")
