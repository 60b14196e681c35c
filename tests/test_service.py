from datetime import datetime, timezone

import pytest

from app.core.exceptions import ExpenseNotFound, ExpenseValidationError, StorageUnavailable
from app.modules.expenses.repository import InMemoryExpenseRepository
from app.modules.expenses.schemas import ExpenseStatus, ExpenseSubmitRequest
from app.modules.expenses.service import ExpensesService
from conftest import make_upload


class RecordingFileStorage:
    def __init__(self, fail_delete: bool = False):
        self.saved = []
        self.deleted = []
        self.fail_delete = fail_delete

    async def save(self, upload):
        reference = f"stored-{upload.filename}"
        self.saved.append(reference)
        return reference

    async def delete(self, reference):
        if self.fail_delete:
            raise OSError("disk busy")
        self.deleted.append(reference)
        return True


class FailingInsertRepository(InMemoryExpenseRepository):
    async def insert(self, document):
        raise StorageUnavailable("write failed")


@pytest.fixture
def file_storage():
    return RecordingFileStorage()


@pytest.fixture
def service(repository, file_storage, settings, clock):
    return ExpensesService(repository, file_storage, settings, clock=clock)


def submission(**fields):
    return ExpenseSubmitRequest.model_validate(fields)


# =============================================================================
# submit
# =============================================================================


@pytest.mark.asyncio
async def test_submit_round_trips_through_store(service, clock):
    expense = await service.submit(submission(
        description="Coffee", amount="12.50", vendor="Cafe", category="Meals",
        date="2024-02-28", submittedBy="Bob", notes="team",
    ))

    stored = await service.get_expense(expense.id)

    assert stored == expense
    assert stored.description == "Coffee"
    assert stored.amount == 12.5
    assert stored.vendor == "Cafe"
    assert stored.category == "Meals"
    assert stored.date == "2024-02-28"
    assert stored.submitted_by == "Bob"
    assert stored.status == ExpenseStatus.submitted
    assert stored.submission_date == clock.now
    assert stored.processed_date is None
    assert stored.processed_by is None
    assert stored.accounting_ref is None


@pytest.mark.asyncio
async def test_submit_applies_defaults(service, clock):
    expense = await service.submit(submission(description="Taxi", amount=20, category="  ", submittedBy=""))

    assert expense.category == "Other"
    assert expense.submitted_by == "Anonymous"
    assert expense.date == clock.now.date().isoformat()


@pytest.mark.asyncio
async def test_submit_ignores_server_owned_fields(service, clock):
    expense = await service.submit(submission(
        description="Taxi", amount=20, status="processed", id="forged",
        submissionDate="2000-01-01T00:00:00Z",
    ))

    assert expense.id != "forged"
    assert expense.status == ExpenseStatus.submitted
    assert expense.submission_date == clock.now


@pytest.mark.asyncio
@pytest.mark.parametrize("fields, missing", [
    ({}, "description, amount"),
    ({"description": "Coffee"}, "amount"),
    ({"amount": 4}, "description"),
    ({"description": "   ", "amount": ""}, "description, amount"),
])
async def test_submit_missing_required_fields(service, repository, fields, missing):
    with pytest.raises(ExpenseValidationError, match=f"Missing required fields: {missing}"):
        await service.submit(submission(**fields))

    assert await repository.count() == 0


@pytest.mark.asyncio
async def test_report_form_requires_organization_and_event(repository, settings, clock):
    report_settings = settings.model_copy(update={"expense_form": "report"})
    service = ExpensesService(repository, None, report_settings, clock=clock)

    with pytest.raises(ExpenseValidationError, match="organization, event"):
        await service.submit(submission(description="Coffee", amount=3))

    expense = await service.submit(submission(
        organization="Scouts", event="Camp", dateRange="Jun 1-3", totalAdvanced=200,
        totalExpenses=150.25, cashToReturn=49.75,
        expenses=[{"description": "Food", "amount": "150.25", "purchasedBy": "Ann"}],
    ))

    assert expense.total_expenses == 150.25
    assert expense.cash_to_return == 49.75
    assert expense.expenses[0].purchased_by == "Ann"
    assert expense.expenses[0].amount == 150.25


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -15.5, "-3"])
async def test_submit_accepts_zero_and_negative_amounts(service, amount):
    expense = await service.submit(submission(description="Refund", amount=amount))

    assert expense.amount == float(amount)


@pytest.mark.asyncio
async def test_submit_stores_receipt_reference(service, file_storage):
    expense = await service.submit(submission(description="Taxi", amount=20), make_upload())

    assert expense.receipt_file == "stored-receipt.png"
    assert file_storage.saved == ["stored-receipt.png"]


@pytest.mark.asyncio
async def test_submit_ignores_empty_receipt_part(service, file_storage):
    expense = await service.submit(submission(description="Taxi", amount=20), make_upload(filename=""))

    assert expense.receipt_file is None
    assert file_storage.saved == []


@pytest.mark.asyncio
async def test_submit_removes_receipt_when_insert_fails(file_storage, settings, clock):
    service = ExpensesService(FailingInsertRepository(), file_storage, settings, clock=clock)

    with pytest.raises(StorageUnavailable):
        await service.submit(submission(description="Taxi", amount=20), make_upload())

    assert file_storage.deleted == ["stored-receipt.png"]


@pytest.mark.asyncio
async def test_submit_receipt_without_file_storage_is_rejected(repository, settings, clock):
    service = ExpensesService(repository, None, settings, clock=clock)

    with pytest.raises(ExpenseValidationError, match="not enabled"):
        await service.submit(submission(description="Taxi", amount=20), make_upload())

    assert await repository.count() == 0


# =============================================================================
# list / get
# =============================================================================


@pytest.mark.asyncio
async def test_list_submitted_newest_first(service, clock):
    ids = []
    for i in range(3):
        ids.append((await service.submit(submission(description=f"#{i}", amount=i))).id)
        clock.advance(minutes=1)

    expenses = await service.list_submitted()

    assert [e.id for e in expenses] == list(reversed(ids))


@pytest.mark.asyncio
async def test_get_unknown_expense(service):
    with pytest.raises(ExpenseNotFound):
        await service.get_expense("nope")


# =============================================================================
# mark_processed
# =============================================================================


@pytest.mark.asyncio
async def test_mark_processed_sets_processing_fields(service, clock):
    expense = await service.submit(submission(description="Coffee", amount=3))
    processed_at = clock.advance(hours=1)

    processed = await service.mark_processed(expense.id, processed_by="Alice", accounting_ref="GL-42")

    assert processed.status == ExpenseStatus.processed
    assert processed.processed_by == "Alice"
    assert processed.accounting_ref == "GL-42"
    assert processed.processed_date == processed_at
    assert processed.submission_date == expense.submission_date


@pytest.mark.asyncio
async def test_mark_processed_defaults(service):
    expense = await service.submit(submission(description="Coffee", amount=3))

    processed = await service.mark_processed(expense.id)

    assert processed.processed_by == "Admin"
    assert processed.accounting_ref == ""


@pytest.mark.asyncio
async def test_mark_processed_twice_restamps(service, clock):
    expense = await service.submit(submission(description="Coffee", amount=3))
    first = await service.mark_processed(expense.id, processed_by="Alice")
    clock.advance(days=1)

    second = await service.mark_processed(expense.id, processed_by="Bob")

    assert second.status == ExpenseStatus.processed
    assert second.processed_by == "Bob"
    assert second.processed_date > first.processed_date
    assert (await service.get_expense(expense.id)).processed_by == "Bob"


@pytest.mark.asyncio
async def test_mark_processed_unknown_expense(service, repository):
    with pytest.raises(ExpenseNotFound):
        await service.mark_processed("nope")

    assert await repository.count() == 0


# =============================================================================
# delete
# =============================================================================


@pytest.mark.asyncio
async def test_delete_expense(service):
    expense = await service.submit(submission(description="Coffee", amount=3))

    await service.delete_expense(expense.id)

    with pytest.raises(ExpenseNotFound):
        await service.get_expense(expense.id)


@pytest.mark.asyncio
async def test_delete_unknown_expense(service):
    with pytest.raises(ExpenseNotFound):
        await service.delete_expense("nope")


@pytest.mark.asyncio
async def test_delete_removes_receipt(service, file_storage):
    expense = await service.submit(submission(description="Taxi", amount=20), make_upload())

    await service.delete_expense(expense.id)

    assert file_storage.deleted == [expense.receipt_file]


@pytest.mark.asyncio
async def test_delete_survives_receipt_cleanup_failure(repository, settings, clock):
    service = ExpensesService(repository, RecordingFileStorage(fail_delete=True), settings, clock=clock)
    expense = await service.submit(submission(description="Taxi", amount=20), make_upload())

    await service.delete_expense(expense.id)

    assert await repository.count() == 0


@pytest.mark.asyncio
async def test_submission_date_not_before_call(repository, settings):
    service = ExpensesService(repository, None, settings)
    before = datetime.now(timezone.utc)

    expense = await service.submit(submission(description="Coffee", amount=3))

    assert expense.submission_date >= before
