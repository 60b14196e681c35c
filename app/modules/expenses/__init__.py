# app/modules/expenses/__init__.py
"""
Expenses module - expense submission and accounting review

Lifecycle of an expense:
- submitted: created by POST /expenses/submit
- processed: stamped by POST /expenses/process/{id} (repeatable)

Layout:
- router.py: HTTP endpoints and envelopes
- service.py: required fields, defaults, lifecycle transition
- repository.py: record stores (memory, MongoDB, SQL)
- schemas.py: request/response models
"""

from .router import router
from .service import ExpensesService
from .repository import (
    ExpenseRepository,
    InMemoryExpenseRepository,
    MongoExpenseRepository,
    SqlExpenseRepository,
)

__all__ = [
    "router",
    "ExpensesService",
    "ExpenseRepository",
    "InMemoryExpenseRepository",
    "MongoExpenseRepository",
    "SqlExpenseRepository",
]
