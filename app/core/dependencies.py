# app/core/dependencies.py
from typing import TYPE_CHECKING

from fastapi import Request

from app.config.settings import Settings

if TYPE_CHECKING:
    from app.modules.expenses.repository import ExpenseRepository
    from app.shared.services.file_storage import FileStorage


def get_expense_repository(request: Request) -> "ExpenseRepository":
    """Record store attached to the app at startup"""
    return request.app.state.expense_repository


def get_file_storage(request: Request) -> "FileStorage":
    return request.app.state.file_storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
