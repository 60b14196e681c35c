# app/api/router.py
from fastapi import APIRouter

from app.modules.expenses.router import router as expenses_router

api_router = APIRouter()

api_router.include_router(
    expenses_router,
    prefix="/expenses",
    tags=["Expenses"]
)
