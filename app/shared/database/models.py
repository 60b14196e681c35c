# app/shared/database/models.py
from sqlalchemy import Column, Integer, String, DateTime, JSON, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# =====================================================
# EXPENSES
# =====================================================

class ExpenseRecord(Base):
    """Expense document stored as JSON, with the columns needed for lookups and ordering"""
    __tablename__ = "expenses"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="submitted", index=True)
    submission_date = Column(DateTime(timezone=True), nullable=False, index=True)
    document = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.current_timestamp())

    def to_document(self) -> dict:
        return {**self.document, "id": self.id}
