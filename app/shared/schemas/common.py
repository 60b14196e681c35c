# app/shared/schemas/common.py
from pydantic import BaseModel
from typing import Any, Dict, Optional

class BaseResponse(BaseModel):
    success: bool
    message: Optional[str] = None

class ErrorResponse(BaseResponse):
    success: bool = False
    error: Optional[str] = None
    availableEndpoints: Optional[Dict[str, Any]] = None
