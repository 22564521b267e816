from typing import Any, Optional

from pydantic import BaseModel


class ApiResponse(BaseModel):
    success: bool = True
    message: str = ""
    data: Optional[Any] = None


def ok(data: Any = None, message: str = "") -> ApiResponse:
    return ApiResponse(success=True, message=message, data=data)
