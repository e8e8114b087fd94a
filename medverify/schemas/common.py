from pydantic import BaseModel
from typing import Generic, List, Optional, TypeVar

DataT = TypeVar("DataT")

class ApiResponse(BaseModel, Generic[DataT]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[DataT] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    errorKind: str
    fields: Optional[List[str]] = None
