from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class BaseSchema(BaseModel):
    """Base schema with common fields."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class PlatformEntity(BaseSchema):
    """Fields every platform record carries.

    The platform does not always send timestamps on nested records, so they
    are optional here.
    """
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Envelope(BaseModel, Generic[T]):
    """The platform's ``{success, data}`` response wrapper."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: Optional[str] = None
