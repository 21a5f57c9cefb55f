"""Response envelope shared by every endpoint."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """``{success, message, data}`` wrapper returned by all JSON routes."""

    success: bool = True
    message: str | None = None
    data: T | None = None


def ok(data: T | None = None, message: str | None = None) -> Envelope[T]:
    return Envelope(success=True, message=message, data=data)
