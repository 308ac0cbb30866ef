"""Shared schema primitives."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class IDSchema(BaseSchema):
    id: uuid.UUID


class TimestampedSchema(IDSchema):
    created_at: datetime
    updated_at: datetime


class ErrorResponse(BaseSchema):
    error: str
    kind: str
    message: str
    retryable: bool = False
    details: dict = {}
