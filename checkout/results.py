"""Typed outcomes returned by every pipeline operation.

Callers branch on ``result.ok`` instead of passing success/error callbacks.
Nothing in the pipeline raises to signal a business condition: declined
payments, invalid input, a held commit latch and storage trouble all come
back as values.
"""

import enum
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict

PROCESSING_IN_PROGRESS = "An order is already being processed. Please wait a moment."
GENERIC_RETRY_MESSAGE = "We could not complete your payment. Please try again."
METHOD_UNAVAILABLE = "This payment method is not available at the moment."


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    CONCURRENCY = "concurrency"
    STORAGE = "storage"
    PAYMENT = "payment"
    UNAVAILABLE = "unavailable"


class Ok(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: Any = None

    @property
    def ok(self) -> bool:
        return True


class Failure(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    field_errors: Dict[str, str] = {}
    # Internal cause, for logs only; never shown to the customer
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def first_error(self) -> str:
        for message in self.field_errors.values():
            return message
        return self.message

    @classmethod
    def from_field_errors(cls, errors: Dict[str, str]) -> "Failure":
        first = next(iter(errors.values()))
        return cls(kind=ErrorKind.VALIDATION, message=first, field_errors=dict(errors))


Result = Union[Ok, Failure]
