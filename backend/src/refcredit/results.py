"""Result values returned by the core operations."""

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from refcredit.errors import DomainError, ErrorKind

T = TypeVar("T")


@dataclass(frozen=True)
class FieldError:
    """A single input problem, reported before any transaction starts."""
    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass
class Result(Generic[T]):
    """Outcome of an operation: either a value or an error kind with a message.

    Expected business failures (insufficient credits, invalid token, invalid
    referral code, self-referral) come back as failures instead of exceptions.
    """
    value: T | None = None
    error: ErrorKind | None = None
    message: str | None = None
    field_errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None, message: str | None = None) -> "Result[T]":
        return cls(value=value, message=message)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Result[T]":
        return cls(error=kind, message=message)

    @classmethod
    def invalid(cls, field_errors: list[FieldError]) -> "Result[T]":
        return cls(error=ErrorKind.VALIDATION, message="Validation failed", field_errors=list(field_errors))

    @classmethod
    def from_error(cls, exc: DomainError) -> "Result[T]":
        return cls(error=exc.kind, message=exc.message)
