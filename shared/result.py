"""Tagged result type for collaborator calls.

Collaborator wrappers return ``Success(value)`` or ``Failure(message,
cause)`` instead of letting raw client exceptions cross component
boundaries. ``unwrap`` turns a failure into the matching error of
``shared.errors`` with the original exception chained as its cause.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, Type, TypeVar, Union

from shared.errors import CollaboratorError

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    message: str
    cause: Optional[BaseException] = None


Result = Union[Success[T], Failure]


def unwrap(
    result: "Result[T]",
    operation: str,
    error_type: Type[CollaboratorError] = CollaboratorError,
) -> T:
    """Return the success value or raise ``error_type`` for a failure."""
    if isinstance(result, Success):
        return result.value
    raise error_type(operation, result.message) from result.cause
