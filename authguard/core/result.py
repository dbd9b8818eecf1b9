"""
Tagged result types.

Service operations that have expected failure modes return ``Success`` or
``Failure`` instead of raising, so callers branch on the outcome explicitly:

    outcome = await service.sign_in(request)
    if is_success(outcome):
        ...
    else:
        log(outcome.code, outcome.message)
"""
from dataclasses import dataclass, field
from typing import Any, Generic, TypeGuard, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Failure:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    ok: bool = field(default=False, init=False)


Result = Union[Success[T], Failure]


def success(data: T) -> Success[T]:
    return Success(data)


def failure(message: str, code: str, details: dict[str, Any] | None = None) -> Failure:
    return Failure(code=code, message=message, details=details or {})


def is_success(result: "Result[T]") -> TypeGuard[Success[T]]:
    return result.ok


def is_failure(result: "Result[T]") -> TypeGuard[Failure]:
    return not result.ok
