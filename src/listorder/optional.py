"""Explicit optional values for store lookups.

``Some(value)`` and ``NOTHING`` keep "no matching record" distinct from an
error. Lookups never return ``None``; they return one of the two variants.

* ``maybe`` — wrap a nullable value.
* ``map`` — transform the held value, if any.
* ``value_or`` / ``value_or_fail`` — unwrap with a default or an exception.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from listorder.errors import ValueMissingError

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Some(Generic[T]):
    """A present value."""

    value: T

    @property
    def has_value(self) -> bool:
        return True

    def map(self, fn: Callable[[T], U]) -> Some[U]:
        return Some(fn(self.value))

    def value_or(self, default: Any) -> T:
        return self.value

    def value_or_fail(self, message: str = "") -> T:
        return self.value


@dataclass(frozen=True, slots=True)
class Nothing:
    """An absent value. Use the ``NOTHING`` singleton."""

    @property
    def has_value(self) -> bool:
        return False

    def map(self, fn: Callable[[Any], Any]) -> Nothing:
        return self

    def value_or(self, default: U) -> U:
        return default

    def value_or_fail(self, message: str = "") -> Any:
        raise ValueMissingError(message or "Expected a value but found nothing")


NOTHING = Nothing()

Option = Union[Some[T], Nothing]


def maybe(value: T | None) -> Option[T]:
    """Wrap *value* as ``Some`` unless it is ``None``."""
    if value is None:
        return NOTHING
    return Some(value)
