"""Exception types shared by the resolver, reformer and store bindings."""
from __future__ import annotations

import asyncio


class ListOrderError(RuntimeError):
    """Base class for errors raised by listorder."""


class ExhaustedRetries(ListOrderError):
    """Raised when the collision loop runs out of attempts.

    The partition is packed too tightly around ``desired_position``; callers
    should reform the partition and resolve again rather than keep probing.
    """

    def __init__(self, desired_position: float, attempts: int) -> None:
        super().__init__(
            f"Tried to find a non-conflicting position for {desired_position!r} "
            f"{attempts} times"
        )
        self.desired_position = desired_position
        self.attempts = attempts


class OperationCancelled(ListOrderError):
    """Raised when a caller-supplied cancel event is set mid-operation."""


class RecordNotFoundError(ListOrderError, LookupError):
    """Raised when an update targets a record id the store does not hold."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class ValueMissingError(ListOrderError):
    """Raised by ``Nothing.value_or_fail``."""


def raise_if_cancelled(cancel: asyncio.Event | None, what: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"{what} cancelled")
