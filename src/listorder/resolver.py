"""Collision-free position assignment.

``resolve_position`` probes the partition for a record already holding the
requested position. On a collision it moves the candidate to the midpoint
between the candidate and its predecessor and probes again, up to a fixed
number of attempts. Nothing is written; the caller applies the result.

Probe loop states::

    probing -> free            (return candidate)
    probing -> colliding -> recomputing -> probing
    budget spent               (ExhaustedRetries)
"""
from __future__ import annotations

import asyncio
import logging

from listorder.errors import ExhaustedRetries, raise_if_cancelled
from listorder.neighbors import find_element, find_previous
from listorder.position_filters import FilterExpression, PositionCompare
from listorder.store import PositionStore

log = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10

# Lower bound used when nothing precedes a non-positive candidate.
FLOOR_GAP = 1.0


def calculate_new_position_min_collision(lower: float, upper: float) -> float:
    """Midpoint of ``(lower, upper)``, leaving equal room on both sides.

    When no float lies strictly between the bounds, returns *upper* so the
    caller keeps colliding and eventually reports ``ExhaustedRetries``.
    """
    candidate = lower + (upper - lower) / 2
    if lower < candidate < upper:
        return candidate
    return upper


async def resolve_position(
    store: PositionStore,
    partition: FilterExpression | None,
    desired_position: float,
    *,
    attempts_left: int = DEFAULT_MAX_ATTEMPTS,
    cancel: asyncio.Event | None = None,
) -> float:
    """Return a position near *desired_position* that no record in *partition* holds."""
    candidate = desired_position
    remaining = attempts_left
    while remaining > 0:
        raise_if_cancelled(cancel, "Position resolution")
        collision = await find_element(store, partition, PositionCompare("=", candidate))
        if not collision.has_value:
            if candidate != desired_position:
                log.debug(
                    "Resolved %r to %r after %d collisions",
                    desired_position, candidate, attempts_left - remaining,
                )
            return candidate

        previous = await find_previous(store, partition, candidate)
        default_lower = 0.0 if candidate > 0 else candidate - FLOOR_GAP
        lower = previous.map(lambda r: r.position).value_or(default_lower)
        candidate = calculate_new_position_min_collision(lower, candidate)
        remaining -= 1

    log.warning(
        "No free position near %r after %d attempts", desired_position, attempts_left
    )
    raise ExhaustedRetries(desired_position, attempts_left)
