"""
Render-scoped instance addressing for trail entries.

An InstanceId is the pair (day, position) encoded as ``"<day>__<index>"``.
It is NOT a stable identity: every structural mutation of a day renumbers
its entries, so ids must be regenerated from the live sequence on every
render and never cached across a mutation.

Drop targets are either a card (an InstanceId) or a day drop zone
(``"droppable-<day>"``), which means "append to that day".
"""

from __future__ import annotations

from typing import Any, NamedTuple

from loguru import logger

from studytrail.trail.models import DayId, WeekTrail

SEPARATOR = "__"
DROP_ZONE_PREFIX = "droppable-"


class InstanceAddress(NamedTuple):
    day: DayId
    index: int


class DropTarget(NamedTuple):
    """Resolved drop destination; ``index`` is None for a day drop zone."""

    day: DayId
    index: int | None


def encode_instance_id(day: DayId | str, index: int) -> str:
    """Encode a (day, position) pair."""
    day_id = DayId.parse(day)
    if day_id is None:
        raise ValueError(f"Unknown day: {day!r}")
    if index < 0:
        raise ValueError(f"Position must be non-negative, got {index}")
    return f"{day_id.value}{SEPARATOR}{index}"


def decode_instance_id(instance_id: Any) -> InstanceAddress | None:
    """
    Decode an InstanceId.

    Returns None for any malformed input; never raises. Callers treat None
    as a no-op.
    """
    if not isinstance(instance_id, str) or SEPARATOR not in instance_id:
        logger.debug(f"Ignoring malformed instance id: {instance_id!r}")
        return None

    raw_day, _, raw_index = instance_id.rpartition(SEPARATOR)
    day = DayId.parse(raw_day)
    if day is None or not (raw_index.isascii() and raw_index.isdigit()):
        logger.debug(f"Ignoring malformed instance id: {instance_id!r}")
        return None

    return InstanceAddress(day, int(raw_index))


def day_drop_zone_id(day: DayId | str) -> str:
    day_id = DayId.parse(day)
    if day_id is None:
        raise ValueError(f"Unknown day: {day!r}")
    return f"{DROP_ZONE_PREFIX}{day_id.value}"


def resolve_drop_target(target: Any) -> DropTarget | None:
    """
    Resolve a drop target.

    Accepts a DayId (drop zone), a ``"droppable-<day>"`` id, or a card
    InstanceId. Returns None when nothing can be resolved.
    """
    if isinstance(target, DayId):
        return DropTarget(target, None)

    if isinstance(target, str) and target.startswith(DROP_ZONE_PREFIX):
        day = DayId.parse(target[len(DROP_ZONE_PREFIX):])
        if day is None:
            logger.debug(f"Ignoring unknown drop zone: {target!r}")
            return None
        return DropTarget(day, None)

    address = decode_instance_id(target)
    if address is None:
        return None
    return DropTarget(address.day, address.index)


def instance_ids(trail: WeekTrail, day: DayId) -> list[str]:
    """Fresh instance ids for the live sequence of ``day``."""
    return [encode_instance_id(day, index) for index in range(len(trail.get(day, [])))]
