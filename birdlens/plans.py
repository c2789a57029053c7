"""Subscription plans and their static limits.

A limit is either ``Bounded(n)`` or ``UNBOUNDED``. Only :func:`to_wire`
turns an unbounded limit into the ``-1`` marker used in API payloads.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Plan(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


@dataclass(frozen=True)
class Bounded:
    value: int

    def allows(self, count: int) -> bool:
        return count < self.value


@dataclass(frozen=True)
class Unbounded:
    def allows(self, count: int) -> bool:  # noqa: ARG002
        return True


UNBOUNDED = Unbounded()
Limit = Union[Bounded, Unbounded]

WIRE_UNBOUNDED = -1


def to_wire(limit: Limit) -> int:
    """Serialize a limit for JSON responses (``-1`` means unbounded)."""
    if isinstance(limit, Unbounded):
        return WIRE_UNBOUNDED
    return limit.value


def cap(limit: Limit, requested: int | None) -> int | None:
    """Combine a plan limit with an optional caller limit.

    Returns the number of rows to return, or ``None`` for "all rows".
    """
    if isinstance(limit, Unbounded):
        return requested
    if requested is None:
        return limit.value
    return min(requested, limit.value)


@dataclass(frozen=True)
class PlanLimits:
    identifications_per_day: Limit
    identification_history: Limit
    sightings_total: Limit
    full_access: bool
    offline_access: bool
    detailed_info: bool

    def as_wire(self) -> dict:
        return {
            "identifications": {
                "per_day": to_wire(self.identifications_per_day),
                "history": to_wire(self.identification_history),
            },
            "sightings": {"total": to_wire(self.sightings_total)},
            "bird_database": {
                "full_access": self.full_access,
                "offline_access": self.offline_access,
                "detailed_info": self.detailed_info,
            },
        }


PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(
        identifications_per_day=Bounded(5),
        identification_history=Bounded(3),
        sightings_total=Bounded(10),
        full_access=False,
        offline_access=False,
        detailed_info=False,
    ),
    Plan.PREMIUM: PlanLimits(
        identifications_per_day=UNBOUNDED,
        identification_history=UNBOUNDED,
        sightings_total=UNBOUNDED,
        full_access=True,
        offline_access=True,
        detailed_info=True,
    ),
}


def get_plan_limits(plan: Plan | str) -> PlanLimits:
    """Limits for ``plan``; unknown plan names fall back to free."""
    try:
        return PLAN_LIMITS[Plan(plan)]
    except ValueError:
        return PLAN_LIMITS[Plan.FREE]


__all__ = [
    "Plan",
    "Bounded",
    "Unbounded",
    "UNBOUNDED",
    "Limit",
    "WIRE_UNBOUNDED",
    "to_wire",
    "cap",
    "PlanLimits",
    "PLAN_LIMITS",
    "get_plan_limits",
]
