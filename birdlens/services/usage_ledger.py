"""Daily identification quota and plan-based caps.

Day boundaries are UTC calendar dates. The counter is never reset by a
background job: :meth:`UsageLedger.check_daily_limit` and
:meth:`UsageLedger.increment_daily_count` reset it lazily when the stored
``last_identification_date`` belongs to an earlier day.

The check-then-increment sequence is not atomic. Two concurrent requests from
the same user may both pass the check before either increments.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, NamedTuple

from birdlens.errors import LimitExceeded, NotFound
from birdlens.models import BirdIdentification, BirdSighting, User
from birdlens.plans import (
    Bounded,
    Limit,
    Plan,
    cap,
    get_plan_limits,
    to_wire,
)
from birdlens.services.repository import Repository

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 10


class DailyLimitCheck(NamedTuple):
    within_limit: bool
    current: int
    limit: Limit

    def as_wire(self) -> dict:
        return {
            "within_limit": self.within_limit,
            "current": self.current,
            "limit": to_wire(self.limit),
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_day(value: datetime) -> date:
    return _as_utc(value).date()


class UsageLedger:
    """Per-user usage bookkeeping on top of a :class:`Repository`."""

    def __init__(
        self,
        repository: Repository,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self._clock = clock or _utc_now

    def _now(self) -> datetime:
        return _as_utc(self._clock())

    def _get_user(self, user_id: int) -> User:
        user = self.repository.get_user(user_id)
        if user is None:
            raise NotFound(f"User with id {user_id} not found")
        return user

    def _is_new_day(self, user: User, now: datetime) -> bool:
        if user.last_identification_date is None:
            return True
        return utc_day(user.last_identification_date) != now.date()

    def get_effective_plan(self, user: User) -> Plan:
        """Premium whose end date has passed counts as free."""
        try:
            plan = Plan(user.subscription_plan)
        except ValueError:
            return Plan.FREE
        if plan is Plan.PREMIUM and user.subscription_end_date is not None:
            if _as_utc(user.subscription_end_date) <= self._now():
                return Plan.FREE
        return plan

    def check_daily_limit(self, user_id: int) -> DailyLimitCheck:
        """Report whether the user is within the daily quota.

        Not read-only: when the last identification happened on an earlier
        UTC day (or never), the counter is reset to 0 and the date stamped
        before reporting.
        """
        user = self._get_user(user_id)
        now = self._now()
        limit = get_plan_limits(self.get_effective_plan(user)).identifications_per_day

        if self._is_new_day(user, now):
            self.repository.update_user(
                user_id, daily_identifications_count=0, last_identification_date=now
            )
            current = 0
        else:
            current = user.daily_identifications_count or 0

        return DailyLimitCheck(
            within_limit=limit.allows(current), current=current, limit=limit
        )

    def _next_count(self, user: User, now: datetime) -> int:
        if self._is_new_day(user, now):
            return 1
        return (user.daily_identifications_count or 0) + 1

    def increment_daily_count(self, user_id: int) -> int:
        """Count one successful identification and return the new total."""
        user = self._get_user(user_id)
        now = self._now()
        count = self._next_count(user, now)
        self.repository.update_user(
            user_id, daily_identifications_count=count, last_identification_date=now
        )
        return count

    def record_identification(
        self, user_id: int, image_url: str, result: dict
    ) -> BirdIdentification:
        """Persist a successful identification and count it.

        The record and the counter are written together, so a failed insert
        leaves the daily count untouched.
        """
        user = self._get_user(user_id)
        now = self._now()
        return self.repository.create_counted_identification(
            user_id=user_id,
            image_url=image_url,
            result=result,
            daily_count=self._next_count(user, now),
            counted_at=now,
        )

    def reset_daily_count(self, user_id: int) -> None:
        self._get_user(user_id)
        self.repository.update_user(
            user_id, daily_identifications_count=0, last_identification_date=self._now()
        )

    def get_effective_history_limit(self, user_id: int) -> Limit:
        user = self._get_user(user_id)
        return get_plan_limits(self.get_effective_plan(user)).identification_history

    def get_effective_sighting_limit(self, user_id: int) -> Limit:
        user = self._get_user(user_id)
        return get_plan_limits(self.get_effective_plan(user)).sightings_total

    def ensure_daily_capacity(self, user_id: int) -> DailyLimitCheck:
        check = self.check_daily_limit(user_id)
        if not check.within_limit:
            logger.info(
                "Daily limit reached for user %s (%s/%s)",
                user_id,
                check.current,
                to_wire(check.limit),
            )
            raise LimitExceeded(
                "Daily identification limit reached",
                current=check.current,
                limit=to_wire(check.limit),
            )
        return check

    def ensure_sighting_capacity(self, user_id: int) -> int:
        """Raise :class:`LimitExceeded` when no more sightings may be saved."""
        limit = self.get_effective_sighting_limit(user_id)
        count = self.repository.count_user_sightings(user_id)
        if isinstance(limit, Bounded) and not limit.allows(count):
            raise LimitExceeded(
                "Sighting limit reached", current=count, limit=limit.value
            )
        return count

    def recent_identifications(
        self, user_id: int | None = None, limit: int | None = None
    ) -> list[BirdIdentification]:
        """Newest records first, truncated to the plan's history cap.

        Without a user the global feed is returned, ``DEFAULT_RECENT_LIMIT``
        records unless ``limit`` says otherwise.
        """
        if user_id is None:
            rows = DEFAULT_RECENT_LIMIT if limit is None else limit
            return self.repository.list_identifications(None, rows)
        rows = cap(self.get_effective_history_limit(user_id), limit)
        return self.repository.list_identifications(user_id, rows)

    def user_sightings(
        self, user_id: int, limit: int | None = None
    ) -> list[BirdSighting]:
        rows = cap(self.get_effective_sighting_limit(user_id), limit)
        return self.repository.list_user_sightings(user_id, rows)


__all__ = ["UsageLedger", "DailyLimitCheck", "DEFAULT_RECENT_LIMIT", "utc_day"]
