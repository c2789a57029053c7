"""Persistence interface for users, identification records and sightings.

Handlers receive a :class:`Repository` through FastAPI dependency injection;
:class:`SqlRepository` is the SQLAlchemy-backed implementation. Methods are
synchronous and are off-loaded with ``asyncio.to_thread`` by the callers.
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from birdlens.errors import NotFound
from birdlens.models import BirdIdentification, BirdSighting, Event, User

USER_FIELDS = frozenset(
    {
        "email",
        "subscription_plan",
        "subscription_end_date",
        "stripe_customer_id",
        "stripe_subscription_id",
        "daily_identifications_count",
        "last_identification_date",
    }
)
SIGHTING_FIELDS = frozenset(
    {
        "bird_name",
        "scientific_name",
        "location",
        "latitude",
        "longitude",
        "sighting_date",
        "notes",
        "image_url",
        "identification_id",
        "is_offline",
    }
)


class Repository(abc.ABC):
    # users
    @abc.abstractmethod
    def get_user(self, user_id: int) -> User | None: ...

    @abc.abstractmethod
    def get_user_by_username(self, username: str) -> User | None: ...

    @abc.abstractmethod
    def get_user_by_stripe_customer(self, customer_id: str) -> User | None: ...

    @abc.abstractmethod
    def create_user(self, username: str, email: str | None = None) -> User: ...

    @abc.abstractmethod
    def update_user(self, user_id: int, **fields: Any) -> User: ...

    def update_user_subscription(
        self, user_id: int, plan: str, end_date: datetime | None = None
    ) -> User:
        return self.update_user(
            user_id, subscription_plan=plan, subscription_end_date=end_date
        )

    # identification records
    @abc.abstractmethod
    def create_identification(
        self, *, user_id: int | None, image_url: str, result: dict
    ) -> BirdIdentification: ...

    @abc.abstractmethod
    def create_counted_identification(
        self,
        *,
        user_id: int,
        image_url: str,
        result: dict,
        daily_count: int,
        counted_at: datetime,
    ) -> BirdIdentification:
        """Store a record and the user's new daily count in one transaction."""

    @abc.abstractmethod
    def get_identification(self, identification_id: int) -> BirdIdentification | None: ...

    @abc.abstractmethod
    def list_identifications(
        self, user_id: int | None = None, limit: int | None = None
    ) -> list[BirdIdentification]:
        """Newest first; ``limit=None`` returns every matching record."""

    # sightings
    @abc.abstractmethod
    def create_sighting(self, user_id: int, **fields: Any) -> BirdSighting: ...

    @abc.abstractmethod
    def get_sighting(self, sighting_id: int) -> BirdSighting | None: ...

    @abc.abstractmethod
    def list_user_sightings(
        self, user_id: int, limit: int | None = None
    ) -> list[BirdSighting]:
        """Newest ``sighting_date`` first; ``limit=None`` returns all."""

    @abc.abstractmethod
    def update_sighting(self, sighting_id: int, **fields: Any) -> BirdSighting: ...

    @abc.abstractmethod
    def delete_sighting(self, sighting_id: int) -> bool: ...

    @abc.abstractmethod
    def count_user_sightings(self, user_id: int) -> int: ...

    # analytics
    @abc.abstractmethod
    def log_event(self, user_id: int, event: str) -> None: ...


def _check_fields(fields: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"unknown fields: {', '.join(sorted(unknown))}")


class SqlRepository(Repository):
    """Repository over a SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get_user(self, user_id: int) -> User | None:
        with self._session_factory() as db:
            return db.get(User, user_id)

    def get_user_by_username(self, username: str) -> User | None:
        with self._session_factory() as db:
            return db.scalars(select(User).where(User.username == username)).first()

    def get_user_by_stripe_customer(self, customer_id: str) -> User | None:
        with self._session_factory() as db:
            return db.scalars(
                select(User).where(User.stripe_customer_id == customer_id)
            ).first()

    def create_user(self, username: str, email: str | None = None) -> User:
        with self._session_factory() as db:
            user = User(
                username=username,
                email=email,
                subscription_plan="free",
                daily_identifications_count=0,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            return user

    def update_user(self, user_id: int, **fields: Any) -> User:
        _check_fields(fields, USER_FIELDS)
        with self._session_factory() as db:
            user = db.get(User, user_id)
            if user is None:
                raise NotFound(f"User with id {user_id} not found")
            for name, value in fields.items():
                setattr(user, name, value)
            db.commit()
            db.refresh(user)
            return user

    def create_identification(
        self, *, user_id: int | None, image_url: str, result: dict
    ) -> BirdIdentification:
        with self._session_factory() as db:
            record = BirdIdentification(
                user_id=user_id, image_url=image_url, result=result
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

    def create_counted_identification(
        self,
        *,
        user_id: int,
        image_url: str,
        result: dict,
        daily_count: int,
        counted_at: datetime,
    ) -> BirdIdentification:
        with self._session_factory() as db:
            user = db.get(User, user_id)
            if user is None:
                raise NotFound(f"User with id {user_id} not found")
            user.daily_identifications_count = daily_count
            user.last_identification_date = counted_at
            record = BirdIdentification(
                user_id=user_id, image_url=image_url, result=result
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

    def get_identification(self, identification_id: int) -> BirdIdentification | None:
        with self._session_factory() as db:
            return db.get(BirdIdentification, identification_id)

    def list_identifications(
        self, user_id: int | None = None, limit: int | None = None
    ) -> list[BirdIdentification]:
        stmt = select(BirdIdentification).order_by(
            BirdIdentification.identified_at.desc(), BirdIdentification.id.desc()
        )
        if user_id is not None:
            stmt = stmt.where(BirdIdentification.user_id == user_id)
        if limit is not None:
            stmt = stmt.limit(max(0, limit))
        with self._session_factory() as db:
            return list(db.scalars(stmt))

    def create_sighting(self, user_id: int, **fields: Any) -> BirdSighting:
        _check_fields(fields, SIGHTING_FIELDS)
        if fields.get("sighting_date") is None:
            fields.pop("sighting_date", None)
        if fields.get("is_offline") is None:
            fields["is_offline"] = False
        with self._session_factory() as db:
            sighting = BirdSighting(user_id=user_id, **fields)
            db.add(sighting)
            db.commit()
            db.refresh(sighting)
            return sighting

    def get_sighting(self, sighting_id: int) -> BirdSighting | None:
        with self._session_factory() as db:
            return db.get(BirdSighting, sighting_id)

    def list_user_sightings(
        self, user_id: int, limit: int | None = None
    ) -> list[BirdSighting]:
        stmt = (
            select(BirdSighting)
            .where(BirdSighting.user_id == user_id)
            .order_by(BirdSighting.sighting_date.desc(), BirdSighting.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(max(0, limit))
        with self._session_factory() as db:
            return list(db.scalars(stmt))

    def update_sighting(self, sighting_id: int, **fields: Any) -> BirdSighting:
        _check_fields(fields, SIGHTING_FIELDS)
        with self._session_factory() as db:
            sighting = db.get(BirdSighting, sighting_id)
            if sighting is None:
                raise NotFound(f"Sighting with id {sighting_id} not found")
            for name, value in fields.items():
                setattr(sighting, name, value)
            db.commit()
            db.refresh(sighting)
            return sighting

    def delete_sighting(self, sighting_id: int) -> bool:
        with self._session_factory() as db:
            sighting = db.get(BirdSighting, sighting_id)
            if sighting is None:
                return False
            db.delete(sighting)
            db.commit()
            return True

    def count_user_sightings(self, user_id: int) -> int:
        with self._session_factory() as db:
            return db.scalar(
                select(func.count())
                .select_from(BirdSighting)
                .where(BirdSighting.user_id == user_id)
            ) or 0

    def log_event(self, user_id: int, event: str) -> None:
        with self._session_factory() as db:
            db.add(Event(user_id=user_id, event=event))
            db.commit()


__all__ = ["Repository", "SqlRepository", "USER_FIELDS", "SIGHTING_FIELDS"]
