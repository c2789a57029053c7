from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from birdlens.models.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String, nullable=False, unique=True)
    email = Column(String)
    subscription_plan = Column(String, nullable=False, default="free", server_default="free")
    subscription_end_date = Column(DateTime(timezone=True))
    stripe_customer_id = Column(String, index=True)
    stripe_subscription_id = Column(String)
    # mutated only through UsageLedger
    daily_identifications_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_identification_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


__all__ = ["User"]
