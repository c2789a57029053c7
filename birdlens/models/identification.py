from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String

from birdlens.models.base import Base


class BirdIdentification(Base):
    """Stored result of one identification request (immutable)."""

    __tablename__ = "bird_identifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    image_url = Column(String, nullable=False)
    result = Column(JSON, nullable=False)
    identified_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


__all__ = ["BirdIdentification"]
