from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from birdlens.models.base import Base


class BirdSighting(Base):
    __tablename__ = "bird_sightings"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    bird_name = Column(String, nullable=False)
    scientific_name = Column(String)
    location = Column(String)
    latitude = Column(String)
    longitude = Column(String)
    sighting_date = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    notes = Column(Text)
    image_url = Column(String)
    identification_id = Column(
        Integer, ForeignKey("bird_identifications.id", ondelete="SET NULL")
    )
    is_offline = Column(Boolean, nullable=False, default=False, server_default="0")


__all__ = ["BirdSighting"]
