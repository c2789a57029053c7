from .base import Base
from .error_code import ErrorCode
from .event import Event
from .identification import BirdIdentification
from .sighting import BirdSighting
from .user import User

__all__ = [
    "Base",
    "ErrorCode",
    "Event",
    "BirdIdentification",
    "BirdSighting",
    "User",
]
