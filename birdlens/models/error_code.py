from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in ``ErrorResponse.code``."""

    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UPGRADE_REQUIRED = "UPGRADE_REQUIRED"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    IDENTIFICATION_FAILED = "IDENTIFICATION_FAILED"
    INVALID_AI_RESPONSE = "INVALID_AI_RESPONSE"
    AI_TIMEOUT = "AI_TIMEOUT"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
