# mapbuddy/errors.py
from typing import Any, Optional


class MapBuddyError(Exception):
    """Base error rendered to clients as ``{"error": message, "details": ...}``."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        payload = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class InvalidRequest(MapBuddyError):
    status_code = 400


class DatasetNotFound(MapBuddyError):
    status_code = 400


class NoFeatureFound(MapBuddyError):
    status_code = 404


class UpstreamUnavailable(MapBuddyError):
    status_code = 500


class EncodingFailure(MapBuddyError):
    status_code = 500


class RegistryError(ValueError):
    """Raised at import time when two datasets claim the same lookup name."""
