"""
Duplicate-location guard for new issue reports.

A report is rejected only when an issue at the *exact* same coordinates has
already been taken up (acknowledged, in progress or resolved). Pending
reports do not block each other, so several citizens can report the same
unacknowledged hazard.
"""

from __future__ import annotations

import logging
import math
from typing import Protocol

from civictrack.core.exceptions import DuplicateLocation, ValidationError
from civictrack.models.issue import IssueStatus

logger = logging.getLogger(__name__)

BLOCKING_STATUSES = (
    IssueStatus.ACKNOWLEDGED,
    IssueStatus.IN_PROGRESS,
    IssueStatus.RESOLVED,
)


class LocationLookup(Protocol):
    async def exists_at(self, latitude: float, longitude: float, statuses) -> bool: ...


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Raise ``ValidationError`` unless the pair is a real WGS84 position."""
    if not isinstance(latitude, (int, float)) or not math.isfinite(latitude):
        raise ValidationError("Latitude must be a finite number", field="latitude")
    if not isinstance(longitude, (int, float)) or not math.isfinite(longitude):
        raise ValidationError("Longitude must be a finite number", field="longitude")
    if not -90 <= latitude <= 90:
        raise ValidationError("Latitude must be within [-90, 90]", field="latitude")
    if not -180 <= longitude <= 180:
        raise ValidationError("Longitude must be within [-180, 180]", field="longitude")


class GeoDedupChecker:
    def __init__(self, issues: LocationLookup):
        self.issues = issues

    async def ensure_unique_location(self, latitude: float, longitude: float) -> None:
        validate_coordinates(latitude, longitude)
        if await self.issues.exists_at(latitude, longitude, BLOCKING_STATUSES):
            logger.info("Rejected duplicate report at (%s, %s)", latitude, longitude)
            raise DuplicateLocation(
                "An active issue at this location already exists",
                latitude=latitude,
                longitude=longitude,
            )
