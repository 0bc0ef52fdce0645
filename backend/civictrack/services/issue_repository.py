"""
Issue persistence, filtering and the spatial queries behind the issue list.

All reads of the issue list pair the visible page with a status breakdown
computed over the same filter, so counts always agree with what the client
is paging through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from geoalchemy2 import Geography
from geoalchemy2.elements import WKTElement
from geoalchemy2.functions import ST_DWithin, ST_Intersects, ST_MakeEnvelope, ST_MakePoint, ST_SetSRID
from sqlalchemy import and_, cast, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.exceptions import Conflict, NotFound, ValidationError
from civictrack.models.issue import Issue, IssueCategory, IssuePriority, IssueStatus
from civictrack.schemas.issue import IssueResponse, StatusCounts

logger = logging.getLogger(__name__)

SRID = 4326

SORT_FIELDS = {
    "createdAt": Issue.created_at,
    "updatedAt": Issue.updated_at,
    "priority": Issue.priority,
    "status": Issue.status,
    "title": Issue.title,
}
DEFAULT_SORT = "-createdAt"


@dataclass(frozen=True, slots=True)
class GeoRadius:
    """Circle search: centre point and radius in kilometres."""

    latitude: float
    longitude: float
    radius_km: float

    @classmethod
    def parse(cls, raw: str) -> "GeoRadius":
        """Parse ``lat,lng,radiusKm``."""
        lat, lng, radius = _parse_floats(raw, 3, "near")
        _check_range(lat, -90, 90, "near")
        _check_range(lng, -180, 180, "near")
        if radius <= 0:
            raise ValidationError("Radius must be positive", field="near")
        return cls(latitude=lat, longitude=lng, radius_km=radius)


@dataclass(frozen=True, slots=True)
class BoundingBox:
    min_longitude: float
    min_latitude: float
    max_longitude: float
    max_latitude: float

    @classmethod
    def parse(cls, raw: str) -> "BoundingBox":
        """Parse ``lng1,lat1,lng2,lat2`` (corners may come in any order)."""
        lng1, lat1, lng2, lat2 = _parse_floats(raw, 4, "bbox")
        for lat in (lat1, lat2):
            _check_range(lat, -90, 90, "bbox")
        for lng in (lng1, lng2):
            _check_range(lng, -180, 180, "bbox")
        return cls(
            min_longitude=min(lng1, lng2),
            min_latitude=min(lat1, lat2),
            max_longitude=max(lng1, lng2),
            max_latitude=max(lat1, lat2),
        )


def _parse_floats(raw: str, expected: int, field_name: str) -> List[float]:
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != expected:
        raise ValidationError(f"Expected {expected} comma separated numbers", field=field_name)
    try:
        return [float(part) for part in parts]
    except ValueError:
        raise ValidationError("Coordinates must be numeric", field=field_name)


def _check_range(value: float, low: float, high: float, field_name: str) -> None:
    if not low <= value <= high:
        raise ValidationError(f"{value} is outside [{low}, {high}]", field=field_name)


def point_element(latitude: float, longitude: float) -> WKTElement:
    """WKT point in (lng, lat) axis order for the geography column."""
    return WKTElement(f"POINT({longitude} {latitude})", srid=SRID)


@dataclass(slots=True)
class IssueFilter:
    """Predicate over issues; every field is optional and AND-ed."""

    status: Optional[IssueStatus] = None
    category: Optional[IssueCategory] = None
    priority: Optional[IssuePriority] = None
    q: Optional[str] = None
    near: Optional[GeoRadius] = None
    bbox: Optional[BoundingBox] = None
    department_id: Optional[UUID] = None

    def conditions(self) -> List[Any]:
        clauses: List[Any] = []
        if self.status is not None:
            clauses.append(Issue.status == self.status)
        if self.category is not None:
            clauses.append(Issue.category == self.category)
        if self.priority is not None:
            clauses.append(Issue.priority == self.priority)
        if self.department_id is not None:
            clauses.append(Issue.department_id == self.department_id)
        if self.q:
            document = func.to_tsvector(
                "english",
                func.coalesce(Issue.title, "") + " " + func.coalesce(Issue.description, ""),
            )
            clauses.append(document.bool_op("@@")(func.plainto_tsquery("english", self.q)))
        if self.near is not None:
            centre = cast(
                ST_SetSRID(ST_MakePoint(self.near.longitude, self.near.latitude), SRID),
                Geography(srid=SRID),
            )
            clauses.append(ST_DWithin(Issue.location, centre, self.near.radius_km * 1000.0))
        if self.bbox is not None:
            envelope = cast(
                ST_MakeEnvelope(
                    self.bbox.min_longitude,
                    self.bbox.min_latitude,
                    self.bbox.max_longitude,
                    self.bbox.max_latitude,
                    SRID,
                ),
                Geography(srid=SRID),
            )
            clauses.append(ST_Intersects(Issue.location, envelope))
        return clauses


def parse_sort(sort: Optional[str]):
    """Translate ``-createdAt`` style sort keys into an ORDER BY clause."""
    sort = sort or DEFAULT_SORT
    descending = sort.startswith("-")
    key = sort.lstrip("-+")
    column = SORT_FIELDS.get(key)
    if column is None:
        raise ValidationError(
            f"Unsupported sort key {key!r}; use one of {sorted(SORT_FIELDS)}", field="sort"
        )
    return column.desc() if descending else column.asc()


@dataclass(slots=True)
class IssuePage:
    items: List[Issue]
    counts: StatusCounts
    page: int
    limit: int

    @property
    def total(self) -> int:
        return self.counts.total


def build_counts(rows: Iterable[Sequence[Any]]) -> StatusCounts:
    counts = StatusCounts()
    for status, count in rows:
        key = getattr(status, "value", status)
        setattr(counts, key, getattr(counts, key) + int(count))
        counts.total += int(count)
    return counts


def to_wire_format(issue: Issue) -> IssueResponse:
    """Project an issue row into its client representation."""
    return IssueResponse.from_issue(issue)


class IssueRepository:
    """Owner of issue rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, issue: Issue) -> Issue:
        self.db.add(issue)
        await self.db.flush()
        logger.info("Issue %s stored (category=%s)", issue.id, issue.category)
        return issue

    async def get(self, issue_id: UUID) -> Issue:
        """Fresh read of an issue; raises ``NotFound``."""
        stmt = (
            select(Issue)
            .where(Issue.id == issue_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        issue = result.scalar_one_or_none()
        if issue is None:
            raise NotFound("Issue", issue_id)
        return issue

    async def find(
        self,
        issue_filter: IssueFilter,
        sort: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> IssuePage:
        conditions = issue_filter.conditions()
        stmt = (
            select(Issue)
            .where(*conditions)
            .order_by(parse_sort(sort), Issue.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        items = list(result.scalars().all())
        counts = await self.count_by_status(issue_filter)
        return IssuePage(items=items, counts=counts, page=page, limit=limit)

    async def count_by_status(self, issue_filter: IssueFilter) -> StatusCounts:
        stmt = (
            select(Issue.status, func.count(Issue.id))
            .where(*issue_filter.conditions())
            .group_by(Issue.status)
        )
        result = await self.db.execute(stmt)
        return build_counts(result.all())

    async def exists_at(
        self,
        latitude: float,
        longitude: float,
        statuses: Iterable[IssueStatus],
    ) -> bool:
        """True when an issue with one of ``statuses`` sits at exactly these coordinates."""
        stmt = (
            select(Issue.id)
            .where(
                and_(
                    Issue.latitude == latitude,
                    Issue.longitude == longitude,
                    Issue.status.in_(list(statuses)),
                )
            )
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def update(
        self,
        issue_id: UUID,
        values: Dict[str, Any],
        expected_status: IssueStatus,
        expected_version: int,
    ) -> Issue:
        """
        Conditionally apply ``values``.

        The write only lands if the row still has the status and version the
        caller validated against; otherwise another writer got there first
        and ``Conflict`` is raised.
        """
        stmt = (
            update(Issue)
            .where(
                Issue.id == issue_id,
                Issue.status == expected_status,
                Issue.version == expected_version,
            )
            .values(
                **values,
                version=Issue.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(Issue)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        issue = result.scalar_one_or_none()
        if issue is None:
            logger.warning(
                "Conditional update lost on issue %s (expected status=%s version=%s)",
                issue_id,
                expected_status,
                expected_version,
            )
            raise Conflict()
        return issue
