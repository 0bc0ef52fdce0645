"""Tests for issue filters, sorting and status counts."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from civictrack.core.exceptions import Conflict, NotFound, ValidationError
from civictrack.models.issue import Issue, IssueCategory, IssueStatus
from civictrack.services.issue_repository import (
    BoundingBox,
    GeoRadius,
    IssueFilter,
    IssueRepository,
    build_counts,
    parse_sort,
    point_element,
    to_wire_format,
)
from tests.fakes import make_issue, make_user


def compile_sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestGeoRadius:
    def test_parse(self):
        radius = GeoRadius.parse("28.61, 77.21, 2.5")
        assert (radius.latitude, radius.longitude, radius.radius_km) == (28.61, 77.21, 2.5)

    @pytest.mark.parametrize("raw", ["28.61,77.21", "a,b,c", "95,77,1", "28,77,0"])
    def test_rejects_malformed(self, raw):
        with pytest.raises(ValidationError) as exc:
            GeoRadius.parse(raw)
        assert exc.value.field == "near"


class TestBoundingBox:
    def test_parse_normalizes_corners(self):
        box = BoundingBox.parse("77.3,28.7,77.1,28.5")
        assert box == BoundingBox(77.1, 28.5, 77.3, 28.7)

    def test_rejects_out_of_range(self):
        with pytest.raises(ValidationError):
            BoundingBox.parse("77.1,28.5,181,28.7")


def test_point_element_uses_lng_lat_order():
    point = point_element(28.61, 77.21)
    assert point.data == "POINT(77.21 28.61)"
    assert point.srid == 4326


class TestIssueFilter:
    def test_empty_filter_has_no_conditions(self):
        assert IssueFilter().conditions() == []

    def test_combined_filter_sql(self):
        issue_filter = IssueFilter(
            status=IssueStatus.PENDING,
            category=IssueCategory.WATER,
            q="burst pipe",
            near=GeoRadius(28.61, 77.21, 2.0),
            bbox=BoundingBox(77.1, 28.5, 77.3, 28.7),
        )
        sql = compile_sql(select(Issue.id).where(*issue_filter.conditions()))

        assert "issues.status =" in sql
        assert "issues.category =" in sql
        assert "plainto_tsquery" in sql
        assert "ST_DWithin(issues.location" in sql
        assert "ST_MakeEnvelope" in sql
        assert "ST_Intersects(issues.location" in sql

    def test_radius_is_metres(self):
        stmt = select(Issue.id).where(*IssueFilter(near=GeoRadius(0, 0, 1.5)).conditions())
        compiled = stmt.compile(dialect=postgresql.dialect())
        assert 1500.0 in compiled.params.values()


class TestParseSort:
    def test_default_is_newest_first(self):
        assert "issues.created_at DESC" in str(parse_sort(None).compile(dialect=postgresql.dialect()))

    def test_ascending(self):
        assert "issues.title ASC" in str(parse_sort("title").compile(dialect=postgresql.dialect()))

    def test_unknown_key(self):
        with pytest.raises(ValidationError) as exc:
            parse_sort("-password")
        assert exc.value.field == "sort"


def test_build_counts_totals():
    counts = build_counts([(IssueStatus.PENDING, 3), ("RESOLVED", 2)])
    assert counts.PENDING == 3
    assert counts.RESOLVED == 2
    assert counts.ACKNOWLEDGED == 0
    assert counts.total == 5


def test_wire_format_has_location_and_ids():
    owner = make_user()
    issue = make_issue(owner, media=[{"type": "IMAGE", "id": "issues/a", "url": "https://m/a"}])
    wire = to_wire_format(issue).model_dump(mode="json")

    assert wire["location"] == {"latitude": 28.61, "longitude": 77.21}
    assert wire["created_by_id"] == str(owner.id)
    assert wire["media"][0]["type"] == "IMAGE"
    assert "created_by" not in wire


@pytest.mark.asyncio
async def test_update_is_conditional_on_status_and_version():
    db = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    db.execute.return_value = result

    with pytest.raises(Conflict):
        await IssueRepository(db).update(
            uuid.uuid4(), {"status": IssueStatus.ACKNOWLEDGED}, IssueStatus.PENDING, 3
        )

    sql = compile_sql(db.execute.await_args.args[0])
    assert "WHERE issues.id =" in sql
    assert "issues.status =" in sql
    assert "issues.version =" in sql
    assert "version=(issues.version +" in sql
    assert "RETURNING" in sql


@pytest.mark.asyncio
async def test_get_missing_issue():
    db = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    db.execute.return_value = result

    with pytest.raises(NotFound):
        await IssueRepository(db).get(uuid.uuid4())
