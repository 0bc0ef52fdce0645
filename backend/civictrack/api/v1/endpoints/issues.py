"""
Issue endpoints: reporting, listing, lookup and workflow updates.
"""

import asyncio
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import UUID

import pydantic
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from starlette.datastructures import UploadFile as StarletteUploadFile

from civictrack.api.v1.deps import get_issue_repository, get_issue_workflow
from civictrack.core.config import settings
from civictrack.core.exceptions import ValidationError
from civictrack.core.rate_limiter import limiter
from civictrack.core.security import get_current_user, require_role
from civictrack.models.issue import IssueCategory, IssuePriority, IssueStatus
from civictrack.models.user import User, UserRole
from civictrack.schemas.issue import IssueDraft, IssueListResponse, IssueResponse, IssueUpdate
from civictrack.services.issue_repository import (
    DEFAULT_SORT,
    BoundingBox,
    GeoRadius,
    IssueFilter,
    IssueRepository,
    to_wire_format,
)
from civictrack.services.issue_workflow import IssueWorkflowService
from civictrack.services.media_store import StagedUpload

logger = logging.getLogger(__name__)

router = APIRouter()

SPOOL_CHUNK_BYTES = 1024 * 1024


def _as_validation_error(exc: pydantic.ValidationError) -> ValidationError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return ValidationError(first.get("msg", "Invalid input"), field=field)


def _spool(upload: StarletteUploadFile, max_bytes: int) -> StagedUpload:
    """Copy an upload to a temp file, stopping as soon as it passes ``max_bytes``."""
    suffix = os.path.splitext(upload.filename or "")[1]
    written = 0
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as target:
        path = target.name
        while written <= max_bytes:
            chunk = upload.file.read(SPOOL_CHUNK_BYTES)
            if not chunk:
                break
            target.write(chunk)
            written += len(chunk)
    if written > max_bytes:
        os.unlink(path)
        raise ValidationError(f"{upload.filename} exceeds {max_bytes} bytes", field="media")
    return StagedUpload(
        path=path,
        filename=upload.filename or os.path.basename(path),
        content_type=upload.content_type,
    )


@asynccontextmanager
async def staged_uploads(files: List[StarletteUploadFile]) -> AsyncIterator[List[StagedUpload]]:
    """Spool request files to disk for the media store; removed on exit."""
    staged: List[StagedUpload] = []
    try:
        for upload in files:
            if not upload.filename:
                continue
            staged.append(await asyncio.to_thread(_spool, upload, settings.MEDIA_MAX_BYTES))
        yield staged
    finally:
        for item in staged:
            try:
                os.unlink(item.path)
            except FileNotFoundError:
                pass


@router.post("", response_model=IssueResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.ISSUE_CREATE_RATE_LIMIT)
async def create_issue(
    request: Request,
    title: str = Form(...),
    description: str = Form(...),
    category: IssueCategory = Form(...),
    address: str = Form(...),
    latitude: float = Form(...),
    longitude: float = Form(...),
    media: Optional[List[UploadFile]] = File(None),
    workflow: IssueWorkflowService = Depends(get_issue_workflow),
    current_user: User = Depends(require_role(UserRole.CITIZEN)),
):
    """Report a new issue (multipart, up to ``MAX_MEDIA_FILES`` files)."""
    try:
        draft = IssueDraft(
            title=title,
            description=description,
            category=category,
            address=address,
            latitude=latitude,
            longitude=longitude,
        )
    except pydantic.ValidationError as exc:
        raise _as_validation_error(exc) from exc

    files = media or []
    if len(files) > settings.MAX_MEDIA_FILES:
        raise ValidationError(
            f"At most {settings.MAX_MEDIA_FILES} media files are allowed", field="media"
        )
    async with staged_uploads(files) as uploads:
        issue = await workflow.create_issue(draft, uploads, current_user)
    return to_wire_format(issue)


@router.get("", response_model=IssueListResponse)
async def list_issues(
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    category: Optional[IssueCategory] = Query(None),
    priority: Optional[IssuePriority] = Query(None),
    q: Optional[str] = Query(None, max_length=200),
    near: Optional[str] = Query(None, description="lat,lng,radiusKm"),
    bbox: Optional[str] = Query(None, description="lng1,lat1,lng2,lat2"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.ISSUE_PAGE_SIZE_DEFAULT, ge=1, le=settings.ISSUE_PAGE_SIZE_MAX),
    sort: str = Query(DEFAULT_SORT),
    issues: IssueRepository = Depends(get_issue_repository),
):
    """Filtered, paginated issue list with per-status counts over the same filter."""
    issue_filter = IssueFilter(
        status=status_filter,
        category=category,
        priority=priority,
        q=q,
        near=GeoRadius.parse(near) if near else None,
        bbox=BoundingBox.parse(bbox) if bbox else None,
    )
    result = await issues.find(issue_filter, sort=sort, page=page, limit=limit)
    return IssueListResponse(
        issues=[to_wire_format(issue) for issue in result.items],
        counts=result.counts,
        page=result.page,
        limit=result.limit,
    )


@router.get("/{issue_id}", response_model=IssueResponse)
async def get_issue(
    issue_id: UUID,
    issues: IssueRepository = Depends(get_issue_repository),
):
    return to_wire_format(await issues.get(issue_id))


async def _read_update(request: Request) -> tuple[Dict[str, Any], List[StarletteUploadFile]]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        data: Dict[str, Any] = {}
        files: List[StarletteUploadFile] = []
        for key, value in form.multi_items():
            if isinstance(value, StarletteUploadFile):
                if key == "media":
                    files.append(value)
                continue
            data[key] = value
        return data, files

    body = await request.body()
    if not body:
        return {}, []
    try:
        data = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data, []


@router.put("/{issue_id}", response_model=IssueResponse)
async def update_issue(
    issue_id: UUID,
    request: Request,
    workflow: IssueWorkflowService = Depends(get_issue_workflow),
    current_user: User = Depends(get_current_user),
):
    """
    Update an issue (JSON, or multipart when replacing media).

    Citizens may edit their own pending reports; staff and admins drive the
    status workflow.
    """
    try:
        data, files = await _read_update(request)
        changes = IssueUpdate.model_validate(data)
        if len(files) > settings.MAX_MEDIA_FILES:
            raise ValidationError(
                f"At most {settings.MAX_MEDIA_FILES} media files are allowed", field="media"
            )
    except pydantic.ValidationError as exc:
        await workflow.check_access(issue_id, current_user)
        raise _as_validation_error(exc) from exc
    except ValidationError:
        # Ownership errors outrank payload errors.
        await workflow.check_access(issue_id, current_user)
        raise

    async with staged_uploads(files) as uploads:
        issue = await workflow.update_issue(issue_id, changes, uploads, current_user)
    return to_wire_format(issue)
