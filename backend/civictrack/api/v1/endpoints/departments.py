"""
Department administration endpoints.

Staff membership is stored on the user (``users.department_id``); these
routes never touch issue state or the department KPI counters.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.api.v1.deps import get_issue_repository
from civictrack.core.config import settings
from civictrack.core.database import get_db
from civictrack.core.exceptions import NotFound, ValidationError
from civictrack.core.security import require_role
from civictrack.models.department import Department
from civictrack.models.issue import IssueStatus
from civictrack.models.user import User, UserRole
from civictrack.schemas.department import (
    DepartmentCreate,
    DepartmentDetail,
    DepartmentResponse,
    DepartmentUpdate,
    StaffMember,
)
from civictrack.schemas.issue import IssueListResponse
from civictrack.services.issue_repository import (
    DEFAULT_SORT,
    IssueFilter,
    IssueRepository,
    to_wire_format,
)

router = APIRouter()


async def _get_department(db: AsyncSession, department_id: UUID) -> Department:
    department = await db.get(Department, department_id)
    if department is None:
        raise NotFound("Department", department_id)
    return department


async def _check_head(db: AsyncSession, head_id: Optional[UUID]) -> None:
    if head_id is None:
        return
    if await db.get(User, head_id) is None:
        raise NotFound("User", head_id)


@router.post("", response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
async def create_department(
    payload: DepartmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    stmt = select(Department.id).where(
        or_(Department.name == payload.name, Department.code == payload.code)
    )
    if (await db.execute(stmt)).first() is not None:
        raise ValidationError("Department name or code already exists", field="name")
    await _check_head(db, payload.head_id)

    department = Department(
        name=payload.name,
        code=payload.code,
        description=payload.description,
        categories=[category.value for category in payload.categories],
        head_id=payload.head_id,
    )
    db.add(department)
    await db.commit()
    await db.refresh(department)
    return department


@router.get("", response_model=List[DepartmentResponse])
async def list_departments(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    result = await db.execute(select(Department).order_by(Department.name))
    return result.scalars().all()


@router.get("/{department_id}", response_model=DepartmentDetail)
async def get_department(
    department_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN, UserRole.STAFF)),
):
    """Department with its staff list."""
    department = await _get_department(db, department_id)
    result = await db.execute(
        select(User).where(User.department_id == department_id).order_by(User.name)
    )
    staff = [StaffMember.model_validate(user) for user in result.scalars().all()]
    return DepartmentDetail(
        **DepartmentResponse.model_validate(department).model_dump(),
        staff=staff,
    )


@router.put("/{department_id}", response_model=DepartmentResponse)
async def update_department(
    department_id: UUID,
    payload: DepartmentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    department = await _get_department(db, department_id)
    changes = payload.model_dump(exclude_unset=True)
    if "head_id" in changes:
        await _check_head(db, changes["head_id"])
    if "categories" in changes and changes["categories"] is not None:
        changes["categories"] = [category.value for category in changes["categories"]]
    for field, value in changes.items():
        setattr(department, field, value)
    await db.commit()
    await db.refresh(department)
    return department


@router.delete("/{department_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_department(
    department_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    department = await _get_department(db, department_id)
    await db.delete(department)
    await db.commit()


@router.put("/{department_id}/assign-staff/{staff_id}", response_model=StaffMember)
async def assign_staff(
    department_id: UUID,
    staff_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    await _get_department(db, department_id)
    staff = await db.get(User, staff_id)
    if staff is None or staff.role != UserRole.STAFF:
        raise ValidationError("Invalid staff user", field="staff_id")
    if staff.department_id == department_id:
        raise ValidationError("Staff already assigned", field="staff_id")
    staff.department_id = department_id
    await db.commit()
    return staff


@router.put("/{department_id}/remove-staff/{staff_id}", response_model=StaffMember)
async def remove_staff(
    department_id: UUID,
    staff_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    await _get_department(db, department_id)
    staff = await db.get(User, staff_id)
    if staff is None or staff.department_id != department_id:
        raise NotFound("Staff member", staff_id)
    staff.department_id = None
    await db.commit()
    return staff


@router.get("/{department_id}/issues", response_model=IssueListResponse)
async def department_issues(
    department_id: UUID,
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.ISSUE_PAGE_SIZE_DEFAULT, ge=1, le=settings.ISSUE_PAGE_SIZE_MAX),
    sort: str = Query(DEFAULT_SORT),
    db: AsyncSession = Depends(get_db),
    issues: IssueRepository = Depends(get_issue_repository),
    current_user: User = Depends(require_role(UserRole.ADMIN, UserRole.STAFF)),
):
    await _get_department(db, department_id)
    result = await issues.find(
        IssueFilter(status=status_filter, department_id=department_id),
        sort=sort,
        page=page,
        limit=limit,
    )
    return IssueListResponse(
        issues=[to_wire_format(issue) for issue in result.items],
        counts=result.counts,
        page=result.page,
        limit=result.limit,
    )
