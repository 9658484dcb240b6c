"""User activity API endpoints."""

from datetime import UTC, date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from changeflow.core.auth import get_current_tenant, get_current_user
from changeflow.core.database import get_db
from changeflow.schemas.audit_log import (
    ActivityStats,
    DailyActivityCount,
    UserActivityCreate,
    UserActivityPage,
    UserActivityResponse,
)
from changeflow.services.audit_service import AuditService

router = APIRouter()


def get_audit_service(db: Session = Depends(get_db)) -> AuditService:
    return AuditService(db)


@router.get(
    "/",
    response_model=UserActivityPage,
    summary="List user activity",
    responses={401: {"description": "Unauthorized"}},
)
async def list_user_activity(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=1000),
    user_id: str | None = None,
    action: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> UserActivityPage:
    page = service.get_user_activity(
        tenant_id,
        user_id=user_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=skip,
    )
    return UserActivityPage(
        items=[UserActivityResponse.model_validate(a) for a in page["items"]],
        total=page["total"],
        limit=page["limit"],
        offset=page["offset"],
    )


@router.post(
    "/",
    response_model=UserActivityResponse,
    status_code=201,
    summary="Record a user action",
    responses={401: {"description": "Unauthorized"}},
)
async def create_user_activity(
    data: UserActivityCreate,
    request: Request,
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
    user_id: str = Depends(get_current_user),
) -> UserActivityResponse:
    """Record an action taken by the calling user, with the request context attached."""
    activity = service.create_user_activity(
        tenant_id=tenant_id,
        user_id=user_id,
        action=data.action,
        metadata=data.metadata,
        method=request.method,
        path=request.url.path,
        params=dict(request.query_params) or None,
        session_id=data.session_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    if activity is None:
        raise HTTPException(status_code=500, detail="Failed to record user activity")
    return UserActivityResponse.model_validate(activity)


@router.get(
    "/stats",
    response_model=ActivityStats,
    summary="Activity statistics",
    responses={401: {"description": "Unauthorized"}},
)
async def get_activity_stats(
    days: int = Query(default=30, ge=1, le=365),
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> ActivityStats:
    return ActivityStats(**service.get_activity_stats(tenant_id, days=days))


@router.get(
    "/daily/{user_id}",
    response_model=DailyActivityCount,
    summary="Actions a user took on one day",
    responses={401: {"description": "Unauthorized"}},
)
async def get_daily_activity_count(
    user_id: str,
    day: date | None = None,
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> DailyActivityCount:
    """Read the cached per-day counter; zero when the cache is unavailable."""
    count = service.get_daily_activity_count(tenant_id, user_id, day)
    return DailyActivityCount(user_id=user_id, day=day or datetime.now(UTC).date(), count=count)
