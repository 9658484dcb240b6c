"""Audit log API endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from starlette.responses import Response

from changeflow.core.auth import get_current_tenant, get_current_user
from changeflow.core.database import get_db
from changeflow.schemas.audit_log import (
    AuditCleanupRequest,
    AuditCleanupResponse,
    AuditLogCreate,
    AuditLogPage,
    AuditLogResponse,
    AuditLogSummary,
)
from changeflow.services.audit_export_service import (
    DEFAULT_EXPORT_LIMIT,
    MAX_EXPORT_LIMIT,
    AuditExportService,
    ExportFormat,
)
from changeflow.services.audit_service import AuditService

router = APIRouter()

UNAUTHORIZED = {401: {"description": "Unauthorized"}}


def get_audit_service(db: Session = Depends(get_db)) -> AuditService:
    return AuditService(db)


@router.get(
    "/",
    response_model=AuditLogPage,
    summary="List audit logs",
    responses=UNAUTHORIZED,
)
async def list_audit_logs(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=1000),
    entity_type: str | None = None,
    entity_id: str | None = None,
    user_id: str | None = None,
    action: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    search: str | None = None,
    order_by: str | None = None,
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> AuditLogPage:
    """List audit logs, newest first, with optional filters and free-text search."""
    page = service.get_audit_logs(
        tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
        search=search,
        limit=limit,
        offset=skip,
        order_by=order_by,
    )
    return AuditLogPage(
        items=[AuditLogResponse.model_validate(log) for log in page["items"]],
        total=page["total"],
        limit=page["limit"],
        offset=page["offset"],
    )


@router.post(
    "/",
    response_model=AuditLogResponse,
    status_code=201,
    summary="Record an audit entry",
    responses={**UNAUTHORIZED, 500: {"description": "The entry could not be written"}},
)
async def create_audit_log(
    data: AuditLogCreate,
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
    user_id: str = Depends(get_current_user),
) -> AuditLogResponse:
    audit_log = service.create_audit_log(
        tenant_id=tenant_id,
        action=data.action,
        entity_type=data.entity_type,
        entity_id=data.entity_id,
        user_id=user_id,
        changes=data.changes,
        context=data.context,
    )
    if audit_log is None:
        raise HTTPException(status_code=500, detail="Failed to write audit log")
    return AuditLogResponse.model_validate(audit_log)


@router.get(
    "/summary",
    response_model=AuditLogSummary,
    summary="Summarize audit logs",
    responses=UNAUTHORIZED,
)
async def get_audit_summary(
    entity_type: str | None = None,
    user_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> AuditLogSummary:
    summary = service.get_audit_summary(
        tenant_id,
        entity_type=entity_type,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )
    return AuditLogSummary(**summary)


@router.get(
    "/export",
    summary="Export audit logs as CSV or JSON",
    responses={**UNAUTHORIZED, 400: {"description": "Invalid export limit"}},
)
async def export_audit_logs(
    export_format: ExportFormat = Query(default=ExportFormat.CSV, alias="format"),
    limit: int = Query(default=DEFAULT_EXPORT_LIMIT, ge=1, le=MAX_EXPORT_LIMIT),
    entity_type: str | None = None,
    entity_id: str | None = None,
    user_id: str | None = None,
    action: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_current_tenant),
) -> Response:
    filters: dict[str, Any] = {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user_id": user_id,
        "action": action,
        "start_date": start_date,
        "end_date": end_date,
    }
    try:
        content, count = AuditExportService(db).export(
            tenant_id, export_format, filters=filters, limit=limit
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    media_type = "text/csv" if export_format == ExportFormat.CSV else "application/json"
    return Response(
        content=content,
        media_type=media_type,
        headers={
            "Content-Disposition": f'attachment; filename="audit_logs.{export_format.value}"',
            "X-Total-Count": str(count),
        },
    )


@router.get(
    "/recent/{entity_type}/{entity_id}",
    response_model=list[AuditLogResponse],
    summary="Latest audit entries for an entity",
    responses=UNAUTHORIZED,
)
async def get_recent_audit_logs(
    entity_type: str,
    entity_id: str,
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> list[dict[str, Any]]:
    items = service.get_recent_audit_logs(tenant_id, entity_type, entity_id)
    return [{**item, "tenant_id": str(tenant_id)} for item in items]


@router.post(
    "/cleanup",
    response_model=AuditCleanupResponse,
    summary="Delete audit and activity logs past the retention window",
    responses=UNAUTHORIZED,
)
async def cleanup_audit_logs(
    data: AuditCleanupRequest,
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
    user_id: str = Depends(get_current_user),
) -> AuditCleanupResponse:
    try:
        result = service.cleanup_old_logs(
            data.retention_days,
            tenant_id=tenant_id,
            dry_run=data.dry_run,
            user_id=user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    return AuditCleanupResponse(**result)


@router.get(
    "/{audit_log_id}",
    response_model=AuditLogResponse,
    summary="Get audit log",
    responses={**UNAUTHORIZED, 404: {"description": "Audit log not found"}},
)
async def get_audit_log(
    audit_log_id: UUID,
    service: AuditService = Depends(get_audit_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> AuditLogResponse:
    audit_log = service.get_audit_log(audit_log_id, tenant_id)
    if audit_log is None:
        raise HTTPException(status_code=404, detail="Audit log not found")
    return AuditLogResponse.model_validate(audit_log)
