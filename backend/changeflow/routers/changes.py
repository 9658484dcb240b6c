"""Changeset API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from changeflow.core.auth import get_current_tenant, get_current_user
from changeflow.core.database import get_db
from changeflow.models.change_set import ChangeSetStatus
from changeflow.schemas.change_set import (
    ApproveChangeRequest,
    ChangeConflictResponse,
    ChangeHistoryResponse,
    ChangeSetCreate,
    ChangeSetResponse,
    ProcessChangeRequest,
    ProcessChangeResponse,
    RejectChangeRequest,
    ResolveConflictRequest,
    VersionHistoryResponse,
)
from changeflow.services.change_service import ChangeService
from changeflow.services.errors import ChangeConflictError, ChangeValidationError

router = APIRouter()

CHANGE_ERRORS = {
    400: {"description": "Invalid state transition"},
    401: {"description": "Unauthorized"},
    404: {"description": "Changeset or entity not found"},
}


def get_change_service(db: Session = Depends(get_db)) -> ChangeService:
    return ChangeService(db)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ChangeConflictError):
        return HTTPException(status_code=409, detail=exc.to_dict())
    if isinstance(exc, ChangeValidationError):
        return HTTPException(status_code=422, detail={"errors": exc.errors})
    detail = str(exc)
    if "not found" in detail:
        return HTTPException(status_code=404, detail=detail)
    return HTTPException(status_code=400, detail=detail)


@router.post(
    "/",
    response_model=ChangeSetResponse,
    status_code=201,
    summary="Propose a change",
    responses=CHANGE_ERRORS,
)
async def create_change_set(
    data: ChangeSetCreate,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
    user_id: str = Depends(get_current_user),
) -> ChangeSetResponse:
    try:
        change_set = service.create_change_set(
            entity_type=data.entity_type,
            entity_id=data.entity_id,
            changes=data.changes,
            user_id=user_id,
            tenant_id=tenant_id,
            level=data.level,
            metadata=data.metadata,
        )
    except ValueError as e:
        raise _http_error(e) from None
    return ChangeSetResponse.model_validate(change_set)


@router.get(
    "/",
    response_model=list[ChangeSetResponse],
    summary="List changesets",
    responses={401: {"description": "Unauthorized"}},
)
async def list_change_sets(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    status: ChangeSetStatus | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> list[ChangeSetResponse]:
    page = service.list_change_sets(
        tenant_id,
        status=status.value if status else None,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=limit,
        offset=skip,
    )
    response.headers["X-Total-Count"] = str(page["total"])
    return [ChangeSetResponse.model_validate(cs) for cs in page["items"]]


@router.post(
    "/process",
    response_model=ProcessChangeResponse,
    summary="Apply a change",
    responses={
        **CHANGE_ERRORS,
        409: {"description": "Conflicts with a concurrent edit or stale data"},
        422: {"description": "Field validation failed"},
    },
)
async def process_change(
    data: ProcessChangeRequest,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
    user_id: str = Depends(get_current_user),
) -> ProcessChangeResponse:
    try:
        result = service.process_change(
            change_set_id=data.change_set_id,
            entity_type=data.entity_type,
            entity_id=data.entity_id,
            changes=data.changes,
            user_id=user_id,
            tenant_id=tenant_id,
        )
    except (ValueError, ChangeConflictError, ChangeValidationError) as e:
        raise _http_error(e) from None
    return ProcessChangeResponse(
        success=result.success,
        data=result.data,
        version_number=int(result.version.version_number),
    )


@router.get(
    "/history/{entity_type}/{entity_id}",
    response_model=ChangeHistoryResponse,
    summary="Get the applied change history of an entity",
    responses={401: {"description": "Unauthorized"}},
)
async def get_change_history(
    entity_type: str,
    entity_id: str,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=500),
    include_rollbacks: bool = False,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> ChangeHistoryResponse:
    history = service.get_change_history(
        entity_type=entity_type,
        entity_id=entity_id,
        tenant_id=tenant_id,
        limit=limit,
        offset=skip,
        include_rollbacks=include_rollbacks,
    )
    return ChangeHistoryResponse.model_validate(
        {
            "total": history["total"],
            "changes": [
                {
                    "change": ChangeSetResponse.model_validate(entry["change"]),
                    "diff": entry["diff"],
                    "version": (
                        VersionHistoryResponse.model_validate(entry["version"])
                        if entry["version"] is not None
                        else None
                    ),
                }
                for entry in history["changes"]
            ],
        }
    )


@router.get(
    "/versions/{entity_type}/{entity_id}",
    response_model=list[VersionHistoryResponse],
    summary="List the versions of an entity",
    responses={401: {"description": "Unauthorized"}},
)
async def list_versions(
    entity_type: str,
    entity_id: str,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> list[VersionHistoryResponse]:
    versions = service.get_version_history(
        entity_type, entity_id, tenant_id, limit=limit, offset=skip
    )
    return [VersionHistoryResponse.model_validate(v) for v in versions]


@router.get(
    "/versions/{entity_type}/{entity_id}/{version_number}",
    response_model=VersionHistoryResponse,
    summary="Get one version of an entity",
    responses={401: {"description": "Unauthorized"}, 404: {"description": "Version not found"}},
)
async def get_version(
    entity_type: str,
    entity_id: str,
    version_number: int,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> VersionHistoryResponse:
    version = service.get_version(entity_type, entity_id, version_number, tenant_id)
    if version is None:
        raise HTTPException(status_code=404, detail="Version not found")
    return VersionHistoryResponse.model_validate(version)


@router.post(
    "/conflicts/{conflict_id}/resolve",
    response_model=ChangeSetResponse,
    summary="Resolve a conflict",
    responses={
        **CHANGE_ERRORS,
        409: {"description": "The resolved change conflicts again"},
        422: {"description": "Field validation failed"},
    },
)
async def resolve_conflict(
    conflict_id: UUID,
    data: ResolveConflictRequest,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
    user_id: str = Depends(get_current_user),
) -> ChangeSetResponse:
    try:
        change_set = service.resolve_conflict(
            conflict_id=conflict_id,
            resolution=data.resolution,
            resolved_by=user_id,
            merged_changes=data.merged_changes,
            tenant_id=tenant_id,
        )
    except (ValueError, ChangeConflictError, ChangeValidationError) as e:
        raise _http_error(e) from None
    return ChangeSetResponse.model_validate(change_set)


@router.get(
    "/{change_set_id}",
    response_model=ChangeSetResponse,
    summary="Get changeset",
    responses={401: {"description": "Unauthorized"}, 404: {"description": "Changeset not found"}},
)
async def get_change_set(
    change_set_id: UUID,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> ChangeSetResponse:
    change_set = service.get_change_set(change_set_id, tenant_id)
    if change_set is None:
        raise HTTPException(status_code=404, detail="ChangeSet not found")
    return ChangeSetResponse.model_validate(change_set)


@router.get(
    "/{change_set_id}/conflicts",
    response_model=list[ChangeConflictResponse],
    summary="List the conflicts of a changeset",
    responses={401: {"description": "Unauthorized"}, 404: {"description": "Changeset not found"}},
)
async def list_conflicts(
    change_set_id: UUID,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> list[ChangeConflictResponse]:
    if service.get_change_set(change_set_id, tenant_id) is None:
        raise HTTPException(status_code=404, detail="ChangeSet not found")
    return [ChangeConflictResponse.model_validate(c) for c in service.get_conflicts(change_set_id)]


@router.post(
    "/{change_set_id}/commit",
    response_model=ChangeSetResponse,
    summary="Commit a processed changeset",
    responses=CHANGE_ERRORS,
)
async def commit_change(
    change_set_id: UUID,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
) -> ChangeSetResponse:
    try:
        change_set = service.commit_change(change_set_id, tenant_id)
    except ValueError as e:
        raise _http_error(e) from None
    return ChangeSetResponse.model_validate(change_set)


@router.post(
    "/{change_set_id}/approve",
    response_model=ChangeSetResponse,
    summary="Approve a changeset",
    responses={
        **CHANGE_ERRORS,
        409: {"description": "Immediate apply hit a conflict"},
        422: {"description": "Field validation failed"},
    },
)
async def approve_change(
    change_set_id: UUID,
    data: ApproveChangeRequest,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
    user_id: str = Depends(get_current_user),
) -> ChangeSetResponse:
    try:
        change_set = service.approve_change(
            change_set_id=change_set_id,
            approved_by=user_id,
            apply_immediately=data.apply_immediately,
            tenant_id=tenant_id,
        )
    except (ValueError, ChangeConflictError, ChangeValidationError) as e:
        raise _http_error(e) from None
    return ChangeSetResponse.model_validate(change_set)


@router.post(
    "/{change_set_id}/reject",
    response_model=ChangeSetResponse,
    summary="Reject a changeset",
    responses=CHANGE_ERRORS,
)
async def reject_change(
    change_set_id: UUID,
    data: RejectChangeRequest,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
    user_id: str = Depends(get_current_user),
) -> ChangeSetResponse:
    try:
        change_set = service.reject_change(
            change_set_id=change_set_id,
            rejected_by=user_id,
            reason=data.reason,
            tenant_id=tenant_id,
        )
    except ValueError as e:
        raise _http_error(e) from None
    return ChangeSetResponse.model_validate(change_set)


@router.post(
    "/{change_set_id}/rollback",
    response_model=ChangeSetResponse,
    status_code=201,
    summary="Roll back an applied changeset",
    responses={
        **CHANGE_ERRORS,
        409: {"description": "The rollback conflicts with a concurrent edit"},
        422: {"description": "The restored values failed validation"},
    },
)
async def rollback_change(
    change_set_id: UUID,
    service: ChangeService = Depends(get_change_service),
    tenant_id: UUID = Depends(get_current_tenant),
    user_id: str = Depends(get_current_user),
) -> ChangeSetResponse:
    try:
        rollback = service.rollback_change(
            change_set_id=change_set_id, user_id=user_id, tenant_id=tenant_id
        )
    except (ValueError, ChangeConflictError, ChangeValidationError) as e:
        raise _http_error(e) from None
    return ChangeSetResponse.model_validate(rollback)
