"""Request identity: which tenant and which user a call acts for.

The gateway in front of this service authenticates the caller and forwards
the resolved identity in headers.
"""

from uuid import UUID

from fastapi import HTTPException, Request

from changeflow.models.shared import DEFAULT_TENANT_ID


def get_current_tenant(request: Request) -> UUID:
    """Tenant from ``X-Tenant-Id``, falling back to the default tenant."""
    tenant_header = request.headers.get("X-Tenant-Id")
    if not tenant_header:
        return DEFAULT_TENANT_ID
    try:
        return UUID(tenant_header)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-Tenant-Id header") from None


def get_current_user(request: Request) -> str:
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return user_id
