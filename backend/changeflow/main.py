import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import Response

from changeflow.core.config import settings
from changeflow.entities import get_entity_registry
from changeflow.routers import audit_logs, changes, user_activity

logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {
        "name": "Changes",
        "description": "Propose, apply, approve, reject and roll back entity changesets.",
    },
    {"name": "Audit Logs", "description": "Query, export and prune the audit trail."},
    {"name": "User Activity", "description": "Record and analyse what users did."},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Fail fast if a registered entity is missing an expected column
    registry = get_entity_registry()
    registry.validate()
    logger.info("Registered entity types: %s", ", ".join(registry.entity_types))
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Changeset-based optimistic concurrency and audit trail service. "
        "Every entity mutation is recorded, checked for conflicts, versioned "
        "and audited, and can be rolled back."
    ),
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count"],
)


@app.middleware("http")
async def options_handler(request: Request, call_next):  # type: ignore[no-untyped-def]
    if request.method == "OPTIONS":
        origin = request.headers.get("origin", "*")
        return Response(
            status_code=200,
            headers={
                "Access-Control-Allow-Origin": origin,
                "Access-Control-Allow-Methods": "*",
                "Access-Control-Allow-Headers": "*",
                "Access-Control-Allow-Credentials": "true",
                "Access-Control-Max-Age": "86400",
            },
        )
    return await call_next(request)


app.include_router(changes.router, prefix="/v1/changes", tags=["Changes"])
app.include_router(audit_logs.router, prefix="/v1/audit_logs", tags=["Audit Logs"])
app.include_router(user_activity.router, prefix="/v1/user_activity", tags=["User Activity"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "status": "running",
    }
