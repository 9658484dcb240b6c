"""Audit log export as CSV or JSON."""

import csv
import io
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from changeflow.models.shared import ensure_utc
from changeflow.repositories.audit_log_repository import AuditLogRepository

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_LIMIT = 1000
MAX_EXPORT_LIMIT = 10000

CSV_COLUMNS = [
    "id",
    "timestamp",
    "tenant_id",
    "user_id",
    "action",
    "entity_type",
    "entity_id",
    "changes",
    "context",
]


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


def _fmt_dt(dt: datetime | None) -> str:
    if dt is None:
        return ""
    return ensure_utc(dt).isoformat()


class AuditExportService:
    def __init__(self, db: Session):
        self.repo = AuditLogRepository(db)

    def export(
        self,
        tenant_id: UUID,
        export_format: ExportFormat | str = ExportFormat.CSV,
        filters: dict[str, Any] | None = None,
        limit: int = DEFAULT_EXPORT_LIMIT,
    ) -> tuple[str, int]:
        """Render the newest ``limit`` matching audit logs.

        Returns the document and the number of exported rows.
        """
        export_format = ExportFormat(export_format)
        if limit < 1 or limit > MAX_EXPORT_LIMIT:
            raise ValueError(f"Export limit must be between 1 and {MAX_EXPORT_LIMIT}")

        filters = {**(filters or {}), "tenant_id": tenant_id}
        logs = self.repo.get_all(skip=0, limit=limit, **filters)
        rows = [
            {
                "id": str(log.id),
                "timestamp": _fmt_dt(log.created_at),  # type: ignore[arg-type]
                "tenant_id": str(log.tenant_id),
                "user_id": log.user_id,
                "action": log.action,
                "entity_type": log.entity_type,
                "entity_id": log.entity_id,
                "changes": log.changes,
                "context": log.context,
            }
            for log in logs
        ]
        logger.info(
            "Exporting %d audit logs for tenant %s as %s", len(rows), tenant_id, export_format.value
        )

        if export_format == ExportFormat.JSON:
            return json.dumps(rows, default=str), len(rows)

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_COLUMNS)
        for row in rows:
            writer.writerow(
                [
                    row["id"],
                    row["timestamp"],
                    row["tenant_id"],
                    row["user_id"] or "",
                    row["action"],
                    row["entity_type"],
                    row["entity_id"] or "",
                    json.dumps(row["changes"], default=str) if row["changes"] is not None else "",
                    json.dumps(row["context"], default=str) if row["context"] is not None else "",
                ]
            )
        return output.getvalue(), len(rows)
