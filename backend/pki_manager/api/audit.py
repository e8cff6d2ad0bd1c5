from typing import Optional

from fastapi import APIRouter, Depends, Query

from pki_manager.auth import get_current_user
from pki_manager.api.deps import get_audit
from pki_manager.schemas.common import success_response
from pki_manager.services.audit_service import AuditService

router = APIRouter(prefix="/api/audit", tags=["Audit"], dependencies=[Depends(get_current_user)])


@router.get("/list", summary="List audit records", description="Audit trail, newest first.")
async def list_audit_endpoint(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    operation: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None, pattern="^(success|failure)$"),
    audit: AuditService = Depends(get_audit),
):
    entries, total = audit.list(operation, entity_type, entity_id, status, page, per_page)
    return success_response(
        "Audit records retrieved",
        {
            "entries": [
                {
                    "id": entry.id,
                    "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
                    "operation": entry.operation,
                    "entity_type": entry.entity_type,
                    "entity_id": entry.entity_id,
                    "status": entry.status,
                    "details": entry.details or {},
                    "kms_operation_id": entry.kms_operation_id,
                    "ip_address": entry.ip_address,
                }
                for entry in entries
            ],
            "total": total,
            "page": page,
            "per_page": per_page,
        },
    ).model_dump()
