import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from pki_manager.models.audit import AuditLog

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


class AuditService:
    """Append-only audit trail.

    ``record`` never raises: a failed audit write is logged and dropped so it
    cannot abort the operation being audited.
    """

    def __init__(self, db: Session, enabled: bool = True, ip_address: Optional[str] = None):
        self.db = db
        self.enabled = enabled
        self.ip_address = ip_address

    def record(
        self,
        operation: str,
        entity_type: str,
        entity_id=None,
        status: str = STATUS_SUCCESS,
        details: Optional[Dict[str, Any]] = None,
        kms_operation_id: Optional[str] = None,
    ) -> Optional[AuditLog]:
        if not self.enabled:
            return None
        try:
            entry = AuditLog(
                operation=operation,
                entity_type=entity_type,
                entity_id=None if entity_id is None else str(entity_id),
                status=status,
                details=details or {},
                kms_operation_id=kms_operation_id,
                ip_address=self.ip_address,
            )
            self.db.add(entry)
            self.db.commit()
            return entry
        except Exception:
            logger.exception("Failed to write audit record operation=%s entity=%s", operation, entity_id)
            self.db.rollback()
            return None

    def list(
        self,
        operation: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[AuditLog], int]:
        query = self.db.query(AuditLog)
        if operation:
            query = query.filter(AuditLog.operation == operation)
        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id:
            query = query.filter(AuditLog.entity_id == str(entity_id))
        if status:
            query = query.filter(AuditLog.status == status)

        total = query.count()
        items = (
            query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return items, total
