from typing import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from pki_manager.config import LifecycleConfig, Settings, settings
from pki_manager.custody.base import KeyCustodyClient
from pki_manager.custody.kmip import KMIPCustodyClient
from pki_manager.custody.local import LocalKeyCustody
from pki_manager.database import get_db
from pki_manager.services.audit_service import AuditService
from pki_manager.services.lifecycle import LifecycleStateMachine


def build_custody_client(db: Session, source: Settings) -> KeyCustodyClient:
    if source.CUSTODY_BACKEND == "kmip":
        return KMIPCustodyClient(
            source.KMS_URL,
            api_key=source.KMS_API_KEY,
            timeout=source.KMS_TIMEOUT_SECONDS,
            retry_attempts=source.KMS_RETRY_ATTEMPTS,
            retry_delay=source.KMS_RETRY_DELAY_SECONDS,
        )
    return LocalKeyCustody(db)


async def get_custody(db: Session = Depends(get_db)) -> AsyncIterator[KeyCustodyClient]:
    custody = build_custody_client(db, settings)
    try:
        yield custody
    finally:
        await custody.close()


def get_audit(request: Request, db: Session = Depends(get_db)) -> AuditService:
    client_ip = request.client.host if request.client else None
    return AuditService(db, enabled=settings.AUDIT_ENABLED, ip_address=client_ip)


def get_lifecycle(
    db: Session = Depends(get_db),
    custody: KeyCustodyClient = Depends(get_custody),
    audit: AuditService = Depends(get_audit),
) -> LifecycleStateMachine:
    return LifecycleStateMachine(db, custody, LifecycleConfig.from_settings(settings), audit)
