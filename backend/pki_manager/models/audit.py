from sqlalchemy import JSON, Column, Integer, String, DateTime as SADateTime
from sqlalchemy.sql import func

from pki_manager.database import Base


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(SADateTime, server_default=func.now(), nullable=False, index=True)
    operation = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False, index=True)
    entity_id = Column(String(64), nullable=True, index=True)
    status = Column(String(16), nullable=False, index=True)
    details = Column(JSON, nullable=True)
    kms_operation_id = Column(String(64), nullable=True)
    ip_address = Column(String(64), nullable=True)
