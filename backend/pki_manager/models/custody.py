from sqlalchemy import JSON, Column, String, Text, LargeBinary, DateTime as SADateTime
from sqlalchemy.sql import func

from pki_manager.database import Base


class CustodyKey(Base):
    """Key held by the local custodian; private halves are stored encrypted."""

    __tablename__ = "custody_keys"

    id = Column(String(36), primary_key=True)
    object_type = Column(String(16), nullable=False)  # private | public
    algorithm = Column(String(16), nullable=False)
    linked_key_id = Column(String(36), nullable=True, index=True)
    public_key_pem = Column(Text, nullable=True)
    encrypted_pem = Column(Text, nullable=True)
    state = Column(String(16), nullable=False, default="active", index=True)
    revocation_reason = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(SADateTime, server_default=func.now(), nullable=False)


class CustodyCertificate(Base):
    __tablename__ = "custody_certificates"

    id = Column(String(36), primary_key=True)
    certificate_der = Column(LargeBinary, nullable=False)
    private_key_id = Column(String(36), nullable=True, index=True)
    public_key_id = Column(String(36), nullable=True, index=True)
    issuer_certificate_id = Column(String(36), nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(SADateTime, server_default=func.now(), nullable=False)
