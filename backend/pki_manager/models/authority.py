from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Column, Integer, String, Text, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from pki_manager.database import Base


class CAStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CertificateAuthority(Base):
    __tablename__ = "certificate_authorities"

    id = Column(Integer, primary_key=True, index=True)
    subject_dn = Column(String(1024), nullable=False)
    subject_cn = Column(String(255), nullable=False, index=True)
    serial_number = Column(String(64), unique=True, nullable=False, index=True)
    key_algorithm = Column(String(16), nullable=False)
    kms_key_id = Column(String(128), nullable=False)
    kms_public_key_id = Column(String(128), nullable=True)
    kms_certificate_id = Column(String(128), nullable=False)
    certificate_pem = Column(Text, nullable=False)
    not_before = Column(DateTime, nullable=False)
    not_after = Column(DateTime, nullable=False, index=True)
    # Only active/revoked are stored; expired is derived from not_after
    status = Column(SQLEnum(CAStatus), default=CAStatus.ACTIVE, nullable=False, index=True)
    revocation_date = Column(DateTime, nullable=True)
    revocation_reason = Column(String(32), nullable=True)
    revocation_details = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    certificates = relationship("Certificate", back_populates="ca")
    crls = relationship("CRL", back_populates="ca", order_by="CRL.crl_number")

    def is_expired(self, now: datetime = None) -> bool:
        return (now or utcnow()) > self.not_after

    def effective_status(self, now: datetime = None) -> CAStatus:
        if self.status == CAStatus.REVOKED:
            return CAStatus.REVOKED
        if self.is_expired(now):
            return CAStatus.EXPIRED
        return CAStatus.ACTIVE
