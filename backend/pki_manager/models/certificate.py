from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column, Integer, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from pki_manager.crypto.validation import CertificateType
from pki_manager.database import Base
from pki_manager.models.authority import utcnow


class CertificateStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class Certificate(Base):
    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True, index=True)
    ca_id = Column(Integer, ForeignKey("certificate_authorities.id"), nullable=False, index=True)
    certificate_type = Column(SQLEnum(CertificateType), nullable=False, index=True)
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
    status = Column(SQLEnum(CertificateStatus), default=CertificateStatus.ACTIVE, nullable=False, index=True)
    revocation_date = Column(DateTime, nullable=True)
    revocation_reason = Column(String(32), nullable=True)
    revocation_details = Column(Text, nullable=True)
    san_dns = Column(JSON, nullable=False, default=list)
    san_ip = Column(JSON, nullable=False, default=list)
    san_email = Column(JSON, nullable=False, default=list)
    renewed_from_id = Column(
        Integer, ForeignKey("certificates.id", ondelete="SET NULL"), nullable=True, index=True
    )
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    ca = relationship("CertificateAuthority", back_populates="certificates")
    renewed_from = relationship("Certificate", remote_side=[id])

    def is_expired(self, now: datetime = None) -> bool:
        return (now or utcnow()) > self.not_after

    def effective_status(self, now: datetime = None) -> CertificateStatus:
        if self.status == CertificateStatus.REVOKED:
            return CertificateStatus.REVOKED
        if self.is_expired(now):
            return CertificateStatus.EXPIRED
        return CertificateStatus.ACTIVE
