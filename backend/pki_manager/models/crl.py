from sqlalchemy import Column, Integer, ForeignKey, LargeBinary, Text, UniqueConstraint, DateTime as SADateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from pki_manager.database import Base


class CRL(Base):
    __tablename__ = "crls"
    __table_args__ = (UniqueConstraint("ca_id", "crl_number", name="uq_crls_ca_number"),)

    id = Column(Integer, primary_key=True, index=True)
    ca_id = Column(Integer, ForeignKey("certificate_authorities.id"), nullable=False, index=True)
    crl_number = Column(Integer, nullable=False, index=True)
    this_update = Column(SADateTime, nullable=False)
    next_update = Column(SADateTime, nullable=False)
    # Empty until the CA key could be used to sign
    crl_pem = Column(Text, nullable=False, default="")
    crl_der = Column(LargeBinary, nullable=True)
    revoked_count = Column(Integer, nullable=False, default=0)
    generated_at = Column(SADateTime, server_default=func.now(), nullable=False, index=True)

    ca = relationship("CertificateAuthority", back_populates="crls")

    @property
    def is_signed(self) -> bool:
        return bool(self.crl_pem) and bool(self.crl_der)
