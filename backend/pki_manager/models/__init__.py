from pki_manager.models.authority import CertificateAuthority, CAStatus
from pki_manager.models.certificate import Certificate, CertificateStatus
from pki_manager.models.crl import CRL
from pki_manager.models.audit import AuditLog
from pki_manager.models.custody import CustodyKey, CustodyCertificate

__all__ = [
    "CertificateAuthority",
    "CAStatus",
    "Certificate",
    "CertificateStatus",
    "CRL",
    "AuditLog",
    "CustodyKey",
    "CustodyCertificate",
]
