from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from pki_manager.crypto.crl import RevocationReason
from pki_manager.crypto.extensions import SubjectAltName
from pki_manager.crypto.keys import DEFAULT_CERTIFICATE_KEY_ALGORITHM, KeyAlgorithm
from pki_manager.crypto.validation import CertificateType
from pki_manager.schemas.subject import SubjectInput


class SANInput(BaseModel):
    san_dns: Optional[List[str]] = None
    san_ip: Optional[List[str]] = None
    san_email: Optional[List[str]] = None

    def subject_alt_name(self) -> Optional[SubjectAltName]:
        if self.san_dns is None and self.san_ip is None and self.san_email is None:
            return None
        return SubjectAltName(
            dns=tuple(self.san_dns or ()),
            ip=tuple(self.san_ip or ()),
            email=tuple(self.san_email or ()),
        )


class CertificateIssueRequest(SubjectInput, SANInput):
    ca_id: int = Field(..., ge=1, description="Issuing CA")
    certificate_type: CertificateType
    validity_days: int = Field(365, description="Validity in days, bounded per certificate type")
    key_algorithm: KeyAlgorithm = DEFAULT_CERTIFICATE_KEY_ALGORITHM
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_subject(self):
        if self.subject is None:
            raise ValueError("subject or subject_dn is required")
        return self


class CertificateRenewRequest(SubjectInput, SANInput):
    certificate_id: int = Field(..., ge=1)
    generate_new_key: bool = True
    revoke_original: bool = False
    validity_days: Optional[int] = Field(None, description="Defaults to the original validity length")


class CertificateRevokeRequest(BaseModel):
    certificate_id: int = Field(..., ge=1)
    reason: RevocationReason = RevocationReason.UNSPECIFIED
    details: Optional[str] = Field(None, max_length=1000)
    effective_date: Optional[datetime] = Field(None, description="Defaults to now")
    generate_crl: bool = True


class CertificateDeleteRequest(BaseModel):
    certificate_id: int = Field(..., ge=1)
    destroy_key: bool = Field(False, description="Revoke and destroy the key in custody")
