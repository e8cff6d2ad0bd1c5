from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from pki_manager.crypto.crl import RevocationReason
from pki_manager.crypto.keys import DEFAULT_CA_KEY_ALGORITHM, KeyAlgorithm
from pki_manager.schemas.subject import SubjectInput


class CACreateRequest(SubjectInput):
    key_algorithm: KeyAlgorithm = Field(DEFAULT_CA_KEY_ALGORITHM, description="CA key algorithm")
    validity_years: int = Field(20, description="CA validity in years (1-30)")
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_subject(self):
        if self.subject is None:
            raise ValueError("subject or subject_dn is required")
        return self


class CARevokeRequest(BaseModel):
    ca_id: int = Field(..., ge=1)
    reason: RevocationReason = RevocationReason.UNSPECIFIED
    details: Optional[str] = Field(None, max_length=1000)


class CADeleteRequest(BaseModel):
    ca_id: int = Field(..., ge=1)
    destroy_key: bool = Field(False, description="Revoke and destroy the CA key in custody")
