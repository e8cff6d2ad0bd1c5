from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator

from pki_manager.crypto.dn import DistinguishedName, parse_dn


class SubjectInput(BaseModel):
    """Accepts either a ``{"CN": ..., "O": ...}`` mapping or a DN string."""

    subject: Optional[Dict[str, str]] = Field(None, description="Subject DN parts (CN, O, OU, C, ST, L)")
    subject_dn: Optional[str] = Field(
        None, description="Subject DN as string (alternative to subject, format: CN=...,O=...,C=...)"
    )

    @model_validator(mode="after")
    def parse_subject_dn(self):
        if self.subject is None and self.subject_dn:
            self.subject = parse_dn(self.subject_dn).to_dict()
        return self

    def distinguished_name(self) -> Optional[DistinguishedName]:
        if self.subject is None:
            return None
        return DistinguishedName.from_dict(self.subject)
