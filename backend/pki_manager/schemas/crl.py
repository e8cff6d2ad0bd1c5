from typing import Optional

from pydantic import BaseModel, Field


class CRLGenerateRequest(BaseModel):
    ca_id: int = Field(..., ge=1, description="ID of the issuing CA")
    next_update_days: Optional[int] = Field(
        None, ge=1, le=365, description="Days until nextUpdate (defaults to CRL_VALIDITY_DAYS)"
    )
