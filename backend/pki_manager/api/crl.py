from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pki_manager.auth import get_current_user
from pki_manager.api.deps import get_lifecycle
from pki_manager.database import get_db
from pki_manager.errors import NotFoundError
from pki_manager.models.crl import CRL
from pki_manager.schemas.common import success_response
from pki_manager.schemas.crl import CRLGenerateRequest
from pki_manager.services.ca_service import get_authority
from pki_manager.services.crl_service import get_latest_crl, list_crls
from pki_manager.services.lifecycle import LifecycleStateMachine

router = APIRouter(prefix="/api/crl", tags=["CRL"], dependencies=[Depends(get_current_user)])


def _serialize_crl(crl: CRL) -> dict:
    return {
        "id": crl.id,
        "ca_id": crl.ca_id,
        "crl_number": crl.crl_number,
        "this_update": crl.this_update.isoformat(),
        "next_update": crl.next_update.isoformat(),
        "revoked_count": crl.revoked_count,
        "signed": crl.is_signed,
        "generated_at": crl.generated_at.isoformat() if crl.generated_at else None,
    }


@router.get("/list", summary="List CRLs", description="List CRL records with optional CA filter.")
async def list_crls_endpoint(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    ca_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    result = list_crls(db, page, per_page, ca_id)
    return success_response(
        "CRLs retrieved",
        {
            "crls": [_serialize_crl(c) for c in result["crls"]],
            "total": result["total"],
            "page": result["page"],
            "per_page": result["per_page"],
        },
    ).model_dump()


@router.post("/generate", summary="Generate CRL", description="Publish the next CRL for a CA.")
async def generate_crl_endpoint(
    request: CRLGenerateRequest, lifecycle: LifecycleStateMachine = Depends(get_lifecycle)
):
    crl = await lifecycle.generate_crl(request.ca_id, request.next_update_days)
    return success_response("CRL generated", _serialize_crl(crl)).model_dump()


@router.get("/latest", summary="Latest CRL", description="Return the newest CRL of a CA, including its PEM.")
async def latest_crl_endpoint(
    ca_id: int = Query(..., ge=1),
    db: Session = Depends(get_db),
):
    get_authority(db, ca_id)
    crl = get_latest_crl(db, ca_id)
    if not crl:
        raise NotFoundError("No CRL available")
    data = _serialize_crl(crl)
    data["crl_pem"] = crl.crl_pem
    return success_response("CRL retrieved", data).model_dump()
