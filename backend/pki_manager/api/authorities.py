from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pki_manager.auth import get_current_user
from pki_manager.api.deps import get_lifecycle
from pki_manager.database import get_db
from pki_manager.models.authority import CertificateAuthority
from pki_manager.schemas.authorities import CACreateRequest, CADeleteRequest, CARevokeRequest
from pki_manager.schemas.common import success_response
from pki_manager.services.ca_service import certificate_counts, get_authority, list_authorities
from pki_manager.services.lifecycle import LifecycleStateMachine

router = APIRouter(
    prefix="/api/authorities", tags=["Certificate Authorities"], dependencies=[Depends(get_current_user)]
)


def _isoformat(value):
    return value.isoformat() if value else None


def _serialize_authority(ca: CertificateAuthority) -> dict:
    return {
        "id": ca.id,
        "subject_dn": ca.subject_dn,
        "subject_cn": ca.subject_cn,
        "serial_number": ca.serial_number,
        "key_algorithm": ca.key_algorithm,
        "not_before": _isoformat(ca.not_before),
        "not_after": _isoformat(ca.not_after),
        "status": ca.effective_status().value,
        "revocation_date": _isoformat(ca.revocation_date),
        "revocation_reason": ca.revocation_reason,
        "tags": ca.tags or [],
        "created_at": _isoformat(ca.created_at),
    }


@router.post("/create", summary="Create CA", description="Create a self-signed root CA in key custody.")
async def create_authority_endpoint(
    request: CACreateRequest, lifecycle: LifecycleStateMachine = Depends(get_lifecycle)
):
    ca = await lifecycle.create_ca(
        request.distinguished_name(),
        key_algorithm=request.key_algorithm,
        validity_years=request.validity_years,
        tags=request.tags,
    )
    return success_response("CA created", _serialize_authority(ca)).model_dump()


@router.get("/list", summary="List CAs", description="List CAs with pagination, status and search filters.")
async def list_authorities_endpoint(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None, pattern="^(active|revoked|expired)$"),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    result = list_authorities(db, page, per_page, status, search)
    return success_response(
        "CAs retrieved",
        {
            "authorities": [_serialize_authority(ca) for ca in result["authorities"]],
            "total": result["total"],
            "page": result["page"],
            "per_page": result["per_page"],
        },
    ).model_dump()


@router.get("/detail", summary="Get CA details", description="Fetch a CA with its certificate and counts.")
async def get_authority_detail(
    ca_id: int = Query(..., ge=1),
    db: Session = Depends(get_db),
):
    ca = get_authority(db, ca_id)
    data = _serialize_authority(ca)
    data["certificate_pem"] = ca.certificate_pem
    data["revocation_details"] = ca.revocation_details
    data["certificate_counts"] = certificate_counts(db, ca.id)
    data["crl_count"] = len(ca.crls)
    return success_response("CA details retrieved", data).model_dump()


@router.post(
    "/revoke",
    summary="Revoke CA",
    description="Revoke a CA, cascade revocation to its active certificates and publish a new CRL.",
)
async def revoke_authority_endpoint(
    request: CARevokeRequest, lifecycle: LifecycleStateMachine = Depends(get_lifecycle)
):
    result = await lifecycle.revoke_ca(request.ca_id, request.reason, request.details)
    return success_response(
        "CA revoked",
        {
            "ca_id": result.ca_id,
            "revocation_date": result.revocation_date.isoformat(),
            "reason": result.reason,
            "cascade_revoked_count": result.cascade_revoked_count,
            "crl_id": result.crl_id,
            "crl_number": result.crl_number,
            "crl_generated": result.crl_generated,
            "crl_signed": result.crl_signed,
        },
    ).model_dump()


@router.post(
    "/delete",
    summary="Delete CA",
    description="Delete a revoked or expired CA with no active certificates.",
)
async def delete_authority_endpoint(
    request: CADeleteRequest, lifecycle: LifecycleStateMachine = Depends(get_lifecycle)
):
    result = await lifecycle.delete_ca(request.ca_id, request.destroy_key)
    return success_response(
        "CA deleted",
        {
            "ca_id": result.ca_id,
            "certificates_deleted": result.certificates_deleted,
            "crls_deleted": result.crls_deleted,
            "key_destroyed": result.key_destroyed,
        },
    ).model_dump()
