from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from pki_manager.auth import get_current_user
from pki_manager.api.deps import get_lifecycle
from pki_manager.crypto.certificate import decode_certificate
from pki_manager.crypto.extensions import extensions_to_dict
from pki_manager.database import get_db
from pki_manager.models.certificate import Certificate
from pki_manager.schemas.certificates import (
    CertificateDeleteRequest,
    CertificateIssueRequest,
    CertificateRenewRequest,
    CertificateRevokeRequest,
)
from pki_manager.schemas.common import success_response
from pki_manager.services.cert_service import (
    export_certificate,
    get_certificate,
    list_certificates,
    renewal_chain,
)
from pki_manager.services.lifecycle import LifecycleStateMachine

router = APIRouter(
    prefix="/api/certificates", tags=["Certificates"], dependencies=[Depends(get_current_user)]
)


def _isoformat(value):
    return value.isoformat() if value else None


def _serialize_certificate(cert: Certificate) -> dict:
    return {
        "id": cert.id,
        "ca_id": cert.ca_id,
        "certificate_type": cert.certificate_type.value,
        "subject_dn": cert.subject_dn,
        "subject_cn": cert.subject_cn,
        "serial_number": cert.serial_number,
        "key_algorithm": cert.key_algorithm,
        "not_before": _isoformat(cert.not_before),
        "not_after": _isoformat(cert.not_after),
        "status": cert.effective_status().value,
        "revocation_date": _isoformat(cert.revocation_date),
        "revocation_reason": cert.revocation_reason,
        "san_dns": cert.san_dns or [],
        "san_ip": cert.san_ip or [],
        "san_email": cert.san_email or [],
        "renewed_from_id": cert.renewed_from_id,
        "tags": cert.tags or [],
        "created_at": _isoformat(cert.created_at),
    }


@router.get(
    "/list",
    summary="List certificates",
    description="List certificates with pagination and filters (CA/type/status/search).",
)
async def list_certificates_endpoint(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    ca_id: Optional[int] = Query(None),
    certificate_type: Optional[str] = Query(None),
    status: Optional[str] = Query(None, pattern="^(active|revoked|expired)$"),
    search: Optional[str] = Query(None),
    sort_by: str = Query("created_at", pattern="^(created_at|not_after|subject_cn)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    result = list_certificates(
        db, page, per_page, ca_id, certificate_type, status, search, sort_by, sort_order
    )
    return success_response(
        "Certificates retrieved",
        {
            "certificates": [_serialize_certificate(c) for c in result["certificates"]],
            "total": result["total"],
            "page": result["page"],
            "per_page": result["per_page"],
        },
    ).model_dump()


@router.post("/issue", summary="Issue certificate", description="Issue a leaf certificate under a CA.")
async def issue_certificate_endpoint(
    request: CertificateIssueRequest, lifecycle: LifecycleStateMachine = Depends(get_lifecycle)
):
    cert = await lifecycle.issue_certificate(
        request.ca_id,
        request.certificate_type,
        request.distinguished_name(),
        sans=request.subject_alt_name(),
        validity_days=request.validity_days,
        key_algorithm=request.key_algorithm,
        tags=request.tags,
    )
    return success_response("Certificate issued", _serialize_certificate(cert)).model_dump()


@router.get(
    "/detail",
    summary="Get certificate details",
    description="Fetch a certificate with its parsed extensions and renewal chain.",
)
async def get_certificate_detail(
    certificate_id: int = Query(..., ge=1),
    db: Session = Depends(get_db),
):
    cert = get_certificate(db, certificate_id)
    parsed = decode_certificate(cert.certificate_pem)

    data = _serialize_certificate(cert)
    data["certificate_pem"] = cert.certificate_pem
    data["revocation_details"] = cert.revocation_details
    data["extensions"] = extensions_to_dict(parsed.extensions)
    data["fingerprint_sha256"] = parsed.fingerprint_sha256
    data["renewal_chain"] = renewal_chain(db, cert)
    return success_response("Certificate details retrieved", data).model_dump()


@router.post(
    "/renew",
    summary="Renew certificate",
    description="Issue a replacement certificate, optionally reusing the key and revoking the original.",
)
async def renew_certificate_endpoint(
    request: CertificateRenewRequest, lifecycle: LifecycleStateMachine = Depends(get_lifecycle)
):
    cert = await lifecycle.renew_certificate(
        request.certificate_id,
        generate_new_key=request.generate_new_key,
        revoke_original=request.revoke_original,
        validity_days=request.validity_days,
        subject=request.distinguished_name(),
        sans=request.subject_alt_name(),
    )
    return success_response("Certificate renewed", _serialize_certificate(cert)).model_dump()


@router.post("/revoke", summary="Revoke certificate", description="Revoke a certificate and refresh the CRL.")
async def revoke_certificate_endpoint(
    request: CertificateRevokeRequest, lifecycle: LifecycleStateMachine = Depends(get_lifecycle)
):
    result = await lifecycle.revoke_certificate(
        request.certificate_id,
        request.reason,
        request.details,
        request.effective_date,
        request.generate_crl,
    )
    return success_response(
        "Certificate revoked",
        {
            "certificate_id": result.id,
            "revocation_date": result.revocation_date.isoformat(),
            "reason": result.reason,
            "crl_id": result.crl_id,
            "crl_number": result.crl_number,
            "crl_signed": result.crl_signed,
        },
    ).model_dump()


@router.post(
    "/delete",
    summary="Delete certificate",
    description="Delete a revoked (or long expired) certificate and optionally destroy its key.",
)
async def delete_certificate_endpoint(
    request: CertificateDeleteRequest, lifecycle: LifecycleStateMachine = Depends(get_lifecycle)
):
    result = await lifecycle.delete_certificate(request.certificate_id, request.destroy_key)
    return success_response(
        "Certificate deleted",
        {"certificate_id": result.id, "deleted": result.deleted, "key_destroyed": result.key_destroyed},
    ).model_dump()


@router.get("/download", summary="Download certificate", description="Download a certificate as PEM or DER.")
async def download_certificate_endpoint(
    certificate_id: int = Query(..., ge=1),
    format: str = Query("pem", pattern="^(pem|der)$"),
    db: Session = Depends(get_db),
):
    cert = get_certificate(db, certificate_id)
    content, media_type, extension = export_certificate(cert, format)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={cert.serial_number}.{extension}"},
    )
