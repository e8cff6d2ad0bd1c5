from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from pki_manager.crypto import pem
from pki_manager.database import get_db
from pki_manager.errors import NotFoundError
from pki_manager.services.ca_service import get_authority
from pki_manager.services.crl_service import publish_crl

router = APIRouter(prefix="/public", tags=["Public"])


def _ca_id(raw: str) -> int:
    if not raw.isdigit():
        raise NotFoundError("CA not found")
    return int(raw)


@router.get("/health", summary="Health check", description="Public health probe endpoint.")
async def health_check():
    return {"status": "healthy"}


@router.get(
    "/crl/{ca_id}.{crl_format}",
    summary="Download public CRL",
    description="CRL distribution point: `.crl` serves PEM, `.der` serves DER.",
)
async def download_crl(ca_id: str, crl_format: str, db: Session = Depends(get_db)) -> Response:
    publication = publish_crl(db, _ca_id(ca_id), crl_format)
    return Response(
        content=publication.content,
        media_type=publication.media_type,
        headers=publication.headers,
    )


@router.get(
    "/ca/{ca_id}.crt",
    summary="Download CA certificate",
    description="Public CA certificate download (DER) by CA ID.",
)
async def download_ca_cert(ca_id: str, db: Session = Depends(get_db)) -> Response:
    ca = get_authority(db, _ca_id(ca_id))
    return Response(
        content=pem.unarmor(ca.certificate_pem, pem.CERTIFICATE),
        media_type="application/pkix-cert",
        headers={"Content-Disposition": f"attachment; filename=ca_{ca.id}.crt"},
    )
