from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pki_manager.auth import get_current_user
from pki_manager.database import get_db
from pki_manager.models.authority import CAStatus, CertificateAuthority, utcnow
from pki_manager.models.certificate import Certificate, CertificateStatus
from pki_manager.models.crl import CRL
from pki_manager.schemas.common import success_response

EXPIRING_WINDOW_DAYS = 30

router = APIRouter(
    prefix="/api/stats", tags=["Statistics"], dependencies=[Depends(get_current_user)]
)


@router.get(
    "",
    summary="Get dashboard statistics",
    description="Return CA, certificate and CRL counters.",
)
async def get_stats(db: Session = Depends(get_db)):
    now = utcnow()
    expiring_date = now + timedelta(days=EXPIRING_WINDOW_DAYS)

    cas_total = db.query(CertificateAuthority).count()
    cas_active = (
        db.query(CertificateAuthority)
        .filter(CertificateAuthority.status == CAStatus.ACTIVE, CertificateAuthority.not_after >= now)
        .count()
    )

    certificates_total = db.query(Certificate).count()
    certificates_active = (
        db.query(Certificate)
        .filter(Certificate.status == CertificateStatus.ACTIVE, Certificate.not_after >= now)
        .count()
    )
    certificates_revoked = (
        db.query(Certificate).filter(Certificate.status == CertificateStatus.REVOKED).count()
    )
    certificates_expiring = (
        db.query(Certificate)
        .filter(
            Certificate.status == CertificateStatus.ACTIVE,
            Certificate.not_after > now,
            Certificate.not_after <= expiring_date,
        )
        .count()
    )

    return success_response(
        "Statistics retrieved",
        {
            "authorities": {"total": cas_total, "active": cas_active},
            "certificates": {
                "total": certificates_total,
                "active": certificates_active,
                "revoked": certificates_revoked,
                "expiring": certificates_expiring,
            },
            "crls": {"total": db.query(CRL).count()},
        },
    ).model_dump()
