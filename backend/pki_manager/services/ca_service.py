from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from pki_manager.errors import NotFoundError, ValidationError
from pki_manager.models.authority import CAStatus, CertificateAuthority, utcnow
from pki_manager.models.certificate import Certificate, CertificateStatus


def _filter_status(query, model, status: Optional[str]):
    if not status:
        return query
    try:
        wanted = CAStatus(status)
    except ValueError:
        raise ValidationError(f"Invalid status filter: {status}") from None

    now = utcnow()
    if wanted == CAStatus.REVOKED:
        return query.filter(model.status == CAStatus.REVOKED)
    if wanted == CAStatus.EXPIRED:
        return query.filter(model.status == CAStatus.ACTIVE, model.not_after < now)
    return query.filter(model.status == CAStatus.ACTIVE, model.not_after >= now)


def list_authorities(
    db: Session,
    page: int = 1,
    per_page: int = 10,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> dict:
    query = _filter_status(db.query(CertificateAuthority), CertificateAuthority, status)

    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                CertificateAuthority.subject_dn.ilike(pattern),
                CertificateAuthority.serial_number.ilike(pattern),
            )
        )

    total = query.count()
    authorities = (
        query.order_by(CertificateAuthority.created_at.desc(), CertificateAuthority.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {"authorities": authorities, "total": total, "page": page, "per_page": per_page}


def get_authority(db: Session, ca_id: int) -> CertificateAuthority:
    ca = db.query(CertificateAuthority).filter(CertificateAuthority.id == ca_id).first()
    if not ca:
        raise NotFoundError("CA not found")
    return ca


def certificate_counts(db: Session, ca_id: int) -> dict:
    """Stored status counts for the certificates a CA has issued."""
    rows = (
        db.query(Certificate.status, func.count(Certificate.id))
        .filter(Certificate.ca_id == ca_id)
        .group_by(Certificate.status)
        .all()
    )
    counts = {CertificateStatus.ACTIVE.value: 0, CertificateStatus.REVOKED.value: 0}
    for status, count in rows:
        counts[status.value] = count
    return counts
