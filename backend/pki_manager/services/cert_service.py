from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from pki_manager.crypto import pem
from pki_manager.crypto.validation import CertificateType
from pki_manager.errors import NotFoundError, ValidationError
from pki_manager.models.authority import utcnow
from pki_manager.models.certificate import Certificate, CertificateStatus

_SORT_FIELDS = {
    "created_at": Certificate.created_at,
    "not_after": Certificate.not_after,
    "subject_cn": Certificate.subject_cn,
}


def list_certificates(
    db: Session,
    page: int = 1,
    per_page: int = 10,
    ca_id: Optional[int] = None,
    certificate_type: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> dict:
    query = db.query(Certificate)

    if ca_id:
        query = query.filter(Certificate.ca_id == ca_id)

    if certificate_type:
        try:
            query = query.filter(Certificate.certificate_type == CertificateType(certificate_type))
        except ValueError:
            raise ValidationError(f"Invalid certificate type filter: {certificate_type}") from None

    if status:
        try:
            wanted = CertificateStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid status filter: {status}") from None
        now = utcnow()
        if wanted == CertificateStatus.REVOKED:
            query = query.filter(Certificate.status == CertificateStatus.REVOKED)
        elif wanted == CertificateStatus.EXPIRED:
            query = query.filter(Certificate.status == CertificateStatus.ACTIVE, Certificate.not_after < now)
        else:
            query = query.filter(Certificate.status == CertificateStatus.ACTIVE, Certificate.not_after >= now)

    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Certificate.subject_dn.ilike(pattern),
                Certificate.serial_number.ilike(pattern),
            )
        )

    total = query.count()
    sort_column = _SORT_FIELDS.get(sort_by, Certificate.created_at)
    ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()
    certificates = (
        query.order_by(ordering, Certificate.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    return {"certificates": certificates, "total": total, "page": page, "per_page": per_page}


def get_certificate(db: Session, certificate_id: int) -> Certificate:
    cert = db.query(Certificate).filter(Certificate.id == certificate_id).first()
    if not cert:
        raise NotFoundError("Certificate not found")
    return cert


def renewal_chain(db: Session, cert: Certificate) -> list:
    """Ids of the certificates this one was renewed from, newest first."""
    chain = []
    seen = {cert.id}
    current = cert
    while current.renewed_from_id and current.renewed_from_id not in seen:
        seen.add(current.renewed_from_id)
        chain.append(current.renewed_from_id)
        current = db.query(Certificate).filter(Certificate.id == current.renewed_from_id).first()
        if current is None:
            break
    return chain


def export_certificate(cert: Certificate, export_format: str):
    """Return ``(content, media_type, extension)`` for a download."""
    if export_format == "pem":
        return cert.certificate_pem.encode(), "application/x-pem-file", "pem"
    if export_format == "der":
        return pem.unarmor(cert.certificate_pem, pem.CERTIFICATE), "application/pkix-cert", "der"
    raise ValidationError("Invalid format")
