from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from pki_manager.errors import CRLUnavailableError, NotFoundError, ValidationError
from pki_manager.models.authority import CertificateAuthority
from pki_manager.models.crl import CRL

CRL_MEDIA_TYPE = "application/pkix-crl"


@dataclass
class CRLPublication:
    content: bytes
    media_type: str
    headers: Dict[str, str]


def list_crls(db: Session, page: int = 1, per_page: int = 10, ca_id: Optional[int] = None) -> dict:
    query = db.query(CRL)

    if ca_id:
        query = query.filter(CRL.ca_id == ca_id)

    total = query.count()
    crls = (
        query.order_by(CRL.ca_id, CRL.crl_number.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    return {"crls": crls, "total": total, "page": page, "per_page": per_page}


def get_latest_crl(db: Session, ca_id: int) -> Optional[CRL]:
    return db.query(CRL).filter(CRL.ca_id == ca_id).order_by(CRL.crl_number.desc()).first()


def _http_date(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def publication_headers(crl: CRL, now: Optional[datetime] = None) -> Dict[str, str]:
    """Cache headers for a published CRL; max-age counts down to nextUpdate."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    next_update = crl.next_update.replace(tzinfo=timezone.utc)
    max_age = max(0, int((next_update - now).total_seconds()))
    return {
        "Last-Modified": _http_date(crl.this_update),
        "Expires": _http_date(crl.next_update),
        "Cache-Control": f"public, max-age={max_age}",
    }


def publish_crl(db: Session, ca_id: int, crl_format: str, now: Optional[datetime] = None) -> CRLPublication:
    """Resolve the latest CRL of a CA for the public distribution point.

    ``crl_format`` is ``crl`` (PEM) or ``der``.
    """
    if crl_format not in ("crl", "der"):
        raise ValidationError("Invalid format")

    ca = db.query(CertificateAuthority).filter(CertificateAuthority.id == ca_id).first()
    if not ca:
        raise NotFoundError("CA not found")

    crl = get_latest_crl(db, ca_id)
    if not crl:
        raise NotFoundError("No CRL available")
    if not crl.is_signed:
        raise CRLUnavailableError("CRL has not been signed yet")

    content = crl.crl_pem.encode() if crl_format == "crl" else crl.crl_der
    return CRLPublication(content=content, media_type=CRL_MEDIA_TYPE, headers=publication_headers(crl, now))
