"""CA and certificate lifecycle.

Every mutating operation goes through ``LifecycleStateMachine``. Guards
(validation and state checks) run before any custodial call; once key
material has been touched, later sub-step failures are logged and reported
in the result instead of being rolled back.

Operations that touch one CA's revocation state, CRL numbering or child set
are serialised with a per-CA ``asyncio.Lock``.
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from pki_manager.config import LifecycleConfig
from pki_manager.crypto import pem
from pki_manager.crypto.certificate import ParsedCertificate, decode_certificate, load_certificate
from pki_manager.crypto.crl import CRLParams, RevocationReason, RevokedEntry, encode_crl, parse_reason
from pki_manager.crypto.dn import DistinguishedName, format_dn, parse_dn
from pki_manager.crypto.extensions import (
    AuthorityKeyIdentifier,
    BasicConstraints,
    CertificateExtensions,
    CRLDistributionPoints,
    ExtendedKeyUsage,
    KeyUsage,
    SubjectAltName,
    SubjectKeyIdentifier,
)
from pki_manager.crypto.keys import (
    DEFAULT_CA_KEY_ALGORITHM,
    DEFAULT_CERTIFICATE_KEY_ALGORITHM,
    load_private_key,
    parse_key_algorithm,
)
from pki_manager.crypto.validation import (
    CertificateType,
    validate_ca_validity_years,
    validate_certificate_request,
    validate_dn,
)
from pki_manager.custody.base import KeyCustodyClient
from pki_manager.errors import (
    CustodyError,
    EncodingError,
    KeyAlreadyRevokedError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from pki_manager.models.authority import CAStatus, CertificateAuthority, utcnow
from pki_manager.models.certificate import Certificate, CertificateStatus
from pki_manager.models.crl import CRL
from pki_manager.services.audit_service import STATUS_FAILURE, STATUS_SUCCESS, AuditService

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365
CASCADE_REVOCATION_DETAILS = "Issuing CA was revoked"

# Fixed per-type key usage / extended key usage profiles
_LEAF_PROFILES = {
    CertificateType.SERVER: (
        KeyUsage(digital_signature=True, key_encipherment=True),
        ExtendedKeyUsage(("serverAuth",)),
    ),
    CertificateType.CLIENT: (
        KeyUsage(digital_signature=True, key_agreement=True),
        ExtendedKeyUsage(("clientAuth",)),
    ),
    CertificateType.CODE_SIGNING: (
        KeyUsage(digital_signature=True),
        ExtendedKeyUsage(("codeSigning",)),
    ),
    CertificateType.EMAIL: (
        KeyUsage(digital_signature=True, key_encipherment=True),
        ExtendedKeyUsage(("emailProtection",)),
    ),
}

_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[int, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def ca_lock(ca_id: int) -> asyncio.Lock:
    """Lock serialising revocation, CRL numbering, deletion and issuance for one CA."""
    loop_locks = _locks.setdefault(asyncio.get_running_loop(), {})
    lock = loop_locks.get(ca_id)
    if lock is None:
        lock = loop_locks[ca_id] = asyncio.Lock()
    return lock


@dataclass
class CARevocationResult:
    ca_id: int
    revocation_date: datetime
    reason: str
    cascade_revoked_count: int
    crl_id: int
    crl_number: int
    crl_generated: bool
    crl_signed: bool


@dataclass
class CADeletionResult:
    ca_id: int
    certificates_deleted: int
    crls_deleted: int
    key_destroyed: bool


@dataclass
class CertificateRevocationResult:
    id: int
    revocation_date: datetime
    reason: str
    crl_id: Optional[int] = None
    crl_number: Optional[int] = None
    crl_signed: bool = False


@dataclass
class CertificateDeletionResult:
    id: int
    deleted: bool
    key_destroyed: bool


def _as_dn(subject: Union[DistinguishedName, Mapping[str, str], str]) -> DistinguishedName:
    if isinstance(subject, DistinguishedName):
        return subject
    if isinstance(subject, str):
        return parse_dn(subject)
    return DistinguishedName.from_dict(subject)


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.replace(microsecond=0)


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def _decode_custody_certificate(certificate_hex: str) -> Tuple[bytes, ParsedCertificate]:
    try:
        certificate_der = bytes.fromhex(certificate_hex)
    except ValueError as exc:
        raise EncodingError(f"Key custodian returned malformed certificate data: {exc}") from exc
    return certificate_der, decode_certificate(certificate_der)


class LifecycleStateMachine:
    def __init__(
        self,
        db: Session,
        custody: KeyCustodyClient,
        config: LifecycleConfig,
        audit: AuditService,
    ):
        self.db = db
        self.custody = custody
        self.config = config
        self.audit = audit
        self._key_exports: List[dict] = []

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    def _get_ca(self, ca_id: int) -> CertificateAuthority:
        ca = self.db.query(CertificateAuthority).filter(CertificateAuthority.id == ca_id).first()
        if not ca:
            raise NotFoundError("CA not found")
        return ca

    def _get_certificate(self, cert_id: int) -> Certificate:
        cert = self.db.query(Certificate).filter(Certificate.id == cert_id).first()
        if not cert:
            raise NotFoundError("Certificate not found")
        return cert

    def _failed(self, operation: str, entity_type: str, entity_id, exc: Exception, details: dict) -> None:
        self.db.rollback()
        payload = dict(details)
        payload["error"] = str(exc)
        if isinstance(exc, CustodyError):
            payload["key_material_touched"] = exc.key_material_touched
        self.audit.record(operation, entity_type, entity_id, STATUS_FAILURE, payload)
        self._record_key_exports()

    def _record_key_exports(self) -> None:
        """Audit CA signing key exports once the surrounding transaction has ended."""
        while self._key_exports:
            export = self._key_exports.pop(0)
            self.audit.record("ca.key_export", "ca", export.pop("ca_id"), STATUS_SUCCESS, export)

    # ------------------------------------------------------------------
    # CA operations
    # ------------------------------------------------------------------

    async def create_ca(
        self,
        subject,
        key_algorithm=DEFAULT_CA_KEY_ALGORITHM,
        validity_years: int = 20,
        tags: Optional[List[str]] = None,
    ) -> CertificateAuthority:
        subject = _as_dn(subject)
        try:
            ca = await self._create_ca(subject, key_algorithm, validity_years, tags)
        except Exception as exc:
            self._failed("ca.create", "ca", None, exc, {"subject": format_dn(subject)})
            raise
        self.audit.record(
            "ca.create",
            "ca",
            ca.id,
            STATUS_SUCCESS,
            {
                "subject": ca.subject_dn,
                "serial_number": ca.serial_number,
                "key_algorithm": ca.key_algorithm,
                "validity_years": validity_years,
            },
        )
        return ca

    async def _create_ca(self, subject, key_algorithm, validity_years, tags) -> CertificateAuthority:
        check = validate_dn(subject)
        check.extend(validate_ca_validity_years(validity_years))
        if not check.valid:
            raise ValidationError("; ".join(check.errors), check.errors)
        algorithm = parse_key_algorithm(key_algorithm)

        extensions = CertificateExtensions.of(
            BasicConstraints(ca=True),
            KeyUsage(digital_signature=True, key_cert_sign=True, crl_sign=True),
            SubjectKeyIdentifier(),
            AuthorityKeyIdentifier(),
        )
        info = await self.custody.certify(
            subject=subject,
            days_valid=validity_years * DAYS_PER_YEAR,
            key_algorithm=algorithm,
            extensions=extensions,
            tags=tags,
        )
        if not info.private_key_id:
            raise CustodyError(
                f"Key custodian did not report the key pair for certificate {info.certificate_id}",
                operation="Certify",
                key_material_touched=True,
            )

        certificate_der, parsed = _decode_custody_certificate(info.certificate_data)
        ca = CertificateAuthority(
            subject_dn=format_dn(parsed.subject),
            subject_cn=parsed.subject.common_name,
            serial_number=parsed.serial_number,
            key_algorithm=algorithm.value,
            kms_key_id=info.private_key_id,
            kms_public_key_id=info.public_key_id,
            kms_certificate_id=info.certificate_id,
            certificate_pem=pem.armor(pem.CERTIFICATE, certificate_der),
            not_before=_naive_utc(parsed.not_before),
            not_after=_naive_utc(parsed.not_after),
            status=CAStatus.ACTIVE,
            tags=list(tags or []),
        )
        self.db.add(ca)
        self.db.commit()
        self.db.refresh(ca)
        logger.info("CA created id=%s subject=%s serial=%s", ca.id, ca.subject_dn, ca.serial_number)
        return ca

    async def revoke_ca(
        self, ca_id: int, reason=RevocationReason.UNSPECIFIED, details: Optional[str] = None
    ) -> CARevocationResult:
        try:
            result = await self._revoke_ca(ca_id, parse_reason(reason), details)
        except Exception as exc:
            self._failed("ca.revoke", "ca", ca_id, exc, {"reason": str(getattr(reason, "value", reason))})
            raise
        self.audit.record(
            "ca.revoke",
            "ca",
            ca_id,
            STATUS_SUCCESS,
            {
                "reason": result.reason,
                "details": details,
                "cascade_revoked_count": result.cascade_revoked_count,
                "crl_number": result.crl_number,
                "crl_signed": result.crl_signed,
            },
        )
        self._record_key_exports()
        return result

    async def _revoke_ca(self, ca_id: int, reason: RevocationReason, details) -> CARevocationResult:
        async with ca_lock(ca_id):
            ca = self._get_ca(ca_id)
            if ca.status == CAStatus.REVOKED:
                raise StateConflictError("CA is already revoked")

            now = _naive_utc(utcnow())
            ca.status = CAStatus.REVOKED
            ca.revocation_date = now
            ca.revocation_reason = reason.value
            ca.revocation_details = details

            children = (
                self.db.query(Certificate)
                .filter(Certificate.ca_id == ca.id, Certificate.status == CertificateStatus.ACTIVE)
                .all()
            )
            for child in children:
                child.status = CertificateStatus.REVOKED
                child.revocation_date = now
                child.revocation_reason = RevocationReason.CA_COMPROMISE.value
                child.revocation_details = CASCADE_REVOCATION_DETAILS

            crl = await self._build_crl(ca, now, self.config.crl_validity_days)
            self.db.commit()

        logger.info(
            "CA revoked id=%s reason=%s cascade_revoked=%d crl_number=%d",
            ca_id,
            reason.value,
            len(children),
            crl.crl_number,
        )
        return CARevocationResult(
            ca_id=ca_id,
            revocation_date=now,
            reason=reason.value,
            cascade_revoked_count=len(children),
            crl_id=crl.id,
            crl_number=crl.crl_number,
            crl_generated=True,
            crl_signed=crl.is_signed,
        )

    async def delete_ca(self, ca_id: int, destroy_key: bool = False) -> CADeletionResult:
        try:
            return await self._delete_ca(ca_id, destroy_key)
        except Exception as exc:
            self._failed("ca.delete", "ca", ca_id, exc, {"destroy_key": destroy_key})
            raise

    async def _delete_ca(self, ca_id: int, destroy_key: bool) -> CADeletionResult:
        async with ca_lock(ca_id):
            ca = self._get_ca(ca_id)
            if ca.status != CAStatus.REVOKED and not ca.is_expired():
                raise StateConflictError("CA must be revoked or expired before deletion")

            active = (
                self.db.query(Certificate)
                .filter(Certificate.ca_id == ca.id, Certificate.status == CertificateStatus.ACTIVE)
                .count()
            )
            if active:
                raise StateConflictError(
                    f"Cannot delete CA with {active} active {_plural(active, 'certificate')}"
                )

            self.audit.record(
                "ca.delete",
                "ca",
                ca.id,
                STATUS_SUCCESS,
                {
                    "subject": ca.subject_dn,
                    "serial_number": ca.serial_number,
                    "status": ca.effective_status().value,
                    "destroy_key": destroy_key,
                },
            )

            key_destroyed = False
            if destroy_key:
                key_destroyed = await self._destroy_custodial_key(ca.kms_key_id, "CA deleted")

            certificates_deleted = (
                self.db.query(Certificate).filter(Certificate.ca_id == ca.id).delete(synchronize_session=False)
            )
            crls_deleted = self.db.query(CRL).filter(CRL.ca_id == ca.id).delete(synchronize_session=False)
            self.db.delete(ca)
            self.db.commit()

        logger.info(
            "CA deleted id=%s certificates=%d crls=%d key_destroyed=%s",
            ca_id,
            certificates_deleted,
            crls_deleted,
            key_destroyed,
        )
        return CADeletionResult(
            ca_id=ca_id,
            certificates_deleted=certificates_deleted,
            crls_deleted=crls_deleted,
            key_destroyed=key_destroyed,
        )

    async def _destroy_custodial_key(self, key_id: str, reason: str) -> bool:
        """Revoke then destroy; failures are logged and reported as False."""
        try:
            try:
                await self.custody.revoke_key(key_id, reason)
            except KeyAlreadyRevokedError:
                logger.info("Key %s was already revoked in custody", key_id)
            await self.custody.destroy_key(key_id)
        except CustodyError as exc:
            logger.error(
                "Failed to destroy custodial key %s (key_material_touched=%s): %s",
                key_id,
                exc.key_material_touched,
                exc.message,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # CRL
    # ------------------------------------------------------------------

    async def generate_crl(self, ca_id: int, next_update_days: Optional[int] = None) -> CRL:
        days = self.config.crl_validity_days if next_update_days is None else next_update_days
        try:
            async with ca_lock(ca_id):
                ca = self._get_ca(ca_id)
                crl = await self._build_crl(ca, _naive_utc(utcnow()), days)
                self.db.commit()
        except Exception as exc:
            self._failed("crl.generate", "crl", None, exc, {"ca_id": ca_id})
            raise
        self.audit.record(
            "crl.generate",
            "crl",
            crl.id,
            STATUS_SUCCESS,
            {
                "ca_id": ca_id,
                "crl_number": crl.crl_number,
                "revoked_count": crl.revoked_count,
                "signed": crl.is_signed,
            },
        )
        self._record_key_exports()
        return crl

    async def _build_crl(self, ca: CertificateAuthority, now: datetime, next_update_days: int) -> CRL:
        """Insert the next CRL for ``ca`` without committing. Caller holds the CA lock."""
        self.db.flush()
        current = self.db.query(func.max(CRL.crl_number)).filter(CRL.ca_id == ca.id).scalar()
        crl_number = (current or 0) + 1
        next_update = now + timedelta(days=next_update_days)

        revoked = (
            self.db.query(Certificate)
            .filter(Certificate.ca_id == ca.id, Certificate.status == CertificateStatus.REVOKED)
            .order_by(Certificate.revocation_date, Certificate.id)
            .all()
        )
        entries = [
            RevokedEntry(
                serial_number=cert.serial_number,
                revocation_date=cert.revocation_date or now,
                reason=parse_reason(cert.revocation_reason or RevocationReason.UNSPECIFIED.value),
            )
            for cert in revoked
        ]

        crl = CRL(
            ca_id=ca.id,
            crl_number=crl_number,
            this_update=now,
            next_update=next_update,
            crl_pem="",
            crl_der=None,
            revoked_count=len(entries),
        )
        try:
            signing_key = load_private_key(await self.custody.get_private_key(ca.kms_key_id))
            self._key_exports.append(
                {"ca_id": ca.id, "key_id": ca.kms_key_id, "purpose": "crl", "crl_number": crl_number}
            )
            generated = encode_crl(
                CRLParams(
                    issuer=load_certificate(ca.certificate_pem).subject,
                    signing_key=signing_key,
                    revoked=entries,
                    this_update=now,
                    next_update=next_update,
                    crl_number=crl_number,
                )
            )
        except (CustodyError, EncodingError) as exc:
            logger.error("CRL %d for CA %s stored unsigned: %s", crl_number, ca.id, exc)
        else:
            crl.crl_pem = generated.pem
            crl.crl_der = pem.base64_to_der(generated.der)

        self.db.add(crl)
        self.db.flush()
        return crl

    # ------------------------------------------------------------------
    # Certificate operations
    # ------------------------------------------------------------------

    async def issue_certificate(
        self,
        ca_id: int,
        certificate_type,
        subject,
        sans: Optional[SubjectAltName] = None,
        validity_days: int = 365,
        key_algorithm=DEFAULT_CERTIFICATE_KEY_ALGORITHM,
        tags: Optional[List[str]] = None,
    ) -> Certificate:
        subject = _as_dn(subject)
        try:
            cert = await self._issue(ca_id, certificate_type, subject, sans, validity_days, key_algorithm, tags)
        except Exception as exc:
            self._failed(
                "certificate.issue",
                "certificate",
                None,
                exc,
                {"ca_id": ca_id, "subject": format_dn(subject), "certificate_type": str(certificate_type)},
            )
            raise
        self.audit.record(
            "certificate.issue",
            "certificate",
            cert.id,
            STATUS_SUCCESS,
            {
                "ca_id": ca_id,
                "subject": cert.subject_dn,
                "serial_number": cert.serial_number,
                "certificate_type": cert.certificate_type.value,
                "validity_days": validity_days,
            },
        )
        return cert

    def _check_issuer(self, ca: CertificateAuthority) -> None:
        if ca.status == CAStatus.REVOKED:
            raise StateConflictError("Cannot issue certificate: CA is revoked")
        if ca.is_expired():
            raise StateConflictError("Cannot issue certificate: CA has expired")

    def _leaf_extensions(self, ca_id: int, certificate_type: CertificateType, sans: SubjectAltName):
        key_usage, extended_key_usage = _LEAF_PROFILES[certificate_type]
        items = [BasicConstraints(ca=False), key_usage, extended_key_usage]
        if not sans.is_empty():
            items.append(sans)
        items.extend([SubjectKeyIdentifier(), AuthorityKeyIdentifier()])
        crl_url = self.config.crl_url_for(ca_id)
        if crl_url:
            items.append(CRLDistributionPoints((crl_url,)))
        return CertificateExtensions.of(*items)

    async def _issue(
        self,
        ca_id: int,
        certificate_type,
        subject: DistinguishedName,
        sans: Optional[SubjectAltName],
        validity_days: int,
        key_algorithm,
        tags: Optional[List[str]],
        renewed_from_id: Optional[int] = None,
        reuse_key_from: Optional[Certificate] = None,
    ) -> Certificate:
        try:
            certificate_type = CertificateType(certificate_type)
        except ValueError:
            raise ValidationError(f"Unsupported certificate type: {certificate_type}") from None
        algorithm = parse_key_algorithm(key_algorithm)
        sans = sans or SubjectAltName()

        ca = self._get_ca(ca_id)
        self._check_issuer(ca)

        check = validate_certificate_request(
            certificate_type,
            subject,
            san_dns=list(sans.dns),
            san_ip=list(sans.ip),
            san_email=list(sans.email),
            validity_days=validity_days,
            key_algorithm=algorithm,
        )
        if not check.valid:
            raise ValidationError("; ".join(check.errors), check.errors)

        extensions = self._leaf_extensions(ca.id, certificate_type, sans)
        if reuse_key_from is not None:
            public_key_id = reuse_key_from.kms_public_key_id or reuse_key_from.kms_key_id
            private_key_id = reuse_key_from.kms_key_id
        else:
            ids = await self.custody.create_key_pair(algorithm, tags)
            public_key_id, private_key_id = ids.public_key_id, ids.private_key_id

        info = await self.custody.certify(
            subject=subject,
            days_valid=validity_days,
            key_algorithm=algorithm,
            public_key_id=public_key_id,
            issuer_private_key_id=ca.kms_key_id,
            issuer_certificate_id=ca.kms_certificate_id,
            extensions=extensions,
            tags=tags,
        )
        certificate_der, parsed = _decode_custody_certificate(info.certificate_data)

        async with ca_lock(ca.id):
            # Deletion or revocation may have won the race while custody was signing
            self.db.expire_all()
            ca = self.db.query(CertificateAuthority).filter(CertificateAuthority.id == ca_id).first()
            if ca is None:
                raise StateConflictError("Cannot issue certificate: CA was deleted")
            self._check_issuer(ca)

            cert = Certificate(
                ca_id=ca.id,
                certificate_type=certificate_type,
                subject_dn=format_dn(parsed.subject),
                subject_cn=parsed.subject.common_name,
                serial_number=parsed.serial_number,
                key_algorithm=algorithm.value,
                kms_key_id=info.private_key_id or private_key_id,
                kms_public_key_id=info.public_key_id or public_key_id,
                kms_certificate_id=info.certificate_id,
                certificate_pem=pem.armor(pem.CERTIFICATE, certificate_der),
                not_before=_naive_utc(parsed.not_before),
                not_after=_naive_utc(parsed.not_after),
                status=CertificateStatus.ACTIVE,
                san_dns=list(sans.dns),
                san_ip=list(sans.ip),
                san_email=list(sans.email),
                renewed_from_id=renewed_from_id,
                tags=list(tags or []),
            )
            self.db.add(cert)
            self.db.commit()
            self.db.refresh(cert)

        logger.info(
            "Certificate issued id=%s ca_id=%s type=%s serial=%s",
            cert.id,
            ca.id,
            certificate_type.value,
            cert.serial_number,
        )
        return cert

    async def renew_certificate(
        self,
        cert_id: int,
        generate_new_key: bool = True,
        revoke_original: bool = False,
        validity_days: Optional[int] = None,
        subject=None,
        sans: Optional[SubjectAltName] = None,
    ) -> Certificate:
        try:
            renewed = await self._renew(cert_id, generate_new_key, revoke_original, validity_days, subject, sans)
        except Exception as exc:
            self._failed(
                "certificate.renew",
                "certificate",
                cert_id,
                exc,
                {"generate_new_key": generate_new_key, "revoke_original": revoke_original},
            )
            raise
        self.audit.record(
            "certificate.renew",
            "certificate",
            renewed.id,
            STATUS_SUCCESS,
            {
                "renewed_from_id": cert_id,
                "serial_number": renewed.serial_number,
                "generate_new_key": generate_new_key,
                "revoke_original": revoke_original,
            },
        )
        self._record_key_exports()
        return renewed

    async def _renew(self, cert_id, generate_new_key, revoke_original, validity_days, subject, sans) -> Certificate:
        original = self._get_certificate(cert_id)
        if original.status == CertificateStatus.REVOKED:
            raise StateConflictError("Cannot renew a revoked certificate")

        if not generate_new_key:
            max_age = timedelta(days=self.config.key_reuse_max_age_days)
            if utcnow() - _naive_utc(original.created_at) >= max_age:
                raise StateConflictError(
                    f"Key reuse is only allowed for certificates less than "
                    f"{self.config.key_reuse_max_age_days} days old"
                )

        if validity_days is None:
            validity_days = max(1, (original.not_after - original.not_before).days)
        if sans is None:
            sans = SubjectAltName(
                dns=tuple(original.san_dns or ()),
                ip=tuple(original.san_ip or ()),
                email=tuple(original.san_email or ()),
            )

        renewed = await self._issue(
            original.ca_id,
            original.certificate_type,
            _as_dn(subject) if subject is not None else parse_dn(original.subject_dn),
            sans,
            validity_days,
            original.key_algorithm,
            list(original.tags or []),
            renewed_from_id=original.id,
            reuse_key_from=None if generate_new_key else original,
        )

        if revoke_original:
            await self._revoke_certificate(
                original.id,
                RevocationReason.SUPERSEDED,
                f"Superseded by certificate {renewed.id}",
                None,
                True,
            )
        return renewed

    async def revoke_certificate(
        self,
        cert_id: int,
        reason=RevocationReason.UNSPECIFIED,
        details: Optional[str] = None,
        effective_date: Optional[datetime] = None,
        generate_crl: bool = True,
    ) -> CertificateRevocationResult:
        try:
            result = await self._revoke_certificate(
                cert_id, parse_reason(reason), details, effective_date, generate_crl
            )
        except Exception as exc:
            self._failed(
                "certificate.revoke",
                "certificate",
                cert_id,
                exc,
                {"reason": str(getattr(reason, "value", reason))},
            )
            raise
        self.audit.record(
            "certificate.revoke",
            "certificate",
            cert_id,
            STATUS_SUCCESS,
            {
                "reason": result.reason,
                "details": details,
                "revocation_date": result.revocation_date.isoformat(),
                "crl_number": result.crl_number,
            },
        )
        self._record_key_exports()
        return result

    async def _revoke_certificate(
        self,
        cert_id: int,
        reason: RevocationReason,
        details: Optional[str],
        effective_date: Optional[datetime],
        generate_crl: bool,
    ) -> CertificateRevocationResult:
        cert = self._get_certificate(cert_id)
        async with ca_lock(cert.ca_id):
            self.db.refresh(cert)
            if cert.status == CertificateStatus.REVOKED:
                raise StateConflictError("Certificate is already revoked")

            now = _naive_utc(utcnow())
            revocation_date = now
            if effective_date is not None:
                revocation_date = _naive_utc(effective_date)
                if revocation_date > now:
                    raise StateConflictError("Effective date cannot be in the future")
                if revocation_date < cert.not_before:
                    raise StateConflictError("Effective date cannot be before the certificate was issued")

            cert.status = CertificateStatus.REVOKED
            cert.revocation_date = revocation_date
            cert.revocation_reason = reason.value
            cert.revocation_details = details

            crl = None
            if generate_crl:
                crl = await self._build_crl(cert.ca, now, self.config.crl_validity_days)
            self.db.commit()

        logger.info("Certificate revoked id=%s reason=%s", cert_id, reason.value)
        return CertificateRevocationResult(
            id=cert_id,
            revocation_date=revocation_date,
            reason=reason.value,
            crl_id=crl.id if crl else None,
            crl_number=crl.crl_number if crl else None,
            crl_signed=crl.is_signed if crl else False,
        )

    async def delete_certificate(self, cert_id: int, destroy_key: bool = False) -> CertificateDeletionResult:
        try:
            result = await self._delete_certificate(cert_id, destroy_key)
        except Exception as exc:
            self._failed("certificate.delete", "certificate", cert_id, exc, {"destroy_key": destroy_key})
            raise
        self.audit.record(
            "certificate.delete",
            "certificate",
            cert_id,
            STATUS_SUCCESS,
            {"destroy_key": destroy_key, "key_destroyed": result.key_destroyed},
        )
        return result

    async def _delete_certificate(self, cert_id: int, destroy_key: bool) -> CertificateDeletionResult:
        cert = self._get_certificate(cert_id)
        grace = timedelta(days=self.config.certificate_delete_grace_days)
        if cert.status != CertificateStatus.REVOKED and utcnow() - cert.not_after <= grace:
            raise StateConflictError(
                f"Certificate must be revoked or expired for more than "
                f"{self.config.certificate_delete_grace_days} days before deletion"
            )

        key_destroyed = False
        if destroy_key:
            shared = (
                self.db.query(Certificate)
                .filter(Certificate.kms_key_id == cert.kms_key_id, Certificate.id != cert.id)
                .count()
            )
            if shared:
                logger.warning(
                    "Key %s is shared with %d renewed certificate(s); not destroying", cert.kms_key_id, shared
                )
            else:
                key_destroyed = await self._destroy_custodial_key(cert.kms_key_id, "Certificate deleted")

        self.db.query(Certificate).filter(Certificate.renewed_from_id == cert.id).update(
            {Certificate.renewed_from_id: None}, synchronize_session=False
        )
        self.db.delete(cert)
        self.db.commit()
        logger.info("Certificate deleted id=%s key_destroyed=%s", cert_id, key_destroyed)
        return CertificateDeletionResult(id=cert_id, deleted=True, key_destroyed=key_destroyed)
