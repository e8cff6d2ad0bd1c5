"""CRL encoding.

``encode_crl`` assembles the TBSCertList with the DER builder, signs it and
wraps it as ``SEQUENCE {tbsCertList, signatureAlgorithm, signatureValue}``.
``decode_crl`` only checks that outer shape and returns an envelope with
empty issuer and revoked list; ``parse_crl_entries`` is the full parser.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from pki_manager.crypto import der, pem
from pki_manager.crypto.dn import DistinguishedName, build_name, format_dn, name_to_dn
from pki_manager.crypto.keys import (
    load_public_key,
    normalize_serial,
    parse_serial,
    resolve_signature_algorithm,
    serial_to_hex,
    sign_bytes,
    signature_has_null_parameters,
    signature_oid,
)
from pki_manager.crypto.validation import validate_dn
from pki_manager.errors import EncodingError, ValidationError

logger = logging.getLogger(__name__)

CRL_NUMBER_OID = "2.5.29.20"
CRL_REASON_OID = "2.5.29.21"
DEFAULT_NEXT_UPDATE_DAYS = 7
CRL_VERSION_V2 = 1


class RevocationReason(str, Enum):
    UNSPECIFIED = "unspecified"
    KEY_COMPROMISE = "keyCompromise"
    CA_COMPROMISE = "caCompromise"
    AFFILIATION_CHANGED = "affiliationChanged"
    SUPERSEDED = "superseded"
    CESSATION_OF_OPERATION = "cessationOfOperation"
    CERTIFICATE_HOLD = "certificateHold"
    PRIVILEGE_WITHDRAWN = "privilegeWithdrawn"


REASON_CODES = {
    RevocationReason.UNSPECIFIED: 0,
    RevocationReason.KEY_COMPROMISE: 1,
    RevocationReason.CA_COMPROMISE: 2,
    RevocationReason.AFFILIATION_CHANGED: 3,
    RevocationReason.SUPERSEDED: 4,
    RevocationReason.CESSATION_OF_OPERATION: 5,
    RevocationReason.CERTIFICATE_HOLD: 6,
    RevocationReason.PRIVILEGE_WITHDRAWN: 9,
}

_REASON_FROM_FLAG = {
    x509.ReasonFlags.unspecified: RevocationReason.UNSPECIFIED,
    x509.ReasonFlags.key_compromise: RevocationReason.KEY_COMPROMISE,
    x509.ReasonFlags.ca_compromise: RevocationReason.CA_COMPROMISE,
    x509.ReasonFlags.affiliation_changed: RevocationReason.AFFILIATION_CHANGED,
    x509.ReasonFlags.superseded: RevocationReason.SUPERSEDED,
    x509.ReasonFlags.cessation_of_operation: RevocationReason.CESSATION_OF_OPERATION,
    x509.ReasonFlags.certificate_hold: RevocationReason.CERTIFICATE_HOLD,
    x509.ReasonFlags.privilege_withdrawn: RevocationReason.PRIVILEGE_WITHDRAWN,
}


@dataclass
class RevokedEntry:
    serial_number: str
    revocation_date: datetime
    reason: Optional[RevocationReason] = None


@dataclass
class CRLParams:
    issuer: Union[DistinguishedName, x509.Name]
    signing_key: object
    revoked: List[RevokedEntry] = field(default_factory=list)
    this_update: Optional[datetime] = None
    next_update: Optional[datetime] = None
    crl_number: int = 1
    signature_algorithm: Optional[str] = None
    include_reasons: bool = False


@dataclass
class GeneratedCRL:
    pem: str
    der: str
    crl_number: int
    revoked_count: int
    this_update: datetime
    next_update: datetime


@dataclass
class CRLEnvelope:
    issuer: DistinguishedName
    revoked: List[RevokedEntry]
    this_update: Optional[datetime] = None
    next_update: Optional[datetime] = None


@dataclass
class ParsedCRL:
    issuer: DistinguishedName
    this_update: datetime
    next_update: Optional[datetime]
    crl_number: Optional[int]
    revoked: List[RevokedEntry]
    signature_algorithm_oid: str


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0)


def parse_reason(value) -> RevocationReason:
    if isinstance(value, RevocationReason):
        return value
    try:
        return RevocationReason(value)
    except ValueError:
        raise ValidationError(f"Unknown revocation reason: {value}") from None


def crl_reason_extension(reason) -> bytes:
    """Extension ``{id-ce-cRLReasons, OCTET STRING {ENUMERATED code}}``."""
    code = REASON_CODES[parse_reason(reason)]
    return der.sequence(der.oid(CRL_REASON_OID), der.octet_string(der.enumerated(code)))


def crl_number_extension(number: int) -> bytes:
    return der.sequence(der.oid(CRL_NUMBER_OID), der.octet_string(der.integer(number)))


def _revoked_entry(entry: RevokedEntry, include_reasons: bool) -> bytes:
    parts = [der.integer(parse_serial(entry.serial_number)), der.time_value(entry.revocation_date)]
    if include_reasons and entry.reason is not None:
        reason = parse_reason(entry.reason)
        # RFC 5280 asks for the code to be omitted rather than sent as unspecified
        if reason != RevocationReason.UNSPECIFIED:
            parts.append(der.sequence(crl_reason_extension(reason)))
    return der.sequence(*parts)


def _issuer_der(issuer) -> bytes:
    if isinstance(issuer, x509.Name):
        return issuer.public_bytes()
    check = validate_dn(issuer)
    if not check.valid:
        raise ValidationError(f"Invalid issuer DN: {', '.join(check.errors)}", check.errors)
    return build_name(issuer).public_bytes()


def encode_crl(params: CRLParams) -> GeneratedCRL:
    if params.signing_key is None:
        raise ValidationError("A signing private key is required")
    if params.crl_number < 1:
        raise ValidationError("CRL number must be at least 1")

    this_update = _utc(params.this_update or datetime.now(timezone.utc))
    next_update = _utc(params.next_update or (this_update + timedelta(days=DEFAULT_NEXT_UPDATE_DAYS)))
    if next_update <= this_update:
        raise ValidationError("nextUpdate must be later than thisUpdate")

    algorithm = resolve_signature_algorithm(params.signing_key, params.signature_algorithm)
    parameters = der.null() if signature_has_null_parameters(algorithm) else None
    algorithm_der = der.algorithm_identifier(signature_oid(algorithm), parameters)

    tbs_parts = [
        der.integer(CRL_VERSION_V2),
        algorithm_der,
        _issuer_der(params.issuer),
        der.time_value(this_update),
        der.time_value(next_update),
    ]
    if params.revoked:
        tbs_parts.append(
            der.sequence_of(_revoked_entry(entry, params.include_reasons) for entry in params.revoked)
        )
    tbs_parts.append(der.explicit(0, der.sequence(crl_number_extension(params.crl_number))))
    tbs = der.sequence(*tbs_parts)

    signature = sign_bytes(params.signing_key, tbs, algorithm)
    crl_der = der.sequence(tbs, algorithm_der, der.bit_string(signature))

    issuer_label = (
        params.issuer.rfc4514_string() if isinstance(params.issuer, x509.Name) else format_dn(params.issuer)
    )
    logger.info(
        "CRL generated issuer=%s crl_number=%s revoked=%s next_update=%s",
        issuer_label,
        params.crl_number,
        len(params.revoked),
        next_update.isoformat(),
    )

    return GeneratedCRL(
        pem=pem.armor(pem.X509_CRL, crl_der),
        der=pem.der_to_base64(crl_der),
        crl_number=params.crl_number,
        revoked_count=len(params.revoked),
        this_update=this_update,
        next_update=next_update,
    )


def decode_crl(data) -> CRLEnvelope:
    """Validate the outer CertificateList shape only.

    Issuer and revoked entries are returned empty; use ``parse_crl_entries``
    when the contents are needed.
    """
    crl_der = pem.load_der(data, pem.X509_CRL)
    tag, body, end = der.read_tlv(crl_der)
    if tag != der.TAG_SEQUENCE or end != len(crl_der):
        raise EncodingError("Invalid CRL structure")

    tags = []
    offset = 0
    while offset < len(body):
        child_tag, _, offset = der.read_tlv(body, offset)
        tags.append(child_tag)
    if tags != [der.TAG_SEQUENCE, der.TAG_SEQUENCE, 0x03]:
        raise EncodingError("Invalid tbsCertList structure")

    return CRLEnvelope(issuer=DistinguishedName(), revoked=[])


def load_crl(data) -> x509.CertificateRevocationList:
    crl_der = pem.load_der(data, pem.X509_CRL)
    try:
        return x509.load_der_x509_crl(crl_der)
    except ValueError as exc:
        raise EncodingError(f"Malformed CRL: {exc}") from exc


def parse_crl_entries(data) -> ParsedCRL:
    crl = load_crl(data)
    try:
        crl_number = crl.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number
    except x509.ExtensionNotFound:
        crl_number = None

    revoked = []
    for item in crl:
        reason = None
        try:
            flag = item.extensions.get_extension_for_class(x509.CRLReason).value.reason
            reason = _REASON_FROM_FLAG.get(flag)
        except x509.ExtensionNotFound:
            pass
        revoked.append(
            RevokedEntry(
                serial_number=serial_to_hex(item.serial_number),
                revocation_date=item.revocation_date_utc,
                reason=reason,
            )
        )

    return ParsedCRL(
        issuer=name_to_dn(crl.issuer),
        this_update=crl.last_update_utc,
        next_update=crl.next_update_utc,
        crl_number=crl_number,
        revoked=revoked,
        signature_algorithm_oid=crl.signature_algorithm_oid.dotted_string,
    )


def is_crl_expired(next_update: datetime, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    return _utc(now) > _utc(next_update)


def is_certificate_revoked(entries: Iterable[Union[RevokedEntry, str]], serial_number: str) -> bool:
    wanted = normalize_serial(serial_number)
    for entry in entries:
        serial = entry.serial_number if isinstance(entry, RevokedEntry) else entry
        if normalize_serial(serial) == wanted:
            return True
    return False


def verify_crl_signature(data, issuer_public_key_pem: str) -> bool:
    crl = load_crl(data)
    public_key = load_public_key(issuer_public_key_pem)
    if not isinstance(public_key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
        return False
    return crl.is_signature_valid(public_key)


def convert_crl_format(data: str, from_format: str, to_format: str) -> str:
    return pem.convert(data, from_format, to_format, pem.X509_CRL)
