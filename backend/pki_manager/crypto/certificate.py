from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from pki_manager.crypto import pem
from pki_manager.crypto.dn import DistinguishedName, build_name, name_to_dn
from pki_manager.crypto.extensions import (
    CertificateExtensions,
    SubjectAltName,
    parse_extensions,
    to_x509_extension,
)
from pki_manager.crypto.keys import (
    infer_key_algorithm,
    load_public_key,
    parse_serial,
    public_key_to_pem,
    resolve_signature_algorithm,
    serial_to_hex,
    signature_hash,
    generate_serial_number,
)
from pki_manager.crypto.validation import validate_dn
from pki_manager.errors import EncodingError, ValidationError

DEFAULT_VALIDITY_DAYS = 365


@dataclass
class CertificateParams:
    subject: DistinguishedName
    public_key: object
    signing_key: object
    issuer: Optional[Union[DistinguishedName, x509.Name]] = None
    issuer_public_key: Optional[object] = None
    serial_number: Optional[Union[int, str]] = None
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    signature_algorithm: Optional[str] = None
    extensions: CertificateExtensions = field(default_factory=CertificateExtensions)


@dataclass
class GeneratedCertificate:
    pem: str
    der: str
    serial_number: str
    subject: DistinguishedName
    issuer: DistinguishedName
    not_before: datetime
    not_after: datetime


@dataclass
class ParsedCertificate:
    serial_number: str
    subject: DistinguishedName
    issuer: DistinguishedName
    not_before: datetime
    not_after: datetime
    extensions: CertificateExtensions
    key_algorithm: str
    public_key_pem: str
    signature_algorithm_oid: str
    fingerprint_sha256: str


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0)


def _serial(value) -> int:
    if value is None:
        return generate_serial_number()
    if isinstance(value, int):
        if value <= 0 or value.bit_length() > 159:
            raise ValidationError("Serial number must be positive and at most 20 bytes")
        return value
    return parse_serial(value)


def encode_certificate(params: CertificateParams) -> GeneratedCertificate:
    if params.signing_key is None:
        raise ValidationError("A signing private key is required")
    if params.public_key is None:
        raise ValidationError("A subject public key is required")

    check = validate_dn(params.subject)
    if not check.valid:
        raise ValidationError("; ".join(check.errors), check.errors)

    subject_name = build_name(params.subject)
    if params.issuer is None:
        issuer_name = subject_name
    elif isinstance(params.issuer, x509.Name):
        issuer_name = params.issuer
    else:
        issuer_name = build_name(params.issuer)

    not_before = _utc(params.not_before or datetime.now(timezone.utc))
    not_after = _utc(params.not_after or (not_before + timedelta(days=DEFAULT_VALIDITY_DAYS)))
    if not_after <= not_before:
        raise ValidationError("notAfter must be later than notBefore")

    algorithm = resolve_signature_algorithm(params.signing_key, params.signature_algorithm)
    issuer_public_key = params.issuer_public_key or params.signing_key.public_key()

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject_name)
        .issuer_name(issuer_name)
        .public_key(params.public_key)
        .serial_number(_serial(params.serial_number))
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    for item in params.extensions:
        value, critical = to_x509_extension(
            item, subject_public_key=params.public_key, issuer_public_key=issuer_public_key
        )
        builder = builder.add_extension(value, critical=critical)

    try:
        certificate = builder.sign(params.signing_key, signature_hash(algorithm))
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Failed to sign certificate: {exc}") from exc

    der_bytes = certificate.public_bytes(serialization.Encoding.DER)
    return GeneratedCertificate(
        pem=pem.armor(pem.CERTIFICATE, der_bytes),
        der=pem.der_to_base64(der_bytes),
        serial_number=serial_to_hex(certificate.serial_number),
        subject=name_to_dn(certificate.subject),
        issuer=name_to_dn(certificate.issuer),
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
    )


def load_certificate(data) -> x509.Certificate:
    """Load from PEM text, base64 DER text or raw DER bytes."""
    der_bytes = pem.load_der(data, pem.CERTIFICATE)
    try:
        return x509.load_der_x509_certificate(der_bytes)
    except ValueError as exc:
        raise EncodingError(f"Malformed certificate: {exc}") from exc


def decode_certificate(data) -> ParsedCertificate:
    certificate = load_certificate(data)
    try:
        extensions = parse_extensions(certificate.extensions)
    except ValueError as exc:
        raise EncodingError(f"Malformed certificate extensions: {exc}") from exc
    public_key = certificate.public_key()
    return ParsedCertificate(
        serial_number=serial_to_hex(certificate.serial_number),
        subject=name_to_dn(certificate.subject),
        issuer=name_to_dn(certificate.issuer),
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
        extensions=extensions,
        key_algorithm=infer_key_algorithm(public_key),
        public_key_pem=public_key_to_pem(public_key),
        signature_algorithm_oid=certificate.signature_algorithm_oid.dotted_string,
        fingerprint_sha256=certificate.fingerprint(hashes.SHA256()).hex(),
    )


def certificate_to_pem(certificate: x509.Certificate) -> str:
    return pem.armor(pem.CERTIFICATE, certificate.public_bytes(serialization.Encoding.DER))


def convert_certificate_format(data: str, from_format: str, to_format: str) -> str:
    return pem.convert(data, from_format, to_format, pem.CERTIFICATE)


def extract_sans(data) -> SubjectAltName:
    parsed = decode_certificate(data)
    return parsed.extensions.subject_alt_name or SubjectAltName()


def get_certificate_expiration(data) -> datetime:
    return load_certificate(data).not_valid_after_utc


def is_certificate_expired(data, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    return _utc(now) > get_certificate_expiration(data)


def certificate_fingerprints(data) -> dict:
    certificate = load_certificate(data)
    return {
        "sha256": certificate.fingerprint(hashes.SHA256()).hex(),
        "sha1": certificate.fingerprint(hashes.SHA1()).hex(),
    }


def verify_signature(public_key, signature: bytes, data: bytes, hash_algorithm) -> bool:
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(signature, data, padding.PKCS1v15(), hash_algorithm)
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, data, ec.ECDSA(hash_algorithm))
        else:
            return False
    except InvalidSignature:
        return False
    return True


def verify_certificate_signature(data, issuer_public_key_pem: str) -> bool:
    """Check only that ``issuer_public_key_pem`` signed the certificate."""
    certificate = load_certificate(data)
    issuer_key = load_public_key(issuer_public_key_pem)
    return verify_signature(
        issuer_key,
        certificate.signature,
        certificate.tbs_certificate_bytes,
        certificate.signature_hash_algorithm,
    )
