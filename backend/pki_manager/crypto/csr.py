from dataclasses import dataclass, field
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from pki_manager.crypto import pem
from pki_manager.crypto.dn import DistinguishedName, build_name, name_to_dn
from pki_manager.crypto.extensions import (
    CSR_EXTENSION_TYPES,
    CertificateExtensions,
    parse_extensions,
    to_x509_extension,
)
from pki_manager.crypto.keys import (
    infer_key_algorithm,
    public_key_to_pem,
    resolve_signature_algorithm,
    signature_hash,
)
from pki_manager.crypto.validation import validate_dn
from pki_manager.errors import EncodingError, ValidationError


@dataclass
class CSRParams:
    subject: DistinguishedName
    private_key: object
    signature_algorithm: Optional[str] = None
    extensions: CertificateExtensions = field(default_factory=CertificateExtensions)


@dataclass
class GeneratedCSR:
    pem: str
    der: str
    subject: DistinguishedName


@dataclass
class ParsedCSR:
    subject: DistinguishedName
    public_key_pem: str
    key_algorithm: str
    extensions: CertificateExtensions
    signature_valid: bool


def encode_csr(params: CSRParams) -> GeneratedCSR:
    """Build a PKCS#10 request signed by the requester's own key.

    Only Basic Constraints, Key Usage, Extended Key Usage and SAN may be
    requested; key identifiers and CRL distribution points are issuer-assigned.
    Requests without extensions are the most portable.
    """
    if params.private_key is None:
        raise ValidationError("A private key is required to sign the request")

    check = validate_dn(params.subject)
    if not check.valid:
        raise ValidationError("; ".join(check.errors), check.errors)

    builder = x509.CertificateSigningRequestBuilder().subject_name(build_name(params.subject))
    for item in params.extensions:
        if not isinstance(item, CSR_EXTENSION_TYPES):
            raise ValidationError(f"{type(item).__name__} cannot be requested in a CSR")
        value, critical = to_x509_extension(item)
        builder = builder.add_extension(value, critical=critical)

    algorithm = resolve_signature_algorithm(params.private_key, params.signature_algorithm)
    try:
        request = builder.sign(params.private_key, signature_hash(algorithm))
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Failed to sign CSR: {exc}") from exc

    der_bytes = request.public_bytes(serialization.Encoding.DER)
    return GeneratedCSR(
        pem=pem.armor(pem.CERTIFICATE_REQUEST, der_bytes),
        der=pem.der_to_base64(der_bytes),
        subject=name_to_dn(request.subject),
    )


def load_csr(data) -> x509.CertificateSigningRequest:
    der_bytes = pem.load_der(data, pem.CERTIFICATE_REQUEST)
    try:
        return x509.load_der_x509_csr(der_bytes)
    except ValueError as exc:
        raise EncodingError(f"Malformed CSR: {exc}") from exc


def decode_csr(data) -> ParsedCSR:
    request = load_csr(data)
    public_key = request.public_key()
    return ParsedCSR(
        subject=name_to_dn(request.subject),
        public_key_pem=public_key_to_pem(public_key),
        key_algorithm=infer_key_algorithm(public_key),
        extensions=extract_csr_extensions(request),
        signature_valid=request.is_signature_valid,
    )


def extract_csr_extensions(data) -> CertificateExtensions:
    request = data if isinstance(data, x509.CertificateSigningRequest) else load_csr(data)
    try:
        return parse_extensions(request.extensions)
    except ValueError as exc:
        raise EncodingError(f"Malformed CSR extensions: {exc}") from exc


def verify_csr(data) -> bool:
    try:
        request = load_csr(data)
    except EncodingError:
        return False
    return request.is_signature_valid


def convert_csr_format(data: str, from_format: str, to_format: str) -> str:
    return pem.convert(data, from_format, to_format, pem.CERTIFICATE_REQUEST)
