"""Certificate extension model.

Each supported extension is its own frozen dataclass. ``CertificateExtensions``
holds at most one of each kind, and ``to_x509_extension`` /
``from_x509_extension`` are the only places that map between this model and
``cryptography`` objects.
"""
import ipaddress
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Tuple, Union

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID

from pki_manager.crypto import der
from pki_manager.errors import EncodingError, ValidationError

CRL_DISTRIBUTION_POINTS_OID = "2.5.29.31"

EKU_PURPOSES = {
    "serverAuth": ExtendedKeyUsageOID.SERVER_AUTH,
    "clientAuth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "codeSigning": ExtendedKeyUsageOID.CODE_SIGNING,
    "emailProtection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "timeStamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "OCSPSigning": ExtendedKeyUsageOID.OCSP_SIGNING,
}
_EKU_OID_TO_NAME = {oid.dotted_string: name for name, oid in EKU_PURPOSES.items()}

KEY_USAGE_BITS = (
    "digital_signature",
    "content_commitment",
    "key_encipherment",
    "data_encipherment",
    "key_agreement",
    "key_cert_sign",
    "crl_sign",
    "encipher_only",
    "decipher_only",
)


@dataclass(frozen=True)
class BasicConstraints:
    ca: bool = False
    path_length: Optional[int] = None


@dataclass(frozen=True)
class KeyUsage:
    digital_signature: bool = False
    content_commitment: bool = False
    key_encipherment: bool = False
    data_encipherment: bool = False
    key_agreement: bool = False
    key_cert_sign: bool = False
    crl_sign: bool = False
    encipher_only: bool = False
    decipher_only: bool = False

    def enabled(self) -> List[str]:
        return [name for name in KEY_USAGE_BITS if getattr(self, name)]


@dataclass(frozen=True)
class ExtendedKeyUsage:
    purposes: Tuple[str, ...] = ()

    def __post_init__(self):
        unknown = [p for p in self.purposes if p not in EKU_PURPOSES]
        if unknown:
            raise ValidationError(f"Unknown extended key usage: {', '.join(unknown)}")


@dataclass(frozen=True)
class SubjectAltName:
    dns: Tuple[str, ...] = ()
    ip: Tuple[str, ...] = ()
    email: Tuple[str, ...] = ()
    uri: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (self.dns or self.ip or self.email or self.uri)


@dataclass(frozen=True)
class SubjectKeyIdentifier:
    """Presence flag; the value is derived from the subject public key."""


@dataclass(frozen=True)
class AuthorityKeyIdentifier:
    """Presence flag; the value is derived from the issuer public key."""


@dataclass(frozen=True)
class CRLDistributionPoints:
    urls: Tuple[str, ...] = ()


Extension = Union[
    BasicConstraints,
    KeyUsage,
    ExtendedKeyUsage,
    SubjectAltName,
    SubjectKeyIdentifier,
    AuthorityKeyIdentifier,
    CRLDistributionPoints,
]

EXTENSION_TYPES = (
    BasicConstraints,
    KeyUsage,
    ExtendedKeyUsage,
    SubjectAltName,
    SubjectKeyIdentifier,
    AuthorityKeyIdentifier,
    CRLDistributionPoints,
)

CSR_EXTENSION_TYPES = (BasicConstraints, KeyUsage, ExtendedKeyUsage, SubjectAltName)


@dataclass(frozen=True)
class CertificateExtensions:
    basic_constraints: Optional[BasicConstraints] = None
    key_usage: Optional[KeyUsage] = None
    extended_key_usage: Optional[ExtendedKeyUsage] = None
    subject_alt_name: Optional[SubjectAltName] = None
    subject_key_identifier: Optional[SubjectKeyIdentifier] = None
    authority_key_identifier: Optional[AuthorityKeyIdentifier] = None
    crl_distribution_points: Optional[CRLDistributionPoints] = None
    # OIDs of parsed extensions outside the closed set, kept for display only
    unrecognized: Tuple[str, ...] = field(default=())

    def __iter__(self) -> Iterator[Extension]:
        for value in (
            self.basic_constraints,
            self.key_usage,
            self.extended_key_usage,
            self.subject_alt_name,
            self.subject_key_identifier,
            self.authority_key_identifier,
            self.crl_distribution_points,
        ):
            if value is not None:
                yield value

    @classmethod
    def of(cls, *items: Extension) -> "CertificateExtensions":
        slots: Dict[str, Extension] = {}
        for item in items:
            slot = _slot_for(item)
            if slot in slots:
                raise ValidationError(f"Duplicate extension: {type(item).__name__}")
            slots[slot] = item
        return cls(**slots)

    def oids(self) -> List[str]:
        return [extension_oid(item) for item in self] + list(self.unrecognized)


def _slot_for(item) -> str:
    if isinstance(item, BasicConstraints):
        return "basic_constraints"
    if isinstance(item, KeyUsage):
        return "key_usage"
    if isinstance(item, ExtendedKeyUsage):
        return "extended_key_usage"
    if isinstance(item, SubjectAltName):
        return "subject_alt_name"
    if isinstance(item, SubjectKeyIdentifier):
        return "subject_key_identifier"
    if isinstance(item, AuthorityKeyIdentifier):
        return "authority_key_identifier"
    if isinstance(item, CRLDistributionPoints):
        return "crl_distribution_points"
    raise ValidationError(f"Unsupported extension type: {type(item).__name__}")


def extension_oid(item: Extension) -> str:
    if isinstance(item, BasicConstraints):
        return ExtensionOID.BASIC_CONSTRAINTS.dotted_string
    if isinstance(item, KeyUsage):
        return ExtensionOID.KEY_USAGE.dotted_string
    if isinstance(item, ExtendedKeyUsage):
        return ExtensionOID.EXTENDED_KEY_USAGE.dotted_string
    if isinstance(item, SubjectAltName):
        return ExtensionOID.SUBJECT_ALTERNATIVE_NAME.dotted_string
    if isinstance(item, SubjectKeyIdentifier):
        return ExtensionOID.SUBJECT_KEY_IDENTIFIER.dotted_string
    if isinstance(item, AuthorityKeyIdentifier):
        return ExtensionOID.AUTHORITY_KEY_IDENTIFIER.dotted_string
    if isinstance(item, CRLDistributionPoints):
        return CRL_DISTRIBUTION_POINTS_OID
    raise ValidationError(f"Unsupported extension type: {type(item).__name__}")


def encode_crl_distribution_points(urls) -> bytes:
    """DER for CRLDistributionPoints with one fullName URI per point."""
    points = []
    for url in urls:
        uri = der.implicit(6, der.ia5_string(url))
        full_name = der.context_constructed(0, uri)
        distribution_point = der.context_constructed(0, full_name)
        points.append(der.sequence(distribution_point))
    return der.sequence_of(points)


def decode_crl_distribution_points(value: bytes) -> List[str]:
    tag, points, end = der.read_tlv(value)
    if tag != der.TAG_SEQUENCE or end != len(value):
        raise EncodingError("CRL distribution points must be a SEQUENCE")
    urls = []
    offset = 0
    while offset < len(points):
        _, point, offset = der.read_tlv(points, offset)
        inner = 0
        while inner < len(point):
            tag, body, inner = der.read_tlv(point, inner)
            if tag != 0xA0:
                continue
            # distributionPoint [0] -> fullName [0] -> GeneralName choices
            name_tag, full_name, _ = der.read_tlv(body)
            if name_tag != 0xA0:
                continue
            cursor = 0
            while cursor < len(full_name):
                general_tag, general_value, cursor = der.read_tlv(full_name, cursor)
                if general_tag == 0x86:
                    urls.append(general_value.decode("ascii"))
    return urls


def _general_names(san: SubjectAltName) -> list:
    names = []
    names.extend(x509.DNSName(value) for value in san.dns)
    try:
        names.extend(x509.IPAddress(ipaddress.ip_address(value)) for value in san.ip)
    except ValueError as exc:
        raise ValidationError(f"Invalid SAN IP address: {exc}") from exc
    names.extend(x509.RFC822Name(value) for value in san.email)
    names.extend(x509.UniformResourceIdentifier(value) for value in san.uri)
    return names


def to_x509_extension(item: Extension, subject_public_key=None, issuer_public_key=None):
    """Return ``(extension_value, critical)`` for a certificate builder."""
    if isinstance(item, BasicConstraints):
        path_length = item.path_length if item.ca else None
        return x509.BasicConstraints(ca=item.ca, path_length=path_length), True
    if isinstance(item, KeyUsage):
        flags = {name: getattr(item, name) for name in KEY_USAGE_BITS}
        if not item.key_agreement:
            # encipher/decipher only are undefined without key agreement
            flags["encipher_only"] = False
            flags["decipher_only"] = False
        return x509.KeyUsage(**flags), True
    if isinstance(item, ExtendedKeyUsage):
        return x509.ExtendedKeyUsage([EKU_PURPOSES[p] for p in item.purposes]), False
    if isinstance(item, SubjectAltName):
        return x509.SubjectAlternativeName(_general_names(item)), False
    if isinstance(item, SubjectKeyIdentifier):
        if subject_public_key is None:
            raise ValidationError("Subject key identifier requires the subject public key")
        return x509.SubjectKeyIdentifier.from_public_key(subject_public_key), False
    if isinstance(item, AuthorityKeyIdentifier):
        if issuer_public_key is None:
            raise ValidationError("Authority key identifier requires the issuer public key")
        return x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_public_key), False
    if isinstance(item, CRLDistributionPoints):
        value = x509.UnrecognizedExtension(
            x509.ObjectIdentifier(CRL_DISTRIBUTION_POINTS_OID),
            encode_crl_distribution_points(item.urls),
        )
        return value, False
    raise ValidationError(f"Unsupported extension type: {type(item).__name__}")


def from_x509_extension(ext: x509.Extension) -> Optional[Extension]:
    value = ext.value
    if isinstance(value, x509.BasicConstraints):
        return BasicConstraints(ca=value.ca, path_length=value.path_length)
    if isinstance(value, x509.KeyUsage):
        flags = {}
        for name in KEY_USAGE_BITS:
            if name in ("encipher_only", "decipher_only") and not value.key_agreement:
                flags[name] = False
            else:
                flags[name] = getattr(value, name)
        return KeyUsage(**flags)
    if isinstance(value, x509.ExtendedKeyUsage):
        return ExtendedKeyUsage(
            tuple(_EKU_OID_TO_NAME[o.dotted_string] for o in value if o.dotted_string in _EKU_OID_TO_NAME)
        )
    if isinstance(value, x509.SubjectAlternativeName):
        return SubjectAltName(
            dns=tuple(value.get_values_for_type(x509.DNSName)),
            ip=tuple(str(ip) for ip in value.get_values_for_type(x509.IPAddress)),
            email=tuple(value.get_values_for_type(x509.RFC822Name)),
            uri=tuple(value.get_values_for_type(x509.UniformResourceIdentifier)),
        )
    if isinstance(value, x509.SubjectKeyIdentifier):
        return SubjectKeyIdentifier()
    if isinstance(value, x509.AuthorityKeyIdentifier):
        return AuthorityKeyIdentifier()
    if isinstance(value, x509.CRLDistributionPoints):
        urls = []
        for point in value:
            for name in point.full_name or []:
                if isinstance(name, x509.UniformResourceIdentifier):
                    urls.append(name.value)
        return CRLDistributionPoints(tuple(urls))
    if isinstance(value, x509.UnrecognizedExtension) and value.oid.dotted_string == CRL_DISTRIBUTION_POINTS_OID:
        return CRLDistributionPoints(tuple(decode_crl_distribution_points(value.value)))
    return None


def parse_extensions(extensions: x509.Extensions) -> CertificateExtensions:
    items = []
    unrecognized = []
    for ext in extensions:
        item = from_x509_extension(ext)
        if item is None:
            unrecognized.append(ext.oid.dotted_string)
        else:
            items.append(item)
    parsed = CertificateExtensions.of(*items)
    if unrecognized:
        parsed = replace(parsed, unrecognized=tuple(unrecognized))
    return parsed


def extensions_to_dict(extensions: CertificateExtensions) -> dict:
    """JSON friendly view used by API responses."""
    result = {}
    for item in extensions:
        if isinstance(item, BasicConstraints):
            result["basic_constraints"] = {"ca": item.ca, "path_length": item.path_length}
        elif isinstance(item, KeyUsage):
            result["key_usage"] = item.enabled()
        elif isinstance(item, ExtendedKeyUsage):
            result["extended_key_usage"] = list(item.purposes)
        elif isinstance(item, SubjectAltName):
            result["subject_alt_name"] = {
                "dns": list(item.dns),
                "ip": list(item.ip),
                "email": list(item.email),
                "uri": list(item.uri),
            }
        elif isinstance(item, SubjectKeyIdentifier):
            result["subject_key_identifier"] = True
        elif isinstance(item, AuthorityKeyIdentifier):
            result["authority_key_identifier"] = True
        elif isinstance(item, CRLDistributionPoints):
            result["crl_distribution_points"] = list(item.urls)
        else:
            raise ValidationError(f"Unsupported extension type: {type(item).__name__}")
    result["oids"] = extensions.oids()
    return result
