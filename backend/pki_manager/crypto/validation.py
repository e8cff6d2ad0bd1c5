import ipaddress
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from pki_manager.crypto.dn import DistinguishedName
from pki_manager.crypto.keys import KeyAlgorithm


class CertificateType(str, Enum):
    SERVER = "server"
    CLIENT = "client"
    CODE_SIGNING = "code_signing"
    EMAIL = "email"


MAX_VALIDITY_DAYS = {
    CertificateType.SERVER: 825,
    CertificateType.CLIENT: 730,
    CertificateType.CODE_SIGNING: 1095,
    CertificateType.EMAIL: 730,
}

MIN_CA_VALIDITY_YEARS = 1
MAX_CA_VALIDITY_YEARS = 30

CODE_SIGNING_KEY_ALGORITHMS = (
    KeyAlgorithm.RSA_4096,
    KeyAlgorithm.ECDSA_P256,
    KeyAlgorithm.ECDSA_P384,
)

_LABEL_RE = re.compile(r"^[A-Za-z0-9-]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_USERNAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
_COUNTRY_RE = re.compile(r"^[A-Za-z]{2}$")


@dataclass
class ValidationResult:
    valid: bool = True
    errors: List[str] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None

    def add(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False

    def extend(self, other: "ValidationResult", prefix: str = "") -> None:
        for message in other.errors:
            self.add(f"{prefix}{message}")

    @classmethod
    def failure(cls, message: str) -> "ValidationResult":
        return cls(valid=False, errors=[message])


def validate_dn(dn: DistinguishedName) -> ValidationResult:
    result = ValidationResult()
    if not dn.common_name or not dn.common_name.strip():
        result.add("Common Name (CN) is required")
    if dn.country is not None and not _COUNTRY_RE.match(dn.country):
        result.add("Country (C) must be a 2-letter code")
    for name, value in (
        ("O", dn.organization),
        ("OU", dn.organizational_unit),
        ("ST", dn.state),
        ("L", dn.locality),
    ):
        if value is not None and not value.strip():
            result.add(f"{name} cannot be empty")
    return result


def validate_domain_name(domain: str) -> ValidationResult:
    if not domain or not isinstance(domain, str):
        return ValidationResult.failure("Domain name is required")

    domain = domain.strip()
    if not domain:
        return ValidationResult.failure("Domain name cannot be empty")
    if len(domain) > 253:
        return ValidationResult.failure("Domain name exceeds maximum length of 253 characters")

    if domain.startswith("*."):
        domain = domain[2:]
    if "*" in domain:
        return ValidationResult.failure("Wildcard (*) can only appear at the beginning")

    labels = domain.split(".")
    if len(labels) < 2:
        return ValidationResult.failure("Domain name must have at least two labels")

    for label in labels:
        if not label:
            return ValidationResult.failure("Domain label cannot be empty")
        if len(label) > 63:
            return ValidationResult.failure("Domain label exceeds maximum length of 63 characters")
        if not _LABEL_RE.match(label):
            return ValidationResult.failure(f"Domain label '{label}' contains invalid characters")
        if not label[0].isalnum():
            return ValidationResult.failure(f"Domain label '{label}' must start with alphanumeric character")
        if not label[-1].isalnum():
            return ValidationResult.failure(f"Domain label '{label}' must end with alphanumeric character")

    return ValidationResult()


def validate_ipv4(value: str) -> ValidationResult:
    if not value or not isinstance(value, str):
        return ValidationResult.failure("IP address is required")
    try:
        ipaddress.IPv4Address(value.strip())
    except ValueError:
        return ValidationResult.failure("Invalid IPv4 address format")
    return ValidationResult()


def validate_ipv6(value: str) -> ValidationResult:
    if not value or not isinstance(value, str):
        return ValidationResult.failure("IP address is required")
    try:
        ipaddress.IPv6Address(value.strip())
    except ValueError:
        return ValidationResult.failure("Invalid IPv6 address format")
    return ValidationResult()


def validate_ip_address(value: str) -> ValidationResult:
    if validate_ipv4(value).valid or validate_ipv6(value).valid:
        return ValidationResult()
    return ValidationResult.failure("Invalid IP address (neither IPv4 nor IPv6)")


def validate_email_address(value: str) -> ValidationResult:
    if not value or not isinstance(value, str) or not _EMAIL_RE.match(value.strip()):
        return ValidationResult.failure(f"Invalid email address: {value}")
    return ValidationResult()


def validate_server_sans(
    dns_names: Optional[Iterable[str]] = None, ip_addresses: Optional[Iterable[str]] = None
) -> ValidationResult:
    """Check every DNS and IP SAN, collecting all failures."""
    result = ValidationResult()
    for name in dns_names or []:
        check = validate_domain_name(name)
        if not check.valid:
            result.add(f"Invalid SAN DNS name '{name}': {check.error}")
    for address in ip_addresses or []:
        check = validate_ip_address(address)
        if not check.valid:
            result.add(f"Invalid SAN IP address '{address}': {check.error}")
    return result


def validate_certificate_validity(days, max_days: int = 825) -> ValidationResult:
    if isinstance(days, bool) or not isinstance(days, int):
        return ValidationResult.failure("Validity days must be a number")
    if days < 1:
        return ValidationResult.failure("Validity days must be at least 1")
    if days > max_days:
        return ValidationResult.failure(f"Validity days cannot exceed {max_days} days")
    return ValidationResult()


def validate_ca_validity_years(years) -> ValidationResult:
    if isinstance(years, bool) or not isinstance(years, int):
        return ValidationResult.failure("Validity years must be a number")
    if years < MIN_CA_VALIDITY_YEARS or years > MAX_CA_VALIDITY_YEARS:
        return ValidationResult.failure(
            f"CA validity must be between {MIN_CA_VALIDITY_YEARS} and {MAX_CA_VALIDITY_YEARS} years"
        )
    return ValidationResult()


def _validate_client(subject: DistinguishedName, emails: List[str]) -> ValidationResult:
    result = ValidationResult()
    cn = subject.common_name or ""
    if not (_EMAIL_RE.match(cn) or _USERNAME_RE.match(cn)):
        result.add("Client certificate CN must be a valid email address or username")
    for email in emails:
        result.extend(validate_email_address(email))
    return result


def _validate_code_signing(subject: DistinguishedName, key_algorithm: KeyAlgorithm) -> ValidationResult:
    result = ValidationResult()
    if not subject.organization:
        result.add("Code signing certificates require Organization (O)")
    if key_algorithm not in CODE_SIGNING_KEY_ALGORITHMS:
        result.add("Code signing certificates require RSA-3072, RSA-4096, or ECDSA-P256 minimum")
    return result


def _validate_email_protection(emails: List[str]) -> ValidationResult:
    result = ValidationResult()
    if not emails:
        result.add("Email protection certificates require at least one email address in SANs")
        return result
    for email in emails:
        result.extend(validate_email_address(email))
    if result.valid:
        domains = {email.strip().rsplit("@", 1)[1].lower() for email in emails}
        if len(domains) > 1:
            result.add("All email addresses must be from the same domain")
    return result


def validate_certificate_request(
    certificate_type,
    subject: DistinguishedName,
    san_dns: Optional[List[str]] = None,
    san_ip: Optional[List[str]] = None,
    san_email: Optional[List[str]] = None,
    validity_days: int = 365,
    key_algorithm=KeyAlgorithm.RSA_2048,
) -> ValidationResult:
    """Run every rule that applies to a certificate of the given type."""
    certificate_type = CertificateType(certificate_type)
    key_algorithm = KeyAlgorithm(key_algorithm)
    emails = list(san_email or [])

    result = ValidationResult()
    result.extend(validate_dn(subject))
    result.extend(validate_certificate_validity(validity_days, MAX_VALIDITY_DAYS[certificate_type]))
    result.extend(validate_server_sans(san_dns, san_ip))

    if certificate_type == CertificateType.CLIENT:
        result.extend(_validate_client(subject, emails))
    elif certificate_type == CertificateType.CODE_SIGNING:
        result.extend(_validate_code_signing(subject, key_algorithm))
    elif certificate_type == CertificateType.EMAIL:
        result.extend(_validate_email_protection(emails))
    elif emails:
        for email in emails:
            result.extend(validate_email_address(email))

    return result
