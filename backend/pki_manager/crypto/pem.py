import base64
import binascii
import re

from pki_manager.errors import EncodingError

CERTIFICATE = "CERTIFICATE"
CERTIFICATE_REQUEST = "CERTIFICATE REQUEST"
X509_CRL = "X509 CRL"

_PEM_RE = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----\s*(.*?)\s*-----END \1-----",
    re.DOTALL,
)


def armor(label: str, der: bytes) -> str:
    """Wrap DER bytes in a PEM block with 64 column base64 lines."""
    body = base64.b64encode(der).decode("ascii")
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    return f"-----BEGIN {label}-----\n" + "\n".join(lines) + f"\n-----END {label}-----\n"


def unarmor(text: str, label: str = None) -> bytes:
    match = _PEM_RE.search(text)
    if not match:
        raise EncodingError("No PEM block found")
    if label and match.group(1) != label:
        raise EncodingError(f"Expected PEM label {label}, got {match.group(1)}")
    try:
        return base64.b64decode("".join(match.group(2).split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncodingError(f"Invalid PEM body: {exc}") from exc


def is_pem(data) -> bool:
    if isinstance(data, bytes):
        return b"-----BEGIN " in data
    return "-----BEGIN " in data


def der_to_base64(der: bytes) -> str:
    return base64.b64encode(der).decode("ascii")


def base64_to_der(text: str) -> bytes:
    try:
        return base64.b64decode("".join(text.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncodingError(f"Invalid base64 DER: {exc}") from exc


def load_der(data, label: str):
    """Accept PEM text, base64 DER text or raw DER bytes and return DER bytes."""
    if isinstance(data, bytes):
        if is_pem(data):
            return unarmor(data.decode("ascii", errors="replace"), label)
        return data
    if is_pem(data):
        return unarmor(data, label)
    return base64_to_der(data)


def convert(data, from_format: str, to_format: str, label: str):
    """Convert between ``pem`` text and ``der`` (base64 text)."""
    if from_format not in ("pem", "der") or to_format not in ("pem", "der"):
        raise EncodingError(f"Unsupported format conversion: {from_format} -> {to_format}")
    der = unarmor(data, label) if from_format == "pem" else load_der(data, label)
    if to_format == "pem":
        return armor(label, der)
    return der_to_base64(der)
