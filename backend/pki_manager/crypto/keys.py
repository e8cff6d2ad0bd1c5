import re
from enum import Enum

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from pki_manager.errors import EncodingError, ValidationError


class KeyAlgorithm(str, Enum):
    RSA_2048 = "RSA-2048"
    RSA_4096 = "RSA-4096"
    ECDSA_P256 = "ECDSA-P256"
    ECDSA_P384 = "ECDSA-P384"


DEFAULT_CA_KEY_ALGORITHM = KeyAlgorithm.RSA_4096
DEFAULT_CERTIFICATE_KEY_ALGORITHM = KeyAlgorithm.RSA_2048


class SignatureAlgorithm(str, Enum):
    SHA256_WITH_RSA = "sha256WithRSAEncryption"
    SHA384_WITH_RSA = "sha384WithRSAEncryption"
    SHA512_WITH_RSA = "sha512WithRSAEncryption"
    ECDSA_WITH_SHA256 = "ecdsa-with-SHA256"
    ECDSA_WITH_SHA384 = "ecdsa-with-SHA384"


# name -> (OID, digest, family, NULL parameters)
_SIGNATURE_ALGORITHMS = {
    SignatureAlgorithm.SHA256_WITH_RSA: ("1.2.840.113549.1.1.11", hashes.SHA256, "rsa", True),
    SignatureAlgorithm.SHA384_WITH_RSA: ("1.2.840.113549.1.1.12", hashes.SHA384, "rsa", True),
    SignatureAlgorithm.SHA512_WITH_RSA: ("1.2.840.113549.1.1.13", hashes.SHA512, "rsa", True),
    SignatureAlgorithm.ECDSA_WITH_SHA256: ("1.2.840.10045.4.3.2", hashes.SHA256, "ec", False),
    SignatureAlgorithm.ECDSA_WITH_SHA384: ("1.2.840.10045.4.3.3", hashes.SHA384, "ec", False),
}

SERIAL_NUMBER_RE = re.compile(r"^[0-9a-fA-F]+$")


def parse_key_algorithm(value) -> KeyAlgorithm:
    if isinstance(value, KeyAlgorithm):
        return value
    try:
        return KeyAlgorithm(value)
    except ValueError:
        raise ValidationError(f"Unsupported key algorithm: {value}") from None


def generate_private_key(algorithm):
    algorithm = parse_key_algorithm(algorithm)
    if algorithm == KeyAlgorithm.RSA_2048:
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)
    if algorithm == KeyAlgorithm.RSA_4096:
        return rsa.generate_private_key(public_exponent=65537, key_size=4096)
    if algorithm == KeyAlgorithm.ECDSA_P256:
        return ec.generate_private_key(ec.SECP256R1())
    return ec.generate_private_key(ec.SECP384R1())


def key_algorithm_of(key) -> KeyAlgorithm:
    """Exact algorithm for a key this service generated."""
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return KeyAlgorithm.RSA_4096 if key.key_size >= 4096 else KeyAlgorithm.RSA_2048
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        if isinstance(key.curve, ec.SECP384R1):
            return KeyAlgorithm.ECDSA_P384
        return KeyAlgorithm.ECDSA_P256
    raise ValidationError(f"Unsupported key type: {type(key).__name__}")


def infer_key_algorithm(public_key) -> str:
    """Best-effort guess from a parsed public key.

    RSA keys are classified by modulus size; every non-RSA key is reported as
    ECDSA-P256.
    """
    if isinstance(public_key, rsa.RSAPublicKey):
        return KeyAlgorithm.RSA_4096.value if public_key.key_size >= 4096 else KeyAlgorithm.RSA_2048.value
    return KeyAlgorithm.ECDSA_P256.value


def default_signature_algorithm(key) -> SignatureAlgorithm:
    # SHA-256 for every RSA size; SHA-384 only by explicit request
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return SignatureAlgorithm.SHA256_WITH_RSA
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        if isinstance(key.curve, ec.SECP384R1):
            return SignatureAlgorithm.ECDSA_WITH_SHA384
        return SignatureAlgorithm.ECDSA_WITH_SHA256
    raise ValidationError(f"Unsupported key type: {type(key).__name__}")


def resolve_signature_algorithm(key, requested=None) -> SignatureAlgorithm:
    if requested is None:
        return default_signature_algorithm(key)
    try:
        algorithm = SignatureAlgorithm(requested)
    except ValueError:
        raise ValidationError(f"Unsupported signature algorithm: {requested}") from None
    family = _SIGNATURE_ALGORITHMS[algorithm][2]
    is_rsa = isinstance(key, rsa.RSAPrivateKey)
    if (family == "rsa") != is_rsa:
        raise ValidationError(f"Signature algorithm {algorithm.value} does not match the signing key")
    return algorithm


def signature_oid(algorithm: SignatureAlgorithm) -> str:
    return _SIGNATURE_ALGORITHMS[algorithm][0]


def signature_has_null_parameters(algorithm: SignatureAlgorithm) -> bool:
    return _SIGNATURE_ALGORITHMS[algorithm][3]


def signature_hash(algorithm: SignatureAlgorithm) -> hashes.HashAlgorithm:
    return _SIGNATURE_ALGORITHMS[algorithm][1]()


def sign_bytes(private_key, data: bytes, algorithm: SignatureAlgorithm) -> bytes:
    digest = signature_hash(algorithm)
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.sign(data, padding.PKCS1v15(), digest)
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return private_key.sign(data, ec.ECDSA(digest))
    raise ValidationError(f"Unsupported signing key: {type(private_key).__name__}")


def private_key_to_pem(private_key) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def public_key_to_pem(public_key) -> str:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


def load_private_key(pem) -> object:
    data = pem.encode() if isinstance(pem, str) else pem
    try:
        return serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        raise EncodingError(f"Failed to load private key: {exc}") from exc


def load_public_key(pem) -> object:
    data = pem.encode() if isinstance(pem, str) else pem
    try:
        return serialization.load_pem_public_key(data)
    except (ValueError, TypeError) as exc:
        raise EncodingError(f"Failed to load public key: {exc}") from exc


def generate_serial_number() -> int:
    """Random positive serial of at most 159 bits (fits in 20 bytes)."""
    return x509.random_serial_number()


def serial_to_hex(serial: int) -> str:
    return hex(serial)[2:].upper()


def normalize_serial(serial: str) -> str:
    """Lowercase hex with ``:`` and whitespace removed."""
    cleaned = re.sub(r"[\s:]", "", str(serial)).lower()
    if cleaned.startswith("0x"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("0") or "0"


def parse_serial(serial: str) -> int:
    cleaned = normalize_serial(serial)
    if not SERIAL_NUMBER_RE.match(cleaned):
        raise ValidationError(f"Invalid serial number: {serial}")
    value = int(cleaned, 16)
    if value <= 0 or value.bit_length() > 159:
        raise ValidationError("Serial number must be positive and at most 20 bytes")
    return value
