import base64
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from jose import JWTError, jwt

from pki_manager.config import settings
from pki_manager.errors import CustodyError

KDF_SALT = b"pki_manager_custody"
KDF_ITERATIONS = 100000
IV_LENGTH = 12
TAG_LENGTH = 16


# ============================================
# AES-256-GCM Encryption/Decryption
# ============================================


def _derive_key(key: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=KDF_SALT,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(key.encode())


def encrypt_data(plaintext: str, key: str) -> str:
    """Encrypt data using AES-256-GCM, returns base64(iv + tag + ciphertext)"""
    iv = secrets.token_bytes(IV_LENGTH)
    cipher = Cipher(algorithms.AES(_derive_key(key)), modes.GCM(iv))
    encryptor = cipher.encryptor()
    ciphertext = encryptor.update(plaintext.encode()) + encryptor.finalize()
    return base64.b64encode(iv + encryptor.tag + ciphertext).decode()


def decrypt_data(ciphertext: str, key: str) -> str:
    """Decrypt data produced by encrypt_data"""
    encrypted_data = base64.b64decode(ciphertext)
    iv = encrypted_data[:IV_LENGTH]
    tag = encrypted_data[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
    actual_ciphertext = encrypted_data[IV_LENGTH + TAG_LENGTH:]

    cipher = Cipher(algorithms.AES(_derive_key(key)), modes.GCM(iv, tag))
    decryptor = cipher.decryptor()
    plaintext = decryptor.update(actual_ciphertext) + decryptor.finalize()
    return plaintext.decode()


# ============================================
# Password Hashing (bcrypt)
# ============================================


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a bcrypt hash"""
    return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())


def is_bcrypt_hash(password: str) -> bool:
    """Check if a string is a bcrypt hash"""
    if not isinstance(password, str):
        return False
    if not (password.startswith("$2b$") or password.startswith("$2a$")):
        return False
    return len(password) >= 60


# ============================================
# JWT Token Management
# ============================================


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.MASTER_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and verify a JWT access token"""
    try:
        return jwt.decode(token, settings.MASTER_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


# ============================================
# Custodial Key Encryption
# ============================================


def encrypt_private_key(private_key_pem: str) -> str:
    """Encrypt a private key PEM under the master key"""
    return encrypt_data(private_key_pem, settings.MASTER_KEY)


def decrypt_private_key(encrypted_key: str) -> str:
    """Decrypt a private key PEM held by the local custodian"""
    try:
        return decrypt_data(encrypted_key, settings.MASTER_KEY)
    except (InvalidTag, ValueError) as exc:
        raise CustodyError(
            "Stored private key could not be decrypted with the configured MASTER_KEY",
            operation="Get",
        ) from exc
