"""Database backed key custodian.

Private keys never leave this module unencrypted except through
``get_private_key``; they are stored AES-GCM encrypted under ``MASTER_KEY``.
Key state follows the KMIP model: active -> revoked -> destroyed.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from pki_manager.crypto import pem
from pki_manager.crypto.certificate import CertificateParams, encode_certificate, load_certificate
from pki_manager.crypto.csr import load_csr
from pki_manager.crypto.dn import DistinguishedName
from pki_manager.crypto.extensions import CertificateExtensions
from pki_manager.crypto.keys import (
    KeyAlgorithm,
    generate_private_key,
    load_private_key,
    load_public_key,
    parse_key_algorithm,
    private_key_to_pem,
    public_key_to_pem,
)
from pki_manager.custody.base import CertificateInfo, KeyCustodyClient, KeyPairIds
from pki_manager.errors import CustodyError, KeyAlreadyRevokedError
from pki_manager.models.custody import CustodyCertificate, CustodyKey
from pki_manager.security import decrypt_private_key, encrypt_private_key

logger = logging.getLogger(__name__)

STATE_ACTIVE = "active"
STATE_REVOKED = "revoked"
STATE_DESTROYED = "destroyed"


class LocalKeyCustody(KeyCustodyClient):
    def __init__(self, db: Session):
        self.db = db

    def _key(self, key_id: str, operation: str) -> CustodyKey:
        key = self.db.query(CustodyKey).filter(CustodyKey.id == key_id).first()
        if not key:
            raise CustodyError(f"Key {key_id} not found", operation=operation)
        return key

    def _linked(self, key: CustodyKey) -> Optional[CustodyKey]:
        if not key.linked_key_id:
            return None
        return self.db.query(CustodyKey).filter(CustodyKey.id == key.linked_key_id).first()

    def _store_pair(self, private_key, algorithm: KeyAlgorithm, tags: Optional[List[str]]) -> KeyPairIds:
        ids = KeyPairIds(private_key_id=str(uuid.uuid4()), public_key_id=str(uuid.uuid4()))
        public_pem = public_key_to_pem(private_key.public_key())
        self.db.add(
            CustodyKey(
                id=ids.private_key_id,
                object_type="private",
                algorithm=algorithm.value,
                linked_key_id=ids.public_key_id,
                public_key_pem=public_pem,
                encrypted_pem=encrypt_private_key(private_key_to_pem(private_key)),
                state=STATE_ACTIVE,
                tags=list(tags or []),
            )
        )
        self.db.add(
            CustodyKey(
                id=ids.public_key_id,
                object_type="public",
                algorithm=algorithm.value,
                linked_key_id=ids.private_key_id,
                public_key_pem=public_pem,
                state=STATE_ACTIVE,
                tags=list(tags or []),
            )
        )
        self.db.flush()
        return ids

    def _private_key(self, key_id: str, operation: str):
        key = self._key(key_id, operation)
        if key.object_type != "private":
            raise CustodyError(f"Key {key_id} is not a private key", operation=operation)
        if key.state != STATE_ACTIVE:
            raise CustodyError(f"Key {key_id} is {key.state}", operation=operation)
        return load_private_key(decrypt_private_key(key.encrypted_pem))

    async def create_key_pair(self, key_algorithm: KeyAlgorithm, tags: Optional[List[str]] = None) -> KeyPairIds:
        algorithm = parse_key_algorithm(key_algorithm)
        ids = self._store_pair(generate_private_key(algorithm), algorithm, tags)
        self.db.commit()
        logger.info("Local key pair created private=%s public=%s", ids.private_key_id, ids.public_key_id)
        return ids

    async def certify(
        self,
        *,
        subject: DistinguishedName,
        days_valid: int,
        key_algorithm: KeyAlgorithm = KeyAlgorithm.RSA_2048,
        public_key_id: Optional[str] = None,
        csr_pem: Optional[str] = None,
        issuer_private_key_id: Optional[str] = None,
        issuer_certificate_id: Optional[str] = None,
        extensions: Optional[CertificateExtensions] = None,
        tags: Optional[List[str]] = None,
    ) -> CertificateInfo:
        private_key_id = None
        subject_private_key = None

        if public_key_id:
            key = self._key(public_key_id, "Certify")
            if key.state != STATE_ACTIVE:
                raise CustodyError(f"Key {public_key_id} is {key.state}", operation="Certify")
            public_key = load_public_key(key.public_key_pem)
            private_key_id = key.id if key.object_type == "private" else key.linked_key_id
            public_key_id = key.linked_key_id if key.object_type == "private" else key.id
        elif csr_pem:
            request = load_csr(csr_pem)
            if not request.is_signature_valid:
                raise CustodyError("CSR signature is invalid", operation="Certify")
            public_key = request.public_key()
        else:
            algorithm = parse_key_algorithm(key_algorithm)
            subject_private_key = generate_private_key(algorithm)
            ids = self._store_pair(subject_private_key, algorithm, tags)
            private_key_id, public_key_id = ids.private_key_id, ids.public_key_id
            public_key = subject_private_key.public_key()

        if issuer_certificate_id:
            issuer_record = self.db.query(CustodyCertificate).filter(
                CustodyCertificate.id == issuer_certificate_id
            ).first()
            if not issuer_record:
                raise CustodyError(f"Issuer certificate {issuer_certificate_id} not found", operation="Certify")
            issuer_certificate = load_certificate(issuer_record.certificate_der)
            issuer_name = issuer_certificate.subject
            issuer_public_key = issuer_certificate.public_key()
            signing_key = self._private_key(
                issuer_private_key_id or issuer_record.private_key_id, "Certify"
            )
        else:
            issuer_name = None
            issuer_public_key = None
            if subject_private_key is not None:
                signing_key = subject_private_key
            elif private_key_id:
                signing_key = self._private_key(private_key_id, "Certify")
            else:
                raise CustodyError("Self-signed certification requires a custodial key", operation="Certify")

        not_before = datetime.now(timezone.utc)
        generated = encode_certificate(
            CertificateParams(
                subject=subject,
                public_key=public_key,
                signing_key=signing_key,
                issuer=issuer_name,
                issuer_public_key=issuer_public_key,
                not_before=not_before,
                not_after=not_before + timedelta(days=days_valid),
                extensions=extensions or CertificateExtensions(),
            )
        )
        certificate_der = pem.base64_to_der(generated.der)

        record = CustodyCertificate(
            id=str(uuid.uuid4()),
            certificate_der=certificate_der,
            private_key_id=private_key_id,
            public_key_id=public_key_id,
            issuer_certificate_id=issuer_certificate_id,
            tags=list(tags or []),
        )
        self.db.add(record)
        self.db.commit()
        logger.info("Local certificate issued id=%s serial=%s", record.id, generated.serial_number)

        return CertificateInfo(
            certificate_id=record.id,
            certificate_data=certificate_der.hex(),
            private_key_id=private_key_id,
            public_key_id=public_key_id,
        )

    async def get_certificate(self, certificate_id: str) -> str:
        record = self.db.query(CustodyCertificate).filter(CustodyCertificate.id == certificate_id).first()
        if not record:
            raise CustodyError(f"Certificate {certificate_id} not found", operation="Get")
        return pem.armor(pem.CERTIFICATE, record.certificate_der)

    async def get_public_key(self, key_id: str) -> str:
        key = self._key(key_id, "Get")
        if key.state == STATE_DESTROYED:
            raise CustodyError(f"Key {key_id} is destroyed", operation="Get")
        return key.public_key_pem

    async def get_private_key(self, key_id: str) -> str:
        key = self._key(key_id, "Get")
        if key.object_type != "private" or key.state == STATE_DESTROYED:
            raise CustodyError(f"Private key {key_id} is not available", operation="Get")
        private_key_pem = decrypt_private_key(key.encrypted_pem)
        logger.warning("Private key %s exported from local custody", key_id)
        return private_key_pem

    async def revoke_key(self, key_id: str, reason: Optional[str] = None) -> None:
        key = self._key(key_id, "Revoke")
        if key.state != STATE_ACTIVE:
            raise KeyAlreadyRevokedError(f"Key {key_id} is already {key.state}", operation="Revoke")
        for item in filter(None, (key, self._linked(key))):
            if item.state == STATE_ACTIVE:
                item.state = STATE_REVOKED
                item.revocation_reason = reason or "Revoked"
        self.db.commit()
        logger.info("Local key revoked id=%s", key_id)

    async def destroy_key(self, key_id: str) -> None:
        key = self._key(key_id, "Destroy")
        if key.state == STATE_ACTIVE:
            raise CustodyError(f"Key {key_id} must be revoked before it is destroyed", operation="Destroy")
        for item in filter(None, (key, self._linked(key))):
            item.state = STATE_DESTROYED
            item.encrypted_pem = None
        self.db.commit()
        logger.info("Local key destroyed id=%s", key_id)
