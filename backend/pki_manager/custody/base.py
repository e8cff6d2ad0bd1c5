from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from pki_manager.crypto.dn import DistinguishedName
from pki_manager.crypto.extensions import CertificateExtensions
from pki_manager.crypto.keys import KeyAlgorithm


@dataclass
class KeyPairIds:
    private_key_id: str
    public_key_id: str


@dataclass
class CertificateInfo:
    certificate_id: str
    # Hex encoded DER
    certificate_data: str
    private_key_id: Optional[str] = None
    public_key_id: Optional[str] = None


class KeyCustodyClient(ABC):
    """Custodial key store that holds private keys and signs on request.

    Revoking or destroying a private key also revokes or destroys the public
    key linked to it; callers never address the public half separately.
    """

    @abstractmethod
    async def create_key_pair(
        self, key_algorithm: KeyAlgorithm, tags: Optional[List[str]] = None
    ) -> KeyPairIds:
        ...

    @abstractmethod
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
        """Issue a certificate.

        Without ``public_key_id`` or ``csr_pem`` the custodian generates a new
        key pair for the subject. Without issuer ids the certificate is
        self-signed.
        """

    @abstractmethod
    async def get_certificate(self, certificate_id: str) -> str:
        ...

    @abstractmethod
    async def get_public_key(self, key_id: str) -> str:
        ...

    @abstractmethod
    async def get_private_key(self, key_id: str) -> str:
        ...

    @abstractmethod
    async def revoke_key(self, key_id: str, reason: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def destroy_key(self, key_id: str) -> None:
        ...

    async def close(self) -> None:
        return None
