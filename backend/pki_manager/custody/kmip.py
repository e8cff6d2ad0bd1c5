"""KMIP 2.1 JSON TTLV client for a remote key management server."""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx

from pki_manager.crypto import pem
from pki_manager.crypto.dn import DN_ATTRIBUTES, DistinguishedName
from pki_manager.crypto.extensions import CertificateExtensions
from pki_manager.crypto.keys import KeyAlgorithm
from pki_manager.custody.base import CertificateInfo, KeyCustodyClient, KeyPairIds
from pki_manager.errors import CustodyError, KeyAlreadyRevokedError

logger = logging.getLogger(__name__)

KMIP_PATH = "/kmip/2_1"
USAGE_SIGN_VERIFY = 0x0001 | 0x0002

_MUTATING_OPERATIONS = {"CreateKeyPair", "Certify", "Revoke", "Destroy"}

_ALGORITHM_ATTRIBUTES = {
    KeyAlgorithm.RSA_2048: ("RSA", 2048, None),
    KeyAlgorithm.RSA_4096: ("RSA", 4096, None),
    KeyAlgorithm.ECDSA_P256: ("ECDSA", 256, "P256"),
    KeyAlgorithm.ECDSA_P384: ("ECDSA", 384, "P384"),
}

# KMIP certificate attribute suffix per DN short name
_DN_SUFFIX = {"CN": "Cn", "O": "O", "OU": "Ou", "C": "C", "ST": "St", "L": "L"}
_REQUIRED_NAME_FIELDS = (
    "Ou", "St", "L", "Email", "Uid", "SerialNumber", "Title", "GivenName",
    "Initials", "GenerationQualifier", "DnQualifier", "Pseudonym", "Dc",
)


def element(tag: str, value: Any, type_: Optional[str] = None) -> Dict[str, Any]:
    node = {"tag": tag, "value": value}
    if type_:
        node["type"] = type_
    return node


def find_element(elements: List[Dict[str, Any]], tag: str) -> Optional[Dict[str, Any]]:
    for node in elements or []:
        if node.get("tag") == tag:
            return node
    return None


def _require(elements, tag: str, operation: str) -> Dict[str, Any]:
    node = find_element(elements, tag)
    if node is None:
        raise CustodyError(f"KMS response for {operation} is missing {tag}", operation=operation)
    return node


def _string_value(node: Dict[str, Any], operation: str) -> str:
    value = node.get("value")
    if not isinstance(value, str):
        raise CustodyError(f"Expected string value for {node.get('tag')}", operation=operation)
    return value


def _vendor_attribute(name: str, value: str) -> Dict[str, Any]:
    return element(
        "Attribute",
        [
            element("VendorIdentification", "cosmian", "TextString"),
            element("AttributeName", name, "TextString"),
            element("AttributeValue", value, "TextString"),
        ],
    )


def _name_attributes(prefix: str, dn: DistinguishedName) -> List[Dict[str, Any]]:
    nodes = []
    present = set()
    for short, field_name, _ in DN_ATTRIBUTES:
        value = getattr(dn, field_name)
        if value:
            suffix = _DN_SUFFIX[short]
            nodes.append(element(f"Certificate{prefix}{suffix}", value, "TextString"))
            present.add(suffix)
    for suffix in _REQUIRED_NAME_FIELDS:
        if suffix not in present:
            nodes.append(element(f"Certificate{prefix}{suffix}", "", "TextString"))
    return nodes


class KMIPCustodyClient(KeyCustodyClient):
    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url:
            raise ValueError("KMS_URL must be set for the kmip custody backend")
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _send(self, request: Dict[str, Any]) -> Dict[str, Any]:
        operation = request["tag"]
        mutating = operation in _MUTATING_OPERATIONS
        endpoint = f"{self.url}{KMIP_PATH}"
        operation_id = str(uuid.uuid4())
        last_error: Optional[CustodyError] = None

        async with httpx.AsyncClient(transport=self._transport) as client:
            for attempt in range(1, self.retry_attempts + 1):
                try:
                    response = await asyncio.wait_for(
                        client.post(endpoint, headers=self._headers(), content=json.dumps(request)),
                        timeout=self.timeout,
                    )
                except asyncio.TimeoutError:
                    last_error = CustodyError(
                        f"KMS {operation} timed out after {self.timeout}s",
                        operation=operation,
                        retryable=True,
                        key_material_touched=mutating,
                    )
                except httpx.ConnectError as exc:
                    last_error = CustodyError(
                        f"KMS {operation} connection failed: {exc}",
                        operation=operation,
                        retryable=True,
                    )
                except httpx.TransportError as exc:
                    last_error = CustodyError(
                        f"KMS {operation} transport error: {exc}",
                        operation=operation,
                        retryable=True,
                        key_material_touched=mutating,
                    )
                else:
                    if 400 <= response.status_code < 500:
                        # Request-shape errors are not fixed by retrying
                        self._raise_client_error(operation, response)
                    if response.status_code >= 500:
                        last_error = CustodyError(
                            f"KMS {operation} failed: {response.status_code} {response.text}",
                            operation=operation,
                            retryable=True,
                            key_material_touched=mutating,
                            status=response.status_code,
                        )
                    else:
                        try:
                            payload = response.json()
                        except ValueError as exc:
                            raise CustodyError(
                                f"KMS {operation} returned invalid JSON",
                                operation=operation,
                                key_material_touched=mutating,
                            ) from exc
                        logger.debug("KMS %s succeeded operation_id=%s", operation, operation_id)
                        return payload

                logger.warning(
                    "KMS request attempt %d/%d for %s failed: %s",
                    attempt,
                    self.retry_attempts,
                    operation,
                    last_error.message,
                )
                if attempt < self.retry_attempts:
                    await asyncio.sleep(self.retry_delay * attempt)

        raise CustodyError(
            f"KMS {operation} failed after {self.retry_attempts} attempts: {last_error.message}",
            operation=operation,
            retryable=True,
            key_material_touched=last_error.key_material_touched,
            status=last_error.status,
        )

    def _raise_client_error(self, operation: str, response: httpx.Response) -> None:
        message = f"KMS {operation} rejected: {response.status_code} {response.text}"
        error_cls = CustodyError
        if operation == "Revoke" and "revoked" in response.text.lower():
            error_cls = KeyAlreadyRevokedError
        raise error_cls(message, operation=operation, status=response.status_code)

    async def create_key_pair(self, key_algorithm: KeyAlgorithm, tags: Optional[List[str]] = None) -> KeyPairIds:
        algorithm, length, curve = _ALGORITHM_ATTRIBUTES[KeyAlgorithm(key_algorithm)]
        attributes = [
            element("CryptographicAlgorithm", algorithm, "Enumeration"),
            element("CryptographicLength", length, "Integer"),
            element("CryptographicUsageMask", USAGE_SIGN_VERIFY, "Integer"),
        ]
        if curve:
            attributes.append(element("RecommendedCurve", curve, "Enumeration"))
        common = list(attributes)
        if tags:
            common.append(_vendor_attribute("tag", json.dumps(tags)))

        response = await self._send(
            element(
                "CreateKeyPair",
                [
                    element("CommonAttributes", common),
                    element("PrivateKeyAttributes", attributes),
                    element("PublicKeyAttributes", attributes),
                ],
            )
        )
        values = response.get("value", [])
        ids = KeyPairIds(
            private_key_id=_string_value(_require(values, "PrivateKeyUniqueIdentifier", "CreateKeyPair"), "CreateKeyPair"),
            public_key_id=_string_value(_require(values, "PublicKeyUniqueIdentifier", "CreateKeyPair"), "CreateKeyPair"),
        )
        logger.info("KMS key pair created private=%s public=%s", ids.private_key_id, ids.public_key_id)
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
        algorithm, length, curve = _ALGORITHM_ATTRIBUTES[KeyAlgorithm(key_algorithm)]
        self_signed = issuer_certificate_id is None

        request_value = []
        if public_key_id:
            request_value.append(element("UniqueIdentifier", public_key_id, "TextString"))
        if csr_pem:
            request_value.append(element("CertificateRequest", csr_pem.encode().hex(), "ByteString"))
            request_value.append(element("CertificateRequestType", "PEM", "Enumeration"))

        attributes = [
            element("CertificateType", "X509", "Enumeration"),
            element("CryptographicAlgorithm", algorithm, "Enumeration"),
            element("CryptographicLength", length, "Integer"),
        ]
        if curve:
            attributes.append(element("RecommendedCurve", curve, "Enumeration"))
        if issuer_certificate_id:
            attributes.append(
                element(
                    "Link",
                    [
                        element("LinkType", "CertificateLink", "Enumeration"),
                        element("LinkedObjectIdentifier", issuer_certificate_id, "TextString"),
                    ],
                )
            )
        if issuer_private_key_id:
            attributes.append(
                element(
                    "Link",
                    [
                        element("LinkType", "PrivateKeyLink", "Enumeration"),
                        element("LinkedObjectIdentifier", issuer_private_key_id, "TextString"),
                    ],
                )
            )

        certificate_attributes = _name_attributes("Subject", subject)
        if self_signed:
            certificate_attributes += _name_attributes("Issuer", subject)
        attributes.append(element("CertificateAttributes", certificate_attributes))
        attributes.append(_vendor_attribute("requested_validity_days", str(days_valid)))
        if tags:
            attributes.append(_vendor_attribute("tag", json.dumps(tags)))
        request_value.append(element("Attributes", attributes))

        if extensions is not None and any(True for _ in extensions):
            logger.debug("KMS certify: extension profile is applied by the key server for %s", subject)

        response = await self._send(element("Certify", request_value))
        certificate_id = _string_value(_require(response.get("value", []), "UniqueIdentifier", "Certify"), "Certify")

        fetched = await self._send(
            element("Get", [element("UniqueIdentifier", certificate_id, "TextString")])
        )
        values = fetched.get("value", [])
        info = CertificateInfo(
            certificate_id=certificate_id,
            certificate_data=self._certificate_hex(values),
        )
        attributes_node = find_element(values, "Attributes")
        for attribute in (attributes_node or {}).get("value", []) or []:
            if attribute.get("tag") != "Link":
                continue
            link_type = find_element(attribute.get("value"), "LinkType")
            linked = find_element(attribute.get("value"), "LinkedObjectIdentifier")
            if not link_type or not linked:
                continue
            if link_type.get("value") == "PrivateKeyLink":
                info.private_key_id = linked.get("value")
            elif link_type.get("value") == "PublicKeyLink":
                info.public_key_id = linked.get("value")

        logger.info("KMS certificate issued id=%s subject=%s", certificate_id, subject)
        return info

    def _certificate_hex(self, values) -> str:
        certificate = _require(values, "Certificate", "Get")
        certificate_value = _require(certificate.get("value"), "CertificateValue", "Get")
        return _string_value(certificate_value, "Get")

    async def get_certificate(self, certificate_id: str) -> str:
        response = await self._send(
            element("Get", [element("UniqueIdentifier", certificate_id, "TextString")])
        )
        certificate_hex = self._certificate_hex(response.get("value", []))
        return pem.armor(pem.CERTIFICATE, bytes.fromhex(certificate_hex))

    async def _get_key_material(self, key_id: str, object_tag: str) -> bytes:
        response = await self._send(
            element(
                "Get",
                [
                    element("UniqueIdentifier", key_id, "TextString"),
                    element("KeyFormatType", "PKCS8", "Enumeration"),
                    element("KeyWrapType", "AsRegistered", "Enumeration"),
                ],
            )
        )
        node = _require(response.get("value", []), object_tag, "Get")
        for tag in ("KeyBlock", "KeyValue", "KeyMaterial"):
            node = _require(node.get("value"), tag, "Get")
        return bytes.fromhex(_string_value(node, "Get"))

    async def get_public_key(self, key_id: str) -> str:
        return pem.armor("PUBLIC KEY", await self._get_key_material(key_id, "PublicKey"))

    async def get_private_key(self, key_id: str) -> str:
        material = await self._get_key_material(key_id, "PrivateKey")
        logger.warning("Private key %s exported from KMS", key_id)
        return pem.armor("PRIVATE KEY", material)

    async def revoke_key(self, key_id: str, reason: Optional[str] = None) -> None:
        await self._send(
            element(
                "Revoke",
                [
                    element("UniqueIdentifier", key_id, "TextString"),
                    element(
                        "RevocationReason",
                        [
                            element("RevocationReasonCode", "Unspecified", "Enumeration"),
                            element("RevocationMessage", reason or "Revoked", "TextString"),
                        ],
                    ),
                ],
            )
        )
        logger.info("KMS key revoked id=%s", key_id)

    async def destroy_key(self, key_id: str) -> None:
        await self._send(element("Destroy", [element("UniqueIdentifier", key_id, "TextString")]))
        logger.info("KMS key destroyed id=%s", key_id)
