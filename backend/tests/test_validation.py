import pytest

from pki_manager.crypto.dn import DistinguishedName
from pki_manager.crypto.keys import KeyAlgorithm
from pki_manager.crypto.validation import (
    CertificateType,
    MAX_VALIDITY_DAYS,
    validate_ca_validity_years,
    validate_certificate_request,
    validate_certificate_validity,
    validate_dn,
    validate_domain_name,
    validate_email_address,
    validate_ip_address,
    validate_ipv4,
    validate_ipv6,
    validate_server_sans,
)


class TestValidateDN:
    """Test distinguished name rules"""

    def test_valid_dn(self):
        result = validate_dn(DistinguishedName(common_name="host", country="US"))

        assert result.valid is True
        assert result.errors == []

    def test_common_name_required(self):
        result = validate_dn(DistinguishedName(organization="Org"))

        assert result.valid is False
        assert "Common Name (CN) is required" in result.errors

    def test_blank_common_name_rejected(self):
        result = validate_dn(DistinguishedName(common_name="   "))

        assert result.valid is False

    @pytest.mark.parametrize("country", ["USA", "U", "1A", "U5"])
    def test_country_must_be_two_letters(self, country):
        result = validate_dn(DistinguishedName(common_name="host", country=country))

        assert result.valid is False
        assert "Country (C) must be a 2-letter code" in result.errors

    def test_errors_aggregated(self):
        result = validate_dn(DistinguishedName(country="USA"))

        assert len(result.errors) == 2


class TestValidateDomainName:
    """Test FQDN syntax rules"""

    @pytest.mark.parametrize(
        "domain",
        ["example.com", "www.example.com", "*.example.com", "a-b.example.co", "xn--bcher-kva.example"],
    )
    def test_valid_domains(self, domain):
        assert validate_domain_name(domain).valid is True

    @pytest.mark.parametrize(
        "domain,message",
        [
            ("", "Domain name is required"),
            ("localhost", "Domain name must have at least two labels"),
            ("foo.*.example.com", "Wildcard (*) can only appear at the beginning"),
            ("*.*.example.com", "Wildcard (*) can only appear at the beginning"),
            ("example..com", "Domain label cannot be empty"),
            ("-bad.example.com", "must start with alphanumeric character"),
            ("bad-.example.com", "must end with alphanumeric character"),
            ("under_score.example.com", "contains invalid characters"),
        ],
    )
    def test_invalid_domains(self, domain, message):
        result = validate_domain_name(domain)

        assert result.valid is False
        assert message in result.error

    def test_label_too_long(self):
        result = validate_domain_name("a" * 64 + ".com")

        assert result.valid is False
        assert "63 characters" in result.error

    def test_domain_too_long(self):
        domain = ".".join(["a" * 60] * 5)

        result = validate_domain_name(domain)

        assert result.valid is False
        assert "253 characters" in result.error


class TestValidateIPAddress:
    """Test IPv4/IPv6 checks"""

    @pytest.mark.parametrize("value", ["192.168.1.1", "0.0.0.0", "255.255.255.255"])
    def test_valid_ipv4(self, value):
        assert validate_ipv4(value).valid is True

    @pytest.mark.parametrize("value", ["256.1.1.1", "1.2.3", "1.2.3.4.5", "a.b.c.d", "01.2.3.4"])
    def test_invalid_ipv4(self, value):
        assert validate_ipv4(value).valid is False

    @pytest.mark.parametrize("value", ["::1", "2001:db8::1", "fe80::1:2:3:4"])
    def test_valid_ipv6(self, value):
        assert validate_ipv6(value).valid is True

    def test_invalid_ipv6(self):
        assert validate_ipv6("2001:db8::g").valid is False

    def test_ip_address_accepts_either_family(self):
        assert validate_ip_address("10.0.0.1").valid is True
        assert validate_ip_address("::1").valid is True

        result = validate_ip_address("not-an-ip")
        assert result.valid is False
        assert result.error == "Invalid IP address (neither IPv4 nor IPv6)"


class TestValidateServerSANs:
    """Test SAN aggregation"""

    def test_all_valid(self):
        result = validate_server_sans(["example.com", "*.example.com"], ["192.168.1.1"])

        assert result.valid is True

    def test_collects_every_error(self):
        result = validate_server_sans(["bad_name.com", "localhost"], ["999.1.1.1"])

        assert result.valid is False
        assert len(result.errors) == 3
        assert result.errors[0].startswith("Invalid SAN DNS name 'bad_name.com'")
        assert result.errors[2].startswith("Invalid SAN IP address '999.1.1.1'")

    def test_empty_lists_valid(self):
        assert validate_server_sans().valid is True


class TestValidity:
    """Test validity period bounds"""

    def test_bounds(self):
        assert validate_certificate_validity(1, 825).valid is True
        assert validate_certificate_validity(825, 825).valid is True
        assert validate_certificate_validity(0, 825).error == "Validity days must be at least 1"
        assert validate_certificate_validity(826, 825).error == "Validity days cannot exceed 825 days"

    def test_non_numeric(self):
        assert validate_certificate_validity("30").valid is False
        assert validate_certificate_validity(True).valid is False

    def test_policy_maximums(self):
        assert MAX_VALIDITY_DAYS[CertificateType.SERVER] == 825
        assert MAX_VALIDITY_DAYS[CertificateType.CLIENT] == 730
        assert MAX_VALIDITY_DAYS[CertificateType.CODE_SIGNING] == 1095
        assert MAX_VALIDITY_DAYS[CertificateType.EMAIL] == 730

    def test_ca_validity_years(self):
        assert validate_ca_validity_years(1).valid is True
        assert validate_ca_validity_years(30).valid is True
        assert validate_ca_validity_years(0).valid is False
        assert validate_ca_validity_years(31).error == "CA validity must be between 1 and 30 years"


class TestCertificateRequestRules:
    """Test type specific request rules"""

    def test_server_request(self):
        result = validate_certificate_request(
            "server",
            DistinguishedName(common_name="www.example.com"),
            san_dns=["www.example.com"],
            validity_days=825,
        )

        assert result.valid is True

    def test_server_validity_exceeded(self):
        result = validate_certificate_request(
            CertificateType.SERVER, DistinguishedName(common_name="host"), validity_days=826
        )

        assert result.valid is False
        assert "Validity days cannot exceed 825 days" in result.errors

    @pytest.mark.parametrize("cn", ["alice", "alice.smith", "alice@example.com"])
    def test_client_cn_accepted(self, cn):
        result = validate_certificate_request("client", DistinguishedName(common_name=cn))

        assert result.valid is True

    def test_client_cn_rejected(self):
        result = validate_certificate_request("client", DistinguishedName(common_name="Alice Smith"))

        assert result.valid is False
        assert "Client certificate CN must be a valid email address or username" in result.errors

    def test_code_signing_requires_organization(self):
        result = validate_certificate_request(
            "code_signing",
            DistinguishedName(common_name="Signer"),
            key_algorithm=KeyAlgorithm.ECDSA_P256,
        )

        assert result.valid is False
        assert "Code signing certificates require Organization (O)" in result.errors

    def test_code_signing_rejects_rsa_2048(self):
        result = validate_certificate_request(
            "code_signing",
            DistinguishedName(common_name="Signer", organization="Org"),
            key_algorithm=KeyAlgorithm.RSA_2048,
        )

        assert result.valid is False
        assert "Code signing certificates require RSA-3072, RSA-4096, or ECDSA-P256 minimum" in result.errors

    def test_code_signing_valid(self):
        result = validate_certificate_request(
            "code_signing",
            DistinguishedName(common_name="Signer", organization="Org"),
            validity_days=1095,
            key_algorithm="RSA-4096",
        )

        assert result.valid is True

    def test_email_requires_address(self):
        result = validate_certificate_request("email", DistinguishedName(common_name="Alice"))

        assert result.valid is False
        assert "Email protection certificates require at least one email address in SANs" in result.errors

    def test_email_same_domain(self):
        result = validate_certificate_request(
            "email",
            DistinguishedName(common_name="Alice"),
            san_email=["alice@example.com", "alice@other.org"],
        )

        assert result.valid is False
        assert "All email addresses must be from the same domain" in result.errors

    def test_email_valid(self):
        result = validate_certificate_request(
            "email",
            DistinguishedName(common_name="Alice"),
            san_email=["alice@example.com", "a.smith@EXAMPLE.com"],
        )

        assert result.valid is True

    def test_email_address_format(self):
        assert validate_email_address("user@example.com").valid is True
        assert validate_email_address("user@localhost").valid is False
        assert validate_email_address("no-at-sign").error == "Invalid email address: no-at-sign"
