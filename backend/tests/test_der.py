from datetime import datetime, timezone

import pytest

from pki_manager.crypto import der, pem
from pki_manager.errors import EncodingError


class TestDERBuilder:
    """Test typed DER constructors"""

    def test_length_forms(self):
        assert der.encode_length(0) == b"\x00"
        assert der.encode_length(127) == b"\x7f"
        assert der.encode_length(128) == b"\x81\x80"
        assert der.encode_length(256) == b"\x82\x01\x00"

    def test_integer(self):
        assert der.integer(1) == b"\x02\x01\x01"
        assert der.integer(128) == b"\x02\x02\x00\x80"

    def test_enumerated_and_boolean(self):
        assert der.enumerated(2) == b"\x0a\x01\x02"
        assert der.boolean(True) == b"\x01\x01\xff"

    def test_null_and_oid(self):
        assert der.null() == b"\x05\x00"
        assert der.oid("2.5.29.20") == b"\x06\x03\x55\x1d\x14"

    def test_octet_and_bit_string(self):
        assert der.octet_string(b"\x01\x02") == b"\x04\x02\x01\x02"
        assert der.bit_string(b"\xff") == b"\x03\x02\x00\xff"

    def test_ia5_string(self):
        assert der.ia5_string("ab") == b"\x16\x02ab"

    def test_sequence_nests_children(self):
        encoded = der.sequence(der.integer(1), der.null())

        assert encoded == b"\x30\x05\x02\x01\x01\x05\x00"

    def test_set_of_sorts_members(self):
        encoded = der.set_of([der.integer(2), der.integer(1)])

        assert encoded == b"\x31\x06\x02\x01\x01\x02\x01\x02"

    def test_context_tags(self):
        assert der.explicit(0, der.null()) == b"\xa0\x02\x05\x00"
        assert der.implicit(6, der.ia5_string("x")) == b"\x86\x01x"
        assert der.context_constructed(1, der.null(), der.null()) == b"\xa1\x04\x05\x00\x05\x00"

    def test_implicit_rejects_empty(self):
        with pytest.raises(ValueError):
            der.implicit(0, b"")

    def test_times(self):
        moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        assert der.utc_time(moment) == b"\x17\x0d" + b"240102030405Z"
        assert der.generalized_time(moment) == b"\x18\x0f" + b"20240102030405Z"

    def test_time_value_switches_at_2050(self):
        assert der.time_value(datetime(2049, 12, 31, tzinfo=timezone.utc))[0] == 0x17
        assert der.time_value(datetime(2050, 1, 1, tzinfo=timezone.utc))[0] == 0x18

    def test_naive_time_treated_as_utc(self):
        assert der.utc_time(datetime(2024, 1, 2, 3, 4, 5)).endswith(b"240102030405Z")

    def test_algorithm_identifier(self):
        with_null = der.algorithm_identifier("1.2.840.113549.1.1.11", der.null())
        without = der.algorithm_identifier("1.2.840.10045.4.3.2")

        assert with_null.endswith(b"\x05\x00")
        assert without == der.sequence(der.oid("1.2.840.10045.4.3.2"))


class TestDERReader:
    """Test TLV reading"""

    def test_read_tlv(self):
        data = der.sequence(der.integer(5)) + der.null()

        tag, content, offset = der.read_tlv(data)

        assert tag == der.TAG_SEQUENCE
        assert content == der.integer(5)
        assert der.read_tlv(data, offset) == (0x05, b"", len(data))

    def test_read_long_form(self):
        payload = b"\x00" * 200
        tag, content, offset = der.read_tlv(der.octet_string(payload))

        assert tag == 0x04
        assert content == payload
        assert offset == 203

    def test_truncated(self):
        with pytest.raises(EncodingError):
            der.read_tlv(b"\x30\x05\x02\x01")

    def test_decode_rejects_trailing_data(self):
        with pytest.raises(EncodingError):
            der.decode(der.integer(1) + b"\x00")

    def test_decode_value(self):
        assert int(der.decode(der.integer(42))) == 42


class TestPEM:
    """Test PEM armor"""

    def test_armor_wraps_at_64_columns(self):
        text = pem.armor(pem.CERTIFICATE, b"\x01" * 100)
        lines = text.strip().splitlines()

        assert lines[0] == "-----BEGIN CERTIFICATE-----"
        assert lines[-1] == "-----END CERTIFICATE-----"
        assert all(len(line) <= 64 for line in lines[1:-1])
        assert len(lines[1]) == 64

    def test_unarmor(self):
        text = pem.armor(pem.X509_CRL, b"payload")

        assert pem.unarmor(text, pem.X509_CRL) == b"payload"

    def test_unarmor_label_mismatch(self):
        text = pem.armor(pem.CERTIFICATE, b"payload")

        with pytest.raises(EncodingError):
            pem.unarmor(text, pem.X509_CRL)

    def test_unarmor_without_block(self):
        with pytest.raises(EncodingError):
            pem.unarmor("not pem")

    def test_load_der_accepts_every_form(self):
        raw = b"\x30\x00"
        text = pem.armor(pem.CERTIFICATE, raw)

        assert pem.load_der(text, pem.CERTIFICATE) == raw
        assert pem.load_der(text.encode(), pem.CERTIFICATE) == raw
        assert pem.load_der(pem.der_to_base64(raw), pem.CERTIFICATE) == raw
        assert pem.load_der(raw, pem.CERTIFICATE) == raw

    def test_convert_between_formats(self):
        text = pem.armor(pem.CERTIFICATE_REQUEST, b"abc")

        as_der = pem.convert(text, "pem", "der", pem.CERTIFICATE_REQUEST)
        back = pem.convert(as_der, "der", "pem", pem.CERTIFICATE_REQUEST)

        assert as_der == pem.der_to_base64(b"abc")
        assert back == text

    def test_convert_unknown_format(self):
        with pytest.raises(EncodingError):
            pem.convert("x", "pem", "p12", pem.CERTIFICATE)
