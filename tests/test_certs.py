"""
Tests for loading and generating the server certificate.
"""

import datetime
import ssl

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

import certs
from certs import CertificateError, CertificateProvisioner, from_pem


def verify_self_signed(cert: x509.Certificate) -> None:
    cert.public_key().verify(
        cert.signature, cert.tbs_certificate_bytes, padding.PKCS1v15(), cert.signature_hash_algorithm,
    )


@pytest.fixture
def provisioner() -> CertificateProvisioner:
    return CertificateProvisioner(hostname="test-host")


def write_pair(tmp_path, prov):
    cert_path = tmp_path / "tls.crt"
    key_path = tmp_path / "tls.key"
    cert_path.write_bytes(prov.cert_pem)
    key_path.write_bytes(prov.key_pem)
    return str(cert_path), str(key_path)


class TestGeneration:

    def test_missing_files_generate(self, provisioner, tmp_path):
        prov = provisioner.obtain_certificate(str(tmp_path / "none.crt"), str(tmp_path / "none.key"))

        cert = prov.certificate
        assert prov.generated is True
        assert "localhost" in prov.descriptor.dns_names
        assert "test-host" in prov.descriptor.dns_names
        validity = cert.not_valid_after_utc - cert.not_valid_before_utc
        assert abs(validity - datetime.timedelta(days=365)) < datetime.timedelta(seconds=1)

    def test_self_signed_identity(self, generated_certificate):
        cert = generated_certificate.certificate

        assert cert.subject == cert.issuer
        assert cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "test-host"
        assert cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value == "Echo Server"
        assert cert.public_key().key_size == 2048
        verify_self_signed(cert)

    def test_key_usage(self, generated_certificate):
        cert = generated_certificate.certificate

        ku = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        assert ku.digital_signature and ku.key_encipherment
        assert not ku.key_cert_sign
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert list(eku) == [ExtendedKeyUsageOID.SERVER_AUTH]
        assert cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca is False

    def test_serial_is_128_bit_non_negative(self, generated_certificate):
        serial = generated_certificate.certificate.serial_number
        assert 0 <= serial < 2 ** 128
        assert generated_certificate.descriptor.serial_number == str(serial)

    def test_zero_serial_draw_still_generates(self, provisioner, monkeypatch):
        monkeypatch.setattr(certs.secrets, "randbits", lambda bits: 0)

        prov = provisioner.generate()

        assert prov.certificate.serial_number == 1
        verify_self_signed(prov.certificate)

    def test_two_generations_differ_in_serial(self, provisioner, generated_certificate):
        other = provisioner.generate()

        a, b = generated_certificate.certificate, other.certificate
        assert a.serial_number != b.serial_number
        assert a.subject == b.subject
        verify_self_signed(a)
        verify_self_signed(b)

    def test_descriptor(self, generated_certificate):
        d = generated_certificate.descriptor

        assert d.subject == "CN=test-host,O=Echo Server"
        assert d.issuer == d.subject
        assert d.not_before.endswith("Z") and d.not_after.endswith("Z")
        assert d.enabled is True
        assert d.to_dict()["dnsNames"] == ["test-host", "localhost"]

    def test_localhost_not_duplicated(self):
        prov = CertificateProvisioner(hostname="localhost").generate()
        assert prov.descriptor.dns_names == ("localhost",)

    def test_only_one_file_present_generates(self, provisioner, generated_certificate, tmp_path):
        cert_path, _ = write_pair(tmp_path, generated_certificate)

        prov = provisioner.obtain_certificate(cert_path, str(tmp_path / "missing.key"))

        assert prov.generated is True
        assert prov.certificate.serial_number != generated_certificate.certificate.serial_number


class TestLoading:

    def test_load_existing_pair(self, provisioner, generated_certificate, tmp_path):
        cert_path, key_path = write_pair(tmp_path, generated_certificate)

        prov = provisioner.obtain_certificate(cert_path, key_path)

        assert prov.generated is False
        assert prov.descriptor == generated_certificate.descriptor

    def test_malformed_files_are_fatal(self, provisioner, tmp_path):
        (tmp_path / "tls.crt").write_text("not a certificate")
        (tmp_path / "tls.key").write_text("not a key")

        with pytest.raises(CertificateError):
            provisioner.obtain_certificate(str(tmp_path / "tls.crt"), str(tmp_path / "tls.key"))

    def test_mismatched_key_is_fatal(self, provisioner, generated_certificate):
        other = provisioner.generate()
        with pytest.raises(CertificateError):
            from_pem(generated_certificate.cert_pem, other.key_pem)


def test_ssl_context(generated_certificate):
    ctx = generated_certificate.ssl_context()
    assert isinstance(ctx, ssl.SSLContext)
    assert ctx.minimum_version == ssl.TLSVersion.TLSv1_2
