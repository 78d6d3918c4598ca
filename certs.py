# -*- coding: utf-8 -*-
"""Server TLS identity: load the operator's certificate/key pair or mint a self-signed one."""

from __future__ import annotations
import datetime
import logging
import os
import secrets
import socket
import ssl
import tempfile
from dataclasses import dataclass, field
from typing import Optional, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from models import CertificateDescriptor

log = logging.getLogger(__name__)

KEY_SIZE = 2048
VALIDITY_DAYS = 365
ORGANIZATION = "Echo Server"
FALLBACK_HOSTNAME = "echo-server"


class CertificateError(Exception):
    """The server identity could not be loaded or generated. Fatal at startup."""


def _rfc3339(dt: datetime.datetime) -> str:
    return dt.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

def _hostname() -> str:
    try:
        name = socket.gethostname()
    except OSError as e:
        log.warning("Failed to get hostname: %s, using default", e)
        return FALLBACK_HOSTNAME
    return name or FALLBACK_HOSTNAME

def describe(cert: x509.Certificate) -> CertificateDescriptor:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        dns_names: Tuple[str, ...] = tuple(san.value.get_values_for_type(x509.DNSName))
    except x509.ExtensionNotFound:
        dns_names = ()
    return CertificateDescriptor(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        not_before=_rfc3339(cert.not_valid_before_utc),
        not_after=_rfc3339(cert.not_valid_after_utc),
        serial_number=str(cert.serial_number),
        dns_names=dns_names,
        enabled=True,
    )

# ----------------------------- Provisioned identity -----------------------------

@dataclass(frozen=True)
class ProvisionedCertificate:
    cert_pem: bytes
    key_pem: bytes
    certificate: x509.Certificate
    private_key: PrivateKeyTypes
    generated: bool = False
    descriptor: CertificateDescriptor = field(init=False)

    def __post_init__(self):
        # computed once; the descriptor never changes for the life of the process
        object.__setattr__(self, "descriptor", describe(self.certificate))

    def ssl_context(self) -> ssl.SSLContext:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        # ssl only loads chains from disk
        with tempfile.TemporaryDirectory() as tmp:
            cert_path = os.path.join(tmp, "tls.crt"); key_path = os.path.join(tmp, "tls.key")
            with open(cert_path, "wb") as f: f.write(self.cert_pem)
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT, 0o600)
            with os.fdopen(fd, "wb") as f: f.write(self.key_pem)
            ctx.load_cert_chain(cert_path, key_path)
        return ctx


def _spki(public_key) -> bytes:
    return public_key.public_bytes(serialization.Encoding.DER,
                                   serialization.PublicFormat.SubjectPublicKeyInfo)

def from_pem(cert_pem: bytes, key_pem: bytes, generated: bool = False) -> ProvisionedCertificate:
    try:
        cert = x509.load_pem_x509_certificate(cert_pem)
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CertificateError(f"failed to parse certificate/key pair: {e}") from e
    if _spki(key.public_key()) != _spki(cert.public_key()):
        raise CertificateError("private key does not match certificate")
    return ProvisionedCertificate(cert_pem, key_pem, cert, key, generated=generated)

# ----------------------------- Provisioner -----------------------------

class CertificateProvisioner:
    def __init__(self, hostname: Optional[str] = None):
        self.hostname = hostname

    def obtain_certificate(self, cert_path: str, key_path: str) -> ProvisionedCertificate:
        if os.path.isfile(cert_path) and os.path.isfile(key_path):
            log.info("Loading TLS certificates from files: cert=%s, key=%s", cert_path, key_path)
            prov = self.load(cert_path, key_path)
        else:
            log.info("Certificate files not found, generating self-signed certificate")
            prov = self.generate()
        self._log_info(prov.descriptor)
        return prov

    def load(self, cert_path: str, key_path: str) -> ProvisionedCertificate:
        try:
            with open(cert_path, "rb") as f: cert_pem = f.read()
            with open(key_path, "rb") as f: key_pem = f.read()
        except OSError as e:
            raise CertificateError(f"failed to read certificate files: {e}") from e
        return from_pem(cert_pem, key_pem)

    def generate(self) -> ProvisionedCertificate:
        hostname = self.hostname or _hostname()
        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
            # 128 random bits, positive; collisions are not guarded against
            serial = secrets.randbits(128) or 1
            not_before = datetime.datetime.now(datetime.timezone.utc)
            not_after = not_before + datetime.timedelta(days=VALIDITY_DAYS)
            name = x509.Name([
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
                x509.NameAttribute(NameOID.COMMON_NAME, hostname),
            ])
            dns_names = [hostname] if hostname == "localhost" else [hostname, "localhost"]
            cert = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(serial)
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(x509.KeyUsage(
                    digital_signature=True, content_commitment=False, key_encipherment=True,
                    data_encipherment=False, key_agreement=False, key_cert_sign=False,
                    crl_sign=False, encipher_only=False, decipher_only=False), critical=True)
                .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
                .add_extension(x509.SubjectAlternativeName([x509.DNSName(n) for n in dns_names]), critical=False)
                .sign(key, hashes.SHA256())
            )
        except (ValueError, TypeError) as e:
            raise CertificateError(f"failed to generate certificate: {e}") from e

        cert_pem = cert.public_bytes(serialization.Encoding.PEM)
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        # Rebuild from the serialized pair so what we report is what gets bound.
        prov = from_pem(cert_pem, key_pem, generated=True)
        log.info("Generated self-signed certificate: CN=%s, NotBefore=%s, NotAfter=%s",
                 hostname, prov.descriptor.not_before, prov.descriptor.not_after)
        return prov

    def _log_info(self, d: CertificateDescriptor) -> None:
        log.info("TLS Certificate Info:")
        log.info("  Subject: %s", d.subject)
        log.info("  Issuer: %s", d.issuer)
        log.info("  NotBefore: %s", d.not_before)
        log.info("  NotAfter: %s", d.not_after)
        log.info("  SerialNumber: %s", d.serial_number)
        if d.dns_names:
            log.info("  DNSNames: %s", list(d.dns_names))
