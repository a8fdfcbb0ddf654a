"""Certificate issuance backed by the ``cryptography`` package.

This is the default CA collaborator used by the PKI materializer. Any object
with a compatible ``issue_certificate_bundle`` method can replace it.
"""

import datetime
import ipaddress
import logging
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from vcmanager.errors import PKIError

logger = logging.getLogger(__name__)

ROLE_CA = "ca"
ROLE_SERVER = "server"
ROLE_CLIENT = "client"
ROLE_KEYPAIR = "keypair"
ROLES = (ROLE_CA, ROLE_SERVER, ROLE_CLIENT, ROLE_KEYPAIR)

KEY_SIZE = 2048


@dataclass
class CertificateBundle:
    """PEM encoded output of one issuance.

    ``cert_pem`` is empty for ``keypair``; ``public_key_pem`` is always set.
    """

    cert_pem: str
    key_pem: str
    public_key_pem: str


def load_ca(cert_pem, key_pem):
    """Parse a CA bundle so it can sign further certificates."""
    try:
        cert = x509.load_pem_x509_certificate(cert_pem.encode())
        key = serialization.load_pem_private_key(key_pem.encode(), password=None)
    except ValueError as e:
        raise PKIError(f"Invalid CA material: {e}") from e
    return cert, key


def _san_entries(sans):
    entries = []
    for san in sans:
        try:
            entries.append(x509.IPAddress(ipaddress.ip_address(san)))
        except ValueError:
            entries.append(x509.DNSName(san))
    return entries


class CertificateIssuer:
    """Issues RSA keys and X.509 certificates for the control plane."""

    def __init__(self, expire_days=365):
        self.expire_days = expire_days

    def issue_certificate_bundle(
        self, subject, role, ca=None, sans=(), organizations=(), expire_days=None
    ):
        """Generate a key and, unless ``role`` is keypair, a certificate.

        Args:
            subject: Common name of the certificate
            role: One of ca, server, client, keypair
            ca: (cert_pem, key_pem) of the signing CA; self-signed when omitted
            sans: DNS names or IP addresses for server certificates
            organizations: Subject organizations (e.g. system:masters)
            expire_days: Validity override

        Returns:
            CertificateBundle
        """
        if role not in ROLES:
            raise PKIError(f"Unknown certificate role: {role}")

        key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")
        public_key_pem = key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")

        if role == ROLE_KEYPAIR:
            return CertificateBundle("", key_pem, public_key_pem)

        if role != ROLE_CA and ca is None:
            raise PKIError(f"A signing CA is required for {role} certificate {subject}")

        name_attrs = [x509.NameAttribute(NameOID.COMMON_NAME, subject)]
        name_attrs += [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, org) for org in organizations
        ]
        subject_name = x509.Name(name_attrs)

        if ca is None:
            issuer_name, signing_key = subject_name, key
        else:
            ca_cert, signing_key = load_ca(*ca)
            issuer_name = ca_cert.subject

        now = datetime.datetime.now(datetime.timezone.utc)
        days = expire_days or self.expire_days
        builder = (
            x509.CertificateBuilder()
            .subject_name(subject_name)
            .issuer_name(issuer_name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=days))
        )

        if role == ROLE_CA:
            builder = builder.add_extension(
                x509.BasicConstraints(ca=True, path_length=None), critical=True
            ).add_extension(
                x509.KeyUsage(
                    digital_signature=True, content_commitment=False,
                    key_encipherment=True, data_encipherment=False,
                    key_agreement=False, key_cert_sign=True, crl_sign=True,
                    encipher_only=False, decipher_only=False,
                ),
                critical=True,
            )
        else:
            usages = [ExtendedKeyUsageOID.CLIENT_AUTH]
            if role == ROLE_SERVER:
                usages.insert(0, ExtendedKeyUsageOID.SERVER_AUTH)
            builder = builder.add_extension(
                x509.BasicConstraints(ca=False, path_length=None), critical=True
            ).add_extension(x509.ExtendedKeyUsage(usages), critical=False)
            if sans:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName(_san_entries(sans)), critical=False
                )

        cert = builder.sign(signing_key, hashes.SHA256())
        cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")
        logger.debug(f"Issued {role} certificate for {subject}")
        return CertificateBundle(cert_pem, key_pem, public_key_pem)
