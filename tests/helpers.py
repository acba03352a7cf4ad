# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.
import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from charms.opensearch_certs.v0.models import ProvisioningConfig
from charms.opensearch_certs.v0.opensearch_certs_converter import KeystoreTool
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID


def create_x509_resources(expiring_in_days: int = 1) -> SimpleNamespace:
    """Generate an X509 self-signed certificate with a key and exp date."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    # Subject and issuer are always the same.
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "DE"),
            x509.NameAttribute(NameOID.LOCALITY_NAME, "Berlin"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Canonical"),
            x509.NameAttribute(NameOID.COMMON_NAME, "canonical.com"),
        ]
    )

    now = datetime.now(timezone.utc)
    expiration = now + timedelta(days=expiring_in_days)
    cert = (
        x509.CertificateBuilder(
            issuer_name=issuer,
            subject_name=subject,
            public_key=private_key.public_key(),
            serial_number=x509.random_serial_number(),
            not_valid_before=now,
            not_valid_after=expiration,
        )
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False)
        .sign(private_key, hashes.SHA256())
    )

    return SimpleNamespace(
        cert=cert.public_bytes(serialization.Encoding.PEM).decode("utf-8"),
        key=private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8"),
        expiration=expiration,
    )


def create_workspace(root: str, namespace: str = "logging", cluster_name: str = "prod", **kwargs):
    """Create the config and certs dirs under root and the config pointing to them."""
    config_dir = os.path.join(root, "config")
    certs_dir = os.path.join(root, "certs")
    os.makedirs(config_dir)
    os.makedirs(certs_dir)
    return ProvisioningConfig(
        namespace=namespace,
        cluster_name=cluster_name,
        config_dir=config_dir,
        certs_dir=certs_dir,
        **kwargs,
    )


class FakeKeystoreTool(KeystoreTool):
    """Stands in for keytool, writing the imported bytes prefixed by the alias."""

    def __init__(self):
        self.calls = []

    def import_cert(self, cert_path: str, alias: str, keystore_path: str, password: str) -> None:
        self.calls.append(("import_cert", alias))
        with open(cert_path, "rb") as src, open(keystore_path, "wb") as dest:
            dest.write(f"{alias}:{password}:".encode() + src.read())

    def import_keystore(
        self,
        src_keystore_path: str,
        src_alias: str,
        src_password: str,
        keystore_path: str,
        alias: str,
        password: str,
    ) -> None:
        self.calls.append(("import_keystore", alias))
        with open(src_keystore_path, "rb") as src, open(keystore_path, "wb") as dest:
            dest.write(f"{src_alias}>{alias}:{password}:".encode() + src.read())
