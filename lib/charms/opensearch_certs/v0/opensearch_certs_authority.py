# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""In this file we manage the CA and the issuance of the leaf certificates.

The signing itself is delegated to a Signer: cfssl piped into cfssljson in
production, or the in-process signer built on the cryptography library. Both
read the same JSON descriptors and write the same cfssljson "-bare" layout:
<prefix>.pem, <prefix>-key.pem and <prefix>.csr.
"""
import ipaddress
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List

from charms.opensearch_certs.v0.constants_certs import (
    CA_CONFIG_FILE,
    SIGNING_PROFILE,
    Identity,
    cert_file,
    csr_file,
    key_file,
)
from charms.opensearch_certs.v0.helper_commands import run_pipeline
from charms.opensearch_certs.v0.models import (
    CSRDescriptor,
    ProvisioningConfig,
    SigningPolicy,
)
from charms.opensearch_certs.v0.opensearch_certs_exceptions import (
    CertsFilesystemError,
    CertsMissingArtifactError,
    CertsSerializationError,
)
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from overrides import override
from pydantic import ValidationError

# The unique Charmhub library identifier, never change it
LIBID = "93f1c0b7a5e2463db8e4f7a60c2d1b58"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


logger = logging.getLogger(__name__)

# cfssl's default validity of a CA initialised from a CSR
CA_EXPIRY_HOURS = 43800


class Signer(ABC):
    """Abstract class that represents a certificate signer."""

    @abstractmethod
    def init_ca(self, csr_path: str, out_prefix: str) -> None:
        """Generate a self-signed CA from a CSR descriptor."""

    @abstractmethod
    def sign(
        self,
        csr_path: str,
        ca_cert: str,
        ca_key: str,
        policy_path: str,
        profile: str,
        out_prefix: str,
    ) -> None:
        """Generate a key and a certificate signed by the CA from a CSR descriptor."""


class CfsslSigner(Signer):
    """Signs with the cfssl binaries, cfssl output being streamed to cfssljson."""

    def __init__(self, cfssl: str, cfssljson: str, timeout: int):
        self.cfssl = cfssl
        self.cfssljson = cfssljson
        self.timeout = timeout

    @override
    def init_ca(self, csr_path: str, out_prefix: str) -> None:
        run_pipeline(
            [
                [self.cfssl, "gencert", "-initca", csr_path],
                [self.cfssljson, "-bare", out_prefix],
            ],
            timeout=self.timeout,
        )

    @override
    def sign(
        self,
        csr_path: str,
        ca_cert: str,
        ca_key: str,
        policy_path: str,
        profile: str,
        out_prefix: str,
    ) -> None:
        run_pipeline(
            [
                [
                    self.cfssl,
                    "gencert",
                    "-ca",
                    ca_cert,
                    "-ca-key",
                    ca_key,
                    "-config",
                    policy_path,
                    f"-profile={profile}",
                    csr_path,
                ],
                [self.cfssljson, "-bare", out_prefix],
            ],
            timeout=self.timeout,
        )


class CryptographySigner(Signer):
    """Signs in process, mirroring what cfssl does with the same descriptors."""

    @override
    def init_ca(self, csr_path: str, out_prefix: str) -> None:
        descriptor = self._load(csr_path, CSRDescriptor)
        key = self._generate_key(descriptor)
        subject = self._subject(descriptor)
        now = datetime.now(timezone.utc)

        cert = (
            x509.CertificateBuilder(
                issuer_name=subject,
                subject_name=subject,
                public_key=key.public_key(),
                serial_number=x509.random_serial_number(),
                not_valid_before=now,
                not_valid_after=now + timedelta(hours=CA_EXPIRY_HOURS),
            )
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=False,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), False)
        )
        if descriptor.hosts:
            cert = cert.add_extension(self._sans(descriptor.hosts), critical=False)

        self._write(out_prefix, key, cert.sign(key, hashes.SHA256()), descriptor)

    @override
    def sign(
        self,
        csr_path: str,
        ca_cert: str,
        ca_key: str,
        policy_path: str,
        profile: str,
        out_prefix: str,
    ) -> None:
        descriptor = self._load(csr_path, CSRDescriptor)
        # a profile absent from the policy falls back to the default one, as with cfssl
        policy = self._load(policy_path, SigningPolicy).profile
        issuer_cert, issuer_key = self._load_issuer(ca_cert, ca_key)

        key = self._generate_key(descriptor)
        now = datetime.now(timezone.utc)
        usages = set(policy.usages)

        cert = (
            x509.CertificateBuilder(
                issuer_name=issuer_cert.subject,
                subject_name=self._subject(descriptor),
                public_key=key.public_key(),
                serial_number=x509.random_serial_number(),
                not_valid_before=now,
                not_valid_after=now + timedelta(hours=policy.expiry_hours),
            )
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature="signing" in usages,
                    content_commitment=False,
                    key_encipherment="key encipherment" in usages,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_cert.public_key()),
                critical=False,
            )
        )

        extended_usages = []
        if "server auth" in usages:
            extended_usages.append(ExtendedKeyUsageOID.SERVER_AUTH)
        if "client auth" in usages:
            extended_usages.append(ExtendedKeyUsageOID.CLIENT_AUTH)
        if extended_usages:
            cert = cert.add_extension(x509.ExtendedKeyUsage(extended_usages), critical=False)
        if descriptor.hosts:
            cert = cert.add_extension(self._sans(descriptor.hosts), critical=False)

        try:
            signed = cert.sign(issuer_key, hashes.SHA256())
        except (TypeError, ValueError) as e:
            raise CertsSerializationError(f"{csr_path}: {e}") from e
        self._write(out_prefix, key, signed, descriptor)

    @staticmethod
    def _read(path: str) -> bytes:
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise CertsFilesystemError(path, e.strerror or str(e))

    def _load_issuer(self, ca_cert: str, ca_key: str):
        try:
            issuer_cert = x509.load_pem_x509_certificate(self._read(ca_cert))
        except ValueError as e:
            raise CertsSerializationError(f"{ca_cert}: {e}") from e
        try:
            issuer_key = serialization.load_pem_private_key(self._read(ca_key), password=None)
        except (TypeError, ValueError) as e:
            raise CertsSerializationError(f"{ca_key}: {e}") from e
        return issuer_cert, issuer_key

    def _load(self, path: str, model):
        try:
            return model.from_str(self._read(path))
        except ValidationError as e:
            raise CertsSerializationError(f"{path}: {e}")

    @staticmethod
    def _generate_key(descriptor: CSRDescriptor) -> rsa.RSAPrivateKey:
        if descriptor.key.algo != "rsa":
            raise CertsSerializationError(f"Unsupported key algorithm: {descriptor.key.algo}")
        return rsa.generate_private_key(public_exponent=65537, key_size=descriptor.key.size)

    @staticmethod
    def _subject(descriptor: CSRDescriptor) -> x509.Name:
        attributes = []
        for names in descriptor.names:
            for oid, value in [
                (NameOID.COUNTRY_NAME, names.country),
                (NameOID.STATE_OR_PROVINCE_NAME, names.state),
                (NameOID.LOCALITY_NAME, names.locality),
                (NameOID.ORGANIZATION_NAME, names.organization),
                (NameOID.ORGANIZATIONAL_UNIT_NAME, names.organizational_unit),
            ]:
                if value:
                    attributes.append(x509.NameAttribute(oid, value))
        if descriptor.common_name:
            attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, descriptor.common_name))
        return x509.Name(attributes)

    @staticmethod
    def _sans(hosts: List[str]) -> x509.SubjectAlternativeName:
        entries = []
        for host in hosts:
            try:
                entries.append(x509.IPAddress(ipaddress.ip_address(host)))
            except ValueError:
                entries.append(x509.DNSName(host))
        return x509.SubjectAlternativeName(entries)

    def _write(
        self,
        out_prefix: str,
        key: rsa.RSAPrivateKey,
        cert: x509.Certificate,
        descriptor: CSRDescriptor,
    ) -> None:
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(self._subject(descriptor))
            .sign(key, hashes.SHA256())
        )
        outputs = [
            (
                f"{out_prefix}-key.pem",
                key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.TraditionalOpenSSL,
                    encryption_algorithm=serialization.NoEncryption(),
                ),
                0o600,
            ),
            (f"{out_prefix}.csr", csr.public_bytes(serialization.Encoding.PEM), 0o644),
            (f"{out_prefix}.pem", cert.public_bytes(serialization.Encoding.PEM), 0o644),
        ]
        for path, content, mode in outputs:
            try:
                # the mode is set before any byte is written, existing files included
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
                with os.fdopen(fd, "wb") as f:
                    os.fchmod(f.fileno(), mode)
                    f.write(content)
            except OSError as e:
                raise CertsFilesystemError(path, e.strerror or str(e))


def build_signer(config: ProvisioningConfig) -> Signer:
    """The signer backed by the cfssl binaries of the config."""
    return CfsslSigner(config.cfssl, config.cfssljson, config.cmd_timeout)


class CertAuthority:
    """Issues the CA and the leaf certificates signed by it."""

    def __init__(self, signer: Signer):
        self.signer = signer

    def issue_ca(self, config_dir: str, certs_dir: str) -> None:
        """Self-sign the CA, producing ca.pem and ca-key.pem."""
        logger.info("Creating ca cert...")
        self.signer.init_ca(
            os.path.join(config_dir, csr_file(Identity.CA)),
            os.path.join(certs_dir, Identity.CA.val),
        )
        self._check_issued(Identity.CA, certs_dir)

    def issue_leaf(self, identity: Identity, config_dir: str, certs_dir: str) -> None:
        """Sign the CSR of a leaf identity with the CA.

        Produces <identity>.pem and <identity>-key.pem. Reads the CA material and
        writes only the identity's own files, so leaves can be issued in any order.
        """
        if identity == Identity.CA:
            raise ValueError("The CA is not a leaf identity.")

        ca_cert = os.path.join(certs_dir, cert_file(Identity.CA))
        ca_key = os.path.join(certs_dir, key_file(Identity.CA))
        for path in [ca_cert, ca_key]:
            if not os.path.exists(path):
                raise CertsMissingArtifactError(os.path.basename(path), certs_dir)

        logger.info(f"Creating {identity} cert...")
        self.signer.sign(
            os.path.join(config_dir, csr_file(identity)),
            ca_cert,
            ca_key,
            os.path.join(config_dir, CA_CONFIG_FILE),
            SIGNING_PROFILE,
            os.path.join(certs_dir, identity.val),
        )
        self._check_issued(identity, certs_dir)

    @staticmethod
    def _check_issued(identity: Identity, certs_dir: str) -> None:
        for filename in [cert_file(identity), key_file(identity)]:
            if not os.path.exists(os.path.join(certs_dir, filename)):
                raise CertsMissingArtifactError(filename, certs_dir)
