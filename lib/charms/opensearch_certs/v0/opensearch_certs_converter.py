# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Conversion of the issued PEM material into the encodings of the consumers.

Each conversion is a single invocation of an external tool (or of its
in-process counterpart) producing one derived artifact on disk.
"""
import logging
import os
from abc import ABC, abstractmethod

from charms.opensearch_certs.v0.constants_certs import (
    KEYSTORE_ALIASES,
    KEYSTORE_IDENTITIES,
    PKCS12_SRC_ALIAS,
    TRUSTSTORE_ALIAS,
    TRUSTSTORE_FILE,
    Identity,
    cert_file,
    key_file,
    keystore_file,
    pkcs8_key_file,
    pkcs12_file,
)
from charms.opensearch_certs.v0.helper_commands import run_cmd
from charms.opensearch_certs.v0.models import ProvisioningConfig
from charms.opensearch_certs.v0.opensearch_certs_exceptions import (
    CertsFilesystemError,
    CertsMissingArtifactError,
    CertsSerializationError,
)
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from overrides import override

# The unique Charmhub library identifier, never change it
LIBID = "2b7d5f8e1c9a43a0b6e3d4c8f7a19e62"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


logger = logging.getLogger(__name__)


class Converter(ABC):
    """Abstract class that represents a private key / archive converter."""

    @abstractmethod
    def to_pkcs8(self, key_path: str, out_path: str) -> None:
        """Re-encode a PEM private key as unencrypted PKCS8."""

    @abstractmethod
    def to_pkcs12(
        self, cert_path: str, key_path: str, ca_cert_path: str, password: str, out_path: str
    ) -> None:
        """Bundle a certificate, its key and the CA certificate in a protected archive."""


class KeystoreTool(ABC):
    """Abstract class that represents a java keystore management tool."""

    @abstractmethod
    def import_cert(self, cert_path: str, alias: str, keystore_path: str, password: str) -> None:
        """Import a certificate in a keystore under an alias."""

    @abstractmethod
    def import_keystore(
        self,
        src_keystore_path: str,
        src_alias: str,
        src_password: str,
        keystore_path: str,
        alias: str,
        password: str,
    ) -> None:
        """Move an entry of a PKCS12 archive into a keystore under a new alias."""


class OpenSSLConverter(Converter):
    """Converts with the openssl binary."""

    def __init__(self, openssl: str, timeout: int):
        self.openssl = openssl
        self.timeout = timeout

    @override
    def to_pkcs8(self, key_path: str, out_path: str) -> None:
        run_cmd(
            [
                self.openssl,
                "pkcs8",
                "-topk8",
                "-in",
                key_path,
                "-out",
                out_path,
                "-nocrypt",
            ],
            timeout=self.timeout,
        )

    @override
    def to_pkcs12(
        self, cert_path: str, key_path: str, ca_cert_path: str, password: str, out_path: str
    ) -> None:
        run_cmd(
            [
                self.openssl,
                "pkcs12",
                "-export",
                "-inkey",
                key_path,
                "-in",
                cert_path,
                "-out",
                out_path,
                "-password",
                f"pass:{password}",
                "-certfile",
                ca_cert_path,
            ],
            timeout=self.timeout,
        )


class CryptographyConverter(Converter):
    """Converts in process with the cryptography library."""

    @override
    def to_pkcs8(self, key_path: str, out_path: str) -> None:
        key = _load_key(key_path)
        try:
            content = key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        except (TypeError, ValueError) as e:
            raise CertsSerializationError(f"{key_path}: {e}") from e
        _write(out_path, content)

    @override
    def to_pkcs12(
        self, cert_path: str, key_path: str, ca_cert_path: str, password: str, out_path: str
    ) -> None:
        key = _load_key(key_path)
        cert = _load_cert(cert_path)
        ca_cert = _load_cert(ca_cert_path)
        try:
            content = pkcs12.serialize_key_and_certificates(
                name=None,
                key=key,
                cert=cert,
                cas=[ca_cert],
                encryption_algorithm=serialization.BestAvailableEncryption(password.encode()),
            )
        except (TypeError, ValueError) as e:
            raise CertsSerializationError(f"{out_path}: {e}") from e
        _write(out_path, content)


class KeytoolKeystore(KeystoreTool):
    """Manages java keystores with the keytool binary."""

    def __init__(self, keytool: str, timeout: int):
        self.keytool = keytool
        self.timeout = timeout

    @override
    def import_cert(self, cert_path: str, alias: str, keystore_path: str, password: str) -> None:
        run_cmd(
            [
                self.keytool,
                "-import",
                "-alias",
                alias,
                "-file",
                cert_path,
                "-storetype",
                "JKS",
                "-storepass",
                password,
                "-keystore",
                keystore_path,
                "-noprompt",
            ],
            timeout=self.timeout,
        )

    @override
    def import_keystore(
        self,
        src_keystore_path: str,
        src_alias: str,
        src_password: str,
        keystore_path: str,
        alias: str,
        password: str,
    ) -> None:
        run_cmd(
            [
                self.keytool,
                "-importkeystore",
                "-srckeystore",
                src_keystore_path,
                "-srcalias",
                src_alias,
                "-srcstoretype",
                "pkcs12",
                "-srcstorepass",
                src_password,
                "-destkeystore",
                keystore_path,
                "-deststoretype",
                "JKS",
                "-storepass",
                password,
                "-destalias",
                alias,
                "-noprompt",
            ],
            timeout=self.timeout,
        )


def _read(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise CertsFilesystemError(path, e.strerror or str(e))


def _write(path: str, content: bytes) -> None:
    try:
        with open(path, "wb") as f:
            f.write(content)
    except OSError as e:
        raise CertsFilesystemError(path, e.strerror or str(e))


def _load_key(path: str):
    try:
        return serialization.load_pem_private_key(_read(path), password=None)
    except (TypeError, ValueError) as e:
        raise CertsSerializationError(f"{path}: {e}") from e


def _load_cert(path: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(_read(path))
    except ValueError as e:
        raise CertsSerializationError(f"{path}: {e}") from e


def build_converter(config: ProvisioningConfig) -> Converter:
    """The converter backed by the openssl binary of the config."""
    return OpenSSLConverter(config.openssl, config.cmd_timeout)


def build_keystore_tool(config: ProvisioningConfig) -> KeystoreTool:
    """The keystore tool backed by the keytool binary of the config."""
    return KeytoolKeystore(config.keytool, config.cmd_timeout)


class FormatConverter:
    """Derives the PKCS8, PKCS12 and JKS artifacts from the issued PEM files."""

    def __init__(self, converter: Converter, keystore_tool: KeystoreTool, password: str):
        self.converter = converter
        self.keystore_tool = keystore_tool
        self.password = password

    def to_pkcs8(self, identity: Identity, certs_dir: str) -> bytes:
        """Unencrypted PKCS8 re-encoding of the private key of an identity."""
        logger.info(f"Converting {identity} to pkcs8...")
        out_path = os.path.join(certs_dir, pkcs8_key_file(identity))
        self.converter.to_pkcs8(os.path.join(certs_dir, key_file(identity)), out_path)
        return self._produced(out_path)

    def to_pkcs12(self, identity: Identity, certs_dir: str) -> bytes:
        """Password protected archive of the cert and key of an identity along with the CA."""
        logger.info(f"Converting {identity} to pkcs12...")
        out_path = os.path.join(certs_dir, pkcs12_file(identity))
        self.converter.to_pkcs12(
            os.path.join(certs_dir, cert_file(identity)),
            os.path.join(certs_dir, key_file(identity)),
            os.path.join(certs_dir, cert_file(Identity.CA)),
            self.password,
            out_path,
        )
        return self._produced(out_path)

    def to_jks_truststore(self, certs_dir: str) -> bytes:
        """Java keystore holding the CA certificate only."""
        logger.info("Converting ca cert to jks...")
        out_path = os.path.join(certs_dir, TRUSTSTORE_FILE)
        self.keystore_tool.import_cert(
            os.path.join(certs_dir, cert_file(Identity.CA)),
            TRUSTSTORE_ALIAS,
            out_path,
            self.password,
        )
        return self._produced(out_path)

    def to_jks_keystore(self, identity: Identity, certs_dir: str) -> bytes:
        """Java keystore of an identity, imported from its PKCS12 archive."""
        if identity not in KEYSTORE_ALIASES:
            raise ValueError(f"No keystore is built for {identity}.")

        logger.info(f"Converting {identity} cert to jks...")
        out_path = os.path.join(certs_dir, keystore_file(identity))
        self.keystore_tool.import_keystore(
            os.path.join(certs_dir, pkcs12_file(identity)),
            PKCS12_SRC_ALIAS,
            self.password,
            out_path,
            KEYSTORE_ALIASES[identity],
            self.password,
        )
        return self._produced(out_path)

    def convert(self, certs_dir: str) -> None:
        """Run every conversion the consumers need.

        The UI identities only ship as PEM, only the node and admin identities
        get archives and keystores.
        """
        self.to_pkcs8(Identity.NODE, certs_dir)
        for identity in KEYSTORE_IDENTITIES:
            self.to_pkcs12(identity, certs_dir)
        self.to_jks_truststore(certs_dir)
        for identity in KEYSTORE_IDENTITIES:
            self.to_jks_keystore(identity, certs_dir)

    @staticmethod
    def _produced(path: str) -> bytes:
        if not os.path.exists(path):
            raise CertsMissingArtifactError(os.path.basename(path), os.path.dirname(path))
        return _read(path)
