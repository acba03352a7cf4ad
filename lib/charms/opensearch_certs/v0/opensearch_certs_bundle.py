# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Assembly of the artifacts into a bundle, and the stores the bundle is persisted with."""
import base64
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Tuple

from charms.opensearch_certs.v0.constants_certs import (
    BUNDLE_LABEL_SEPARATOR,
    BUNDLE_NAME_PREFIX,
    LEAF_IDENTITIES,
    TRUSTSTORE_FILE,
    Identity,
    cert_file,
    key_file,
    keystore_file,
    pkcs8_key_file,
)
from charms.opensearch_certs.v0.models import Bundle
from charms.opensearch_certs.v0.opensearch_certs_exceptions import (
    CertsBundleStoreError,
    CertsFilesystemError,
    CertsMissingArtifactError,
)
from ops import Model as JujuModel
from ops import ModelError, SecretNotFoundError
from overrides import override

# The unique Charmhub library identifier, never change it
LIBID = "6c0e8a3f5b7d4912a4f1e9b2d8c37a05"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


logger = logging.getLogger(__name__)


# every consumer needs these
REQUIRED_ARTIFACTS = [keystore_file(Identity.NODE), keystore_file(Identity.ADMIN)]

OPTIONAL_ARTIFACTS = [
    TRUSTSTORE_FILE,
    cert_file(Identity.CA),
    key_file(Identity.CA),
    pkcs8_key_file(Identity.NODE),
] + [name for identity in LEAF_IDENTITIES for name in [cert_file(identity), key_file(identity)]]

BUNDLE_ARTIFACTS = REQUIRED_ARTIFACTS + OPTIONAL_ARTIFACTS


class BundleAssembler:
    """Reads the artifacts of a run from the certs dir."""

    def collect(self, certs_dir: str, namespace: str, cluster_name: str) -> Bundle:
        """Assemble the bundle of a cluster.

        A missing required artifact aborts the assembly, a missing optional one
        is included empty.
        """
        data = {}
        for artifact in REQUIRED_ARTIFACTS:
            try:
                data[artifact] = self._read(certs_dir, artifact)
            except FileNotFoundError:
                logger.error(f"Could not read certs: {artifact} missing in {certs_dir}")
                raise CertsMissingArtifactError(artifact, certs_dir)

        for artifact in OPTIONAL_ARTIFACTS:
            try:
                data[artifact] = self._read(certs_dir, artifact)
            except FileNotFoundError:
                logger.debug(f"{artifact} missing in {certs_dir}, bundled empty.")
                data[artifact] = b""

        return Bundle(namespace=namespace, cluster_name=cluster_name, data=data)

    @staticmethod
    def _read(certs_dir: str, artifact: str) -> bytes:
        path = os.path.join(certs_dir, artifact)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise
        except OSError as e:
            raise CertsFilesystemError(path, e.strerror or str(e))


class BundleStore(ABC):
    """Abstract class that represents where bundles are persisted, one per cluster."""

    @abstractmethod
    def exists(self, namespace: str, cluster_name: str) -> bool:
        """Whether the bundle of a cluster is stored."""

    @abstractmethod
    def create(self, bundle: Bundle) -> None:
        """Store a new bundle, a bundle already stored for the cluster is an error."""

    @abstractmethod
    def delete(self, namespace: str, cluster_name: str) -> None:
        """Remove the bundle of a cluster."""

    @abstractmethod
    def get(self, namespace: str, cluster_name: str) -> Bundle:
        """Fetch the bundle of a cluster."""


class InMemoryBundleStore(BundleStore):
    """Keeps the bundles in a dict, for dry runs and tests."""

    def __init__(self):
        self.bundles: Dict[Tuple[str, str], Bundle] = {}

    @override
    def exists(self, namespace: str, cluster_name: str) -> bool:
        return (namespace, cluster_name) in self.bundles

    @override
    def create(self, bundle: Bundle) -> None:
        if self.exists(bundle.namespace, bundle.cluster_name):
            raise CertsBundleStoreError(f"{bundle.name} already exists in {bundle.namespace}")
        self.bundles[(bundle.namespace, bundle.cluster_name)] = bundle

    @override
    def delete(self, namespace: str, cluster_name: str) -> None:
        if self.bundles.pop((namespace, cluster_name), None) is None:
            raise CertsBundleStoreError(f"No bundle for {cluster_name} in {namespace}")

    @override
    def get(self, namespace: str, cluster_name: str) -> Bundle:
        try:
            return self.bundles[(namespace, cluster_name)]
        except KeyError:
            raise CertsBundleStoreError(f"No bundle for {cluster_name} in {namespace}")


def secret_key(artifact: str) -> str:
    """Juju secret keys allow only lowercase letters, digits and dashes."""
    return artifact.replace(".", "-")


class JujuSecretsBundleStore(BundleStore):
    """Keeps each bundle in a Juju application secret.

    Values are base64 encoded, empty artifacts are not stored.
    """

    def __init__(self, model: JujuModel):
        self.model = model

    @staticmethod
    def label(namespace: str, cluster_name: str) -> str:
        """Label of the secret of a cluster."""
        return BUNDLE_LABEL_SEPARATOR.join(
            [namespace, f"{BUNDLE_NAME_PREFIX}-{cluster_name}"]
        )

    @override
    def exists(self, namespace: str, cluster_name: str) -> bool:
        try:
            self.model.get_secret(label=self.label(namespace, cluster_name))
            return True
        except SecretNotFoundError:
            return False

    @override
    def create(self, bundle: Bundle) -> None:
        if self.exists(bundle.namespace, bundle.cluster_name):
            raise CertsBundleStoreError(f"{bundle.name} already exists in {bundle.namespace}")

        content = {
            secret_key(artifact): base64.b64encode(value).decode("utf-8")
            for artifact, value in bundle.data.items()
            if value
        }
        try:
            self.model.app.add_secret(
                content, label=self.label(bundle.namespace, bundle.cluster_name)
            )
        except (ModelError, ValueError) as e:
            logger.error(f"Could not create certs secret {bundle.name}: {e}")
            raise CertsBundleStoreError(str(e))
        logger.info(f"Created certs secret {bundle.name} in {bundle.namespace}")

    @override
    def delete(self, namespace: str, cluster_name: str) -> None:
        try:
            secret = self.model.get_secret(label=self.label(namespace, cluster_name))
        except SecretNotFoundError:
            raise CertsBundleStoreError(f"No bundle for {cluster_name} in {namespace}")
        try:
            secret.remove_all_revisions()
        except ModelError as e:
            logger.error(f"Could not delete certs secret of {cluster_name}: {e}")
            raise CertsBundleStoreError(str(e))
        logger.info(f"Deleted certs secret of {cluster_name} in {namespace}")

    @override
    def get(self, namespace: str, cluster_name: str) -> Bundle:
        try:
            secret = self.model.get_secret(label=self.label(namespace, cluster_name))
        except SecretNotFoundError:
            raise CertsBundleStoreError(f"No bundle for {cluster_name} in {namespace}")

        content = secret.get_content()
        data = {
            artifact: base64.b64decode(content[secret_key(artifact)])
            for artifact in BUNDLE_ARTIFACTS
            if secret_key(artifact) in content
        }
        return Bundle(namespace=namespace, cluster_name=cluster_name, data=data)
