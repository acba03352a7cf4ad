# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Generation of the CA signing policy and the CSR descriptors of every identity."""
import logging
import os
from typing import Dict, List

from charms.opensearch_certs.v0.constants_certs import (
    CA_CONFIG_FILE,
    CA_COUNTRY,
    CA_HOST_PREFIX,
    CA_LOCALITY,
    CA_ORGANIZATION,
    CA_ORGANIZATIONAL_UNIT,
    CA_STATE,
    CLUSTER_DOMAIN,
    LEAF_IDENTITIES,
    LEAF_LOCALITY,
    LEAF_ORGANIZATION,
    LEAF_ORGANIZATIONAL_UNIT,
    Identity,
    csr_file,
)
from charms.opensearch_certs.v0.models import (
    CSRDescriptor,
    DistinguishedName,
    Model,
    SigningPolicy,
)
from charms.opensearch_certs.v0.opensearch_certs_exceptions import (
    CertsFilesystemError,
    CertsSerializationError,
)

# The unique Charmhub library identifier, never change it
LIBID = "e4b2a7c90d1f4e3685a3c7f2b9d6e051"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


logger = logging.getLogger(__name__)


def service_hosts(service: str, namespace: str, cluster_name: str) -> List[str]:
    """DNS names a service of the cluster is reachable with."""
    name = f"{service}-{cluster_name}"
    return [
        "localhost",
        name,
        f"{name}.{namespace}",
        f"{name}.{namespace}.{CLUSTER_DOMAIN}",
    ]


class ConfigGenerator:
    """Builds and writes the descriptors consumed by the signer."""

    def __init__(self, namespace: str, cluster_name: str):
        self.namespace = namespace
        self.cluster_name = cluster_name

    def signing_policy(self) -> SigningPolicy:
        """The policy applied to every leaf issuance."""
        return SigningPolicy()

    def ca_csr(self) -> CSRDescriptor:
        """Descriptor of the self-signed CA."""
        return CSRDescriptor(
            hosts=service_hosts(CA_HOST_PREFIX, self.namespace, self.cluster_name),
            names=[
                DistinguishedName(
                    country=CA_COUNTRY,
                    locality=CA_LOCALITY,
                    organization=CA_ORGANIZATION,
                    organizational_unit=CA_ORGANIZATIONAL_UNIT,
                    state=CA_STATE,
                )
            ],
        )

    def leaf_csr(self, identity: Identity) -> CSRDescriptor:
        """Descriptor of a leaf identity, its CN being the identity name."""
        if identity == Identity.CA:
            raise ValueError("The CA is not a leaf identity.")

        return CSRDescriptor(
            common_name=identity.val,
            hosts=service_hosts(identity.val, self.namespace, self.cluster_name),
            names=[
                DistinguishedName(
                    organization=LEAF_ORGANIZATION,
                    organizational_unit=LEAF_ORGANIZATIONAL_UNIT,
                    locality=LEAF_LOCALITY,
                )
            ],
        )

    def documents(self) -> Dict[str, Model]:
        """All descriptors, keyed by their file name, in writing order."""
        docs = {
            CA_CONFIG_FILE: self.signing_policy(),
            csr_file(Identity.CA): self.ca_csr(),
        }
        for identity in LEAF_IDENTITIES:
            docs[csr_file(identity)] = self.leaf_csr(identity)
        return docs

    def generate(self, config_dir: str) -> None:
        """Write every descriptor under the config dir.

        Stops at the first failure, the files written before it are kept.
        """
        for filename, document in self.documents().items():
            try:
                content = document.to_str(by_alias=True)
            except (TypeError, ValueError) as e:
                logger.error(f"Error encoding {filename}: {e}")
                raise CertsSerializationError(f"{filename}: {e}")

            path = os.path.join(config_dir, filename)
            try:
                with open(path, "w") as f:
                    f.write(content)
            except OSError as e:
                logger.error(f"Error creating {filename}: {e}")
                raise CertsFilesystemError(path, e.strerror or str(e))

        logger.debug(f"Descriptors written to {config_dir}")
