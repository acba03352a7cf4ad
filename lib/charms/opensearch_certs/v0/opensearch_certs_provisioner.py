# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Provisioning of the TLS trust fabric of a cluster.

A run cleans the config dir, writes the descriptors, issues the CA and the
leaves, converts them and assembles the resulting bundle:

    clean -> config -> issue-ca -> issue-leaf (x4) -> convert -> promote -> collect

All certificate work happens in a staging directory next to the certs dir,
which is promoted into the certs dir only once every stage succeeded. A
failed run leaves the artifacts of the previous successful run in place.

Concurrent runs on the same directories are not supported, the caller must
ensure one run per cluster at a time.
"""
import logging
from typing import Any, Callable, Optional

from charms.opensearch_certs.v0.constants_certs import (
    LEAF_IDENTITIES,
    CertsStage,
    Identity,
)
from charms.opensearch_certs.v0.helper_workspace import (
    clean,
    create_staging_dir,
    discard_staging_dir,
    promote,
)
from charms.opensearch_certs.v0.models import Bundle, ProvisioningConfig
from charms.opensearch_certs.v0.opensearch_certs_authority import (
    CertAuthority,
    Signer,
    build_signer,
)
from charms.opensearch_certs.v0.opensearch_certs_bundle import (
    BundleAssembler,
    BundleStore,
)
from charms.opensearch_certs.v0.opensearch_certs_config import ConfigGenerator
from charms.opensearch_certs.v0.opensearch_certs_converter import (
    Converter,
    FormatConverter,
    KeystoreTool,
    build_converter,
    build_keystore_tool,
)
from charms.opensearch_certs.v0.opensearch_certs_exceptions import (
    CertsStageError,
    OpenSearchCertsError,
)

# The unique Charmhub library identifier, never change it
LIBID = "d5a9c3e1f8b24706a2c6e0b4f9d81c37"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


logger = logging.getLogger(__name__)


class CertsProvisioner:
    """Drives the provisioning stages of a cluster."""

    def __init__(
        self,
        config: ProvisioningConfig,
        signer: Optional[Signer] = None,
        converter: Optional[Converter] = None,
        keystore_tool: Optional[KeystoreTool] = None,
    ):
        self.config = config
        self.config_generator = ConfigGenerator(config.namespace, config.cluster_name)
        self.authority = CertAuthority(signer or build_signer(config))
        self.format_converter = FormatConverter(
            converter or build_converter(config),
            keystore_tool or build_keystore_tool(config),
            config.store_password,
        )
        self.assembler = BundleAssembler()

    def generate_certs(self) -> None:
        """Regenerate every artifact of the cluster in the certs dir."""
        config_dir = self.config.config_dir
        certs_dir = self.config.certs_dir

        if self.config.default_password:
            logger.warning("Keystores are protected with the default password.")

        self._stage(CertsStage.CLEAN, clean, config_dir)
        self._stage(CertsStage.CONFIG, self.config_generator.generate, config_dir)

        staging_dir = self._stage(CertsStage.CLEAN, create_staging_dir, certs_dir)
        try:
            self._stage(CertsStage.ISSUE_CA, self.authority.issue_ca, config_dir, staging_dir)
            for identity in LEAF_IDENTITIES:
                self._stage(
                    CertsStage.ISSUE_LEAF,
                    self.authority.issue_leaf,
                    identity,
                    config_dir,
                    staging_dir,
                    identity=identity,
                )
            self._stage(CertsStage.CONVERT, self.format_converter.convert, staging_dir)
            self._stage(CertsStage.PROMOTE, promote, staging_dir, certs_dir)
        except Exception:
            discard_staging_dir(staging_dir)
            raise

        logger.info(f"Certs of {self.config.cluster_name} generated in {certs_dir}")

    def collect(self) -> Bundle:
        """Assemble the bundle from the certs dir."""
        return self._stage(
            CertsStage.COLLECT,
            self.assembler.collect,
            self.config.certs_dir,
            self.config.namespace,
            self.config.cluster_name,
        )

    def provision(self, store: BundleStore) -> bool:
        """Generate and store the bundle of the cluster, unless one is already stored.

        Returns:
            Whether a new bundle was stored.
        """
        if store.exists(self.config.namespace, self.config.cluster_name):
            logger.debug(f"Certs bundle of {self.config.cluster_name} already exists.")
            return False

        self.generate_certs()
        self._stage(CertsStage.STORE, store.create, self.collect())
        return True

    def reprovision(self, store: BundleStore) -> Bundle:
        """Replace the stored bundle of the cluster by a newly generated one."""
        self.generate_certs()
        bundle = self.collect()

        if store.exists(self.config.namespace, self.config.cluster_name):
            self._stage(
                CertsStage.STORE, store.delete, self.config.namespace, self.config.cluster_name
            )
        self._stage(CertsStage.STORE, store.create, bundle)
        return bundle

    @staticmethod
    def _stage(
        stage: CertsStage,
        func: Callable[..., Any],
        *args,
        identity: Optional[Identity] = None,
    ) -> Any:
        try:
            return func(*args)
        except OpenSearchCertsError as e:
            logger.error(f"Certs stage {stage} failed: {e}")
            raise CertsStageError(stage.val, e, identity.val if identity else None) from e
