# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""In this file we declare the constants and enums used by the certs provisioning."""
from charms.opensearch_certs.v0.helper_enums import BaseStrEnum

# The unique Charmhub library identifier, never change it
LIBID = "b0d93e7a61c44f52a8e1f6c2d7305a1e"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


class Identity(BaseStrEnum):
    """Fixed identities of the trust fabric, valued after their file stems."""

    CA = "ca"
    NODE = "node"
    ADMIN = "sgadmin"  # admin / management of cluster
    UI = "kibana"
    DASHBOARD_PROXY = "cerebro"


# leaf identities, in the order they get issued
LEAF_IDENTITIES = [Identity.NODE, Identity.UI, Identity.DASHBOARD_PROXY, Identity.ADMIN]

# identities converted to pkcs12 and imported in a java keystore
KEYSTORE_IDENTITIES = [Identity.ADMIN, Identity.NODE]


class CertsStage(BaseStrEnum):
    """Stages of a provisioning run."""

    CLEAN = "clean"
    CONFIG = "config"
    ISSUE_CA = "issue-ca"
    ISSUE_LEAF = "issue-leaf"
    CONVERT = "convert"
    PROMOTE = "promote"
    COLLECT = "collect"
    STORE = "store"


# descriptor files, written to the config dir
CA_CONFIG_FILE = "ca-config.json"
CA_CSR_FILE = "ca-csr.json"


def csr_file(identity: Identity) -> str:
    """Name of the CSR descriptor file of an identity."""
    if identity == Identity.CA:
        return CA_CSR_FILE
    return f"req-{identity}-csr.json"


def cert_file(identity: Identity) -> str:
    """Name of the PEM certificate of an identity."""
    return f"{identity}.pem"


def key_file(identity: Identity) -> str:
    """Name of the PEM private key of an identity."""
    return f"{identity}-key.pem"


def pkcs8_key_file(identity: Identity) -> str:
    """Name of the unencrypted PKCS8 private key of an identity."""
    return f"{identity}-key.pkcs8.pem"


def pkcs12_file(identity: Identity) -> str:
    """Name of the PKCS12 archive of an identity."""
    return f"{identity}.pkcs12"


def keystore_file(identity: Identity) -> str:
    """Name of the java keystore of an identity."""
    return f"{identity}-keystore.jks"


TRUSTSTORE_FILE = "truststore.jks"

# signing policy
SIGNING_USAGES = ["signing", "key encipherment", "server auth", "client auth"]
SIGNING_EXPIRY = "8760h"
SIGNING_PROFILE = "server"

# csr key spec
KEY_ALGO = "rsa"
KEY_SIZE = 2048

# CA distinguished name and hosts prefix
CA_HOST_PREFIX = "elasticsearch"
CA_COUNTRY = "US"
CA_LOCALITY = "Pittsburgh"
CA_ORGANIZATION = "elasticsearch-operator"
CA_ORGANIZATIONAL_UNIT = "k8s"
CA_STATE = "Pennsylvania"

# leaf distinguished name
LEAF_ORGANIZATION = "autogenerated"
LEAF_ORGANIZATIONAL_UNIT = "elasticsearch cluster"
LEAF_LOCALITY = "operator"

CLUSTER_DOMAIN = "svc.cluster.local"

# keystores
DEFAULT_STORE_PASSWORD = "changeit"
TRUSTSTORE_ALIAS = "root-ca"
PKCS12_SRC_ALIAS = "1"
KEYSTORE_ALIASES = {
    Identity.ADMIN: "elasticsearch-admin",
    Identity.NODE: "elasticsearch-node",
}

# external tools
CFSSL_BIN = "cfssl"
CFSSLJSON_BIN = "cfssljson"
OPENSSL_BIN = "openssl"
KEYTOOL_BIN = "keytool"
CMD_TIMEOUT = 25

# bundle
BUNDLE_NAME_PREFIX = "elasticsearch-certs"
BUNDLE_LABEL_SEPARATOR = ":"
STAGING_DIR_PREFIX = ".staging-"
