# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Certs provisioning data structures / model classes."""
import json
import re
from abc import ABC
from typing import Any, Dict, List, Optional

from charms.opensearch_certs.v0.constants_certs import (
    BUNDLE_NAME_PREFIX,
    CFSSL_BIN,
    CFSSLJSON_BIN,
    CMD_TIMEOUT,
    DEFAULT_STORE_PASSWORD,
    KEY_ALGO,
    KEY_SIZE,
    KEYTOOL_BIN,
    OPENSSL_BIN,
    SIGNING_EXPIRY,
    SIGNING_USAGES,
)
from pydantic import BaseModel, ConfigDict, Field, field_validator

# The unique Charmhub library identifier, never change it
LIBID = "c81e4d2f9a6b40e7b3d05f1a2c9e6d47"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


class Model(ABC, BaseModel):
    """Base model class."""

    model_config = ConfigDict(populate_by_name=True)

    def to_str(self, by_alias: bool = False) -> str:
        """Deserialize object into a string."""
        return json.dumps(self.to_dict(by_alias=by_alias))

    def to_dict(self, by_alias: bool = False) -> Dict[str, Any]:
        """Deserialize object into a dict, omitting unset optional values."""
        return self.model_dump(by_alias=by_alias, exclude_none=True)

    @classmethod
    def from_dict(cls, input_dict: Optional[Dict[str, Any]]):
        """Create a new instance of this class from a json/dict repr."""
        if not input_dict:  # to handle when classes defined defaults
            return cls()
        return cls.model_validate(input_dict)

    @classmethod
    def from_str(cls, input_str_dict: str):
        """Create a new instance of this class from a stringified json/dict repr."""
        return cls.model_validate_json(input_str_dict)


class SigningProfile(Model):
    """Usages and validity applied to every leaf issued by the CA."""

    usages: List[str] = Field(default_factory=lambda: list(SIGNING_USAGES))
    expiry: str = SIGNING_EXPIRY

    @field_validator("expiry")
    def expiry_in_hours(cls, value: str) -> str:  # noqa: N805
        """Only whole hours durations, as cfssl writes them, are supported."""
        if not re.fullmatch(r"[0-9]+h", value):
            raise ValueError(f"Unsupported expiry duration: {value}")
        return value

    @property
    def expiry_hours(self) -> int:
        """Validity of the issued certificates in hours."""
        return int(self.expiry[:-1])


class SigningConfig(Model):
    """Signing section of the CA config."""

    default: SigningProfile = Field(default_factory=SigningProfile)


class SigningPolicy(Model):
    """The CA config document (ca-config.json)."""

    signing: SigningConfig = Field(default_factory=SigningConfig)

    @property
    def profile(self) -> SigningProfile:
        """The policy applied to all leaf issuances."""
        return self.signing.default


class KeySpec(Model):
    """Algorithm and size of the key to generate."""

    algo: str = KEY_ALGO
    size: int = KEY_SIZE


class DistinguishedName(Model):
    """Subject name entries of a CSR."""

    organization: Optional[str] = Field(default=None, alias="O")
    organizational_unit: Optional[str] = Field(default=None, alias="OU")
    locality: Optional[str] = Field(default=None, alias="L")
    country: Optional[str] = Field(default=None, alias="C")
    state: Optional[str] = Field(default=None, alias="ST")


class CSRDescriptor(Model):
    """A certificate signing request descriptor, as consumed by cfssl."""

    common_name: Optional[str] = Field(default=None, alias="CN")
    hosts: List[str]
    key: KeySpec = Field(default_factory=KeySpec)
    names: List[DistinguishedName] = Field(default_factory=list)


class ProvisioningConfig(Model):
    """Inputs of a provisioning run."""

    namespace: str
    cluster_name: str
    config_dir: str
    certs_dir: str
    store_password: str = DEFAULT_STORE_PASSWORD
    cmd_timeout: int = CMD_TIMEOUT
    jdk_path: Optional[str] = None
    cfssl: str = CFSSL_BIN
    cfssljson: str = CFSSLJSON_BIN
    openssl: str = OPENSSL_BIN

    @property
    def keytool(self) -> str:
        """Path of the keytool binary."""
        if self.jdk_path:
            return f"{self.jdk_path}/bin/keytool"
        return KEYTOOL_BIN

    @property
    def default_password(self) -> bool:
        """Whether the dev/test keystore password is in use."""
        return self.store_password == DEFAULT_STORE_PASSWORD


class Bundle(Model):
    """Artifacts of a cluster, keyed by their logical name."""

    namespace: str
    cluster_name: str
    data: Dict[str, bytes] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        """Name of the bundle in the store."""
        return f"{BUNDLE_NAME_PREFIX}-{self.cluster_name}"

    def get(self, artifact: str) -> bytes:
        """Content of an artifact, empty when it was not collected."""
        return self.data.get(artifact, b"")
