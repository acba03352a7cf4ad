# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""File containing all certs provisioning related exceptions."""
from typing import Optional

# The unique Charmhub library identifier, never change it
LIBID = "5e2c7b19f0a04d63b8c4e9d1a6f27b80"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


class OpenSearchCertsError(Exception):
    """Base exception class for certs provisioning errors."""


class CertsFilesystemError(OpenSearchCertsError):
    """Exception thrown when a working directory or artifact can't be read, written or removed."""

    def __init__(self, path: str, reason: Optional[str] = None):
        super().__init__(path, reason)
        self.path = path
        self.reason = reason

    def __str__(self):
        """Returns the string for the filesystem error."""
        return f"Filesystem error on {self.path}: {self.reason}"


class CertsSerializationError(OpenSearchCertsError):
    """Exception thrown when a descriptor or PEM material can't be encoded or decoded."""


class CertsCmdError(OpenSearchCertsError):
    """Exception thrown when an external command fails."""

    def __init__(
        self,
        cmd: Optional[str] = None,
        out: Optional[str] = None,
        err: Optional[str] = None,
        return_code: Optional[int] = None,
    ):
        super().__init__(cmd, out, err, return_code)
        self.cmd = cmd
        self.out = out or ""
        self.err = err or ""
        self.return_code = return_code

    def __str__(self):
        """Returns the string for the command error."""
        return (
            f"Command error: {self.cmd}, code: {self.return_code}, "
            f"stderr: {self.err}, stdout: {self.out}"
        )


class CertsCmdTimeoutError(CertsCmdError):
    """Exception thrown when an external command doesn't complete in time."""

    def __str__(self):
        """Returns the string for the timeout error."""
        return f"Command timed out: {self.cmd}"


class CertsPipelineError(CertsCmdError):
    """Exception thrown when a pipeline of chained commands fails."""


class CertsMissingArtifactError(OpenSearchCertsError):
    """Exception thrown when an expected artifact is not on disk."""

    def __init__(self, artifact: str, directory: Optional[str] = None):
        super().__init__(artifact, directory)
        self.artifact = artifact
        self.directory = directory

    def __str__(self):
        """Returns the string for the missing artifact error."""
        return f"Missing artifact {self.artifact} in {self.directory}"


class CertsStageError(OpenSearchCertsError):
    """Exception thrown when a provisioning stage fails, wrapping the original cause."""

    def __init__(self, stage: str, cause: Exception, identity: Optional[str] = None):
        super().__init__(stage, cause, identity)
        self.stage = stage
        self.cause = cause
        self.identity = identity

    def __str__(self):
        """Returns the string for the stage error."""
        target = f" ({self.identity})" if self.identity else ""
        return f"Stage {self.stage}{target} failed: {self.cause}"


class CertsBundleStoreError(OpenSearchCertsError):
    """Exception thrown when the bundle can't be persisted or removed."""
