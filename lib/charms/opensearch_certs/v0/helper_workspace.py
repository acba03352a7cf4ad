# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Helpers owning the config and certs working directories."""
import logging
import os
import shutil
import tempfile

from charms.opensearch_certs.v0.constants_certs import STAGING_DIR_PREFIX
from charms.opensearch_certs.v0.opensearch_certs_exceptions import CertsFilesystemError

# The unique Charmhub library identifier, never change it
LIBID = "7d3e9b0a4f2c48e1a6b5c8d0e2f41a39"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


logger = logging.getLogger(__name__)


def clean(directory: str) -> None:
    """Remove every file and subtree of a directory, leaving it present and empty.

    Entries removed before a failure stay removed.
    """
    try:
        names = os.listdir(directory)
    except OSError as e:
        raise CertsFilesystemError(directory, e.strerror or str(e))

    for name in names:
        path = os.path.join(directory, name)
        try:
            if os.path.isdir(path) and not os.path.islink(path):
                shutil.rmtree(path)
            else:
                os.remove(path)
        except OSError as e:
            raise CertsFilesystemError(path, e.strerror or str(e))

    logger.debug(f"Cleaned {len(names)} entries from {directory}")


def create_staging_dir(target_dir: str) -> str:
    """Create an empty staging directory on the same filesystem as the target.

    It's created next to the target so it can be renamed into it.
    """
    parent = os.path.dirname(os.path.abspath(target_dir))
    try:
        return tempfile.mkdtemp(
            prefix=f"{STAGING_DIR_PREFIX}{os.path.basename(target_dir)}-", dir=parent
        )
    except OSError as e:
        raise CertsFilesystemError(parent, e.strerror or str(e))


def discard_staging_dir(staging_dir: str) -> None:
    """Remove a staging directory and all its content."""
    try:
        shutil.rmtree(staging_dir)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise CertsFilesystemError(staging_dir, e.strerror or str(e))


def promote(staging_dir: str, target_dir: str) -> None:
    """Swap a staging directory in place of the target directory.

    The target is renamed aside, the staging dir renamed into its place, then
    the previous content removed. If the swap fails the target is put back.
    """
    target_dir = os.path.abspath(target_dir)
    previous_dir = f"{staging_dir}-previous"

    try:
        shutil.copymode(target_dir, staging_dir)
        os.replace(target_dir, previous_dir)
    except OSError as e:
        raise CertsFilesystemError(target_dir, e.strerror or str(e))

    try:
        os.replace(staging_dir, target_dir)
    except OSError as e:
        logger.error(f"Could not move {staging_dir} into {target_dir}, restoring it.")
        try:
            os.replace(previous_dir, target_dir)
        except OSError as restore_error:
            raise CertsFilesystemError(
                target_dir, f"not restored from {previous_dir}: {restore_error}"
            ) from e
        raise CertsFilesystemError(staging_dir, e.strerror or str(e))

    try:
        discard_staging_dir(previous_dir)
    except CertsFilesystemError as e:
        logger.warning(f"Promoted {target_dir} but left {previous_dir} behind: {e}")
    logger.debug(f"Promoted {staging_dir} into {target_dir}")
