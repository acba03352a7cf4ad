# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""In this file we declare the base enum types with string representations."""
from enum import Enum

# The unique Charmhub library identifier, never change it
LIBID = "4a1f0c6de2b34c8e9a77d0e3b51c92f4"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


class BaseStrEnum(str, Enum):
    """Base Enum class with str representation."""

    def __str__(self):
        """String representation of enum value."""
        return self.value

    @property
    def val(self) -> str:
        """String representation of enum values."""
        return str(self.__str__())
