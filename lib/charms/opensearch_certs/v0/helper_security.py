# Copyright 2024 Canonical Ltd.
# See LICENSE file for licensing details.

"""Helpers for security related operations, such as password generation or cert inspection."""
import math
import secrets
import string
from datetime import datetime, timezone
from typing import List, Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.x509.oid import NameOID

# The unique Charmhub library identifier, never change it
LIBID = "a3c7e5f1b9d2480c96e4f0b8d1a27c64"

# Increment this major API version when introducing breaking changes
LIBAPI = 0

# Increment this PATCH version before using `charmcraft publish-lib` or reset
# to 0 if you are raising the major API version
LIBPATCH = 1


def generate_password() -> str:
    """Generate a random password string.

    Returns:
       A random password string.
    """
    choices = string.ascii_letters + string.digits
    return "".join([secrets.choice(choices) for _ in range(32)])


def _load(cert: Union[str, bytes]) -> x509.Certificate:
    if isinstance(cert, str):
        cert = cert.encode()
    return x509.load_pem_x509_certificate(data=cert)


def cert_expiration_remaining_hours(cert: Union[str, bytes]) -> int:
    """Returns the remaining hours for the cert to expire."""
    time_difference = _load(cert).not_valid_after_utc - datetime.now(timezone.utc)

    return math.floor(time_difference.total_seconds() / 3600)


def cert_subject_attribute(
    cert: Union[str, bytes], oid: x509.ObjectIdentifier = NameOID.ORGANIZATION_NAME
) -> Optional[str]:
    """Returns the first value of an attribute of the subject, e.g. its organization."""
    attributes = _load(cert).subject.get_attributes_for_oid(oid)
    return attributes[0].value if attributes else None


def cert_issued_by(cert: Union[str, bytes], ca_cert: Union[str, bytes]) -> bool:
    """Check the cert was signed by the CA, issuer name and signature alike."""
    certificate = _load(cert)
    ca_certificate = _load(ca_cert)
    if certificate.issuer != ca_certificate.subject:
        return False

    try:
        certificate.verify_directly_issued_by(ca_certificate)
    except (InvalidSignature, ValueError, TypeError):
        return False
    return True


def cert_dns_names(cert: Union[str, bytes]) -> List[str]:
    """Returns the DNS names of the subject alternative names of the cert."""
    try:
        sans = _load(cert).extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return sans.value.get_values_for_type(x509.DNSName)
