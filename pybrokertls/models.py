# Copyright (c) 2026 Firefly Software Solutions Inc.
# Licensed under the Apache License, Version 2.0

"""
Value types shared by the TLS connection policy.
"""

from __future__ import annotations

import ssl
from dataclasses import dataclass, field
from enum import Enum, Flag
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes


class PolicyErrors(Flag):
    """
    Reasons a server certificate chain is untrusted.

    Values combine like a set: ``NAME_MISMATCH | CHAIN_ERRORS``.
    ``NONE`` is the empty set.
    """
    NONE = 0
    NOT_AVAILABLE = 1
    NAME_MISMATCH = 2
    CHAIN_ERRORS = 4
    REVOCATION_UNKNOWN = 8
    REVOKED = 16

    # Aliases for the revocation-related members
    REVOCATION = REVOCATION_UNKNOWN | REVOKED

    @classmethod
    def from_names(cls, names) -> PolicyErrors:
        """Combine flag names (case-insensitive) into a single value."""
        result = cls.NONE
        for name in names:
            try:
                result |= cls[name.strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown policy error: {name!r}") from None
        return result

    def names(self) -> list[str]:
        """Names of the single flags set in this value, lowest bit first."""
        return [m.name for m in _SINGLE_ERRORS if m in self]


_SINGLE_ERRORS = (
    PolicyErrors.NOT_AVAILABLE,
    PolicyErrors.NAME_MISMATCH,
    PolicyErrors.CHAIN_ERRORS,
    PolicyErrors.REVOCATION_UNKNOWN,
    PolicyErrors.REVOKED,
)


class TLSProtocol(Flag):
    """
    TLS protocol versions a connection may use.

    ``NONE`` lets the platform negotiate the best mutually supported
    version. Any other value pins the connection to that set.
    """
    NONE = 0
    TLSv1_2 = 1
    TLSv1_3 = 2

    @property
    def is_automatic(self) -> bool:
        return self is TLSProtocol.NONE

    def version_bounds(self) -> tuple[ssl.TLSVersion, ssl.TLSVersion]:
        """Lowest and highest ``ssl.TLSVersion`` covered by this set."""
        if self.is_automatic:
            return ssl.TLSVersion.MINIMUM_SUPPORTED, ssl.TLSVersion.MAXIMUM_SUPPORTED
        versions = [v for p, v in _SSL_VERSIONS if p in self]
        return min(versions), max(versions)


_SSL_VERSIONS = (
    (TLSProtocol.TLSv1_2, ssl.TLSVersion.TLSv1_2),
    (TLSProtocol.TLSv1_3, ssl.TLSVersion.TLSv1_3),
)

FALLBACK_PROTOCOL = TLSProtocol.TLSv1_2
"""Version pinned when automatic negotiation is unavailable."""


class ProtocolState(str, Enum):
    """How a policy's protocol version was decided."""
    UNSET = "unset"
    EXPLICIT = "explicit"
    FALLBACK_PINNED = "fallback_pinned"


class RevocationStatus(str, Enum):
    """Revocation state of a single certificate."""
    GOOD = "good"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClientCertificate:
    """
    A client identity presented during mutual TLS.

    Attributes:
        certificate: Leaf certificate sent to the server.
        private_key: Key matching the leaf, if one was loaded with it.
        chain: Intermediate certificates sent after the leaf.
        source: Where the identity came from (file path or ``None``).
    """

    certificate: x509.Certificate
    private_key: Optional[PrivateKeyTypes] = None
    chain: tuple[x509.Certificate, ...] = field(default_factory=tuple)
    source: Optional[str] = None

    @property
    def subject(self) -> x509.Name:
        return self.certificate.subject

    @property
    def issuer(self) -> x509.Name:
        return self.certificate.issuer

    def issuers(self) -> list[x509.Name]:
        """Issuer names along the identity's chain, leaf first."""
        return [self.certificate.issuer] + [c.issuer for c in self.chain]
