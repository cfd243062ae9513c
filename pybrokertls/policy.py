# Copyright (c) 2026 Firefly Software Solutions Inc.
# Licensed under the Apache License, Version 2.0

"""
TLS connection policy.

A TLSPolicy describes how one connection attempt to a broker negotiates
and judges TLS: which protocol versions are allowed, which client identity
is presented, and when the server certificate is trusted.

Usage:

    policy = TLSPolicy(
        server_name="broker.example.com",
        cert_path="/etc/broker/client.p12",
        cert_passphrase="secret",
        enabled=True,
    )
    policy.effective_protocol()           # may pin the fallback version
    session = policy.begin_handshake()    # loads the client identity once
    session.verify_server_certificate(chain)
    cert = session.select_client_certificate(acceptable_issuers)
"""

from __future__ import annotations

import logging
import os
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from cryptography import x509

from .certificates import load_client_certificate
from .exceptions import CertificateLoadError, NoEligibleClientCertificate, ValidationRejected
from .models import FALLBACK_PROTOCOL, ClientCertificate, PolicyErrors, ProtocolState, TLSProtocol
from .verification import RevocationChecker, TrustStore, assess_chain

logger = logging.getLogger(__name__)

ValidationCallback = Callable[[Sequence[x509.Certificate], PolicyErrors], bool]
"""Callable ``(chain, policy_errors) -> bool`` that replaces the default validator."""

SelectionCallback = Callable[
    [Sequence[ClientCertificate], Sequence[x509.Name]], Optional[ClientCertificate]
]
"""Callable ``(candidates, acceptable_issuers) -> certificate`` that replaces default selection."""

NegotiationProbe = Callable[[], bool]
"""Callable reporting whether automatic version negotiation is usable."""

DISABLE_AUTO_NEGOTIATION_ENV = "PYBROKERTLS_DISABLE_AUTO_NEGOTIATION"


def automatic_negotiation_supported() -> bool:
    """
    Default environment probe for automatic protocol negotiation.

    Reports False when the operator disabled it through
    ``PYBROKERTLS_DISABLE_AUTO_NEGOTIATION``, when the local OpenSSL build
    lacks TLS 1.2 or TLS 1.3, or when system policy caps the version
    ceiling of a fresh client context.
    """
    if os.environ.get(DISABLE_AUTO_NEGOTIATION_ENV, "").strip().lower() in ("1", "true", "yes"):
        return False
    if not (ssl.HAS_TLSv1_2 and ssl.HAS_TLSv1_3):
        return False
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    return context.maximum_version in (ssl.TLSVersion.MAXIMUM_SUPPORTED, ssl.TLSVersion.TLSv1_3)


@dataclass
class TLSPolicy:
    """
    TLS settings for one connection attempt.

    Callers may change fields between attempts, but not while a handshake
    is using the policy. Use ``begin_handshake()`` to take the read-only
    snapshot a handshake works from.

    Examples:
        # Strict server authentication
        >>> policy = TLSPolicy("broker.example.com", enabled=True)

        # Mutual TLS with an on-disk identity
        >>> policy = TLSPolicy(
        ...     "broker.example.com",
        ...     cert_path="/path/to/client.p12",
        ...     enabled=True,
        ...     cert_passphrase="secret",
        ... )

        # Tolerate a self-issued test broker certificate
        >>> policy = TLSPolicy(
        ...     "localhost",
        ...     enabled=True,
        ...     acceptable_policy_errors=PolicyErrors.CHAIN_ERRORS,
        ... )
    """

    server_name: str = ""
    """Canonical name the server certificate must declare (SAN or CN)."""

    cert_path: str = ""
    """Path to the client certificate (PKCS#12, PEM or DER)."""

    enabled: bool = False
    """Use TLS for this connection."""

    protocol: TLSProtocol = TLSProtocol.NONE
    """Allowed versions. ``TLSProtocol.NONE`` lets the platform choose."""

    acceptable_policy_errors: PolicyErrors = PolicyErrors.NONE
    """Policy errors the default validator tolerates."""

    cert_passphrase: str = ""
    """Passphrase for the file at ``cert_path``."""

    certs: Optional[Sequence[ClientCertificate]] = None
    """Explicit client identities. Takes precedence over ``cert_path``."""

    check_revocation: bool = False
    """Let revocation status contribute to the policy errors."""

    validation_callback: Optional[ValidationCallback] = None
    """Replaces the default validator when set."""

    selection_callback: Optional[SelectionCallback] = None
    """Replaces default client certificate selection when set."""

    tolerate_missing_certificate: bool = False
    """Allow ``NOT_AVAILABLE`` in ``acceptable_policy_errors`` to cover a server sending no certificate."""

    ca_file: Optional[str] = None
    """Trust anchors for the server chain. Defaults to the system store."""

    crls: Sequence[x509.CertificateRevocationList] = ()
    """Locally available revocation lists, used when ``check_revocation`` is set."""

    revocation_checker: Optional[RevocationChecker] = None
    """Consulted instead of ``crls`` when ``check_revocation`` is set."""

    _fallback_pinned: bool = field(default=False, init=False, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Client identity
    # ------------------------------------------------------------------

    def resolve_client_certificates(self) -> Optional[Sequence[ClientCertificate]]:
        """
        Determine the client identity to present.

        Returns:
            ``certs`` unchanged when set, otherwise a one-element tuple
            loaded from ``cert_path``, otherwise ``None``.

        Raises:
            CertificateLoadError: If ``cert_path`` cannot be loaded or holds
                no private key.
        """
        if self.certs is not None:
            logger.debug("Using %d explicitly configured client certificate(s)", len(self.certs))
            return self.certs
        if self.cert_path:
            logger.debug("Loading client certificate from %s", self.cert_path)
            identity = load_client_certificate(self.cert_path, self.cert_passphrase or None)
            if identity.private_key is None:
                raise CertificateLoadError(self.cert_path, "file holds no private key")
            return (identity,)
        logger.debug("No client certificate configured")
        return None

    # ------------------------------------------------------------------
    # Protocol version
    # ------------------------------------------------------------------

    @property
    def protocol_state(self) -> ProtocolState:
        if self._fallback_pinned and self.protocol == FALLBACK_PROTOCOL:
            return ProtocolState.FALLBACK_PINNED
        if self.protocol.is_automatic:
            return ProtocolState.UNSET
        return ProtocolState.EXPLICIT

    def use_fallback_protocol(self) -> TLSProtocol:
        """
        Pin the fallback version when the protocol is still automatic.

        This is the only change a handshake may see on a policy, and it
        must not race an in-flight handshake on the same instance.

        Returns:
            The protocol now in effect.
        """
        if self.protocol.is_automatic:
            self.protocol = FALLBACK_PROTOCOL
            self._fallback_pinned = True
            logger.info(
                "Automatic TLS version negotiation unavailable, pinned %s for %s",
                FALLBACK_PROTOCOL.name,
                self.server_name or "<unnamed server>",
            )
        return self.protocol

    def effective_protocol(self, probe: NegotiationProbe = automatic_negotiation_supported) -> TLSProtocol:
        """
        Protocol versions the next handshake should use.

        Runs ``probe`` only while the protocol is automatic. If it reports
        that automatic negotiation is unusable, the fallback is pinned.
        Repeated calls do not change the policy any further.
        """
        if self.protocol.is_automatic and not probe():
            return self.use_fallback_protocol()
        return self.protocol

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    def begin_handshake(self) -> HandshakeSession:
        """
        Snapshot the policy for one handshake.

        Client identity is resolved here, once, so load failures abort
        the attempt before any bytes are exchanged.

        Raises:
            CertificateLoadError: If the client certificate or ``ca_file``
                cannot be loaded.
        """
        return self._snapshot(self.resolve_client_certificates())

    def _snapshot(self, client_certificates: Optional[Sequence[ClientCertificate]]) -> HandshakeSession:
        return HandshakeSession(
            enabled=self.enabled,
            server_name=self.server_name,
            protocol=self.protocol,
            acceptable_policy_errors=self.acceptable_policy_errors,
            check_revocation=self.check_revocation,
            tolerate_missing_certificate=self.tolerate_missing_certificate,
            client_certificates=client_certificates,
            trust_store=TrustStore.from_file(self.ca_file) if self.ca_file else None,
            crls=tuple(self.crls),
            revocation_checker=self.revocation_checker,
            validation_callback=self.validation_callback,
            selection_callback=self.selection_callback,
        )

    def validate_server_certificate(
        self,
        chain: Sequence[x509.Certificate],
        errors: PolicyErrors | None = None,
    ) -> bool:
        """Shortcut for ``HandshakeSession.validate_server_certificate`` without loading client identity."""
        return self._snapshot(None).validate_server_certificate(chain, errors)

    def verify_server_certificate(
        self,
        chain: Sequence[x509.Certificate],
        errors: PolicyErrors | None = None,
    ) -> PolicyErrors:
        """Shortcut for ``HandshakeSession.verify_server_certificate`` without loading client identity."""
        return self._snapshot(None).verify_server_certificate(chain, errors)

    def select_client_certificate(
        self,
        acceptable_issuers: Sequence[x509.Name] = (),
        *,
        required: bool = False,
    ) -> ClientCertificate | None:
        """
        Shortcut for ``HandshakeSession.select_client_certificate`` on a fresh snapshot.

        Every call resolves the client identity and ``ca_file`` again, so
        a ``cert_path`` is re-read from disk each time. Within a handshake
        use ``begin_handshake()`` once and select on the returned session.
        """
        return self.begin_handshake().select_client_certificate(acceptable_issuers, required=required)


@dataclass(frozen=True)
class HandshakeSession:
    """
    Read-only view of a TLSPolicy for a single handshake.

    Created by ``TLSPolicy.begin_handshake()``. Holds the client identity
    resolved for this handshake so repeated lookups never touch the disk.
    Safe to share between threads.
    """

    enabled: bool
    server_name: str
    protocol: TLSProtocol
    acceptable_policy_errors: PolicyErrors
    check_revocation: bool
    tolerate_missing_certificate: bool
    client_certificates: Optional[Sequence[ClientCertificate]]
    trust_store: Optional[TrustStore] = None
    crls: tuple[x509.CertificateRevocationList, ...] = ()
    revocation_checker: Optional[RevocationChecker] = None
    validation_callback: Optional[ValidationCallback] = None
    selection_callback: Optional[SelectionCallback] = None

    # ------------------------------------------------------------------
    # Server certificate validation
    # ------------------------------------------------------------------

    def assess(self, chain: Sequence[x509.Certificate]) -> PolicyErrors:
        """Platform assessment of ``chain`` with this session's settings."""
        return assess_chain(
            chain,
            self.server_name,
            trust_store=self.trust_store,
            check_revocation=self.check_revocation,
            crls=self.crls,
            revocation_checker=self.revocation_checker,
        )

    def _judge(
        self,
        chain: Sequence[x509.Certificate],
        errors: PolicyErrors | None,
    ) -> tuple[bool, PolicyErrors, PolicyErrors]:
        if errors is None:
            errors = self.assess(chain)
        if not self.check_revocation:
            errors &= ~PolicyErrors.REVOCATION
        if not chain:
            errors |= PolicyErrors.NOT_AVAILABLE

        if self.validation_callback is not None:
            return bool(self.validation_callback(chain, errors)), errors, PolicyErrors.NONE

        remaining = errors & ~self.acceptable_policy_errors
        if PolicyErrors.NOT_AVAILABLE in errors and not self.tolerate_missing_certificate:
            remaining |= PolicyErrors.NOT_AVAILABLE
        return remaining == PolicyErrors.NONE, errors, remaining

    def validate_server_certificate(
        self,
        chain: Sequence[x509.Certificate],
        errors: PolicyErrors | None = None,
    ) -> bool:
        """
        Decide whether to trust the server's certificate chain.

        Args:
            chain: Server certificate first, then intermediates. Empty
                when the server sent no certificate.
            errors: Policy errors already computed by the platform. When
                ``None`` they are computed with ``assess()``.

        Returns:
            The validation callback's answer when one is set, otherwise
            whether no untolerated policy error remains.
        """
        accepted, _, _ = self._judge(chain, errors)
        return accepted

    def verify_server_certificate(
        self,
        chain: Sequence[x509.Certificate],
        errors: PolicyErrors | None = None,
    ) -> PolicyErrors:
        """
        Like ``validate_server_certificate`` but raises on rejection.

        Returns:
            The errors the chain had, tolerated or computed before a
            callback accepted it.

        Raises:
            ValidationRejected: If the chain is not trusted.
        """
        accepted, errors, remaining = self._judge(chain, errors)
        if not accepted:
            raise ValidationRejected(
                remaining,
                self.server_name,
                by_callback=self.validation_callback is not None,
            )
        return errors

    # ------------------------------------------------------------------
    # Client certificate selection
    # ------------------------------------------------------------------

    def select_client_certificate(
        self,
        acceptable_issuers: Sequence[x509.Name] = (),
        *,
        required: bool = False,
        now: datetime | None = None,
    ) -> ClientCertificate | None:
        """
        Choose the client identity to send.

        Default rule: the first candidate, in configured order, that is
        currently valid and whose chain names one of ``acceptable_issuers``.
        An empty ``acceptable_issuers`` means the server accepts any issuer.

        Args:
            acceptable_issuers: Issuer names advertised by the server.
            required: The server demands a client certificate.
            now: Time used for validity checks, defaults to now (UTC).

        Raises:
            NoEligibleClientCertificate: If ``required`` and nothing qualifies.
        """
        candidates = self.client_certificates or ()

        if self.selection_callback is not None:
            chosen = self.selection_callback(candidates, acceptable_issuers)
        else:
            chosen = _first_eligible(candidates, acceptable_issuers, now or datetime.now(timezone.utc))

        if chosen is None and required:
            raise NoEligibleClientCertificate(candidates, acceptable_issuers)
        return chosen


def _first_eligible(
    candidates: Sequence[ClientCertificate],
    acceptable_issuers: Sequence[x509.Name],
    now: datetime,
) -> ClientCertificate | None:
    for candidate in candidates:
        cert = candidate.certificate
        if not cert.not_valid_before_utc <= now <= cert.not_valid_after_utc:
            continue
        if acceptable_issuers and not any(i in acceptable_issuers for i in candidate.issuers()):
            continue
        return candidate
    return None
