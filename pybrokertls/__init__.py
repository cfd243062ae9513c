# Copyright (c) 2026 Firefly Software Solutions Inc.
# Licensed under the Apache License, Version 2.0

"""
PyBrokerTLS - TLS connection policy for message broker clients.

Decides how a client connection to a broker negotiates and judges TLS:
- Protocol version selection with fallback pinning
- Client certificate resolution for mutual TLS (PKCS#12, PEM, DER)
- Server certificate validation with tolerated policy errors
- Pluggable validation and client certificate selection callbacks

Quick Start:
    >>> from pybrokertls import TLSPolicy, wrap_socket
    >>>
    >>> policy = TLSPolicy("broker.example.com", enabled=True, ca_file="ca.crt")
    >>> tls_sock = wrap_socket(sock, policy)

Mutual TLS:
    >>> policy = TLSPolicy(
    ...     "broker.example.com",
    ...     cert_path="/path/to/client.p12",
    ...     cert_passphrase="secret",
    ...     enabled=True,
    ... )
    >>> session = policy.begin_handshake()
    >>> identity = session.select_client_certificate(acceptable_issuers)

Custom Validation:
    >>> def pinned(chain, errors):
    ...     return bool(chain) and chain[0].fingerprint(hashes.SHA256()) == PIN
    >>>
    >>> policy = TLSPolicy("broker.example.com", enabled=True, validation_callback=pinned)

From Configuration:
    >>> from pybrokertls import TLSPolicyConfig
    >>>
    >>> config = TLSPolicyConfig(enabled=True, server_name="broker", protocol="TLSv1.2")
    >>> policy = config.to_policy()
"""

from .certificates import dns_names, ip_addresses, load_ca_certificates, load_client_certificate, matches_name
from .config import TLSPolicyConfig
from .exceptions import (
    CertificateLoadError,
    NoEligibleClientCertificate,
    TLSPolicyError,
    ValidationRejected,
)
from .models import (
    FALLBACK_PROTOCOL,
    ClientCertificate,
    PolicyErrors,
    ProtocolState,
    RevocationStatus,
    TLSProtocol,
)
from .policy import (
    HandshakeSession,
    SelectionCallback,
    TLSPolicy,
    ValidationCallback,
    automatic_negotiation_supported,
)
from .transport import create_ssl_context, peer_chain, wrap_socket
from .verification import RevocationChecker, TrustStore, assess_chain

__version__ = "1.0.0"
__author__ = "Firefly Software Solutions Inc."
__license__ = "Apache-2.0"

__all__ = [
    # Policy
    "TLSPolicy",
    "HandshakeSession",
    "ValidationCallback",
    "SelectionCallback",
    "automatic_negotiation_supported",
    # Configuration
    "TLSPolicyConfig",
    # Types
    "ClientCertificate",
    "PolicyErrors",
    "ProtocolState",
    "RevocationStatus",
    "TLSProtocol",
    "FALLBACK_PROTOCOL",
    # Certificates
    "load_client_certificate",
    "load_ca_certificates",
    "dns_names",
    "ip_addresses",
    "matches_name",
    # Verification
    "TrustStore",
    "RevocationChecker",
    "assess_chain",
    # Transport
    "create_ssl_context",
    "peer_chain",
    "wrap_socket",
    # Exceptions
    "TLSPolicyError",
    "CertificateLoadError",
    "ValidationRejected",
    "NoEligibleClientCertificate",
]
