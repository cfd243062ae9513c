# Copyright (c) 2026 Firefly Software Solutions Inc.
# Licensed under the Apache License, Version 2.0

"""
Glue between a TLSPolicy and Python's ``ssl`` module.

The ssl module performs the handshake; the policy decides. Platform
verification is switched off on the context so that the policy's own
validator (or the caller's callback) is the only judge of the server
chain, which is checked right after the handshake completes.
"""

from __future__ import annotations

import logging
import os
import secrets
import socket
import ssl
import tempfile
from typing import Callable, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .exceptions import CertificateLoadError
from .models import ClientCertificate
from .policy import HandshakeSession, NegotiationProbe, TLSPolicy, automatic_negotiation_supported

logger = logging.getLogger(__name__)

ContextFactory = Callable[[HandshakeSession, Optional[ClientCertificate]], ssl.SSLContext]


def create_ssl_context(
    session: HandshakeSession,
    client_certificate: ClientCertificate | None = None,
) -> ssl.SSLContext:
    """
    Build a client ``ssl.SSLContext`` for one handshake.

    Args:
        session: Snapshot whose protocol bounds the negotiated version.
        client_certificate: Identity to present, if any. Must carry its
            private key.

    Raises:
        CertificateLoadError: If ``client_certificate`` has no private key.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE

    minimum, maximum = session.protocol.version_bounds()
    context.minimum_version = minimum
    context.maximum_version = maximum

    if client_certificate is not None:
        _load_identity(context, client_certificate)
    return context


def _load_identity(context: ssl.SSLContext, identity: ClientCertificate) -> None:
    if identity.private_key is None:
        raise CertificateLoadError(
            identity.source or identity.subject.rfc4514_string(), "certificate has no private key"
        )

    # ssl only loads identities from files; the key is written encrypted
    # with a one-off password and removed right after loading.
    password = secrets.token_hex(32).encode("ascii")
    pem = b"".join(
        c.public_bytes(serialization.Encoding.PEM) for c in (identity.certificate, *identity.chain)
    )
    pem += identity.private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.BestAvailableEncryption(password),
    )
    with tempfile.TemporaryDirectory(prefix="pybrokertls-") as tmp:
        path = os.path.join(tmp, "identity.pem")
        with open(path, "wb") as f:
            f.write(pem)
        context.load_cert_chain(path, password=password)


def peer_chain(sock: ssl.SSLSocket) -> list[x509.Certificate]:
    """
    Certificates the server sent, leaf first.

    Uses the full unverified chain where the interpreter exposes it and
    the leaf alone otherwise. Empty if the server sent nothing.
    """
    get_chain = getattr(sock, "get_unverified_chain", None)
    if get_chain is not None:
        ders = [d for d in (get_chain() or ()) if isinstance(d, (bytes, bytearray))]
        if ders:
            return [x509.load_der_x509_certificate(bytes(d)) for d in ders]
    der = sock.getpeercert(binary_form=True)
    if not der:
        return []
    return [x509.load_der_x509_certificate(der)]


def wrap_socket(
    sock: socket.socket,
    policy: TLSPolicy,
    *,
    server_hostname: str | None = None,
    require_client_certificate: bool = False,
    probe: NegotiationProbe = automatic_negotiation_supported,
    context_factory: ContextFactory = create_ssl_context,
) -> socket.socket:
    """
    Run the TLS handshake on a connected socket according to ``policy``.

    Returns ``sock`` untouched when the policy is disabled.

    Args:
        sock: Connected TCP socket.
        policy: Policy for this connection attempt.
        server_hostname: SNI name used when the policy has no server_name.
        require_client_certificate: Fail unless a client identity is sent.
        probe: Environment probe for automatic version negotiation.
        context_factory: Builds the ssl context from the session.

    Returns:
        The wrapped socket, with the server chain already accepted.

    Raises:
        CertificateLoadError: If the client identity cannot be loaded.
        NoEligibleClientCertificate: If one is required but none qualifies.
        ValidationRejected: If the server chain is not trusted. The
            wrapped socket is closed first.
    """
    if not policy.enabled:
        return sock

    protocol = policy.effective_protocol(probe)
    session = policy.begin_handshake()
    identity = session.select_client_certificate(required=require_client_certificate)
    context = context_factory(session, identity)

    hostname = session.server_name or server_hostname or None
    logger.debug("Starting TLS handshake with %s (protocol %s)", hostname, protocol.name)
    tls_sock = context.wrap_socket(sock, server_hostname=hostname)

    try:
        session.verify_server_certificate(peer_chain(tls_sock))
    except Exception:
        tls_sock.close()
        raise
    return tls_sock
