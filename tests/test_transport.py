# Copyright (c) 2026 Firefly Software Solutions Inc.
# Licensed under the Apache License, Version 2.0

"""Tests for the ssl glue."""

import ssl

import pytest
from cryptography.hazmat.primitives import serialization

from conftest import Authority
from pybrokertls import (
    CertificateLoadError,
    ClientCertificate,
    NoEligibleClientCertificate,
    TLSPolicy,
    TLSProtocol,
    ValidationRejected,
    create_ssl_context,
    peer_chain,
    wrap_socket,
)


class FakeTLSSocket:
    """Stands in for an ssl.SSLSocket after a completed handshake."""

    def __init__(self, peer_der: bytes | None) -> None:
        self.peer_der = peer_der
        self.closed = False

    def getpeercert(self, binary_form: bool = False):
        return self.peer_der

    def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, tls_sock: FakeTLSSocket) -> None:
        self.tls_sock = tls_sock
        self.wrapped = []

    def wrap_socket(self, sock, server_hostname=None):
        self.wrapped.append((sock, server_hostname))
        return self.tls_sock


def _der(cert) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


class TestCreateSSLContext:
    """Tests for create_ssl_context."""

    def test_platform_verification_disabled(self) -> None:
        context = create_ssl_context(TLSPolicy().begin_handshake())

        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False

    def test_pinned_version(self) -> None:
        session = TLSPolicy(protocol=TLSProtocol.TLSv1_2).begin_handshake()
        context = create_ssl_context(session)

        assert context.minimum_version == ssl.TLSVersion.TLSv1_2
        assert context.maximum_version == ssl.TLSVersion.TLSv1_2

    def test_loads_client_identity(self, ca: Authority) -> None:
        identity = ca.identity("client")
        context = create_ssl_context(TLSPolicy().begin_handshake(), identity)
        assert isinstance(context, ssl.SSLContext)

    def test_identity_without_key(self, ca: Authority) -> None:
        """Test that a keyless identity is reported as a load error."""
        cert, _ = ca.issue("client", client=True)
        with pytest.raises(CertificateLoadError, match="no private key") as exc_info:
            create_ssl_context(TLSPolicy().begin_handshake(), ClientCertificate(certificate=cert))
        assert exc_info.value.path == "CN=client"

    def test_identity_without_key_names_source(self, ca: Authority) -> None:
        cert, _ = ca.issue("client", client=True)
        identity = ClientCertificate(certificate=cert, source="/etc/client.crt")

        with pytest.raises(CertificateLoadError) as exc_info:
            create_ssl_context(TLSPolicy().begin_handshake(), identity)
        assert exc_info.value.path == "/etc/client.crt"


class TestPeerChain:
    """Tests for peer_chain."""

    def test_leaf_from_getpeercert(self, server_cert) -> None:
        assert peer_chain(FakeTLSSocket(_der(server_cert))) == [server_cert]

    def test_nothing_sent(self) -> None:
        assert peer_chain(FakeTLSSocket(None)) == []

    def test_full_chain_when_available(self, ca: Authority, server_cert) -> None:
        sock = FakeTLSSocket(_der(server_cert))
        sock.get_unverified_chain = lambda: [_der(server_cert), _der(ca.cert)]

        assert peer_chain(sock) == [server_cert, ca.cert]


class TestWrapSocket:
    """Tests for wrap_socket."""

    def test_disabled_policy_returns_socket(self) -> None:
        sock = object()
        assert wrap_socket(sock, TLSPolicy("broker.example.com", enabled=False)) is sock

    def test_trusted_server(self, ca_file: str, server_cert) -> None:
        tls_sock = FakeTLSSocket(_der(server_cert))
        context = FakeContext(tls_sock)
        sock = object()
        policy = TLSPolicy("broker.example.com", enabled=True, ca_file=ca_file)

        result = wrap_socket(sock, policy, probe=lambda: True, context_factory=lambda s, i: context)

        assert result is tls_sock
        assert context.wrapped == [(sock, "broker.example.com")]
        assert not tls_sock.closed

    def test_rejected_server_closes_socket(self, ca_file: str, ca: Authority) -> None:
        cert, _ = ca.issue("other.example.com", ("other.example.com",))
        tls_sock = FakeTLSSocket(_der(cert))
        policy = TLSPolicy("broker.example.com", enabled=True, ca_file=ca_file)

        with pytest.raises(ValidationRejected):
            wrap_socket(
                object(),
                policy,
                probe=lambda: True,
                context_factory=lambda s, i: FakeContext(tls_sock),
            )
        assert tls_sock.closed

    def test_fallback_applied_before_handshake(self, ca_file: str, server_cert) -> None:
        sessions = []

        def factory(session, identity):
            sessions.append(session)
            return FakeContext(FakeTLSSocket(_der(server_cert)))

        policy = TLSPolicy("broker.example.com", enabled=True, ca_file=ca_file)
        wrap_socket(object(), policy, probe=lambda: False, context_factory=factory)

        assert sessions[0].protocol is TLSProtocol.TLSv1_2
        assert policy.protocol is TLSProtocol.TLSv1_2

    def test_selected_identity_passed_to_context(self, ca_file: str, ca: Authority, server_cert) -> None:
        identities = []
        certs = [ca.identity("client")]

        def factory(session, identity):
            identities.append(identity)
            return FakeContext(FakeTLSSocket(_der(server_cert)))

        policy = TLSPolicy("broker.example.com", enabled=True, ca_file=ca_file, certs=certs)
        wrap_socket(object(), policy, probe=lambda: True, context_factory=factory)

        assert identities == [certs[0]]

    def test_required_identity_missing(self, ca_file: str) -> None:
        policy = TLSPolicy("broker.example.com", enabled=True, ca_file=ca_file)

        with pytest.raises(NoEligibleClientCertificate):
            wrap_socket(object(), policy, require_client_certificate=True, probe=lambda: True)

    def test_load_error_before_connecting(self, client_p12: str) -> None:
        contexts = []
        policy = TLSPolicy("broker.example.com", client_p12, True, cert_passphrase="wrong")

        with pytest.raises(CertificateLoadError):
            wrap_socket(object(), policy, probe=lambda: True, context_factory=lambda s, i: contexts.append(s))
        assert contexts == []

    def test_keyless_certificate_file_rejected_before_connecting(
        self, tmp_path, ca: Authority
    ) -> None:
        cert, _ = ca.issue("client", client=True)
        path = tmp_path / "client.der"
        path.write_bytes(_der(cert))
        contexts = []
        policy = TLSPolicy("broker.example.com", str(path), True)

        with pytest.raises(CertificateLoadError, match="no private key"):
            wrap_socket(object(), policy, probe=lambda: True, context_factory=lambda s, i: contexts.append(s))
        assert contexts == []
