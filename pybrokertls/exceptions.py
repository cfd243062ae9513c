# Copyright (c) 2026 Firefly Software Solutions Inc.
# Licensed under the Apache License, Version 2.0

"""
Exceptions raised by the TLS connection policy.

All exceptions inherit from TLSPolicyError, so a connection routine can
stop on any policy failure with a single except clause:

    try:
        session = policy.begin_handshake()
    except TLSPolicyError as e:
        print(f"TLS setup failed: {e}")

For more granular handling, catch the specific exception types:

    try:
        session.verify_server_certificate(chain, errors)
    except ValidationRejected as e:
        print(f"Server rejected: {e.errors.names()}")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from cryptography import x509

    from .models import ClientCertificate, PolicyErrors


class TLSPolicyError(Exception):
    """
    Base exception for all TLS policy errors.

    All policy exceptions inherit from this class, allowing you to catch
    every policy-related failure with a single except clause.
    """

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        self.hint = hint
        if hint:
            message = f"{message}\n\n  Hint: {hint}"
        super().__init__(message)


class CertificateLoadError(TLSPolicyError):
    """
    Raised when the client certificate cannot be loaded from disk.

    Common causes:
    - File does not exist or is not readable
    - Wrong passphrase
    - File is not a PKCS#12, PEM or DER certificate

    This aborts the connection attempt. Loading is never retried.
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(
            f"Failed to load client certificate from {path}: {reason}",
            hint="Check cert_path and cert_passphrase, or set certs explicitly",
        )


class ValidationRejected(TLSPolicyError):
    """
    Raised when the server certificate chain is not trusted.

    Attributes:
        errors: Policy errors left after removing the acceptable ones.
            ``PolicyErrors.NONE`` when a validation callback refused.
        server_name: Name the certificate was checked against.
        by_callback: True when a custom validation callback made the call.
    """

    def __init__(
        self,
        errors: PolicyErrors,
        server_name: str = "",
        *,
        by_callback: bool = False,
    ) -> None:
        self.errors = errors
        self.server_name = server_name
        self.by_callback = by_callback
        if by_callback:
            message = f"Server certificate for {server_name!r} rejected by validation callback"
            hint = None
        else:
            reasons = ", ".join(errors.names()) or "unknown"
            message = f"Server certificate for {server_name!r} rejected: {reasons}"
            hint = "Add tolerated reasons to acceptable_policy_errors only for testing"
        super().__init__(message, hint=hint)


class NoEligibleClientCertificate(TLSPolicyError):
    """
    Raised when no configured client certificate suits the server.

    Only fatal when the server requires client authentication, which the
    caller states by passing ``required=True`` to the selection step.
    """

    def __init__(
        self,
        candidates: Sequence[ClientCertificate] = (),
        acceptable_issuers: Sequence[x509.Name] = (),
    ) -> None:
        self.candidates = tuple(candidates)
        self.acceptable_issuers = tuple(acceptable_issuers)
        if not self.candidates:
            message = "No client certificate configured"
            hint = "Set cert_path or certs on the policy"
        else:
            issuers = ", ".join(n.rfc4514_string() for n in self.acceptable_issuers)
            message = (
                f"None of {len(self.candidates)} client certificate(s) "
                f"is issued by an acceptable issuer ({issuers or 'any'})"
            )
            hint = "Present a certificate issued by a CA the server trusts"
        super().__init__(message, hint=hint)
