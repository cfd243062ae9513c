# Copyright (c) 2026 Firefly Software Solutions Inc.
# Licensed under the Apache License, Version 2.0

"""
Platform assessment of a server certificate chain.

Computes the PolicyErrors a default validator starts from. Chain building
and signature checks are delegated to ``cryptography.x509.verification``;
revocation data comes from CRLs the caller already holds or from a
caller-supplied checker. Nothing here touches the network.
"""

from __future__ import annotations

import logging
import ssl
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Optional, Sequence

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

from .certificates import load_ca_certificates, matches_name
from .models import PolicyErrors, RevocationStatus

logger = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 8

RevocationChecker = Callable[[x509.Certificate, Optional[x509.Certificate]], RevocationStatus]
"""Callable ``(certificate, issuer) -> RevocationStatus``."""


class TrustStore:
    """
    Set of trust anchors used to build server chains.

    Example:
        >>> store = TrustStore.from_file("/path/to/ca.crt")
        >>> store = TrustStore.system()
    """

    def __init__(self, anchors: Sequence[x509.Certificate] = ()) -> None:
        self.anchors = tuple(anchors)

    def __len__(self) -> int:
        return len(self.anchors)

    @classmethod
    def from_file(cls, path: str) -> TrustStore:
        return cls(load_ca_certificates(path))

    @classmethod
    def system(cls) -> TrustStore:
        """Anchors from the default ``ssl`` verify locations."""
        return _system_store()

    def find_issuer(self, cert: x509.Certificate) -> x509.Certificate | None:
        for anchor in self.anchors:
            if anchor.subject == cert.issuer:
                return anchor
        return None


@lru_cache(maxsize=1)
def _system_store() -> TrustStore:
    context = ssl.create_default_context()
    anchors = []
    for der in context.get_ca_certs(binary_form=True):
        try:
            anchors.append(x509.load_der_x509_certificate(der))
        except ValueError:
            logger.debug("Skipping unparsable system CA certificate")
    return TrustStore(anchors)


def assess_chain(
    chain: Sequence[x509.Certificate],
    server_name: str,
    *,
    trust_store: TrustStore | None = None,
    check_revocation: bool = False,
    crls: Sequence[x509.CertificateRevocationList] = (),
    revocation_checker: RevocationChecker | None = None,
    now: datetime | None = None,
) -> PolicyErrors:
    """
    Compute the policy errors for a received chain.

    Args:
        chain: Server certificate first, then any intermediates it sent.
        server_name: Name the leaf must declare.
        trust_store: Anchors to build to. Defaults to the system store.
        check_revocation: Include revocation results at all.
        crls: Revocation lists already available locally.
        revocation_checker: Consulted instead of ``crls`` when given.
        now: Validation time, defaults to the current UTC time.

    Returns:
        The combined errors, ``PolicyErrors.NONE`` for a clean chain.
    """
    if not chain:
        return PolicyErrors.NOT_AVAILABLE

    now = now or datetime.now(timezone.utc)
    store = trust_store if trust_store is not None else TrustStore.system()
    leaf = chain[0]
    errors = PolicyErrors.NONE

    if not matches_name(leaf, server_name):
        errors |= PolicyErrors.NAME_MISMATCH

    if not _chain_verifies(leaf, list(chain[1:]), store, now):
        errors |= PolicyErrors.CHAIN_ERRORS

    if check_revocation:
        errors |= _revocation_errors(chain, store, crls, revocation_checker, now)

    return errors


def _chain_subject(leaf: x509.Certificate) -> x509.DNSName | x509.IPAddress | None:
    # Verify against a name the leaf itself declares so that only chain
    # problems are reported here; name matching is judged separately.
    try:
        san = leaf.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return None
    names = san.get_values_for_type(x509.DNSName)
    if names:
        name = sorted(names, key=lambda n: n.startswith("*"))[0]
        return x509.DNSName(name.replace("*", "wildcard", 1))
    ips = san.get_values_for_type(x509.IPAddress)
    if ips:
        return x509.IPAddress(ips[0])
    return None


def _chain_verifies(
    leaf: x509.Certificate,
    intermediates: list[x509.Certificate],
    store: TrustStore,
    now: datetime,
) -> bool:
    if not store.anchors:
        return False
    subject = _chain_subject(leaf)
    if subject is None:
        return _walk_to_anchor(leaf, intermediates, store, now)
    try:
        verifier = PolicyBuilder().store(Store(list(store.anchors))).time(now).build_server_verifier(subject)
        verifier.verify(leaf, intermediates)
    except (VerificationError, ValueError) as e:
        logger.debug("Chain verification failed: %s", e)
        return False
    return True


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        return cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        return False


def _walk_to_anchor(
    leaf: x509.Certificate,
    intermediates: list[x509.Certificate],
    store: TrustStore,
    now: datetime,
) -> bool:
    # Leaves without subjectAltName cannot go through the server verifier,
    # so check signatures and validity up to an anchor directly.
    cert = leaf
    for _ in range(MAX_CHAIN_DEPTH):
        if not _valid_at(cert, now):
            logger.debug("Certificate %s outside its validity period", cert.subject.rfc4514_string())
            return False
        anchor = store.find_issuer(cert)
        if anchor is not None:
            return _valid_at(anchor, now) and _signed_by(cert, anchor)
        issuer = next(
            (c for c in intermediates if c.subject == cert.issuer and c is not cert and _is_ca(c)),
            None,
        )
        if issuer is None or not _signed_by(cert, issuer):
            logger.debug("No trusted issuer for %s", cert.subject.rfc4514_string())
            return False
        cert = issuer
    return False


def _valid_at(cert: x509.Certificate, now: datetime) -> bool:
    return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc


def _signed_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
    except (InvalidSignature, ValueError, TypeError) as e:
        logger.debug("Signature check failed for %s: %s", cert.subject.rfc4514_string(), e)
        return False
    return True


def _issuer_of(
    cert: x509.Certificate,
    chain: Sequence[x509.Certificate],
    store: TrustStore,
) -> x509.Certificate | None:
    for candidate in chain:
        if candidate.subject == cert.issuer and candidate is not cert:
            return candidate
    return store.find_issuer(cert)


def _crl_status(
    cert: x509.Certificate,
    issuer: x509.Certificate | None,
    crls: Sequence[x509.CertificateRevocationList],
    now: datetime,
) -> RevocationStatus:
    for crl in crls:
        if crl.issuer != cert.issuer:
            continue
        if issuer is None or not crl.is_signature_valid(issuer.public_key()):
            continue
        if crl.next_update_utc is not None and crl.next_update_utc < now:
            continue
        if crl.get_revoked_certificate_by_serial_number(cert.serial_number) is not None:
            return RevocationStatus.REVOKED
        return RevocationStatus.GOOD
    return RevocationStatus.UNKNOWN


def _revocation_errors(
    chain: Sequence[x509.Certificate],
    store: TrustStore,
    crls: Sequence[x509.CertificateRevocationList],
    checker: RevocationChecker | None,
    now: datetime,
) -> PolicyErrors:
    errors = PolicyErrors.NONE
    for cert in chain:
        if cert.subject == cert.issuer:
            continue
        issuer = _issuer_of(cert, chain, store)
        if checker is not None:
            status = checker(cert, issuer)
        else:
            status = _crl_status(cert, issuer, crls, now)

        if status is RevocationStatus.REVOKED:
            errors |= PolicyErrors.REVOKED
        elif status is RevocationStatus.UNKNOWN:
            errors |= PolicyErrors.REVOCATION_UNKNOWN
    return errors
