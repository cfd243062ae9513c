# Copyright (c) 2026 Firefly Software Solutions Inc.
# Licensed under the Apache License, Version 2.0

"""
Certificate loading and inspection.

Thin adapter over ``cryptography`` used by the policy to read client
identities from disk and to read the names a certificate declares.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.serialization import load_pem_private_key, pkcs12
from cryptography.x509.oid import NameOID

from .exceptions import CertificateLoadError
from .models import ClientCertificate

logger = logging.getLogger(__name__)

PKCS12_SUFFIXES = (".p12", ".pfx")
PEM_MARKER = b"-----BEGIN"
PRIVATE_KEY_PEM = re.compile(rb"-----BEGIN ([A-Z ]*PRIVATE KEY)-----.*?-----END \1-----", re.S)


def _password(passphrase: str | None) -> bytes | None:
    return passphrase.encode("utf-8") if passphrase else None


def _read(path: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise CertificateLoadError(path, e.strerror or str(e)) from e


def load_client_certificate(path: str, passphrase: str | None = None) -> ClientCertificate:
    """
    Load exactly one client identity from a file.

    Supported formats:
    - PKCS#12 (``.p12``/``.pfx``), optionally protected by ``passphrase``
    - PEM with the certificate first, followed by optional intermediates
      and an optional (possibly encrypted) private key
    - DER-encoded certificate, or a PKCS#12 bundle without its usual suffix

    Args:
        path: File to read.
        passphrase: Passphrase for the PKCS#12 bundle or PEM private key.

    Returns:
        The loaded identity.

    Raises:
        CertificateLoadError: If the file is missing or unreadable, the
            passphrase is wrong, or the content is not a certificate.
    """
    data = _read(path)

    try:
        if path.lower().endswith(PKCS12_SUFFIXES):
            identity = _load_pkcs12(data, passphrase)
        elif data.lstrip().startswith(PEM_MARKER):
            identity = _load_pem(data, passphrase)
        else:
            identity = _load_der(data, passphrase)
    except (ValueError, TypeError) as e:
        raise CertificateLoadError(path, str(e) or type(e).__name__) from e

    logger.debug("Loaded client certificate %s from %s", identity.subject.rfc4514_string(), path)
    return ClientCertificate(
        certificate=identity.certificate,
        private_key=identity.private_key,
        chain=identity.chain,
        source=path,
    )


def _load_pkcs12(data: bytes, passphrase: str | None) -> ClientCertificate:
    key, cert, extra = pkcs12.load_key_and_certificates(data, _password(passphrase))
    if cert is None:
        raise ValueError("PKCS#12 bundle contains no certificate")
    return ClientCertificate(certificate=cert, private_key=key, chain=tuple(extra or ()))


def _load_pem(data: bytes, passphrase: str | None) -> ClientCertificate:
    certs = x509.load_pem_x509_certificates(data)
    if not certs:
        raise ValueError("PEM file contains no certificate")
    key = None
    match = PRIVATE_KEY_PEM.search(data)
    if match:
        key = load_pem_private_key(match.group(0), _password(passphrase))
    return ClientCertificate(certificate=certs[0], private_key=key, chain=tuple(certs[1:]))


def _load_der(data: bytes, passphrase: str | None) -> ClientCertificate:
    try:
        cert = x509.load_der_x509_certificate(data)
    except ValueError:
        return _load_pkcs12(data, passphrase)
    return ClientCertificate(certificate=cert)


def load_ca_certificates(path: str) -> list[x509.Certificate]:
    """
    Load trust anchors from a PEM bundle or a single DER certificate.

    Raises:
        CertificateLoadError: If the file cannot be read or parsed.
    """
    data = _read(path)
    try:
        if data.lstrip().startswith(PEM_MARKER):
            return x509.load_pem_x509_certificates(data)
        return [x509.load_der_x509_certificate(data)]
    except ValueError as e:
        raise CertificateLoadError(path, str(e)) from e


def dns_names(cert: x509.Certificate) -> list[str]:
    """
    Names a certificate declares for itself.

    Returns the DNS entries of the subjectAltName extension. Certificates
    without that extension fall back to their subject common names.
    """
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return [str(a.value) for a in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
    return san.value.get_values_for_type(x509.DNSName)


def ip_addresses(cert: x509.Certificate) -> list[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    """IP address entries of the subjectAltName extension, if any."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    values = san.value.get_values_for_type(x509.IPAddress)
    return [ip for ip in values if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address))]


def matches_name(cert: x509.Certificate, server_name: str) -> bool:
    """
    Check that a certificate was issued for ``server_name``.

    Host names are compared case-insensitively and exactly against
    ``dns_names``. IP literals are compared against the IP address
    entries of the subjectAltName.
    """
    if not server_name:
        return False
    try:
        address = ipaddress.ip_address(server_name.strip("[]"))
    except ValueError:
        wanted = server_name.rstrip(".").lower()
        return any(name.rstrip(".").lower() == wanted for name in dns_names(cert))
    return address in ip_addresses(cert)
