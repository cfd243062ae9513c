# Copyright (c) 2026 Firefly Software Solutions Inc.
# Licensed under the Apache License, Version 2.0

"""
Pydantic settings model for TLS policies.

Validates plain option values (as read from a CLI, environment or config
file by the application) and turns them into a TLSPolicy.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import PolicyErrors, TLSProtocol
from .policy import TLSPolicy


class TLSPolicyConfig(BaseModel):
    """
    Configuration for a TLS connection policy.

    Example:
        >>> config = TLSPolicyConfig(
        ...     enabled=True,
        ...     server_name="broker.example.com",
        ...     protocol="TLSv1_2",
        ...     acceptable_policy_errors=["name_mismatch"],
        ... )
        >>> policy = config.to_policy()
    """

    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = False
    server_name: str = Field(default="", description="Name the server certificate must declare")
    protocol: list[str] = Field(
        default_factory=list,
        description="Pinned TLS versions, e.g. ['TLSv1_2']. Empty lets the platform choose",
    )
    acceptable_policy_errors: list[str] = Field(
        default_factory=list,
        description="Policy error names tolerated by the default validator",
    )

    # Client identity
    cert_path: str = ""
    cert_passphrase: str = ""

    # Server validation
    ca_file: str | None = None
    check_revocation: bool = False
    tolerate_missing_certificate: bool = False

    @field_validator("protocol", mode="before")
    @classmethod
    def validate_protocol(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, TLSProtocol):
            return [m.name for m in TLSProtocol if m in v and m is not TLSProtocol.NONE]
        if isinstance(v, str):
            v = [s for s in v.replace(",", " ").split() if s]
        names = []
        for item in v:
            name = item.strip().replace(".", "_")
            if name.upper() == "NONE":
                continue
            match = next((m.name for m in TLSProtocol if m.name.lower() == name.lower()), None)
            if match is None:
                raise ValueError(f"Unknown TLS protocol version: {item!r}")
            names.append(match)
        return names

    @field_validator("acceptable_policy_errors", mode="before")
    @classmethod
    def validate_policy_errors(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, PolicyErrors):
            return v.names()
        if isinstance(v, str):
            v = [s for s in v.replace(",", " ").split() if s]
        return PolicyErrors.from_names(v).names()

    def get_protocol(self) -> TLSProtocol:
        """Combined TLSProtocol for the configured version names."""
        result = TLSProtocol.NONE
        for name in self.protocol:
            result |= TLSProtocol[name]
        return result

    def get_acceptable_policy_errors(self) -> PolicyErrors:
        return PolicyErrors.from_names(self.acceptable_policy_errors)

    def to_policy(self, **overrides: Any) -> TLSPolicy:
        """
        Build a TLSPolicy from this configuration.

        Args:
            **overrides: TLSPolicy fields that cannot be expressed as plain
                values, such as ``certs`` or ``validation_callback``.
        """
        return TLSPolicy(
            server_name=self.server_name,
            cert_path=self.cert_path,
            enabled=self.enabled,
            protocol=self.get_protocol(),
            acceptable_policy_errors=self.get_acceptable_policy_errors(),
            cert_passphrase=self.cert_passphrase,
            check_revocation=self.check_revocation,
            tolerate_missing_certificate=self.tolerate_missing_certificate,
            ca_file=self.ca_file,
            **overrides,
        )
