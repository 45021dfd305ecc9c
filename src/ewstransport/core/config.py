"""
ewstransport Configuration

One configuration structure per transport variant, with named optional
fields in place of positional constructor overloads.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

import attrs

from ewstransport.core.types import Credentials


_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUTHY


# =============================================================================
# NTLM CONFIGURATION
# =============================================================================


@attrs.define(frozen=True)
class NtlmConfig:
    """
    NTLM transport configuration.

    Attributes:
        username: Login, optionally in DOMAIN\\user form
        password: Password
        allow_untrusted_certificate: Skip TLS certificate validation
        workstation: Default workstation name for the negotiate token
    """

    username: str = ""
    password: str = attrs.field(default="", repr=False)
    allow_untrusted_certificate: bool = False
    workstation: str = ""

    @property
    def credentials(self) -> Credentials:
        """Parsed credentials (domain split off the username)."""
        return Credentials.parse(self.username, self.password)

    @classmethod
    def from_env(
        cls,
        prefix: str = "EWS_NTLM_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "NtlmConfig":
        """
        Read configuration from environment variables.

        Reads <prefix>USERNAME, <prefix>PASSWORD, <prefix>WORKSTATION and
        <prefix>ALLOW_UNTRUSTED_CERTIFICATE.
        """
        env = os.environ if environ is None else environ
        return cls(
            username=env.get(f"{prefix}USERNAME", ""),
            password=env.get(f"{prefix}PASSWORD", ""),
            allow_untrusted_certificate=_env_flag(env.get(f"{prefix}ALLOW_UNTRUSTED_CERTIFICATE")),
            workstation=env.get(f"{prefix}WORKSTATION", ""),
        )


# =============================================================================
# PROXY CONFIGURATION
# =============================================================================


@attrs.define(frozen=True)
class ProxyConfig:
    """
    Proxy transport configuration.

    Attributes:
        proxy_url: Forward proxy base URL (None for a direct connection)
        user: Proxy user
        password: Proxy password
        allow_untrusted_certificate: Skip TLS certificate validation
    """

    proxy_url: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = attrs.field(default=None, repr=False)
    allow_untrusted_certificate: bool = False

    @property
    def has_credentials(self) -> bool:
        """Credentials are embedded only when both parts are set."""
        return bool(self.user) and bool(self.password)

    @classmethod
    def from_env(
        cls,
        prefix: str = "EWS_PROXY_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ProxyConfig":
        """
        Read configuration from environment variables.

        Reads <prefix>URL, <prefix>USER, <prefix>PASSWORD and
        <prefix>ALLOW_UNTRUSTED_CERTIFICATE. Empty values count as unset.
        """
        env = os.environ if environ is None else environ
        return cls(
            proxy_url=env.get(f"{prefix}URL") or None,
            user=env.get(f"{prefix}USER") or None,
            password=env.get(f"{prefix}PASSWORD") or None,
            allow_untrusted_certificate=_env_flag(env.get(f"{prefix}ALLOW_UNTRUSTED_CERTIFICATE")),
        )
