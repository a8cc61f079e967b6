"""
Configuration dataclass for login.

This module provides the LoginConfig dataclass that centralizes all
options of the login flow: where the credential store lives, how the
result is persisted, and how workload cluster client certificates are
requested and awaited.
"""

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path

from .exceptions import ConfigurationError

# Providers whose signer writes the issued secret into the namespace of the
# request map to None; the others name the namespace holding the secret.
DEFAULT_CREDENTIAL_NAMESPACES: dict[str, str | None] = {
    "aws": None,
    "azure": "default",
}


@dataclass
class LoginConfig:
    """Configuration for logging in to installations and workload clusters.

    Args:
        kubeconfig_path: Path to the shared kubeconfig (overrides KUBECONFIG env var)
        certs_dir: Directory for installation CA certificate files
            (default: ~/.kube/certs)
        context_override: Context to use instead of the current context
        token_override: Bearer token to log in with instead of OIDC
        self_contained: Write credentials to this new file instead of the
            shared kubeconfig
        keep_context: Do not change the current context of the shared kubeconfig
        internal_api: Use the internal API URL of the installation
        wc_name: Workload cluster to create a client certificate for
        wc_organization: Organization owning the workload cluster
        wc_insecure_namespace: Also look for the workload cluster in the
            "default" namespace
        wc_cert_ttl: Lifetime of the requested client certificate
        wc_cert_groups: RBAC groups to put into the client certificate
        provider: Infrastructure provider, overrides the installation's one
        credential_poll_interval: Seconds between credential fetch attempts
        credential_poll_timeout: Maximum seconds to wait for the credential
        credential_namespaces: Provider to secret namespace mapping; None
            means "same namespace as the signing request"
        verify_ssl: Verify SSL certificates (WARNING: only disable for development)

    Example:
        >>> # Log in to an installation and keep the current context
        >>> config = LoginConfig(keep_context=True)
        >>>
        >>> # Create a client certificate for a workload cluster
        >>> config = LoginConfig(
        ...     wc_name="w1cluster",
        ...     wc_organization="acme",
        ...     wc_cert_ttl="8h",
        ... )
    """

    kubeconfig_path: str | None = None
    certs_dir: str | None = None
    context_override: str | None = None
    token_override: str | None = None
    self_contained: str | None = None
    keep_context: bool = False
    internal_api: bool = False
    wc_name: str | None = None
    wc_organization: str | None = None
    wc_insecure_namespace: bool = False
    wc_cert_ttl: str = "1h"
    wc_cert_groups: list[str] = field(default_factory=list)
    provider: str | None = None
    credential_poll_interval: float = 1.0
    credential_poll_timeout: float = 300.0
    credential_namespaces: dict[str, str | None] = field(
        default_factory=lambda: dict(DEFAULT_CREDENTIAL_NAMESPACES)
    )
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        Raises:
            ConfigurationError: If configuration is invalid or incomplete
        """
        self._load_from_environment()

        if self.wc_name:
            self.wc_name = self.wc_name.lower()
        if self.wc_organization:
            self.wc_organization = self.wc_organization.lower()
        if self.provider:
            self.provider = self.provider.lower()

        if self.credential_poll_interval <= 0:
            raise ConfigurationError(
                f"Invalid credential poll interval: {self.credential_poll_interval}",
                "The interval must be a positive number of seconds"
            )

        if self.credential_poll_timeout <= 0:
            raise ConfigurationError(
                f"Invalid credential poll timeout: {self.credential_poll_timeout}",
                "The timeout must be a positive number of seconds"
            )

        if self.credential_poll_interval > self.credential_poll_timeout:
            raise ConfigurationError(
                "Credential poll interval exceeds the poll timeout",
                f"interval={self.credential_poll_interval}, timeout={self.credential_poll_timeout}"
            )

        if self.wc_organization and not self.wc_name:
            raise ConfigurationError(
                "An organization can only be selected together with a workload cluster",
                "Provide wc_name as well, or drop wc_organization"
            )

        if not self.wc_cert_ttl:
            raise ConfigurationError(
                "The client certificate TTL must not be empty",
                "Use a duration such as '1h' or '8h'"
            )

        if self.self_contained and self.kubeconfig_path and \
                os.path.abspath(self.self_contained) == os.path.abspath(self.kubeconfig_path):
            raise ConfigurationError(
                "The self-contained destination must differ from the shared kubeconfig",
                f"Both point to {self.self_contained}"
            )

        # Security warning for disabled SSL verification
        if not self.verify_ssl:
            warnings.warn(
                "TLS/SSL verification is disabled (verify_ssl=False). "
                "This is insecure and should only be used in development environments. "
                "Your credentials and data may be exposed to man-in-the-middle attacks.",
                SecurityWarning,
                stacklevel=2
            )

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables.

        Environment Variables:
            KUBECONFIG: Path to kubeconfig file (first entry only)
            KUBE_LOGIN_CONTEXT: Context override
            KUBE_LOGIN_TOKEN: Token override
        """
        if not self.kubeconfig_path:
            kubeconfig_env = os.getenv("KUBECONFIG")
            if kubeconfig_env:
                # KUBECONFIG can contain multiple paths separated by ':'
                # Take the first one
                self.kubeconfig_path = kubeconfig_env.split(os.pathsep)[0] or None

        if not self.context_override:
            self.context_override = os.getenv("KUBE_LOGIN_CONTEXT")

        if not self.token_override:
            self.token_override = os.getenv("KUBE_LOGIN_TOKEN")

    def get_kubeconfig_path(self) -> str:
        """Determine the shared kubeconfig file path.

        Checks in order:
        1. LoginConfig.kubeconfig_path (explicit configuration or KUBECONFIG)
        2. Default ~/.kube/config

        The file does not need to exist yet; it is created on first write.

        Returns:
            Path to the kubeconfig file
        """
        if self.kubeconfig_path:
            return self.kubeconfig_path

        return str(Path.home() / ".kube" / "config")

    def get_certs_dir(self) -> str:
        """Directory where installation CA certificates are stored."""
        if self.certs_dir:
            return self.certs_dir

        return str(Path.home() / ".kube" / "certs")

    def __repr__(self) -> str:
        """Return string representation with sensitive fields redacted.

        Returns:
            String representation with secrets redacted
        """
        config_dict = {
            "kubeconfig_path": self.kubeconfig_path,
            "certs_dir": self.certs_dir,
            "context_override": self.context_override,
            "token_override": "***REDACTED***" if self.token_override else None,
            "self_contained": self.self_contained,
            "keep_context": self.keep_context,
            "internal_api": self.internal_api,
            "wc_name": self.wc_name,
            "wc_organization": self.wc_organization,
            "wc_insecure_namespace": self.wc_insecure_namespace,
            "wc_cert_ttl": self.wc_cert_ttl,
            "wc_cert_groups": self.wc_cert_groups,
            "provider": self.provider,
            "credential_poll_interval": self.credential_poll_interval,
            "credential_poll_timeout": self.credential_poll_timeout,
            "verify_ssl": self.verify_ssl,
        }

        params = ", ".join(f"{k}={v!r}" for k, v in config_dict.items() if v is not None)
        return f"LoginConfig({params})"

    @classmethod
    def from_dict(cls, config_dict: dict) -> "LoginConfig":
        """Create LoginConfig from dictionary.

        This is useful for loading configuration from JSON or YAML files.

        Args:
            config_dict: Dictionary containing configuration parameters

        Returns:
            LoginConfig instance

        Example:
            >>> config = LoginConfig.from_dict({"wc_name": "w1cluster", "keep_context": True})
        """
        # Filter out unknown keys to avoid TypeError
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered_dict = {k: v for k, v in config_dict.items() if k in valid_fields}
        return cls(**filtered_dict)


class SecurityWarning(UserWarning):
    """Warning category for security-related issues.

    This custom warning category allows users to filter security warnings
    separately from other warnings if desired.
    """
    pass
