"""
Kubernetes installation login library.

Logs an operator in to a fleet of Kubernetes installations and provisions
short-lived client certificates for their workload clusters, keeping the
local kubeconfig consistent across installations.

Quick Start:
    >>> from kube_login import LoginConfig, LoginOrchestrator
    >>>
    >>> # Switch to an installation you logged in to before
    >>> LoginOrchestrator(LoginConfig()).run(["demo"])

Workload cluster client certificate:
    >>> config = LoginConfig(
    ...     wc_name="w1cluster",
    ...     wc_organization="acme",
    ...     wc_cert_ttl="8h",
    ... )
    >>> result = LoginOrchestrator(config).run(["demo"])
    >>> result.context_name
    'gs-demo-w1cluster'
"""

import logging

# Public API
from .config import LoginConfig, SecurityWarning
from .exceptions import (
    AmbiguousClusterError,
    APIError,
    ClusterNotFoundError,
    ConfigurationError,
    ContextDoesNotExistError,
    CorruptedAuthConfigError,
    CredentialNotFoundError,
    CredentialStoreError,
    CredentialTimeoutError,
    DestinationExistsError,
    ForbiddenError,
    InsufficientPermissionsError,
    LoginError,
    MissingComponentError,
    NewLoginRequiredError,
    NotFoundError,
    OIDCError,
    OrganizationNotFoundError,
    ReleaseNotFoundError,
    ResourceNotFoundError,
    TokenRefreshError,
    UnsupportedProviderError,
    UnsupportedReleaseVersionError,
)
from .factory import persist_credential, persist_session
from .installation import Installation, fetch_installation
from .issuer import CertificateRequest, CredentialIssuer, IssuedCredential, issue_credential
from .kubeconfig import CredentialStore, load_store, save_store
from .login import LoginOptions, LoginOrchestrator, LoginResult, derive_login_options
from .oidc import AuthSession, OIDCSessionRefresher, refresh_session, renew_current_context
from .resolver import ClusterRef, resolve_cluster

# Version
__version__ = "0.1.0"

# Public exports
__all__ = [
    # Orchestration
    "LoginOrchestrator",
    "LoginOptions",
    "LoginResult",
    "derive_login_options",
    # Operations
    "resolve_cluster",
    "issue_credential",
    "persist_credential",
    "persist_session",
    "refresh_session",
    "renew_current_context",
    "fetch_installation",
    "load_store",
    "save_store",
    # Data types
    "AuthSession",
    "CertificateRequest",
    "ClusterRef",
    "CredentialIssuer",
    "CredentialStore",
    "Installation",
    "IssuedCredential",
    "OIDCSessionRefresher",
    # Configuration
    "LoginConfig",
    "SecurityWarning",
    # Exceptions
    "LoginError",
    "ConfigurationError",
    "APIError",
    "ResourceNotFoundError",
    "ForbiddenError",
    "NotFoundError",
    "ClusterNotFoundError",
    "ContextDoesNotExistError",
    "OrganizationNotFoundError",
    "ReleaseNotFoundError",
    "CredentialNotFoundError",
    "AmbiguousClusterError",
    "InsufficientPermissionsError",
    "CredentialTimeoutError",
    "DestinationExistsError",
    "CorruptedAuthConfigError",
    "NewLoginRequiredError",
    "TokenRefreshError",
    "OIDCError",
    "UnsupportedProviderError",
    "UnsupportedReleaseVersionError",
    "MissingComponentError",
    "CredentialStoreError",
    # Version
    "__version__",
]

# Configure logging
# Users can configure the logger in their own code:
#   import logging
#   logging.getLogger("kube_login").setLevel(logging.DEBUG)
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())  # Avoid "No handler" warnings
