"""
Custom exceptions for the kube-login library.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from LoginError, making it easy to catch any
login-related error in a single place.
"""


class LoginError(Exception):
    """Base exception for all login-related errors.

    This is the base class for all exceptions raised by this library.
    Catching this exception will catch all login errors.

    Args:
        message: Human-readable error message
        details: Optional additional details about the error
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\nDetails: {self.details}"
        return self.message


class ConfigurationError(LoginError):
    """Configuration is invalid or incomplete.

    Raised when the provided LoginConfig contains invalid or missing
    parameters, or when a required mapping (such as the credential
    namespace for a provider) has no entry.

    Example:
        >>> config = LoginConfig(credential_poll_timeout=0)
        >>> # Raises: ConfigurationError("Invalid credential poll timeout: 0")
    """
    pass


class APIError(LoginError):
    """The management cluster API returned an unexpected error.

    Args:
        message: Human-readable error message
        details: Optional additional details about the error
        status: HTTP status code reported by the API server, if any
    """

    def __init__(self, message: str, details: str | None = None, status: int | None = None) -> None:
        super().__init__(message, details)
        self.status = status


class ResourceNotFoundError(APIError):
    """The requested API object does not exist (HTTP 404)."""
    pass


class ForbiddenError(APIError):
    """The caller may not read or write the requested API object (HTTP 403)."""
    pass


class NotFoundError(LoginError):
    """Something the login flow looked for does not exist."""
    pass


class ClusterNotFoundError(NotFoundError):
    """No workload cluster with the requested name could be found.

    This is also raised when every searched namespace was either empty or
    not readable, so the message hints at namespace permissions.
    """
    pass


class ContextDoesNotExistError(NotFoundError):
    """The requested kubeconfig context does not exist."""
    pass


class OrganizationNotFoundError(NotFoundError):
    """The requested organization, or any organization at all, could not be found."""
    pass


class ReleaseNotFoundError(NotFoundError):
    """The release used by a workload cluster could not be found."""
    pass


class CredentialNotFoundError(NotFoundError):
    """The issued credential is missing or incomplete."""
    pass


class AmbiguousClusterError(LoginError):
    """More than one organization holds a workload cluster with the same name.

    Example:
        >>> # Raises: AmbiguousClusterError("There are multiple workload clusters ...")
    """
    pass


class InsufficientPermissionsError(LoginError):
    """The caller is not allowed to read clusters in a namespace."""
    pass


class CredentialTimeoutError(LoginError):
    """The issued credential did not show up before the polling deadline.

    This is deliberately distinct from CredentialNotFoundError: the signing
    request exists, but the signer did not materialize the credential in time.
    """
    pass


class DestinationExistsError(LoginError):
    """The destination file of a self-contained export already exists."""
    pass


class CorruptedAuthConfigError(LoginError):
    """A context exists but its authentication configuration is unusable.

    The operator has to log in again using the installation URL; retrying
    locally will not help.
    """
    pass


class NewLoginRequiredError(LoginError):
    """The stored session cannot be renewed and a fresh network login is needed."""
    pass


class TokenRefreshError(LoginError):
    """Failed to refresh authentication token.

    Raised when the identity provider rejects a refresh token. Refresh
    tokens are usually single use, so the refresh is never retried and
    the user needs to re-authenticate.

    Example:
        >>> # Token refresh fails after refresh_token expires
        >>> # Raises: TokenRefreshError("Failed to renew the authentication token")
    """
    pass


class OIDCError(LoginError):
    """OIDC-specific error.

    Raised when the identity provider cannot be used for reasons specific
    to the OIDC protocol (discovery failures, missing endpoints, etc.).
    """
    pass


class UnsupportedProviderError(LoginError):
    """Client certificates cannot be issued on this infrastructure provider."""
    pass


class UnsupportedReleaseVersionError(LoginError):
    """The workload cluster release is too old or has no valid version label."""
    pass


class MissingComponentError(LoginError):
    """The release does not contain the component that signs client certificates."""
    pass


class CredentialStoreError(LoginError):
    """The local credential store could not be read, encoded or written,
    or its contexts reference clusters or users that do not exist."""
    pass
