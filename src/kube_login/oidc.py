"""
OIDC (OpenID Connect) session handling.

This module renews ID tokens with a stored refresh token against the
installation's identity provider:
- OIDC discovery (.well-known/openid-configuration)
- Refresh token grant, single attempt
- Best-effort renewal of the current kubeconfig context

The interactive login that produces the first refresh token is not part of
this module; see LoginOrchestrator's authenticator argument.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any

import jwt
import requests

from .config import LoginConfig
from .exceptions import LoginError, OIDCError, TokenRefreshError
from .kubeconfig import (
    OIDC_CLIENT_ID,
    OIDC_CLIENT_SECRET,
    OIDC_ISSUER,
    OIDC_REFRESH_TOKEN,
    OIDC_ID_TOKEN,
    AuthType,
    load_store,
    save_store,
)

logger = logging.getLogger(__name__)


@dataclass
class AuthSession:
    """The active identity for an installation.

    A session either carries a plain bearer token, or an OIDC ID token
    together with the client ID and refresh token needed to renew it.
    """

    username: str
    token: str
    client_id: str | None = None
    refresh_token: str | None = None

    @property
    def is_oidc(self) -> bool:
        return bool(self.client_id)

    def __repr__(self) -> str:
        return (
            f"AuthSession(username={self.username!r}, client_id={self.client_id!r}, "
            f"token='***REDACTED***')"
        )


class OIDCSessionRefresher:
    """Renew OIDC tokens using a refresh token.

    Refresh tokens are typically single use, so a failed renewal is never
    retried: the caller gets a TokenRefreshError and the operator has to
    log in again.

    Args:
        issuer: OIDC issuer URL
        client_id: OIDC client ID
        client_secret: OIDC client secret (for confidential clients)
        verify_ssl: Verify SSL certificates

    Example:
        >>> refresher = OIDCSessionRefresher(
        ...     issuer="https://dex.demo.example.io",
        ...     client_id="kube-login",
        ... )
        >>> id_token, refresh_token = refresher.refresh(stored_refresh_token)
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        client_secret: str | None = None,
        verify_ssl: bool = True,
    ) -> None:
        self.issuer = issuer
        self.client_id = client_id
        self.client_secret = client_secret
        self.verify_ssl = verify_ssl
        self._oidc_config: dict[str, Any] | None = None

    def _discover_oidc_config(self) -> dict[str, Any]:
        """Discover OIDC configuration from issuer.

        Fetches the .well-known/openid-configuration document.

        Returns:
            Dictionary containing OIDC configuration

        Raises:
            OIDCError: If discovery fails
        """
        if self._oidc_config:
            return self._oidc_config

        discovery_url = f"{self.issuer.rstrip('/')}/.well-known/openid-configuration"
        logger.debug(f"Fetching OIDC discovery document from {discovery_url}")

        try:
            response = requests.get(
                discovery_url,
                verify=self.verify_ssl,
                timeout=10
            )
            response.raise_for_status()
            self._oidc_config = response.json()

            logger.debug(f"OIDC discovery successful. Endpoints: "
                         f"token={self._oidc_config.get('token_endpoint')}")

            return self._oidc_config

        except requests.RequestException as e:
            raise OIDCError(
                f"Failed to discover OIDC configuration from {self.issuer}",
                f"Error fetching {discovery_url}: {str(e)}"
            ) from e
        except ValueError as e:
            raise OIDCError(
                f"Failed to discover OIDC configuration from {self.issuer}",
                f"Invalid JSON in {discovery_url}"
            ) from e

    def refresh(self, refresh_token: str) -> tuple[str, str]:
        """Exchange a refresh token for a new ID token.

        Args:
            refresh_token: The refresh token to use

        Returns:
            Tuple of (id_token, refresh_token). The refresh token is the
            rotated one when the provider issued a new one.

        Raises:
            OIDCError: If the identity provider cannot be discovered
            TokenRefreshError: If the renewal fails
        """
        if not refresh_token:
            raise TokenRefreshError(
                "Failed to renew the authentication token",
                "No refresh token is stored, please log in again"
            )

        logger.debug("Refreshing ID token")

        oidc_config = self._discover_oidc_config()
        token_endpoint = oidc_config.get("token_endpoint")

        if not token_endpoint:
            raise OIDCError(
                "Token refresh not supported",
                "OIDC discovery document missing token_endpoint"
            )

        token_data = {
            "client_id": self.client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token
        }

        if self.client_secret:
            token_data["client_secret"] = self.client_secret

        try:
            response = requests.post(
                token_endpoint,
                data=token_data,
                verify=self.verify_ssl,
                timeout=10
            )
            response.raise_for_status()
            token_response = response.json()

        except requests.RequestException as e:
            # Try to extract OAuth error details from response
            error_detail = str(e)
            if getattr(e, 'response', None) is not None:
                try:
                    error_data = e.response.json()
                    error_type = error_data.get("error", "unknown_error")
                    error_desc = error_data.get("error_description", "")
                    error_detail = f"{error_type}: {error_desc}" if error_desc else error_type
                except ValueError:
                    # If we can't parse JSON, use the original error
                    pass

            raise TokenRefreshError(
                "Failed to renew the authentication token, please log in again",
                error_detail
            ) from e
        except ValueError as e:
            raise TokenRefreshError(
                "Failed to renew the authentication token, please log in again",
                "The token endpoint returned invalid JSON"
            ) from e

        id_token = token_response.get("id_token")
        if not id_token:
            raise TokenRefreshError(
                "Failed to renew the authentication token, please log in again",
                "The token response does not contain an id_token"
            )

        logger.debug("ID token refreshed successfully")
        return id_token, token_response.get("refresh_token") or refresh_token


def refresh_session(
    refresh_token: str,
    issuer: str,
    client_id: str,
    client_secret: str | None = None,
    verify_ssl: bool = True,
) -> tuple[str, str]:
    """Renew an ID token. See OIDCSessionRefresher.refresh()."""
    refresher = OIDCSessionRefresher(issuer, client_id, client_secret, verify_ssl)
    return refresher.refresh(refresh_token)


def get_token_claims(id_token: str) -> dict[str, Any]:
    """Read the claims of an ID token without verifying its signature.

    Returns an empty dict when the token is not a JWT.
    """
    try:
        return jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return {}


def is_token_expiring(id_token: str | None, leeway: float = 60.0) -> bool:
    """Check if an ID token expires within ``leeway`` seconds.

    Tokens without a readable ``exp`` claim count as expiring.
    """
    if not id_token:
        return True

    exp = get_token_claims(id_token).get("exp")
    if not isinstance(exp, (int, float)):
        return True

    return exp - leeway <= time.time()


def renew_current_context(config: LoginConfig) -> bool:
    """Renew the OIDC tokens of the current context, if it has any.

    This runs opportunistically before other commands: it never raises
    and leaves the kubeconfig untouched when renewal is not needed or
    fails.

    Returns:
        True if new tokens were stored
    """
    path = config.get_kubeconfig_path()

    try:
        store = load_store(path)
    except LoginError as e:
        logger.debug(f"Skipping token renewal, kubeconfig unreadable: {e}")
        return False

    context_name = config.context_override or store.current_context
    if not context_name or store.get_auth_type(context_name) != AuthType.AUTH_PROVIDER:
        return False

    provider = store.get_auth_provider(context_name)
    provider_config = provider.config
    if not is_token_expiring(provider_config.get(OIDC_ID_TOKEN)):
        logger.debug(f"Token of context {context_name} is still valid")
        return False

    refresher = OIDCSessionRefresher(
        issuer=provider_config.get(OIDC_ISSUER, ""),
        client_id=provider_config.get(OIDC_CLIENT_ID, ""),
        client_secret=provider_config.get(OIDC_CLIENT_SECRET),
        verify_ssl=config.verify_ssl,
    )

    try:
        id_token, refresh_token = refresher.refresh(provider_config.get(OIDC_REFRESH_TOKEN, ""))
        save_store(store.update_oidc_tokens(context_name, id_token, refresh_token), path)
    except LoginError as e:
        logger.warning(f"Failed to renew token of context {context_name}: {e}")
        return False

    logger.info(f"Renewed token of context {context_name}")
    return True
