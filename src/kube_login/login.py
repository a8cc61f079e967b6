"""
Login orchestration.

LoginOrchestrator sequences a login: reuse or switch to an existing
context, or log in to an installation by URL, and optionally create a
client certificate for a workload cluster on top of the installation
session. The switch / keep / self-contained policy is derived once from
the configuration (see derive_login_options) and threaded through every
step.

Example:
    >>> config = LoginConfig(wc_name="w1cluster", wc_organization="acme")
    >>> orchestrator = LoginOrchestrator(config)
    >>> result = orchestrator.run(["demo"])
    >>> result.context_name
    'gs-demo-w1cluster'
"""

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import TextIO

from .clients import ManagementClusterClient, get_management_client
from .config import LoginConfig
from .exceptions import (
    ConfigurationError,
    ContextDoesNotExistError,
    CorruptedAuthConfigError,
    NewLoginRequiredError,
    OIDCError,
    TokenRefreshError,
)
from .factory import persist_credential, persist_session
from .installation import Installation, cluster_base_path, fetch_installation
from .issuer import (
    CertificateRequest,
    CredentialIssuer,
    get_cert_operator_version,
    get_cluster_release_version,
    validate_provider,
)
from .keys import (
    CLIENT_CERT_SUFFIX,
    get_client_cert_context_name,
    generate_context_name,
    is_codename,
    is_kube_context,
)
from .kubeconfig import (
    OIDC_CLIENT_ID,
    OIDC_CLIENT_SECRET,
    OIDC_ID_TOKEN,
    OIDC_ISSUER,
    OIDC_PROVIDER_NAME,
    OIDC_REFRESH_TOKEN,
    AuthProvider,
    AuthType,
    CredentialStore,
    load_store,
    save_store,
)
from .oidc import AuthSession, OIDCSessionRefresher, is_token_expiring
from .resolver import get_candidate_namespaces, resolve_cluster

logger = logging.getLogger(__name__)

TOKEN_LOGIN_USERNAME = "automation"

Authenticator = Callable[[Installation], AuthSession]
InstallationFetcher = Callable[[str, bool], Installation]
ClientFactory = Callable[[LoginConfig, str], ManagementClusterClient]


@dataclass(frozen=True)
class ReuseSession:
    """An existing context was reused or switched to."""

    switch_context: bool


@dataclass(frozen=True)
class NetworkLogin:
    self_contained: bool
    switch_context: bool


@dataclass(frozen=True)
class ClientCertLogin:
    self_contained: bool
    switch_context: bool


LoginMode = ReuseSession | NetworkLogin | ClientCertLogin


@dataclass(frozen=True)
class LoginOptions:
    """Policy flags of one login invocation.

    Args:
        is_wc_client_cert: A workload cluster client certificate is requested
        self_contained: The installation session goes to a standalone file
        self_contained_client_cert: The client certificate goes to a
            standalone file
        switch_to_context: Select the installation context afterwards
        switch_to_client_cert_context: Select the client certificate
            context afterwards
        origin_context: Current context before the login
        context_override: Overriding context, empty unless it exists
    """

    is_wc_client_cert: bool
    self_contained: bool
    self_contained_client_cert: bool
    switch_to_context: bool
    switch_to_client_cert_context: bool
    origin_context: str = ""
    context_override: str = ""

    @property
    def mode(self) -> NetworkLogin | ClientCertLogin:
        if self.is_wc_client_cert:
            return ClientCertLogin(self.self_contained_client_cert, self.switch_to_client_cert_context)
        return NetworkLogin(self.self_contained, self.switch_to_context)


def derive_login_options(config: LoginConfig, origin_context: str, context_override: str) -> LoginOptions:
    """Compute the policy flags from the higher level configuration."""
    is_wc_client_cert = bool(config.wc_name)
    self_contained = bool(config.self_contained) and not is_wc_client_cert
    self_contained_client_cert = bool(config.self_contained) and is_wc_client_cert

    return LoginOptions(
        is_wc_client_cert=is_wc_client_cert,
        self_contained=self_contained,
        self_contained_client_cert=self_contained_client_cert,
        switch_to_context=context_override == "" and (
            is_wc_client_cert or not (self_contained or config.keep_context)
        ),
        switch_to_client_cert_context=is_wc_client_cert and not (
            self_contained_client_cert or config.keep_context
        ),
        origin_context=origin_context,
        context_override=context_override,
    )


def validate_oidc_provider(context_name: str, provider: AuthProvider | None) -> None:
    """Check that an auth-provider block can be used to renew tokens.

    Raises:
        CorruptedAuthConfigError: If the block is missing or incomplete
        NewLoginRequiredError: If there is no refresh token to renew with
    """
    if provider is None:
        raise CorruptedAuthConfigError(
            f"There is no authentication configuration for the '{context_name}' context"
        )

    if provider.name != OIDC_PROVIDER_NAME or not provider.config.get(OIDC_ISSUER) \
            or not provider.config.get(OIDC_CLIENT_ID):
        raise CorruptedAuthConfigError(
            "The authentication configuration is corrupted, please log in again using a URL.",
            f"Context: {context_name}"
        )

    if not provider.config.get(OIDC_REFRESH_TOKEN):
        raise NewLoginRequiredError(
            f"The session of context '{context_name}' cannot be renewed",
            "No refresh token is stored, a new login is required"
        )


@dataclass(frozen=True)
class LoginResult:
    context_name: str
    already_existed: bool
    path: str
    mode: LoginMode


class LoginOrchestrator:
    """Run a login for the given command line arguments.

    Args:
        config: Login configuration
        authenticator: Interactive login against an installation, returns
            the new session. Required for URL logins without a token
            override.
        installation_fetcher: Resolves an installation URL to its metadata
        client_factory: Builds a management cluster client for a context
        refresher_factory: Builds an OIDC refresher from (issuer, client_id,
            client_secret, verify_ssl)
        out: Stream for user-facing messages (default: stdout)
    """

    def __init__(
        self,
        config: LoginConfig,
        authenticator: Authenticator | None = None,
        installation_fetcher: InstallationFetcher = fetch_installation,
        client_factory: ClientFactory = get_management_client,
        refresher_factory: Callable[..., OIDCSessionRefresher] = OIDCSessionRefresher,
        out: TextIO | None = None,
    ) -> None:
        self.config = config
        self.authenticator = authenticator
        self.installation_fetcher = installation_fetcher
        self.client_factory = client_factory
        self.refresher_factory = refresher_factory
        self.out = out or sys.stdout

        self._store_path = config.get_kubeconfig_path()
        self._mc_context: str | None = None
        self._installation: Installation | None = None
        self._result: LoginResult | None = None
        # Set once the installation session was renewed or obtained in this run
        self._session_renewed = False

    def _print(self, message: str) -> None:
        print(message, file=self.out)

    def run(self, args: list[str]) -> LoginResult:
        """Log in.

        Args:
            args: Zero arguments reuse the current context; one is a
                context, codename or installation URL; two are an
                installation and a workload cluster context

        Returns:
            LoginResult of the last step

        Raises:
            LoginError: Any failure of the login flow
        """
        options = self._load_options()
        logger.debug(f"Login options: {options}")

        if len(args) == 0:
            self._reuse_existing_context(options)

        elif len(args) == 1:
            identifier = args[0].lower()
            if not self._find_context_with_fallback(identifier, options):
                self._login_with_url(identifier, options)

        elif len(args) == 2:
            identifier = "-".join(args).lower()
            if not self._find_context_with_fallback(identifier, options):
                raise ContextDoesNotExistError(f"Could not find context for identifier {identifier}")

        else:
            raise ConfigurationError("Invalid number of arguments.", f"Got {len(args)}, expected at most 2")

        if options.is_wc_client_cert:
            self._login_workload_cluster(options)

        return self._result

    def _load_options(self) -> LoginOptions:
        store = load_store(self._store_path)

        context_override = self.config.context_override or ""
        if context_override not in store.contexts:
            context_override = ""

        return derive_login_options(self.config, store.current_context, context_override)

    def _reuse_existing_context(self, options: LoginOptions) -> None:
        context_name = self.config.context_override or load_store(self._store_path).current_context
        if not context_name:
            raise ContextDoesNotExistError(
                "The current context does not seem to belong to a known installation.\n"
                "Pass a context name, an installation codename or an installation URL to log in."
            )

        self._login_with_context(context_name, options)

    def _find_context_with_fallback(self, identifier: str, options: LoginOptions) -> bool:
        try:
            return self._find_context(identifier, options)
        except ContextDoesNotExistError as e:
            if identifier.endswith(CLIENT_CERT_SUFFIX):
                raise
            client_cert_context = get_client_cert_context_name(identifier)
            self._print(
                f"No context named {identifier} was found: {e.message}\n"
                f"Looking for context {client_cert_context}."
            )
            return self._find_context(client_cert_context, options)

    def _find_context(self, identifier: str, options: LoginOptions) -> bool:
        """Log in with the context an identifier names, if it names one.

        Returns:
            False if the identifier is not a codename or context name

        Raises:
            ContextDoesNotExistError: If it names a context that does not exist
        """
        if is_kube_context(identifier):
            context_name = identifier
        elif is_codename(identifier):
            context_name = generate_context_name(identifier)
        else:
            return False

        self._login_with_context(context_name, options)
        return True

    def _login_with_context(self, context_name: str, options: LoginOptions) -> None:
        try:
            self.switch_context(context_name, options.switch_to_context)
        except (NewLoginRequiredError, TokenRefreshError) as e:
            if self.authenticator is None and not self.config.token_override:
                raise

            cluster = load_store(self._store_path).get_cluster(context_name)
            if cluster is None or not cluster.server:
                raise

            self._print(f"{e.message}\nLogging in again at {cluster.server}.")
            self._login_with_url(cluster.server, options)

    def switch_context(self, context_name: str, select: bool = True) -> None:
        """Renew the session of a context and optionally select it.

        Raises:
            ContextDoesNotExistError: If the context does not exist
            CorruptedAuthConfigError: If its authentication config is unusable
            NewLoginRequiredError: If its session cannot be renewed
            TokenRefreshError: If the identity provider rejects the renewal
        """
        store = load_store(self._store_path)

        if context_name not in store.contexts:
            raise ContextDoesNotExistError(
                f"There is no context named '{context_name}'. "
                "Please make sure you spelled the installation handle correctly.\n"
                "If not sure, pass the Management API URL or the web UI URL of the installation as an argument."
            )

        auth_type = store.get_auth_type(context_name)
        already_selected = context_name == store.current_context

        if auth_type == AuthType.AUTH_PROVIDER:
            provider = store.get_auth_provider(context_name)
            validate_oidc_provider(context_name, provider)

            if already_selected:
                self._print(f"Context '{context_name}' is already selected.")
                self._context_selected(context_name, True)
                return

            store = self._refresh_tokens(store, context_name, provider)

        elif auth_type == AuthType.UNKNOWN:
            raise CorruptedAuthConfigError(
                f"There is no authentication configuration for the '{context_name}' context"
            )

        if select:
            store = store.with_current_context(context_name)
        save_store(store, self._store_path)

        if select and not already_selected:
            self._print(f"Switched to context '{context_name}'.")
        self._context_selected(context_name, select or already_selected)

    def _refresh_tokens(self, store: CredentialStore, context_name: str, provider: AuthProvider) -> CredentialStore:
        refresher = self.refresher_factory(
            provider.config[OIDC_ISSUER],
            provider.config[OIDC_CLIENT_ID],
            provider.config.get(OIDC_CLIENT_SECRET),
            self.config.verify_ssl,
        )
        try:
            id_token, refresh_token = refresher.refresh(provider.config[OIDC_REFRESH_TOKEN])
        except OIDCError as e:
            raise CorruptedAuthConfigError(
                "The authentication configuration is corrupted, please log in again using a URL.",
                str(e)
            ) from e

        self._session_renewed = True
        return store.update_oidc_tokens(context_name, id_token, refresh_token)

    def _refresh_if_needed(self, context_name: str) -> None:
        """Renew an expiring OIDC session before talking to the installation.

        Raises:
            TokenRefreshError: If the identity provider rejects the renewal
        """
        if self._session_renewed:
            return

        store = load_store(self._store_path)
        if store.get_auth_type(context_name) != AuthType.AUTH_PROVIDER:
            return

        provider = store.get_auth_provider(context_name)
        if not is_token_expiring(provider.config.get(OIDC_ID_TOKEN)):
            return

        validate_oidc_provider(context_name, provider)
        logger.info(f"Renewing the expiring session of context {context_name}")
        save_store(self._refresh_tokens(store, context_name, provider), self._store_path)

    def _context_selected(self, context_name: str, selected: bool) -> None:
        self._mc_context = context_name
        self._result = LoginResult(
            context_name=context_name,
            already_existed=True,
            path=self._store_path,
            mode=ReuseSession(switch_context=selected),
        )

    def _authenticate(self, installation: Installation) -> AuthSession:
        if self.config.token_override:
            return AuthSession(username=TOKEN_LOGIN_USERNAME, token=self.config.token_override)

        if self.authenticator is None:
            raise ConfigurationError(
                f"Cannot log in to installation {installation.codename}",
                "Neither a token override nor an authenticator is configured"
            )

        return self.authenticator(installation)

    def _login_with_url(self, url: str, options: LoginOptions) -> None:
        installation = self.installation_fetcher(url, self.config.verify_ssl)
        logger.info(f"Logging in to installation {installation.codename}")

        session = self._authenticate(installation)
        result = persist_session(
            self.config,
            installation,
            session,
            select=options.switch_to_context,
            self_contained=options.self_contained,
        )

        self._installation = installation
        self._session_renewed = True
        self._mc_context = result.context_name
        self._result = LoginResult(
            context_name=result.context_name,
            already_existed=result.already_existed,
            path=result.path,
            mode=NetworkLogin(options.self_contained, options.switch_to_context),
        )

        if options.self_contained:
            self._print(
                f"A new kubectl context named '{result.context_name}' has been created "
                f"and stored in '{result.path}'."
            )
        elif options.switch_to_context:
            verb = "Updated" if result.already_existed else "Created"
            self._print(f"{verb} and selected kubectl context '{result.context_name}'.")
        else:
            verb = "updated" if result.already_existed else "created"
            self._print(
                f"Kubectl context '{result.context_name}' has been {verb}. "
                f"Select it with: kubectl config use-context {result.context_name}"
            )

    def _get_provider(self, mc_server: str) -> str:
        if self.config.provider:
            return self.config.provider
        if self._installation is None:
            self._installation = self.installation_fetcher(mc_server, self.config.verify_ssl)
        return self._installation.provider

    def _login_workload_cluster(self, options: LoginOptions) -> None:
        mc_context = self._mc_context
        mc_cluster = load_store(self._store_path).get_cluster(mc_context) if mc_context else None
        if mc_cluster is None or not mc_cluster.server:
            raise ContextDoesNotExistError(
                "No installation context to create a client certificate from",
                "Log in to the installation first"
            )

        base_path = cluster_base_path(mc_cluster.server)
        provider = self._get_provider(mc_cluster.server)
        validate_provider(provider)

        self._refresh_if_needed(mc_context)
        client = self.client_factory(self.config, mc_context)

        namespaces = get_candidate_namespaces(
            client, self.config.wc_organization, self.config.wc_insecure_namespace
        )
        cluster = resolve_cluster(client, self.config.wc_name, provider, namespaces)

        release_version = get_cluster_release_version(cluster)
        cert_operator_version = get_cert_operator_version(client, release_version)

        request = CertificateRequest.new(
            cluster_name=cluster.name,
            namespace=cluster.namespace,
            organization=cluster.organization or self.config.wc_organization or "",
            ttl=self.config.wc_cert_ttl,
            groups=list(self.config.wc_cert_groups),
            cert_operator_version=cert_operator_version,
            base_path=base_path,
        )

        issuer = CredentialIssuer(client, self.config)
        with issuer.issued(request, provider) as credential:
            result = persist_credential(
                self.config,
                mc_context,
                cluster.name,
                credential,
                base_path,
                select=options.switch_to_client_cert_context,
                self_contained=options.self_contained_client_cert,
            )

        if not options.switch_to_client_cert_context:
            self._restore_origin_context(options)

        self._result = LoginResult(
            context_name=result.context_name,
            already_existed=result.already_existed,
            path=result.path,
            mode=options.mode,
        )

        if options.self_contained_client_cert:
            self._print(
                f"A new kubectl context named '{result.context_name}' has been created "
                f"and stored in '{result.path}'. You can select this context like this:\n\n"
                f"  kubectl cluster-info --kubeconfig {result.path}"
            )
        elif options.switch_to_client_cert_context:
            if result.already_existed:
                self._print(f"Switched to context '{result.context_name}'.")
            else:
                self._print(
                    f"Created client certificate for workload cluster '{cluster.name}'.\n"
                    f"Switched to context '{result.context_name}'."
                )
        else:
            verb = "refreshed" if result.already_existed else "created"
            self._print(
                f"Client certificate context '{result.context_name}' has been {verb}. "
                f"Select it with: kubectl config use-context {result.context_name}"
            )

    def _restore_origin_context(self, options: LoginOptions) -> None:
        store = load_store(self._store_path)
        origin = options.origin_context
        if not origin or origin == store.current_context or origin not in store.contexts:
            return

        save_store(store.with_current_context(origin), self._store_path)
        logger.debug(f"Restored current context {origin}")
