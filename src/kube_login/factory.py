"""
Credential persistence.

This module turns a login result (an installation session or an issued
workload cluster credential) into a cluster, user and context triple with
deterministic names, and hands it to the writer selected by the
configuration.
"""

import logging

from .config import LoginConfig
from .installation import Installation
from .issuer import IssuedCredential
from .keys import (
    generate_cluster_name,
    generate_context_name,
    generate_user_name,
    generate_wc_context_name,
    generate_wc_user_name,
)
from .kubeconfig import (
    OIDC_CLIENT_ID,
    OIDC_ID_TOKEN,
    OIDC_ISSUER,
    OIDC_PROVIDER_NAME,
    OIDC_REFRESH_TOKEN,
    AuthProvider,
    StoreEntry,
    write_certificate,
)
from .oidc import AuthSession
from .writers import CredentialWriter, MergeWriter, SelfContainedWriter, WriteResult

logger = logging.getLogger(__name__)


def get_writer(config: LoginConfig, select: bool = True, self_contained: bool = True) -> CredentialWriter:
    """Pick the writer for a configuration.

    Args:
        config: Login configuration
        select: Make the written context current (shared kubeconfig only;
            a self-contained file always selects its only context)
        self_contained: Honor ``config.self_contained``; a workload cluster
            login stores the installation session in the shared kubeconfig
            even when the client certificate is exported

    Returns:
        SelfContainedWriter when ``config.self_contained`` is set,
        MergeWriter otherwise
    """
    if self_contained and config.self_contained:
        return SelfContainedWriter(config.self_contained)

    return MergeWriter(config.get_kubeconfig_path(), select=select)


def build_client_cert_entry(
    mc_context: str,
    cluster_name: str,
    credential: IssuedCredential,
    base_path: str,
) -> StoreEntry:
    """Entry for a workload cluster client certificate.

    The CA is embedded; the cluster entry shares the context name.
    """
    context_name = generate_wc_context_name(mc_context, cluster_name)
    return StoreEntry(
        context_name=context_name,
        cluster_name=context_name,
        user_name=generate_wc_user_name(context_name),
        cluster_fields={
            "server": f"https://api.{cluster_name}.k8s.{base_path}",
            "certificate_authority_data": credential.ca,
        },
        user_fields={
            "client_certificate_data": credential.certificate,
            "client_key_data": credential.key,
        },
    )


def build_session_entry(
    installation: Installation,
    session: AuthSession,
    ca_path: str | None,
    internal_api: bool = False,
) -> StoreEntry:
    """Entry for an installation login.

    The CA is referenced by file path. OIDC sessions get an ``oidc``
    auth-provider block so kubectl can renew them; other sessions get a
    bearer token.
    """
    if session.is_oidc:
        user_fields = {
            "token": None,
            "auth_provider": AuthProvider(
                name=OIDC_PROVIDER_NAME,
                config={
                    OIDC_CLIENT_ID: session.client_id or "",
                    OIDC_ID_TOKEN: session.token,
                    OIDC_ISSUER: installation.auth_url,
                    OIDC_REFRESH_TOKEN: session.refresh_token or "",
                },
            ),
        }
    else:
        user_fields = {"token": session.token, "auth_provider": None}

    return StoreEntry(
        context_name=generate_context_name(installation.codename),
        cluster_name=generate_cluster_name(installation.codename),
        user_name=generate_user_name(session.username, installation.codename),
        cluster_fields={
            "server": installation.api_url(internal_api),
            "certificate_authority": ca_path,
        },
        user_fields=user_fields,
    )


def persist_credential(
    config: LoginConfig,
    mc_context: str,
    cluster_name: str,
    credential: IssuedCredential,
    base_path: str,
    select: bool = True,
    self_contained: bool = True,
) -> WriteResult:
    """Store a workload cluster client certificate.

    Returns:
        WriteResult with the context name and whether it already existed

    Raises:
        DestinationExistsError: If the self-contained destination exists
        CredentialStoreError: If the store cannot be read or written
    """
    writer = get_writer(config, select, self_contained)
    logger.debug(f"Persisting client certificate via {writer.get_description()}")

    entry = build_client_cert_entry(mc_context, cluster_name, credential, base_path)
    return writer.write(entry)


def persist_session(
    config: LoginConfig,
    installation: Installation,
    session: AuthSession,
    select: bool = True,
    self_contained: bool = True,
) -> WriteResult:
    """Store an installation session.

    The installation CA is written to the certificates directory first,
    after the destination was checked and before the store is touched.

    Raises:
        DestinationExistsError: If the self-contained destination exists
        CredentialStoreError: If the CA or the store cannot be written
    """
    writer = get_writer(config, select, self_contained)
    logger.debug(f"Persisting session via {writer.get_description()}")

    writer.ensure_writable()

    cluster_name = generate_cluster_name(installation.codename)
    certs_dir = config.get_certs_dir()
    if installation.ca_cert:
        ca_path = write_certificate(installation.ca_cert, cluster_name, certs_dir)
    else:
        ca_path = None
        logger.warning(f"Installation {installation.codename} did not provide a CA certificate")

    entry = build_session_entry(installation, session, ca_path, config.internal_api)
    return writer.write(entry)
