"""
Client certificate issuance for workload clusters.

A client certificate is requested by creating a CertConfig object on the
management cluster. A signer running there picks it up asynchronously and
writes the signed certificate, key and CA into a secret named after the
request. CredentialIssuer creates the request, polls for that secret with a
fixed interval up to a deadline, and deletes the request again if anything
fails after it was created.

Example:
    >>> request = CertificateRequest.new(
    ...     cluster_name="w1cluster",
    ...     namespace="org-acme",
    ...     organization="acme",
    ...     ttl="1h",
    ...     groups=["system:masters"],
    ...     cert_operator_version="1.0.1",
    ...     base_path="demo.example.io",
    ... )
    >>> issuer = CredentialIssuer(client, config)
    >>> with issuer.issued(request, "aws") as credential:
    ...     persist(credential)
"""

import logging
import re
import secrets
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from .clients import CERT_CONFIG_GROUP, CERT_CONFIG_VERSION, ManagementClusterClient
from .config import LoginConfig
from .exceptions import (
    ConfigurationError,
    CredentialNotFoundError,
    CredentialTimeoutError,
    LoginError,
    MissingComponentError,
    ReleaseNotFoundError,
    ResourceNotFoundError,
    UnsupportedProviderError,
    UnsupportedReleaseVersionError,
)
from .keys import (
    LABEL_CERT_OPERATOR_VERSION,
    LABEL_CERTIFICATE,
    LABEL_CLUSTER,
    LABEL_ORGANIZATION,
    PROVIDER_AWS,
    PROVIDER_AZURE,
)
from .resolver import ClusterRef

logger = logging.getLogger(__name__)

CREDENTIAL_KEY_CERT = "crt"
CREDENTIAL_KEY_KEY = "key"
CREDENTIAL_KEY_CA = "ca"

CERT_OPERATOR_COMPONENT = "cert-operator"

# Oldest release able to issue client certificates, per provider
CLIENT_CERT_MIN_RELEASE = {
    PROVIDER_AWS: (13, 0, 0),
    PROVIDER_AZURE: (12, 0, 0),
}


@dataclass(frozen=True)
class CertificateRequest:
    """A request for a workload cluster client certificate."""

    request_id: str
    cluster_name: str
    namespace: str
    organization: str
    ttl: str
    groups: list[str] = field(default_factory=list)
    cert_operator_version: str = ""
    base_path: str = ""

    @classmethod
    def new(cls, **kwargs: Any) -> "CertificateRequest":
        """Create a request with a freshly generated ID.

        Every call yields a new ID, so retrying after a failure never reuses
        a request that may still be pending on the management cluster.
        """
        return cls(request_id=secrets.token_hex(8), **kwargs)

    @property
    def name(self) -> str:
        return f"{self.cluster_name}-{self.request_id}"

    @property
    def common_name(self) -> str:
        return f"{self.request_id}.{self.cluster_name}.k8s.{self.base_path}"

    def to_manifest(self) -> dict[str, Any]:
        return {
            "apiVersion": f"{CERT_CONFIG_GROUP}/{CERT_CONFIG_VERSION}",
            "kind": "CertConfig",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": {
                    LABEL_CERT_OPERATOR_VERSION: self.cert_operator_version,
                    LABEL_CERTIFICATE: self.request_id,
                    LABEL_CLUSTER: self.cluster_name,
                    LABEL_ORGANIZATION: self.organization,
                },
            },
            "spec": {
                "cert": {
                    "allowBareDomains": True,
                    "clusterComponent": self.request_id,
                    "clusterID": self.cluster_name,
                    "commonName": self.common_name,
                    "disableRegeneration": True,
                    "organizations": list(self.groups),
                    "ttl": self.ttl,
                },
                "versionBundle": {
                    "version": self.cert_operator_version,
                },
            },
        }


@dataclass(frozen=True)
class IssuedCredential:
    certificate: bytes
    key: bytes
    ca: bytes

    @classmethod
    def from_secret_data(cls, data: dict[str, bytes], secret_name: str = "") -> "IssuedCredential":
        missing = [
            k for k in (CREDENTIAL_KEY_CERT, CREDENTIAL_KEY_KEY, CREDENTIAL_KEY_CA)
            if not data.get(k)
        ]
        if missing:
            raise CredentialNotFoundError(
                f"The client certificate credential {secret_name} is incomplete",
                f"Missing keys: {', '.join(missing)}"
            )

        return cls(
            certificate=data[CREDENTIAL_KEY_CERT],
            key=data[CREDENTIAL_KEY_KEY],
            ca=data[CREDENTIAL_KEY_CA],
        )

    def __repr__(self) -> str:
        return "IssuedCredential(certificate=..., key='***REDACTED***', ca=...)"


class CredentialIssuer:
    """Create certificate requests and wait for the signed credential.

    Args:
        client: Management cluster client
        config: Login configuration (poll interval and timeout, credential
            namespace mapping)
    """

    def __init__(self, client: ManagementClusterClient, config: LoginConfig) -> None:
        self.client = client
        self.config = config

    def credential_namespace(self, request: CertificateRequest, provider: str) -> str:
        """Namespace in which the signer stores the issued secret.

        Raises:
            ConfigurationError: If the provider has no configured mapping
        """
        if provider not in self.config.credential_namespaces:
            raise ConfigurationError(
                f"No credential namespace configured for provider '{provider}'",
                f"Known providers: {', '.join(sorted(self.config.credential_namespaces))}"
            )

        return self.config.credential_namespaces[provider] or request.namespace

    def create(self, request: CertificateRequest) -> None:
        self.client.create_cert_config(request.namespace, request.to_manifest())
        logger.info(f"Created certificate request {request.namespace}/{request.name}")

    def await_credential(self, request: CertificateRequest, provider: str) -> IssuedCredential:
        """Poll for the credential of a request until it appears.

        Raises:
            CredentialTimeoutError: If the credential did not appear in time
            ConfigurationError: If the credential namespace is unknown
            APIError: If reading the secret failed for another reason
        """
        namespace = self.credential_namespace(request, provider)
        interval = self.config.credential_poll_interval
        timeout = self.config.credential_poll_timeout
        deadline = time.monotonic() + timeout

        attempt = 0
        while True:
            attempt += 1
            try:
                data = self.client.get_secret(namespace, request.name)
                break
            except ResourceNotFoundError:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise CredentialTimeoutError(
                        "Failed to get the client certificate credential on time",
                        f"Secret {namespace}/{request.name} did not appear within {timeout:g}s"
                    ) from None

                logger.debug(f"Credential {namespace}/{request.name} not ready yet (attempt {attempt})")
                time.sleep(min(interval, remaining))

        logger.debug(f"Fetched credential {namespace}/{request.name} after {attempt} attempt(s)")
        return IssuedCredential.from_secret_data(data, request.name)

    def cleanup(self, request: CertificateRequest) -> None:
        """Delete a request. Failures are logged, never raised."""
        try:
            self.client.delete_cert_config(request.namespace, request.name)
            logger.info(f"Deleted certificate request {request.namespace}/{request.name}")
        except LoginError as e:
            logger.warning(f"Failed to delete certificate request {request.namespace}/{request.name}: {e}")

    @contextmanager
    def issued(self, request: CertificateRequest, provider: str) -> Iterator[IssuedCredential]:
        """Create a request and yield its credential.

        Any exception after the request was created, including one raised
        inside the ``with`` block, deletes the request before propagating.
        On success the request is left to the signer's own garbage
        collection.
        """
        self.create(request)
        try:
            yield self.await_credential(request, provider)
        except BaseException:
            self.cleanup(request)
            raise


def issue_credential(
    client: ManagementClusterClient,
    request: CertificateRequest,
    provider: str,
    config: LoginConfig,
) -> IssuedCredential:
    """Create a request and wait for its credential, cleaning up on failure."""
    with CredentialIssuer(client, config).issued(request, provider) as credential:
        return credential


def validate_provider(provider: str) -> None:
    if provider not in (PROVIDER_AWS, PROVIDER_AZURE):
        raise UnsupportedProviderError(
            "Creating a client certificate for a workload cluster is only supported on AWS and Azure."
        )


def _parse_version(version: str) -> tuple[int, int, int]:
    match = re.match(r"^v?(\d+)\.(\d+)\.(\d+)(?:[-+].*)?$", version)
    if not match:
        raise UnsupportedReleaseVersionError(f"Invalid release version: {version}")
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def validate_release_version(version: str, provider: str) -> None:
    """Check that a workload cluster release can issue client certificates.

    Raises:
        UnsupportedReleaseVersionError: If the release is too old or invalid
    """
    minimum = CLIENT_CERT_MIN_RELEASE.get(provider)
    if minimum is not None and _parse_version(version) >= minimum:
        return

    if provider == PROVIDER_AWS:
        raise UnsupportedReleaseVersionError(
            "On AWS, the workload cluster must use release v13.0.0 or newer "
            "in order to allow client certificate creation."
        )

    raise UnsupportedReleaseVersionError(
        "The workload cluster release does not allow client certificate creation."
    )


def get_cluster_release_version(cluster: ClusterRef) -> str:
    if not cluster.release_version:
        raise UnsupportedReleaseVersionError(
            f"The workload cluster {cluster.name} does not have a release version label."
        )

    validate_release_version(cluster.release_version, cluster.provider)
    return cluster.release_version


def get_cert_operator_version(client: ManagementClusterClient, release_version: str) -> str:
    """Version of the signer component shipped with a release.

    Raises:
        ReleaseNotFoundError: If the release does not exist
        MissingComponentError: If the release has no cert-operator component
    """
    name = f"v{release_version.lstrip('v')}"
    try:
        release = client.get_release(name)
    except ResourceNotFoundError as e:
        raise ReleaseNotFoundError(f"Release {name} could not be found.") from e

    for component in (release.get("spec") or {}).get("components") or []:
        if component.get("name") == CERT_OPERATOR_COMPONENT:
            return component.get("version", "")

    raise MissingComponentError(
        f"The release {name} does not include the required '{CERT_OPERATOR_COMPONENT}' component."
    )
