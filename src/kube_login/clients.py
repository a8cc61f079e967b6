"""
Management cluster API access.

ManagementClusterClient is the only place that talks to the Kubernetes API.
It translates ApiException into the library's error hierarchy so nothing
above it has to know about HTTP status codes:

- 404 -> ResourceNotFoundError
- 403 -> ForbiddenError
- anything else -> APIError (with the status attached)
"""

import base64
import binascii
import logging
from typing import Any

from kubernetes import client, config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from .config import LoginConfig
from .exceptions import APIError, ConfigurationError, ForbiddenError, ResourceNotFoundError

logger = logging.getLogger(__name__)

CLUSTER_GROUP = "cluster.x-k8s.io"
CLUSTER_VERSION = "v1beta1"
CLUSTER_PLURAL = "clusters"

ORGANIZATION_GROUP = "security.giantswarm.io"
ORGANIZATION_VERSION = "v1alpha1"
ORGANIZATION_PLURAL = "organizations"

RELEASE_GROUP = "release.giantswarm.io"
RELEASE_VERSION = "v1alpha1"
RELEASE_PLURAL = "releases"

CERT_CONFIG_GROUP = "core.giantswarm.io"
CERT_CONFIG_VERSION = "v1alpha1"
CERT_CONFIG_PLURAL = "certconfigs"


def _translate(e: ApiException, action: str) -> APIError:
    details = e.reason or str(e)
    if e.status == 404:
        return ResourceNotFoundError(f"Not found: {action}", details, status=e.status)
    if e.status == 403:
        return ForbiddenError(f"Forbidden: {action}", details, status=e.status)
    return APIError(f"API request failed: {action}", details, status=e.status)


class ManagementClusterClient:
    """Typed access to the management cluster objects used during login.

    Args:
        api_client: Kubernetes ApiClient authenticated against the
            management cluster

    Example:
        >>> mc = get_management_client(config, "gs-demo")
        >>> cluster = mc.get_cluster("org-acme", "w1cluster")
    """

    def __init__(self, api_client: client.ApiClient) -> None:
        self.api_client = api_client
        self.custom = client.CustomObjectsApi(api_client)
        self.core = client.CoreV1Api(api_client)

    def get_cluster(self, namespace: str, name: str) -> dict[str, Any]:
        action = f"get cluster {namespace}/{name}"
        logger.debug(action)
        try:
            return self.custom.get_namespaced_custom_object(
                CLUSTER_GROUP, CLUSTER_VERSION, namespace, CLUSTER_PLURAL, name
            )
        except ApiException as e:
            raise _translate(e, action) from e

    def get_organization(self, name: str) -> dict[str, Any]:
        action = f"get organization {name}"
        try:
            return self.custom.get_cluster_custom_object(
                ORGANIZATION_GROUP, ORGANIZATION_VERSION, ORGANIZATION_PLURAL, name
            )
        except ApiException as e:
            raise _translate(e, action) from e

    def list_organizations(self) -> list[dict[str, Any]]:
        action = "list organizations"
        try:
            result = self.custom.list_cluster_custom_object(
                ORGANIZATION_GROUP, ORGANIZATION_VERSION, ORGANIZATION_PLURAL
            )
        except ApiException as e:
            raise _translate(e, action) from e
        return result.get("items", [])

    def get_release(self, name: str) -> dict[str, Any]:
        action = f"get release {name}"
        try:
            return self.custom.get_cluster_custom_object(
                RELEASE_GROUP, RELEASE_VERSION, RELEASE_PLURAL, name
            )
        except ApiException as e:
            raise _translate(e, action) from e

    def create_cert_config(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        name = body.get("metadata", {}).get("name", "")
        action = f"create certconfig {namespace}/{name}"
        logger.debug(action)
        try:
            return self.custom.create_namespaced_custom_object(
                CERT_CONFIG_GROUP, CERT_CONFIG_VERSION, namespace, CERT_CONFIG_PLURAL, body
            )
        except ApiException as e:
            raise _translate(e, action) from e

    def delete_cert_config(self, namespace: str, name: str) -> None:
        action = f"delete certconfig {namespace}/{name}"
        logger.debug(action)
        try:
            self.custom.delete_namespaced_custom_object(
                CERT_CONFIG_GROUP, CERT_CONFIG_VERSION, namespace, CERT_CONFIG_PLURAL, name
            )
        except ApiException as e:
            raise _translate(e, action) from e

    def get_secret(self, namespace: str, name: str) -> dict[str, bytes]:
        """Read a secret and return its base64-decoded data."""
        action = f"get secret {namespace}/{name}"
        try:
            secret = self.core.read_namespaced_secret(name, namespace)
        except ApiException as e:
            raise _translate(e, action) from e

        data = {}
        for key, value in (secret.data or {}).items():
            try:
                data[key] = base64.b64decode(value)
            except (binascii.Error, ValueError) as e:
                raise APIError(f"Invalid data in secret {namespace}/{name}", f"key {key}: {e}") from e
        return data


def get_management_client(config: LoginConfig, context_name: str) -> ManagementClusterClient:
    """Build a client for one context of the shared kubeconfig.

    Raises:
        ConfigurationError: If the kubeconfig or the context cannot be loaded
    """
    kubeconfig_path = config.get_kubeconfig_path()

    try:
        api_client = k8s_config.new_client_from_config(
            config_file=kubeconfig_path,
            context=context_name,
        )
    except (ConfigException, OSError, TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Failed to load context {context_name} from {kubeconfig_path}",
            str(e)
        ) from e

    if not config.verify_ssl:
        api_client.configuration.verify_ssl = False

    return ManagementClusterClient(api_client)
