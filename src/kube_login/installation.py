"""
Installation metadata.

An installation is one management control plane with its own identity
provider and CA. Its metadata is looked up from the installation info
service, which is reachable under a host derived from any of the
installation's well-known URLs (management API or web UI).
"""

import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import requests

from .exceptions import ConfigurationError, LoginError

logger = logging.getLogger(__name__)

K8S_API_PREFIX = "g8s"
API_PREFIX = "api"
HAPPA_PREFIX = "happa"
ATHENA_PREFIX = "athena"
INTERNAL_API_PREFIX = "internal-g8s"

REQUEST_TIMEOUT = 15

INSTALLATION_INFO_QUERY = """
query GetInfo {
  identity {
    provider
    codename
  }
  kubernetes {
    apiUrl
    authUrl
    caCert
  }
}
"""


@dataclass(frozen=True)
class Installation:
    codename: str
    k8s_api_url: str
    k8s_internal_api_url: str
    auth_url: str
    provider: str
    ca_cert: str

    def api_url(self, internal: bool = False) -> str:
        return self.k8s_internal_api_url if internal else self.k8s_api_url


def _parse_host(url: str) -> str:
    if not re.match(r"^https?://", url):
        url = f"https://{url}"

    try:
        parsed = urlparse(url)
        host = parsed.hostname or ""
    except ValueError as e:
        raise ConfigurationError(f"Invalid installation URL: {url}", str(e)) from e

    return host.lower()


def get_base_path(url: str) -> str:
    """Return the base domain of an installation from one of its URLs.

    Accepted forms:
    - management API URL: ``g8s.demo.example.io`` or
      ``https://api.demo.example.io:6443``
    - web UI URL: ``happa.g8s.demo.example.io``

    Raises:
        ConfigurationError: If the URL is not one of the known forms
    """
    host = _parse_host(url)

    if host.startswith(f"{HAPPA_PREFIX}."):
        return host[len(HAPPA_PREFIX) + 1:]
    if host.startswith(f"{API_PREFIX}."):
        return host[len(API_PREFIX) + 1:]
    if re.match(rf"^[^.]*{K8S_API_PREFIX}\.", host):
        return host

    raise ConfigurationError(
        f"Unknown installation URL type: {url or '(empty)'}",
        "Pass the management API URL or the web UI URL of the installation"
    )


def get_internal_api_url(api_url: str) -> str:
    """Return the internal API URL that matches a management API URL.

    Example:
        >>> get_internal_api_url("https://g8s.demo.example.io")
        'https://internal-g8s.demo.example.io'
    """
    host = _parse_host(api_url)
    base = ".".join(host.split(".")[1:])
    return f"https://{INTERNAL_API_PREFIX}.{base}"


def cluster_base_path(server_url: str) -> str:
    """Base domain under which an installation's workload cluster APIs live.

    The first host label of the management API server (``g8s``, ``api``,
    ...) and any port are dropped.

    Example:
        >>> cluster_base_path("https://g8s.demo.example.io:443")
        'demo.example.io'
    """
    host = _parse_host(server_url)
    parts = host.split(".")
    if len(parts) < 2:
        raise ConfigurationError(
            f"Cannot derive a base domain from {server_url}",
            "The server URL must contain at least two host labels"
        )
    return ".".join(parts[1:])


def get_athena_url(base_path: str) -> str:
    return f"https://{ATHENA_PREFIX}.{base_path}"


def fetch_installation(url: str, verify_ssl: bool = True) -> Installation:
    """Resolve an installation URL to its metadata.

    Args:
        url: Management API or web UI URL of the installation
        verify_ssl: Verify TLS certificates of the info service

    Returns:
        Installation metadata

    Raises:
        ConfigurationError: If the URL is not an installation URL
        LoginError: If the metadata cannot be fetched
    """
    base_path = get_base_path(url)
    endpoint = f"{get_athena_url(base_path)}/graphql"

    logger.debug(f"Fetching installation info from {endpoint}")

    try:
        response = requests.post(
            endpoint,
            json={"query": INSTALLATION_INFO_QUERY},
            verify=verify_ssl,
            timeout=REQUEST_TIMEOUT
        )
        response.raise_for_status()
        payload = response.json()
    except requests.RequestException as e:
        raise LoginError(
            f"Failed to fetch installation info for {url}",
            f"Error querying {endpoint}: {str(e)}"
        ) from e
    except ValueError as e:
        raise LoginError(
            f"Failed to fetch installation info for {url}",
            f"Invalid JSON response from {endpoint}"
        ) from e

    return _installation_from_payload(payload, url)


def _installation_from_payload(payload: dict[str, Any], url: str) -> Installation:
    if payload.get("errors"):
        messages = "; ".join(str(e.get("message", e)) for e in payload["errors"])
        raise LoginError(f"Failed to fetch installation info for {url}", messages)

    data = payload.get("data") or {}
    identity = data.get("identity") or {}
    kubernetes = data.get("kubernetes") or {}

    api_url = kubernetes.get("apiUrl")
    codename = identity.get("codename")
    if not api_url or not codename:
        raise LoginError(
            f"Incomplete installation info for {url}",
            "The response is missing the API URL or the installation codename"
        )

    return Installation(
        codename=codename,
        k8s_api_url=api_url,
        k8s_internal_api_url=get_internal_api_url(api_url),
        auth_url=kubernetes.get("authUrl") or "",
        provider=(identity.get("provider") or "").lower(),
        ca_cert=kubernetes.get("caCert") or "",
    )
