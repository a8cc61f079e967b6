"""
Workload cluster lookup.

A workload cluster is addressed by a display name only, but the same name
can exist in several organization namespaces. resolve_cluster() searches
all candidate namespaces concurrently and returns exactly one match or a
precise error.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from .clients import ManagementClusterClient
from .exceptions import (
    AmbiguousClusterError,
    ClusterNotFoundError,
    ConfigurationError,
    ForbiddenError,
    InsufficientPermissionsError,
    OrganizationNotFoundError,
    ResourceNotFoundError,
)
from .keys import DEFAULT_NAMESPACE, LABEL_ORGANIZATION, LABEL_RELEASE_VERSION

logger = logging.getLogger(__name__)

ORGANIZATION_FLAG = "--cluster-organization"


@dataclass(frozen=True)
class ClusterRef:
    """A workload cluster found in one namespace."""

    name: str
    namespace: str
    organization: str | None
    release_version: str | None
    provider: str

    @classmethod
    def from_resource(cls, obj: dict[str, Any], provider: str) -> "ClusterRef":
        metadata = obj.get("metadata") or {}
        labels = metadata.get("labels") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            organization=labels.get(LABEL_ORGANIZATION) or None,
            release_version=labels.get(LABEL_RELEASE_VERSION) or None,
            provider=provider,
        )


def fetch_cluster(client: ManagementClusterClient, provider: str, namespace: str, name: str) -> ClusterRef:
    """Look a cluster up in a single namespace.

    Raises:
        ClusterNotFoundError: If there is no such cluster in the namespace
        InsufficientPermissionsError: If the namespace is not readable
        APIError: For any other API failure
    """
    try:
        obj = client.get_cluster(namespace, name)
    except ResourceNotFoundError as e:
        raise ClusterNotFoundError(f"The workload cluster {name} could not be found.") from e
    except ForbiddenError as e:
        raise InsufficientPermissionsError(
            f"You don't have the required permissions to get clusters in the {namespace} namespace."
        ) from e

    return ClusterRef.from_resource(obj, provider)


def _lookup(client: ManagementClusterClient, provider: str, namespace: str, name: str) -> ClusterRef | None:
    try:
        return fetch_cluster(client, provider, namespace, name)
    except (ClusterNotFoundError, InsufficientPermissionsError) as e:
        logger.debug(f"No cluster {name} in namespace {namespace}: {e.message}")
        return None


def resolve_cluster(
    client: ManagementClusterClient,
    name: str,
    provider: str,
    namespaces: list[str],
) -> ClusterRef:
    """Find exactly one workload cluster called ``name``.

    With a single namespace this is a direct lookup and its errors are
    passed through. With several namespaces one lookup runs per namespace;
    "not found" and "forbidden" only count as absence, any other error is
    fatal. All lookups finish before the results are judged.

    Args:
        client: Management cluster client
        name: Lower-cased cluster name
        provider: Infrastructure provider tag
        namespaces: Candidate namespaces, at least one

    Returns:
        The matching cluster

    Raises:
        ConfigurationError: If no namespace was given
        AmbiguousClusterError: If several namespaces hold a matching cluster
        ClusterNotFoundError: If no namespace holds a matching cluster
        APIError: If any lookup failed for another reason
    """
    if not namespaces:
        raise ConfigurationError(
            f"Cannot look up workload cluster {name}",
            "At least one candidate namespace is required"
        )

    if len(namespaces) == 1:
        return fetch_cluster(client, provider, namespaces[0], name)

    logger.debug(f"Looking up cluster {name} in namespaces {', '.join(namespaces)}")

    with ThreadPoolExecutor(max_workers=len(namespaces)) as executor:
        futures = [
            executor.submit(_lookup, client, provider, namespace, name)
            for namespace in namespaces
        ]

    # The executor has joined every worker at this point.
    errors = [f.exception() for f in futures if f.exception() is not None]
    if errors:
        raise errors[0]

    matches = [f.result() for f in futures if f.result() is not None]

    if len(matches) == 1:
        return matches[0]

    if not matches:
        raise ClusterNotFoundError(
            f"The workload cluster {name} could not be found.\n"
            "Make sure you have access to the cluster's organization namespace."
        )

    lines = [f"There are multiple workload clusters with the name {name}:"]
    for i, match in enumerate(matches, start=1):
        lines.append(f"{i}. {name} in organization {match.organization or 'n/a'}")
    lines.append("")
    lines.append(f"Use the {ORGANIZATION_FLAG} flag to select one from a specific organization.")

    raise AmbiguousClusterError("\n".join(lines))


def get_organization_namespace(client: ManagementClusterClient, organization: str) -> str:
    try:
        org = client.get_organization(organization)
    except ResourceNotFoundError as e:
        raise OrganizationNotFoundError(f"The organization {organization} could not be found.") from e

    namespace = (org.get("status") or {}).get("namespace")
    if not namespace:
        raise ConfigurationError(f"Could not find the namespace for organization {organization}.")

    return namespace


def get_candidate_namespaces(
    client: ManagementClusterClient,
    organization: str | None = None,
    insecure_namespace: bool = False,
) -> list[str]:
    """Namespaces in which to look for a workload cluster.

    An explicit organization narrows the search to its namespace;
    otherwise every organization namespace is searched. The ``default``
    namespace is appended when insecure namespace lookup is enabled.

    Raises:
        OrganizationNotFoundError: If the organization, or any organization
            at all, cannot be found
    """
    if organization:
        namespaces = [get_organization_namespace(client, organization)]
    else:
        organizations = client.list_organizations()
        if not organizations:
            raise OrganizationNotFoundError("Could not find any organizations.")
        namespaces = [
            ns for ns in ((o.get("status") or {}).get("namespace") for o in organizations) if ns
        ]

    if insecure_namespace and DEFAULT_NAMESPACE not in namespaces:
        namespaces.append(DEFAULT_NAMESPACE)

    return namespaces
