"""
Names, labels and provider tags shared across the login flow.

Every kubeconfig entry written by this library gets a name that is derived
deterministically from the installation codename, the workload cluster name
and the principal, so that logging in again overwrites the same entries.
"""

CONTEXT_PREFIX = "gs-"
CLIENT_CERT_SUFFIX = "-clientcert"

# Labels on cluster-side objects
LABEL_CLUSTER = "giantswarm.io/cluster"
LABEL_ORGANIZATION = "giantswarm.io/organization"
LABEL_CERTIFICATE = "giantswarm.io/certificate"
LABEL_RELEASE_VERSION = "release.giantswarm.io/version"
LABEL_CERT_OPERATOR_VERSION = "cert-operator.giantswarm.io/version"

PROVIDER_AWS = "aws"
PROVIDER_AZURE = "azure"

DEFAULT_NAMESPACE = "default"


def generate_context_name(codename: str) -> str:
    """Context name of an installation, e.g. ``gs-demo``."""
    return f"{CONTEXT_PREFIX}{codename}"


def generate_cluster_name(codename: str) -> str:
    return f"{CONTEXT_PREFIX}{codename}"


def generate_user_name(principal: str, codename: str) -> str:
    return f"{CONTEXT_PREFIX}{principal}-{codename}"


def generate_wc_context_name(mc_context_name: str, wc_name: str) -> str:
    """Context name of a workload cluster, e.g. ``gs-demo-w1cluster``."""
    return f"{mc_context_name}-{wc_name}"


def generate_wc_user_name(wc_context_name: str) -> str:
    return f"{wc_context_name}-user"


def is_kube_context(name: str) -> bool:
    return name.startswith(CONTEXT_PREFIX)


def is_codename(name: str) -> bool:
    """Check if a login argument is a bare installation codename.

    Codenames never contain dots or a URL scheme; anything that does is
    treated as an installation URL instead.
    """
    if not name:
        return False
    return "." not in name and "://" not in name and "/" not in name


def get_client_cert_context_name(name: str) -> str:
    """Name of the client certificate context for a context or codename."""
    if not is_kube_context(name):
        name = generate_context_name(name)
    return f"{name}{CLIENT_CERT_SUFFIX}"
