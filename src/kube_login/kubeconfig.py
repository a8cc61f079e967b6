"""
Kubeconfig credential store model.

This module holds an immutable, in-memory representation of a kubeconfig
file: named clusters, users and contexts plus the current context. Every
mutation returns a new snapshot, so a failed login never leaves a half
updated store behind; the only write boundary is save_store(), which
replaces the whole file at once.

Fields the library does not manage (extensions, namespaces, exec plugins,
preferences, ...) are carried through load and save untouched.
"""

import base64
import binascii
import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import CredentialStoreError, DestinationExistsError

logger = logging.getLogger(__name__)

# Keys of the "oidc" auth-provider configuration block
OIDC_PROVIDER_NAME = "oidc"
OIDC_CLIENT_ID = "client-id"
OIDC_CLIENT_SECRET = "client-secret"
OIDC_ID_TOKEN = "id-token"
OIDC_ISSUER = "idp-issuer-url"
OIDC_REFRESH_TOKEN = "refresh-token"


class AuthType(Enum):
    """How the user of a context authenticates."""

    UNKNOWN = "unknown"
    TOKEN = "token"
    AUTH_PROVIDER = "auth-provider"
    CLIENT_CERT = "client-certificate"


@dataclass(frozen=True)
class AuthProvider:
    name: str
    config: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ClusterEntry:
    server: str = ""
    certificate_authority: str | None = None
    certificate_authority_data: bytes | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UserEntry:
    token: str | None = None
    auth_provider: AuthProvider | None = None
    client_certificate_data: bytes | None = None
    client_key_data: bytes | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContextEntry:
    cluster: str = ""
    user: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StoreEntry:
    """A cluster, user and context triple to be upserted together.

    ``cluster_fields`` and ``user_fields`` hold the ClusterEntry and
    UserEntry fields to set; fields not listed keep their current value
    when the entry already exists.
    """

    context_name: str
    cluster_name: str
    user_name: str
    cluster_fields: dict[str, Any]
    user_fields: dict[str, Any]


@dataclass(frozen=True)
class CredentialStore:
    """Snapshot of a kubeconfig file.

    Example:
        >>> store = load_store("/home/me/.kube/config")
        >>> store, existed = store.upsert_entry(entry)
        >>> store = store.with_current_context(entry.context_name)
        >>> save_store(store, "/home/me/.kube/config")
    """

    clusters: dict[str, ClusterEntry] = field(default_factory=dict)
    users: dict[str, UserEntry] = field(default_factory=dict)
    contexts: dict[str, ContextEntry] = field(default_factory=dict)
    current_context: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def upsert_cluster(self, name: str, **fields: Any) -> "CredentialStore":
        entry = replace(self.clusters.get(name, ClusterEntry()), **fields)
        return replace(self, clusters={**self.clusters, name: entry})

    def upsert_user(self, name: str, **fields: Any) -> "CredentialStore":
        entry = replace(self.users.get(name, UserEntry()), **fields)
        return replace(self, users={**self.users, name: entry})

    def upsert_context(self, name: str, **fields: Any) -> "CredentialStore":
        entry = replace(self.contexts.get(name, ContextEntry()), **fields)
        return replace(self, contexts={**self.contexts, name: entry})

    def upsert_entry(self, entry: StoreEntry) -> tuple["CredentialStore", bool]:
        """Create or overwrite the cluster, user and context of an entry.

        Returns:
            The new snapshot and whether the context existed before
        """
        context_existed = entry.context_name in self.contexts

        store = self.upsert_user(entry.user_name, **entry.user_fields)
        store = store.upsert_cluster(entry.cluster_name, **entry.cluster_fields)
        store = store.upsert_context(
            entry.context_name, cluster=entry.cluster_name, user=entry.user_name
        )

        return store, context_existed

    def with_current_context(self, name: str) -> "CredentialStore":
        if name and name not in self.contexts:
            raise CredentialStoreError(
                f"Cannot select context '{name}'",
                "The context does not exist in the credential store"
            )
        return replace(self, current_context=name)

    def get_user(self, context_name: str) -> UserEntry | None:
        context = self.contexts.get(context_name)
        if context is None:
            return None
        return self.users.get(context.user)

    def get_cluster(self, context_name: str) -> ClusterEntry | None:
        context = self.contexts.get(context_name)
        if context is None:
            return None
        return self.clusters.get(context.cluster)

    def get_auth_type(self, context_name: str) -> AuthType:
        user = self.get_user(context_name)
        if user is None:
            return AuthType.UNKNOWN
        if user.auth_provider is not None:
            return AuthType.AUTH_PROVIDER
        if user.client_certificate_data or user.extra.get("client-certificate"):
            return AuthType.CLIENT_CERT
        if user.token:
            return AuthType.TOKEN
        return AuthType.UNKNOWN

    def get_auth_provider(self, context_name: str) -> AuthProvider | None:
        user = self.get_user(context_name)
        if user is None:
            return None
        return user.auth_provider

    def update_oidc_tokens(self, context_name: str, id_token: str, refresh_token: str) -> "CredentialStore":
        """Overwrite the ID and refresh token of a context's auth provider."""
        context = self.contexts.get(context_name)
        provider = self.get_auth_provider(context_name)
        if context is None or provider is None:
            raise CredentialStoreError(
                f"Context '{context_name}' has no auth provider to update"
            )

        provider_config = {
            **provider.config,
            OIDC_ID_TOKEN: id_token,
            OIDC_REFRESH_TOKEN: refresh_token,
        }
        return self.upsert_user(
            context.user, auth_provider=replace(provider, config=provider_config)
        )

    def validate_context(self, name: str) -> None:
        """Check that a context references an existing cluster and user.

        Raises:
            CredentialStoreError: If the context is dangling
        """
        context = self.contexts.get(name)
        if context is None:
            raise CredentialStoreError(f"Context '{name}' does not exist")
        if context.cluster not in self.clusters:
            raise CredentialStoreError(
                f"Context '{name}' references unknown cluster '{context.cluster}'"
            )
        if context.user not in self.users:
            raise CredentialStoreError(
                f"Context '{name}' references unknown user '{context.user}'"
            )

    def validate(self) -> None:
        if self.current_context and self.current_context not in self.contexts:
            raise CredentialStoreError(
                f"Current context '{self.current_context}' does not exist"
            )

    def to_dict(self) -> dict[str, Any]:
        """Render the snapshot in kubeconfig file layout."""
        data: dict[str, Any] = {"apiVersion": "v1", "kind": "Config"}
        data.update(self.extra)
        data["clusters"] = [
            {"name": name, "cluster": _cluster_to_dict(entry)}
            for name, entry in sorted(self.clusters.items())
        ]
        data["contexts"] = [
            {"name": name, "context": _context_to_dict(entry)}
            for name, entry in sorted(self.contexts.items())
        ]
        data["current-context"] = self.current_context
        data["users"] = [
            {"name": name, "user": _user_to_dict(entry)}
            for name, entry in sorted(self.users.items())
        ]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CredentialStore":
        """Build a snapshot from a parsed kubeconfig document.

        Raises:
            CredentialStoreError: If the document structure is invalid
        """
        if not isinstance(data, dict):
            raise CredentialStoreError(
                "Invalid kubeconfig structure",
                f"Expected a mapping at the top level, got {type(data).__name__}"
            )

        extra = {
            k: v for k, v in data.items()
            if k not in ("apiVersion", "kind", "clusters", "contexts", "users", "current-context")
        }

        contexts = {
            name: _context_from_dict(item)
            for name, item in _named_items(data, "contexts", "context")
        }

        # kubectl leaves current-context dangling after delete-context
        current_context = data.get("current-context") or ""
        if current_context and current_context not in contexts:
            logger.warning(
                f"Current context '{current_context}' does not exist, unsetting it"
            )
            current_context = ""

        return cls(
            clusters={
                name: _cluster_from_dict(item)
                for name, item in _named_items(data, "clusters", "cluster")
            },
            users={
                name: _user_from_dict(item)
                for name, item in _named_items(data, "users", "user")
            },
            contexts=contexts,
            current_context=current_context,
            extra=extra,
        )


def _named_items(data: dict[str, Any], section: str, key: str) -> list[tuple[str, dict[str, Any]]]:
    items = []
    for item in data.get(section) or []:
        if not isinstance(item, dict) or not item.get("name"):
            raise CredentialStoreError(
                f"Invalid entry in kubeconfig section '{section}'",
                "Every entry needs a 'name'"
            )
        body = item.get(key) or {}
        if not isinstance(body, dict):
            raise CredentialStoreError(
                f"Invalid entry '{item['name']}' in kubeconfig section '{section}'",
                f"Expected '{key}' to be a mapping, got {type(body).__name__}"
            )
        items.append((item["name"], body))
    return items


def _b64decode(value: str | None, field_name: str) -> bytes | None:
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CredentialStoreError(
            f"Invalid base64 data in kubeconfig field '{field_name}'",
            str(e)
        ) from e


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _cluster_from_dict(item: dict[str, Any]) -> ClusterEntry:
    extra = {
        k: v for k, v in item.items()
        if k not in ("server", "certificate-authority", "certificate-authority-data")
    }
    return ClusterEntry(
        server=item.get("server") or "",
        certificate_authority=item.get("certificate-authority"),
        certificate_authority_data=_b64decode(
            item.get("certificate-authority-data"), "certificate-authority-data"
        ),
        extra=extra,
    )


def _cluster_to_dict(entry: ClusterEntry) -> dict[str, Any]:
    data: dict[str, Any] = {"server": entry.server}
    if entry.certificate_authority:
        data["certificate-authority"] = entry.certificate_authority
    if entry.certificate_authority_data:
        data["certificate-authority-data"] = _b64encode(entry.certificate_authority_data)
    data.update(entry.extra)
    return data


def _user_from_dict(item: dict[str, Any]) -> UserEntry:
    extra = {
        k: v for k, v in item.items()
        if k not in ("token", "auth-provider", "client-certificate-data", "client-key-data")
    }

    auth_provider = None
    provider_data = item.get("auth-provider")
    if provider_data:
        provider_config = None
        if isinstance(provider_data, dict):
            provider_config = provider_data.get("config") or {}
        if not isinstance(provider_config, dict):
            raise CredentialStoreError(
                "Invalid auth-provider in kubeconfig",
                "Expected 'auth-provider' and its 'config' to be mappings"
            )
        auth_provider = AuthProvider(
            name=provider_data.get("name") or "",
            config={k: str(v) for k, v in provider_config.items()},
        )

    return UserEntry(
        token=item.get("token"),
        auth_provider=auth_provider,
        client_certificate_data=_b64decode(
            item.get("client-certificate-data"), "client-certificate-data"
        ),
        client_key_data=_b64decode(item.get("client-key-data"), "client-key-data"),
        extra=extra,
    )


def _user_to_dict(entry: UserEntry) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if entry.token:
        data["token"] = entry.token
    if entry.auth_provider is not None:
        data["auth-provider"] = {
            "name": entry.auth_provider.name,
            "config": dict(entry.auth_provider.config),
        }
    if entry.client_certificate_data:
        data["client-certificate-data"] = _b64encode(entry.client_certificate_data)
    if entry.client_key_data:
        data["client-key-data"] = _b64encode(entry.client_key_data)
    data.update(entry.extra)
    return data


def _context_from_dict(item: dict[str, Any]) -> ContextEntry:
    extra = {k: v for k, v in item.items() if k not in ("cluster", "user")}
    return ContextEntry(
        cluster=item.get("cluster") or "",
        user=item.get("user") or "",
        extra=extra,
    )


def _context_to_dict(entry: ContextEntry) -> dict[str, Any]:
    data: dict[str, Any] = {"cluster": entry.cluster, "user": entry.user}
    data.update(entry.extra)
    return data


def load_store(path: str) -> CredentialStore:
    """Load a kubeconfig file into a snapshot.

    A missing or empty file yields an empty store.

    Args:
        path: Path to the kubeconfig file

    Returns:
        CredentialStore snapshot

    Raises:
        CredentialStoreError: If the file cannot be read or parsed
    """
    if not os.path.exists(path):
        logger.debug(f"Kubeconfig {path} does not exist yet, starting empty")
        return CredentialStore()

    try:
        content = Path(path).read_text()
    except OSError as e:
        raise CredentialStoreError(f"Failed to read kubeconfig {path}", str(e)) from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise CredentialStoreError(f"Failed to parse kubeconfig {path}", str(e)) from e

    if data is None:
        return CredentialStore()

    return CredentialStore.from_dict(data)


def dump_store(store: CredentialStore) -> str:
    return yaml.safe_dump(store.to_dict(), default_flow_style=False, sort_keys=False)


def save_store(store: CredentialStore, path: str) -> None:
    """Write a snapshot back, replacing the whole file.

    The content goes to a temporary file next to the destination which is
    then renamed over it, so readers never see a partially written file.

    Raises:
        CredentialStoreError: If the store is invalid or cannot be written
    """
    store.validate()
    content = dump_store(store)

    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".kubeconfig-", text=True)
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
        tmp_path = None
    except OSError as e:
        raise CredentialStoreError(f"Failed to write kubeconfig {path}", str(e)) from e
    finally:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)

    logger.debug(f"Wrote kubeconfig {path}")


def create_store_file(store: CredentialStore, path: str) -> None:
    """Write a snapshot to a file that must not exist yet.

    Raises:
        DestinationExistsError: If the file already exists
        CredentialStoreError: If the file cannot be written
    """
    store.validate()
    content = dump_store(store)

    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError as e:
        raise DestinationExistsError(
            f"The destination file {path} already exists. Please specify a different destination."
        ) from e
    except OSError as e:
        raise CredentialStoreError(f"Failed to create {path}", str(e)) from e

    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
    except OSError as e:
        raise CredentialStoreError(f"Failed to write {path}", str(e)) from e


def get_cert_file_path(cluster_name: str, certs_dir: str) -> str:
    return str(Path(certs_dir) / f"{cluster_name}-ca.crt")


def write_certificate(ca_cert: str, cluster_name: str, certs_dir: str) -> str:
    """Store an installation's CA certificate and return its path.

    Raises:
        CredentialStoreError: If the certificate cannot be written
    """
    cert_path = get_cert_file_path(cluster_name, certs_dir)
    try:
        Path(certs_dir).mkdir(parents=True, exist_ok=True)
        Path(cert_path).write_text(ca_cert)
    except OSError as e:
        raise CredentialStoreError(
            f"Failed to write CA certificate for {cluster_name}",
            f"{cert_path}: {e}"
        ) from e

    logger.debug(f"Stored CA certificate at {cert_path}")
    return cert_path
