"""
Abstract base class for credential writers.

A writer persists one cluster, user and context triple. The shared
kubeconfig and a self-contained export file have different side effects
and error semantics, so each gets its own concrete writer behind this
interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..kubeconfig import StoreEntry


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a write.

    Args:
        context_name: Name of the written context
        already_existed: Whether the context was refreshed rather than created
        path: File the entry was written to
    """

    context_name: str
    already_existed: bool
    path: str


class CredentialWriter(ABC):
    """Abstract base class for credential writers.

    Example:
        >>> writer = get_writer(config, select=True)
        >>> writer.ensure_writable()
        >>> result = writer.write(entry)
        >>> result.already_existed
        False
    """

    @abstractmethod
    def ensure_writable(self) -> None:
        """Fail early if the destination cannot receive a new entry.

        Callers run this before producing side effects of their own (such
        as writing CA files), so a refused write leaves nothing behind.

        Raises:
            DestinationExistsError: If the destination must not be overwritten
        """
        pass

    @abstractmethod
    def write(self, entry: StoreEntry) -> WriteResult:
        """Persist the entry.

        Raises:
            DestinationExistsError: If the destination must not be overwritten
            CredentialStoreError: If the store cannot be read or written
        """
        pass

    def get_description(self) -> str:
        """Get human-readable description of this writer."""
        return self.__class__.__name__
