"""
Writer that exports a single entry to a new standalone kubeconfig.
"""

import logging
import os

from ..exceptions import DestinationExistsError
from ..kubeconfig import CredentialStore, StoreEntry, create_store_file
from .base import CredentialWriter, WriteResult

logger = logging.getLogger(__name__)


class SelfContainedWriter(CredentialWriter):
    """Write an entry to a file of its own.

    The destination must not exist; an existing file is never overwritten.
    The shared kubeconfig is neither read nor written.

    Args:
        path: Destination file
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def ensure_writable(self) -> None:
        if os.path.exists(self.path):
            raise DestinationExistsError(
                f"The destination file {self.path} already exists. Please specify a different destination."
            )

    def write(self, entry: StoreEntry) -> WriteResult:
        self.ensure_writable()

        store, _ = CredentialStore().upsert_entry(entry)
        store = store.with_current_context(entry.context_name)
        store.validate_context(entry.context_name)

        create_store_file(store, self.path)

        logger.info(f"Wrote context {entry.context_name} to {self.path}")
        return WriteResult(entry.context_name, False, self.path)

    def get_description(self) -> str:
        return f"Self-contained kubeconfig ({self.path})"
