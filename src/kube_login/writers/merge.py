"""
Writer that merges entries into the shared kubeconfig.
"""

import logging

from ..kubeconfig import StoreEntry, load_store, save_store
from .base import CredentialWriter, WriteResult

logger = logging.getLogger(__name__)


class MergeWriter(CredentialWriter):
    """Upsert an entry into the shared kubeconfig.

    Entries of other installations are carried over untouched. The file is
    loaded once, updated in memory and replaced as a whole.

    Args:
        store_path: Path to the shared kubeconfig
        select: Make the written context the current context
    """

    def __init__(self, store_path: str, select: bool = True) -> None:
        self.store_path = store_path
        self.select = select

    def ensure_writable(self) -> None:
        # The shared kubeconfig is always merged into
        pass

    def write(self, entry: StoreEntry) -> WriteResult:
        store = load_store(self.store_path)
        store, existed = store.upsert_entry(entry)
        if self.select:
            store = store.with_current_context(entry.context_name)

        store.validate_context(entry.context_name)
        save_store(store, self.store_path)

        logger.info(
            f"{'Updated' if existed else 'Created'} context {entry.context_name} in {self.store_path}"
        )
        return WriteResult(entry.context_name, existed, self.store_path)

    def get_description(self) -> str:
        return f"Shared kubeconfig ({self.store_path})"
