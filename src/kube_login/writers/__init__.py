"""
Credential writers.

This package contains the concrete ways of persisting a login result,
all implementing the CredentialWriter interface defined in base.py.
"""

from .base import CredentialWriter, WriteResult
from .merge import MergeWriter
from .selfcontained import SelfContainedWriter

__all__ = ["CredentialWriter", "WriteResult", "MergeWriter", "SelfContainedWriter"]
