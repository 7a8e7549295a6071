"""
Error taxonomy for OfflineMemory.

- ValidationError: malformed input to a tool-like operation
- BackendUnavailable: the semantic (embedding) backend did not answer
- StoreError: the SQLite store could not be opened, written or read
- PartialFailure: some inserts of a batch failed, the rest were stored
"""


class OfflineMemoryError(Exception):
    """Base class for all OfflineMemory errors."""


class ValidationError(OfflineMemoryError):
    """Raised when a tool operation receives malformed parameters."""


class BackendUnavailable(OfflineMemoryError):
    """Raised when the embedding backend fails or times out."""


class StoreError(OfflineMemoryError):
    """Raised when the underlying store fails to open, insert, query or delete."""


class PartialFailure(OfflineMemoryError):
    """Raised when a batch was only partially persisted."""

    def __init__(self, stored: int, failed: int):
        self.stored = stored
        self.failed = failed
        super().__init__(f"{failed} insert(s) failed, {stored} stored")
