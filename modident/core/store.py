# ==============================================================================
# CANDIDATE STORE MODULE
# ==============================================================================
# The read contract the match engine needs from a catalog, plus an in-memory
# implementation.
#
# A store answers four lookups, one per matching tier:
#   find_by_exact_digest(digest)                -> CandidateRecord or None
#   find_by_content_signature(signature)        -> [CandidateRecord, ...]
#   find_by_fast_hash_and_size(fast_hash, size) -> [CandidateRecord, ...]
#   find_by_partial_digest(digest)              -> [CandidateRecord, ...]
#
# The order of returned lists matters: the match engine breaks score ties in
# favour of the first candidate the store returned.
#
# Implementations:
#   - InMemoryCandidateStore (this module)
#   - Database (database.py, SQLAlchemy)
# ==============================================================================

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .fingerprint import Fingerprint


# ==============================================================================
# CANDIDATE RECORD DATA CLASS
# ==============================================================================
@dataclass(frozen=True)
class CandidateRecord:
    """
    A known archive from the catalog.

    Attributes:
        id (str):                Stable identifier of the record
        content_signature (str): Order-insensitive structural digest
        fast_hash (str):         Ordered structural digest
        file_size (int):         Size of the archive in bytes
        entry_count (int):       Number of entries
        format_version (int):    VPK version
        has_multiple_chunks (bool)
        has_inline_data (bool)
        exact_digest (str):      SHA256 of the archive, if known
        partial_digest (str):    Block hash tree root, if known
        mod_id (int):            Catalog item this archive belongs to
        mod_name (str):          Name of that catalog item
        source_path (str):       Where the archive was found in the mod download
    """
    id: str
    content_signature: str
    fast_hash: str
    file_size: int
    entry_count: int
    format_version: int
    has_multiple_chunks: bool = False
    has_inline_data: bool = False
    exact_digest: Optional[str] = None
    partial_digest: Optional[str] = None
    mod_id: Optional[int] = None
    mod_name: Optional[str] = None
    source_path: Optional[str] = None

    @classmethod
    def from_fingerprint(cls, record_id: str, fingerprint: Fingerprint, **context) -> 'CandidateRecord':
        """Build a record carrying the identity fields of a fingerprint."""
        return cls(
            id=record_id,
            content_signature=fingerprint.content_signature,
            fast_hash=fingerprint.fast_hash,
            file_size=fingerprint.file_size,
            entry_count=fingerprint.entry_count,
            format_version=fingerprint.format_version,
            has_multiple_chunks=fingerprint.has_multiple_chunks,
            has_inline_data=fingerprint.has_inline_data,
            exact_digest=fingerprint.exact_digest,
            partial_digest=fingerprint.partial_digest,
            **context,
        )


# ==============================================================================
# CANDIDATE STORE INTERFACE
# ==============================================================================
class CandidateStore(ABC):
    """
    Read-only lookup interface used by the match engine.

    Implementations may raise any exception on infrastructure failure; the
    engine passes it through to its caller unchanged.
    """

    @abstractmethod
    def find_by_exact_digest(self, digest: str) -> Optional[CandidateRecord]:
        """Return the record with this SHA256, or None."""

    @abstractmethod
    def find_by_content_signature(self, signature: str) -> List[CandidateRecord]:
        """Return all records sharing the content signature."""

    @abstractmethod
    def find_by_fast_hash_and_size(self, fast_hash: str, file_size: int) -> List[CandidateRecord]:
        """Return all records sharing both fast hash and file size."""

    @abstractmethod
    def find_by_partial_digest(self, digest: str) -> List[CandidateRecord]:
        """Return all records sharing the partial-similarity digest."""


# ==============================================================================
# IN-MEMORY STORE
# ==============================================================================
class InMemoryCandidateStore(CandidateStore):
    """
    List-backed store. Lookups return records in insertion order.

    Useful for tests and for matching against a small, preloaded catalog.
    """

    def __init__(self, records: Iterable[CandidateRecord] = ()):
        self._records: List[CandidateRecord] = list(records)

    def add(self, record: CandidateRecord):
        self._records.append(record)

    def __len__(self) -> int:
        return len(self._records)

    def find_by_exact_digest(self, digest: str) -> Optional[CandidateRecord]:
        for record in self._records:
            if record.exact_digest is not None and record.exact_digest == digest:
                return record
        return None

    def find_by_content_signature(self, signature: str) -> List[CandidateRecord]:
        return [r for r in self._records if r.content_signature == signature]

    def find_by_fast_hash_and_size(self, fast_hash: str, file_size: int) -> List[CandidateRecord]:
        return [
            r for r in self._records
            if r.fast_hash == fast_hash and r.file_size == file_size
        ]

    def find_by_partial_digest(self, digest: str) -> List[CandidateRecord]:
        return [
            r for r in self._records
            if r.partial_digest is not None and r.partial_digest == digest
        ]
