# ==============================================================================
# FINGERPRINT ENGINE MODULE
# ==============================================================================
# Derives the identity digests of a parsed VPK.
#
# Digests (strongest to weakest guarantee):
#   - exact digest:      SHA256 of the whole file (opt-in, most expensive)
#   - content signature: SHA256 of the sorted (path, length, crc) lines,
#                        insensitive to entry order and junk files
#   - fast hash:         xxHash64 of the structural summary in parse order,
#                        paired with the file size
#   - partial digest:    root of a block hash tree (opt-in)
#
# Fast hash input layout (stable, changing it invalidates stored hashes):
#   u32le entry_count
#   for each entry in parse order:
#       utf8(full_path) 0x00 u32le(crc32) u32le(entry_length)
#
# Usage:
#   engine = FingerprintEngine()
#   fp = engine.compute_fingerprint(parsed, data)
#   print(fp.content_signature, fp.fast_hash, fp.file_size)
# ==============================================================================

import hashlib
import logging
import os
import struct
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional, Tuple

from modident.extractors.vpk_format import (
    STRING_ENCODING,
    STRING_ERRORS,
    ParsedContainer,
    ParseOptions,
)
from .errors import DigestComputationFailure
from .hasher import FileHasher

logger = logging.getLogger(__name__)


# Files that never count towards content identity
JUNK_FILE_NAMES = frozenset({'thumbs.db', '.ds_store', 'desktop.ini'})
JUNK_EXTENSIONS = frozenset({'tmp', 'temp'})


# ==============================================================================
# FINGERPRINT DATA CLASS
# ==============================================================================
@dataclass(frozen=True)
class Fingerprint:
    """
    Identity digests of one archive.

    ``content_signature`` and ``fast_hash`` are always present. ``exact_digest``
    and ``partial_digest`` are None unless they were requested.

    Attributes:
        content_signature (str): Order-insensitive structural SHA256
        fast_hash (str):         xxHash64 of the ordered structural summary
        file_size (int):         Size of the directory file in bytes
        entry_count (int):       Number of entries in the tree
        format_version (int):    VPK header version
        has_multiple_chunks (bool): Payloads spread over several chunks
        has_inline_data (bool):  Some entry carries preload bytes
        manifest_hash (str):     SHA256 of sorted lower-cased path/crc lines
        exact_digest (str):      SHA256 of the whole file, or None
        partial_digest (str):    Block hash tree root, or None
        partial_leaves (tuple):  Leaf hashes behind partial_digest, or None
    """
    content_signature: str
    fast_hash: str
    file_size: int
    entry_count: int
    format_version: int
    has_multiple_chunks: bool
    has_inline_data: bool
    manifest_hash: str
    exact_digest: Optional[str] = None
    partial_digest: Optional[str] = None
    partial_leaves: Optional[Tuple[str, ...]] = None

    def to_dict(self) -> dict:
        """Plain dict for JSON output."""
        data = asdict(self)
        if self.partial_leaves is not None:
            data['partial_leaves'] = list(self.partial_leaves)
        return data


# ==============================================================================
# FINGERPRINT ENGINE CLASS
# ==============================================================================
class FingerprintEngine:
    """
    Computes fingerprints from parsed containers.

    Holds only configuration; every call is a pure function of its inputs.

    Attributes:
        hasher (FileHasher): Hashing primitives
        workers (int):       Threads used for the independent digests (1 = serial)
        block_size (int):    Leaf block size of the partial-similarity tree
    """

    def __init__(self, hasher: Optional[FileHasher] = None, workers: int = 1,
                 block_size: int = FileHasher.DEFAULT_BLOCK_SIZE):
        self.hasher = hasher or FileHasher()
        self.workers = max(1, workers)
        self.block_size = block_size

    # ==========================================================================
    # PUBLIC API
    # ==========================================================================

    def compute_fingerprint(self, parsed: ParsedContainer, raw_bytes: bytes,
                            options: Optional[ParseOptions] = None) -> Fingerprint:
        """
        Compute the fingerprint of an archive held in memory.

        Args:
            parsed: Result of VpkParser.parse() for ``raw_bytes``
            raw_bytes: The complete directory file
            options: Which opt-in digests to compute (defaults to parsed.options)

        Returns:
            Fingerprint
        """
        options = options or parsed.options

        exact = None
        if options.include_exact_digest:
            exact = lambda: self.hasher.hash_bytes_sha256(raw_bytes)

        partial = None
        if options.include_partial_digest:
            partial = lambda: self.hasher.hash_tree(raw_bytes, self.block_size)

        return self._compute(parsed, len(raw_bytes), exact, partial)

    def compute_fingerprint_from_file(self, parsed: ParsedContainer, file_path: str,
                                      options: Optional[ParseOptions] = None) -> Fingerprint:
        """
        Compute the fingerprint of an archive on disk.

        The exact digest is streamed from the file rather than from memory.

        Raises:
            DigestComputationFailure: the file cannot be read
        """
        options = options or parsed.options

        try:
            file_size = os.path.getsize(file_path)
        except OSError as e:
            raise DigestComputationFailure(f"Could not stat {file_path}: {e}") from e

        exact = None
        if options.include_exact_digest:
            exact = lambda: self.hasher.hash_file_sha256(file_path)

        partial = None
        if options.include_partial_digest:
            partial = lambda: self.hasher.hash_tree(_read_file(file_path), self.block_size)

        return self._compute(parsed, file_size, exact, partial)

    # ==========================================================================
    # INDIVIDUAL DIGESTS
    # ==========================================================================

    def fast_hash(self, parsed: ParsedContainer) -> str:
        """xxHash64 over the ordered structural summary."""
        summary = bytearray(struct.pack('<I', parsed.entry_count))
        for entry in parsed.entries:
            summary += entry.full_path.encode(STRING_ENCODING, STRING_ERRORS)
            summary += b'\x00'
            summary += struct.pack('<II', entry.crc32, entry.entry_length)
        return self.hasher.hash_bytes_xxh64(bytes(summary))

    def content_signature(self, parsed: ParsedContainer) -> str:
        """SHA256 over the sorted (path, length, crc) lines, junk files excluded."""
        lines = sorted(
            f"{normalize_path(entry.full_path)}\x00{entry.entry_length}\x00{entry.crc32_hex}"
            for entry in parsed.entries
            if not is_junk_entry(entry.full_path, entry.extension)
        )
        content = '\n'.join(lines).encode(STRING_ENCODING, STRING_ERRORS)
        return hashlib.sha256(content).hexdigest()

    def manifest_hash(self, parsed: ParsedContainer) -> str:
        """SHA256 over sorted ``lower(path)\\0crc`` lines."""
        lines = sorted(
            f"{entry.full_path.lower()}\x00{entry.crc32_hex}\n"
            for entry in parsed.entries
        )
        return hashlib.sha256(''.join(lines).encode(STRING_ENCODING, STRING_ERRORS)).hexdigest()

    @staticmethod
    def has_multiple_chunks(parsed: ParsedContainer) -> bool:
        """
        True when entries reference more than one numbered chunk.

        The same-file index is not a chunk: payloads stored in the directory
        file never count.
        """
        return len(parsed.chunk_indices) > 1

    @staticmethod
    def has_inline_data(parsed: ParsedContainer) -> bool:
        return any(entry.preload_bytes > 0 for entry in parsed.entries)

    # ==========================================================================
    # PRIVATE HELPERS
    # ==========================================================================

    def _compute(self, parsed: ParsedContainer, file_size: int,
                 exact: Optional[Callable[[], str]],
                 partial: Optional[Callable[[], Tuple[str, list]]]) -> Fingerprint:
        jobs: Dict[str, Callable] = {
            'content_signature': lambda: self.content_signature(parsed),
            'fast_hash': lambda: self.fast_hash(parsed),
            'manifest_hash': lambda: self.manifest_hash(parsed),
        }
        if exact is not None:
            jobs['exact_digest'] = exact
        if partial is not None:
            jobs['partial'] = partial

        results = self._run_jobs(jobs)

        partial_digest = None
        partial_leaves = None
        if 'partial' in results:
            partial_digest, leaves = results['partial']
            partial_leaves = tuple(leaves)

        fingerprint = Fingerprint(
            content_signature=results['content_signature'],
            fast_hash=results['fast_hash'],
            file_size=file_size,
            entry_count=parsed.entry_count,
            format_version=parsed.version,
            has_multiple_chunks=self.has_multiple_chunks(parsed),
            has_inline_data=self.has_inline_data(parsed),
            manifest_hash=results['manifest_hash'],
            exact_digest=results.get('exact_digest'),
            partial_digest=partial_digest,
            partial_leaves=partial_leaves,
        )

        logger.debug(
            "Fingerprint: %d entries, fast=%s, sig=%s",
            fingerprint.entry_count, fingerprint.fast_hash, fingerprint.content_signature[:16],
        )
        return fingerprint

    def _run_jobs(self, jobs: Dict[str, Callable]) -> Dict[str, object]:
        if self.workers == 1 or len(jobs) == 1:
            return {name: job() for name, job in jobs.items()}

        with ThreadPoolExecutor(max_workers=min(self.workers, len(jobs))) as executor:
            futures = {name: executor.submit(job) for name, job in jobs.items()}
            # result() re-raises the job's exception in this thread
            return {name: future.result() for name, future in futures.items()}


def normalize_path(full_path: str) -> str:
    """Lower-case the path and use forward slashes."""
    return full_path.lower().replace('\\', '/')


def is_junk_entry(full_path: str, extension: str) -> bool:
    """True for OS/editor leftovers that should not affect content identity."""
    basename = full_path.rsplit('/', 1)[-1].lower()
    return basename in JUNK_FILE_NAMES or extension.lower() in JUNK_EXTENSIONS


def _read_file(file_path: str) -> bytes:
    try:
        with open(file_path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise DigestComputationFailure(f"Could not read {file_path}: {e}") from e
