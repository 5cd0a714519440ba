# ==============================================================================
# FILE HASHER MODULE
# ==============================================================================
# Hashing primitives used by the fingerprint engine:
#   - SHA-256 (secure, exact identity) over bytes or a file on disk
#   - xxHash64 (fast, non-cryptographic) over bytes
#   - Block hash tree: SHA-256 per fixed-size block, reduced pairwise to a root
#
# Usage:
#   hasher = FileHasher()
#   digest = hasher.hash_bytes_sha256(data)
#   digest = hasher.hash_file_sha256("pak01_dir.vpk")
#   root, leaves = hasher.hash_tree(data, block_size=65536)
#
# Performance notes:
#   - Files are read in 256KB chunks into a reused buffer
#   - Files above 10MB are hashed through a memory map
#   - hashlib releases the GIL on large updates, so digests can run in threads
# ==============================================================================

import hashlib
import mmap
import os
from typing import List, Tuple

import xxhash

from .errors import DigestComputationFailure


class FileHasher:
    """
    Hashing utility for archive fingerprints.

    Attributes:
        chunk_size (int): Size of chunks to read when hashing files.
                          Default is 256KB for good SSD throughput.
    """

    # Default chunk size for reading files (256KB)
    DEFAULT_CHUNK_SIZE = 262144

    # Threshold for using memory-mapped files (10MB)
    MMAP_THRESHOLD = 10 * 1024 * 1024

    # Default block size for the hash tree (64KB)
    DEFAULT_BLOCK_SIZE = 64 * 1024

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        """
        Initialize the file hasher.

        Args:
            chunk_size: Size of chunks to read when hashing files.
        """
        self.chunk_size = chunk_size

    # ==========================================================================
    # SHA256 HASHING (exact identity)
    # ==========================================================================

    def hash_bytes_sha256(self, data: bytes) -> str:
        """
        Compute SHA256 hash of raw bytes.

        Args:
            data: Raw bytes to hash

        Returns:
            64-character hexadecimal SHA256 hash string
        """
        return hashlib.sha256(data).hexdigest()

    def hash_file_sha256(self, file_path: str) -> str:
        """
        Compute SHA256 hash of a file.

        Uses memory-mapped files for large files (>10MB).

        Args:
            file_path: Path to the file to hash

        Returns:
            64-character hexadecimal SHA256 hash string

        Raises:
            DigestComputationFailure: the file is missing or unreadable
        """
        try:
            file_size = os.path.getsize(file_path)

            if file_size > self.MMAP_THRESHOLD:
                return self._hash_file_mmap(file_path)

            sha256_hash = hashlib.sha256()
            with open(file_path, 'rb') as f:
                buffer = bytearray(self.chunk_size)
                mv = memoryview(buffer)
                while True:
                    n = f.readinto(mv)
                    if not n:
                        break
                    sha256_hash.update(mv[:n])

            return sha256_hash.hexdigest()

        except OSError as e:
            raise DigestComputationFailure(f"Could not hash file {file_path}: {e}") from e

    def _hash_file_mmap(self, file_path: str) -> str:
        """
        Hash a file using memory-mapped I/O.

        Args:
            file_path: Path to the file

        Returns:
            SHA256 hex string
        """
        sha256_hash = hashlib.sha256()

        with open(file_path, 'rb') as f:
            with mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mm:
                # Process in chunks to avoid memory issues with huge files
                file_size = mm.size()
                offset = 0
                while offset < file_size:
                    chunk_end = min(offset + self.chunk_size * 4, file_size)
                    sha256_hash.update(mm[offset:chunk_end])
                    offset = chunk_end

        return sha256_hash.hexdigest()

    # ==========================================================================
    # XXHASH64 (fast, non-cryptographic)
    # ==========================================================================

    def hash_bytes_xxh64(self, data: bytes, seed: int = 0) -> str:
        """
        Compute xxHash64 of raw bytes.

        Args:
            data: Raw bytes to hash
            seed: Hash seed (0 for stored fingerprints)

        Returns:
            16-character hexadecimal hash string
        """
        return xxhash.xxh64(data, seed=seed).hexdigest()

    # ==========================================================================
    # BLOCK HASH TREE (partial similarity)
    # ==========================================================================

    def hash_blocks(self, data: bytes, block_size: int = DEFAULT_BLOCK_SIZE) -> List[str]:
        """
        Split data into fixed-size blocks and SHA256 each one.

        The last block may be shorter. Empty input yields one leaf, the hash
        of the empty string, so every input has a root.
        """
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        if not data:
            return [hashlib.sha256(b'').hexdigest()]

        view = memoryview(data)
        return [
            hashlib.sha256(view[offset:offset + block_size]).hexdigest()
            for offset in range(0, len(data), block_size)
        ]

    def hash_tree(self, data: bytes, block_size: int = DEFAULT_BLOCK_SIZE) -> Tuple[str, List[str]]:
        """
        Compute the root of a binary hash tree over fixed-size blocks.

        Each level hashes the concatenated raw digests of adjacent pairs; an
        odd node at the end of a level is carried up unchanged.

        Args:
            data: Raw bytes to hash
            block_size: Leaf block size in bytes

        Returns:
            Tuple of (root_hex, leaf_hexes)
        """
        leaves = self.hash_blocks(data, block_size)
        return self.reduce_tree(leaves), leaves

    @staticmethod
    def reduce_tree(leaves: List[str]) -> str:
        """Reduce a list of hex digests to a single root digest."""
        if not leaves:
            raise ValueError("Cannot reduce an empty leaf list")

        level = [bytes.fromhex(leaf) for leaf in leaves]
        while len(level) > 1:
            next_level = [
                hashlib.sha256(level[i] + level[i + 1]).digest()
                for i in range(0, len(level) - 1, 2)
            ]
            if len(level) % 2:
                next_level.append(level[-1])
            level = next_level

        return level[0].hex()

    # ==========================================================================
    # UTILITY METHODS
    # ==========================================================================

    @staticmethod
    def compare_hashes(hash1: str, hash2: str) -> bool:
        """
        Compare two hash strings (case-insensitive).

        Args:
            hash1: First hash string
            hash2: Second hash string

        Returns:
            True if hashes match, False otherwise (including when either is None)
        """
        if hash1 is None or hash2 is None:
            return False
        return hash1.lower() == hash2.lower()
