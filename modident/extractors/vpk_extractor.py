# ==============================================================================
# VPK EXTRACTOR MODULE
# ==============================================================================
# Reads entry contents out of a VPK pack: the _dir.vpk directory file plus its
# numbered sibling chunks.
#
# Pack layout on disk:
#   pak01_dir.vpk   header + tree (+ same-file payloads after the tree)
#   pak01_000.vpk   chunk 0
#   pak01_001.vpk   chunk 1
#   ...
#
# A single-file pack (e.g. "mymod.vpk") has no chunks; every entry uses the
# same-file archive index.
#
# Usage:
#   with VPKExtractor("pak01_dir.vpk") as ext:
#       for entry in ext.list_files():
#           print(entry.full_path, entry.file_size)
#       ext.extract_all("output/")
# ==============================================================================

import fnmatch
import logging
import os
import zlib
from typing import BinaryIO, Callable, Dict, List, Optional

from modident.core.errors import MalformedContainer
from .vpk_format import HEADER_V2_SIZE, ParsedContainer, VpkEntry
from .vpk_parser import VpkParser

logger = logging.getLogger(__name__)

DIR_SUFFIX = '_dir.vpk'


class VPKExtractor:
    """
    Extractor for Valve VPK packs.

    Payloads are read on demand. Chunk files are opened lazily and kept open
    until close().

    Attributes:
        archive_path (str):  Path of the directory file
        verify_crc (bool):   Check the CRC-32 of every file read
        parsed (ParsedContainer): Parsed directory, once open
    """

    def __init__(self, archive_path: str = None, verify_crc: bool = True,
                 parser: Optional[VpkParser] = None):
        self.archive_path = archive_path
        self.verify_crc = verify_crc
        self.parser = parser or VpkParser()

        self.parsed: Optional[ParsedContainer] = None
        self._data: bytes = b''
        self._is_open = False
        self._file_index: Dict[str, VpkEntry] = {}
        self._chunk_handles: Dict[int, BinaryIO] = {}

        if archive_path:
            self.open(archive_path)

    @staticmethod
    def detect(path: str) -> bool:
        """Check the header of a file without reading its tree."""
        if not os.path.isfile(path):
            return False
        with open(path, 'rb') as f:
            head = f.read(HEADER_V2_SIZE)
        return VpkParser().detect(head, input_size=os.path.getsize(path))

    # ==========================================================================
    # OPEN / CLOSE
    # ==========================================================================

    def open(self, archive_path: str) -> bool:
        """
        Open and parse a directory file.

        Raises:
            OSError: the file cannot be read
            MalformedContainer / UnsupportedVersion: the file is not a usable VPK
        """
        self.close()

        with open(archive_path, 'rb') as f:
            data = f.read()

        self.parsed = self.parser.parse(data)
        self._data = data
        self.archive_path = archive_path
        self._file_index = {entry.full_path.lower(): entry for entry in self.parsed.entries}
        self._is_open = True

        logger.info(
            "Opened %s: VPK v%d, %d files, %d chunk(s)",
            os.path.basename(archive_path), self.parsed.version,
            self.parsed.entry_count, len(self.parsed.chunk_indices),
        )
        return True

    def close(self):
        """Close chunk handles and forget the directory."""
        for handle in self._chunk_handles.values():
            handle.close()
        self._chunk_handles = {}
        self._file_index = {}
        self._data = b''
        self.parsed = None
        self._is_open = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ==========================================================================
    # LISTING
    # ==========================================================================

    def list_files(self) -> List[VpkEntry]:
        """All entries in on-disk order."""
        self._require_open()
        return list(self.parsed.entries)

    def find_files(self, pattern: str) -> List[VpkEntry]:
        """
        Find files matching a glob pattern (case-insensitive).

        Args:
            pattern: Glob pattern (e.g., "*.vmat_c", "materials/*")
        """
        pattern_lower = pattern.lower()
        return [
            entry for entry in self.list_files()
            if fnmatch.fnmatch(entry.full_path.lower(), pattern_lower)
        ]

    def get_entry(self, file_path: str) -> Optional[VpkEntry]:
        self._require_open()
        return self._file_index.get(file_path.replace('\\', '/').lower())

    def get_chunk_path(self, archive_index: int) -> str:
        """Path of the numbered chunk next to the directory file."""
        self._require_open()
        if not self.archive_path.lower().endswith(DIR_SUFFIX):
            raise MalformedContainer(
                f"{os.path.basename(self.archive_path)} references chunk {archive_index} "
                f"but is not a _dir.vpk"
            )
        prefix = self.archive_path[:-len(DIR_SUFFIX)]
        return f"{prefix}_{archive_index:03d}.vpk"

    # ==========================================================================
    # DATA ACCESS
    # ==========================================================================

    def get_preview(self, file_path: str) -> Optional[bytes]:
        """Inline preload bytes of a file, without touching any chunk."""
        entry = self.get_entry(file_path)
        return entry.preload_data if entry else None

    def get_file_data(self, file_path: str) -> Optional[bytes]:
        """
        Get the full content of a file.

        Returns:
            File contents, or None if the path is not in the pack

        Raises:
            MalformedContainer: payload out of range or CRC mismatch
            OSError: a chunk file is missing or unreadable
        """
        entry = self.get_entry(file_path)
        if entry is None:
            return None
        return self.read_entry(entry)

    def read_entry(self, entry: VpkEntry) -> bytes:
        self._require_open()

        if entry.is_same_file or entry.entry_length == 0:
            data = self.parser.read_entry_data(self.parsed, self._data, entry)
        else:
            data = entry.preload_data + self._read_chunk(
                entry.archive_index, entry.entry_offset, entry.entry_length
            )

        if self.verify_crc:
            actual = zlib.crc32(data) & 0xFFFFFFFF
            if actual != entry.crc32:
                raise MalformedContainer(
                    f"CRC mismatch for {entry.full_path}: "
                    f"expected {entry.crc32_hex}, got {actual:08x}"
                )
        return data

    # ==========================================================================
    # EXTRACTION
    # ==========================================================================

    def extract_file(self, file_path: str, output_path: str) -> bool:
        """
        Extract a single file.

        Returns:
            True if written, False if the path is not in the pack
        """
        data = self.get_file_data(file_path)
        if data is None:
            logger.warning("File not found in pack: %s", file_path)
            return False

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'wb') as f:
            f.write(data)
        return True

    def extract_all(self, output_dir: str,
                    progress_callback: Callable[[int, int, str], None] = None,
                    file_filter: Callable[[VpkEntry], bool] = None) -> int:
        """
        Extract every file into output_dir, keeping the pack's folder layout.

        Args:
            output_dir: Directory to extract files to
            progress_callback: Optional callback(current, total, filename)
            file_filter: Optional predicate selecting which entries to extract

        Returns:
            Number of files extracted
        """
        entries = self.list_files()
        if file_filter:
            entries = [e for e in entries if file_filter(e)]

        root = os.path.abspath(output_dir)
        total = len(entries)
        extracted = 0

        for idx, entry in enumerate(entries):
            if progress_callback:
                progress_callback(idx + 1, total, entry.full_path)

            output_path = os.path.abspath(os.path.join(root, entry.full_path))
            if os.path.commonpath([root, output_path]) != root:
                raise MalformedContainer(f"Entry path escapes output directory: {entry.full_path}")

            os.makedirs(os.path.dirname(output_path), exist_ok=True)
            with open(output_path, 'wb') as f:
                f.write(self.read_entry(entry))
            extracted += 1

        logger.info("Extracted %d of %d files to %s", extracted, total, output_dir)
        return extracted

    # ==========================================================================
    # PRIVATE HELPERS
    # ==========================================================================

    def _require_open(self):
        if not self._is_open:
            raise RuntimeError("Archive is not open")

    def _read_chunk(self, archive_index: int, offset: int, length: int) -> bytes:
        handle = self._chunk_handles.get(archive_index)
        if handle is None:
            chunk_path = self.get_chunk_path(archive_index)
            handle = open(chunk_path, 'rb')
            self._chunk_handles[archive_index] = handle
            logger.debug("Opened chunk %s", chunk_path)

        handle.seek(offset)
        data = handle.read(length)
        if len(data) != length:
            raise MalformedContainer(
                f"Chunk {archive_index} truncated: wanted {length} bytes, got {len(data)}",
                offset,
            )
        return data
