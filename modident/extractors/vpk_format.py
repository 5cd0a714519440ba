# ==============================================================================
# VPK FORMAT MODULE
# ==============================================================================
# Constants and data classes describing Valve VPK directory files.
#
# VPK Format Overview:
#   - Header: 12 bytes (v1) or 28 bytes (v2), little endian
#   - Directory tree: extension -> path -> file name, each level terminated
#     by an empty string, followed by an 18 byte entry record and optional
#     preload ("inline") bytes
#   - Embedded data: payloads of entries whose archive index is 0x7FFF live
#     right after the tree in the _dir.vpk itself
#   - Chunks: every other archive index N refers to a sibling file _NNN.vpk
#
# References:
#   - https://developer.valvesoftware.com/wiki/VPK_(file_format)
# ==============================================================================

import struct
from dataclasses import dataclass, field
from typing import Optional, Tuple


# ==============================================================================
# VPK CONSTANTS
# ==============================================================================

# Magic number at offset 0 (stored little endian: 34 12 AA 55)
VPK_SIGNATURE = 0x55AA1234

# Supported header revisions
VPK_VERSION_1 = 1
VPK_VERSION_2 = 2
SUPPORTED_VERSIONS = (VPK_VERSION_1, VPK_VERSION_2)

# Header layouts: signature, version, tree size [, four v2 section sizes]
HEADER_V1_FORMAT = '<III'
HEADER_V2_FORMAT = '<IIIIIII'
HEADER_V1_SIZE = struct.calcsize(HEADER_V1_FORMAT)   # 12
HEADER_V2_SIZE = struct.calcsize(HEADER_V2_FORMAT)   # 28

# Entry record: crc32, preload bytes, archive index, offset, length, terminator
ENTRY_FORMAT = '<IHHIIH'
ENTRY_SIZE = struct.calcsize(ENTRY_FORMAT)           # 18

# Archive index meaning "payload is stored in the directory file itself"
SAME_FILE_ARCHIVE_INDEX = 0x7FFF

# Every entry record ends with this value
ENTRY_TERMINATOR = 0xFFFF

# Placeholder the format uses for an empty path or extension
EMPTY_COMPONENT = ' '

# Directory strings are decoded leniently so the exact bytes round-trip
STRING_ENCODING = 'utf-8'
STRING_ERRORS = 'surrogateescape'


def header_size_for(version: int) -> int:
    """Size in bytes of the header for the given format version."""
    return HEADER_V2_SIZE if version >= VPK_VERSION_2 else HEADER_V1_SIZE


# ==============================================================================
# HEADER DATA CLASS
# ==============================================================================
@dataclass(frozen=True)
class VpkHeader:
    """
    Decoded VPK header.

    Attributes:
        signature (int):   Magic number, always VPK_SIGNATURE once validated
        version (int):     Format revision (1 or 2)
        tree_size (int):   Declared size of the directory tree in bytes
        file_data_section_size (int):  v2 only, size of embedded payload data
        archive_md5_section_size (int): v2 only, size of the chunk hash table
        other_md5_section_size (int):  v2 only, size of the tree/self hashes
        signature_section_size (int):  v2 only, size of the signature block
    """
    signature: int
    version: int
    tree_size: int
    file_data_section_size: Optional[int] = None
    archive_md5_section_size: Optional[int] = None
    other_md5_section_size: Optional[int] = None
    signature_section_size: Optional[int] = None

    @property
    def size(self) -> int:
        """Size of this header on disk."""
        return header_size_for(self.version)

    def pack(self) -> bytes:
        """Serialize back to the on-disk layout."""
        if self.version >= VPK_VERSION_2:
            return struct.pack(
                HEADER_V2_FORMAT,
                self.signature,
                self.version,
                self.tree_size,
                self.file_data_section_size or 0,
                self.archive_md5_section_size or 0,
                self.other_md5_section_size or 0,
                self.signature_section_size or 0,
            )
        return struct.pack(HEADER_V1_FORMAT, self.signature, self.version, self.tree_size)


# ==============================================================================
# ENTRY DATA CLASS
# ==============================================================================
@dataclass(frozen=True)
class VpkEntry:
    """
    One file record from the directory tree.

    The raw ``extension``, ``directory`` and ``name`` strings are kept exactly
    as stored (including the ' ' placeholder) so the tree can be written back
    byte for byte. ``full_path`` is the normalized logical path.

    Attributes:
        extension (str):     Extension group string, without the dot
        directory (str):     Path group string
        name (str):          Base file name
        crc32 (int):         CRC-32 of the complete file content
        preload_bytes (int): Number of bytes stored inline in the tree
        archive_index (int): Chunk number, or SAME_FILE_ARCHIVE_INDEX
        entry_offset (int):  Offset of the payload inside its chunk
        entry_length (int):  Payload length, not counting preload bytes
        terminator (int):    Record terminator (0xFFFF)
        preload_data (bytes): The inline bytes themselves
    """
    extension: str
    directory: str
    name: str
    crc32: int
    preload_bytes: int
    archive_index: int
    entry_offset: int
    entry_length: int
    terminator: int = ENTRY_TERMINATOR
    preload_data: bytes = field(default=b'', repr=False)

    @property
    def full_path(self) -> str:
        """Logical path, e.g. ``materials/hero/skin.vmat_c``."""
        directory = '' if self.directory == EMPTY_COMPONENT else self.directory
        if self.extension == EMPTY_COMPONENT or not self.extension:
            filename = self.name
        else:
            filename = f"{self.name}.{self.extension}"
        return '/'.join(part for part in (directory, filename) if part)

    @property
    def crc32_hex(self) -> str:
        return f"{self.crc32:08x}"

    @property
    def file_size(self) -> int:
        """Full size of the file: inline bytes plus the payload."""
        return self.preload_bytes + self.entry_length

    @property
    def is_same_file(self) -> bool:
        """True when the payload follows the tree in the directory file."""
        return self.archive_index == SAME_FILE_ARCHIVE_INDEX

    def pack_record(self) -> bytes:
        """Serialize the 18 byte record that follows the file name."""
        return struct.pack(
            ENTRY_FORMAT,
            self.crc32,
            self.preload_bytes,
            self.archive_index,
            self.entry_offset,
            self.entry_length,
            self.terminator,
        )


# ==============================================================================
# PARSE OPTIONS / RESULT
# ==============================================================================
@dataclass(frozen=True)
class ParseOptions:
    """
    Options handed to the parser and carried through to fingerprinting.

    The parser itself does not read these; they travel on the parsed result
    so the fingerprint engine knows which expensive digests were requested.
    """
    include_exact_digest: bool = False
    include_partial_digest: bool = False


# Group structure of a directory tree, as read:
#   ((extension, ((directory, file_count), ...)), ...)
# Empty groups (file_count 0, or an extension with no paths) are kept so the
# tree can be re-encoded byte for byte.
TreeLayout = Tuple[Tuple[str, Tuple[Tuple[str, int], ...]], ...]


@dataclass(frozen=True)
class ParsedContainer:
    """
    Result of parsing a directory file.

    Attributes:
        header (VpkHeader):        Decoded header
        entries (tuple):           VpkEntry records in on-disk order
        tree_bytes_consumed (int): Bytes the tree walk actually read
        options (ParseOptions):    Options passed to parse()
        layout (TreeLayout):       Extension and path groups in on-disk order,
                                   or None when built without a tree walk
    """
    header: VpkHeader
    entries: Tuple[VpkEntry, ...]
    tree_bytes_consumed: int
    options: ParseOptions = field(default_factory=ParseOptions)
    layout: Optional[TreeLayout] = field(default=None, repr=False)

    @property
    def version(self) -> int:
        return self.header.version

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    @property
    def tree_offset(self) -> int:
        """Offset of the first tree byte in the directory file."""
        return self.header.size

    @property
    def data_offset(self) -> int:
        """Offset where same-file payloads start."""
        return self.header.size + self.header.tree_size

    @property
    def chunk_indices(self) -> Tuple[int, ...]:
        """Sorted external chunk numbers referenced by the entries."""
        return tuple(sorted({
            e.archive_index for e in self.entries
            if e.archive_index != SAME_FILE_ARCHIVE_INDEX
        }))

    def get_total_size(self) -> int:
        """Total size of all files described by the tree."""
        return sum(e.file_size for e in self.entries)
