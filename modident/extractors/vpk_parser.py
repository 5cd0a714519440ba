# ==============================================================================
# VPK PARSER MODULE
# ==============================================================================
# Decodes a VPK directory file (header + directory tree) from an in-memory
# buffer. Parsing is strict: a bad signature, a truncated field or a tree
# whose consumed size differs from the declared size aborts with
# MalformedContainer. Nothing is padded or guessed.
#
# Usage:
#   parser = VpkParser()
#   parsed = parser.parse(data, ParseOptions(include_exact_digest=True))
#   for entry in parsed.entries:
#       print(entry.full_path, entry.crc32_hex, entry.file_size)
#
#   parsed = parser.parse_file("pak01_dir.vpk")
# ==============================================================================

import logging
import struct
from itertools import groupby
from typing import List, Optional, Tuple, Union

from modident.core.errors import MalformedContainer, UnsupportedVersion
from .vpk_format import (
    ENTRY_FORMAT,
    ENTRY_SIZE,
    ENTRY_TERMINATOR,
    HEADER_V1_FORMAT,
    HEADER_V1_SIZE,
    HEADER_V2_SIZE,
    STRING_ENCODING,
    STRING_ERRORS,
    SUPPORTED_VERSIONS,
    VPK_SIGNATURE,
    VPK_VERSION_2,
    ParsedContainer,
    ParseOptions,
    TreeLayout,
    VpkEntry,
    VpkHeader,
)

logger = logging.getLogger(__name__)

Buffer = Union[bytes, bytearray, memoryview]


# ==============================================================================
# BOUNDED READER
# ==============================================================================
class _TreeReader:
    """Cursor over a fixed region of the buffer. Reads past ``end`` fail."""

    def __init__(self, data: bytes, start: int, end: int):
        self.data = data
        self.start = start
        self.cursor = start
        self.end = end

    @property
    def consumed(self) -> int:
        return self.cursor - self.start

    def read_string(self) -> str:
        terminator = self.data.find(b'\x00', self.cursor, self.end)
        if terminator == -1:
            raise MalformedContainer("Unterminated string in directory tree", self.cursor)
        value = self.data[self.cursor:terminator].decode(STRING_ENCODING, STRING_ERRORS)
        self.cursor = terminator + 1
        return value

    def read_struct(self, fmt: str, size: int) -> tuple:
        if self.cursor + size > self.end:
            raise MalformedContainer(
                f"Truncated entry record: need {size} bytes, "
                f"{self.end - self.cursor} left in tree",
                self.cursor,
            )
        values = struct.unpack_from(fmt, self.data, self.cursor)
        self.cursor += size
        return values

    def read_bytes(self, count: int) -> bytes:
        if self.cursor + count > self.end:
            raise MalformedContainer(
                f"Truncated preload data: need {count} bytes, "
                f"{self.end - self.cursor} left in tree",
                self.cursor,
            )
        value = self.data[self.cursor:self.cursor + count]
        self.cursor += count
        return value


# ==============================================================================
# VPK PARSER CLASS
# ==============================================================================
class VpkParser:
    """
    Stateless parser for VPK directory files.

    One instance may be shared between threads; every call works on its own
    cursor over the caller's immutable buffer.
    """

    # ==========================================================================
    # PUBLIC API
    # ==========================================================================

    def parse(self, data: Buffer, options: Optional[ParseOptions] = None) -> ParsedContainer:
        """
        Parse a directory file held in memory.

        Args:
            data: Complete contents of the ``_dir.vpk`` file
            options: Digest options, carried through to the fingerprint engine

        Returns:
            ParsedContainer with entries in on-disk order

        Raises:
            MalformedContainer: bad signature, truncated data, or tree size mismatch
            UnsupportedVersion: signature is valid but the version is unknown
        """
        if not isinstance(data, bytes):
            data = bytes(data)

        header = self.read_header(data)

        tree_start = header.size
        tree_end = tree_start + header.tree_size
        reader = _TreeReader(data, tree_start, tree_end)
        entries, layout = self._read_tree(reader) if header.tree_size else ([], ())

        if reader.consumed != header.tree_size:
            raise MalformedContainer(
                f"Directory tree size mismatch: header declares {header.tree_size} "
                f"bytes, walk consumed {reader.consumed}"
            )

        logger.debug(
            "Parsed VPK v%d: %d entries, tree %d bytes",
            header.version, len(entries), reader.consumed,
        )

        return ParsedContainer(
            header=header,
            entries=tuple(entries),
            tree_bytes_consumed=reader.consumed,
            options=options or ParseOptions(),
            layout=layout,
        )

    def parse_file(self, file_path: str, options: Optional[ParseOptions] = None) -> ParsedContainer:
        """
        Read a directory file from disk and parse it.

        Args:
            file_path: Path to the ``_dir.vpk`` file
            options: Digest options

        Returns:
            ParsedContainer
        """
        with open(file_path, 'rb') as f:
            data = f.read()
        return self.parse(data, options)

    def read_header(self, data: Buffer, input_size: Optional[int] = None) -> VpkHeader:
        """
        Decode and validate just the header.

        Args:
            data: Start of the directory file, at least the header
            input_size: Total length of the file when ``data`` is only a
                        prefix of it; defaults to ``len(data)``

        Raises:
            MalformedContainer: buffer too small, bad signature, or tree
                                larger than the remaining input
            UnsupportedVersion: unknown version number
        """
        if len(data) < HEADER_V1_SIZE:
            raise MalformedContainer(
                f"Buffer too small for VPK header: {len(data)} < {HEADER_V1_SIZE} bytes"
            )

        signature, version, tree_size = struct.unpack_from(HEADER_V1_FORMAT, data, 0)
        if signature != VPK_SIGNATURE:
            raise MalformedContainer(f"Not a VPK: signature 0x{signature:08x}", 0)

        if version not in SUPPORTED_VERSIONS:
            raise UnsupportedVersion(version)

        extra = {}
        if version >= VPK_VERSION_2:
            if len(data) < HEADER_V2_SIZE:
                raise MalformedContainer(
                    f"Buffer too small for VPK v2 header: {len(data)} < {HEADER_V2_SIZE} bytes"
                )
            (extra['file_data_section_size'],
             extra['archive_md5_section_size'],
             extra['other_md5_section_size'],
             extra['signature_section_size']) = struct.unpack_from('<IIII', data, HEADER_V1_SIZE)

        header = VpkHeader(signature=signature, version=version, tree_size=tree_size, **extra)

        if input_size is None:
            input_size = len(data)
        if header.tree_size > input_size - header.size:
            raise MalformedContainer(
                f"Directory tree size {header.tree_size} exceeds input "
                f"({input_size - header.size} bytes after header)"
            )

        return header

    def detect(self, data: Buffer, input_size: Optional[int] = None) -> bool:
        """Quick check whether the buffer starts with a usable VPK header."""
        try:
            self.read_header(data, input_size)
            return True
        except (MalformedContainer, UnsupportedVersion):
            return False

    # ==========================================================================
    # SERIALIZATION / PAYLOAD ACCESS
    # ==========================================================================

    def serialize_tree(self, parsed: ParsedContainer) -> bytes:
        """
        Re-encode the directory tree from the parsed entries.

        Trees from parse() are written back group for group, empty groups
        included. Without a recorded layout, consecutive entries sharing an
        extension form one extension group, and consecutive entries sharing a
        path within it form one path group.

        Returns:
            Tree bytes, identical to the parsed region for trees from parse()
        """
        if parsed.tree_bytes_consumed == 0 and not parsed.entries:
            return b''

        layout = parsed.layout
        if layout is None:
            layout = _layout_of(parsed.entries)

        entries = iter(parsed.entries)
        out = bytearray()
        for extension, directories in layout:
            out += _encode_string(extension)
            for directory, count in directories:
                out += _encode_string(directory)
                for _ in range(count):
                    entry = next(entries)
                    out += _encode_string(entry.name)
                    out += entry.pack_record()
                    out += entry.preload_data
                out += b'\x00'
            out += b'\x00'
        out += b'\x00'
        return bytes(out)

    def read_entry_data(self, parsed: ParsedContainer, data: Buffer, entry: VpkEntry,
                        chunk_data: Optional[Buffer] = None) -> bytes:
        """
        Reassemble the full content of one entry.

        Same-file entries read their payload from ``data`` right after the
        tree. Chunked entries need the bytes of the matching ``_NNN.vpk`` in
        ``chunk_data``.

        Raises:
            MalformedContainer: payload range lies outside the source buffer
            ValueError: chunked entry requested without chunk_data
        """
        if entry.entry_length == 0:
            return entry.preload_data

        if entry.is_same_file:
            source = data
            start = parsed.data_offset + entry.entry_offset
        else:
            if chunk_data is None:
                raise ValueError(
                    f"{entry.full_path} lives in chunk {entry.archive_index}; chunk data required"
                )
            source = chunk_data
            start = entry.entry_offset

        end = start + entry.entry_length
        if end > len(source):
            raise MalformedContainer(
                f"Payload of {entry.full_path} ends at {end}, "
                f"source holds {len(source)} bytes",
                start,
            )
        return entry.preload_data + bytes(source[start:end])

    # ==========================================================================
    # PRIVATE HELPERS
    # ==========================================================================

    def _read_tree(self, reader: _TreeReader) -> Tuple[List[VpkEntry], TreeLayout]:
        entries = []
        layout = []
        while True:
            extension = reader.read_string()
            if not extension:
                break
            directories = []
            while True:
                directory = reader.read_string()
                if not directory:
                    break
                count = 0
                while True:
                    name = reader.read_string()
                    if not name:
                        break
                    entries.append(self._read_entry(reader, extension, directory, name))
                    count += 1
                directories.append((directory, count))
            layout.append((extension, tuple(directories)))
        return entries, tuple(layout)

    def _read_entry(self, reader: _TreeReader, extension: str, directory: str,
                    name: str) -> VpkEntry:
        record_offset = reader.cursor
        (crc32, preload_bytes, archive_index,
         entry_offset, entry_length, terminator) = reader.read_struct(ENTRY_FORMAT, ENTRY_SIZE)

        if terminator != ENTRY_TERMINATOR:
            raise MalformedContainer(
                f"Bad entry terminator 0x{terminator:04x} for {directory}/{name}.{extension}",
                record_offset,
            )

        preload_data = reader.read_bytes(preload_bytes) if preload_bytes else b''

        return VpkEntry(
            extension=extension,
            directory=directory,
            name=name,
            crc32=crc32,
            preload_bytes=preload_bytes,
            archive_index=archive_index,
            entry_offset=entry_offset,
            entry_length=entry_length,
            terminator=terminator,
            preload_data=preload_data,
        )


def _encode_string(value: str) -> bytes:
    return value.encode(STRING_ENCODING, STRING_ERRORS) + b'\x00'


def _layout_of(entries) -> TreeLayout:
    """Group layout implied by entry order alone."""
    return tuple(
        (extension, tuple(
            (directory, sum(1 for _ in dir_group))
            for directory, dir_group in groupby(ext_group, key=lambda e: e.directory)
        ))
        for extension, ext_group in groupby(entries, key=lambda e: e.extension)
    )
