"""Shared pytest fixtures for all tests."""

import struct
import zlib
from collections import OrderedDict
from typing import Dict, List, Optional

import pytest

from modident.core.config import Config
from modident.core.database import Database
from modident.core.store import CandidateRecord, CandidateStore

VPK_MAGIC = 0x55AA1234
SAME_FILE = 0x7FFF


class VpkBuilder:
    """
    Builds VPK directory files byte by byte, independently of the parser.

    Files are grouped by extension, then by directory, in the order they were
    first added; within a directory, files keep their insertion order.
    """

    def __init__(self, version: int = 2):
        self.version = version
        self.files: List[dict] = []
        self.data = bytearray()
        self.chunks: Dict[int, bytearray] = {}

    def add(self, path: str, content: bytes = b'', preload: bytes = b'',
            archive_index: int = SAME_FILE, crc: Optional[int] = None,
            offset: Optional[int] = None, length: Optional[int] = None,
            terminator: int = 0xFFFF) -> 'VpkBuilder':
        directory, _, filename = path.rpartition('/')
        name, dot, extension = filename.rpartition('.')
        if not dot:
            name, extension = filename, ''

        if archive_index == SAME_FILE:
            target = self.data
        else:
            target = self.chunks.setdefault(archive_index, bytearray())

        if offset is None:
            offset = len(target)
            target += content

        self.files.append({
            'extension': extension or ' ',
            'directory': directory or ' ',
            'name': name,
            'crc': zlib.crc32(preload + content) & 0xFFFFFFFF if crc is None else crc,
            'preload': preload,
            'archive_index': archive_index,
            'offset': offset,
            'length': len(content) if length is None else length,
            'terminator': terminator,
        })
        return self

    def tree(self) -> bytes:
        groups = OrderedDict()
        for f in self.files:
            groups.setdefault(f['extension'], OrderedDict()).setdefault(f['directory'], []).append(f)

        out = bytearray()
        for extension, directories in groups.items():
            out += extension.encode('utf-8') + b'\x00'
            for directory, files in directories.items():
                out += directory.encode('utf-8') + b'\x00'
                for f in files:
                    out += f['name'].encode('utf-8') + b'\x00'
                    out += struct.pack('<IHHIIH', f['crc'], len(f['preload']), f['archive_index'],
                                       f['offset'], f['length'], f['terminator'])
                    out += f['preload']
                out += b'\x00'
            out += b'\x00'
        out += b'\x00'
        return bytes(out)

    def build(self, tree_size: Optional[int] = None) -> bytes:
        tree = self.tree()
        declared = len(tree) if tree_size is None else tree_size
        if self.version == 1:
            header = struct.pack('<III', VPK_MAGIC, 1, declared)
        else:
            header = struct.pack('<IIIIIII', VPK_MAGIC, self.version, declared,
                                 len(self.data), 0, 0, 0)
        return header + tree + bytes(self.data)

    def write(self, directory, prefix: str = 'pak01') -> str:
        """Write <prefix>_dir.vpk and its chunk files; return the _dir.vpk path."""
        dir_path = directory / f'{prefix}_dir.vpk'
        dir_path.write_bytes(self.build())
        for index, chunk in self.chunks.items():
            (directory / f'{prefix}_{index:03d}.vpk').write_bytes(bytes(chunk))
        return str(dir_path)


class CountingStore(CandidateStore):
    """Store double that records every lookup and can fail on demand."""

    def __init__(self, exact=None, signature=(), fast=(), partial=(), fail_on=None):
        self.exact = exact
        self.signature = list(signature)
        self.fast = list(fast)
        self.partial = list(partial)
        self.fail_on = fail_on
        self.calls: List[str] = []

    def _call(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise ConnectionError(f"{name} lookup failed")

    def find_by_exact_digest(self, digest):
        self._call('exact')
        return self.exact

    def find_by_content_signature(self, signature):
        self._call('signature')
        return list(self.signature)

    def find_by_fast_hash_and_size(self, fast_hash, file_size):
        self._call('fast')
        return list(self.fast)

    def find_by_partial_digest(self, digest):
        self._call('partial')
        return list(self.partial)


@pytest.fixture
def vpk_builder():
    """Factory for VpkBuilder instances: vpk_builder(version=2)."""
    return VpkBuilder


@pytest.fixture
def sample_vpk(vpk_builder):
    """A small v2 archive with three same-file entries and one preload."""
    builder = vpk_builder(version=2)
    builder.add('materials/hero/skin.vmat_c', b'skin material data')
    builder.add('materials/hero/hair.vmat_c', b'hair', preload=b'HDR')
    builder.add('scripts/readme.txt', b'hello world')
    return builder


@pytest.fixture
def counting_store():
    return CountingStore


@pytest.fixture
def make_candidate():
    """Factory for CandidateRecord with neutral defaults."""
    def _make(record_id='1', **fields):
        values = dict(
            content_signature='sig-none',
            fast_hash='fast-none',
            file_size=0,
            entry_count=0,
            format_version=2,
        )
        values.update(fields)
        return CandidateRecord(id=record_id, **values)
    return _make


@pytest.fixture
def temp_config(tmp_path):
    """Config instance backed by a temporary file and database."""
    config = Config(str(tmp_path / 'config.json'))
    config.database_path = str(tmp_path / 'catalog.db')
    return config


@pytest.fixture
def database(tmp_path):
    """Empty SQLite catalog under tmp_path."""
    db = Database(str(tmp_path / 'catalog.db'))
    yield db
    db.close()
