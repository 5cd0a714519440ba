"""Tests for reading and extracting pack contents."""

import struct

import pytest

from modident.core.errors import MalformedContainer
from modident.extractors.vpk_extractor import VPKExtractor
from modident.extractors.vpk_parser import VpkParser


@pytest.fixture
def chunked_pack(vpk_builder, tmp_path):
    """pak01_dir.vpk with one same-file entry and entries in chunks 0 and 1."""
    builder = vpk_builder()
    builder.add('scripts/readme.txt', b'inline payload')
    builder.add('models/hero.mdl', b'model bytes', archive_index=0)
    builder.add('models/hero.vtx', b'vertex data', preload=b'PRE', archive_index=1)
    return builder.write(tmp_path)


class TestListing:

    def test_list_files(self, sample_vpk, tmp_path):
        with VPKExtractor(sample_vpk.write(tmp_path)) as ext:
            paths = [e.full_path for e in ext.list_files()]

        assert paths == [
            'materials/hero/skin.vmat_c',
            'materials/hero/hair.vmat_c',
            'scripts/readme.txt',
        ]

    def test_find_files_is_case_insensitive(self, sample_vpk, tmp_path):
        with VPKExtractor(sample_vpk.write(tmp_path)) as ext:
            found = ext.find_files('MATERIALS/*.VMAT_C')

        assert len(found) == 2

    def test_get_entry_normalizes_separators(self, sample_vpk, tmp_path):
        with VPKExtractor(sample_vpk.write(tmp_path)) as ext:
            assert ext.get_entry('Scripts\\README.txt') is not None
            assert ext.get_entry('scripts/missing.txt') is None

    def test_closed_extractor(self):
        ext = VPKExtractor()
        with pytest.raises(RuntimeError):
            ext.list_files()

    def test_open_rejects_garbage(self, tmp_path):
        path = tmp_path / 'junk_dir.vpk'
        path.write_bytes(b'\x00' * 64)

        with pytest.raises(MalformedContainer):
            VPKExtractor(str(path))


class TestReading:

    def test_same_file_data(self, sample_vpk, tmp_path):
        with VPKExtractor(sample_vpk.write(tmp_path)) as ext:
            assert ext.get_file_data('scripts/readme.txt') == b'hello world'
            assert ext.get_file_data('materials/hero/hair.vmat_c') == b'HDRhair'
            assert ext.get_file_data('nothing/here.txt') is None

    def test_preview(self, sample_vpk, tmp_path):
        with VPKExtractor(sample_vpk.write(tmp_path)) as ext:
            assert ext.get_preview('materials/hero/hair.vmat_c') == b'HDR'
            assert ext.get_preview('scripts/readme.txt') == b''

    def test_chunked_entries(self, chunked_pack):
        with VPKExtractor(chunked_pack) as ext:
            assert ext.parsed.chunk_indices == (0, 1)
            assert ext.get_file_data('scripts/readme.txt') == b'inline payload'
            assert ext.get_file_data('models/hero.mdl') == b'model bytes'
            assert ext.get_file_data('models/hero.vtx') == b'PREvertex data'

    def test_chunk_path(self, chunked_pack, tmp_path):
        with VPKExtractor(chunked_pack) as ext:
            assert ext.get_chunk_path(7) == str(tmp_path / 'pak01_007.vpk')

    def test_missing_chunk(self, chunked_pack, tmp_path):
        (tmp_path / 'pak01_001.vpk').unlink()

        with VPKExtractor(chunked_pack) as ext:
            with pytest.raises(OSError):
                ext.get_file_data('models/hero.vtx')

    def test_truncated_chunk(self, chunked_pack, tmp_path):
        (tmp_path / 'pak01_000.vpk').write_bytes(b'model')

        with VPKExtractor(chunked_pack) as ext:
            with pytest.raises(MalformedContainer):
                ext.get_file_data('models/hero.mdl')

    def test_chunk_reference_from_single_file_pack(self, vpk_builder, tmp_path):
        path = tmp_path / 'mymod.vpk'
        path.write_bytes(vpk_builder().add('a/b.txt', b'x', archive_index=0).build())

        with VPKExtractor(str(path)) as ext:
            with pytest.raises(MalformedContainer):
                ext.get_file_data('a/b.txt')

    def test_crc_mismatch(self, vpk_builder, tmp_path):
        builder = vpk_builder().add('a/b.txt', b'payload', crc=0x12345678)
        path = builder.write(tmp_path)

        with VPKExtractor(path) as ext:
            with pytest.raises(MalformedContainer):
                ext.get_file_data('a/b.txt')

        with VPKExtractor(path, verify_crc=False) as ext:
            assert ext.get_file_data('a/b.txt') == b'payload'


class TestExtraction:

    def test_extract_file(self, sample_vpk, tmp_path):
        out = tmp_path / 'out' / 'readme.txt'
        with VPKExtractor(sample_vpk.write(tmp_path)) as ext:
            assert ext.extract_file('scripts/readme.txt', str(out))
            assert not ext.extract_file('scripts/absent.txt', str(tmp_path / 'absent.txt'))

        assert out.read_bytes() == b'hello world'
        assert not (tmp_path / 'absent.txt').exists()

    def test_extract_all_with_progress(self, chunked_pack, tmp_path):
        out = tmp_path / 'extracted'
        progress = []

        with VPKExtractor(chunked_pack) as ext:
            count = ext.extract_all(str(out), lambda cur, total, name: progress.append((cur, total)))

        assert count == 3
        assert progress == [(1, 3), (2, 3), (3, 3)]
        assert (out / 'models' / 'hero.vtx').read_bytes() == b'PREvertex data'
        assert (out / 'scripts' / 'readme.txt').read_bytes() == b'inline payload'

    def test_extract_all_filtered(self, sample_vpk, tmp_path):
        out = tmp_path / 'extracted'
        with VPKExtractor(sample_vpk.write(tmp_path)) as ext:
            count = ext.extract_all(str(out), file_filter=lambda e: e.extension == 'txt')

        assert count == 1
        assert not (out / 'materials').exists()

    def test_path_traversal_rejected(self, vpk_builder, tmp_path):
        path = vpk_builder().add('../escape/evil.txt', b'boom').write(tmp_path)
        out = tmp_path / 'out'

        with VPKExtractor(path) as ext:
            with pytest.raises(MalformedContainer):
                ext.extract_all(str(out))

        assert not (tmp_path / 'escape').exists()


class TestDetect:

    def test_detects_vpk(self, sample_vpk, tmp_path):
        assert VPKExtractor.detect(sample_vpk.write(tmp_path))

    def test_rejects_other_files(self, tmp_path):
        other = tmp_path / 'notes.txt'
        other.write_bytes(b'plain text file')
        short = tmp_path / 'tiny.vpk'
        short.write_bytes(b'\x34\x12')

        assert not VPKExtractor.detect(str(other))
        assert not VPKExtractor.detect(str(short))
        assert not VPKExtractor.detect(str(tmp_path / 'missing.vpk'))

    def test_rejects_what_the_parser_rejects(self, sample_vpk, tmp_path):
        oversized = tmp_path / 'oversized_dir.vpk'
        oversized.write_bytes(sample_vpk.build(tree_size=100000))
        truncated_v2 = tmp_path / 'truncated_dir.vpk'
        truncated_v2.write_bytes(struct.pack('<III', 0x55AA1234, 2, 0) + b'\x00' * 4)

        assert not VPKExtractor.detect(str(oversized))
        assert not VPKExtractor.detect(str(truncated_v2))

    def test_agrees_with_parser(self, vpk_builder, tmp_path):
        path = vpk_builder(version=1).add('a/b.txt', b'x' * 100).write(tmp_path)
        with open(path, 'rb') as f:
            data = f.read()

        assert VpkParser().detect(data)
        assert VPKExtractor.detect(path)
