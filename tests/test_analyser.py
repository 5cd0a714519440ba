"""Tests for the parse -> fingerprint -> match pipeline."""

import pytest

from modident.core.analyser import ModAnalyser
from modident.core.errors import (
    ContainerTooLarge,
    DigestComputationFailure,
    MalformedContainer,
)
from modident.core.matcher import HashQuery, MATCH_CONTENT_SIGNATURE, MATCH_EXACT
from modident.core.store import CandidateRecord, InMemoryCandidateStore
from modident.extractors.vpk_format import ParseOptions


class TestAnalyse:

    def test_known_archive(self, sample_vpk):
        data = sample_vpk.build()
        analyser = ModAnalyser(InMemoryCandidateStore())
        known = analyser.fingerprint(data)
        analyser.store.add(CandidateRecord.from_fingerprint('7', known, mod_name='Hero Skin'))

        result = analyser.analyse(data)

        assert result.identified
        assert result.match.match_type == MATCH_EXACT
        assert result.match.candidate.mod_name == 'Hero Skin'
        assert result.parsed.entry_count == 3

    def test_unknown_archive(self, sample_vpk):
        result = ModAnalyser(InMemoryCandidateStore()).analyse(sample_vpk.build())

        assert not result.identified
        assert result.match is None
        assert result.fingerprint.entry_count == 3

    def test_malformed_never_queries_store(self, counting_store):
        store = counting_store()
        with pytest.raises(MalformedContainer):
            ModAnalyser(store).analyse(b'not a vpk at all')
        assert store.calls == []

    def test_store_error_propagates(self, counting_store, sample_vpk):
        store = counting_store(fail_on='exact')
        with pytest.raises(ConnectionError):
            ModAnalyser(store).analyse(sample_vpk.build())

    def test_explicit_options(self, counting_store, sample_vpk):
        store = counting_store()
        result = ModAnalyser(store).analyse(sample_vpk.build(), ParseOptions())

        assert result.fingerprint.exact_digest is None
        assert 'exact' not in store.calls

    def test_config_drives_options(self, temp_config, sample_vpk):
        temp_config.include_exact_digest = False
        temp_config.include_partial_digest = True
        temp_config.partial_block_size = 4096

        result = ModAnalyser(InMemoryCandidateStore(), temp_config).analyse(sample_vpk.build())

        assert result.fingerprint.exact_digest is None
        assert result.fingerprint.partial_digest is not None

    def test_without_store(self, sample_vpk):
        analyser = ModAnalyser(None)
        assert analyser.fingerprint(sample_vpk.build()).entry_count == 3
        with pytest.raises(RuntimeError):
            analyser.analyse(sample_vpk.build())


class TestAnalyseFile:

    def test_matches_in_memory_result(self, sample_vpk, tmp_path):
        path = sample_vpk.write(tmp_path)
        analyser = ModAnalyser(InMemoryCandidateStore())

        _, from_file = analyser.fingerprint_file(path)
        assert from_file == analyser.fingerprint(sample_vpk.build())

    def test_identifies_reordered_copy(self, vpk_builder, tmp_path):
        original = vpk_builder().add('m/a.mdl', b'aa').add('m/b.mdl', b'bb')
        repacked = vpk_builder().add('m/b.mdl', b'bb').add('m/a.mdl', b'aa')
        (tmp_path / 'orig').mkdir()
        (tmp_path / 'repack').mkdir()

        analyser = ModAnalyser(InMemoryCandidateStore())
        _, known = analyser.fingerprint_file(original.write(tmp_path / 'orig'))
        analyser.store.add(CandidateRecord.from_fingerprint('1', known))

        result = analyser.analyse_file(repacked.write(tmp_path / 'repack'))
        assert result.match.match_type == MATCH_CONTENT_SIGNATURE

    def test_missing_file(self, tmp_path):
        with pytest.raises(DigestComputationFailure):
            ModAnalyser(InMemoryCandidateStore()).analyse_file(str(tmp_path / 'nope_dir.vpk'))

    def test_size_limit_checked_before_parsing(self, temp_config, tmp_path, counting_store):
        temp_config.max_file_size_mb = 1
        path = tmp_path / 'huge_dir.vpk'
        path.write_bytes(b'\x00' * (1024 * 1024 + 1))
        store = counting_store()

        with pytest.raises(ContainerTooLarge) as exc_info:
            ModAnalyser(store, temp_config).analyse_file(str(path))

        assert exc_info.value.limit == 1024 * 1024
        assert store.calls == []


def test_analyse_hashes(sample_vpk):
    analyser = ModAnalyser(InMemoryCandidateStore())
    known = analyser.fingerprint(sample_vpk.build())
    analyser.store.add(CandidateRecord.from_fingerprint('1', known))

    results = analyser.analyse_hashes(HashQuery(
        content_signature=known.content_signature,
        fast_hash=known.fast_hash,
        file_size=known.file_size,
        entry_count=known.entry_count,
    ))

    assert [r.match_type for r in results] == [MATCH_CONTENT_SIGNATURE]
