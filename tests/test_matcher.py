"""Tests for the cascading match engine."""

import pytest

from modident.core.fingerprint import Fingerprint, FingerprintEngine
from modident.core.matcher import (
    MATCH_CONTENT_SIGNATURE,
    MATCH_EXACT,
    MATCH_FAST_HASH,
    MATCH_PARTIAL_SIMILARITY,
    HashQuery,
    MatchEngine,
    entry_count_score,
    select_best,
)
from modident.core.store import CandidateRecord, InMemoryCandidateStore
from modident.extractors.vpk_format import ParseOptions
from modident.extractors.vpk_parser import VpkParser


@pytest.fixture
def matcher():
    return MatchEngine()


def make_fingerprint(**fields):
    values = dict(
        content_signature='sig-input',
        fast_hash='fast-input',
        file_size=1000,
        entry_count=10,
        format_version=2,
        has_multiple_chunks=False,
        has_inline_data=False,
        manifest_hash='manifest',
        exact_digest='exact-input',
        partial_digest='partial-input',
    )
    values.update(fields)
    return Fingerprint(**values)


class TestShortCircuit:
    """Tiers run in order and stop at the first hit."""

    def test_exact_hit_skips_other_tiers(self, matcher, counting_store, make_candidate):
        store = counting_store(exact=make_candidate('1'), signature=[make_candidate('2')])
        result = matcher.identify(make_fingerprint(), store)

        assert result.match_type == MATCH_EXACT
        assert result.certainty == 100
        assert result.alternatives == ()
        assert store.calls == ['exact']

    def test_signature_hit_skips_fast_and_partial(self, matcher, counting_store, make_candidate):
        store = counting_store(signature=[make_candidate('2')], fast=[make_candidate('3')])
        result = matcher.identify(make_fingerprint(), store)

        assert result.match_type == MATCH_CONTENT_SIGNATURE
        assert result.certainty == 90
        assert store.calls == ['exact', 'signature']

    def test_fast_hit_skips_partial(self, matcher, counting_store, make_candidate):
        store = counting_store(fast=[make_candidate('3')], partial=[make_candidate('4')])
        result = matcher.identify(make_fingerprint(), store)

        assert result.match_type == MATCH_FAST_HASH
        assert result.certainty == 70
        assert store.calls == ['exact', 'signature', 'fast']

    def test_partial_tier(self, matcher, counting_store, make_candidate):
        store = counting_store(partial=[make_candidate('4')])
        result = matcher.identify(make_fingerprint(), store)

        assert result.match_type == MATCH_PARTIAL_SIMILARITY
        assert result.certainty == 40
        assert store.calls == ['exact', 'signature', 'fast', 'partial']

    def test_no_exact_digest_skips_exact_tier(self, matcher, counting_store):
        store = counting_store()
        matcher.identify(make_fingerprint(exact_digest=None), store)

        assert 'exact' not in store.calls

    def test_no_partial_digest_skips_partial_tier(self, matcher, counting_store):
        store = counting_store()
        result = matcher.identify(make_fingerprint(partial_digest=None), store)

        assert result is None
        assert store.calls == ['exact', 'signature', 'fast']


class TestSelection:

    def test_signature_prefers_closest_entry_count(self, matcher, counting_store, make_candidate):
        far = make_candidate('far', entry_count=30)
        close = make_candidate('close', entry_count=11)
        store = counting_store(signature=[far, close])

        result = matcher.identify(make_fingerprint(entry_count=10), store)

        assert result.candidate is close
        assert result.alternatives == (far,)

    def test_signature_tie_goes_to_first(self, matcher, counting_store, make_candidate):
        first = make_candidate('first', entry_count=12)
        second = make_candidate('second', entry_count=8)
        store = counting_store(signature=[first, second])

        for _ in range(5):
            assert matcher.identify(make_fingerprint(entry_count=10), store).candidate is first

    def test_fast_hash_uses_weighted_score(self, matcher, counting_store, make_candidate):
        weak = make_candidate('weak', format_version=1, entry_count=50)
        strong = make_candidate('strong', format_version=2, entry_count=10)
        store = counting_store(fast=[weak, strong])

        result = matcher.identify(make_fingerprint(), store)

        assert result.candidate is strong
        assert result.alternatives == (weak,)

    def test_fast_hash_tie_goes_to_first(self, matcher, counting_store, make_candidate):
        first = make_candidate('first', entry_count=10)
        second = make_candidate('second', entry_count=10)
        store = counting_store(fast=[first, second])

        assert matcher.identify(make_fingerprint(), store).candidate is first


class TestPartialExclusion:
    """Tier 4 never reports a candidate a stronger digest already matches."""

    def test_same_exact_digest_excluded(self, matcher, counting_store, make_candidate):
        dup = make_candidate('dup', exact_digest='exact-input')
        store = counting_store(partial=[dup])

        assert matcher.identify(make_fingerprint(), store) is None

    def test_same_signature_excluded(self, matcher, counting_store, make_candidate):
        dup = make_candidate('dup', content_signature='sig-input')
        other = make_candidate('other')
        store = counting_store(partial=[dup, other])

        result = matcher.identify(make_fingerprint(), store)

        assert result.candidate is other
        assert result.alternatives == ()

    def test_missing_exact_digests_are_not_equal(self, matcher, counting_store, make_candidate):
        candidate = make_candidate('c', exact_digest=None)
        store = counting_store(partial=[candidate])

        result = matcher.identify(make_fingerprint(exact_digest=None), store)
        assert result.candidate is candidate


class TestScore:

    def test_full_score(self, make_candidate):
        candidate = make_candidate(entry_count=10, format_version=2)
        assert MatchEngine.score(candidate, make_fingerprint()) == 100

    def test_components(self, make_candidate):
        candidate = make_candidate(
            entry_count=25, format_version=1, has_multiple_chunks=True, has_inline_data=False
        )
        # version differs, diff 15 -> 15, chunks differ, inline same -> 15
        assert MatchEngine.score(candidate, make_fingerprint()) == 30

    @pytest.mark.parametrize('diff,expected', [(0, 40), (1, 30), (5, 30), (6, 15), (20, 15), (21, 0)])
    def test_entry_count_score(self, diff, expected):
        assert entry_count_score(100 + diff, 100) == expected
        assert entry_count_score(100 - diff, 100) == expected

    def test_select_best_first_wins(self, make_candidate):
        candidates = [make_candidate(str(i)) for i in range(4)]
        assert select_best(candidates, lambda c: 7) is candidates[0]


class TestScenarios:
    """End to end: real archives through parser, fingerprint engine and matcher."""

    def _fingerprint(self, builder, exact=True):
        data = builder.build()
        parsed = VpkParser().parse(data, ParseOptions(include_exact_digest=exact))
        return FingerprintEngine().compute_fingerprint(parsed, data)

    def _three(self, vpk_builder, order):
        contents = {'a': b'alpha', 'b': b'bravo', 'c': b'charlie'}
        builder = vpk_builder()
        for name in order:
            builder.add(f'models/{name}.mdl', contents[name])
        return builder

    def test_identical_bytes_exact(self, matcher, vpk_builder):
        stored = self._fingerprint(self._three(vpk_builder, 'abc'))
        store = InMemoryCandidateStore([CandidateRecord.from_fingerprint('known', stored)])

        result = matcher.identify(self._fingerprint(self._three(vpk_builder, 'abc')), store)

        assert result.certainty == 100
        assert result.match_type == MATCH_EXACT
        assert result.candidate.id == 'known'
        assert result.alternatives == ()

    def test_reordered_entries_content_signature(self, matcher, vpk_builder):
        stored = self._fingerprint(self._three(vpk_builder, 'cba'))
        incoming = self._fingerprint(self._three(vpk_builder, 'abc'))
        store = InMemoryCandidateStore([CandidateRecord.from_fingerprint('known', stored)])

        assert incoming.fast_hash != stored.fast_hash
        result = matcher.identify(incoming, store)

        assert result.certainty == 90
        assert result.match_type == MATCH_CONTENT_SIGNATURE

    def test_unrelated_archive_no_match(self, matcher, vpk_builder, make_candidate):
        store = InMemoryCandidateStore([make_candidate('other', exact_digest='0' * 64)])
        incoming = self._fingerprint(self._three(vpk_builder, 'abc'))

        assert matcher.identify(incoming, store) is None

    def test_store_failure_propagates(self, matcher, counting_store, vpk_builder, make_candidate):
        store = counting_store(fast=[make_candidate('3')], fail_on='signature')
        incoming = self._fingerprint(self._three(vpk_builder, 'abc'))

        with pytest.raises(ConnectionError):
            matcher.identify(incoming, store)
        assert store.calls == ['exact', 'signature']


class TestIdentifyHashes:

    def test_exact_returns_alone(self, matcher, counting_store, make_candidate):
        store = counting_store(exact=make_candidate('1'), signature=[make_candidate('2')])
        results = matcher.identify_hashes(HashQuery('sig-input', exact_digest='x'), store)

        assert [r.match_type for r in results] == [MATCH_EXACT]
        assert store.calls == ['exact']

    def test_reports_each_tier(self, matcher, counting_store, make_candidate):
        store = counting_store(
            signature=[make_candidate('2')],
            fast=[make_candidate('3')],
            partial=[make_candidate('4')],
        )
        query = HashQuery('sig-input', exact_digest='x', fast_hash='f', file_size=10,
                          partial_digest='p')
        results = matcher.identify_hashes(query, store)

        assert [r.match_type for r in results] == [
            MATCH_CONTENT_SIGNATURE, MATCH_FAST_HASH, MATCH_PARTIAL_SIMILARITY,
        ]
        assert [r.candidate.id for r in results] == ['2', '3', '4']

    def test_weaker_tiers_skip_reported_candidates(self, matcher, counting_store, make_candidate):
        shared = make_candidate('2')
        store = counting_store(signature=[shared], fast=[shared])
        results = matcher.identify_hashes(HashQuery('sig-input', fast_hash='f', file_size=1), store)

        assert [r.candidate.id for r in results] == ['2']

    def test_optional_tiers_need_their_hashes(self, matcher, counting_store):
        store = counting_store()
        assert matcher.identify_hashes(HashQuery('sig-input'), store) == []
        assert store.calls == ['signature']
