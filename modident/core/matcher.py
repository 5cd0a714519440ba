# ==============================================================================
# MATCH ENGINE MODULE
# ==============================================================================
# Identifies which catalog archive a fingerprint corresponds to.
#
# Tiers, strongest first. The first tier that produces a match wins and the
# later tiers are never queried:
#   1. exact digest        certainty 100   (SHA256 of the whole file)
#   2. content signature   certainty 90    (closest entry count wins)
#   3. fast hash + size    certainty 70    (highest weighted score wins)
#   4. partial similarity  certainty 40    (only if the digest was computed;
#                                           stronger-tier duplicates dropped)
#
# Weighted score (tiers 3 and 4, max 100):
#   +30 same format version
#   +40 same entry count, +30 within 5, +15 within 20
#   +15 same multi-chunk flag
#   +15 same inline-data flag
#
# Ties always go to the candidate the store returned first.
#
# Usage:
#   engine = MatchEngine()
#   result = engine.identify(fingerprint, store)
#   if result is None:
#       print("Unknown archive")
#   else:
#       print(result.candidate.mod_name, result.certainty, result.match_type)
# ==============================================================================

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .fingerprint import Fingerprint
from .hasher import FileHasher
from .store import CandidateRecord, CandidateStore

logger = logging.getLogger(__name__)


# ==============================================================================
# MATCH TYPES AND CERTAINTIES
# ==============================================================================
MATCH_EXACT = 'exact'
MATCH_CONTENT_SIGNATURE = 'content-signature'
MATCH_FAST_HASH = 'fast-hash'
MATCH_PARTIAL_SIMILARITY = 'partial-similarity'

CERTAINTY = {
    MATCH_EXACT: 100,
    MATCH_CONTENT_SIGNATURE: 90,
    MATCH_FAST_HASH: 70,
    MATCH_PARTIAL_SIMILARITY: 40,
}


# ==============================================================================
# RESULT / QUERY DATA CLASSES
# ==============================================================================
@dataclass(frozen=True)
class MatchResult:
    """
    A successful identification.

    Attributes:
        candidate (CandidateRecord): The best candidate of the winning tier
        certainty (int):             100, 90, 70 or 40
        match_type (str):            Which tier matched
        alternatives (tuple):        Other candidates returned at that tier
    """
    candidate: CandidateRecord
    certainty: int
    match_type: str
    alternatives: tuple = field(default_factory=tuple)


@dataclass(frozen=True)
class HashQuery:
    """
    Hashes reported by a client that has no archive bytes to send.

    Only ``content_signature`` is mandatory. ``entry_count`` feeds the
    closest-count and scoring rules when present.
    """
    content_signature: str
    exact_digest: Optional[str] = None
    fast_hash: Optional[str] = None
    file_size: Optional[int] = None
    partial_digest: Optional[str] = None
    entry_count: Optional[int] = None


# ==============================================================================
# MATCH ENGINE CLASS
# ==============================================================================
class MatchEngine:
    """
    Four-tier cascading matcher.

    Stateless: the candidate store is passed to each call. Store exceptions
    propagate unchanged; ``None`` means every tier came back empty.
    """

    # ==========================================================================
    # IDENTIFICATION
    # ==========================================================================

    def identify(self, fingerprint: Fingerprint, store: CandidateStore) -> Optional[MatchResult]:
        """
        Find the catalog archive that best matches a fingerprint.

        Args:
            fingerprint: Fingerprint of the archive being identified
            store: Candidate store to query

        Returns:
            MatchResult, or None when no tier produced a candidate
        """
        # Tier 1: exact digest
        if fingerprint.exact_digest:
            candidate = store.find_by_exact_digest(fingerprint.exact_digest)
            if candidate is not None:
                return self._result(candidate, MATCH_EXACT, [candidate])
        else:
            logger.debug("No exact digest computed, skipping exact tier")

        # Tier 2: content signature
        candidates = store.find_by_content_signature(fingerprint.content_signature)
        if candidates:
            best = select_best(candidates, lambda c: -abs(c.entry_count - fingerprint.entry_count))
            return self._result(best, MATCH_CONTENT_SIGNATURE, candidates)

        # Tier 3: fast hash + size
        candidates = store.find_by_fast_hash_and_size(fingerprint.fast_hash, fingerprint.file_size)
        if candidates:
            best = select_best(candidates, lambda c: self.score(c, fingerprint))
            return self._result(best, MATCH_FAST_HASH, candidates)

        # Tier 4: partial similarity
        if not fingerprint.partial_digest:
            logger.debug("No partial digest computed, skipping partial-similarity tier")
            return None

        candidates = [
            c for c in store.find_by_partial_digest(fingerprint.partial_digest)
            if not FileHasher.compare_hashes(c.exact_digest, fingerprint.exact_digest)
            and c.content_signature != fingerprint.content_signature
        ]
        if candidates:
            best = select_best(candidates, lambda c: self.score(c, fingerprint))
            return self._result(best, MATCH_PARTIAL_SIMILARITY, candidates)

        return None

    def identify_hashes(self, query: HashQuery, store: CandidateStore) -> List[MatchResult]:
        """
        Match a set of client-reported hashes, reporting every tier that hits.

        An exact match is definitive and returned alone. Otherwise each tier
        contributes at most one result, and candidates already reported by a
        stronger tier are excluded from the weaker ones.

        Args:
            query: The hashes to look up
            store: Candidate store to query

        Returns:
            List of MatchResult, strongest tier first (possibly empty)
        """
        results: List[MatchResult] = []
        seen_ids = set()

        if query.exact_digest:
            candidate = store.find_by_exact_digest(query.exact_digest)
            if candidate is not None:
                return [self._result(candidate, MATCH_EXACT, [candidate])]

        def record(candidates: Sequence[CandidateRecord], match_type: str, key: Callable):
            candidates = [c for c in candidates if c.id not in seen_ids]
            if not candidates:
                return
            best = select_best(candidates, key)
            results.append(self._result(best, match_type, candidates))
            seen_ids.add(best.id)

        def count_score(c: CandidateRecord) -> int:
            if query.entry_count is None:
                return 0
            return entry_count_score(c.entry_count, query.entry_count)

        record(
            store.find_by_content_signature(query.content_signature),
            MATCH_CONTENT_SIGNATURE,
            count_score,
        )

        if query.fast_hash and query.file_size is not None:
            record(
                store.find_by_fast_hash_and_size(query.fast_hash, query.file_size),
                MATCH_FAST_HASH,
                count_score,
            )

        if query.partial_digest:
            record(
                [
                    c for c in store.find_by_partial_digest(query.partial_digest)
                    if not FileHasher.compare_hashes(c.exact_digest, query.exact_digest)
                    and c.content_signature != query.content_signature
                ],
                MATCH_PARTIAL_SIMILARITY,
                count_score,
            )

        return results

    # ==========================================================================
    # SCORING
    # ==========================================================================

    @staticmethod
    def score(candidate: CandidateRecord, fingerprint: Fingerprint) -> int:
        """
        Weighted similarity of a candidate to a fingerprint (0 to 100).

        Used to rank candidates in the fast-hash and partial-similarity tiers.
        """
        score = 0

        if candidate.format_version == fingerprint.format_version:
            score += 30

        score += entry_count_score(candidate.entry_count, fingerprint.entry_count)

        if candidate.has_multiple_chunks == fingerprint.has_multiple_chunks:
            score += 15

        if candidate.has_inline_data == fingerprint.has_inline_data:
            score += 15

        return score

    # ==========================================================================
    # PRIVATE HELPERS
    # ==========================================================================

    @staticmethod
    def _result(best: CandidateRecord, match_type: str,
                candidates: Sequence[CandidateRecord]) -> MatchResult:
        alternatives = tuple(c for c in candidates if c is not best)
        logger.debug(
            "Matched %s via %s (%d alternatives)",
            best.id, match_type, len(alternatives),
        )
        return MatchResult(
            candidate=best,
            certainty=CERTAINTY[match_type],
            match_type=match_type,
            alternatives=alternatives,
        )


def entry_count_score(candidate_count: int, entry_count: int) -> int:
    """Entry-count component of the weighted score."""
    diff = abs(candidate_count - entry_count)
    if diff == 0:
        return 40
    if diff <= 5:
        return 30
    if diff <= 20:
        return 15
    return 0


def select_best(candidates: Sequence[CandidateRecord],
                key: Callable[[CandidateRecord], int]) -> CandidateRecord:
    """
    Return the candidate with the highest key.

    Only a strictly higher key replaces the current best, so the first
    candidate in store order wins ties.
    """
    best = candidates[0]
    best_key = key(best)
    for candidate in candidates[1:]:
        candidate_key = key(candidate)
        if candidate_key > best_key:
            best, best_key = candidate, candidate_key
    return best
