# ==============================================================================
# MOD ANALYSER MODULE
# ==============================================================================
# The identification pipeline:
#
#   raw bytes / path -> VpkParser -> ParsedContainer
#                    -> FingerprintEngine -> Fingerprint
#                    -> MatchEngine (tier by tier against the store)
#                    -> AnalysisResult (match may be None)
#
# Parsing and fingerprinting finish before the store is touched, so a
# malformed archive never costs a store query.
#
# Usage:
#   analyser = ModAnalyser(Database(config.database_path), config)
#   result = analyser.analyse_file("pak01_dir.vpk")
#   if result.match:
#       print(result.match.candidate.mod_name, result.match.certainty)
# ==============================================================================

import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

from modident.extractors.vpk_format import ParsedContainer, ParseOptions
from modident.extractors.vpk_parser import Buffer, VpkParser
from .config import Config
from .errors import ContainerTooLarge, DigestComputationFailure
from .fingerprint import Fingerprint, FingerprintEngine
from .hasher import FileHasher
from .matcher import HashQuery, MatchEngine, MatchResult
from .store import CandidateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    """
    Outcome of analysing one archive.

    Attributes:
        parsed (ParsedContainer):  The decoded directory
        fingerprint (Fingerprint): Its identity digests
        match (MatchResult):       Best catalog match, or None if unknown
    """
    parsed: ParsedContainer
    fingerprint: Fingerprint
    match: Optional[MatchResult]

    @property
    def identified(self) -> bool:
        return self.match is not None


class ModAnalyser:
    """
    Parses, fingerprints and identifies archives against one candidate store.

    Every collaborator is injected; defaults are built from the config.
    """

    def __init__(self, store: Optional[CandidateStore], config: Optional[Config] = None,
                 parser: Optional[VpkParser] = None,
                 engine: Optional[FingerprintEngine] = None,
                 matcher: Optional[MatchEngine] = None):
        self.store = store
        self.config = config
        self.parser = parser or VpkParser()
        if engine is None:
            engine = FingerprintEngine(
                hasher=FileHasher(),
                workers=config.hash_workers if config else 1,
                block_size=config.partial_block_size if config else FileHasher.DEFAULT_BLOCK_SIZE,
            )
        self.engine = engine
        self.matcher = matcher or MatchEngine()

    def default_options(self) -> ParseOptions:
        if self.config is not None:
            return self.config.parse_options()
        return ParseOptions(include_exact_digest=True)

    # ==========================================================================
    # ANALYSIS
    # ==========================================================================

    def fingerprint(self, data: Buffer, options: Optional[ParseOptions] = None) -> Fingerprint:
        """Parse and fingerprint without querying the store."""
        return self._fingerprint_bytes(data, options)[1]

    def analyse(self, data: Buffer, options: Optional[ParseOptions] = None) -> AnalysisResult:
        """
        Identify an archive held in memory.

        Raises:
            ContainerTooLarge: data exceeds the configured size limit
            MalformedContainer / UnsupportedVersion: the data is not a usable VPK
            Any store exception, unchanged
        """
        parsed, fingerprint = self._fingerprint_bytes(data, options)
        return self._identify(parsed, fingerprint)

    def analyse_file(self, file_path: str, options: Optional[ParseOptions] = None) -> AnalysisResult:
        """
        Identify an archive on disk.

        Raises:
            ContainerTooLarge: the file exceeds the configured size limit
            DigestComputationFailure: the file cannot be read
            MalformedContainer / UnsupportedVersion: the file is not a usable VPK
            Any store exception, unchanged
        """
        parsed, fingerprint = self.fingerprint_file(file_path, options)
        logger.info("Analysing %s (%d entries)", os.path.basename(file_path), parsed.entry_count)
        return self._identify(parsed, fingerprint)

    def fingerprint_file(self, file_path: str,
                         options: Optional[ParseOptions] = None) -> Tuple[ParsedContainer, Fingerprint]:
        """
        Parse and fingerprint an archive on disk without querying the store.

        The size limit is checked before the file is read.
        """
        options = options or self.default_options()

        try:
            size = os.path.getsize(file_path)
        except OSError as e:
            raise DigestComputationFailure(f"Could not stat {file_path}: {e}") from e
        self._check_size(size)

        try:
            parsed = self.parser.parse_file(file_path, options)
        except OSError as e:
            raise DigestComputationFailure(f"Could not read {file_path}: {e}") from e

        fingerprint = self.engine.compute_fingerprint_from_file(parsed, file_path, options)
        return parsed, fingerprint

    def analyse_hashes(self, query: HashQuery) -> List[MatchResult]:
        """Identify from client-supplied hashes alone."""
        results = self.matcher.identify_hashes(query, self.store)
        logger.info("Hash query matched %d tier(s)", len(results))
        return results

    # ==========================================================================
    # PRIVATE HELPERS
    # ==========================================================================

    def _fingerprint_bytes(self, data: Buffer,
                           options: Optional[ParseOptions]) -> Tuple[ParsedContainer, Fingerprint]:
        options = options or self.default_options()
        data = bytes(data)
        self._check_size(len(data))
        parsed = self.parser.parse(data, options)
        return parsed, self.engine.compute_fingerprint(parsed, data, options)

    def _identify(self, parsed: ParsedContainer, fingerprint: Fingerprint) -> AnalysisResult:
        if self.store is None:
            raise RuntimeError("ModAnalyser was created without a candidate store")
        match = self.matcher.identify(fingerprint, self.store)
        if match is None:
            logger.info("No catalog match (fast hash %s)", fingerprint.fast_hash)
        else:
            logger.info(
                "Matched record %s via %s (certainty %d)",
                match.candidate.id, match.match_type, match.certainty,
            )
        return AnalysisResult(parsed=parsed, fingerprint=fingerprint, match=match)

    def _check_size(self, size: int):
        limit = self.config.max_file_size_bytes if self.config else 0
        if limit and size > limit:
            raise ContainerTooLarge(size, limit)
