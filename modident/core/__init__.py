# ==============================================================================
# CORE MODULE INIT
# ==============================================================================
# Identification engine modules.
#
# This package contains:
#   - Errors: Exception taxonomy
#   - Hasher: SHA256 / xxHash64 / block hash tree primitives
#   - Fingerprint: Identity digests of a parsed archive
#   - Store: Candidate lookup contract and in-memory store
#   - Database: SQLite catalog with SQLAlchemy ORM
#   - Matcher: Four-tier cascading identification
#   - Analyser: Parse -> fingerprint -> match pipeline
#   - Config / Paths / Logging: Application settings
#
# Usage:
#   from modident.core import Database, ModAnalyser
#   from modident.core.config import get_config
# ==============================================================================

from .errors import (
    ModIdentError, MalformedContainer, UnsupportedVersion,
    DigestComputationFailure, ContainerTooLarge,
)
from .hasher import FileHasher
from .fingerprint import Fingerprint, FingerprintEngine
from .store import CandidateRecord, CandidateStore, InMemoryCandidateStore
from .database import Database, Mod, ArchiveRecord
from .matcher import MatchEngine, MatchResult, HashQuery
from .analyser import ModAnalyser, AnalysisResult
from .config import Config, get_config
from .paths import Paths

__all__ = [
    # Errors
    'ModIdentError',
    'MalformedContainer',
    'UnsupportedVersion',
    'DigestComputationFailure',
    'ContainerTooLarge',

    # Hashing
    'FileHasher',
    'Fingerprint',
    'FingerprintEngine',

    # Stores
    'CandidateRecord',
    'CandidateStore',
    'InMemoryCandidateStore',
    'Database',
    'Mod',
    'ArchiveRecord',

    # Matching
    'MatchEngine',
    'MatchResult',
    'HashQuery',
    'ModAnalyser',
    'AnalysisResult',

    # Configuration
    'Config',
    'get_config',
    'Paths',
]
