# ==============================================================================
# MOD IDENTIFIER - PACKAGE
# ==============================================================================
# Content-based identification of Valve VPK mod archives.
#
# Subpackages:
#   - core: Fingerprinting, matching, catalog database, configuration
#   - extractors: VPK format, parser and extractor
#
# Entry points:
#   - main.py: launcher
#   - modident/cli.py: Command-line interface
# ==============================================================================

__version__ = "1.0.0"
__description__ = "Content fingerprinting and identification of VPK mod archives"

# Convenience imports
from .core import (
    Database, FingerprintEngine, Fingerprint, MatchEngine, MatchResult, ModAnalyser,
)
from .extractors import VpkParser, VPKExtractor

__all__ = [
    '__version__',
    '__description__',

    # Core
    'Database',
    'FingerprintEngine',
    'Fingerprint',
    'MatchEngine',
    'MatchResult',
    'ModAnalyser',

    # Extractors
    'VpkParser',
    'VPKExtractor',
]
