# ==============================================================================
# EXTRACTORS MODULE INIT
# ==============================================================================
# Valve VPK support:
#   - vpk_format: Constants and data classes (header, entry, parse result)
#   - VpkParser: Strict directory-file parser and tree serializer
#   - VPKExtractor: Reads and extracts entry payloads, including chunks
#
# Usage:
#   from modident.extractors import VPKExtractor
#   with VPKExtractor("pak01_dir.vpk") as ext:
#       ext.extract_all("output/")
# ==============================================================================

from .vpk_format import ParsedContainer, ParseOptions, VpkEntry, VpkHeader
from .vpk_parser import VpkParser
from .vpk_extractor import VPKExtractor

__all__ = [
    'ParsedContainer',
    'ParseOptions',
    'VpkEntry',
    'VpkHeader',
    'VpkParser',
    'VPKExtractor',
]
