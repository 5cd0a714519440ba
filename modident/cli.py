# ==============================================================================
# MOD IDENTIFIER - COMMAND LINE INTERFACE
# ==============================================================================
# Command-line front end for parsing, fingerprinting, cataloging and
# identifying VPK archives.
#
# Commands:
#   - info: Show header and entries of an archive
#   - fingerprint: Compute the identity digests of an archive
#   - identify: Match an archive against the catalog
#   - catalog: Register, list and remove catalogued archives
#   - extract: Extract archive contents
#   - stats: Catalog statistics
#
# Exit codes:
#   0 success, 1 no match, 2 unusable archive, 3 catalog failure
#
# Usage:
#   modident info --archive pak01_dir.vpk
#   modident catalog add --mod "Crimson Haze Skin" --archive pak01_dir.vpk
#   modident identify --archive downloads/pak01_dir.vpk
#   modident extract --archive pak01_dir.vpk --output extracted/
# ==============================================================================

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from modident import __version__
from modident.core.analyser import ModAnalyser
from modident.core.config import Config, get_config
from modident.core.database import Database
from modident.core.errors import CatalogUnavailable, ModIdentError
from modident.core.logging_config import setup_logging
from modident.core.matcher import MatchResult
from modident.extractors.vpk_extractor import VPKExtractor
from modident.extractors.vpk_format import ParseOptions
from modident.extractors.vpk_parser import VpkParser

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NO_MATCH = 1
EXIT_BAD_ARCHIVE = 2
EXIT_STORE_FAILURE = 3


# ==============================================================================
# COLOR HELPERS FOR TERMINAL OUTPUT
# ==============================================================================
class Colors:
    """ANSI color codes for terminal output."""
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BOLD = '\033[1m'
    END = '\033[0m'

    @classmethod
    def disable(cls):
        """Disable colors (for non-supporting terminals and pipes)."""
        cls.HEADER = ''
        cls.BLUE = ''
        cls.CYAN = ''
        cls.GREEN = ''
        cls.YELLOW = ''
        cls.RED = ''
        cls.BOLD = ''
        cls.END = ''


def print_header(text: str):
    """Print a header."""
    print(f"\n{Colors.BOLD}{Colors.CYAN}{'=' * 60}{Colors.END}")
    print(f"{Colors.BOLD}{Colors.CYAN}  {text}{Colors.END}")
    print(f"{Colors.BOLD}{Colors.CYAN}{'=' * 60}{Colors.END}\n")


def print_success(text: str):
    print(f"{Colors.GREEN}✓ {text}{Colors.END}")


def print_error(text: str):
    print(f"{Colors.RED}✗ {text}{Colors.END}")


def print_info(text: str):
    print(f"{Colors.BLUE}ℹ {text}{Colors.END}")


def print_warning(text: str):
    print(f"{Colors.YELLOW}⚠ {text}{Colors.END}")


def progress_callback(current: int, total: int, filename: str):
    """Progress callback for long operations."""
    percent = (current / total) * 100 if total > 0 else 0
    bar_length = 30
    filled = int(bar_length * current / total) if total > 0 else 0
    bar = '█' * filled + '░' * (bar_length - filled)

    # Truncate filename if too long
    max_name_len = 40
    if len(filename) > max_name_len:
        filename = '...' + filename[-(max_name_len - 3):]

    print(f"\r[{bar}] {percent:5.1f}% | {current}/{total} | {filename}", end='', flush=True)

    if current >= total:
        print()


def format_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.2f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"


# ==============================================================================
# SHARED SETUP
# ==============================================================================
def load_config(args) -> Config:
    """Config from --config, or the user's default config file."""
    if args.config:
        config = Config(args.config)
        config.load()
        return config
    return get_config()


def get_database(args, config: Config) -> Database:
    """Open the catalog named by --db or the config."""
    return Database(args.db or config.database_path)


def fingerprint_options(args, config: Config) -> ParseOptions:
    include_exact = config.include_exact_digest
    include_partial = config.include_partial_digest
    if getattr(args, 'no_exact', False):
        include_exact = False
    if getattr(args, 'partial', False):
        include_partial = True
    return ParseOptions(include_exact_digest=include_exact, include_partial_digest=include_partial)


def print_match(match: MatchResult):
    candidate = match.candidate
    print(f"{Colors.BOLD}Match:{Colors.END}      {candidate.mod_name or '(unnamed)'}")
    print(f"Record:     {candidate.id}")
    if candidate.source_path:
        print(f"Source:     {candidate.source_path}")
    print(f"Tier:       {match.match_type}")
    print(f"Certainty:  {match.certainty}%")
    if match.alternatives:
        print(f"\n{Colors.BOLD}Alternatives:{Colors.END}")
        for alt in match.alternatives:
            print(f"  {alt.id:<6} {alt.mod_name or '(unnamed)':<30} {alt.entry_count} entries")


# ==============================================================================
# INFO COMMAND
# ==============================================================================
def cmd_info(args, config: Config) -> int:
    """Show the header and entry list of an archive."""
    print_header("Archive Info")

    parsed = VpkParser().parse_file(args.archive)
    header = parsed.header

    print_info(f"Archive:  {args.archive}")
    print(f"Version:  {header.version}")
    print(f"Tree:     {header.tree_size} bytes")
    if header.file_data_section_size is not None:
        print(f"Data:     {header.file_data_section_size} bytes")
        print(f"MD5 sections: archive {header.archive_md5_section_size}, "
              f"other {header.other_md5_section_size}, "
              f"signature {header.signature_section_size}")
    print(f"Entries:  {parsed.entry_count}")
    print(f"Chunks:   {', '.join(str(i) for i in parsed.chunk_indices) or 'none'}")
    print(f"Content:  {format_size(parsed.get_total_size())}")
    print()

    entries = parsed.entries[:args.limit] if args.limit else parsed.entries
    print(f"{'Path':<50} {'Size':>12} {'CRC':>10} {'Chunk':>6}")
    print("-" * 82)
    for entry in entries:
        path = entry.full_path
        if len(path) > 50:
            path = '...' + path[-47:]
        chunk = 'dir' if entry.is_same_file else str(entry.archive_index)
        print(f"{path:<50} {entry.file_size:>12} {entry.crc32_hex:>10} {chunk:>6}")

    if len(entries) < parsed.entry_count:
        print(f"\n... and {parsed.entry_count - len(entries)} more")

    return EXIT_OK


# ==============================================================================
# FINGERPRINT COMMAND
# ==============================================================================
def cmd_fingerprint(args, config: Config) -> int:
    """Compute and print the fingerprint of an archive."""
    analyser = ModAnalyser(None, config)
    _, fingerprint = analyser.fingerprint_file(args.archive, fingerprint_options(args, config))

    if args.json:
        data = fingerprint.to_dict()
        if not args.leaves:
            data.pop('partial_leaves', None)
        print(json.dumps(data, indent=2))
        return EXIT_OK

    print_header("Fingerprint")
    print(f"Content signature: {fingerprint.content_signature}")
    print(f"Fast hash:         {fingerprint.fast_hash}")
    print(f"File size:         {fingerprint.file_size}")
    print(f"Exact digest:      {fingerprint.exact_digest or '-'}")
    print(f"Partial digest:    {fingerprint.partial_digest or '-'}")
    print(f"Manifest hash:     {fingerprint.manifest_hash}")
    print(f"Entries:           {fingerprint.entry_count}")
    print(f"Version:           {fingerprint.format_version}")
    print(f"Multiple chunks:   {'yes' if fingerprint.has_multiple_chunks else 'no'}")
    print(f"Inline data:       {'yes' if fingerprint.has_inline_data else 'no'}")
    return EXIT_OK


# ==============================================================================
# IDENTIFY COMMAND
# ==============================================================================
def cmd_identify(args, config: Config) -> int:
    """Match an archive against the catalog."""
    print_header("Identify Archive")

    db = get_database(args, config)
    try:
        analyser = ModAnalyser(db, config)
        result = analyser.analyse_file(args.archive, fingerprint_options(args, config))
    finally:
        db.close()

    print_info(f"Archive: {args.archive} ({result.fingerprint.entry_count} entries)")
    print()

    if result.match is None:
        print_warning("No match in catalog")
        return EXIT_NO_MATCH

    print_match(result.match)
    return EXIT_OK


# ==============================================================================
# CATALOG COMMANDS
# ==============================================================================
def cmd_catalog_add(args, config: Config) -> int:
    """Fingerprint an archive and record it under a mod."""
    db = get_database(args, config)
    try:
        analyser = ModAnalyser(db, config)
        _, fingerprint = analyser.fingerprint_file(args.archive, fingerprint_options(args, config))

        mod = db.get_or_create_mod(args.mod)
        source = args.source or os.path.basename(args.archive)
        record = db.add_archive(mod.id, source, fingerprint)
    finally:
        db.close()

    if record.mod_id != mod.id or record.source_path != source:
        print_warning(f"{source} is already catalogued as record {record.id} "
                      f"('{record.mod_name}', {record.source_path}); not added to '{mod.name}'")
        return EXIT_OK

    print_success(f"Catalogued {source} under '{mod.name}' (record {record.id})")
    return EXIT_OK


def cmd_catalog_list(args, config: Config) -> int:
    """List the archives recorded for a mod, or every mod when --mod is omitted."""
    if not args.mod:
        return list_mods(args, config)

    print_header(f"Archives of {args.mod}")

    db = get_database(args, config)
    try:
        mod = db.get_mod_by_name(args.mod)
        if mod is None:
            print_error(f"Mod not found: {args.mod}")
            return EXIT_NO_MATCH
        records = db.get_archives_for_mod(mod.id)
    finally:
        db.close()

    if not records:
        print_warning("No archives recorded")
        return EXIT_OK

    print(f"{'ID':<6} {'Source':<36} {'Entries':>8} {'Size':>12} {'Fast hash':<16}")
    print("-" * 82)
    for record in records:
        print(f"{record.id:<6} {record.source_path:<36} {record.entry_count:>8} "
              f"{record.file_size:>12} {record.fast_hash:<16}")

    print(f"\nTotal: {len(records)} archives")
    return EXIT_OK


def list_mods(args, config: Config) -> int:
    print_header("Catalogued Mods")

    db = get_database(args, config)
    try:
        mods = [(mod, len(db.get_archives_for_mod(mod.id))) for mod in db.get_all_mods()]
    finally:
        db.close()

    if not mods:
        print_warning("Catalog is empty")
        return EXIT_OK

    print(f"{'ID':<6} {'Name':<50} {'Archives':>8}")
    print("-" * 66)
    for mod, count in mods:
        print(f"{mod.id:<6} {mod.name:<50} {count:>8}")

    print(f"\nTotal: {len(mods)} mods")
    return EXIT_OK


def cmd_catalog_remove(args, config: Config) -> int:
    """Delete one archive record from the catalog."""
    db = get_database(args, config)
    try:
        deleted = db.delete_archive(args.record)
    finally:
        db.close()

    if not deleted:
        print_error(f"Record not found: {args.record}")
        return EXIT_NO_MATCH

    print_success(f"Removed record {args.record}")
    return EXIT_OK


# ==============================================================================
# EXTRACT COMMAND
# ==============================================================================
def cmd_extract(args, config: Config) -> int:
    """Extract files from a pack."""
    print_header("Extracting Archive")

    with VPKExtractor(args.archive, verify_crc=not args.no_verify) as extractor:
        file_filter = None
        if args.pattern:
            selected = {e.full_path for e in extractor.find_files(args.pattern)}
            file_filter = lambda entry: entry.full_path in selected

        print_info(f"Archive: {args.archive}")
        print_info(f"Output:  {args.output}")
        print()

        count = extractor.extract_all(args.output, progress_callback, file_filter)

    print_success(f"Extracted {count} files")
    return EXIT_OK


# ==============================================================================
# STATS COMMAND
# ==============================================================================
def cmd_stats(args, config: Config) -> int:
    """Show catalog statistics."""
    print_header("Catalog Statistics")

    db = get_database(args, config)
    try:
        stats = db.get_stats()
    finally:
        db.close()

    print(f"Mods:                 {stats['mods']}")
    print(f"Archives:             {stats['archives']}")
    print(f"With exact digest:    {stats['with_exact_digest']}")
    print(f"With partial digest:  {stats['with_partial_digest']}")
    print(f"Total size:           {stats['total_size_mb']} MB")
    return EXIT_OK


# ==============================================================================
# MAIN ARGUMENT PARSER
# ==============================================================================
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='modident',
        description="Mod Identifier - content fingerprinting for VPK mod archives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s info --archive pak01_dir.vpk              Show archive contents
  %(prog)s fingerprint --archive pak01_dir.vpk       Print identity digests
  %(prog)s catalog add --mod "My Mod" --archive x.vpk  Record a known archive
  %(prog)s identify --archive x.vpk                  Match against the catalog
  %(prog)s extract --archive pak01_dir.vpk --output out/
        """
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--config', help='Path to config.json')
    parser.add_argument('--db', help='Path to the catalog database')
    parser.add_argument('--log-level', help='DEBUG, INFO, WARNING or ERROR')
    parser.add_argument('--no-color', action='store_true', help='Disable colored output')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # -------------------------------------------------------------------------
    # INFO command
    # -------------------------------------------------------------------------
    info_parser = subparsers.add_parser('info', help='Show archive header and entries')
    info_parser.add_argument('--archive', required=True, help='Path to the _dir.vpk')
    info_parser.add_argument('--limit', type=int, default=100, help='Max entries to show (0 = all)')
    info_parser.set_defaults(func=cmd_info)

    # -------------------------------------------------------------------------
    # FINGERPRINT command
    # -------------------------------------------------------------------------
    fp_parser = subparsers.add_parser('fingerprint', help='Compute archive fingerprint')
    fp_parser.add_argument('--archive', required=True, help='Path to the _dir.vpk')
    fp_parser.add_argument('--partial', action='store_true', help='Compute the partial digest')
    fp_parser.add_argument('--no-exact', action='store_true', help='Skip the exact digest')
    fp_parser.add_argument('--json', action='store_true', help='Print JSON')
    fp_parser.add_argument('--leaves', action='store_true', help='Include partial leaves in JSON')
    fp_parser.set_defaults(func=cmd_fingerprint)

    # -------------------------------------------------------------------------
    # IDENTIFY command
    # -------------------------------------------------------------------------
    id_parser = subparsers.add_parser('identify', help='Identify an archive')
    id_parser.add_argument('--archive', required=True, help='Path to the _dir.vpk')
    id_parser.add_argument('--partial', action='store_true', help='Compute the partial digest')
    id_parser.add_argument('--no-exact', action='store_true', help='Skip the exact digest')
    id_parser.set_defaults(func=cmd_identify)

    # -------------------------------------------------------------------------
    # CATALOG commands
    # -------------------------------------------------------------------------
    catalog_parser = subparsers.add_parser('catalog', help='Manage the catalog')
    catalog_sub = catalog_parser.add_subparsers(dest='subcommand')

    # catalog add
    catalog_add = catalog_sub.add_parser('add', help='Record an archive under a mod')
    catalog_add.add_argument('--mod', required=True, help='Mod name (created if new)')
    catalog_add.add_argument('--archive', required=True, help='Path to the _dir.vpk')
    catalog_add.add_argument('--source', help='Source path to record (default: file name)')
    catalog_add.add_argument('--partial', action='store_true', help='Compute the partial digest')
    catalog_add.set_defaults(func=cmd_catalog_add)

    # catalog list
    catalog_list = catalog_sub.add_parser('list', help="List a mod's archives, or all mods")
    catalog_list.add_argument('--mod', help='Mod name (default: list every mod)')
    catalog_list.set_defaults(func=cmd_catalog_list)

    # catalog remove
    catalog_remove = catalog_sub.add_parser('remove', help='Delete an archive record')
    catalog_remove.add_argument('--record', type=int, required=True, help='Record ID')
    catalog_remove.set_defaults(func=cmd_catalog_remove)

    # -------------------------------------------------------------------------
    # EXTRACT command
    # -------------------------------------------------------------------------
    extract_parser = subparsers.add_parser('extract', help='Extract archive contents')
    extract_parser.add_argument('--archive', required=True, help='Path to the _dir.vpk')
    extract_parser.add_argument('--output', required=True, help='Output directory')
    extract_parser.add_argument('--pattern', help='Only extract paths matching this glob')
    extract_parser.add_argument('--no-verify', action='store_true', help='Skip CRC checks')
    extract_parser.set_defaults(func=cmd_extract)

    # -------------------------------------------------------------------------
    # STATS command
    # -------------------------------------------------------------------------
    stats_parser = subparsers.add_parser('stats', help='Show catalog statistics')
    stats_parser.set_defaults(func=cmd_stats)

    parser.subparsers = {'catalog': catalog_parser}
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.no_color or not sys.stdout.isatty():
        Colors.disable()

    if not args.command:
        parser.print_help()
        return EXIT_OK

    if not hasattr(args, 'func'):
        parser.subparsers[args.command].print_help()
        return EXIT_OK

    config = load_config(args)
    setup_logging(args.log_level or config.log_level)

    try:
        return args.func(args, config)
    except CatalogUnavailable as e:
        print_error(f"Catalog database failure: {e}")
        return EXIT_STORE_FAILURE
    except ModIdentError as e:
        print_error(f"Unusable archive: {e}")
        return EXIT_BAD_ARCHIVE
    except OSError as e:
        print_error(f"Could not read archive: {e}")
        return EXIT_BAD_ARCHIVE
    except SQLAlchemyError as e:
        logger.debug("Catalog failure", exc_info=True)
        print_error(f"Catalog database failure: {e}")
        return EXIT_STORE_FAILURE


if __name__ == "__main__":
    sys.exit(main())
