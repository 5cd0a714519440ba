# ==============================================================================
# MOD IDENTIFIER - MAIN ENTRY POINT
# ==============================================================================
# Launcher for the Mod Identifier command-line interface.
#
# Usage:
#   python main.py --version     # Show version
#   python main.py --paths       # Show data paths
#   python main.py --check       # Check dependencies
#   python main.py <command> ... # Any CLI command (see modident/cli.py)
# ==============================================================================

import sys
from typing import List, Optional


# ==============================================================================
# DEPENDENCY CHECKS
# ==============================================================================

REQUIRED_PACKAGES = ['sqlalchemy', 'xxhash']


def check_dependencies():
    """
    Check if required dependencies are installed.

    Returns:
        Tuple of (all_ok, missing_packages)
    """
    missing = []

    for dep in REQUIRED_PACKAGES:
        try:
            __import__(dep)
        except ImportError:
            missing.append(dep)

    return (len(missing) == 0, missing)


# ==============================================================================
# MAIN FUNCTION
# ==============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Handle the launcher flags, otherwise hand the arguments to the CLI.

    Returns:
        Process exit code
    """
    argv = sys.argv[1:] if argv is None else argv

    if argv == ['--check']:
        print("Checking dependencies...")
        print(f"  Python: {sys.version.split()[0]}")

        all_ok, missing = check_dependencies()
        if all_ok:
            print("[OK] All core dependencies installed")
        else:
            print(f"[MISSING] {', '.join(missing)}")
        return 0 if all_ok else 1

    all_ok, missing = check_dependencies()
    if not all_ok:
        print(f"[ERROR] Missing required packages: {', '.join(missing)}")
        print("Install with: pip install -e .")
        return 1

    if argv == ['--paths']:
        from modident.core.config import Config
        from modident.core.paths import Paths

        config = Config()
        config.load()
        print("Mod Identifier Paths:")
        print(f"  User Data:      {Paths.get_user_data_dir()}")
        print(f"  Config:         {config.config_path}")
        print(f"  Database:       {config.database_path}")
        return 0

    from modident.cli import main as cli_main
    try:
        return cli_main(argv)
    except SystemExit as e:
        # argparse exits for --help / --version / usage errors
        return e.code if isinstance(e.code, int) else 0


# ==============================================================================
# SCRIPT ENTRY POINT
# ==============================================================================
if __name__ == "__main__":
    sys.exit(main())
