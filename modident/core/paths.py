# ==============================================================================
# MOD IDENTIFIER - PATH UTILITIES
# ==============================================================================
# Centralized location of user data (catalog database, config).
#
# User data is stored in:
#   - Windows: %APPDATA%/ModIdent/
#   - Elsewhere: $XDG_CONFIG_HOME/ModIdent/ (default ~/.config/ModIdent/)
#
# Usage:
#   from modident.core.paths import Paths
#   db_path = Paths.get_database_path()
#   config_path = Paths.get_config_path()
# ==============================================================================

import os
import sys
from typing import Optional


class Paths:
    """
    Centralized path management for Mod Identifier.

    The user data directory is computed once and created on first use.
    """

    # Application name for folder creation
    APP_NAME = "ModIdent"

    # Cache for computed paths
    _user_data_dir: Optional[str] = None

    @classmethod
    def get_user_data_dir(cls) -> str:
        """
        Get the user data directory.

        This is where we store:
        - Database (catalog.db)
        - Configuration (config.json)

        Returns:
            Absolute path to user data directory
        """
        if cls._user_data_dir is None:
            if sys.platform == 'win32':
                base = os.environ.get('APPDATA', os.path.expanduser('~'))
            else:
                base = os.environ.get('XDG_CONFIG_HOME',
                                      os.path.join(os.path.expanduser('~'), '.config'))
            cls._user_data_dir = os.path.join(base, cls.APP_NAME)

            os.makedirs(cls._user_data_dir, exist_ok=True)

        return cls._user_data_dir

    @classmethod
    def get_database_path(cls) -> str:
        """Absolute path to catalog.db."""
        return os.path.join(cls.get_user_data_dir(), 'catalog.db')

    @classmethod
    def get_config_path(cls) -> str:
        """Absolute path to config.json."""
        return os.path.join(cls.get_user_data_dir(), 'config.json')

    @classmethod
    def reset(cls):
        """Forget the cached directory (the environment may have changed)."""
        cls._user_data_dir = None
