"""Configuration management for consumelint.

Loads environment variables (optionally from a ``.env`` file) and provides
centralized config access.
"""
import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv

__version__ = "0.3.0"

TRUTHY = ('1', 'true', 'yes', 'on')
FALSY = ('', '0', 'false', 'no', 'off')


class Config:
    """Configuration loader with environment variable support.

    Args:
        env_file: Explicit ``.env`` path (defaults to ``.env`` in the working directory)
    """

    def __init__(self, env_file: Optional[Path] = None):
        load_dotenv(env_file or Path.cwd() / ".env")
        self._validate()

    def _validate(self):
        """Validate environment values.

        Raises:
            ValueError: If CONSUMELINT_VOCABULARY names a missing path or
                CONSUMELINT_DEBUG is not a boolean
        """
        for path in self.vocabulary_paths:
            if not path.exists():
                raise ValueError(
                    f"CONSUMELINT_VOCABULARY points to a missing path: {path}. "
                    "Fix it in the .env file or environment variables."
                )
        raw_debug = os.getenv("CONSUMELINT_DEBUG", "").strip().lower()
        if raw_debug not in TRUTHY and raw_debug not in FALSY:
            raise ValueError(f"CONSUMELINT_DEBUG must be a boolean, got {raw_debug!r}")

    @property
    def vocabulary_paths(self) -> List[Path]:
        """Extra vocabulary JSON files or directories.

        Returns:
            Paths from CONSUMELINT_VOCABULARY (``os.pathsep`` separated)
        """
        raw = os.getenv("CONSUMELINT_VOCABULARY", "")
        return [Path(p) for p in raw.split(os.pathsep) if p.strip()]

    @property
    def debug(self) -> bool:
        return os.getenv("CONSUMELINT_DEBUG", "").strip().lower() in TRUTHY

    @property
    def backup_dir(self) -> str:
        """Directory `fix --backup` copies original files into.

        Returns:
            Path to the backup directory (default: .consumelint_backup)
        """
        return os.getenv("CONSUMELINT_BACKUP_DIR", ".consumelint_backup")


# Singleton instance
_config = None


def get_config() -> Config:
    """Get or create singleton Config instance.

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config():
    """Drop the cached instance (the next get_config() re-reads the environment)."""
    global _config
    _config = None
