"""Environment loader utilities for early initialization.

Loads a ``.env`` file so ``PEERDROP_*`` settings can live next to the
project instead of in the shell profile.
"""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def find_dotenv(start: Optional[Path] = None) -> Optional[str]:
    """Find .env file, searching up from the given (or current) directory."""
    current = (start or Path.cwd()).resolve()
    while True:
        env_path = current / ".env"
        if env_path.exists():
            return str(env_path)
        if current == current.parent:
            return None
        current = current.parent


def load_dotenv_early(override: bool = False) -> Optional[str]:
    """Load the nearest .env file.

    Args:
        override: If True, override existing environment variables.

    Returns:
        Path of the loaded file, or None when no .env was found.
    """
    env_path = find_dotenv()
    if env_path:
        load_dotenv(env_path, override=override)
    return env_path
