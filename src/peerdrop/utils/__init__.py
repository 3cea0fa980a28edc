"""Small helpers shared by the CLI and the session layer."""

from .env_loader import find_dotenv, load_dotenv_early
from .formatting import format_bytes, format_timestamp

__all__ = ["find_dotenv", "load_dotenv_early", "format_bytes", "format_timestamp"]
